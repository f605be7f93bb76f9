from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.core.config import settings  # noqa: E402
from app.core.credit_ledger import PLAN_CATALOG, SqliteCreditLedger  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Grant analysis credits to an account.")
    parser.add_argument("account_id", help="Account identifier (the X-Account-Id header value)")
    parser.add_argument(
        "--plan",
        choices=sorted(PLAN_CATALOG),
        help="Apply a catalogue plan's allowance.",
    )
    parser.add_argument("--credits", type=int, default=0, help="Credits to add on top of the current balance.")
    parser.add_argument("--unlimited", action="store_true", help="Mark the account as unlimited.")
    parser.add_argument("--db", default=None, help="Credits database path (defaults to CREDITS_DB_PATH).")
    args = parser.parse_args(argv)

    if not args.plan and args.credits <= 0 and not args.unlimited:
        parser.error("nothing to grant: pass --plan, --credits or --unlimited")
    if args.credits < 0:
        parser.error("--credits must be >= 0")

    ledger = SqliteCreditLedger(args.db or settings.credits_db_path)
    try:
        account = ledger.grant(
            args.account_id,
            plan_ref=args.plan,
            credits=args.credits,
            is_unlimited=True if args.unlimited else None,
        )
    finally:
        ledger.close()

    balance = "unlimited" if account.is_unlimited else str(account.credits_left)
    print(f"{account.account_id}: plan={account.plan_ref or '-'} credits={balance}")
    return 0


if __name__ == "__main__":
    load_dotenv()
    raise SystemExit(main())
