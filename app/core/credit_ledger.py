from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass
from functools import lru_cache

from app.core.config import settings
from app.core.errors import InsufficientCredit

logger = logging.getLogger(__name__)

DEBIT_HELD = "held"
DEBIT_CONSUMED = "consumed"
DEBIT_REFUNDED = "refunded"


@dataclass(frozen=True)
class CreditPlan:
    ref: str
    credits: int
    is_unlimited: bool = False


PLAN_CATALOG: dict[str, CreditPlan] = {
    "one-time-check": CreditPlan(ref="one-time-check", credits=1),
    "boost-pack": CreditPlan(ref="boost-pack", credits=5),
    "unlimited-pack": CreditPlan(ref="unlimited-pack", credits=0, is_unlimited=True),
}


@dataclass(frozen=True)
class CreditAccount:
    account_id: str
    plan_ref: str | None
    credits_left: int
    is_unlimited: bool

    @property
    def has_credit(self) -> bool:
        return self.is_unlimited or self.credits_left > 0


@dataclass(frozen=True)
class CreditDebit:
    debit_id: str
    account_id: str
    plan_ref: str | None
    counted: bool
    created_at: float


class SqliteCreditLedger:
    """Per-account credit balances plus one row per debit, so refunds can be made idempotent."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        with self._conn_lock:
            if self._conn is not None:
                return self._conn

            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            conn = sqlite3.connect(
                self._db_path,
                check_same_thread=False,
                timeout=5,
                isolation_level=None,
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS credit_accounts (
                    account_id TEXT PRIMARY KEY,
                    plan_ref TEXT,
                    credits_left INTEGER NOT NULL DEFAULT 0 CHECK (credits_left >= 0),
                    is_unlimited INTEGER NOT NULL DEFAULT 0,
                    updated_at REAL NOT NULL
                );
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS credit_debits (
                    debit_id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    plan_ref TEXT,
                    counted INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    resolved_at REAL
                );
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_credit_debits_status
                ON credit_debits (status, created_at);
                """
            )
            self._conn = conn
            return conn

    def get_account(self, account_id: str) -> CreditAccount | None:
        conn = self._get_connection()
        with self._conn_lock:
            row = conn.execute(
                """
                SELECT account_id, plan_ref, credits_left, is_unlimited
                FROM credit_accounts
                WHERE account_id = ?
                """,
                (account_id,),
            ).fetchone()
        if not row:
            return None
        return CreditAccount(
            account_id=row[0],
            plan_ref=row[1],
            credits_left=int(row[2]),
            is_unlimited=bool(row[3]),
        )

    def grant(
        self,
        account_id: str,
        *,
        plan_ref: str | None = None,
        credits: int = 0,
        is_unlimited: bool | None = None,
    ) -> CreditAccount:
        """Add credits to an account, creating it if needed.

        When ``plan_ref`` names a catalogue plan and neither ``credits`` nor
        ``is_unlimited`` is given, the plan's allowance is applied.
        """
        if credits < 0:
            raise ValueError("credits must be >= 0")
        plan = PLAN_CATALOG.get(plan_ref or "")
        if plan is not None and credits == 0 and is_unlimited is None:
            credits = plan.credits
            is_unlimited = plan.is_unlimited

        conn = self._get_connection()
        now = time.time()
        with self._conn_lock:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                cursor.execute(
                    """
                    INSERT INTO credit_accounts (account_id, plan_ref, credits_left, is_unlimited, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(account_id) DO UPDATE SET
                        plan_ref = COALESCE(excluded.plan_ref, credit_accounts.plan_ref),
                        credits_left = credit_accounts.credits_left + excluded.credits_left,
                        is_unlimited = CASE WHEN ? IS NULL THEN credit_accounts.is_unlimited
                                            ELSE excluded.is_unlimited END,
                        updated_at = excluded.updated_at
                    """,
                    (
                        account_id,
                        plan_ref,
                        credits,
                        int(bool(is_unlimited)),
                        now,
                        None if is_unlimited is None else int(is_unlimited),
                    ),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        logger.info(
            "credit_grant account=%s plan=%s credits=%s unlimited=%s",
            account_id,
            plan_ref,
            credits,
            is_unlimited,
        )
        account = self.get_account(account_id)
        if account is None:
            raise RuntimeError(f"Credit account '{account_id}' was not stored.")
        return account

    def debit(self, account_id: str, *, debit_id: str | None = None) -> CreditDebit:
        """Atomically take one credit (or record a no-op hold for unlimited accounts).

        Re-using a ``debit_id`` returns the original debit instead of charging twice.
        """
        debit_id = debit_id or uuid.uuid4().hex
        conn = self._get_connection()
        now = time.time()

        with self._conn_lock:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                existing = cursor.execute(
                    "SELECT account_id, plan_ref, counted, created_at FROM credit_debits WHERE debit_id = ?",
                    (debit_id,),
                ).fetchone()
                if existing:
                    conn.rollback()
                    return CreditDebit(
                        debit_id=debit_id,
                        account_id=existing[0],
                        plan_ref=existing[1],
                        counted=bool(existing[2]),
                        created_at=float(existing[3]),
                    )

                row = cursor.execute(
                    "SELECT plan_ref, is_unlimited FROM credit_accounts WHERE account_id = ?",
                    (account_id,),
                ).fetchone()
                if not row:
                    conn.rollback()
                    raise InsufficientCredit(f"No credits available for account {account_id}")

                plan_ref, is_unlimited = row[0], bool(row[1])
                counted = not is_unlimited
                if counted:
                    cursor.execute(
                        """
                        UPDATE credit_accounts
                        SET credits_left = credits_left - 1, updated_at = ?
                        WHERE account_id = ? AND credits_left > 0
                        """,
                        (now, account_id),
                    )
                    if cursor.rowcount != 1:
                        conn.rollback()
                        raise InsufficientCredit(f"No credits available for account {account_id}")

                cursor.execute(
                    """
                    INSERT INTO credit_debits (debit_id, account_id, plan_ref, counted, status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (debit_id, account_id, plan_ref, int(counted), DEBIT_HELD, now),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        logger.info("credit_debit_ok account=%s debit=%s counted=%s", account_id, debit_id, counted)
        return CreditDebit(
            debit_id=debit_id,
            account_id=account_id,
            plan_ref=plan_ref,
            counted=counted,
            created_at=now,
        )

    def _resolve(self, debit: CreditDebit, status: str) -> bool:
        conn = self._get_connection()
        now = time.time()
        with self._conn_lock:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                cursor.execute(
                    """
                    UPDATE credit_debits
                    SET status = ?, resolved_at = ?
                    WHERE debit_id = ? AND status = ?
                    """,
                    (status, now, debit.debit_id, DEBIT_HELD),
                )
                changed = cursor.rowcount == 1
                if changed and status == DEBIT_REFUNDED and debit.counted:
                    cursor.execute(
                        """
                        UPDATE credit_accounts
                        SET credits_left = credits_left + 1, updated_at = ?
                        WHERE account_id = ?
                        """,
                        (now, debit.account_id),
                    )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return changed

    def refund(self, debit: CreditDebit) -> bool:
        """Return a held debit's credit. A second call for the same debit is a no-op."""
        refunded = self._resolve(debit, DEBIT_REFUNDED)
        if refunded:
            logger.info("credit_refund_ok account=%s debit=%s", debit.account_id, debit.debit_id)
        else:
            logger.warning("credit_refund_skipped account=%s debit=%s", debit.account_id, debit.debit_id)
        return refunded

    def settle(self, debit: CreditDebit) -> bool:
        settled = self._resolve(debit, DEBIT_CONSUMED)
        if settled:
            logger.debug("credit_debit_settled account=%s debit=%s", debit.account_id, debit.debit_id)
        return settled

    def get_debit_status(self, debit_id: str) -> str | None:
        conn = self._get_connection()
        with self._conn_lock:
            row = conn.execute("SELECT status FROM credit_debits WHERE debit_id = ?", (debit_id,)).fetchone()
        return row[0] if row else None

    def list_stale_debits(self, older_than_s: float) -> list[CreditDebit]:
        cutoff = time.time() - older_than_s
        conn = self._get_connection()
        with self._conn_lock:
            rows = conn.execute(
                """
                SELECT debit_id, account_id, plan_ref, counted, created_at
                FROM credit_debits
                WHERE status = ? AND created_at <= ?
                ORDER BY created_at
                """,
                (DEBIT_HELD, cutoff),
            ).fetchall()
        return [
            CreditDebit(
                debit_id=row[0],
                account_id=row[1],
                plan_ref=row[2],
                counted=bool(row[3]),
                created_at=float(row[4]),
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


@lru_cache(maxsize=1)
def get_credit_ledger() -> SqliteCreditLedger:
    return SqliteCreditLedger(settings.credits_db_path)
