import sys
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.core.credit_ledger import (  # noqa: E402
    DEBIT_CONSUMED,
    DEBIT_HELD,
    DEBIT_REFUNDED,
    SqliteCreditLedger,
)
from app.core.errors import InsufficientCredit  # noqa: E402


class CreditLedgerTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.ledger = SqliteCreditLedger(str(Path(self._tmp.name) / "credits.db"))

    def tearDown(self):
        self.ledger.close()
        self._tmp.cleanup()

    def test_grant_from_plan_catalog(self):
        boost = self.ledger.grant("acct-boost", plan_ref="boost-pack")
        unlimited = self.ledger.grant("acct-vip", plan_ref="unlimited-pack")
        topped_up = self.ledger.grant("acct-boost", plan_ref="one-time-check")

        self.assertEqual(boost.credits_left, 5)
        self.assertFalse(boost.is_unlimited)
        self.assertTrue(unlimited.is_unlimited)
        self.assertEqual(topped_up.credits_left, 6)
        self.assertEqual(topped_up.plan_ref, "one-time-check")

    def test_grant_raises_when_account_cannot_be_read_back(self):
        with patch.object(self.ledger, "get_account", return_value=None):
            with self.assertRaises(RuntimeError):
                self.ledger.grant("acct-ghost", credits=1)

    def test_debit_decrements_and_refund_restores_once(self):
        self.ledger.grant("acct", credits=2)

        debit = self.ledger.debit("acct", debit_id="attempt-1")
        self.assertEqual(self.ledger.get_account("acct").credits_left, 1)
        self.assertEqual(self.ledger.get_debit_status("attempt-1"), DEBIT_HELD)

        self.assertTrue(self.ledger.refund(debit))
        self.assertFalse(self.ledger.refund(debit))
        self.assertEqual(self.ledger.get_account("acct").credits_left, 2)
        self.assertEqual(self.ledger.get_debit_status("attempt-1"), DEBIT_REFUNDED)

    def test_settled_debit_cannot_be_refunded(self):
        self.ledger.grant("acct", credits=1)
        debit = self.ledger.debit("acct")

        self.assertTrue(self.ledger.settle(debit))
        self.assertFalse(self.ledger.refund(debit))
        self.assertEqual(self.ledger.get_account("acct").credits_left, 0)
        self.assertEqual(self.ledger.get_debit_status(debit.debit_id), DEBIT_CONSUMED)

    def test_zero_balance_and_unknown_account_are_rejected(self):
        self.ledger.grant("empty", credits=0, is_unlimited=False)

        with self.assertRaises(InsufficientCredit):
            self.ledger.debit("empty")
        with self.assertRaises(InsufficientCredit):
            self.ledger.debit("nobody")
        self.assertEqual(self.ledger.get_account("empty").credits_left, 0)

    def test_repeated_debit_id_charges_once(self):
        self.ledger.grant("acct", credits=3)

        first = self.ledger.debit("acct", debit_id="same")
        second = self.ledger.debit("acct", debit_id="same")

        self.assertEqual(first.debit_id, second.debit_id)
        self.assertEqual(self.ledger.get_account("acct").credits_left, 2)

    def test_unlimited_accounts_keep_balance(self):
        self.ledger.grant("vip", credits=4, is_unlimited=True)

        debit = self.ledger.debit("vip")
        self.ledger.refund(debit)

        self.assertFalse(debit.counted)
        self.assertEqual(self.ledger.get_account("vip").credits_left, 4)

    def test_concurrent_debits_on_single_credit(self):
        self.ledger.grant("acct", credits=1)
        barrier = threading.Barrier(8)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                self.ledger.debit("acct")
                result = "ok"
            except InsufficientCredit:
                result = "insufficient"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("insufficient"), 7)
        self.assertEqual(self.ledger.get_account("acct").credits_left, 0)

    def test_stale_debits_are_listed(self):
        self.ledger.grant("acct", credits=2)
        held = self.ledger.debit("acct", debit_id="held")
        settled = self.ledger.debit("acct", debit_id="settled")
        self.ledger.settle(settled)

        stale = self.ledger.list_stale_debits(0)

        self.assertEqual([debit.debit_id for debit in stale], [held.debit_id])
        self.assertEqual(self.ledger.list_stale_debits(3600), [])


if __name__ == "__main__":
    unittest.main()
