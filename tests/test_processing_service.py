import json
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.ai.prompts import build_model_profiles  # noqa: E402
from app.ai.types import AnalysisModelError  # noqa: E402
from app.core.analysis_store import SqliteAnalysisRecordStore  # noqa: E402
from app.core.config import get_analysis_config_value  # noqa: E402
from app.core.credit_ledger import DEBIT_CONSUMED, DEBIT_HELD, DEBIT_REFUNDED, SqliteCreditLedger  # noqa: E402
from app.core.errors import ExtractionFailed, InsufficientCredit, NoUsableContent  # noqa: E402
from app.features.section_truncator import DEFAULT_SECTION_LIMITS  # noqa: E402
from app.parsing.models import ExtractionMetadata, ExtractionResult  # noqa: E402
from app.parsing.sources import ExtractionError  # noqa: E402
from app.services.analysis_service import AnalysisService  # noqa: E402
from app.services.processing_service import (  # noqa: E402
    FALLBACK_WARNING,
    UNPARSED_WARNING,
    ProcessingOptions,
    ResumeProcessingService,
    describe_source,
)

SOURCE = "https://files.example.com/cv.pdf"


class FakeExtractor:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def extract(self, source, options=None):
        self.calls.append(source)
        if self.error is not None:
            raise self.error
        return ExtractionResult(
            text=self.text,
            metadata=ExtractionMetadata(engine_id=2, processing_time_ms=10, source_kind="url"),
        )


class FakeModelClient:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = 0

    def complete(self, messages, *, model, temperature, max_tokens):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.reply


def echo_profile_reply(name="John Smith", email="john@x.com", education=True, ats_score=82):
    payload = {
        "contactInformation": {"name": name, "email": email},
        "skills": {"technical": ["Python"]},
        "education": [{"institution": "XYZ University", "degree": "BSc"}] if education else [],
        "analysis": {"strengths": ["Focused"], "atsScore": ats_score},
    }
    return json.dumps(payload)


class ProcessingServiceTests(unittest.TestCase):
    SCENARIO_TEXT = "John Smith\njohn@x.com\nEducation: BSc Computer Science, XYZ University\nSkills: Python"

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.ledger = SqliteCreditLedger(str(root / "credits.db"))
        self.store = SqliteAnalysisRecordStore(str(root / "analysis.db"))

    def tearDown(self):
        self.ledger.close()
        self.store.close()
        self._tmp.cleanup()

    def make_service(self, extractor, model_client):
        analysis = AnalysisService(
            model_client,
            profiles=build_model_profiles(get_analysis_config_value("families")),
            default_model="meta-llama/llama-4-maverick:free",
        )
        return ResumeProcessingService(
            extractor=extractor,
            analysis=analysis,
            ledger=self.ledger,
            store=self.store,
            section_limits=DEFAULT_SECTION_LIMITS,
        )

    def credits(self, account_id="acct"):
        return self.ledger.get_account(account_id).credits_left

    def test_happy_path_debits_and_persists(self):
        self.ledger.grant("acct", credits=1)
        service = self.make_service(FakeExtractor(self.SCENARIO_TEXT), FakeModelClient(reply=echo_profile_reply()))

        outcome = service.process(SOURCE, ProcessingOptions(), "acct", attempt_id="attempt-1")

        self.assertEqual(self.credits(), 0)
        self.assertIsNone(outcome.warning)
        self.assertFalse(outcome.used_fallback)
        self.assertEqual(outcome.record.contact_information.name, "John Smith")
        self.assertEqual(outcome.record.contact_information.email, "john@x.com")
        self.assertIsInstance(outcome.record.analysis.ats_score, int)
        stored = self.store.get(outcome.record_id, account_id="acct")
        self.assertEqual(stored.attempt_id, "attempt-1")
        self.assertEqual(stored.source_uri, SOURCE)
        self.assertEqual(self.ledger.get_debit_status("attempt-1"), DEBIT_CONSUMED)

    def test_scenario_text_with_failed_model_still_succeeds(self):
        self.ledger.grant("acct", credits=1)
        service = self.make_service(
            FakeExtractor(self.SCENARIO_TEXT),
            FakeModelClient(error=AnalysisModelError("upstream down", code="model_error")),
        )

        outcome = service.process(SOURCE, None, "acct")

        self.assertEqual(outcome.record.contact_information.name, "John Smith")
        self.assertEqual(outcome.record.contact_information.email, "john@x.com")
        self.assertEqual(self.credits(), 0)

    def test_empty_extraction_refunds(self):
        self.ledger.grant("acct", credits=1)
        model = FakeModelClient(reply=echo_profile_reply())
        service = self.make_service(
            FakeExtractor(error=ExtractionError("OCR returned no readable text.", reason="empty_text")),
            model,
        )

        with self.assertRaises(ExtractionFailed) as ctx:
            service.process(SOURCE, ProcessingOptions(), "acct", attempt_id="attempt-2")

        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(self.credits(), 1)
        self.assertEqual(model.calls, 0)
        self.assertEqual(self.ledger.get_debit_status("attempt-2"), DEBIT_REFUNDED)
        self.assertEqual(self.store.list_for_account("acct"), [])

    def test_model_timeout_uses_fallback_and_keeps_debit(self):
        self.ledger.grant("acct", credits=3)
        text = "Maria Garcia\nmaria@example.org\nBachelor of Science in Chemistry\nLab work and analysis"
        service = self.make_service(
            FakeExtractor(text),
            FakeModelClient(error=AnalysisModelError("Analysis model timed out", code="model_timeout")),
        )

        outcome = service.process(SOURCE, ProcessingOptions(), "acct")

        self.assertTrue(outcome.used_fallback)
        self.assertIn(FALLBACK_WARNING, outcome.warning)
        self.assertEqual(outcome.record.analysis.ats_score, 60)
        self.assertEqual(outcome.record.contact_information.name, "Maria Garcia")
        self.assertEqual(self.credits(), 2)

    def test_no_usable_content_refunds(self):
        self.ledger.grant("acct", credits=2)
        text = "\n".join(
            [
                "1234 5678 9012 3456 7890 1234 5678 9012 3456 7890 1234",
                "2023-01-01 2023-02-01 2023-03-01 2023-04-01 2023-05-01",
                "The quarterly numbers were reviewed again by the committee members",
            ]
        )
        service = self.make_service(FakeExtractor(text), FakeModelClient(error=TimeoutError("slow")))

        with self.assertRaises(NoUsableContent) as ctx:
            service.process(SOURCE, ProcessingOptions(), "acct", attempt_id="attempt-3")

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(self.credits(), 2)
        self.assertEqual(self.ledger.get_debit_status("attempt-3"), DEBIT_REFUNDED)
        self.assertEqual(self.store.list_for_account("acct"), [])

    def test_insufficient_credit_has_no_side_effect(self):
        self.ledger.grant("acct", credits=0, is_unlimited=False)
        extractor = FakeExtractor(self.SCENARIO_TEXT)
        service = self.make_service(extractor, FakeModelClient(reply=echo_profile_reply()))

        with self.assertRaises(InsufficientCredit):
            service.process(SOURCE, ProcessingOptions(), "acct", attempt_id="attempt-4")
        with self.assertRaises(InsufficientCredit):
            service.process(SOURCE, ProcessingOptions(), "stranger")

        self.assertEqual(self.credits(), 0)
        self.assertEqual(extractor.calls, [])
        self.assertIsNone(self.ledger.get_debit_status("attempt-4"))

    def test_unlimited_account_is_not_charged(self):
        self.ledger.grant("vip", plan_ref="unlimited-pack")
        service = self.make_service(FakeExtractor(self.SCENARIO_TEXT), FakeModelClient(reply=echo_profile_reply()))

        service.process(SOURCE, ProcessingOptions(), "vip")
        service.process(SOURCE, ProcessingOptions(), "vip")

        account = self.ledger.get_account("vip")
        self.assertTrue(account.is_unlimited)
        self.assertEqual(account.credits_left, 0)
        self.assertEqual(len(self.store.list_for_account("vip")), 2)

    def test_unexpected_error_refunds_then_propagates(self):
        self.ledger.grant("acct", credits=1)
        service = self.make_service(FakeExtractor(error=KeyError("boom")), FakeModelClient(reply=echo_profile_reply()))

        with self.assertRaises(KeyError):
            service.process(SOURCE, ProcessingOptions(), "acct")

        self.assertEqual(self.credits(), 1)

    def test_cancellation_after_debit_refunds(self):
        self.ledger.grant("acct", credits=1)
        service = self.make_service(
            FakeExtractor(error=KeyboardInterrupt()),
            FakeModelClient(reply=echo_profile_reply()),
        )

        with self.assertRaises(KeyboardInterrupt):
            service.process(SOURCE, ProcessingOptions(), "acct")

        self.assertEqual(self.credits(), 1)

    def test_unparseable_model_reply_keeps_raw_and_uses_text_fallback(self):
        self.ledger.grant("acct", credits=1)
        reply = "Sure! The candidate looks strong."
        service = self.make_service(FakeExtractor(self.SCENARIO_TEXT), FakeModelClient(reply=reply))

        outcome = service.process(SOURCE, ProcessingOptions(), "acct")

        self.assertTrue(outcome.used_fallback)
        self.assertIn(UNPARSED_WARNING, outcome.warning)
        self.assertEqual(outcome.record.raw_model_output, reply)
        self.assertEqual(outcome.record.contact_information.name, "John Smith")
        self.assertEqual(self.credits(), 0)

    def test_missing_score_is_filled_when_signal_present(self):
        self.ledger.grant("acct", credits=1)
        service = self.make_service(
            FakeExtractor(self.SCENARIO_TEXT),
            FakeModelClient(reply=echo_profile_reply(ats_score=None)),
        )

        outcome = service.process(SOURCE, ProcessingOptions(), "acct")

        self.assertEqual(outcome.record.analysis.ats_score, 60)

    def test_model_profile_without_name_passes_on_text_signal(self):
        self.ledger.grant("acct", credits=1)
        service = self.make_service(
            FakeExtractor("Dana Scully\nMD, Medical Degree\nForensic pathology"),
            FakeModelClient(reply=echo_profile_reply(name=None, education=False, ats_score=None)),
        )

        outcome = service.process(SOURCE, ProcessingOptions(), "acct")

        self.assertEqual(outcome.record.contact_information.name, "NA")
        self.assertEqual(outcome.record.analysis.ats_score, 60)

    def test_reconcile_settles_persisted_and_refunds_orphaned_holds(self):
        self.ledger.grant("acct", credits=3)
        service = self.make_service(FakeExtractor(self.SCENARIO_TEXT), FakeModelClient(reply=echo_profile_reply()))
        outcome = service.process(SOURCE, ProcessingOptions(), "acct", attempt_id="persisted")
        orphan = self.ledger.debit("acct", debit_id="orphan")
        # Simulate a crash between persisting and settling.
        self.ledger.debit("acct", debit_id="crashed")
        record = outcome.record.model_copy(update={"id": None, "attempt_id": "crashed"})
        self.store.save(record)

        summary = service.reconcile_stale_debits(older_than_s=0)

        self.assertEqual(summary, {"settled": 1, "refunded": 1})
        self.assertEqual(self.ledger.get_debit_status(orphan.debit_id), DEBIT_REFUNDED)
        self.assertEqual(self.ledger.get_debit_status("crashed"), DEBIT_CONSUMED)
        self.assertEqual(self.credits(), 1)
        self.assertNotEqual(self.ledger.get_debit_status("persisted"), DEBIT_HELD)

    def test_inline_sources_are_stored_by_header(self):
        self.assertEqual(describe_source("data:application/pdf;base64,JVBERi0x"), "data:application/pdf;base64")
        self.assertEqual(describe_source(SOURCE), SOURCE)


if __name__ == "__main__":
    unittest.main()
