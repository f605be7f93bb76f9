from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Mapping, Protocol

from app.core.analysis_store import SqliteAnalysisRecordStore, get_analysis_store
from app.core.config import settings
from app.core.credit_ledger import CreditDebit, SqliteCreditLedger, get_credit_ledger
from app.core.errors import ExtractionFailed, InsufficientCredit, NoUsableContent
from app.features.resume_validator import ValidationVerdict, validate_resume_text
from app.features.section_truncator import get_section_limits, truncate_sections
from app.parsing.models import ExtractionOptions, ExtractionResult
from app.parsing.ocr import get_text_extractor
from app.parsing.sources import ExtractionError
from app.schemas.profile import AnalysisRecord, StructuredProfile
from app.services.analysis_service import (
    AnalysisRequest,
    AnalysisService,
    get_analysis_service,
    has_name_or_education_signal,
)

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "AI analysis was unavailable; a basic profile was generated from the document text."
UNPARSED_WARNING = "AI analysis returned an unreadable response; a basic profile was generated from the document text."


class TextExtractor(Protocol):
    def extract(self, source: str, options: ExtractionOptions | None = None) -> ExtractionResult:
        ...


class SagaState(str, enum.Enum):
    PENDING = "pending"
    DEBITED = "debited"
    EXTRACTED = "extracted"
    ANALYZED = "analyzed"
    PERSISTED = "persisted"
    REFUNDED = "refunded"


@dataclass(frozen=True)
class ProcessingOptions:
    extraction: ExtractionOptions = field(default_factory=ExtractionOptions)
    model_id: str | None = None
    prompt_override: str | None = None
    system_prompt_override: str | None = None


@dataclass(frozen=True)
class ProcessingOutcome:
    record: AnalysisRecord
    validation: ValidationVerdict
    warning: str | None = None

    @property
    def record_id(self) -> str | None:
        return self.record.id

    @property
    def used_fallback(self) -> bool:
        return self.record.used_fallback


def describe_source(source_uri: str) -> str:
    """Inline payloads are stored by their header only."""
    if source_uri.startswith("data:"):
        return source_uri.split(",", 1)[0]
    return source_uri


class ResumeProcessingService:
    """Runs one resume through extraction, validation, truncation and analysis.

    Every debit ends in exactly one of two ways: a persisted record (after which
    the debit is settled) or a refund. Any failure after the debit, including
    cancellation, takes the refund path before the error propagates.
    """

    def __init__(
        self,
        *,
        extractor: TextExtractor,
        analysis: AnalysisService,
        ledger: SqliteCreditLedger,
        store: SqliteAnalysisRecordStore,
        section_limits: Mapping[str, int] | None = None,
        stale_debit_seconds: int = 900,
    ):
        self._extractor = extractor
        self._analysis = analysis
        self._ledger = ledger
        self._store = store
        self._section_limits = dict(section_limits) if section_limits is not None else get_section_limits()
        self._stale_debit_seconds = stale_debit_seconds

    def process(
        self,
        source_uri: str,
        options: ProcessingOptions | None,
        account_id: str,
        *,
        attempt_id: str | None = None,
    ) -> ProcessingOutcome:
        options = options or ProcessingOptions()
        attempt_id = attempt_id or uuid.uuid4().hex

        account = self._ledger.get_account(account_id)
        if account is None or not account.has_credit:
            logger.info("processing_rejected account=%s reason=insufficient_credit", account_id)
            raise InsufficientCredit("No analysis credits left. Purchase a plan to continue.")

        debit = self._ledger.debit(account_id, debit_id=attempt_id)
        state = SagaState.DEBITED
        logger.info("processing_state account=%s attempt=%s state=%s", account_id, attempt_id, state.value)

        try:
            outcome = self._run_pipeline(source_uri, options, debit)
        except ExtractionError as exc:
            self._refund(debit, reason=exc.reason)
            raise ExtractionFailed(f"Could not extract text from the document: {exc}") from exc
        except NoUsableContent:
            self._refund(debit, reason="no_usable_content")
            raise
        except BaseException as exc:
            self._refund(debit, reason=exc.__class__.__name__)
            raise

        self._ledger.settle(debit)
        logger.info(
            "processing_state account=%s attempt=%s state=%s record=%s",
            account_id,
            attempt_id,
            SagaState.PERSISTED.value,
            outcome.record_id,
        )
        return outcome

    def _run_pipeline(self, source_uri: str, options: ProcessingOptions, debit: CreditDebit) -> ProcessingOutcome:
        extraction = self._extractor.extract(source_uri, options.extraction)
        text = extraction.text
        logger.info(
            "processing_state attempt=%s state=%s source_kind=%s text_len=%s",
            debit.debit_id,
            SagaState.EXTRACTED.value,
            extraction.metadata.source_kind,
            len(text),
        )

        warnings: list[str] = []
        verdict = validate_resume_text(text)
        if not verdict.is_resume:
            logger.info("processing_not_resume attempt=%s score=%s", debit.debit_id, verdict.score)

        truncated = truncate_sections(text, self._section_limits)
        result = self._analysis.analyze(
            AnalysisRequest(
                text=truncated,
                model_id=options.model_id or self._analysis.default_model,
                prompt_override=options.prompt_override,
                system_prompt_override=options.system_prompt_override,
            )
        )
        logger.info(
            "processing_state attempt=%s state=%s model=%s fallback=%s",
            debit.debit_id,
            SagaState.ANALYZED.value,
            result.model_id,
            result.used_fallback,
        )

        structured: StructuredProfile
        if result.structured is None:
            structured = self._analysis.fallback_profile(text)
            warnings.append(UNPARSED_WARNING)
        else:
            structured = result.structured
            if result.used_fallback:
                warnings.append(FALLBACK_WARNING)

        signal = has_name_or_education_signal(text)
        if structured.analysis.ats_score is None and signal:
            structured = structured.model_copy(
                update={
                    "analysis": structured.analysis.model_copy(
                        update={"ats_score": self._analysis.defensive_ats_score}
                    )
                }
            )

        if not (structured.has_contact_name or structured.education or signal):
            raise NoUsableContent(
                "No resume details could be read from this document. Please upload a clearer copy."
            )

        record = AnalysisRecord.from_profile(
            structured,
            account_id=debit.account_id,
            plan_ref=debit.plan_ref,
            source_uri=describe_source(source_uri),
            attempt_id=debit.debit_id,
            model_id=result.model_id,
            used_fallback=result.used_fallback,
            raw_model_output=result.raw,
        )
        record_id = self._store.save(record)
        return ProcessingOutcome(
            record=record.model_copy(update={"id": record_id}),
            validation=verdict,
            warning=" ".join(warnings) or None,
        )

    def _refund(self, debit: CreditDebit, *, reason: str) -> None:
        try:
            self._ledger.refund(debit)
        except Exception:
            # The hold stays open and is picked up by reconcile_stale_debits.
            logger.exception("processing_refund_failed account=%s attempt=%s", debit.account_id, debit.debit_id)
            return
        logger.info(
            "processing_state account=%s attempt=%s state=%s reason=%s",
            debit.account_id,
            debit.debit_id,
            SagaState.REFUNDED.value,
            reason,
        )

    def reconcile_stale_debits(self, older_than_s: float | None = None) -> dict[str, int]:
        """Resolve holds left open by a crash: settle if the record exists, refund otherwise."""
        age = self._stale_debit_seconds if older_than_s is None else older_than_s
        settled = refunded = 0
        for debit in self._ledger.list_stale_debits(age):
            if self._store.find_by_attempt(debit.debit_id) is not None:
                if self._ledger.settle(debit):
                    settled += 1
            elif self._ledger.refund(debit):
                refunded += 1
        if settled or refunded:
            logger.warning("credit_reconcile settled=%s refunded=%s", settled, refunded)
        return {"settled": settled, "refunded": refunded}


@lru_cache(maxsize=1)
def get_processing_service() -> ResumeProcessingService:
    return ResumeProcessingService(
        extractor=get_text_extractor(),
        analysis=get_analysis_service(),
        ledger=get_credit_ledger(),
        store=get_analysis_store(),
        stale_debit_seconds=settings.stale_debit_seconds,
    )
