import asyncio
import logging

from fastapi import APIRouter, Header, HTTPException, Query, Request, status

from app.core.analysis_store import get_analysis_store
from app.core.errors import ProcessingError
from app.core.rate_limit import rate_limit
from app.core.security import check_api_key, require_account_id
from app.features.resume_validator import validate_resume_text
from app.parsing.ocr import get_text_extractor
from app.parsing.sources import ExtractionError
from app.schemas.resume import (
    ExtractionRequest,
    ExtractionResponse,
    HistoryItem,
    HistoryResponse,
    ResumeProcessData,
    ResumeProcessRequest,
    ResumeProcessResponse,
)
from app.services.processing_service import ProcessingOptions, get_processing_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _raise_processing_error(exc: ProcessingError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc


@router.post("/resume/process", response_model=ResumeProcessResponse)
@rate_limit()
async def process_resume(
    request: Request,
    payload: ResumeProcessRequest,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
):
    _ = request
    check_api_key(x_api_key)
    account_id = require_account_id(x_account_id)
    options = ProcessingOptions(
        extraction=payload.extraction_options(),
        model_id=payload.model,
        prompt_override=payload.prompt,
        system_prompt_override=payload.system_prompt,
    )
    service = get_processing_service()
    # The worker thread finishes the run even if the client goes away, so the debit is always resolved.
    try:
        outcome = await asyncio.to_thread(service.process, payload.url, options, account_id)
    except ProcessingError as exc:
        _raise_processing_error(exc)

    return ResumeProcessResponse(
        success=True,
        data=ResumeProcessData(
            record=outcome.record.model_dump(mode="json", by_alias=True),
            warning=outcome.warning,
            validation=outcome.validation,
        ),
        resume_analysis_id=outcome.record_id,
    )


@router.post("/resume/extract-text", response_model=ExtractionResponse)
@rate_limit()
async def extract_resume_text(
    request: Request,
    payload: ExtractionRequest,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    _ = request
    check_api_key(x_api_key)
    extractor = get_text_extractor()
    try:
        result = await asyncio.to_thread(extractor.extract, payload.url, payload.extraction_options())
    except ExtractionError as exc:
        logger.warning("resume_extract_failed reason=%s: %s", exc.reason, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": exc.reason, "message": str(exc)},
        ) from exc

    return ExtractionResponse(
        text=result.text,
        engine_id=result.metadata.engine_id,
        processing_time_ms=result.metadata.processing_time_ms,
        source_kind=result.metadata.source_kind,
        overlay=list(result.overlay),
        validation=validate_resume_text(result.text),
    )


@router.get("/resume/history", response_model=HistoryResponse)
async def resume_history(
    limit: int = Query(default=20, ge=1, le=100),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
):
    check_api_key(x_api_key)
    account_id = require_account_id(x_account_id)
    records = get_analysis_store().list_for_account(account_id, limit=limit)
    return HistoryResponse(
        items=[
            HistoryItem(
                id=record.id or "",
                source_uri=record.source_uri,
                name=record.contact_information.name,
                ats_score=record.analysis.ats_score,
                model_id=record.model_id,
                used_fallback=record.used_fallback,
                created_at=record.created_at,
            )
            for record in records
        ]
    )


@router.get("/resume/history/{record_id}")
async def resume_history_item(
    record_id: str,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
):
    check_api_key(x_api_key)
    account_id = require_account_id(x_account_id)
    record = get_analysis_store().get(record_id, account_id=account_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis not found.")
    return {"success": True, "data": record.model_dump(mode="json", by_alias=True)}
