from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.features.resume_validator import ValidationVerdict
from app.parsing.models import ExtractionOptions, LineOverlay


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ExtractionRequest(_CamelModel):
    url: str = Field(min_length=1, max_length=15_000_000)
    language: str = Field(default="eng", min_length=3, max_length=8)
    scale: bool = True
    is_table: bool = Field(default=True, alias="isTable")
    engine: int = Field(default=2, ge=1, le=3)

    def extraction_options(self) -> ExtractionOptions:
        return ExtractionOptions(
            language=self.language,
            scale=self.scale,
            table_mode=self.is_table,
            engine_id=self.engine,
        )


class ResumeProcessRequest(ExtractionRequest):
    model: str | None = Field(default=None, max_length=200)
    prompt: str | None = Field(default=None, max_length=20000)
    system_prompt: str | None = Field(default=None, alias="systemPrompt", max_length=20000)


class ResumeProcessData(_CamelModel):
    record: dict[str, Any]
    warning: str | None = None
    validation: ValidationVerdict


class ResumeProcessResponse(_CamelModel):
    success: bool = True
    data: ResumeProcessData
    resume_analysis_id: str | None = Field(default=None, alias="resumeAnalysisId")


class ExtractionResponse(_CamelModel):
    success: bool = True
    text: str
    engine_id: int = Field(alias="engineId")
    processing_time_ms: int = Field(alias="processingTimeMs")
    source_kind: str = Field(alias="sourceKind")
    overlay: list[LineOverlay] = Field(default_factory=list)
    validation: ValidationVerdict


class HistoryItem(_CamelModel):
    id: str
    source_uri: str = Field(alias="sourceUri")
    name: str
    ats_score: int | None = Field(default=None, alias="atsScore")
    model_id: str | None = Field(default=None, alias="modelId")
    used_fallback: bool = Field(default=False, alias="usedFallback")
    created_at: datetime = Field(alias="createdAt")


class HistoryResponse(_CamelModel):
    success: bool = True
    items: list[HistoryItem] = Field(default_factory=list)


class CreditsResponse(_CamelModel):
    account_id: str = Field(alias="accountId")
    plan_ref: str | None = Field(default=None, alias="planRef")
    credits_left: int = Field(alias="creditsLeft")
    is_unlimited: bool = Field(alias="isUnlimited")
