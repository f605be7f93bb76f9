from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SourceKind = Literal["url", "relative_url", "base64", "file_path"]


class OverlayWord(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0


class LineOverlay(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    words: tuple[OverlayWord, ...] = ()


class ExtractionMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    engine_id: int
    processing_time_ms: int = 0
    source_kind: SourceKind


class ExtractionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    metadata: ExtractionMetadata
    overlay: tuple[LineOverlay, ...] = ()


class ExtractionOptions(BaseModel):
    language: str = Field(default="eng", min_length=3, max_length=8)
    scale: bool = True
    table_mode: bool = True
    engine_id: int = Field(default=2, ge=1, le=3)


class OcrResponse(BaseModel):
    """OCR collaborator reply, normalised so that exit_code 0 means parsed."""

    parsed_text: str = ""
    exit_code: int = -1
    processing_time_ms: int = 0
    overlay: list[LineOverlay] = Field(default_factory=list)
    error_message: str | None = None
