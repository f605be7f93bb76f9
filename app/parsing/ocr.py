from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol

import httpx

from app.core.config import settings

from .models import (
    ExtractionMetadata,
    ExtractionOptions,
    ExtractionResult,
    LineOverlay,
    OcrResponse,
    OverlayWord,
)
from .sources import (
    ExtractionError,
    classify_source,
    downloaded_source,
    host_is_private_or_local,
    normalize_download_url,
    normalize_public_url,
    resolve_relative_url,
)

logger = logging.getLogger(__name__)

# OCR.space: 1 = parsed, 2 = parsed with some pages failing.
_OCR_SPACE_SUCCESS_CODES = {1, 2}


class OcrClient(Protocol):
    def parse(
        self,
        *,
        options: ExtractionOptions,
        file_path: Path | None = None,
        base64_payload: str | None = None,
    ) -> OcrResponse: ...


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _error_text(value: Any) -> str | None:
    if isinstance(value, list):
        parts = [str(item).strip() for item in value if str(item).strip()]
        return "; ".join(parts) or None
    text = str(value or "").strip()
    return text or None


def _overlay_lines(parsed_result: dict[str, Any]) -> list[LineOverlay]:
    overlay = parsed_result.get("TextOverlay") or {}
    lines: list[LineOverlay] = []
    for line in overlay.get("Lines") or []:
        words = tuple(
            OverlayWord(
                text=str(word.get("WordText") or ""),
                left=_as_float(word.get("Left")),
                top=_as_float(word.get("Top")),
                width=_as_float(word.get("Width")),
                height=_as_float(word.get("Height")),
            )
            for word in line.get("Words") or []
        )
        lines.append(LineOverlay(text=str(line.get("LineText") or ""), words=words))
    return lines


def normalize_ocr_payload(payload: dict[str, Any]) -> OcrResponse:
    """Map an OCR.space reply onto OcrResponse; pages are joined with newlines in source order."""
    parsed_results = payload.get("ParsedResults") or []
    raw_exit_code = _as_int(payload.get("OCRExitCode"), default=-1)
    errored = bool(payload.get("IsErroredOnProcessing"))
    exit_code = 0 if raw_exit_code in _OCR_SPACE_SUCCESS_CODES and not errored else max(raw_exit_code, 1)
    text = "\n".join(str(result.get("ParsedText") or "") for result in parsed_results)
    overlay = _overlay_lines(parsed_results[0]) if parsed_results else []
    return OcrResponse(
        parsed_text=text,
        exit_code=exit_code,
        processing_time_ms=_as_int(payload.get("ProcessingTimeInMilliseconds")),
        overlay=overlay,
        error_message=_error_text(payload.get("ErrorMessage")),
    )


class OcrSpaceClient:
    def __init__(
        self,
        *,
        api_key: str | None,
        endpoint: str,
        timeout_s: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._api_key = (api_key or "").strip()
        self._endpoint = endpoint
        self._timeout_s = timeout_s
        self._transport = transport

    def parse(
        self,
        *,
        options: ExtractionOptions,
        file_path: Path | None = None,
        base64_payload: str | None = None,
    ) -> OcrResponse:
        if not self._api_key:
            raise ExtractionError(
                "OCR API key is not configured. Set OCR_SPACE_API_KEY.",
                reason="ocr_not_configured",
            )
        form = {
            "apikey": self._api_key,
            "language": options.language,
            "OCREngine": str(options.engine_id),
            "scale": "true" if options.scale else "false",
            "isTable": "true" if options.table_mode else "false",
            "isOverlayRequired": "true",
        }
        try:
            with httpx.Client(timeout=self._timeout_s, transport=self._transport) as client:
                if file_path is not None:
                    with file_path.open("rb") as handle:
                        response = client.post(
                            self._endpoint,
                            data=form,
                            files={"file": (file_path.name, handle)},
                        )
                elif base64_payload is not None:
                    response = client.post(self._endpoint, data={**form, "base64Image": base64_payload})
                else:
                    raise ExtractionError("No document payload supplied to OCR.", reason="empty_source")
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise ExtractionError("OCR service timed out.", reason="ocr_timeout") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"OCR service request failed: {exc}", reason="ocr_unreachable") from exc
        except ValueError as exc:
            raise ExtractionError("OCR service returned a malformed response.", reason="ocr_malformed") from exc

        if isinstance(payload, str):
            # OCR.space answers quota and auth problems with a bare JSON string.
            raise ExtractionError(f"OCR service rejected the request: {payload}", reason="ocr_rejected")
        if not isinstance(payload, dict):
            raise ExtractionError("OCR service returned a malformed response.", reason="ocr_malformed")
        return normalize_ocr_payload(payload)


class OcrTextExtractor:
    def __init__(
        self,
        client: OcrClient,
        *,
        api_base_url: str,
        timeout_s: float = 30.0,
        max_download_bytes: int = 10 * 1024 * 1024,
        allow_private_urls: bool = False,
        download_transport: httpx.BaseTransport | None = None,
    ):
        self._client = client
        self._api_base_url = api_base_url
        self._timeout_s = timeout_s
        self._max_download_bytes = max_download_bytes
        self._allow_private_urls = allow_private_urls
        self._download_transport = download_transport

    def extract(self, source: str, options: ExtractionOptions | None = None) -> ExtractionResult:
        opts = options or ExtractionOptions()
        kind = classify_source(source)
        logger.info(
            "ocr_extract_started kind=%s engine=%s language=%s table=%s",
            kind,
            opts.engine_id,
            opts.language,
            opts.table_mode,
        )

        if kind in {"url", "relative_url"}:
            url = self._remote_url(source.strip(), kind)
            with downloaded_source(
                url,
                timeout_s=self._timeout_s,
                max_bytes=self._max_download_bytes,
                transport=self._download_transport,
            ) as temp_path:
                response = self._client.parse(options=opts, file_path=temp_path)
        elif kind == "base64":
            response = self._client.parse(options=opts, base64_payload=source.strip())
        else:
            response = self._client.parse(options=opts, file_path=Path(source.strip()))

        return self._to_result(response, kind=kind, options=opts)

    def _remote_url(self, source: str, kind: str) -> str:
        if kind == "relative_url":
            return resolve_relative_url(source, self._api_base_url)
        normalized, hostname = normalize_public_url(normalize_download_url(source))
        if not self._allow_private_urls and host_is_private_or_local(hostname):
            raise ExtractionError(
                "Private or local URLs are not allowed for document extraction.",
                reason="private_source",
            )
        return normalized

    @staticmethod
    def _to_result(response: OcrResponse, *, kind: str, options: ExtractionOptions) -> ExtractionResult:
        if response.exit_code != 0:
            detail = response.error_message or f"exit code {response.exit_code}"
            logger.warning("ocr_extract_failed kind=%s detail=%s", kind, detail)
            raise ExtractionError(f"OCR could not process the document: {detail}", reason="ocr_failed")
        text = response.parsed_text.strip()
        if not text:
            logger.warning("ocr_extract_empty kind=%s", kind)
            raise ExtractionError("OCR returned no readable text.", reason="empty_text")
        logger.info(
            "ocr_extract_ok kind=%s chars=%s processing_ms=%s",
            kind,
            len(text),
            response.processing_time_ms,
        )
        return ExtractionResult(
            text=text,
            metadata=ExtractionMetadata(
                engine_id=options.engine_id,
                processing_time_ms=response.processing_time_ms,
                source_kind=kind,
            ),
            overlay=tuple(response.overlay),
        )


@lru_cache(maxsize=1)
def get_text_extractor() -> OcrTextExtractor:
    client = OcrSpaceClient(
        api_key=settings.ocr_space_api_key,
        endpoint=settings.ocr_space_endpoint,
        timeout_s=settings.ocr_timeout_s,
    )
    return OcrTextExtractor(
        client,
        api_base_url=settings.api_base_url,
        timeout_s=settings.ocr_timeout_s,
        max_download_bytes=settings.ocr_max_download_bytes,
        allow_private_urls=settings.ocr_allow_private_urls,
    )
