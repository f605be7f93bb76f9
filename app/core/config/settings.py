from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env(name, None)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str]) -> tuple[str, ...]:
    raw = _get_env(name, None)
    if raw is None:
        return tuple(default)
    values = [item.strip() for item in raw.split(",")]
    clean = [item for item in values if item]
    return tuple(clean) if clean else tuple(default)


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    rate_limit: str
    rate_limit_enabled: bool
    log_level: str
    sentry_dsn: str | None
    cors_allowed_origins: tuple[str, ...]
    api_base_url: str
    ocr_space_api_key: str | None
    ocr_space_endpoint: str
    ocr_timeout_s: float
    ocr_max_download_bytes: int
    ocr_allow_private_urls: bool
    openrouter_api_key: str | None
    openrouter_base_url: str
    analysis_model: str | None
    analysis_timeout_s: float
    credits_db_path: str
    analysis_db_path: str
    stale_debit_seconds: int


settings = Settings(
    api_key=_get_env("API_KEY"),
    rate_limit=_get_env("RATE_LIMIT", "30/minute") or "30/minute",
    rate_limit_enabled=_get_env_bool("RATE_LIMIT_ENABLED", True),
    log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
    sentry_dsn=_get_env("SENTRY_DSN"),
    cors_allowed_origins=_get_env_list(
        "CORS_ALLOWED_ORIGINS",
        [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ],
    ),
    api_base_url=(_get_env("API_BASE_URL", "http://localhost:5000") or "http://localhost:5000").rstrip("/"),
    ocr_space_api_key=_get_env("OCR_SPACE_API_KEY"),
    ocr_space_endpoint=_get_env("OCR_SPACE_ENDPOINT", "https://api.ocr.space/parse/image")
    or "https://api.ocr.space/parse/image",
    ocr_timeout_s=_get_env_float("OCR_TIMEOUT_S", 30.0),
    ocr_max_download_bytes=_get_env_int("OCR_MAX_DOWNLOAD_BYTES", 10 * 1024 * 1024),
    ocr_allow_private_urls=_get_env_bool("OCR_ALLOW_PRIVATE_URLS", False),
    openrouter_api_key=_get_env("OPENROUTER_API_KEY"),
    openrouter_base_url=_get_env("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    or "https://openrouter.ai/api/v1",
    analysis_model=_get_env("ANALYSIS_MODEL"),
    analysis_timeout_s=_get_env_float("ANALYSIS_TIMEOUT_S", 60.0),
    credits_db_path=_get_env("CREDITS_DB_PATH", "data/credits.db") or "data/credits.db",
    analysis_db_path=_get_env("ANALYSIS_DB_PATH", "data/resume_analysis.db") or "data/resume_analysis.db",
    stale_debit_seconds=_get_env_int("STALE_DEBIT_SECONDS", 900),
)

if settings.ocr_max_download_bytes <= 0:
    raise RuntimeError("OCR_MAX_DOWNLOAD_BYTES must be a positive integer.")
