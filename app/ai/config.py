from dataclasses import dataclass

from app.core.config import settings


@dataclass(frozen=True)
class AIConfig:
    api_key: str | None
    base_url: str
    timeout_s: float


def load_ai_config() -> AIConfig:
    return AIConfig(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        timeout_s=settings.analysis_timeout_s,
    )
