from functools import lru_cache

from app.ai.config import load_ai_config
from app.ai.providers.openrouter_provider import OpenRouterProvider
from app.ai.types import AnalysisModelClient


@lru_cache(maxsize=1)
def get_analysis_client() -> AnalysisModelClient:
    cfg = load_ai_config()
    return OpenRouterProvider(
        api_key=cfg.api_key,
        base_url=cfg.base_url,
        timeout_s=cfg.timeout_s,
    )
