from __future__ import annotations

from typing import Any, Optional, Sequence

from openai import APITimeoutError, OpenAI, OpenAIError

from app.ai.types import AnalysisModelError, ChatMessage


class OpenRouterProvider:
    """Chat completions against an OpenAI-compatible endpoint (OpenRouter by default)."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        timeout_s: float = 60.0,
        app_url: str = "https://resumezen.com",
        app_title: str = "ResumeZen AI Analysis",
        client: Any = None,
    ):
        self._api_key = (api_key or "").strip()
        self._base_url = base_url
        self._timeout_s = timeout_s
        self._headers = {"HTTP-Referer": app_url, "X-Title": app_title}
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise AnalysisModelError("OPENROUTER_API_KEY is missing", code="model_not_configured")
        # Retries belong to the caller; a failed call degrades to the fallback profile.
        self._client = OpenAI(
            api_key=self._api_key,
            base_url=self._base_url,
            timeout=self._timeout_s,
            max_retries=0,
            default_headers=self._headers,
        )
        return self._client

    def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        payload = [{"role": m.role, "content": m.content} for m in messages]
        try:
            response = self._get_client().chat.completions.create(
                model=model,
                messages=payload,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except APITimeoutError as exc:
            raise AnalysisModelError(f"Analysis model timed out: {exc}", code="model_timeout") from exc
        except OpenAIError as exc:
            raise AnalysisModelError(f"Analysis model request failed: {exc}", code="model_error") from exc

        choices = getattr(response, "choices", None)
        if not choices:
            raise AnalysisModelError("Missing choices in analysis model response", code="empty_choices")
        message = getattr(choices[0], "message", None)
        if message is None:
            raise AnalysisModelError("Missing message in analysis model response choice", code="missing_message")
        content = getattr(message, "content", None)
        if not content or not str(content).strip():
            raise AnalysisModelError("Missing content in analysis model response message", code="missing_content")
        return str(content)
