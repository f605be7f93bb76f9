from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable

from app.ai.factory import get_analysis_client
from app.ai.prompts import (
    ModelProfile,
    PromptContext,
    bind_prompt,
    build_analysis_messages,
    build_model_profiles,
    resolve_profile,
)
from app.ai.types import AnalysisModelClient
from app.core.config import get_analysis_config_value, settings
from app.schemas.profile import (
    ContactInformation,
    NA,
    ProfileAnalysis,
    StructuredProfile,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 4000
DEFAULT_DEFENSIVE_ATS_SCORE = 60
DEFAULT_FALLBACK_MODELS = (
    "meta-llama/llama-4-maverick:free",
    "deepseek/deepseek-v3-base:free",
    "mistralai/mistral-small-3.1-24b-instruct:free",
)
FALLBACK_SUMMARY = "Could not generate detailed analysis. Please try again later."

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_PHONE_RE = re.compile(r"(?:\+\d{1,3}[ -]?)?\(?\d{3}\)?[ -]?\d{3}[ -]?\d{4}")
_EDUCATION_RE = re.compile(
    r"(?<![A-Za-z])(?:bachelor'?s?|master'?s?|b\.?sc|m\.?sc|b\.?tech|m\.?tech|b\.?eng|m\.?eng|mba|ph\.?d|"
    r"doctorate|degree|diploma|university|college|education|graduated|graduation)(?![A-Za-z])",
    re.IGNORECASE,
)
_FENCED_BLOCK_RE = re.compile(r"```[A-Za-z]*\s*\n?(.*?)```", re.DOTALL)
_LEADING_FENCE_RE = re.compile(r"^\s*```[A-Za-z]*\s*")
_TRAILING_FENCE_RE = re.compile(r"\s*```\s*$")

NAME_SCAN_LINES = 5


@dataclass(frozen=True)
class AnalysisRequest:
    text: str
    model_id: str
    prompt_override: str | None = None
    system_prompt_override: str | None = None


@dataclass(frozen=True)
class AnalysisResult:
    structured: StructuredProfile | None
    raw: str
    used_fallback: bool
    model_id: str
    error: str | None = None


def find_candidate_name(text: str) -> str | None:
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    for line in lines[:NAME_SCAN_LINES]:
        if "@" in line or line[0].isdigit():
            continue
        if 3 <= len(line) <= 40:
            return line
    return None


def has_education_keyword(text: str) -> bool:
    return bool(_EDUCATION_RE.search(text or ""))


def has_name_or_education_signal(text: str) -> bool:
    return find_candidate_name(text) is not None or has_education_keyword(text)


def build_fallback_profile(text: str, *, neutral_score: int = DEFAULT_DEFENSIVE_ATS_SCORE) -> StructuredProfile:
    """Deterministic profile built from regex matches alone, used when the model cannot help."""
    source = text or ""
    email = _EMAIL_RE.search(source)
    phone = _PHONE_RE.search(source)
    name = find_candidate_name(source)
    score = neutral_score if (name is not None or has_education_keyword(source)) else 0
    return StructuredProfile(
        contact_information=ContactInformation(
            name=name or NA,
            email=email.group(0) if email else NA,
            phone=phone.group(0) if phone else NA,
        ),
        summary=FALLBACK_SUMMARY,
        analysis=ProfileAnalysis(
            strengths=["Resume was successfully parsed"],
            areas_for_improvement=["Consider trying analysis again later"],
            keywords=[],
            ats_score=score,
        ),
    )


def strip_code_fences(raw: str) -> str:
    text = (raw or "").strip()
    block = _FENCED_BLOCK_RE.search(text)
    if block:
        return block.group(1).strip()
    text = _LEADING_FENCE_RE.sub("", text)
    text = _TRAILING_FENCE_RE.sub("", text)
    return text.strip()


def parse_structured_profile(raw: str) -> StructuredProfile:
    payload: Any = json.loads(strip_code_fences(raw))
    if not isinstance(payload, dict):
        raise ValueError("analysis payload must be a JSON object")
    return StructuredProfile.model_validate(payload)


class AnalysisService:
    def __init__(
        self,
        client: AnalysisModelClient,
        *,
        profiles: Iterable[ModelProfile] = (),
        default_model: str = DEFAULT_FALLBACK_MODELS[0],
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        fallback_models: Iterable[str] = DEFAULT_FALLBACK_MODELS,
        defensive_ats_score: int = DEFAULT_DEFENSIVE_ATS_SCORE,
    ):
        self._client = client
        self._profiles = tuple(profiles)
        self._default_model = default_model
        self._max_output_tokens = max_output_tokens
        self._fallback_models = tuple(fallback_models)
        self.defensive_ats_score = defensive_ats_score

    @classmethod
    def from_config(cls, client: AnalysisModelClient) -> "AnalysisService":
        fallback_models = get_analysis_config_value("fallback_models", None)
        if not isinstance(fallback_models, list) or not fallback_models:
            fallback_models = list(DEFAULT_FALLBACK_MODELS)
        return cls(
            client,
            profiles=build_model_profiles(get_analysis_config_value("families", [])),
            default_model=settings.analysis_model
            or str(get_analysis_config_value("default_model", DEFAULT_FALLBACK_MODELS[0])),
            max_output_tokens=int(get_analysis_config_value("max_output_tokens", DEFAULT_MAX_OUTPUT_TOKENS)),
            fallback_models=[str(model) for model in fallback_models],
            defensive_ats_score=int(
                get_analysis_config_value("scoring.defensive_ats_score", DEFAULT_DEFENSIVE_ATS_SCORE)
            ),
        )

    @property
    def default_model(self) -> str:
        return self._default_model

    def available_models(self) -> list[str]:
        return list(self._fallback_models)

    def select_profile(self, model_id: str) -> ModelProfile:
        return resolve_profile(model_id, self._profiles)

    def build_prompts(self, request: AnalysisRequest) -> tuple[str, str, float]:
        model_id = request.model_id or self._default_model
        profile = self.select_profile(model_id)
        system_prompt = request.system_prompt_override or profile.system_prompt
        template = request.prompt_override or profile.user_template
        user_prompt = bind_prompt(template, PromptContext(resume_text=request.text, model_id=model_id))
        return system_prompt, user_prompt, profile.temperature

    def fallback_profile(self, text: str) -> StructuredProfile:
        return build_fallback_profile(text, neutral_score=self.defensive_ats_score)

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        model_id = request.model_id or self._default_model
        system_prompt, user_prompt, temperature = self.build_prompts(request)
        logger.debug(
            "analysis_prompt_selected model=%s family=%s temperature=%s prompt_len=%s",
            model_id,
            self.select_profile(model_id).family,
            temperature,
            len(user_prompt),
        )

        started = time.perf_counter()
        try:
            raw = self._client.complete(
                build_analysis_messages(system_prompt, user_prompt),
                model=model_id,
                temperature=temperature,
                max_tokens=self._max_output_tokens,
            )
        except Exception as exc:  # noqa: BLE001 - deterministic fallback is expected
            logger.warning(
                "analysis_model_failed model=%s text_len=%s latency_ms=%s: %s",
                model_id,
                len(request.text),
                int((time.perf_counter() - started) * 1000),
                exc,
            )
            return self._fallback_result(request.text, model_id, str(exc) or exc.__class__.__name__)

        try:
            structured = parse_structured_profile(raw)
        except Exception as exc:  # noqa: BLE001 - unreadable output falls back to the text profile
            logger.warning("analysis_parse_failed model=%s raw_len=%s: %s", model_id, len(raw), exc)
            return AnalysisResult(
                structured=None,
                raw=raw,
                used_fallback=True,
                model_id=model_id,
                error=f"Analysis response was not valid JSON: {exc}",
            )

        logger.info(
            "analysis_model_ok model=%s latency_ms=%s",
            model_id,
            int((time.perf_counter() - started) * 1000),
        )
        return AnalysisResult(structured=structured, raw=raw, used_fallback=False, model_id=model_id)

    def _fallback_result(self, text: str, model_id: str, reason: str) -> AnalysisResult:
        profile = self.fallback_profile(text)
        return AnalysisResult(
            structured=profile,
            raw=json.dumps(profile.to_payload(), ensure_ascii=False),
            used_fallback=True,
            model_id=model_id,
            error=reason,
        )


@lru_cache(maxsize=1)
def get_analysis_service() -> AnalysisService:
    return AnalysisService.from_config(get_analysis_client())
