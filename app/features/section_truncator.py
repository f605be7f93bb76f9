from __future__ import annotations

import logging
import re
from typing import Mapping

from app.core.config import get_analysis_config_value

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "[Truncated]"

DEFAULT_SECTION_LIMITS: dict[str, int] = {
    "education": 1500,
    "qualification": 1000,
    "skills": 1500,
    "workExperience": 4000,
    "certifications": 800,
    "summary": 1000,
    "projects": 2000,
}

SECTION_HEADINGS: dict[str, tuple[str, ...]] = {
    "education": ("education", "academic background", "academic qualifications"),
    "qualification": ("qualifications", "qualification"),
    "skills": ("technical skills", "key skills", "core skills", "skills"),
    "workExperience": (
        "work experience",
        "professional experience",
        "employment history",
        "work history",
        "experience",
    ),
    "certifications": ("certifications", "certification", "licenses"),
    "summary": ("professional summary", "summary", "profile", "objective"),
    "projects": ("projects", "key projects"),
}


def _heading_pattern(aliases: tuple[str, ...]) -> re.Pattern[str]:
    ordered = sorted(aliases, key=len, reverse=True)
    alternation = "|".join(re.escape(alias) for alias in ordered)
    return re.compile(rf"^[ \t]*(?:{alternation})[ \t]*(?::|$)", re.IGNORECASE | re.MULTILINE)


_SECTION_PATTERNS = {name: _heading_pattern(aliases) for name, aliases in SECTION_HEADINGS.items()}
_ANY_HEADING_PATTERN = _heading_pattern(tuple(alias for aliases in SECTION_HEADINGS.values() for alias in aliases))


def get_section_limits() -> dict[str, int]:
    configured = get_analysis_config_value("truncation.limits", None)
    if not isinstance(configured, dict):
        return dict(DEFAULT_SECTION_LIMITS)
    limits: dict[str, int] = {}
    for name, default in DEFAULT_SECTION_LIMITS.items():
        try:
            limits[name] = max(1, int(configured.get(name, default)))
        except (TypeError, ValueError):
            limits[name] = default
    return limits


def _truncate_section(text: str, section: str, max_chars: int) -> str:
    pattern = _SECTION_PATTERNS.get(section)
    if pattern is None:
        return text
    heading = pattern.search(text)
    if heading is None:
        return text

    content_start = heading.end()
    keep_end = content_start + max_chars
    if text.startswith(TRUNCATION_MARKER, keep_end):
        return text

    window_end = min(len(text), content_start + 2 * max_chars)
    next_heading = _ANY_HEADING_PATTERN.search(text, content_start)
    ends_at_heading = next_heading is not None and next_heading.start() <= window_end
    body_end = next_heading.start() if ends_at_heading else window_end
    if body_end - content_start <= max_chars:
        return text

    separator = "\n" if ends_at_heading else ""
    logger.debug("section_truncated section=%s kept=%s dropped=%s", section, max_chars, body_end - keep_end)
    return text[:keep_end] + TRUNCATION_MARKER + separator + text[body_end:]


def truncate_sections(text: str, limits: Mapping[str, int] | None = None) -> str:
    """Bound oversized resume sections, keeping each heading and its first `max_chars` characters.

    Sections are processed in the order of `limits` (the fixed table by default). A section
    body runs until the next recognised heading, looking at most twice its limit ahead.
    Already-truncated sections are left alone, so the transform is idempotent.
    """
    table = limits if limits is not None else get_section_limits()
    result = text or ""
    for section, max_chars in table.items():
        result = _truncate_section(result, section, int(max_chars))
    return result
