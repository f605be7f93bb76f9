from __future__ import annotations

import re
from dataclasses import dataclass
from functools import reduce
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

RESUME_SCORE_THRESHOLD = 40

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_PHONE_RE = re.compile(r"(?:\+?\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}")
_CONTACT_KEYWORD_RE = re.compile(r"\b(?:contact|phone|mobile|e-?mail|address|tel)\b", re.IGNORECASE)

SECTION_VOCABULARY: tuple[str, ...] = (
    "experience",
    "work history",
    "employment",
    "education",
    "skills",
    "summary",
    "objective",
    "profile",
    "certifications",
    "projects",
    "achievements",
    "awards",
    "languages",
    "interests",
    "references",
    "qualifications",
    "volunteer",
    "publications",
    "training",
    "internship",
)

_SECTION_PATTERNS = tuple(
    (section, re.compile(rf"\b{re.escape(section)}\b", re.IGNORECASE)) for section in SECTION_VOCABULARY
)

NEGATIVE_SIGNALS: tuple[tuple[str, re.Pattern[str], str], ...] = (
    (
        "invoice",
        re.compile(r"\b(?:invoice(?:\s+(?:no|number|#))?|bill\s+to|amount\s+due|subtotal|payment\s+terms)\b", re.IGNORECASE),
        "Document looks like an invoice",
    ),
    (
        "cover_letter",
        re.compile(r"\b(?:dear\s+(?:hiring\s+manager|sir|madam|recruiter)|cover\s+letter|yours\s+sincerely|i\s+am\s+writing\s+to\s+apply)\b", re.IGNORECASE),
        "Document looks like a cover letter",
    ),
    (
        "contract",
        re.compile(r"\b(?:hereinafter|whereas|this\s+agreement|terms\s+and\s+conditions|the\s+parties\s+agree)\b", re.IGNORECASE),
        "Document looks like a contract or agreement",
    ),
    (
        "story",
        re.compile(r"\b(?:once\s+upon\s+a\s+time|chapter\s+\d+|happily\s+ever\s+after)\b", re.IGNORECASE),
        "Document looks like a story",
    ),
    (
        "essay",
        re.compile(r"\b(?:in\s+conclusion|this\s+essay|thesis\s+statement|in\s+this\s+essay)\b", re.IGNORECASE),
        "Document looks like an essay",
    ),
    (
        "report",
        re.compile(r"\b(?:table\s+of\s+contents|executive\s+summary|key\s+findings|methodology)\b", re.IGNORECASE),
        "Document looks like a report",
    ),
    (
        "assignment",
        re.compile(r"\b(?:assignment\s+(?:no|\d+)|submitted\s+to|submitted\s+by|course\s+code|roll\s+(?:no|number))\b", re.IGNORECASE),
        "Document looks like an academic assignment",
    ),
    (
        "presentation",
        re.compile(r"\b(?:slide\s+\d+|thank\s+you\s+for\s+your\s+attention|any\s+questions\?)", re.IGNORECASE),
        "Document looks like a presentation",
    ),
)

_TABLE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*\|?\s*:?-{3,}:?\s*(?:\|\s*:?-{3,}:?\s*)+\|?\s*$", re.MULTILINE),
    re.compile(r"^\s*\|[^|\n]+\|[^|\n]+\|", re.MULTILINE),
    re.compile(r"\+[-=]{3,}\+"),
    re.compile(r"[┌┐└┘├┤┬┴┼╔╗╚╝╠╣╦╩╬]"),
)


@dataclass(frozen=True)
class ScoreContribution:
    rule: str
    points: int
    reason: str | None = None


class ValidationVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_resume: bool = Field(alias="isResume")
    score: int = Field(ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)


def length_contribution(text: str) -> ScoreContribution:
    length = len(text.strip())
    if length < 100:
        return ScoreContribution("length", -30, "Text is very short for a resume")
    if length <= 500:
        return ScoreContribution("length", 5)
    return ScoreContribution("length", 15)


def count_section_hits(text: str) -> int:
    return sum(1 for _section, pattern in _SECTION_PATTERNS if pattern.search(text))


def section_contribution(text: str) -> ScoreContribution:
    hits = count_section_hits(text)
    if hits == 0:
        return ScoreContribution("sections", -30, "No resume section headings found")
    if hits <= 2:
        return ScoreContribution("sections", 5)
    if hits <= 5:
        return ScoreContribution("sections", 20)
    return ScoreContribution("sections", 35)


def count_contact_hits(text: str) -> int:
    lowered = text.lower()
    checks = (
        bool(_EMAIL_RE.search(text)),
        bool(_PHONE_RE.search(text)),
        "linkedin.com" in lowered,
        "github.com" in lowered,
        bool(_CONTACT_KEYWORD_RE.search(text)),
    )
    return sum(1 for hit in checks if hit)


def contact_contribution(text: str) -> ScoreContribution:
    if count_contact_hits(text) == 0:
        return ScoreContribution("contact", -20, "No contact details found")
    return ScoreContribution("contact", 15)


def negative_signal_contributions(text: str) -> list[ScoreContribution]:
    return [
        ScoreContribution(f"negative:{name}", -15, reason)
        for name, pattern, reason in NEGATIVE_SIGNALS
        if pattern.search(text)
    ]


def table_contribution(text: str) -> ScoreContribution | None:
    if any(pattern.search(text) for pattern in _TABLE_PATTERNS):
        return ScoreContribution("table", -10, "Table-like layout detected")
    return None


_SINGLE_RULES: tuple[Callable[[str], ScoreContribution], ...] = (
    length_contribution,
    section_contribution,
    contact_contribution,
)


def score_contributions(text: str) -> list[ScoreContribution]:
    contributions = [rule(text) for rule in _SINGLE_RULES]
    contributions.extend(negative_signal_contributions(text))
    table = table_contribution(text)
    if table is not None:
        contributions.append(table)
    return contributions


def validate_resume_text(text: str) -> ValidationVerdict:
    """Heuristic verdict on whether extracted text came from a resume. Advisory only."""
    contributions = score_contributions(text or "")
    raw_score = reduce(lambda total, item: total + item.points, contributions, 0)
    score = max(0, min(100, raw_score))
    reasons = [item.reason for item in contributions if item.reason]
    return ValidationVerdict(
        is_resume=score >= RESUME_SCORE_THRESHOLD,
        score=score,
        reasons=reasons,
    )
