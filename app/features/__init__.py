from .resume_validator import (
    RESUME_SCORE_THRESHOLD,
    ScoreContribution,
    ValidationVerdict,
    score_contributions,
    validate_resume_text,
)
from .section_truncator import (
    DEFAULT_SECTION_LIMITS,
    TRUNCATION_MARKER,
    get_section_limits,
    truncate_sections,
)

__all__ = [
    "RESUME_SCORE_THRESHOLD",
    "ScoreContribution",
    "ValidationVerdict",
    "score_contributions",
    "validate_resume_text",
    "DEFAULT_SECTION_LIMITS",
    "TRUNCATION_MARKER",
    "get_section_limits",
    "truncate_sections",
]
