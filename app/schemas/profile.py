from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

NA = "NA"

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def coerce_na_str(value: Any) -> str:
    if value is None or isinstance(value, (dict, bool)):
        return NA
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        parts = [coerce_na_str(item) for item in value]
        joined = ", ".join(part for part in parts if part != NA)
        return joined or NA
    text = str(value).strip()
    return text or NA


def coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        return [text] if text else []
    if not isinstance(value, (list, tuple)):
        return []
    output: list[str] = []
    for item in value:
        if isinstance(item, (str, int, float)) and not isinstance(item, bool):
            text = str(item).strip()
            if text:
                output.append(text)
    return output


def coerce_score(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if not match:
            return None
        number = float(match.group(0))
    else:
        return None
    return max(0, min(100, int(round(number))))


def _coerce_object_list(value: Any, *, scalar_key: str) -> list[dict[str, Any]]:
    if value is None:
        return []
    if isinstance(value, (dict, str)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    output: list[dict[str, Any]] = []
    for item in value:
        if isinstance(item, BaseModel):
            output.append(item.model_dump(by_alias=True))
        elif isinstance(item, dict):
            output.append(item)
        elif isinstance(item, str) and item.strip():
            output.append({scalar_key: item.strip()})
    return output


class _ProfileModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ContactInformation(_ProfileModel):
    name: str = NA
    email: str = NA
    phone: str = NA
    location: str = NA
    linkedin: str = NA

    @field_validator("name", "email", "phone", "location", "linkedin", mode="before")
    @classmethod
    def _sentinel_str(cls, value: Any) -> str:
        return coerce_na_str(value)


class Skills(_ProfileModel):
    technical: list[str] = Field(default_factory=list)
    soft: list[str] = Field(default_factory=list)

    @field_validator("technical", "soft", mode="before")
    @classmethod
    def _sentinel_list(cls, value: Any) -> list[str]:
        return coerce_str_list(value)


class WorkExperience(_ProfileModel):
    company: str = NA
    position: str = NA
    duration: str = NA
    responsibilities: list[str] = Field(default_factory=list)
    achievements: list[str] = Field(default_factory=list)

    @field_validator("company", "position", "duration", mode="before")
    @classmethod
    def _sentinel_str(cls, value: Any) -> str:
        return coerce_na_str(value)

    @field_validator("responsibilities", "achievements", mode="before")
    @classmethod
    def _sentinel_list(cls, value: Any) -> list[str]:
        return coerce_str_list(value)


class Education(_ProfileModel):
    institution: str = NA
    degree: str = NA
    field: str = NA
    graduation_date: str = Field(default=NA, alias="graduationDate")

    @field_validator("institution", "degree", "field", "graduation_date", mode="before")
    @classmethod
    def _sentinel_str(cls, value: Any) -> str:
        return coerce_na_str(value)


class ProfileAnalysis(_ProfileModel):
    strengths: list[str] = Field(default_factory=list)
    areas_for_improvement: list[str] = Field(default_factory=list, alias="areasForImprovement")
    keywords: list[str] = Field(default_factory=list)
    ats_score: int | None = Field(default=None, alias="atsScore")

    @field_validator("strengths", "areas_for_improvement", "keywords", mode="before")
    @classmethod
    def _sentinel_list(cls, value: Any) -> list[str]:
        return coerce_str_list(value)

    @field_validator("ats_score", mode="before")
    @classmethod
    def _numeric_score(cls, value: Any) -> int | None:
        return coerce_score(value)


class StructuredProfile(_ProfileModel):
    """Canonical analysis output. Missing strings are "NA" and missing lists are empty, never null."""

    contact_information: ContactInformation = Field(default_factory=ContactInformation, alias="contactInformation")
    skills: Skills = Field(default_factory=Skills)
    work_experience: list[WorkExperience] = Field(default_factory=list, alias="workExperience")
    education: list[Education] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)
    summary: str = NA
    analysis: ProfileAnalysis = Field(default_factory=ProfileAnalysis)

    @field_validator("contact_information", "skills", "analysis", mode="before")
    @classmethod
    def _object_or_empty(cls, value: Any) -> Any:
        if isinstance(value, (dict, BaseModel)):
            return value
        return {}

    @field_validator("work_experience", mode="before")
    @classmethod
    def _work_items(cls, value: Any) -> list[dict[str, Any]]:
        return _coerce_object_list(value, scalar_key="position")

    @field_validator("education", mode="before")
    @classmethod
    def _education_items(cls, value: Any) -> list[dict[str, Any]]:
        return _coerce_object_list(value, scalar_key="degree")

    @field_validator("certifications", mode="before")
    @classmethod
    def _sentinel_list(cls, value: Any) -> list[str]:
        return coerce_str_list(value)

    @field_validator("summary", mode="before")
    @classmethod
    def _sentinel_str(cls, value: Any) -> str:
        return coerce_na_str(value)

    @property
    def has_contact_name(self) -> bool:
        return self.contact_information.name != NA

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AnalysisRecord(StructuredProfile):
    """A persisted analysis: the profile fields plus where it came from. Append-only."""

    id: str | None = None
    account_id: str = Field(alias="accountId")
    plan_ref: str | None = Field(default=None, alias="planRef")
    source_uri: str = Field(alias="sourceUri")
    attempt_id: str | None = Field(default=None, alias="attemptId")
    model_id: str | None = Field(default=None, alias="modelId")
    used_fallback: bool = Field(default=False, alias="usedFallback")
    raw_model_output: str = Field(default="", alias="rawModelOutput")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="createdAt")

    @classmethod
    def from_profile(cls, profile: StructuredProfile, **metadata: Any) -> "AnalysisRecord":
        payload = profile.model_dump(by_alias=False)
        if payload["analysis"].get("ats_score") is None:
            payload["analysis"]["ats_score"] = 0
        return cls.model_validate({**payload, **metadata})

    def profile(self) -> StructuredProfile:
        return StructuredProfile.model_validate(self.model_dump(include=set(StructuredProfile.model_fields)))
