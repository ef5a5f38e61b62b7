# src/serialist/models/critique.py
"""Critic report records."""

from __future__ import annotations

from pydantic import Field, field_validator

from .base_model import LenientEnum, SerialistBaseModel
from .validators import Score


class IssueType(LenientEnum):
    PACING = "pacing"
    CONSISTENCY = "consistency"
    CONTINUITY = "continuity"
    DOPAMINE = "dopamine"
    QUALITY = "quality"
    WORD_COUNT = "word_count"
    DIALOGUE = "dialogue"
    CRITIC_ERROR = "critic_error"
    LOGIC = "logic"
    DETAIL = "detail"
    REPETITION = "repetition"
    HOOK = "hook"

    @classmethod
    def fallback(cls) -> IssueType:
        return cls.QUALITY


class Severity(LenientEnum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"

    @classmethod
    def fallback(cls) -> Severity:
        return cls.MODERATE

    @property
    def blocking(self) -> bool:
        return self in (Severity.MAJOR, Severity.CRITICAL)


class CriticIssue(SerialistBaseModel):
    type: IssueType = IssueType.QUALITY
    description: str = ""
    severity: Severity = Severity.MINOR
    location: str = ""


class CriticReport(SerialistBaseModel):
    overall_score: Score = 5.0
    dopamine_score: Score = 5.0
    pacing_score: Score = 5.0
    ending_hook_score: Score = 5.0
    issues: list[CriticIssue] = Field(default_factory=list)
    approved: bool = False
    requires_rewrite: bool = False
    rewrite_instructions: str = ""

    @field_validator("issues", mode="before")
    @classmethod
    def _only_records(cls, value: object) -> object:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict) or isinstance(item, CriticIssue)]
        return []


__all__ = ["CriticIssue", "CriticReport", "IssueType", "Severity"]
