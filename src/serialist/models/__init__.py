# src/serialist/models/__init__.py
"""Pydantic records and SQLAlchemy tables for the narrative canon."""

from .base import Base  # Import SQLAlchemy Base
from .base_model import LenientEnum, SerialistBaseModel
from .critique import CriticIssue, CriticReport, IssueType, Severity
from .memory import (
    Ability,
    ArcPhase,
    BeatCategory,
    BeatUsage,
    ChapterMood,
    ChapterPacing,
    CharacterArc,
    CharacterState,
    CharacterStatus,
    ChunkType,
    CliffhangerIntensity,
    ForeshadowingHint,
    HintStatus,
    HintType,
    LocationBible,
    MemoryChunk,
    PacingBlueprint,
    PlotThread,
    PowerEvent,
    PowerState,
    Proficiency,
    RuleCategory,
    ThreadPriority,
    ThreadStatus,
    VoiceFingerprint,
    WorldRule,
)
from .outline import ChapterOutline, DopaminePoint, EmotionalArc, SceneOutline, ScenePace
from .story import ArcPlan, Chapter, ChapterBrief, ChapterSummary, Project, Synopsis

__all__ = [
    "Ability",
    "ArcPhase",
    "ArcPlan",
    "Base",
    "BeatCategory",
    "BeatUsage",
    "Chapter",
    "ChapterBrief",
    "ChapterMood",
    "ChapterOutline",
    "ChapterPacing",
    "ChapterSummary",
    "CharacterArc",
    "CharacterState",
    "CharacterStatus",
    "ChunkType",
    "CliffhangerIntensity",
    "CriticIssue",
    "CriticReport",
    "DopaminePoint",
    "EmotionalArc",
    "ForeshadowingHint",
    "HintStatus",
    "HintType",
    "IssueType",
    "LenientEnum",
    "LocationBible",
    "MemoryChunk",
    "PacingBlueprint",
    "PlotThread",
    "PowerEvent",
    "PowerState",
    "Proficiency",
    "Project",
    "RuleCategory",
    "SceneOutline",
    "ScenePace",
    "SerialistBaseModel",
    "Severity",
    "Synopsis",
    "ThreadPriority",
    "ThreadStatus",
    "VoiceFingerprint",
    "WorldRule",
]
