# src/serialist/models/outline.py
"""Structured chapter outline produced by the architect."""

from __future__ import annotations

from pydantic import Field, field_validator

from .base_model import LenientEnum, SerialistBaseModel
from .validators import LenientInt, Score, StrList


class ScenePace(LenientEnum):
    SLOW = "slow"
    MEDIUM = "medium"
    FAST = "fast"

    @classmethod
    def fallback(cls) -> ScenePace:
        return cls.MEDIUM


class SceneOutline(SerialistBaseModel):
    order: LenientInt = 0
    setting: str = ""
    characters: StrList = Field(default_factory=list)
    goal: str = ""
    conflict: str = ""
    resolution: str = ""
    estimated_words: LenientInt = 0
    pov: str = ""
    pace: ScenePace = ScenePace.MEDIUM
    comedic: bool = False


class EmotionalArc(SerialistBaseModel):
    opening: str = "curiosity"
    midpoint: str = "tension"
    climax: str = "excitement"
    closing: str = "anticipation"


class DopaminePoint(SerialistBaseModel):
    type: str = ""
    scene: LenientInt = 0
    description: str = ""
    intensity: Score = 5.0


class ChapterOutline(SerialistBaseModel):
    chapter_number: LenientInt = 0
    title: str = ""
    summary: str = ""
    pov: str = ""
    location: str = ""
    scenes: list[SceneOutline] = Field(default_factory=list)
    tension_level: Score = 5.0
    dopamine_points: list[DopaminePoint] = Field(default_factory=list)
    emotional_arc: EmotionalArc = Field(default_factory=EmotionalArc)
    comedic_beat: str = ""
    cliffhanger: str = ""
    target_word_count: LenientInt = 0

    @field_validator("scenes", "dopamine_points", mode="before")
    @classmethod
    def _only_records(cls, value: object) -> object:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, (dict, SerialistBaseModel))]
        return []

    @field_validator("emotional_arc", mode="before")
    @classmethod
    def _arc_or_default(cls, value: object) -> object:
        return value if isinstance(value, (dict, EmotionalArc)) else {}

    @property
    def characters(self) -> list[str]:
        """Distinct scene participants in order of first appearance."""
        seen: dict[str, None] = {}
        for scene in self.scenes:
            for name in scene.characters:
                seen.setdefault(name, None)
        return list(seen)

    @property
    def estimated_words(self) -> int:
        return sum(scene.estimated_words for scene in self.scenes)


__all__ = ["ChapterOutline", "DopaminePoint", "EmotionalArc", "SceneOutline", "ScenePace"]
