# src/serialist/models/memory.py
"""Records owned by the memory trackers."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator, model_validator

from .base_model import LenientEnum, SerialistBaseModel
from .validators import LenientInt, Ratio, StrList

MAX_POWER_LEDGER = 20


class ThreadPriority(LenientEnum):
    CRITICAL = "critical"
    MAIN = "main"
    SUB = "sub"
    BACKGROUND = "background"

    @classmethod
    def fallback(cls) -> ThreadPriority:
        return cls.SUB


class ThreadStatus(LenientEnum):
    OPEN = "open"
    DEVELOPING = "developing"
    CLIMAX = "climax"
    RESOLVED = "resolved"
    LEGACY = "legacy"

    @classmethod
    def fallback(cls) -> ThreadStatus:
        return cls.OPEN

    @property
    def active(self) -> bool:
        return self not in (ThreadStatus.RESOLVED, ThreadStatus.LEGACY)


class PlotThread(SerialistBaseModel):
    id: str
    name: str = ""
    description: str = ""
    priority: ThreadPriority = ThreadPriority.SUB
    status: ThreadStatus = ThreadStatus.OPEN
    start_chapter: int = 1
    target_payoff_chapter: int | None = None
    last_active_chapter: int = 0
    related_characters: StrList = Field(default_factory=list)
    importance: int = 50


class HintStatus(LenientEnum):
    PLANNED = "planned"
    PLANTED = "planted"
    PAID_OFF = "paid_off"
    ABANDONED = "abandoned"

    @classmethod
    def fallback(cls) -> HintStatus:
        return cls.PLANNED


class HintType(LenientEnum):
    DIALOGUE = "dialogue"
    OBJECT = "object"
    EVENT = "event"
    CHARACTER_BEHAVIOR = "character_behavior"
    ENVIRONMENTAL = "environmental"

    @classmethod
    def fallback(cls) -> HintType:
        return cls.EVENT


class ForeshadowingHint(SerialistBaseModel):
    hint_id: str
    hint_text: str = ""
    hint_type: HintType = HintType.EVENT
    plant_chapter: LenientInt
    payoff_chapter: LenientInt
    payoff_description: str = ""
    status: HintStatus = HintStatus.PLANNED
    arc_number: int = 1

    @model_validator(mode="after")
    def _payoff_after_plant(self) -> ForeshadowingHint:
        if self.payoff_chapter <= self.plant_chapter:
            object.__setattr__(self, "payoff_chapter", self.plant_chapter + 1)
        return self


class ArcPhase(SerialistBaseModel):
    phase: str = ""
    chapter_start: LenientInt = 0
    chapter_end: LenientInt = 0
    traits: str = ""
    trigger_event: str = ""

    @model_validator(mode="before")
    @classmethod
    def _split_range(cls, data: Any) -> Any:
        if isinstance(data, dict):
            rng = data.get("chapter_range") or data.get("chapterRange")
            if isinstance(rng, (list, tuple)) and len(rng) == 2:
                data = {**data, "chapter_start": rng[0], "chapter_end": rng[1]}
        return data

    def covers(self, chapter_number: int) -> bool:
        return self.chapter_start <= chapter_number <= self.chapter_end


class CharacterArc(SerialistBaseModel):
    character_name: str
    role: str = ""
    internal_conflict: str = ""
    phases: list[ArcPhase] = Field(default_factory=list)
    signature_traits: StrList = Field(default_factory=list)
    relationship_with_protagonist: str = ""

    @field_validator("phases", mode="after")
    @classmethod
    def _ordered_non_overlapping(cls, phases: list[ArcPhase]) -> list[ArcPhase]:
        ordered = sorted(
            (p for p in phases if p.chapter_end >= p.chapter_start),
            key=lambda p: p.chapter_start,
        )
        kept: list[ArcPhase] = []
        for phase in ordered:
            if kept and phase.chapter_start <= kept[-1].chapter_end:
                continue
            kept.append(phase)
        return kept

    def phase_at(self, chapter_number: int) -> ArcPhase | None:
        for phase in self.phases:
            if phase.covers(chapter_number):
                return phase
        return self.phases[-1] if self.phases else None

    def next_phase(self, chapter_number: int) -> ArcPhase | None:
        for phase in self.phases:
            if phase.chapter_start > chapter_number:
                return phase
        return None


class CharacterStatus(LenientEnum):
    ALIVE = "alive"
    DEAD = "dead"
    MISSING = "missing"
    UNKNOWN = "unknown"

    @classmethod
    def fallback(cls) -> CharacterStatus:
        return cls.ALIVE


class CharacterState(SerialistBaseModel):
    character_name: str
    chapter_number: int = 0
    status: CharacterStatus = CharacterStatus.ALIVE
    power_level: str = ""
    location: str = ""
    notes: str = ""


class Proficiency(LenientEnum):
    NOVICE = "novice"
    ADEPT = "adept"
    MASTER = "master"
    PERFECTED = "perfected"

    @classmethod
    def fallback(cls) -> Proficiency:
        return cls.NOVICE


class Ability(SerialistBaseModel):
    name: str
    proficiency: Proficiency = Proficiency.NOVICE
    description: str = ""


class PowerEvent(SerialistBaseModel):
    chapter: LenientInt = 0
    description: str = ""


class PowerState(SerialistBaseModel):
    """Snapshot of the protagonist's capabilities with bounded gain/loss ledgers."""

    realm: str = ""
    tier: str = ""
    bottleneck: str = ""
    abilities: list[Ability] = Field(default_factory=list)
    hidden_powers: StrList = Field(default_factory=list)
    resources: StrList = Field(default_factory=list)
    rules: StrList = Field(default_factory=list)
    gains: list[PowerEvent] = Field(default_factory=list)
    losses: list[PowerEvent] = Field(default_factory=list)

    @field_validator("abilities", "gains", "losses", mode="before")
    @classmethod
    def _only_records(cls, value: object) -> object:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, (dict, SerialistBaseModel))]
        return []

    @field_validator("gains", "losses", mode="after")
    @classmethod
    def _cap_ledger(cls, value: list[PowerEvent]) -> list[PowerEvent]:
        return value[-MAX_POWER_LEDGER:]


class VoiceFingerprint(SerialistBaseModel):
    avg_sentence_length: float = 0.0
    dialogue_ratio: Ratio = 0.0
    inner_thought_ratio: Ratio = 0.0
    emotional_register: str = ""
    description_style: str = ""
    signature_phrases: StrList = Field(default_factory=list)
    avoided_phrases: StrList = Field(default_factory=list)
    opening_patterns: StrList = Field(default_factory=list)


class LocationBible(SerialistBaseModel):
    location_name: str
    arc_start: LenientInt = 1
    arc_end: LenientInt = 1
    explored: bool = False
    description: str = ""
    key_features: StrList = Field(default_factory=list)
    mysteries: StrList = Field(default_factory=list)
    dangers: StrList = Field(default_factory=list)

    def relevant_to(self, arc_number: int) -> bool:
        return self.arc_start <= arc_number <= self.arc_end


class BeatCategory(LenientEnum):
    PLOT = "plot"
    EMOTIONAL = "emotional"
    SETTING = "setting"

    @classmethod
    def fallback(cls) -> BeatCategory:
        return cls.PLOT


class BeatUsage(SerialistBaseModel):
    beat_type: str
    beat_category: BeatCategory = BeatCategory.PLOT
    chapter_number: int = 0
    arc_number: int = 1
    intensity: int = 0
    cooldown_until: int = 0


class ChunkType(LenientEnum):
    KEY_EVENT = "key_event"
    SCENE = "scene"
    CHARACTER_EVENT = "character_event"
    PLOT_POINT = "plot_point"
    WORLD_DETAIL = "world_detail"

    @classmethod
    def fallback(cls) -> ChunkType:
        return cls.SCENE


class MemoryChunk(SerialistBaseModel):
    chapter_number: int
    chunk_type: ChunkType = ChunkType.SCENE
    content: str = ""
    similarity: float | None = None


class ChapterMood(LenientEnum):
    BUILDUP = "buildup"
    RISING = "rising"
    CALM_BEFORE_STORM = "calm_before_storm"
    CLIMAX = "climax"
    AFTERMATH = "aftermath"
    TRAINING = "training"
    VILLAIN_FOCUS = "villain_focus"
    COMEDIC_BREAK = "comedic_break"
    REVELATION = "revelation"
    TRANSITION = "transition"

    @classmethod
    def fallback(cls) -> ChapterMood:
        return cls.RISING


class CliffhangerIntensity(LenientEnum):
    NONE = "none"
    MILD = "mild"
    STRONG = "strong"
    EXTREME = "extreme"

    @classmethod
    def fallback(cls) -> CliffhangerIntensity:
        return cls.MILD


class ChapterPacing(SerialistBaseModel):
    chapter_number: LenientInt = 0
    mood: ChapterMood = ChapterMood.RISING
    intensity_level: LenientInt = 5
    suggested_structure: str = ""
    dopamine_required: bool = True
    cliffhanger_intensity: CliffhangerIntensity = CliffhangerIntensity.MILD

    @field_validator("intensity_level")
    @classmethod
    def _clamp_intensity(cls, value: int) -> int:
        return min(10, max(1, value))


class PacingBlueprint(SerialistBaseModel):
    arc_number: int = 1
    chapters: list[ChapterPacing] = Field(default_factory=list)
    required_variety: StrList = Field(default_factory=list)

    def for_chapter(self, chapter_number: int) -> ChapterPacing | None:
        return next((c for c in self.chapters if c.chapter_number == chapter_number), None)


class RuleCategory(LenientEnum):
    POWER_SYSTEM = "power_system"
    GEOGRAPHY = "geography"
    RESTRICTIONS = "restrictions"
    HISTORY = "history"

    @classmethod
    def fallback(cls) -> RuleCategory:
        return cls.POWER_SYSTEM


class WorldRule(SerialistBaseModel):
    rule_key: str
    rule_text: str
    category: RuleCategory = RuleCategory.POWER_SYSTEM
    tags: StrList = Field(default_factory=list)
    introduced_chapter: int = 0
    importance: int = 60
    usage_count: int = 0


__all__ = [
    "Ability",
    "ArcPhase",
    "BeatCategory",
    "BeatUsage",
    "ChapterMood",
    "ChapterPacing",
    "CharacterArc",
    "CharacterState",
    "CharacterStatus",
    "ChunkType",
    "CliffhangerIntensity",
    "ForeshadowingHint",
    "HintStatus",
    "HintType",
    "LocationBible",
    "MAX_POWER_LEDGER",
    "MemoryChunk",
    "PacingBlueprint",
    "PlotThread",
    "PowerEvent",
    "PowerState",
    "Proficiency",
    "RuleCategory",
    "ThreadPriority",
    "ThreadStatus",
    "VoiceFingerprint",
    "WorldRule",
]
