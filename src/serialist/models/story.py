# src/serialist/models/story.py
"""Project-level records: the project itself, chapters, summaries, synopsis and arc plans."""

from __future__ import annotations

from pydantic import Field, field_validator

from .base_model import SerialistBaseModel
from .validators import LenientInt, StrList


class Project(SerialistBaseModel):
    """One serialized narrative and its chapter cursor."""

    id: str
    title: str = ""
    genre: str = ""
    protagonist_name: str = ""
    world_description: str = ""
    master_outline: str = ""
    story_bible: str = ""
    total_planned_chapters: int = 1000
    current_chapter: int = 0
    target_word_count: int | None = None

    def arc_number(self, chapter_number: int, arc_size: int) -> int:
        return (max(chapter_number, 1) - 1) // arc_size + 1

    def is_terminal_arc(self, chapter_number: int, arc_size: int) -> bool:
        """True once the chapter falls inside the final arc of the planned run."""
        return chapter_number >= self.total_planned_chapters - arc_size


class Chapter(SerialistBaseModel):
    chapter_number: int
    title: str = ""
    content: str = ""
    word_count: int = 0
    quality_score: float | None = None


class ChapterSummary(SerialistBaseModel):
    """Bridge material carried from one chapter to the next."""

    chapter_number: int = 0
    title: str = ""
    summary: str = ""
    opening_sentence: str = ""
    protagonist_state: str = ""
    cliffhanger: str = ""


class Synopsis(SerialistBaseModel):
    synopsis_text: str = ""
    protagonist_state: str = ""
    active_allies: StrList = Field(default_factory=list)
    active_enemies: StrList = Field(default_factory=list)
    open_threads: StrList = Field(default_factory=list)
    last_updated_chapter: int = 0


class ChapterBrief(SerialistBaseModel):
    chapter_number: LenientInt
    brief: str = ""


class ArcPlan(SerialistBaseModel):
    arc_number: int = 0
    start_chapter: int = 0
    end_chapter: int = 0
    theme: str = ""
    plan_text: str = ""
    chapter_briefs: list[ChapterBrief] = Field(default_factory=list)
    threads_to_advance: StrList = Field(default_factory=list)
    threads_to_resolve: StrList = Field(default_factory=list)
    new_threads: StrList = Field(default_factory=list)

    @field_validator("chapter_briefs", mode="before")
    @classmethod
    def _drop_bad_briefs(cls, value: object) -> object:
        if isinstance(value, list):
            return [
                b
                for b in value
                if isinstance(b, ChapterBrief)
                or (isinstance(b, dict) and b.get("chapter_number", b.get("chapterNumber")) is not None)
            ]
        return []

    def brief_for(self, chapter_number: int) -> str:
        for brief in self.chapter_briefs:
            if brief.chapter_number == chapter_number:
                return brief.brief
        return ""


__all__ = ["ArcPlan", "Chapter", "ChapterBrief", "ChapterSummary", "Project", "Synopsis"]
