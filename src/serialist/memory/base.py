# src/serialist/memory/base.py
"""Shared shape of the memory trackers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import ClassVar, TypeVar

from pydantic import BaseModel

from serialist.canon.store import CanonStore
from serialist.config import config
from serialist.core.llm import LLMClient
from serialist.core.logs import EventType, get_event_logger
from serialist.errors import SerialistError
from serialist.models import ChapterSummary, Project

T = TypeVar("T", bound=BaseModel)

event_logger = get_event_logger()


@dataclass(frozen=True)
class CommittedChapter:
    """Everything a tracker may read about a chapter that was just committed."""

    project: Project
    chapter_number: int
    title: str
    content: str
    cast: tuple[str, ...] = ()
    summary: ChapterSummary | None = None
    arc_size: int = field(default_factory=lambda: config.engine.arc_size)

    @property
    def project_id(self) -> str:
        return self.project.id

    @property
    def arc_number(self) -> int:
        return self.project.arc_number(self.chapter_number, self.arc_size)


class Tracker(ABC):
    """One owner of one slice of story state.

    ``on_chapter_committed`` is the write path and runs after the chapter is
    stored; ``context_fragment`` is the read path and returns ``None`` when
    there is nothing worth telling the next generation call.
    """

    name: ClassVar[str] = "tracker"

    def __init__(
        self,
        store: CanonStore,
        llm: LLMClient | None = None,
        *,
        model: str | None = None,
        arc_size: int | None = None,
    ) -> None:
        self.store = store
        self.llm = llm
        self.model = model or config.agents.analyst
        self.arc_size = arc_size or config.engine.arc_size

    @abstractmethod
    async def on_chapter_committed(self, chapter: CommittedChapter) -> None: ...

    @abstractmethod
    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None: ...

    async def prepare_arc(self, project: Project, arc_number: int) -> None:
        """Plan ahead for ``arc_number`` before its first chapter is generated."""

    async def _arc_planned(self, project_id: str, arc_number: int) -> bool:
        return bool(
            await self.store.count(
                "arc_agendas",
                {"project_id": project_id, "arc_number": arc_number, "tracker": self.name},
            )
        )

    async def _mark_arc_planned(self, project_id: str, arc_number: int, item_count: int) -> None:
        await self.store.upsert(
            "arc_agendas",
            [
                {
                    "project_id": project_id,
                    "arc_number": arc_number,
                    "tracker": self.name,
                    "item_count": item_count,
                }
            ],
            conflict=("project_id", "arc_number", "tracker"),
        )

    async def _analyze(
        self,
        prompt: str,
        response_model: type[T],
        *,
        system: str,
        temperature: float,
        max_tokens: int = 2048,
        project_id: str | None = None,
        chapter_number: int | None = None,
    ) -> T | None:
        """Ask the analyst model for a structured record; ``None`` when unavailable."""
        if self.llm is None:
            return None
        try:
            return await self.llm.complete_structured(
                prompt,
                response_model,
                model=self.model,
                system=system,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except SerialistError as exc:
            event_logger.warning(
                f"{self.name}: analysis skipped ({exc})",
                event_type=EventType.TRACKER_UPDATE,
                component=self.name,
                project_id=project_id,
                chapter_number=chapter_number,
            )
            return None


__all__ = ["CommittedChapter", "Tracker"]
