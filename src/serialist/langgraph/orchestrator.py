# src/serialist/langgraph/orchestrator.py
"""Advance a project by one chapter: pick, generate, commit, remember.

The orchestrator owns the chapter cursor. It repairs cursor drift from the set
of committed chapters, commits the approved chapter, writes the summary inline
so the next bridge exists, and then hands the chapter to the memory trackers
as one best-effort background batch.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from serialist.agents import ChapterCritic, ChapterWriter, StoryArchitect
from serialist.canon.store import CanonStore
from serialist.config import config
from serialist.core.embedding import Embedder
from serialist.core.llm import LLMClient
from serialist.core.logs import EventType, get_event_logger, get_logger
from serialist.errors import ChapterGenerationError, ProjectNotFoundError, SerialistError
from serialist.memory import (
    CharacterArcTracker,
    CommittedChapter,
    ConsistencyChecker,
    ForeshadowingLedger,
    PacingDirector,
    PlotBeatLedger,
    PowerLedger,
    SemanticStore,
    SummaryManager,
    Tracker,
    VoiceTracker,
    WorldRuleIndex,
    WorldTracker,
)
from serialist.models import ChapterSummary, Project

from .context import ContextAssembler
from .graph import ChapterPipeline, ChapterRequest

logger = get_logger(__name__)
event_logger = get_event_logger()


def resolve_next_chapter(cursor: int, committed: Iterable[int]) -> int:
    """Return the chapter to generate next.

    The lowest missing chapter below the highest committed one wins, so a gap
    is always filled before the story moves on; otherwise the chapter after
    the highest. ``cursor`` never pushes the result past a gap or past
    ``max + 1``.
    """
    numbers = {n for n in committed if n > 0}
    if not numbers:
        return 1
    highest = max(numbers)
    for number in range(1, highest):
        if number not in numbers:
            return number
    return highest + 1


def contiguous_prefix(committed: Iterable[int]) -> int:
    """Largest ``n`` such that chapters ``1..n`` are all committed."""
    numbers = set(committed)
    n = 0
    while n + 1 in numbers:
        n += 1
    return n


@dataclass(frozen=True)
class TrackerOutcome:
    name: str
    ok: bool
    error: str = ""
    duration: float = 0.0


@dataclass
class ChapterResult:
    """What one ``advance_one_chapter`` call produced.

    ``batch`` resolves to the outcomes of the background tracker writes; the
    inline summary outcome is already in ``tracker_outcomes``.
    """

    project_id: str
    chapter_number: int
    title: str
    word_count: int
    quality_score: float
    attempts: int
    cursor: int
    tracker_outcomes: list[TrackerOutcome] = field(default_factory=list)
    batch: asyncio.Task[list[TrackerOutcome]] | None = None


class Orchestrator:
    """Drives chapter generation for any number of projects.

    Parameters
    ----------
    store:
        Canon store shared by every tracker.
    llm:
        Completion client for the agents and the analyst calls.
    embedder:
        Embedding client for the semantic store; a default one when omitted.
    pipeline:
        Prebuilt chapter pipeline, mainly for tests.
    trackers:
        Replaces the default trackers.
    """

    def __init__(
        self,
        store: CanonStore,
        llm: LLMClient,
        *,
        embedder: Embedder | None = None,
        pipeline: ChapterPipeline | None = None,
        trackers: Sequence[Tracker] | None = None,
        arc_size: int | None = None,
        target_words: int | None = None,
    ) -> None:
        self.store = store
        self.llm = llm
        self.arc_size = arc_size or config.engine.arc_size
        self.target_words = target_words or config.engine.target_word_count
        self.summaries = SummaryManager(store, llm, arc_size=self.arc_size)
        self.semantic = SemanticStore(store, embedder or Embedder(), llm, arc_size=self.arc_size)
        self.trackers: list[Tracker] = list(
            trackers
            if trackers is not None
            else (
                PlotBeatLedger(store, llm, arc_size=self.arc_size),
                ForeshadowingLedger(store, llm, arc_size=self.arc_size),
                CharacterArcTracker(store, llm, arc_size=self.arc_size),
                PowerLedger(store, llm, arc_size=self.arc_size),
                VoiceTracker(store, llm, arc_size=self.arc_size),
                WorldTracker(store, llm, arc_size=self.arc_size),
                PacingDirector(store, llm, arc_size=self.arc_size),
                WorldRuleIndex(store, llm, arc_size=self.arc_size),
                ConsistencyChecker(store, llm, arc_size=self.arc_size),
            )
        )
        self.assembler = ContextAssembler(store, self.summaries, self.trackers, self.semantic)
        self.pipeline = pipeline or ChapterPipeline(
            StoryArchitect(llm), ChapterWriter(llm), ChapterCritic(llm)
        )
        self._batches: dict[str, asyncio.Task[list[TrackerOutcome]]] = {}

    async def load_project(self, project_id: str) -> Project:
        row = await self.store.select_one("projects", {"id": project_id})
        if row is None:
            raise ProjectNotFoundError(f"Unknown project: {project_id}")
        return Project.model_validate(row)

    async def committed_chapters(self, project_id: str) -> set[int]:
        rows = await self.store.select(
            "chapters", {"project_id": project_id}, columns=("chapter_number",)
        )
        return {row["chapter_number"] for row in rows}

    async def _run_tracker(self, tracker: Tracker, chapter: CommittedChapter) -> TrackerOutcome:
        t0 = time.perf_counter()
        try:
            await tracker.on_chapter_committed(chapter)
        except Exception as exc:
            event_logger.warning(
                f"{tracker.name} failed after commit: {exc}",
                event_type=EventType.TRACKER_UPDATE,
                component=tracker.name,
                project_id=chapter.project_id,
                chapter_number=chapter.chapter_number,
                error_type=type(exc).__name__,
            )
            return TrackerOutcome(tracker.name, False, str(exc), time.perf_counter() - t0)
        return TrackerOutcome(tracker.name, True, duration=time.perf_counter() - t0)

    async def _prepare_arc(self, project: Project, arc_number: int) -> None:
        for tracker in self.trackers:
            try:
                await tracker.prepare_arc(project, arc_number)
            except Exception as exc:
                event_logger.warning(
                    f"{tracker.name} could not plan arc {arc_number}: {exc}",
                    event_type=EventType.TRACKER_UPDATE,
                    component=tracker.name,
                    project_id=project.id,
                    error_type=type(exc).__name__,
                )

    async def _post_commit(self, chapter: CommittedChapter) -> list[TrackerOutcome]:
        writers = [*self.trackers, self.semantic]
        outcomes = list(
            await asyncio.gather(*(self._run_tracker(t, chapter) for t in writers))
        )
        failed = [o.name for o in outcomes if not o.ok]
        event_logger.info(
            f"Memory updated for chapter {chapter.chapter_number}: "
            f"{len(outcomes) - len(failed)}/{len(outcomes)} ok"
            + (f", failed: {', '.join(failed)}" if failed else ""),
            event_type=EventType.TRACKER_UPDATE,
            component="orchestrator",
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )
        return outcomes

    async def drain(self, project_id: str | None = None) -> list[TrackerOutcome]:
        """Await pending background tracker batches and return their outcomes."""
        keys = [project_id] if project_id is not None else list(self._batches)
        outcomes: list[TrackerOutcome] = []
        for key in keys:
            task = self._batches.pop(key, None)
            if task is not None:
                outcomes += await task
        return outcomes

    async def advance_one_chapter(self, project_id: str) -> ChapterResult:
        """Generate, commit and remember the next chapter of ``project_id``.

        Raises
        ------
        ProjectNotFoundError
            No such project.
        ChapterGenerationError
            The chapter could not be produced; nothing was committed.
        """
        async with self.store.project_lock(project_id):
            # Arc planning below reads what the last batch wrote.
            previous = self._batches.pop(project_id, None)
            if previous is not None:
                await previous
            project = await self.load_project(project_id)
            committed = await self.committed_chapters(project_id)
            chapter_number = resolve_next_chapter(project.current_chapter, committed)
            if chapter_number != project.current_chapter + 1:
                event_logger.warning(
                    f"Cursor at {project.current_chapter} but chapter {chapter_number} is next",
                    event_type=EventType.CURSOR_REPAIR,
                    component="orchestrator",
                    project_id=project_id,
                    chapter_number=chapter_number,
                    cursor=project.current_chapter,
                    committed=len(committed),
                )

            arc_number = project.arc_number(chapter_number, self.arc_size)
            await self.summaries.ensure_arc_plan(project, arc_number)
            await self._prepare_arc(project, arc_number)

            context = await self.assembler.assemble(project, chapter_number)
            request = ChapterRequest(
                chapter_number=chapter_number,
                context=context.text,
                target_words=project.target_word_count or self.target_words,
                protagonist=project.protagonist_name,
                previous_titles=tuple(context.previous_titles),
                dead_characters=tuple(context.dead_characters),
                voices=tuple(context.voices.items()),
                terminal=project.is_terminal_arc(chapter_number, self.arc_size),
            )
            try:
                generated = await self.pipeline.run(request)
            except ChapterGenerationError as exc:
                event_logger.error(
                    f"Chapter generation failed: {exc.reason}",
                    event_type=EventType.PIPELINE_STEP,
                    component="orchestrator",
                    project_id=project_id,
                    chapter_number=chapter_number,
                )
                raise
            except SerialistError as exc:
                event_logger.error(
                    f"Chapter generation failed: {exc}",
                    event_type=EventType.PIPELINE_STEP,
                    component="orchestrator",
                    project_id=project_id,
                    chapter_number=chapter_number,
                    error_type=type(exc).__name__,
                )
                raise ChapterGenerationError(chapter_number, str(exc)) from exc

            await self.store.upsert(
                "chapters",
                [
                    {
                        "project_id": project_id,
                        "chapter_number": chapter_number,
                        "title": generated.title,
                        "content": generated.content,
                        "word_count": generated.word_count,
                        "quality_score": generated.quality_score,
                    }
                ],
                conflict=("project_id", "chapter_number"),
            )
            committed.add(chapter_number)
            event_logger.info(
                f"Committed chapter {chapter_number} \"{generated.title}\" "
                f"({generated.word_count} words, score {generated.quality_score:.1f}, "
                f"{generated.attempts} attempt(s))",
                event_type=EventType.PIPELINE_STEP,
                component="orchestrator",
                project_id=project_id,
                chapter_number=chapter_number,
            )

            chapter = CommittedChapter(
                project=project,
                chapter_number=chapter_number,
                title=generated.title,
                content=generated.content,
                cast=tuple(generated.outline.characters),
                arc_size=self.arc_size,
            )
            summary_outcome = await self._run_tracker(self.summaries, chapter)
            summary_row = await self.store.select_one(
                "chapter_summaries", {"project_id": project_id, "chapter_number": chapter_number}
            )
            if summary_row is not None:
                chapter = replace(chapter, summary=ChapterSummary.model_validate(summary_row))

            cursor = contiguous_prefix(committed)
            if cursor > project.current_chapter or project.current_chapter > max(committed):
                await self.store.update("projects", {"current_chapter": cursor}, {"id": project_id})
            else:
                cursor = project.current_chapter

            batch = asyncio.create_task(self._post_commit(chapter))
            self._batches[project_id] = batch

            return ChapterResult(
                project_id=project_id,
                chapter_number=chapter_number,
                title=generated.title,
                word_count=generated.word_count,
                quality_score=generated.quality_score,
                attempts=generated.attempts,
                cursor=cursor,
                tracker_outcomes=[summary_outcome],
                batch=batch,
            )

    async def advance(self, project_id: str, chapters: int) -> list[ChapterResult]:
        """Advance ``chapters`` times, stopping at the first failure (which propagates)."""
        results = []
        for _ in range(chapters):
            results.append(await self.advance_one_chapter(project_id))
        return results


__all__ = [
    "ChapterResult",
    "Orchestrator",
    "TrackerOutcome",
    "contiguous_prefix",
    "resolve_next_chapter",
]
