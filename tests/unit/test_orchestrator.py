"""Tests for chapter selection, commit and post-commit memory updates."""

import json
from collections.abc import Sequence

import pytest

from serialist.agents.architect import ARCHITECT_SYSTEM
from serialist.agents.critic import CRITIC_SYSTEM
from serialist.agents.writer import WRITER_SYSTEM
from serialist.core.logs import EventType, get_event_logger
from serialist.errors import ChapterGenerationError, ProjectNotFoundError, ProviderError
from serialist.langgraph import GeneratedChapter, Orchestrator, resolve_next_chapter
from serialist.langgraph.orchestrator import contiguous_prefix
from serialist.memory import CommittedChapter, Tracker
from serialist.models import ChapterOutline, CriticReport, Project
from tests.fakes import FakeLLM

PROSE = "Rain fell on the sect. " * 150 + "Then a voice called his name from the dark?"
REVIEW = {
    "overall_score": 8,
    "dopamine_score": 7,
    "pacing_score": 7,
    "ending_hook_score": 8,
    "issues": [],
    "approved": True,
}


def respond(prompt: str, kwargs: dict) -> str:
    """Answer each agent by its system prompt; analysts get an empty record."""
    system = kwargs["messages"][0]["content"] if len(kwargs["messages"]) > 1 else ""
    if system == ARCHITECT_SYSTEM:
        return json.dumps(
            {
                "title": "Smoke Over the Sect",
                "scenes": [{"goal": "Reach the furnace", "characters": ["Lin Wei", "Fat Bao"]}],
            }
        )
    if system == WRITER_SYSTEM:
        return PROSE
    if system == CRITIC_SYSTEM:
        return json.dumps(REVIEW)
    if prompt.startswith("Summarize chapter"):
        return json.dumps({"summary": "Lin Wei reaches the furnace.", "cliffhanger": "A voice calls."})
    return "{}"


class StubPipeline:
    """Returns a fixed chapter, or raises, and records every request."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.requests = []

    async def run(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return GeneratedChapter(
            chapter_number=request.chapter_number,
            title=f"Chapter {request.chapter_number} Title",
            content=PROSE,
            word_count=759,
            quality_score=8.0,
            outline=ChapterOutline(chapter_number=request.chapter_number),
            report=CriticReport(overall_score=8.0, approved=True),
            attempts=1,
        )


class BrokenTracker(Tracker):
    name = "broken"

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        raise RuntimeError("ledger offline")

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        return None


class ArcPlanningTracker(Tracker):
    name = "arc_planner"

    def __init__(self, store, fail: bool = False) -> None:
        super().__init__(store)
        self.fail = fail
        self.prepared: list[int] = []

    async def prepare_arc(self, project: Project, arc_number: int) -> None:
        self.prepared.append(arc_number)
        if self.fail:
            raise RuntimeError("planner offline")

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        return None

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        return None


async def _commit(store, project_id: str, numbers) -> None:
    await store.insert(
        "chapters",
        [{"project_id": project_id, "chapter_number": n, "title": f"T{n}", "content": "x"} for n in numbers],
    )


class TestResolveNextChapter:
    """Tests for resolve_next_chapter and contiguous_prefix."""

    def test_fills_gap_first(self):
        """Should pick the missing chapter 46 even though the cursor is at 50."""
        committed = set(range(1, 46)) | set(range(47, 51))
        assert resolve_next_chapter(50, committed) == 46

    def test_nothing_committed(self):
        """Should start at chapter 1."""
        assert resolve_next_chapter(0, []) == 1
        assert resolve_next_chapter(12, []) == 1

    def test_contiguous_moves_on(self):
        """Should continue after the highest committed chapter."""
        assert resolve_next_chapter(3, {1, 2, 3}) == 4
        assert resolve_next_chapter(1, {1, 2, 3}) == 4

    def test_contiguous_prefix(self):
        """Should measure the unbroken run from chapter 1."""
        assert contiguous_prefix({1, 2, 3, 5}) == 3
        assert contiguous_prefix({2, 3}) == 0
        assert contiguous_prefix(set()) == 0


class TestAdvanceOneChapter:
    """Tests for Orchestrator.advance_one_chapter."""

    @pytest.mark.asyncio
    async def test_end_to_end_first_chapter(self, store, project, embedder):
        """Should generate, commit and summarize chapter 1, then run every tracker."""
        orchestrator = Orchestrator(store, FakeLLM(respond), embedder=embedder)
        result = await orchestrator.advance_one_chapter(project.id)

        assert result.chapter_number == 1
        assert result.title == "Smoke Over the Sect"
        assert result.cursor == 1
        assert result.tracker_outcomes[0].name == "summaries"
        assert result.tracker_outcomes[0].ok

        chapter = await store.select_one("chapters", {"project_id": project.id, "chapter_number": 1})
        assert chapter["content"].endswith("from the dark?")
        summary = await store.select_one("chapter_summaries", {"chapter_number": 1})
        assert summary["cliffhanger"] == "A voice calls."
        assert (await store.select_one("projects", {"id": project.id}))["current_chapter"] == 1

        outcomes = await result.batch
        assert {o.name for o in outcomes} == {
            "plot_ledger", "foreshadowing", "character_arcs", "power", "voice", "world",
            "pacing", "world_rules", "consistency", "semantic_store",
        }  # fmt: skip
        assert await store.count("memory_chunks", {"chunk_type": "key_event"}) == 1
        assert await orchestrator.drain() == outcomes

    @pytest.mark.asyncio
    async def test_repairs_cursor_drift(self, store, project, embedder):
        """Should fill the gap at 46 and log the cursor repair."""
        await _commit(store, project.id, [*range(1, 46), *range(47, 51)])
        await store.update("projects", {"current_chapter": 50}, {"id": project.id})
        pipeline = StubPipeline()
        orchestrator = Orchestrator(
            store, FakeLLM(respond), embedder=embedder, pipeline=pipeline, trackers=[]
        )

        result = await orchestrator.advance_one_chapter(project.id)
        await orchestrator.drain()

        assert pipeline.requests[0].chapter_number == 46
        assert result.chapter_number == 46
        assert result.cursor == 50
        repairs = get_event_logger().get_events(event_type=EventType.CURSOR_REPAIR)
        assert len(repairs) == 1

    @pytest.mark.asyncio
    async def test_lagging_cursor_moves_forward(self, store, project, embedder):
        """Should continue after the last committed chapter and advance a stale cursor."""
        await _commit(store, project.id, [1, 2, 3])
        orchestrator = Orchestrator(
            store, FakeLLM(respond), embedder=embedder, pipeline=StubPipeline(), trackers=[]
        )
        result = await orchestrator.advance_one_chapter(project.id)
        await orchestrator.drain()
        assert result.chapter_number == 4
        assert result.cursor == 4
        assert (await store.select_one("projects", {"id": project.id}))["current_chapter"] == 4

    @pytest.mark.asyncio
    async def test_runaway_cursor_rolls_back(self, store, project, embedder):
        """Should pull a cursor past the last committed chapter back to the prefix."""
        await _commit(store, project.id, [1, 2])
        await store.update("projects", {"current_chapter": 12}, {"id": project.id})
        orchestrator = Orchestrator(
            store, FakeLLM(respond), embedder=embedder, pipeline=StubPipeline(), trackers=[]
        )
        result = await orchestrator.advance_one_chapter(project.id)
        await orchestrator.drain()
        assert result.chapter_number == 3
        assert result.cursor == 3
        assert (await store.select_one("projects", {"id": project.id}))["current_chapter"] == 3

    @pytest.mark.asyncio
    async def test_failed_generation_commits_nothing(self, store, project, embedder):
        """Should propagate the failure without touching chapters or the cursor."""
        pipeline = StubPipeline(ChapterGenerationError(1, "not approved after 3 attempt(s)"))
        orchestrator = Orchestrator(
            store, FakeLLM(respond), embedder=embedder, pipeline=pipeline, trackers=[]
        )
        with pytest.raises(ChapterGenerationError):
            await orchestrator.advance_one_chapter(project.id)
        assert await store.count("chapters") == 0
        assert (await store.select_one("projects", {"id": project.id}))["current_chapter"] == 0

    @pytest.mark.asyncio
    async def test_provider_failure_is_wrapped(self, store, project, embedder):
        """Should report a provider failure as a chapter generation error."""
        orchestrator = Orchestrator(
            store, FakeLLM(respond), embedder=embedder,
            pipeline=StubPipeline(ProviderError("upstream down")), trackers=[],
        )  # fmt: skip
        with pytest.raises(ChapterGenerationError) as info:
            await orchestrator.advance_one_chapter(project.id)
        assert info.value.chapter_number == 1

    @pytest.mark.asyncio
    async def test_unknown_project(self, store, embedder):
        """Should raise ProjectNotFoundError for a missing project."""
        orchestrator = Orchestrator(store, FakeLLM(respond), embedder=embedder, trackers=[])
        with pytest.raises(ProjectNotFoundError):
            await orchestrator.advance_one_chapter("missing")

    @pytest.mark.asyncio
    async def test_tracker_failure_does_not_block(self, store, project, embedder):
        """Should commit and keep going when a background tracker raises."""
        orchestrator = Orchestrator(
            store, FakeLLM(respond), embedder=embedder,
            pipeline=StubPipeline(), trackers=[BrokenTracker(store)],
        )  # fmt: skip
        first = await orchestrator.advance_one_chapter(project.id)
        second = await orchestrator.advance_one_chapter(project.id)

        assert first.batch.done()
        outcomes = await first.batch
        broken = next(o for o in outcomes if o.name == "broken")
        assert not broken.ok
        assert broken.error == "ledger offline"
        assert second.chapter_number == 2
        await orchestrator.drain(project.id)
        assert await store.count("chapters") == 2

    @pytest.mark.asyncio
    async def test_prepares_arc_before_generating(self, store, project, embedder):
        """Should let trackers plan the arc first and carry on when one of them fails."""
        await _commit(store, project.id, range(1, 21))
        await store.update("projects", {"current_chapter": 20}, {"id": project.id})
        planner = ArcPlanningTracker(store)
        failing = ArcPlanningTracker(store, fail=True)
        pipeline = StubPipeline()
        orchestrator = Orchestrator(
            store, FakeLLM(respond), embedder=embedder,
            pipeline=pipeline, trackers=[failing, planner],
        )  # fmt: skip
        result = await orchestrator.advance_one_chapter(project.id)
        await orchestrator.drain()

        assert result.chapter_number == 21
        assert planner.prepared == [2]
        assert failing.prepared == [2]
        warnings = get_event_logger().get_events(event_type=EventType.TRACKER_UPDATE)
        assert any("could not plan arc 2: planner offline" in e.message for e in warnings)

    @pytest.mark.asyncio
    async def test_advance_many(self, store, project, embedder):
        """Should advance the requested number of chapters in order."""
        orchestrator = Orchestrator(
            store, FakeLLM(respond), embedder=embedder, pipeline=StubPipeline(), trackers=[]
        )
        results = await orchestrator.advance(project.id, 3)
        await orchestrator.drain()
        assert [r.chapter_number for r in results] == [1, 2, 3]
        assert results[-1].cursor == 3
