# src/serialist/langgraph/graph.py
"""LangGraph orchestration for chapter generation.

One fixed loop: ``draft_outline -> draft_prose -> critique``, after which the
chapter either ends approved, goes back to prose (revise, same outline) or
back to the outline (rewrite), until the attempt budget runs out.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph

from serialist.agents.architect import StoryArchitect, choose_title
from serialist.agents.critic import ChapterCritic
from serialist.agents.writer import ChapterWriter
from serialist.config import config
from serialist.core.logs import EventType, get_event_logger, get_logger
from serialist.errors import ChapterGenerationError
from serialist.models import ChapterOutline, CriticReport

from .state import ChapterState

logger = get_logger(__name__)
event_logger = get_event_logger()


@dataclass(frozen=True)
class ChapterRequest:
    chapter_number: int
    context: str
    target_words: int
    protagonist: str = ""
    previous_titles: tuple[str, ...] = ()
    dead_characters: tuple[str, ...] = ()
    voices: tuple[tuple[str, str], ...] = ()
    terminal: bool = False


@dataclass(frozen=True)
class GeneratedChapter:
    chapter_number: int
    title: str
    content: str
    word_count: int
    quality_score: float
    outline: ChapterOutline
    report: CriticReport
    attempts: int


def verdict_for(report: CriticReport) -> str:
    if report.approved:
        return "approved"
    return "rewrite" if report.requires_rewrite else "revise"


def feedback_for(report: CriticReport) -> list[str]:
    if report.rewrite_instructions.strip():
        return [report.rewrite_instructions.strip()]
    serious = [i.description for i in report.issues if i.severity.value in ("moderate", "major", "critical")]
    return ["; ".join(serious[:5])] if serious else ["Improve overall quality and pacing."]


class ChapterPipeline:
    """Architect, writer and critic wired into a compiled state graph."""

    def __init__(
        self,
        architect: StoryArchitect,
        writer: ChapterWriter,
        critic: ChapterCritic,
        *,
        max_attempts: int | None = None,
    ) -> None:
        self.architect = architect
        self.writer = writer
        self.critic = critic
        self.max_attempts = max_attempts or config.engine.max_chapter_retries
        self.graph = self.build_graph()

    async def draft_outline(self, state: ChapterState) -> dict[str, Any]:
        outline = await self.architect.plan_chapter(
            state["chapter_number"],
            state["context"],
            target_words=state["target_words"],
            protagonist=state.get("protagonist", ""),
            previous_titles=state.get("previous_titles", []),
            feedback=state.get("feedback", []),
            terminal=state.get("terminal", False),
        )
        return {"outline": outline, "attempt": state.get("attempt", 0) + 1}

    async def draft_prose(self, state: ChapterState) -> dict[str, Any]:
        outline = state["outline"]
        assert outline is not None
        update: dict[str, Any] = {}
        # A revise pass re-enters here without a new outline and still spends an attempt.
        if state.get("verdict") == "revise":
            update["attempt"] = state.get("attempt", 0) + 1
        draft = await self.writer.write_chapter(
            outline,
            state["context"],
            target_words=state["target_words"],
            feedback=state.get("feedback", []),
            voices=state.get("voices") or None,
        )
        return {**update, "draft": draft}

    async def critique(self, state: ChapterState) -> dict[str, Any]:
        outline, draft = state["outline"], state["draft"]
        assert outline is not None and draft is not None
        report = await self.critic.review(
            outline,
            draft.content,
            context=state["context"],
            target_words=state["target_words"],
            dead_characters=state.get("dead_characters", []),
            terminal=state.get("terminal", False),
        )
        verdict = verdict_for(report)
        update: dict[str, Any] = {"report": report, "verdict": verdict, "reports": [report]}
        if verdict != "approved":
            update["feedback"] = feedback_for(report)
            event_logger.info(
                f"Attempt {state.get('attempt', 1)} not approved ({verdict}): "
                f"{update['feedback'][0][:160]}",
                event_type=EventType.PIPELINE_STEP,
                component="pipeline",
                chapter_number=state["chapter_number"],
            )
        return update

    def route_after_critique(self, state: ChapterState) -> str:
        verdict = state.get("verdict")
        if verdict == "approved":
            return END
        if state.get("attempt", 0) >= state.get("max_attempts", self.max_attempts):
            return END
        return "draft_outline" if verdict == "rewrite" else "draft_prose"

    def build_graph(self) -> CompiledStateGraph:
        """Return the compiled chapter graph."""
        t0 = time.perf_counter()
        builder = StateGraph(ChapterState)
        builder.add_node("draft_outline", self.draft_outline)
        builder.add_node("draft_prose", self.draft_prose)
        builder.add_node("critique", self.critique)
        builder.add_edge(START, "draft_outline")
        builder.add_edge("draft_outline", "draft_prose")
        builder.add_edge("draft_prose", "critique")
        builder.add_conditional_edges(
            "critique", self.route_after_critique, ["draft_outline", "draft_prose", END]
        )
        compiled = builder.compile()
        logger.debug("Chapter graph compiled | duration=%.3fs", time.perf_counter() - t0)
        return compiled

    async def run(self, request: ChapterRequest) -> GeneratedChapter:
        """Drive the loop to an approved chapter.

        Raises
        ------
        ChapterGenerationError
            When no attempt is approved within the budget.
        """
        initial: ChapterState = {
            "chapter_number": request.chapter_number,
            "context": request.context,
            "target_words": request.target_words,
            "protagonist": request.protagonist,
            "previous_titles": list(request.previous_titles),
            "dead_characters": list(request.dead_characters),
            "voices": dict(request.voices),
            "terminal": request.terminal,
            "max_attempts": self.max_attempts,
            "attempt": 0,
            "verdict": None,
            "feedback": [],
            "reports": [],
        }
        final = await self.graph.ainvoke(
            initial, config={"recursion_limit": self.max_attempts * 3 + 5}
        )
        report: CriticReport | None = final.get("report")
        if report is None or not report.approved:
            reason = (
                report.rewrite_instructions or "critique never approved the chapter"
                if report
                else "no critique produced"
            )
            raise ChapterGenerationError(
                request.chapter_number,
                f"not approved after {final.get('attempt', 0)} attempt(s): {reason}",
            )

        outline, draft = final["outline"], final["draft"]
        title = choose_title(
            draft.content, request.chapter_number, outline.title, request.previous_titles
        )
        return GeneratedChapter(
            chapter_number=request.chapter_number,
            title=title,
            content=draft.content,
            word_count=draft.word_count,
            quality_score=report.overall_score,
            outline=outline,
            report=report,
            attempts=final.get("attempt", 1),
        )


__all__ = [
    "ChapterPipeline",
    "ChapterRequest",
    "GeneratedChapter",
    "feedback_for",
    "verdict_for",
]
