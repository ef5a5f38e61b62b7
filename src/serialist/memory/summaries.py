# src/serialist/memory/summaries.py
"""Chapter summaries, rolling synopsis, arc plans and the story bible.

Unlike the background trackers, the summary step runs inline right after a
chapter is committed: the next chapter cannot start without its bridge.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from pydantic import Field

from serialist.canon.filters import gt, not_in
from serialist.core.logs import EventType, get_event_logger
from serialist.core.text import first_sentence, last_sentences, smart_truncate, split_sentences
from serialist.errors import SerialistError
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import (
    ArcPlan,
    ChapterSummary,
    CharacterStatus,
    Project,
    Synopsis,
)
from serialist.models.base_model import SerialistBaseModel
from serialist.models.validators import is_valid_character_name

event_logger = get_event_logger()

SYNOPSIS_INTERVAL = 5
BIBLE_FIRST = 3
BIBLE_INTERVAL = 150
CLOSING_PHASE = 0.8
HEAD_TAIL_CHARS = 3000

HOOK_WORDS = re.compile(
    r"\b(?:suddenly|but then|just as|before (?:he|she|they) could|who|what|why|"
    r"shadow|footsteps|voice|door|blood|scream|realized|unless|until)\b|[?…]|\.\.\.",
    re.IGNORECASE,
)

ANALYST_SYSTEM = "You are a meticulous continuity editor for a long serialized novel."


class CharacterDraft(SerialistBaseModel):
    name: str = ""
    status: CharacterStatus = CharacterStatus.ALIVE
    power_level: str = ""
    location: str = ""
    notes: str = ""


class SummaryAnalysis(SerialistBaseModel):
    summary: str = ""
    opening_sentence: str = ""
    protagonist_state: str = ""
    cliffhanger: str = ""
    characters: list[CharacterDraft] = Field(default_factory=list)


def fallback_cliffhanger(content: str) -> str:
    """The closing sentence that reads most like a hook, or simply the last two."""
    tail = split_sentences(content)[-4:]
    for sentence in reversed(tail):
        if HOOK_WORDS.search(sentence):
            return sentence
    return last_sentences(content, 2)


def fallback_summary(chapter: CommittedChapter) -> ChapterSummary:
    terminal = chapter.project.is_terminal_arc(chapter.chapter_number, chapter.arc_size)
    return ChapterSummary(
        chapter_number=chapter.chapter_number,
        title=chapter.title,
        summary=smart_truncate(chapter.content[:1200], 600),
        opening_sentence=first_sentence(chapter.content),
        cliffhanger="" if terminal else fallback_cliffhanger(chapter.content),
    )


class SummaryManager(Tracker):
    """Writes the bridge material and the slower-moving planning records."""

    name = "summaries"

    async def on_chapter_committed(self, chapter: CommittedChapter) -> ChapterSummary:  # type: ignore[override]
        summary = await self.summarize(chapter)
        ch = chapter.chapter_number
        if ch % SYNOPSIS_INTERVAL == 0:
            await self.refresh_synopsis(chapter.project, ch)
        if ch % self.arc_size == 0:
            await self.plan_arc(chapter.project, chapter.arc_number + 1)
        if ch == BIBLE_FIRST or (ch > BIBLE_FIRST and ch % BIBLE_INTERVAL == 0):
            await self.refresh_story_bible(chapter.project, ch)
        return summary

    async def summarize(self, chapter: CommittedChapter) -> ChapterSummary:
        """Store and return the chapter summary; never fails to produce a bridge."""
        content = chapter.content
        excerpt = (
            content
            if len(content) <= HEAD_TAIL_CHARS * 2
            else f"{content[:HEAD_TAIL_CHARS]}\n...\n{content[-HEAD_TAIL_CHARS:]}"
        )
        analysis = await self._analyze(
            f"""Summarize chapter {chapter.chapter_number} "{chapter.title}".
Protagonist: {chapter.project.protagonist_name}

{excerpt}

Return JSON: {{"summary": "3-5 sentences", "opening_sentence": "...",
"protagonist_state": "condition, location, power, goals at chapter end",
"cliffhanger": "the unresolved tension the chapter ends on",
"characters": [{{"name": "...", "status": "alive|dead|missing|unknown", "power_level": "...", "location": "...", "notes": "..."}}]}}""",
            SummaryAnalysis,
            system=ANALYST_SYSTEM,
            temperature=0.1,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )
        fallback = fallback_summary(chapter)
        if analysis is None:
            summary = fallback
        else:
            summary = ChapterSummary(
                chapter_number=chapter.chapter_number,
                title=chapter.title,
                summary=analysis.summary or fallback.summary,
                opening_sentence=analysis.opening_sentence or fallback.opening_sentence,
                protagonist_state=analysis.protagonist_state,
                cliffhanger=analysis.cliffhanger or fallback.cliffhanger,
            )
            await self._record_characters(chapter, analysis.characters)

        await self.store.upsert(
            "chapter_summaries",
            [summary.model_dump(mode="json") | {"project_id": chapter.project_id}],
            conflict=("project_id", "chapter_number"),
        )
        return summary

    async def _record_characters(self, chapter: CommittedChapter, drafts: list[CharacterDraft]) -> None:
        rows = {}
        for draft in drafts:
            name = draft.name.strip()
            if not is_valid_character_name(name):
                continue
            rows[name.lower()] = {
                "project_id": chapter.project_id,
                "chapter_number": chapter.chapter_number,
                "character_name": name,
                "status": draft.status.value,
                "power_level": draft.power_level,
                "location": draft.location,
                "notes": draft.notes,
            }
        if rows:
            await self.store.upsert(
                "character_states",
                list(rows.values()),
                conflict=("project_id", "chapter_number", "character_name"),
            )

    async def refresh_synopsis(self, project: Project, chapter_number: int) -> Synopsis | None:
        row = await self.store.select_one("synopses", {"project_id": project.id})
        previous = Synopsis.model_validate(row) if row else Synopsis()
        summaries = await self.store.select(
            "chapter_summaries",
            {"project_id": project.id, "chapter_number": gt(previous.last_updated_chapter)},
            order_by="chapter_number",
        )
        if not summaries:
            return None
        recap = "\n".join(f"Ch.{s['chapter_number']}: {s['summary']}" for s in summaries)
        synopsis = await self._analyze(
            f"""Update the running synopsis of "{project.title}".

Previous synopsis (through ch.{previous.last_updated_chapter}):
{previous.synopsis_text or '(none)'}

New chapters:
{recap}

Return JSON: {{"synopsis_text": "...", "protagonist_state": "...", "active_allies": [], "active_enemies": [], "open_threads": []}}""",
            Synopsis,
            system=ANALYST_SYSTEM,
            temperature=0.2,
            project_id=project.id,
            chapter_number=chapter_number,
        )
        if synopsis is None:
            return None
        synopsis = synopsis.model_copy(update={"last_updated_chapter": chapter_number})
        await self.store.upsert(
            "synopses",
            [synopsis.model_dump(mode="json") | {"project_id": project.id}],
            conflict=("project_id",),
        )
        return synopsis

    async def load_arc_plan(self, project_id: str, arc_number: int) -> ArcPlan | None:
        row = await self.store.select_one(
            "arc_plans", {"project_id": project_id, "arc_number": arc_number}
        )
        return ArcPlan.model_validate(row) if row else None

    async def ensure_arc_plan(self, project: Project, arc_number: int) -> ArcPlan | None:
        return await self.load_arc_plan(project.id, arc_number) or await self.plan_arc(project, arc_number)

    async def plan_arc(self, project: Project, arc_number: int) -> ArcPlan | None:
        """Plan arc ``arc_number`` from the synopsis and the open threads.

        Arcs ending in the last fifth of the planned run are told to start
        closing threads instead of opening new ones.
        """
        start = (arc_number - 1) * self.arc_size + 1
        if start > project.total_planned_chapters:
            return None
        end = min(arc_number * self.arc_size, project.total_planned_chapters)
        synopsis = await self.store.select_one("synopses", {"project_id": project.id})
        threads = await self.store.select(
            "plot_threads",
            {"project_id": project.id, "status": not_in(["resolved", "legacy"])},
            order_by="importance",
            descending=True,
            limit=10,
            columns=("name", "status"),
        )
        closing = ""
        if end >= project.total_planned_chapters * CLOSING_PHASE:
            closing = (
                "\nThe story is in its closing phase: resolve threads, do not open new "
                f"major mysteries, and build toward the finale at chapter {project.total_planned_chapters}."
            )
        thread_lines = "\n".join(
            f"- {t['name']} ({t['status']})" for t in threads
        )
        plan = await self._analyze(
            f"""Plan arc {arc_number} (chapters {start}-{end}) of "{project.title}" ({project.genre}).

Master outline:
{project.master_outline[:3000]}

Story so far:
{(synopsis or {}).get('synopsis_text') or '(beginning of the story)'}

Open threads:
{thread_lines or '(none)'}
{closing}
Return JSON: {{"theme": "...", "plan_text": "...",
"chapter_briefs": [{{"chapter_number": {start}, "brief": "..."}}],
"threads_to_advance": [], "threads_to_resolve": [], "new_threads": []}}""",
            ArcPlan,
            system=ANALYST_SYSTEM,
            temperature=0.3,
            max_tokens=4096,
            project_id=project.id,
            chapter_number=start,
        )
        if plan is None:
            return None
        plan = plan.model_copy(
            update={
                "arc_number": arc_number,
                "start_chapter": start,
                "end_chapter": end,
                "chapter_briefs": [b for b in plan.chapter_briefs if start <= b.chapter_number <= end],
            }
        )
        await self.store.upsert(
            "arc_plans",
            [plan.model_dump(mode="json") | {"project_id": project.id}],
            conflict=("project_id", "arc_number"),
        )
        event_logger.info(
            f"Planned arc {arc_number} ({start}-{end}): {plan.theme}",
            event_type=EventType.TRACKER_UPDATE,
            component=self.name,
            project_id=project.id,
            chapter_number=start,
        )
        return plan

    async def refresh_story_bible(self, project: Project, chapter_number: int) -> str | None:
        if self.llm is None:
            return None
        summaries = await self.store.select(
            "chapter_summaries",
            {"project_id": project.id},
            order_by="chapter_number",
            descending=True,
            limit=20,
            columns=("chapter_number", "summary"),
        )
        recap = "\n".join(f"Ch.{s['chapter_number']}: {s['summary']}" for s in reversed(summaries))
        try:
            completion = await self.llm.complete(
                f"""Write the story bible for "{project.title}" as of chapter {chapter_number}:
core premise, world rules, the protagonist's defining traits and goals, major characters
and their relationships, and the tone to keep. Plain prose, no JSON.

Outline:
{project.master_outline[:3000]}

Recent chapters:
{recap}

Previous bible:
{project.story_bible[:3000] or '(none)'}""",
                model=self.model,
                system=ANALYST_SYSTEM,
                temperature=0.3,
                max_tokens=4096,
            )
        except SerialistError as exc:
            event_logger.warning(
                f"Story bible refresh skipped ({exc})",
                event_type=EventType.TRACKER_UPDATE,
                component=self.name,
                project_id=project.id,
                chapter_number=chapter_number,
            )
            return None
        bible = completion.content.strip()
        if len(bible) < 100:
            return None
        await self.store.update("projects", {"story_bible": bible}, {"id": project.id})
        return bible

    async def bridge(self, project: Project, chapter_number: int) -> str | None:
        """Bridge text from the previous chapter, ``None`` for chapter 1."""
        if chapter_number <= 1:
            return None
        previous = chapter_number - 1
        row = await self.store.select_one(
            "chapter_summaries", {"project_id": project.id, "chapter_number": previous}
        )
        if row is not None:
            summary = ChapterSummary.model_validate(row)
            hook, state = summary.cliffhanger, summary.protagonist_state
        else:
            chapter = await self.store.select_one(
                "chapters",
                {"project_id": project.id, "chapter_number": previous},
                columns=("content",),
            )
            if chapter is None:
                return None
            hook, state = fallback_cliffhanger(chapter["content"] or ""), ""

        lines = [f"=== BRIDGE FROM CHAPTER {previous} ==="]
        if hook:
            lines.append(f"Unresolved hook: {hook}")
            lines.append("Open this chapter by picking up that hook directly.")
        if state:
            lines.append(f"Protagonist state: {state}")
        return "\n".join(lines)

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        return await self.bridge(project, chapter_number)


__all__ = [
    "CharacterDraft",
    "SummaryAnalysis",
    "SummaryManager",
    "fallback_cliffhanger",
    "fallback_summary",
]
