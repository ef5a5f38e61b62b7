# src/serialist/langgraph/context.py
"""Assemble the bounded prompt context for the next chapter.

Sections are built in a fixed priority order. When the joined text runs past
the character budget the lowest-priority section is cut first; the bridge and
the character roster are never cut.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field

from serialist.canon.filters import gte, lt
from serialist.canon.store import CanonStore
from serialist.config import config
from serialist.core.logs import EventType, get_event_logger, get_logger
from serialist.core.text import smart_truncate
from serialist.memory import SemanticStore, SummaryManager, Tracker
from serialist.models import CharacterArc, CharacterState, CharacterStatus, Project, Synopsis

logger = get_logger(__name__)
event_logger = get_event_logger()

OUTLINE_CHARS = 5000
BIBLE_CHARS = 4000
SYNOPSIS_CHARS = 3000
RECENT_CHARS = 3000
ARC_PLAN_CHARS = 3000
FRAGMENT_CHARS = {"foreshadowing": 1500, "character_arcs": 1500, "world_rules": 1100}
DEFAULT_FRAGMENT_CHARS = 600
CAST_WINDOW = 3
OPENINGS = 10
HOOKS = 5
TITLES = 20
SEPARATOR = "\n\n"


@dataclass
class Section:
    name: str
    text: str
    protected: bool = False


@dataclass
class AssembledContext:
    """Prompt text plus the facts the pipeline needs alongside it."""

    text: str
    sections: list[str]
    cast: list[str] = field(default_factory=list)
    dead_characters: list[str] = field(default_factory=list)
    previous_titles: list[str] = field(default_factory=list)
    voices: dict[str, str] = field(default_factory=dict)
    truncated: list[str] = field(default_factory=list)


def finale_guidance(project: Project, chapter_number: int) -> str:
    total = project.total_planned_chapters
    if total <= 0:
        return ""
    remaining = total - chapter_number
    progress = chapter_number / total
    if chapter_number > total:
        return (
            f"FINALE: the planned {total} chapters are complete. Resolve the remaining threads "
            "and bring the story to its ending now; open nothing new."
        )
    if remaining <= 20:
        return (
            f"FINALE: {remaining} chapter(s) remain. Every chapter must close threads and build "
            "toward the final confrontation. No new mysteries, no new major characters."
        )
    if progress >= 0.9:
        return "ENDGAME: the final tenth of the story. Start paying off the oldest promises."
    if progress >= 0.8:
        return "LATE STORY: begin converging threads toward the climax; introduce little that is new."
    return ""


def fit_to_budget(sections: list[Section], budget: int) -> tuple[list[Section], list[str]]:
    """Trim ``sections`` (highest priority first) to ``budget`` characters.

    Returns the kept sections and the names of those that were cut or shortened.
    Protected sections are kept whole even when they alone exceed the budget.
    """
    kept = [s for s in sections if s.text]
    cut: list[str] = []

    def size() -> int:
        return sum(len(s.text) for s in kept) + len(SEPARATOR) * max(0, len(kept) - 1)

    while size() > budget:
        victims = [s for s in kept if not s.protected]
        if not victims:
            break
        victim = victims[-1]
        overflow = size() - budget
        room = len(victim.text) - overflow
        cut.append(victim.name)
        if room < 200:
            kept.remove(victim)
        else:
            victim.text = smart_truncate(victim.text, room - 4)
    return kept, cut


class ContextAssembler:
    """Reads every memory owner and merges what it says into one prompt."""

    def __init__(
        self,
        store: CanonStore,
        summaries: SummaryManager,
        trackers: Sequence[Tracker],
        semantic: SemanticStore | None = None,
        *,
        budget: int | None = None,
        recent_chapters: int | None = None,
    ) -> None:
        self.store = store
        self.summaries = summaries
        self.trackers = list(trackers)
        self.semantic = semantic
        self.budget = budget or config.engine.context_char_budget
        self.recent_chapters = recent_chapters or config.engine.recent_chapters

    async def roster(self, project: Project, chapter_number: int) -> tuple[list[str], list[str]]:
        """Latest known status per character before ``chapter_number``: (alive, dead)."""
        rows = await self.store.select(
            "character_states",
            {"project_id": project.id, "chapter_number": lt(chapter_number)},
            order_by="chapter_number",
        )
        latest: dict[str, CharacterState] = {}
        for row in rows:
            state = CharacterState.model_validate(row)
            latest[state.character_name] = state
        alive = [n for n, s in latest.items() if s.status != CharacterStatus.DEAD]
        dead = [n for n, s in latest.items() if s.status == CharacterStatus.DEAD]
        return alive, dead

    async def recent_cast(self, project: Project, chapter_number: int, dead: Sequence[str]) -> list[str]:
        rows = await self.store.select(
            "character_states",
            {
                "project_id": project.id,
                "chapter_number": gte(chapter_number - CAST_WINDOW),
            },
            columns=("character_name", "chapter_number"),
        )
        cast = [project.protagonist_name] if project.protagonist_name else []
        for row in rows:
            name = row["character_name"]
            if row["chapter_number"] < chapter_number and name not in cast and name not in dead:
                cast.append(name)
        return cast

    async def voices(self, project: Project, cast: Sequence[str]) -> dict[str, str]:
        if not cast:
            return {}
        rows = await self.store.select("character_arcs", {"project_id": project.id})
        voices = {}
        for row in rows:
            arc = CharacterArc.model_validate(row)
            if arc.character_name in cast and arc.signature_traits:
                voices[arc.character_name] = ", ".join(arc.signature_traits[:3])
        return voices

    async def _fragment(
        self, tracker: Tracker, project: Project, chapter_number: int, cast: Sequence[str]
    ) -> str | None:
        try:
            return await tracker.context_fragment(project, chapter_number, cast)
        except Exception as exc:
            event_logger.warning(
                f"{tracker.name}: context fragment unavailable ({exc})",
                event_type=EventType.TRACKER_UPDATE,
                component=tracker.name,
                project_id=project.id,
                chapter_number=chapter_number,
                error_type=type(exc).__name__,
            )
            return None

    async def _outline_section(self, project: Project, chapter_number: int) -> str:
        parts = [f"=== STORY: {project.title} ({project.genre}) ==="]
        if project.protagonist_name:
            parts.append(f"Protagonist: {project.protagonist_name}")
        if project.world_description:
            parts.append(f"World: {project.world_description}")
        if project.master_outline:
            parts.append(f"Vision:\n{project.master_outline}")
        parts.append(
            f"Now writing chapter {chapter_number} of {project.total_planned_chapters}."
        )
        finale = finale_guidance(project, chapter_number)
        if finale:
            parts.append(finale)
        return smart_truncate("\n".join(parts), OUTLINE_CHARS)

    def _roster_section(self, alive: Sequence[str], dead: Sequence[str]) -> str:
        if not alive and not dead:
            return ""
        lines = ["=== CHARACTER ROSTER ==="]
        if alive:
            lines.append(f"Alive: {', '.join(alive)}")
        if dead:
            lines.append(
                f"FORBIDDEN, already dead (only in flashback or memory): {', '.join(dead)}"
            )
        return "\n".join(lines)

    async def _synopsis_section(self, project: Project) -> str:
        row = await self.store.select_one("synopses", {"project_id": project.id})
        if row is None:
            return ""
        synopsis = Synopsis.model_validate(row)
        lines = [f"=== STORY SO FAR (through ch.{synopsis.last_updated_chapter}) ===", synopsis.synopsis_text]
        if synopsis.protagonist_state:
            lines.append(f"Protagonist: {synopsis.protagonist_state}")
        if synopsis.active_allies:
            lines.append(f"Allies: {', '.join(synopsis.active_allies)}")
        if synopsis.active_enemies:
            lines.append(f"Enemies: {', '.join(synopsis.active_enemies)}")
        if synopsis.open_threads:
            lines.append(f"Open threads: {'; '.join(synopsis.open_threads)}")
        return smart_truncate("\n".join(lines), SYNOPSIS_CHARS)

    async def _recent_section(self, project: Project, chapter_number: int) -> str:
        rows = await self.store.select(
            "chapters",
            {
                "project_id": project.id,
                "chapter_number": lt(chapter_number),
            },
            order_by="chapter_number",
            descending=True,
            limit=self.recent_chapters,
            columns=("chapter_number", "title", "content"),
        )
        if not rows:
            return ""
        blocks = ["=== RECENT CHAPTERS ==="]
        for row in reversed(rows):
            content = row["content"] or ""
            tail = content if len(content) <= RECENT_CHARS else "..." + content[-RECENT_CHARS:]
            blocks.append(f"--- Chapter {row['chapter_number']}: {row['title']} ---\n{tail}")
        return "\n\n".join(blocks)

    async def _arc_section(self, project: Project, chapter_number: int) -> str:
        arc_number = project.arc_number(chapter_number, self.summaries.arc_size)
        plan = await self.summaries.load_arc_plan(project.id, arc_number)
        if plan is None:
            return ""
        lines = [
            f"=== ARC {plan.arc_number} (ch.{plan.start_chapter}-{plan.end_chapter}): {plan.theme} ===",
            smart_truncate(plan.plan_text, ARC_PLAN_CHARS),
        ]
        if plan.threads_to_advance:
            lines.append(f"Advance: {'; '.join(plan.threads_to_advance)}")
        if plan.threads_to_resolve:
            lines.append(f"Resolve this arc: {'; '.join(plan.threads_to_resolve)}")
        brief = plan.brief_for(chapter_number)
        if brief:
            lines.append(f"THIS CHAPTER'S BRIEF: {brief}")
        return "\n".join(lines)

    async def _anti_repetition(self, project: Project, chapter_number: int) -> tuple[str, list[str]]:
        summaries = await self.store.select(
            "chapter_summaries",
            {"project_id": project.id, "chapter_number": lt(chapter_number)},
            order_by="chapter_number",
            descending=True,
            limit=OPENINGS,
            columns=("opening_sentence", "cliffhanger"),
        )
        titles = [
            row["title"]
            for row in await self.store.select(
                "chapters",
                {"project_id": project.id, "chapter_number": lt(chapter_number)},
                order_by="chapter_number",
                descending=True,
                limit=TITLES,
                columns=("title",),
            )
            if row["title"]
        ]
        titles.reverse()
        openings = [r["opening_sentence"] for r in summaries if r.get("opening_sentence")]
        hooks = [r["cliffhanger"] for r in summaries[:HOOKS] if r.get("cliffhanger")]
        lines = []
        if openings:
            lines.append("Do NOT open like these recent chapters:")
            lines += [f"- {o[:200]}" for o in openings]
        if hooks:
            lines.append("Do NOT reuse these recent hook techniques:")
            lines += [f"- {h[:200]}" for h in hooks]
        if titles:
            lines.append(f"Titles already used: {'; '.join(titles)}")
        text = "=== AVOID REPETITION ===\n" + "\n".join(lines) if lines else ""
        return text, titles

    async def assemble(self, project: Project, chapter_number: int) -> AssembledContext:
        """Build the context for ``chapter_number`` of ``project``."""
        alive, dead = await self.roster(project, chapter_number)
        cast = await self.recent_cast(project, chapter_number, dead)

        readers = [self._fragment(t, project, chapter_number, cast) for t in self.trackers]
        if self.semantic is not None:
            readers.append(self._fragment(self.semantic, project, chapter_number, cast))
        (
            outline,
            bridge,
            synopsis,
            recent,
            arc,
            (avoid, titles),
            voices,
            *fragments,
        ) = await asyncio.gather(
            self._outline_section(project, chapter_number),
            self.summaries.bridge(project, chapter_number),
            self._synopsis_section(project),
            self._recent_section(project, chapter_number),
            self._arc_section(project, chapter_number),
            self._anti_repetition(project, chapter_number),
            self.voices(project, cast),
            *readers,
        )
        semantic = fragments.pop() if self.semantic is not None else None

        sections = [
            Section("outline", outline),
            Section("bridge", bridge or "", protected=True),
            Section("roster", self._roster_section(alive, dead), protected=True),
        ]
        for tracker, fragment in zip(self.trackers, fragments):
            if fragment:
                cap = FRAGMENT_CHARS.get(tracker.name, DEFAULT_FRAGMENT_CHARS)
                sections.append(Section(tracker.name, smart_truncate(fragment, cap)))
        bible = ""
        if project.story_bible:
            bible = smart_truncate(f"=== STORY BIBLE ===\n{project.story_bible}", BIBLE_CHARS)
        sections += [
            Section("semantic", semantic or ""),
            Section("story_bible", bible),
            Section("synopsis", synopsis),
            Section("recent_chapters", recent),
            Section("arc_plan", arc),
            Section("anti_repetition", avoid),
        ]

        kept, cut = fit_to_budget(sections, self.budget)
        if cut:
            event_logger.info(
                f"Context over budget; trimmed {', '.join(dict.fromkeys(cut))}",
                event_type=EventType.PIPELINE_STEP,
                component="context",
                project_id=project.id,
                chapter_number=chapter_number,
            )
        text = SEPARATOR.join(s.text for s in kept)
        logger.debug("Context assembled | chapter=%s chars=%s", chapter_number, len(text))
        return AssembledContext(
            text=text,
            sections=[s.name for s in kept],
            cast=cast,
            dead_characters=dead,
            previous_titles=titles,
            voices=voices,
            truncated=list(dict.fromkeys(cut)),
        )


__all__ = ["AssembledContext", "ContextAssembler", "Section", "finale_guidance", "fit_to_budget"]
