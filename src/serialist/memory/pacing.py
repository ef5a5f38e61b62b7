# src/serialist/memory/pacing.py
"""Pacing director.

Each arc gets a blueprint that assigns every chapter a mood, an intensity and
a cliffhanger strength, so consecutive chapters rise and fall instead of
running at one pitch. The blueprint is planned once, before the arc begins.
"""

from __future__ import annotations

from collections.abc import Sequence

from serialist.core.logs import EventType, get_event_logger
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import (
    ChapterMood,
    ChapterPacing,
    CliffhangerIntensity,
    PacingBlueprint,
    Project,
)

event_logger = get_event_logger()

PACING_SYSTEM = (
    "You are a pacing editor for long serialized web fiction. You shape each arc so "
    "tension builds, breaks and builds again."
)

MOOD_GUIDE: dict[ChapterMood, str] = {
    ChapterMood.BUILDUP: "Lay groundwork. Introduce stakes and let tension simmer.",
    ChapterMood.RISING: "Escalate. Each scene raises the stakes over the last.",
    ChapterMood.CALM_BEFORE_STORM: "Quiet, character-driven. Let dread gather under the calm.",
    ChapterMood.CLIMAX: "Full intensity. Pay off the arc's setup with decisive action.",
    ChapterMood.AFTERMATH: "Consequences. Count the cost and let characters react.",
    ChapterMood.TRAINING: "Growth through effort. Show the struggle, not just the result.",
    ChapterMood.VILLAIN_FOCUS: "Follow the opposition. Make their plan and menace concrete.",
    ChapterMood.COMEDIC_BREAK: "Levity. Banter and warmth, with one thread still tugging.",
    ChapterMood.REVELATION: "Uncover a truth that reframes what came before.",
    ChapterMood.TRANSITION: "Close this chapter of the journey and point at the next.",
}

CLIFFHANGER_GUIDE: dict[CliffhangerIntensity, str] = {
    CliffhangerIntensity.NONE: "A resolved ending is fine.",
    CliffhangerIntensity.MILD: "End on a small open question.",
    CliffhangerIntensity.STRONG: "End on a sharp turn the reader must follow.",
    CliffhangerIntensity.EXTREME: "End mid-crisis with everything at stake.",
}


def _blueprint_prompt(project: Project, arc_number: int, start: int, end: int) -> str:
    return f"""Plan the pacing of arc {arc_number} (chapters {start}-{end}) of "{project.title}" ({project.genre}).

Master outline:
{project.master_outline[:2000]}

Moods: {', '.join(m.value for m in ChapterMood)}
Rules:
- Open with 2-3 buildup chapters.
- Never put two climax chapters back to back unless they are one continuous battle of 2-3 chapters.
- Place a calm_before_storm chapter before the main climax.
- Include at least one villain_focus, one revelation and two climax chapters.
- No more than 3 training chapters in a row.
- Close with aftermath and then transition.

Return JSON: {{"chapters": [{{"chapter_number": {start}, "mood": "buildup", "intensity_level": 4, "suggested_structure": "...", "dopamine_required": true, "cliffhanger_intensity": "none|mild|strong|extreme"}}], "required_variety": ["..."]}}"""


def clean_blueprint(
    blueprint: PacingBlueprint, arc_number: int, start: int, end: int
) -> PacingBlueprint:
    """Keep one entry per chapter inside ``start..end``, in chapter order."""
    by_chapter: dict[int, ChapterPacing] = {}
    for entry in blueprint.chapters:
        if start <= entry.chapter_number <= end and entry.chapter_number not in by_chapter:
            by_chapter[entry.chapter_number] = entry
    return PacingBlueprint(
        arc_number=arc_number,
        chapters=[by_chapter[n] for n in sorted(by_chapter)],
        required_variety=blueprint.required_variety,
    )


def climax_streaks(blueprint: PacingBlueprint, limit: int = 3) -> list[int]:
    """Chapters where a run of climax moods grows longer than ``limit``."""
    streaks = []
    run = 0
    previous = None
    for entry in blueprint.chapters:
        if entry.mood != ChapterMood.CLIMAX:
            run = 0
        elif previous is not None and entry.chapter_number == previous + 1:
            run += 1
        else:
            run = 1
        if run > limit:
            streaks.append(entry.chapter_number)
        previous = entry.chapter_number
    return streaks


class PacingDirector(Tracker):
    """Plans a pacing blueprint per arc and tells the writer this chapter's mood."""

    name = "pacing"

    async def load(self, project_id: str, arc_number: int) -> PacingBlueprint | None:
        row = await self.store.select_one(
            "pacing_blueprints", {"project_id": project_id, "arc_number": arc_number}
        )
        if row is None:
            return None
        return PacingBlueprint.model_validate(row["blueprint"])

    async def prepare_arc(self, project: Project, arc_number: int) -> None:
        if await self.load(project.id, arc_number) is None:
            await self.plan_arc(project, arc_number)

    async def plan_arc(self, project: Project, arc_number: int) -> PacingBlueprint | None:
        start = (arc_number - 1) * self.arc_size + 1
        end = min(arc_number * self.arc_size, project.total_planned_chapters)
        if start > project.total_planned_chapters:
            return None
        drafted = await self._analyze(
            _blueprint_prompt(project, arc_number, start, end),
            PacingBlueprint,
            system=PACING_SYSTEM,
            temperature=0.4,
            max_tokens=4096,
            project_id=project.id,
            chapter_number=start,
        )
        if drafted is None:
            return None
        blueprint = clean_blueprint(drafted, arc_number, start, end)
        # An empty blueprint is still stored so the arc is not planned again.
        await self.store.upsert(
            "pacing_blueprints",
            [
                {
                    "project_id": project.id,
                    "arc_number": arc_number,
                    "blueprint": blueprint.model_dump(mode="json"),
                }
            ],
            conflict=("project_id", "arc_number"),
        )
        streaks = climax_streaks(blueprint)
        if streaks:
            event_logger.warning(
                f"Arc {arc_number} blueprint runs climax too long at ch.{streaks[0]}",
                event_type=EventType.TRACKER_UPDATE,
                component=self.name,
                project_id=project.id,
                chapter_number=streaks[0],
            )
        event_logger.info(
            f"Pacing blueprint for arc {arc_number}: {len(blueprint.chapters)} chapter(s)",
            event_type=EventType.TRACKER_UPDATE,
            component=self.name,
            project_id=project.id,
            chapter_number=start,
        )
        return blueprint

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        next_arc = chapter.project.arc_number(chapter.chapter_number + 1, chapter.arc_size)
        if next_arc != chapter.arc_number:
            await self.prepare_arc(chapter.project, next_arc)

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        blueprint = await self.load(project.id, project.arc_number(chapter_number, self.arc_size))
        if blueprint is None:
            return None
        pacing = blueprint.for_chapter(chapter_number)
        if pacing is None:
            return None
        lines = [
            "=== PACING ===",
            f"Mood: {pacing.mood.value} (intensity {pacing.intensity_level}/10)",
            MOOD_GUIDE[pacing.mood],
        ]
        if pacing.suggested_structure:
            lines.append(f"Structure: {pacing.suggested_structure}")
        lines.append(
            "Deliver a satisfying payoff or win this chapter."
            if pacing.dopamine_required
            else "No big payoff needed; let tension build."
        )
        lines.append(f"Ending: {CLIFFHANGER_GUIDE[pacing.cliffhanger_intensity]}")
        return "\n".join(lines)


__all__ = ["CLIFFHANGER_GUIDE", "MOOD_GUIDE", "PacingDirector", "clean_blueprint", "climax_streaks"]
