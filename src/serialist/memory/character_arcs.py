# src/serialist/memory/character_arcs.py
"""Character arc tracker.

Recurring characters earn a phased arc once they have appeared in enough
chapters; the fragment tells the writer which phase each cast member is in.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from serialist.core.logs import EventType, get_event_logger
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import CharacterArc, Project

event_logger = get_event_logger()

MIN_APPEARANCES = 3
TRANSITION_WARNING = 5

ARC_SYSTEM = "You design character development arcs for long serialized fiction."


def _arc_prompt(project: Project, name: str, chapter_number: int) -> str:
    horizon = min(project.total_planned_chapters, chapter_number + 200)
    return f"""Design the development arc of {name}, a recurring character in "{project.title}" ({project.genre}).
The protagonist is {project.protagonist_name}. {name} has now appeared in several chapters up to chapter {chapter_number}.

Story outline:
{project.master_outline[:2000]}

Plan 3-4 phases between chapter {chapter_number} and chapter {horizon}.
Return JSON:
{{"character_name": "{name}", "role": "...", "internal_conflict": "...",
  "phases": [{{"phase": "...", "chapter_range": [{chapter_number}, {chapter_number + 40}], "traits": "...", "trigger_event": "..."}}],
  "signature_traits": ["..."], "relationship_with_protagonist": "..."}}"""


class CharacterArcTracker(Tracker):
    name = "character_arcs"

    async def _arcs(self, project_id: str, names: Sequence[str] | None = None) -> list[CharacterArc]:
        rows = await self.store.select("character_arcs", {"project_id": project_id})
        arcs = [CharacterArc.model_validate(row) for row in rows]
        if names is None:
            return arcs
        wanted = {n.lower() for n in names}
        return [a for a in arcs if a.character_name.lower() in wanted]

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        rows = await self.store.select("character_arcs", {"project_id": chapter.project_id})
        existing = {row["character_name"].lower(): row for row in rows}
        cast_keys = {name.lower(): name for name in chapter.cast}

        for key, row in existing.items():
            if key not in cast_keys:
                continue
            await self.store.update(
                "character_arcs",
                {
                    "last_seen_chapter": chapter.chapter_number,
                    "appearance_count": (row.get("appearance_count") or 0) + 1,
                },
                {"project_id": chapter.project_id, "character_name": row["character_name"]},
            )

        found = await self._arc_candidate(chapter, set(existing), cast_keys)
        if found is None:
            return
        candidate, appearances = found
        arc = await self._analyze(
            _arc_prompt(chapter.project, candidate, chapter.chapter_number),
            CharacterArc,
            system=ARC_SYSTEM,
            temperature=0.4,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )
        if arc is None or not arc.phases:
            return
        record = arc.model_copy(update={"character_name": candidate}).model_dump(mode="json")
        await self.store.upsert(
            "character_arcs",
            [
                record
                | {
                    "project_id": chapter.project_id,
                    "appearance_count": appearances,
                    "last_seen_chapter": chapter.chapter_number,
                }
            ],
            conflict=("project_id", "character_name"),
        )
        event_logger.info(
            f"Created arc for {candidate} ({len(arc.phases)} phases)",
            event_type=EventType.TRACKER_UPDATE,
            component=self.name,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )

    async def _arc_candidate(
        self, chapter: CommittedChapter, known: set[str], cast_keys: dict[str, str]
    ) -> tuple[str, int] | None:
        """First cast member seen in enough chapters who has no arc yet, with that count."""
        rows = await self.store.select(
            "character_states", {"project_id": chapter.project_id}, columns=("character_name",)
        )
        counts = Counter(row["character_name"].lower() for row in rows)
        protagonist = chapter.project.protagonist_name.lower()
        for key, name in cast_keys.items():
            if key in known or key == protagonist:
                continue
            if counts[key] >= MIN_APPEARANCES:
                return name, counts[key]
        return None

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        if not cast:
            return None
        arcs = await self._arcs(project.id, cast)
        if not arcs:
            return None
        lines = ["=== CHARACTER ARCS ==="]
        for arc in arcs:
            lines.append(f"{arc.character_name} ({arc.role or 'recurring'})")
            if arc.internal_conflict:
                lines.append(f"  Inner conflict: {arc.internal_conflict}")
            phase = arc.phase_at(chapter_number)
            if phase is not None:
                lines.append(f"  Current phase: {phase.phase} - {phase.traits}")
            upcoming = arc.next_phase(chapter_number)
            if upcoming and upcoming.chapter_start - chapter_number <= TRANSITION_WARNING:
                lines.append(
                    f"  Transition ahead at ch.{upcoming.chapter_start}: {upcoming.phase}"
                    f" (trigger: {upcoming.trigger_event or 'unspecified'})"
                )
            if arc.signature_traits:
                lines.append(f"  Signature traits: {', '.join(arc.signature_traits[:5])}")
            if arc.relationship_with_protagonist:
                lines.append(f"  With the protagonist: {arc.relationship_with_protagonist}")
        return "\n".join(lines)


__all__ = ["CharacterArcTracker", "MIN_APPEARANCES"]
