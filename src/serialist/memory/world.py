# src/serialist/memory/world.py
"""World expansion tracker.

The world is revealed location by location: each location is relevant to a
range of arcs, and prose must not reach ahead to places not yet explored.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import Field

from serialist.core.logs import EventType, get_event_logger
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import LocationBible, Project
from serialist.models.base_model import SerialistBaseModel
from serialist.models.validators import LenientInt, StrList

event_logger = get_event_logger()

WORLD_SYSTEM = "You are a worldbuilder planning how a serialized novel's setting unfolds over many arcs."


class LocationDraft(SerialistBaseModel):
    location_name: str = ""
    arc_start: LenientInt = 1
    arc_end: LenientInt = 1
    description: str = ""
    mysteries: StrList = Field(default_factory=list)


class WorldMap(SerialistBaseModel):
    locations: list[LocationDraft] = Field(default_factory=list)


class BibleDraft(SerialistBaseModel):
    description: str = ""
    key_features: StrList = Field(default_factory=list)
    mysteries: StrList = Field(default_factory=list)
    dangers: StrList = Field(default_factory=list)


def _from_row(row: dict[str, Any]) -> LocationBible:
    return LocationBible.model_validate({**(row.get("bible") or {}), **row})


def _bible_json(location: LocationBible) -> dict[str, Any]:
    return location.model_dump(mode="json", include={"description", "key_features", "mysteries", "dangers"})


class WorldTracker(Tracker):
    name = "world"

    async def locations(self, project_id: str) -> list[LocationBible]:
        rows = await self.store.select(
            "location_bibles", {"project_id": project_id}, order_by="position"
        )
        return [_from_row(row) for row in rows]

    async def ensure_world_map(self, project: Project) -> list[LocationBible]:
        """Generate the location list once, when the project has an outline to draw on."""
        existing = await self.locations(project.id)
        if existing or not project.master_outline:
            return existing
        total_arcs = max(1, -(-project.total_planned_chapters // self.arc_size))
        world = await self._analyze(
            f"""Plan the locations of "{project.title}" ({project.genre}) across {total_arcs} arcs.

World: {project.world_description[:1500]}
Outline:
{project.master_outline[:3000]}

Return JSON: {{"locations": [{{"location_name": "...", "arc_start": 1, "arc_end": 3, "description": "...", "mysteries": ["..."]}}]}}
List them in the order the story reaches them.""",
            WorldMap,
            system=WORLD_SYSTEM,
            temperature=0.4,
            max_tokens=4096,
            project_id=project.id,
        )
        if world is None:
            return []
        rows = []
        seen: set[str] = set()
        for position, draft in enumerate(world.locations):
            name = draft.location_name.strip()
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())
            location = LocationBible(
                location_name=name,
                arc_start=draft.arc_start,
                arc_end=max(draft.arc_end, draft.arc_start),
                explored=not rows,
                description=draft.description,
                mysteries=draft.mysteries,
            )
            rows.append(
                {
                    "project_id": project.id,
                    "location_name": name,
                    "arc_start": location.arc_start,
                    "arc_end": location.arc_end,
                    "explored": location.explored,
                    "bible": _bible_json(location),
                    "position": position,
                }
            )
        await self.store.upsert("location_bibles", rows, conflict=("project_id", "location_name"))
        return await self.locations(project.id)

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        locations = await self.ensure_world_map(chapter.project)
        if not locations:
            return
        arc = chapter.arc_number
        for location in locations:
            if not location.explored and location.relevant_to(arc):
                await self.store.update(
                    "location_bibles",
                    {"explored": True},
                    {"project_id": chapter.project_id, "location_name": location.location_name},
                )
                event_logger.info(
                    f"Location explored: {location.location_name}",
                    event_type=EventType.TRACKER_UPDATE,
                    component=self.name,
                    project_id=chapter.project_id,
                    chapter_number=chapter.chapter_number,
                )

        current = [loc for loc in locations if loc.relevant_to(arc)]
        upcoming = [loc for loc in locations if loc.arc_start == arc + 1]
        target = next(
            (loc for loc in (*current, *upcoming) if not loc.key_features), None
        )
        if target is not None:
            await self._write_bible(chapter, target)

    async def _write_bible(self, chapter: CommittedChapter, location: LocationBible) -> None:
        draft = await self._analyze(
            f"""Write the location bible for "{location.location_name}" in "{chapter.project.title}".
Known so far: {location.description}
Mysteries: {', '.join(location.mysteries)}
World: {chapter.project.world_description[:1500]}

Return JSON with description, key_features, mysteries, dangers.""",
            BibleDraft,
            system=WORLD_SYSTEM,
            temperature=0.5,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )
        if draft is None:
            return
        merged = location.model_copy(
            update={
                "description": draft.description or location.description,
                "key_features": draft.key_features,
                "mysteries": draft.mysteries or location.mysteries,
                "dangers": draft.dangers,
            }
        )
        await self.store.update(
            "location_bibles",
            {"bible": _bible_json(merged)},
            {"project_id": chapter.project_id, "location_name": location.location_name},
        )

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        locations = await self.locations(project.id)
        if not locations:
            return None
        arc = project.arc_number(chapter_number, self.arc_size)
        current = next((loc for loc in locations if loc.relevant_to(arc)), None)
        upcoming = next((loc for loc in locations if loc.arc_start == arc + 1), None)

        lines = ["=== WORLD ==="]
        if current is not None:
            lines.append(f"Current location: {current.location_name}")
            if current.description:
                lines.append(f"  {current.description[:400]}")
            if current.key_features:
                lines.append(f"  Features: {', '.join(current.key_features[:6])}")
            if current.dangers:
                lines.append(f"  Dangers: {', '.join(current.dangers[:4])}")
        mysteries = [m for loc in locations if loc.explored for m in loc.mysteries]
        if mysteries:
            lines.append(f"Active mysteries: {'; '.join(mysteries[:5])}")
        skip = {loc.location_name for loc in (current, upcoming) if loc is not None}
        forbidden = [
            loc.location_name
            for loc in locations
            if not loc.explored and loc.location_name not in skip
        ]
        if forbidden:
            lines.append(f"MUST NOT MENTION (unexplored): {', '.join(forbidden)}")
        if upcoming is not None:
            lines.append(f"Coming next arc (may foreshadow only): {upcoming.location_name}")
        return "\n".join(lines)


__all__ = ["BibleDraft", "LocationDraft", "WorldMap", "WorldTracker"]
