# src/serialist/memory/power.py
"""Protagonist power ledger.

Keeps one live snapshot of what the protagonist can do, with bounded gain
and loss ledgers so growth always carries a visible cost.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from pydantic import Field

from serialist.core.logs import EventType, get_event_logger
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import Ability, PowerEvent, PowerState, Project
from serialist.models.base_model import SerialistBaseModel
from serialist.models.memory import MAX_POWER_LEDGER
from serialist.models.validators import StrList

event_logger = get_event_logger()

UPDATE_INTERVAL = 3
COST_WINDOW = 10
CONTENT_LIMIT = 8000

BREAKTHROUGH_RE = re.compile(
    r"\b(?:broke through|breakthrough|advanced to|ascended|new realm|next realm|"
    r"awakened|unlocked|mastered|comprehended|lost (?:his|her|their) (?:power|cultivation))\b",
    re.IGNORECASE,
)

POWER_SYSTEM = (
    "You maintain the power ledger of a serialized novel's protagonist. "
    "Record only changes the chapter actually shows."
)


class PowerUpdate(SerialistBaseModel):
    """Analyst response: the snapshot after this chapter plus its gains and losses."""

    realm: str = ""
    tier: str = ""
    bottleneck: str = ""
    abilities: list[Ability] = Field(default_factory=list)
    hidden_powers: StrList = Field(default_factory=list)
    resources: StrList = Field(default_factory=list)
    rules: StrList = Field(default_factory=list)
    gains: StrList = Field(default_factory=list)
    losses: StrList = Field(default_factory=list)


def should_update(chapter_number: int, content: str) -> bool:
    """Power is re-read every few chapters, or whenever the prose signals a shift."""
    return chapter_number % UPDATE_INTERVAL == 0 or bool(BREAKTHROUGH_RE.search(content))


def merge_update(state: PowerState, update: PowerUpdate, chapter_number: int) -> PowerState:
    """Fold ``update`` into ``state``; re-ingesting a chapter replaces its ledger entries."""

    def ledger(old: list[PowerEvent], new: list[str]) -> list[PowerEvent]:
        kept = [e for e in old if e.chapter != chapter_number]
        kept += [PowerEvent(chapter=chapter_number, description=d) for d in new]
        return kept[-MAX_POWER_LEDGER:]

    return PowerState(
        realm=update.realm or state.realm,
        tier=update.tier or state.tier,
        bottleneck=update.bottleneck,
        abilities=update.abilities or state.abilities,
        hidden_powers=update.hidden_powers or state.hidden_powers,
        resources=update.resources or state.resources,
        rules=list(dict.fromkeys([*state.rules, *update.rules])),
        gains=ledger(state.gains, update.gains),
        losses=ledger(state.losses, update.losses),
    )


def unpaid_gains(state: PowerState, chapter_number: int) -> list[PowerEvent]:
    """Recent gains with no loss recorded in the same chapter."""
    paid = {e.chapter for e in state.losses}
    return [
        g for g in state.gains
        if chapter_number - g.chapter <= COST_WINDOW and g.chapter not in paid
    ]  # fmt: skip


class PowerLedger(Tracker):
    name = "power"

    async def load(self, project_id: str) -> PowerState | None:
        row = await self.store.select_one("power_states", {"project_id": project_id})
        if row is None:
            return None
        return PowerState.model_validate(row["power_state"] or {})

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        if not should_update(chapter.chapter_number, chapter.content):
            return
        state = await self.load(chapter.project_id) or PowerState()
        prompt = f"""Protagonist: {chapter.project.protagonist_name}
Current power state:
{state.model_dump_json(include={"realm", "tier", "bottleneck", "abilities", "hidden_powers", "resources", "rules"})}

Chapter {chapter.chapter_number}:
{chapter.content[:CONTENT_LIMIT]}

Return the updated state as JSON with keys realm, tier, bottleneck,
abilities [{{"name", "proficiency": "novice|adept|master|perfected", "description"}}],
hidden_powers, resources, rules, gains (what was gained in this chapter),
losses (what it cost)."""
        update = await self._analyze(
            prompt,
            PowerUpdate,
            system=POWER_SYSTEM,
            temperature=0.1,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )
        if update is None:
            return
        merged = merge_update(state, update, chapter.chapter_number)
        await self.store.upsert(
            "power_states",
            [
                {
                    "project_id": chapter.project_id,
                    "power_state": merged.model_dump(mode="json"),
                    "last_updated_chapter": chapter.chapter_number,
                }
            ],
            conflict=("project_id",),
        )
        if update.gains and not update.losses:
            event_logger.warning(
                f"Power gain without cost in chapter {chapter.chapter_number}: "
                f"{'; '.join(update.gains)[:200]}",
                event_type=EventType.TRACKER_UPDATE,
                component=self.name,
                project_id=chapter.project_id,
                chapter_number=chapter.chapter_number,
            )

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        state = await self.load(project.id)
        if state is None:
            return None
        lines = ["=== PROTAGONIST POWER ==="]
        if state.realm or state.tier:
            lines.append(f"Realm: {state.realm} {state.tier}".rstrip())
        if state.bottleneck:
            lines.append(f"Bottleneck: {state.bottleneck}")
        if state.abilities:
            lines.append("Abilities: " + ", ".join(
                f"{a.name} ({a.proficiency.value})" for a in state.abilities
            ))
        if state.hidden_powers:
            lines.append(f"Hidden (not public knowledge): {', '.join(state.hidden_powers)}")
        if state.resources:
            lines.append(f"Resources: {', '.join(state.resources[-5:])}")
        if state.rules:
            lines.append("Power rules: " + "; ".join(state.rules))
        unpaid = unpaid_gains(state, chapter_number)
        if unpaid:
            lines.append(
                "WARNING: recent gains came without cost ("
                + "; ".join(f"ch.{g.chapter} {g.description}" for g in unpaid[-3:])
                + "). Let the next gain cost something."
            )
        lines.append("Do not grant new powers without setup; abilities must stay consistent with the above.")
        return "\n".join(lines)


__all__ = ["PowerLedger", "PowerUpdate", "merge_update", "should_update", "unpaid_gains"]
