# src/serialist/memory/foreshadowing.py
"""Foreshadowing ledger: plant, remind and pay off hints across an arc."""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from pydantic import Field

from serialist.core.logs import EventType, get_event_logger
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import ForeshadowingHint, HintStatus, HintType, Project
from serialist.models.base_model import SerialistBaseModel
from serialist.models.validators import LenientInt

event_logger = get_event_logger()

PLANT_WINDOW = 2
PAYOFF_WINDOW = 5
PLANNED_GRACE = 10
PLANTED_GRACE = 20
COMING_DUE = 15
MAX_REMINDERS = 2

AGENDA_SYSTEM = (
    "You are a narrative planner for a long serialized novel. You design subtle "
    "foreshadowing that is planted early and paid off later in the same arc or the next."
)


class HintDraft(SerialistBaseModel):
    hint_text: str = ""
    hint_type: HintType = HintType.EVENT
    plant_chapter: LenientInt = 0
    payoff_chapter: LenientInt = 0
    payoff_description: str = ""


class HintAgenda(SerialistBaseModel):
    hints: list[HintDraft] = Field(default_factory=list)


def advance_lifecycle(hint: ForeshadowingHint, chapter_number: int) -> HintStatus:
    """Status ``hint`` should have once ``chapter_number`` is committed."""
    status = hint.status
    if status == HintStatus.PLANNED and chapter_number - PLANT_WINDOW <= hint.plant_chapter <= chapter_number:
        return HintStatus.PLANTED
    if status == HintStatus.PLANTED and chapter_number - PAYOFF_WINDOW <= hint.payoff_chapter <= chapter_number:
        return HintStatus.PAID_OFF
    if status == HintStatus.PLANNED and hint.plant_chapter < chapter_number - PLANNED_GRACE:
        return HintStatus.ABANDONED
    if status == HintStatus.PLANTED and hint.payoff_chapter < chapter_number - PLANTED_GRACE:
        return HintStatus.ABANDONED
    return status


def _agenda_prompt(project: Project, arc_number: int, start: int, end: int) -> str:
    return f"""Plan 3-5 foreshadowing hints for arc {arc_number} (chapters {start}-{end}) of "{project.title}".

Genre: {project.genre}
Protagonist: {project.protagonist_name}
Master outline:
{project.master_outline[:3000]}

Each hint is planted in one chapter and paid off in a later chapter (up to {project.total_planned_chapters}).
Return JSON: {{"hints": [{{"hint_text": "...", "hint_type": "dialogue|object|event|character_behavior|environmental", "plant_chapter": {start}, "payoff_chapter": {end}, "payoff_description": "..."}}]}}"""


class ForeshadowingLedger(Tracker):
    """Keeps foreshadowing hints moving through planned, planted and paid off."""

    name = "foreshadowing"

    async def _hints(self, project_id: str) -> list[ForeshadowingHint]:
        rows = await self.store.select(
            "foreshadowing_hints", {"project_id": project_id}, order_by="plant_chapter"
        )
        return [ForeshadowingHint.model_validate(row) for row in rows]

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        hints = await self._hints(chapter.project_id)
        changed = 0
        for hint in hints:
            status = advance_lifecycle(hint, chapter.chapter_number)
            if status == hint.status:
                continue
            changed += 1
            await self.store.update(
                "foreshadowing_hints",
                {"status": status.value},
                {"project_id": chapter.project_id, "hint_id": hint.hint_id},
            )
            if status == HintStatus.ABANDONED:
                event_logger.info(
                    f"Abandoned hint {hint.hint_id}: {hint.hint_text[:80]}",
                    event_type=EventType.TRACKER_UPDATE,
                    component=self.name,
                    project_id=chapter.project_id,
                    chapter_number=chapter.chapter_number,
                )

        next_arc = chapter.project.arc_number(chapter.chapter_number + 1, chapter.arc_size)
        if not any(h.arc_number == next_arc for h in hints):
            await self.prepare_arc(chapter.project, next_arc)

        event_logger.debug(
            f"Foreshadowing lifecycle moved {changed} hint(s)",
            event_type=EventType.TRACKER_UPDATE,
            component=self.name,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )

    async def prepare_arc(self, project: Project, arc_number: int) -> None:
        if await self._arc_planned(project.id, arc_number):
            return
        if await self.store.count(
            "foreshadowing_hints", {"project_id": project.id, "arc_number": arc_number}
        ):
            return
        await self.plan_arc(project, arc_number)

    async def plan_arc(self, project: Project, arc_number: int) -> list[ForeshadowingHint]:
        """Generate and store the hint agenda for ``arc_number``.

        Plant chapters are clamped into the arc; payoffs land after the plant
        and no later than the planned end of the story.

        An agenda that parsed is recorded even when it holds no usable hint,
        so the arc is not planned again on every chapter.
        """
        start = (arc_number - 1) * self.arc_size + 1
        end = min(arc_number * self.arc_size, project.total_planned_chapters)
        if start > project.total_planned_chapters:
            return []
        agenda = await self._analyze(
            _agenda_prompt(project, arc_number, start, end),
            HintAgenda,
            system=AGENDA_SYSTEM,
            temperature=0.5,
            project_id=project.id,
            chapter_number=start,
        )
        if agenda is None:
            return []

        hints: list[ForeshadowingHint] = []
        for draft in agenda.hints[:5]:
            if not draft.hint_text.strip():
                continue
            plant = min(max(draft.plant_chapter, start), end)
            payoff = min(max(draft.payoff_chapter, plant + 1), project.total_planned_chapters)
            if payoff <= plant:
                continue
            hints.append(
                ForeshadowingHint(
                    hint_id=uuid.uuid4().hex[:16],
                    hint_text=draft.hint_text,
                    hint_type=draft.hint_type,
                    plant_chapter=plant,
                    payoff_chapter=payoff,
                    payoff_description=draft.payoff_description,
                    arc_number=arc_number,
                )
            )
        if hints:
            await self.store.upsert(
                "foreshadowing_hints",
                [h.model_dump(mode="json") | {"project_id": project.id} for h in hints],
                conflict=("project_id", "hint_id"),
            )
        await self._mark_arc_planned(project.id, arc_number, len(hints))
        return hints

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        hints = await self._hints(project.id)
        ch = chapter_number
        to_plant = [
            h for h in hints
            if h.status == HintStatus.PLANNED and abs(h.plant_chapter - ch) <= PLANT_WINDOW
        ]
        to_pay = [
            h for h in hints
            if h.status == HintStatus.PLANTED and abs(h.payoff_chapter - ch) <= PAYOFF_WINDOW
        ]
        reminders = []
        for h in hints:
            if h.status != HintStatus.PLANTED or h.payoff_chapter <= ch + PAYOFF_WINDOW:
                continue
            span = h.payoff_chapter - h.plant_chapter
            checkpoints = {h.plant_chapter + span // 2, h.plant_chapter + span // 4}
            if ch in checkpoints:
                reminders.append(h)
        coming_due = [
            h for h in hints
            if h.status == HintStatus.PLANTED and ch < h.payoff_chapter <= ch + COMING_DUE
        ]  # fmt: skip

        lines: list[str] = []
        if to_plant:
            lines.append("=== FORESHADOWING TO PLANT (keep it subtle) ===")
            lines += [f"- [{h.hint_type.value}] {h.hint_text}" for h in to_plant]
        if to_pay:
            lines.append("=== FORESHADOWING TO PAY OFF ===")
            lines += [
                f"- {h.hint_text} (planted ch.{h.plant_chapter}) -> {h.payoff_description}"
                for h in to_pay
            ]
        if reminders:
            lines.append("Echo these planted hints lightly:")
            lines += [f"- {h.hint_text}" for h in reminders[:MAX_REMINDERS]]
        if coming_due:
            lines.append("Coming due: " + "; ".join(
                f"{h.hint_text[:60]} (ch.{h.payoff_chapter})" for h in coming_due
            ))
        return "\n".join(lines) if lines else None


__all__ = ["ForeshadowingLedger", "HintAgenda", "HintDraft", "advance_lifecycle"]
