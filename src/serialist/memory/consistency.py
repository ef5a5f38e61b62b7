# src/serialist/memory/consistency.py
"""Periodic continuity audit of committed chapters."""

from __future__ import annotations

import re
from collections.abc import Sequence

from pydantic import Field, field_validator

from serialist.agents.checks import dead_character_issues
from serialist.canon.filters import gte, lt
from serialist.core.logs import EventType, get_event_logger
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import (
    CharacterState,
    CharacterStatus,
    CriticIssue,
    IssueType,
    Project,
    Severity,
)
from serialist.models.base_model import SerialistBaseModel

event_logger = get_event_logger()

CHECK_EVERY = 3
LOGIC_MAX_CHARS = 15000
WARNING_WINDOW = 6
MAX_WARNINGS = 5

# Money, trade and ledgers are where arithmetic slips show up.
LEDGER_TERMS = re.compile(
    r"\b(?:gold|silver|coins?|taels?|spirit stones?|price[ds]?|paid|pays?|debts?|profits?|"
    r"loans?|interest|trade[sd]?|merchants?|auction(?:ed)?|shares?|contracts?|ledgers?|"
    r"business|invest(?:ed|ment)?)\b",
    re.IGNORECASE,
)

LOGIC_SYSTEM = (
    "You are a continuity editor. You check a chapter for internal logic errors: "
    "sums that do not add up, prices that change, deals that contradict themselves."
)


class LogicReport(SerialistBaseModel):
    issues: list[CriticIssue] = Field(default_factory=list)

    @field_validator("issues", mode="before")
    @classmethod
    def _only_records(cls, value: object) -> object:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, (dict, CriticIssue))]
        return []


def due(chapter_number: int) -> bool:
    return chapter_number % CHECK_EVERY == 0


def _logic_prompt(chapter: CommittedChapter) -> str:
    return f"""Check chapter {chapter.chapter_number} of "{chapter.project.title}" for logic errors in money, trade and numbers.

{chapter.content}

List only real contradictions inside this chapter. Return JSON:
{{"issues": [{{"type": "logic", "severity": "minor|moderate|major|critical", "description": "..."}}]}}
Return {{"issues": []}} when the chapter is consistent."""


class ConsistencyChecker(Tracker):
    """Every third chapter, flags dead characters acting in the present and,
    for chapters about money or trade, asks the analyst for logic slips."""

    name = "consistency"

    async def dead_before(self, project_id: str, chapter_number: int) -> list[str]:
        rows = await self.store.select(
            "character_states",
            {"project_id": project_id, "chapter_number": lt(chapter_number)},
            order_by="chapter_number",
        )
        latest: dict[str, CharacterState] = {}
        for row in rows:
            state = CharacterState.model_validate(row)
            latest[state.character_name] = state
        return [n for n, s in latest.items() if s.status == CharacterStatus.DEAD]

    async def _logic_issues(self, chapter: CommittedChapter) -> list[CriticIssue]:
        if len(chapter.content) >= LOGIC_MAX_CHARS or not LEDGER_TERMS.search(chapter.content):
            return []
        report = await self._analyze(
            _logic_prompt(chapter),
            LogicReport,
            system=LOGIC_SYSTEM,
            temperature=0.2,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )
        if report is None:
            return []
        return [
            issue.model_copy(update={"type": IssueType.LOGIC})
            for issue in report.issues
            if issue.description.strip()
        ]

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        if not due(chapter.chapter_number):
            return
        dead = await self.dead_before(chapter.project_id, chapter.chapter_number)
        issues = [
            *dead_character_issues(chapter.content, dead),
            *await self._logic_issues(chapter),
        ]
        where = {"project_id": chapter.project_id, "chapter_number": chapter.chapter_number}
        await self.store.delete("consistency_issues", where)
        if issues:
            await self.store.insert(
                "consistency_issues",
                [
                    where
                    | {
                        "issue_type": issue.type.value,
                        "severity": issue.severity.value,
                        "description": issue.description,
                    }
                    for issue in issues
                ],
            )
        for issue in issues:
            event_logger.warning(
                f"Chapter {chapter.chapter_number} {issue.type.value} issue: {issue.description[:160]}",
                event_type=EventType.TRACKER_UPDATE,
                component=self.name,
                project_id=chapter.project_id,
                chapter_number=chapter.chapter_number,
                severity=issue.severity.value,
            )

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        rows = await self.store.select(
            "consistency_issues",
            {
                "project_id": project.id,
                "chapter_number": gte(chapter_number - WARNING_WINDOW),
            },
            order_by="chapter_number",
            descending=True,
        )
        blocking = [
            row for row in rows
            if row["chapter_number"] < chapter_number and Severity(row["severity"]).blocking
        ]  # fmt: skip
        if not blocking:
            return None
        lines = ["=== CONTINUITY WARNINGS (do not repeat these mistakes) ==="]
        lines += [f"- ch.{row['chapter_number']}: {row['description'][:200]}" for row in blocking[:MAX_WARNINGS]]
        return "\n".join(lines)


__all__ = ["CHECK_EVERY", "ConsistencyChecker", "LEDGER_TERMS", "LogicReport", "due"]
