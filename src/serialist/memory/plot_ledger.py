# src/serialist/memory/plot_ledger.py
"""Plot & beat ledger.

Scores open plot threads for relevance to the next chapter and keeps a
ledger of narrative beats with per-beat reuse cooldowns.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from serialist.canon.filters import gte, not_in
from serialist.core.logs import EventType, get_event_logger
from serialist.core.text import mentions
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import (
    ArcPlan,
    BeatCategory,
    BeatUsage,
    PlotThread,
    Project,
    ThreadPriority,
    ThreadStatus,
)

event_logger = get_event_logger()

TOP_THREADS = 5
URGENT_WINDOW = 20
RECENCY_WINDOW = 50
ABANDON_AFTER = 100
ABANDON_IMPORTANCE = 50
RECENT_BEAT_WINDOW = 5
MAX_SUGGESTIONS = 5
DEFAULT_COOLDOWN = 10

PRIORITY_SCORES: dict[ThreadPriority, float] = {
    ThreadPriority.CRITICAL: 20,
    ThreadPriority.MAIN: 15,
    ThreadPriority.SUB: 10,
    ThreadPriority.BACKGROUND: 5,
}

# Chapters before a beat may be reused, roughly proportional to its weight.
BEAT_COOLDOWNS: dict[str, int] = {
    "war": 50, "betrayal": 40, "sacrifice": 40, "inheritance": 35,
    "tournament": 30, "family_reunion": 30, "auction": 25, "revelation": 25,
    "secret_realm": 20, "assassination": 20, "alliance": 20, "rescue_mission": 15,
    "treasure_hunt": 18, "sect_conflict": 15, "escape": 15, "trial": 12,
    "investigation": 12, "duel": 10, "breakthrough": 8, "merchant": 8, "training": 5,
    "revenge": 25, "loss": 25, "humiliation": 20, "despair": 15,
    "reunion": 20, "romance": 15, "triumph": 12, "shock": 10,
    "loyalty": 10, "satisfaction": 10, "hope": 8, "growth": 8,
    "relief": 8, "anger": 8, "tension": 5, "curiosity": 3,
    "underworld": 25, "prison": 25, "ancient_ruins": 20, "battlefield": 20,
    "divine_realm": 20, "mortal_realm": 15, "ocean": 15, "palace": 12,
    "sky": 12, "cave": 10, "mountain": 8, "marketplace": 8,
    "wilderness": 8, "city": 5, "sect_grounds": 3,
}  # fmt: skip

BEAT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (beat, re.compile(pattern, re.IGNORECASE))
    for beat, pattern in (
        ("tournament", r"\b(?:tournament|competition|arena|contest|bracket)\b"),
        ("auction", r"\b(?:auction|bidding|bid(?:s|der)?|lot number)\b"),
        ("breakthrough", r"\b(?:broke through|breakthrough|next realm|ascended|reached the peak)\b"),
        ("betrayal", r"\b(?:betray(?:ed|al)?|backstab(?:bed)?|turncoat|sold (?:us|him|her|them) out)\b"),
        ("revenge", r"\b(?:revenge|avenge(?:d)?|vengeance|pay (?:him|her|them) back)\b"),
        ("treasure_hunt", r"\b(?:treasure|relic|artifact|hidden vault|elixir)\b"),
        ("duel", r"\b(?:duel(?:led)?|challenge(?:d)? (?:him|her|them)|life-and-death battle|one-on-one)\b"),
        ("training", r"\b(?:trained|training|secluded cultivation|practiced until)\b"),
        ("humiliation", r"\b(?:knelt|begged for mercy|humiliat(?:ed|ion)|lost face|slapped)\b"),
        ("romance", r"\b(?:kiss(?:ed)?|blush(?:ed)?|embrace(?:d)?|heart fluttered)\b"),
        ("secret_realm", r"\b(?:secret realm|hidden realm|sealed realm|pocket dimension)\b"),
        ("war", r"\b(?:war|siege|army|armies|battle lines)\b"),
        ("escape", r"\b(?:escaped|fled|broke out|slipped away)\b"),
        ("investigation", r"\b(?:investigat(?:e|ed|ion)|clue|evidence|suspect)\b"),
        ("revelation", r"\b(?:revealed|the truth was|secret identity|all along)\b"),
    )
)

EMOTIONAL_BEATS = frozenset(
    {
        "humiliation", "revenge", "triumph", "despair", "hope", "shock",
        "romance", "sacrifice", "loyalty", "growth", "loss", "reunion",
        "tension", "relief", "curiosity", "anger", "satisfaction",
    }
)  # fmt: skip

SETTING_BEATS = frozenset(
    {
        "sect_grounds", "wilderness", "city", "ancient_ruins", "mortal_realm",
        "divine_realm", "underworld", "mountain", "ocean", "sky", "cave",
        "palace", "marketplace", "battlefield", "prison",
    }
)  # fmt: skip


def categorize(beat_type: str) -> BeatCategory:
    if beat_type in EMOTIONAL_BEATS:
        return BeatCategory.EMOTIONAL
    if beat_type in SETTING_BEATS:
        return BeatCategory.SETTING
    return BeatCategory.PLOT


def cooldown_for(beat_type: str) -> int:
    return BEAT_COOLDOWNS.get(beat_type, DEFAULT_COOLDOWN)


def detect_beats(content: str, chapter_number: int, arc_number: int) -> list[BeatUsage]:
    """Find beats in ``content`` and stamp each with its cooldown expiry."""
    found: list[BeatUsage] = []
    for beat_type, pattern in BEAT_PATTERNS:
        hits = len(pattern.findall(content))
        if not hits:
            continue
        found.append(
            BeatUsage(
                beat_type=beat_type,
                beat_category=categorize(beat_type),
                chapter_number=chapter_number,
                arc_number=arc_number,
                intensity=min(10, hits * 2),
                cooldown_until=chapter_number + cooldown_for(beat_type),
            )
        )
    return found


def score_thread(thread: PlotThread, chapter_number: int, cast: Sequence[str]) -> float:
    """Relevance of ``thread`` to the chapter about to be written.

    Weighted sum of cast overlap (40), payoff-deadline urgency (30), priority
    tier (20) and recency (10, negative once untouched for 50 chapters), plus
    a flat bonus for threads at their climax.
    """
    score = 0.0
    if thread.related_characters:
        cast_keys = {name.lower() for name in cast}
        overlap = sum(1 for c in thread.related_characters if c.lower() in cast_keys)
        score += overlap / len(thread.related_characters) * 40

    if thread.target_payoff_chapter:
        remaining = thread.target_payoff_chapter - chapter_number
        if remaining <= 0:
            score += 30
        elif remaining <= URGENT_WINDOW:
            score += (1 - remaining / URGENT_WINDOW) * 30

    score += PRIORITY_SCORES.get(thread.priority, 5)

    gap = chapter_number - thread.last_active_chapter
    if gap <= RECENCY_WINDOW:
        score += (1 - gap / RECENCY_WINDOW) * 10
    else:
        score -= 5

    if thread.status == ThreadStatus.CLIMAX:
        score += 25
    return score


def rank_threads(
    threads: Sequence[PlotThread], chapter_number: int, cast: Sequence[str], top: int = TOP_THREADS
) -> list[tuple[PlotThread, float]]:
    scored = [
        (t, score_thread(t, chapter_number, cast)) for t in threads if t.status.active
    ]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:top]


def thread_id(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:128] or "thread"


def _thread_touched(thread: PlotThread, content: str) -> bool:
    if thread.name and mentions(content, thread.name):
        return True
    related = thread.related_characters
    return bool(related) and all(mentions(content, name) for name in related)


class PlotBeatLedger(Tracker):
    """Plot thread relevance plus beat cooldown bookkeeping."""

    name = "plot_ledger"

    async def _threads(self, project_id: str) -> list[PlotThread]:
        rows = await self.store.select(
            "plot_threads",
            {"project_id": project_id, "status": not_in(["resolved", "legacy"])},
            order_by="importance",
            descending=True,
        )
        return [PlotThread.model_validate(row) for row in rows]

    async def _seed_threads(self, chapter: CommittedChapter, known: list[PlotThread]) -> list[dict]:
        plan_row = await self.store.select_one(
            "arc_plans", {"project_id": chapter.project_id, "arc_number": chapter.arc_number}
        )
        if plan_row is None:
            return []
        plan = ArcPlan.model_validate(plan_row)
        ids = {t.id for t in known}
        rows = []
        for name in plan.new_threads:
            tid = thread_id(name)
            if tid in ids or not mentions(chapter.content, name.split(":")[0]):
                continue
            ids.add(tid)
            rows.append(
                PlotThread(
                    id=tid,
                    name=name,
                    description=name,
                    start_chapter=chapter.chapter_number,
                    last_active_chapter=chapter.chapter_number,
                    target_payoff_chapter=plan.end_chapter + self.arc_size,
                    related_characters=[c for c in chapter.cast if mentions(name, c)],
                ).model_dump(mode="json")
                | {"project_id": chapter.project_id}
            )
        return rows

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        beats = detect_beats(chapter.content, chapter.chapter_number, chapter.arc_number)
        # Re-ingesting a chapter replaces its beats.
        await self.store.delete(
            "beat_usage",
            {"project_id": chapter.project_id, "chapter_number": chapter.chapter_number},
        )
        if beats:
            await self.store.insert(
                "beat_usage",
                [b.model_dump(mode="json") | {"project_id": chapter.project_id} for b in beats],
            )

        threads = await self._threads(chapter.project_id)
        updates = []
        for thread in threads:
            if not _thread_touched(thread, chapter.content):
                continue
            status = thread.status
            if status == ThreadStatus.OPEN and chapter.chapter_number > thread.start_chapter:
                status = ThreadStatus.DEVELOPING
            updates.append(
                thread.model_copy(
                    update={"last_active_chapter": chapter.chapter_number, "status": status}
                ).model_dump(mode="json")
                | {"project_id": chapter.project_id}
            )
        updates.extend(await self._seed_threads(chapter, threads))
        if updates:
            await self.store.upsert("plot_threads", updates, conflict=("id", "project_id"))

        event_logger.debug(
            f"Recorded {len(beats)} beat(s), touched {len(updates)} thread(s)",
            event_type=EventType.TRACKER_UPDATE,
            component=self.name,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )

    async def _beat_lines(self, project_id: str, chapter_number: int) -> list[str]:
        rows = await self.store.select(
            "beat_usage",
            {"project_id": project_id},
            order_by="chapter_number",
            descending=True,
            limit=200,
        )
        beats = [BeatUsage.model_validate(row) for row in rows]
        on_cooldown = list(
            dict.fromkeys(b.beat_type for b in beats if b.cooldown_until > chapter_number)
        )
        recent = [b for b in beats if b.chapter_number >= chapter_number - RECENT_BEAT_WINDOW]
        recent_types = {b.beat_type for b in recent}
        blocked = set(on_cooldown) | recent_types

        lines: list[str] = []
        for category in BeatCategory:
            options = [
                beat
                for beat in BEAT_COOLDOWNS
                if categorize(beat) == category and beat not in blocked
            ][:MAX_SUGGESTIONS]
            if options:
                lines.append(f"Suggested {category.value} beats: {', '.join(options)}")
        if on_cooldown:
            lines.append(f"AVOID (on cooldown): {', '.join(on_cooldown[:10])}")
        if recent:
            used = [f"{b.beat_type} (ch.{b.chapter_number})" for b in recent[:5]]
            lines.append(f"Recently used: {', '.join(used)}")
        return lines

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        threads = await self._threads(project.id)
        lines: list[str] = []
        ranked = rank_threads(threads, chapter_number, cast)
        if ranked:
            lines.append("=== OPEN PLOT THREADS ===")
        for thread, _score in ranked:
            lines.append(f"- [{thread.priority.value}] {thread.name}: {thread.description[:200]}")
            if thread.status == ThreadStatus.CLIMAX:
                lines.append("  -> At its climax: resolve soon.")
            deadline = thread.target_payoff_chapter
            if deadline and deadline <= chapter_number + URGENT_WINDOW:
                remaining = deadline - chapter_number
                if remaining <= 0:
                    lines.append(f"  !! OVERDUE since ch.{deadline}: pay this off now.")
                else:
                    lines.append(f"  .. Payoff due by ch.{deadline} ({remaining} chapters left).")

        abandoned = [
            t.name
            for t in threads
            if chapter_number - t.last_active_chapter > ABANDON_AFTER
            and t.importance > ABANDON_IMPORTANCE
        ]
        if abandoned:
            lines.append(f"Neglected threads: {', '.join(abandoned)}")

        beat_lines = await self._beat_lines(project.id, chapter_number)
        if beat_lines:
            lines.append("=== BEAT GUIDELINES ===")
            lines.extend(beat_lines)
        return "\n".join(lines) if lines else None

    async def beats_on_cooldown(self, project_id: str, chapter_number: int) -> set[str]:
        rows = await self.store.select(
            "beat_usage",
            {"project_id": project_id, "cooldown_until": gte(chapter_number + 1)},
            columns=("beat_type",),
        )
        return {row["beat_type"] for row in rows}


__all__ = [
    "BEAT_COOLDOWNS",
    "PlotBeatLedger",
    "categorize",
    "cooldown_for",
    "detect_beats",
    "rank_threads",
    "score_thread",
    "thread_id",
]
