# src/serialist/memory/world_rules.py
"""World rule index.

Statements of how the world works (what a realm allows, where a sect lies,
what a law forbids, what legend says) are lifted from committed prose by
pattern, stored once per distinct sentence, and the few that bear on the
next chapter's cast and brief are fed back to the writer.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence

from serialist.core.logs import EventType, get_event_logger
from serialist.core.text import mentions, split_sentences
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import ArcPlan, Project, RuleCategory, WorldRule

event_logger = get_event_logger()

MAX_RULES_PER_CHAPTER = 10
RULE_POOL = 50
TOP_RULES = 5
MIN_RULE_SCORE = 20
RULE_TEXT_CHARS = 200
DEFAULT_IMPORTANCE = 60

RULE_PATTERNS: tuple[tuple[RuleCategory, re.Pattern[str]], ...] = (
    (
        RuleCategory.POWER_SYSTEM,
        re.compile(
            r"\b(?:realm|stage|technique|cultivation|qi|meridians?|core|bloodline)\b[^.?!]{0,80}?"
            r"\b(?:allows?|grants?|requires?|demands?|enables?|cannot|can only|costs?)\b",
            re.IGNORECASE,
        ),
    ),
    (
        RuleCategory.RESTRICTIONS,
        re.compile(
            r"\b(?:law|rule|decree|edict|taboo)s?\b[^.?!]{0,60}?\b(?:forbids?|forbade|prohibits?|bans?|decrees?)\b"
            r"|\b(?:is|was|are|were) forbidden to\b|\bmust never\b",
            re.IGNORECASE,
        ),
    ),
    (
        RuleCategory.GEOGRAPHY,
        re.compile(
            r"\b(?:city|sect|mountains?|valley|river|forest|kingdom|empire|continent|desert|sea|peak|province)\b"
            r"[^.?!]{0,60}?\b(?:is|was|lies|lay|stands|stood|sits|sat) (?:a|an|the|in|on|at|beyond|"
            r"(?:far )?(?:north|south|east|west))\b",
            re.IGNORECASE,
        ),
    ),
    (
        RuleCategory.HISTORY,
        re.compile(
            r"\b(?:legend has it|legends say|it is said that|it was said that|in ancient times|"
            r"(?:centuries|millennia|ten thousand years) ago)\b",
            re.IGNORECASE,
        ),
    ),
)

_CAPITALIZED = re.compile(r"\b[A-Z][a-z']+(?:\s+[A-Z][a-z']+)*")
_COMMON = frozenset(
    {
        "A", "An", "The", "It", "In", "On", "At", "Only", "No", "Every", "Any", "This",
        "That", "Those", "These", "He", "She", "They", "His", "Her", "Their", "Legend",
        "Legends", "Centuries", "Even", "But", "And", "Once",
    }
)  # fmt: skip
_KEYWORD = re.compile(r"[a-z']+")


def rule_key(text: str) -> str:
    normalized = " ".join(text.lower().split())
    return hashlib.sha1(normalized.encode()).hexdigest()


def _proper_nouns(sentence: str, limit: int = 3) -> list[str]:
    found: list[str] = []
    for match in _CAPITALIZED.findall(sentence):
        words = match.split()
        while words and words[0] in _COMMON:
            words.pop(0)
        phrase = " ".join(words)
        if not phrase or phrase in found:
            continue
        found.append(phrase)
        if len(found) == limit:
            break
    return found


def extract_rules(content: str, chapter_number: int, cast: Sequence[str] = ()) -> list[WorldRule]:
    """Sentences of ``content`` that state a world rule, one rule per sentence."""
    rules: list[WorldRule] = []
    seen: set[str] = set()
    for sentence in split_sentences(content):
        if len(sentence.split()) < 5 or sentence.startswith(('"', "“")):
            continue
        category = next((c for c, p in RULE_PATTERNS if p.search(sentence)), None)
        if category is None:
            continue
        key = rule_key(sentence)
        if key in seen:
            continue
        seen.add(key)
        tags = [category.value, *_proper_nouns(sentence)]
        tags += [f"character={name}" for name in cast if mentions(sentence, name)]
        rules.append(
            WorldRule(
                rule_key=key,
                rule_text=sentence,
                category=category,
                tags=tags,
                introduced_chapter=chapter_number,
                importance=DEFAULT_IMPORTANCE,
            )
        )
        if len(rules) == MAX_RULES_PER_CHAPTER:
            break
    return rules


def score_rule(rule: WorldRule, cast: Sequence[str], keywords: Sequence[str]) -> float:
    """Cast tags (40 each), brief keyword overlap (up to 20) and importance (up to 10)."""
    tags = {t.lower() for t in rule.tags}
    score = 40.0 * sum(1 for name in cast if f"character={name.lower()}" in tags)
    if keywords:
        text = rule.rule_text.lower()
        score += sum(1 for k in keywords if k in text) / len(keywords) * 20
    score += rule.importance / 100 * 10
    return score


def rank_rules(
    rules: Sequence[WorldRule], cast: Sequence[str], snippet: str, top: int = TOP_RULES
) -> list[WorldRule]:
    keywords = [w for w in _KEYWORD.findall(snippet.lower()) if len(w) > 3][:10]
    scored = [(r, score_rule(r, cast, keywords)) for r in rules]
    kept = [pair for pair in scored if pair[1] >= MIN_RULE_SCORE]
    kept.sort(key=lambda pair: pair[1], reverse=True)
    return [r for r, _ in kept[:top]]


class WorldRuleIndex(Tracker):
    """Indexes world rules stated in prose and recalls the relevant ones."""

    name = "world_rules"

    async def rules(self, project_id: str, limit: int | None = None) -> list[WorldRule]:
        rows = await self.store.select(
            "world_rules",
            {"project_id": project_id},
            order_by="importance",
            descending=True,
            limit=limit,
        )
        return [WorldRule.model_validate(row) for row in rows]

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        found = extract_rules(chapter.content, chapter.chapter_number, chapter.cast)
        if not found:
            return
        rows = await self.store.select(
            "world_rules",
            {"project_id": chapter.project_id},
            columns=("rule_key", "usage_count"),
        )
        known: dict[str, int] = {row["rule_key"]: row["usage_count"] or 0 for row in rows}
        fresh = [r for r in found if r.rule_key not in known]
        for rule in found:
            if rule.rule_key in known:
                await self.store.update(
                    "world_rules",
                    {"usage_count": known[rule.rule_key] + 1},
                    {"project_id": chapter.project_id, "rule_key": rule.rule_key},
                )
        if fresh:
            await self.store.upsert(
                "world_rules",
                [r.model_dump(mode="json") | {"project_id": chapter.project_id} for r in fresh],
                conflict=("project_id", "rule_key"),
            )
        event_logger.debug(
            f"Indexed {len(fresh)} new world rule(s), {len(found) - len(fresh)} restated",
            event_type=EventType.TRACKER_UPDATE,
            component=self.name,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )

    async def _brief(self, project: Project, chapter_number: int) -> str:
        row = await self.store.select_one(
            "arc_plans",
            {"project_id": project.id, "arc_number": project.arc_number(chapter_number, self.arc_size)},
        )
        if row is None:
            return ""
        plan = ArcPlan.model_validate(row)
        return plan.brief_for(chapter_number) or plan.theme

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        pool = await self.rules(project.id, limit=RULE_POOL)
        if not pool:
            return None
        chosen = rank_rules(pool, cast, await self._brief(project, chapter_number))
        if not chosen:
            return None
        lines = ["=== WORLD RULES IN PLAY ==="]
        lines += [f"• [{r.category.value}] {r.rule_text[:RULE_TEXT_CHARS]}" for r in chosen]
        return "\n".join(lines)


__all__ = ["WorldRuleIndex", "extract_rules", "rank_rules", "rule_key", "score_rule"]
