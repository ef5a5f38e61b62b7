# src/serialist/agents/checks.py
"""Deterministic prose checks that run beside the critic model."""

from __future__ import annotations

import re
from collections.abc import Iterable

from serialist.core.text import last_sentences, mentions, split_sentences
from serialist.models import CriticIssue, IssueType, Severity

REPEAT_MODERATE = 5
REPEAT_CRITICAL = 8
HOOK_SENTENCES = 2

# Stock phrasings that models overuse; each group counts as one tic.
PHRASE_GROUPS: dict[str, tuple[str, ...]] = {
    "narrowed eyes": (r"\beyes narrowed\b", r"\bnarrowed (?:his|her|their) eyes\b"),
    "cold smile": (r"\bcold(?:ly)? smile[ds]?\b", r"\bsmiled coldly\b", r"\bsneer(?:ed|s)?\b"),
    "held breath": (r"\bheld (?:his|her|their) breath\b", r"\bbreath (?:he|she|they) didn't know\b"),
    "shock": (r"\bcouldn't believe\b", r"\bjaw dropped\b", r"\bstunned\b", r"\bdumbfounded\b"),
    "chill": (r"\ba chill ran\b", r"\bshiver(?:ed)? down\b", r"\bblood ran cold\b"),
    "clenched": (r"\bclenched (?:his|her|their) (?:fists?|jaw|teeth)\b",),
    "silence": (r"\bsilence (?:fell|descended|hung)\b", r"\bdeafening silence\b"),
    "heart": (r"\bheart (?:pounded|hammered|raced|skipped)\b",),
    "smirk": (r"\bsmirk(?:ed|s|ing)?\b",),
    "killing intent": (r"\bkilling intent\b", r"\bmurderous aura\b"),
}

_COMPILED = {
    group: tuple(re.compile(p, re.IGNORECASE) for p in patterns)
    for group, patterns in PHRASE_GROUPS.items()
}

FLASHBACK = re.compile(
    r"\b(?:remembered|recalled|flashback|memory of|memories of|years ago|long ago|used to|"
    r"once (?:said|told)|in (?:his|her|their) dreams?|grave|tomb)\b",
    re.IGNORECASE,
)

HOOK_SIGNAL = re.compile(
    r"[?…]|\.\.\.|\b(?:suddenly|but then|just as|before (?:he|she|they) could|"
    r"a voice (?:called|said|whispered|rang)|footsteps|that was when|had no idea|"
    r"no one (?:knew|noticed|saw|had seen)|something (?:moved|stirred|was wrong|was coming)|"
    r"would never be the same|unless|what if|did(?:n't| not) know that)\b",
    re.IGNORECASE,
)


def repetition_issues(content: str) -> list[CriticIssue]:
    issues = []
    for group, patterns in _COMPILED.items():
        count = sum(len(p.findall(content)) for p in patterns)
        if count >= REPEAT_CRITICAL:
            severity = Severity.CRITICAL
        elif count >= REPEAT_MODERATE:
            severity = Severity.MODERATE
        else:
            continue
        issues.append(
            CriticIssue(
                type=IssueType.REPETITION,
                severity=severity,
                description=f'"{group}" phrasing used {count} times; vary the wording.',
            )
        )
    return issues


def dead_character_issues(content: str, dead: Iterable[str]) -> list[CriticIssue]:
    """Flag dead characters who appear outside a memory or flashback context."""
    issues = []
    sentences = split_sentences(content)
    for name in dead:
        hits = [s for s in sentences if mentions(s, name)]
        live = [s for s in hits if not FLASHBACK.search(s)]
        if live:
            issues.append(
                CriticIssue(
                    type=IssueType.CONTINUITY,
                    severity=Severity.CRITICAL,
                    description=f"{name} is dead but appears in the present: \"{live[0][:160]}\"",
                    location=live[0][:80],
                )
            )
    return issues


def hook_issues(content: str, *, terminal: bool = False) -> list[CriticIssue]:
    if terminal:
        return []
    if HOOK_SIGNAL.search(last_sentences(content, HOOK_SENTENCES)):
        return []
    return [
        CriticIssue(
            type=IssueType.HOOK,
            severity=Severity.MODERATE,
            description="The ending has no hook; close on an unresolved question or threat.",
            location="ending",
        )
    ]


def run_checks(content: str, *, dead: Iterable[str] = (), terminal: bool = False) -> list[CriticIssue]:
    return [
        *repetition_issues(content),
        *dead_character_issues(content, dead),
        *hook_issues(content, terminal=terminal),
    ]


__all__ = [
    "PHRASE_GROUPS",
    "dead_character_issues",
    "hook_issues",
    "repetition_issues",
    "run_checks",
]
