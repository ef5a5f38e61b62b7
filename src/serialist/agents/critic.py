# src/serialist/agents/critic.py
"""Critic agent: scores a draft and decides approve, revise or rewrite.

The critic fails closed. Any provider error or unparsable verdict becomes a
not-approved report, never a silent pass.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from serialist.agents.base import Agent
from serialist.agents.checks import run_checks
from serialist.config import config
from serialist.core.llm import LLMClient
from serialist.core.logs import EventType, get_event_logger, log_calls
from serialist.core.text import count_words
from serialist.models import ChapterOutline, CriticIssue, CriticReport, IssueType, Severity

event_logger = get_event_logger()

APPROVE_RATIO = 0.7
REWRITE_RATIO = 0.6
CONTINUITY_CAP = 3.0
CONTEXT_CHARS = 5000

CRITIC_SYSTEM = """You are the CRITIC: a strict editor of a serialized novel.
You score honestly on a 1-10 scale and flag every contradiction with the established story:
dead characters acting alive, unexplained power regression, broken world rules,
characters acting against their nature. Return JSON only."""


def fail_closed_report(word_ratio: float, reason: str = "Critic failed to respond") -> CriticReport:
    rewrite = word_ratio < REWRITE_RATIO
    return CriticReport(
        overall_score=5,
        dopamine_score=5,
        pacing_score=5,
        ending_hook_score=5,
        issues=[CriticIssue(type=IssueType.CRITIC_ERROR, severity=Severity.MAJOR, description=reason)],
        approved=False,
        requires_rewrite=rewrite,
        rewrite_instructions="The chapter is far too short; write every scene in full." if rewrite else "",
    )


def enforce(
    report: CriticReport,
    findings: Iterable[CriticIssue],
    *,
    word_count: int,
    target_words: int,
    min_score: float,
) -> CriticReport:
    """Fold deterministic findings into ``report`` and apply the hard rules."""
    issues = [*report.issues, *findings]
    ratio = word_count / target_words if target_words else 1.0
    score = report.overall_score
    rewrite = report.requires_rewrite
    instructions = report.rewrite_instructions

    blocking = [
        i for i in issues if i.type == IssueType.CONTINUITY and i.severity.blocking
    ]
    if blocking:
        rewrite = True
        score = min(score, CONTINUITY_CAP)
        if not instructions.strip():
            instructions = "Fix continuity: " + "; ".join(i.description for i in blocking)

    critical = [i for i in issues if i.severity == Severity.CRITICAL]
    if critical:
        rewrite = True
        if not instructions.strip():
            instructions = "; ".join(i.description for i in critical)

    if ratio < REWRITE_RATIO:
        rewrite = True
        if not any(i.type == IssueType.WORD_COUNT for i in issues):
            issues.append(
                CriticIssue(
                    type=IssueType.WORD_COUNT,
                    severity=Severity.MAJOR,
                    description=f"Only {word_count}/{target_words} words.",
                )
            )
        if not instructions.strip():
            instructions = f"Too short ({word_count}/{target_words} words). Write every scene in full."

    failed = any(i.type == IssueType.CRITIC_ERROR for i in issues)
    approved = (
        score >= min_score and ratio >= APPROVE_RATIO and not rewrite and not critical and not failed
    )
    return report.model_copy(
        update={
            "overall_score": score,
            "issues": issues,
            "requires_rewrite": rewrite,
            "approved": approved,
            "rewrite_instructions": instructions,
        }
    )


class ChapterCritic(Agent):
    """Reviews chapters."""

    system_prompt = CRITIC_SYSTEM

    def __init__(
        self,
        llm: LLMClient,
        *,
        model: str | None = None,
        min_score: float | None = None,
    ) -> None:
        super().__init__(llm, model=model, default_model=config.agents.critic)
        self.min_score = config.engine.min_quality_score if min_score is None else min_score

    def build_prompt(self, outline: ChapterOutline, content: str, context: str, target_words: int) -> str:
        words = count_words(content)
        ratio = words / target_words if target_words else 1.0
        warnings = []
        if ratio < REWRITE_RATIO:
            warnings.append("WARNING: under 60% of target, requires_rewrite MUST be true.")
        elif ratio < 0.8:
            warnings.append("NOTE: under 80% of target, lower overall_score.")
        story = f"STORY CONTEXT (check for contradictions):\n{context[:CONTEXT_CHARS]}\n\n" if context else ""
        payoffs = "; ".join(f"{d.type}: {d.description}" for d in outline.dopamine_points)
        return f"""{story}OUTLINE: {outline.title} - {outline.summary}
PLANNED PAYOFFS: {payoffs or '(none)'}
PLANNED HOOK: {outline.cliffhanger or '(none)'}
TARGET WORDS: {target_words}
ACTUAL WORDS: {words} ({ratio:.0%} of target)
{chr(10).join(warnings)}

CHAPTER (full text):
{content}

Return JSON:
{{"overall_score": 1-10, "dopamine_score": 1-10, "pacing_score": 1-10, "ending_hook_score": 1-10,
 "issues": [{{"type": "pacing|consistency|continuity|dopamine|quality|word_count|dialogue|logic|detail",
   "description": "...", "severity": "minor|moderate|major|critical", "location": "..."}}],
 "approved": true if overall_score >= {self.min_score:g} and at least {APPROVE_RATIO:.0%} of target words,
 "requires_rewrite": true if overall_score <= 3, under {REWRITE_RATIO:.0%} of target, or any major/critical continuity issue,
 "rewrite_instructions": "specific instructions when a rewrite is needed"}}

CONTINUITY (mandatory): a dead character acting alive, unexplained power regression or a broken
world rule is a critical continuity issue; a character acting wholly against their nature is major."""

    async def _model_review(self, prompt: str, word_ratio: float, chapter_number: int) -> CriticReport:
        try:
            return await self.call_llm_structured(
                prompt, CriticReport, temperature=0.2, max_tokens=4096, max_retries=1
            )
        except Exception as exc:
            event_logger.error(
                f"Critic failed closed: {exc}",
                event_type=EventType.AGENT_OPERATION,
                component="critic",
                chapter_number=chapter_number,
                error_type=type(exc).__name__,
            )
            return fail_closed_report(word_ratio)

    @log_calls
    async def review(
        self,
        outline: ChapterOutline,
        content: str,
        *,
        context: str = "",
        target_words: int,
        dead_characters: Iterable[str] = (),
        terminal: bool = False,
    ) -> CriticReport:
        """Score ``content`` against ``outline`` and run the deterministic checks alongside."""
        words = count_words(content)
        ratio = words / target_words if target_words else 1.0
        report, findings = await asyncio.gather(
            self._model_review(
                self.build_prompt(outline, content, context, target_words),
                ratio,
                outline.chapter_number,
            ),
            asyncio.to_thread(run_checks, content, dead=list(dead_characters), terminal=terminal),
        )
        final = enforce(
            report, findings, word_count=words, target_words=target_words, min_score=self.min_score
        )
        event_logger.info(
            f"Critic: score {final.overall_score:.1f}, approved={final.approved}, "
            f"rewrite={final.requires_rewrite}, {len(final.issues)} issue(s)",
            event_type=EventType.AGENT_OPERATION,
            component="critic",
            chapter_number=outline.chapter_number,
        )
        return final


__all__ = ["ChapterCritic", "enforce", "fail_closed_report"]
