# src/serialist/memory/voice.py
"""Narrative voice fingerprint and drift detection."""

from __future__ import annotations

import re
from collections.abc import Sequence

from pydantic import Field

from serialist.core.logs import EventType, get_event_logger
from serialist.core.text import count_words, split_sentences
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import Project, VoiceFingerprint
from serialist.models.base_model import SerialistBaseModel
from serialist.models.validators import StrList

event_logger = get_event_logger()

FIRST_UPDATE = 5
UPDATE_INTERVAL = 10
SAMPLE_CHAPTERS = 3
SLICE_CHARS = 1500

DIALOGUE_SHIFT = 0.15
SENTENCE_SHIFT = 0.30
THOUGHT_SHIFT = 0.10

_QUOTED = re.compile(r"[\"“”]")
_THOUGHT = re.compile(
    r"\b(?:thought|wondered|realized|recalled|remembered|felt|knew|"
    r"couldn't help|mused|pondered|asked (?:himself|herself|themselves))\b",
    re.IGNORECASE,
)

VOICE_SYSTEM = "You are a literary editor describing an author's narrative voice precisely."


class VoiceLabels(SerialistBaseModel):
    emotional_register: str = ""
    description_style: str = ""
    signature_phrases: StrList = Field(default_factory=list)
    avoided_phrases: StrList = Field(default_factory=list)
    opening_patterns: StrList = Field(default_factory=list)


def should_update(chapter_number: int) -> bool:
    return chapter_number >= FIRST_UPDATE and (chapter_number - FIRST_UPDATE) % UPDATE_INTERVAL == 0


def sample_text(content: str) -> str:
    """Opening, middle and ending slices of a chapter."""
    if len(content) <= SLICE_CHARS * 3:
        return content
    mid = len(content) // 2 - SLICE_CHARS // 2
    return "\n...\n".join(
        (content[:SLICE_CHARS], content[mid : mid + SLICE_CHARS], content[-SLICE_CHARS:])
    )


def measure(text: str) -> tuple[float, float, float]:
    """Average sentence length in words, dialogue ratio and inner-thought ratio."""
    sentences = split_sentences(text)
    if not sentences:
        return 0.0, 0.0, 0.0
    avg = sum(count_words(s) for s in sentences) / len(sentences)
    dialogue = sum(1 for s in sentences if _QUOTED.search(s)) / len(sentences)
    thought = sum(1 for s in sentences if _THOUGHT.search(s)) / len(sentences)
    return round(avg, 2), round(dialogue, 3), round(thought, 3)


def detect_drift(old: VoiceFingerprint, new: VoiceFingerprint) -> list[str]:
    """Human-readable warnings for each way ``new`` departs from ``old``."""
    warnings: list[str] = []
    if abs(new.dialogue_ratio - old.dialogue_ratio) > DIALOGUE_SHIFT:
        warnings.append(
            f"Dialogue ratio moved from {old.dialogue_ratio:.0%} to {new.dialogue_ratio:.0%}"
        )
    if old.avg_sentence_length > 0:
        shift = abs(new.avg_sentence_length - old.avg_sentence_length) / old.avg_sentence_length
        if shift > SENTENCE_SHIFT:
            warnings.append(
                f"Average sentence length moved from {old.avg_sentence_length:.1f} "
                f"to {new.avg_sentence_length:.1f} words"
            )
    if abs(new.inner_thought_ratio - old.inner_thought_ratio) > THOUGHT_SHIFT:
        warnings.append(
            f"Inner-thought ratio moved from {old.inner_thought_ratio:.0%} "
            f"to {new.inner_thought_ratio:.0%}"
        )
    if old.emotional_register and new.emotional_register and (
        old.emotional_register.lower() != new.emotional_register.lower()
    ):
        warnings.append(
            f"Emotional register changed from '{old.emotional_register}' to '{new.emotional_register}'"
        )
    if old.description_style and new.description_style and (
        old.description_style.lower() != new.description_style.lower()
    ):
        warnings.append(
            f"Description style changed from '{old.description_style}' to '{new.description_style}'"
        )
    kept = {p.lower() for p in new.signature_phrases}
    lost = [p for p in old.signature_phrases if p.lower() not in kept]
    if len(lost) >= 2:
        warnings.append(f"Signature phrasing lost: {', '.join(lost[:4])}")
    if len(set(new.opening_patterns)) == 1 and len(new.opening_patterns) > 1:
        warnings.append(f"Chapters keep opening the same way: {new.opening_patterns[0]}")
    return warnings


class VoiceTracker(Tracker):
    name = "voice"

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        if not should_update(chapter.chapter_number):
            return
        rows = await self.store.select(
            "chapters",
            {"project_id": chapter.project_id},
            order_by="chapter_number",
            descending=True,
            limit=SAMPLE_CHAPTERS,
            columns=("chapter_number", "content"),
        )
        if len(rows) < 2:
            return
        samples = [sample_text(row["content"] or "") for row in rows]
        avg, dialogue, thought = measure("\n".join(samples))

        labels = await self._analyze(
            "Describe the narrative voice of these excerpts. Return JSON with "
            "emotional_register, description_style, signature_phrases, avoided_phrases, "
            "opening_patterns (how each chapter opens).\n\n"
            + "\n\n---\n\n".join(samples),
            VoiceLabels,
            system=VOICE_SYSTEM,
            temperature=0.2,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        ) or VoiceLabels()
        fingerprint = VoiceFingerprint(
            avg_sentence_length=avg,
            dialogue_ratio=dialogue,
            inner_thought_ratio=thought,
            **labels.model_dump(),
        )

        previous = await self.store.select_one(
            "voice_fingerprints", {"project_id": chapter.project_id}
        )
        warnings: list[str] = []
        if previous is not None:
            old = VoiceFingerprint.model_validate(previous["fingerprint"] or {})
            warnings = detect_drift(old, fingerprint)
            # The established voice stays the reference until it is re-measured without drift.
            if warnings:
                fingerprint = old
        for warning in warnings:
            event_logger.warning(
                f"Voice drift: {warning}",
                event_type=EventType.TRACKER_UPDATE,
                component=self.name,
                project_id=chapter.project_id,
                chapter_number=chapter.chapter_number,
            )
        await self.store.upsert(
            "voice_fingerprints",
            [
                {
                    "project_id": chapter.project_id,
                    "fingerprint": fingerprint.model_dump(mode="json"),
                    "sample_chapters": [row["chapter_number"] for row in rows],
                    "drift_warnings": warnings,
                    "last_updated_chapter": chapter.chapter_number,
                }
            ],
            conflict=("project_id",),
        )

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        row = await self.store.select_one("voice_fingerprints", {"project_id": project.id})
        if row is None:
            return None
        fp = VoiceFingerprint.model_validate(row["fingerprint"] or {})
        lines = [
            "=== NARRATIVE VOICE ===",
            f"Average sentence: ~{fp.avg_sentence_length:.0f} words; "
            f"dialogue {fp.dialogue_ratio:.0%}; inner thought {fp.inner_thought_ratio:.0%}",
        ]
        if fp.emotional_register:
            lines.append(f"Register: {fp.emotional_register}")
        if fp.description_style:
            lines.append(f"Description: {fp.description_style}")
        if fp.signature_phrases:
            lines.append(f"Signature phrasing: {', '.join(fp.signature_phrases[:5])}")
        if fp.avoided_phrases:
            lines.append(f"Avoid: {', '.join(fp.avoided_phrases[:5])}")
        for warning in row.get("drift_warnings") or []:
            lines.append(f"DRIFT: {warning}. Do not drift further.")
        return "\n".join(lines)


__all__ = ["VoiceLabels", "VoiceTracker", "detect_drift", "measure", "should_update"]
