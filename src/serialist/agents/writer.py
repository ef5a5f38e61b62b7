# src/serialist/agents/writer.py
"""Writer agent: expands an outline into chapter prose."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from serialist.agents.base import Agent
from serialist.config import config
from serialist.core.llm import LLMClient
from serialist.core.logs import EventType, get_event_logger, log_calls
from serialist.core.text import clean_content, count_words
from serialist.errors import SerialistError
from serialist.models import ChapterOutline, SceneOutline, ScenePace

event_logger = get_event_logger()

CONTINUE_BELOW = 0.7
MIN_REMAINING = 300
TAIL_CHARS = 10_000

WRITER_SYSTEM = """You are the WRITER of a long-running serialized novel.
You write vivid, publishable prose in plain text (no markdown, no headings, no scene labels).
Every scene in the blueprint is written in full. Characters sound distinct.
You continue the story exactly from its current state and never summarize."""


@dataclass(frozen=True)
class Pacing:
    sentence_words: tuple[int, int]
    dialogue_ratio: tuple[int, int]
    speed: ScenePace


PACING: dict[str, Pacing] = {
    "action": Pacing((5, 15), (10, 30), ScenePace.FAST),
    "cultivation": Pacing((12, 25), (5, 20), ScenePace.SLOW),
    "revelation": Pacing((8, 20), (30, 50), ScenePace.MEDIUM),
    "romance": Pacing((10, 22), (35, 55), ScenePace.SLOW),
    "dialogue": Pacing((8, 18), (50, 70), ScenePace.MEDIUM),
    "tension": Pacing((6, 16), (20, 40), ScenePace.FAST),
    "comedy": Pacing((6, 16), (40, 60), ScenePace.MEDIUM),
}

_SCENE_TYPES: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (name, re.compile(pattern, re.IGNORECASE))
    for name, pattern in (
        ("action", r"\b(?:fight|battle|attack|strike|sword|duel|kill|ambush|clash|technique)\w*"),
        ("cultivation", r"\b(?:cultivat|breakthrough|meditat|qi|realm|refin|train)\w*"),
        ("revelation", r"\b(?:reveal|secret|discover|truth|uncover)\w*"),
        ("romance", r"\b(?:love|kiss|longing|romance|heart|tender)\w*"),
        ("dialogue", r"\b(?:talk|conversation|negotiat|discuss|argue|persuade)\w*"),
        ("tension", r"\b(?:danger|trap|surround|hunt|chase|threat)\w*"),
        ("comedy", r"\b(?:joke|comic|humor|funny|laugh|prank)\w*"),
    )
)


def infer_scene_type(scene: SceneOutline) -> str:
    text = f"{scene.goal} {scene.conflict} {scene.resolution} {scene.setting}"
    for name, pattern in _SCENE_TYPES:
        if pattern.search(text):
            return name
    return "dialogue"


def scene_guidance(outline: ChapterOutline) -> str:
    blocks = []
    for scene in outline.scenes:
        pacing = PACING[infer_scene_type(scene)]
        speed = scene.pace if scene.pace != ScenePace.MEDIUM else pacing.speed
        lines = [
            f"- Scene {scene.order}: {scene.goal} -> Conflict: {scene.conflict} -> Resolution: {scene.resolution}",
            f"  Setting: {scene.setting} | Characters: {', '.join(scene.characters)}",
            f"  Write AT LEAST {scene.estimated_words} words.",
            f"  Rhythm: sentences of {pacing.sentence_words[0]}-{pacing.sentence_words[1]} words, "
            f"dialogue {pacing.dialogue_ratio[0]}-{pacing.dialogue_ratio[1]}%, {speed.value} pace.",
        ]
        if scene.pov and scene.pov != outline.pov:
            lines.append(f"  POV: {scene.pov} (their perception and knowledge only)")
        if scene.comedic:
            lines.append("  Include a light, genuinely funny moment.")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def voice_guide(outline: ChapterOutline, voices: Mapping[str, str] | None = None) -> str:
    """One line per distinct speaker so every character sounds different."""
    names = outline.characters
    if not names:
        return ""
    voices = voices or {}
    lines = ["CHARACTER VOICES (each character must sound distinct):"]
    for name in names:
        lines.append(f"- {name}: {voices.get(name) or 'a voice true to their personality and role'}")
    lines.append("Rule: with names hidden, a reader should still know who is speaking.")
    return "\n".join(lines)


@dataclass(frozen=True)
class Draft:
    content: str
    word_count: int
    continued: bool = False


class ChapterWriter(Agent):
    """Writes chapters."""

    system_prompt = WRITER_SYSTEM

    def __init__(self, llm: LLMClient, *, model: str | None = None) -> None:
        super().__init__(llm, model=model, default_model=config.agents.writer)

    def build_prompt(
        self,
        outline: ChapterOutline,
        context: str,
        target_words: int,
        *,
        feedback: Sequence[str] = (),
        voices: Mapping[str, str] | None = None,
    ) -> str:
        arc = outline.emotional_arc
        parts = [f'Write CHAPTER {outline.chapter_number}: "{outline.title}"']
        if feedback:
            parts.append("FIX FROM THE PREVIOUS ATTEMPT:\n" + "\n".join(f"- {f}" for f in feedback))
        parts += [
            f"BLUEPRINT:\n{outline.model_dump_json(indent=2)}",
            f"CONTEXT:\n{context}",
            f"SCENES (write every scene in full):\n{scene_guidance(outline)}",
            f"EMOTIONAL ARC: {arc.opening} -> {arc.midpoint} -> {arc.climax} -> {arc.closing}",
        ]
        if outline.dopamine_points:
            parts.append(
                "PAYOFFS:\n" + "\n".join(f"- {d.type}: {d.description}" for d in outline.dopamine_points)
            )
        if outline.cliffhanger:
            parts.append(f"CLOSING HOOK: {outline.cliffhanger}")
        guide = voice_guide(outline, voices)
        if guide:
            parts.append(guide)
        scenes = max(1, len(outline.scenes))
        parts.append(
            f"LENGTH: at least {target_words} words; under {round(target_words * CONTINUE_BELOW)} "
            f"will be rejected. {scenes} scenes x ~{round(target_words / scenes)} words. "
            "No summaries, no markdown.\n\nBegin:"
        )
        return "\n\n".join(parts)

    @log_calls
    async def write_chapter(
        self,
        outline: ChapterOutline,
        context: str,
        *,
        target_words: int,
        feedback: Sequence[str] = (),
        voices: Mapping[str, str] | None = None,
    ) -> Draft:
        """Write the chapter, asking for one continuation when it comes back short."""
        completion = await self.call_llm(
            self.build_prompt(outline, context, target_words, feedback=feedback, voices=voices)
        )
        if completion.truncated:
            event_logger.warning(
                "Writer output truncated",
                event_type=EventType.AGENT_OPERATION,
                component="writer",
                chapter_number=outline.chapter_number,
            )
        content = clean_content(completion.content)
        words = count_words(content)
        if words >= target_words * CONTINUE_BELOW or target_words - words < MIN_REMAINING:
            return Draft(content, words)

        continuation = await self.continue_chapter(content, outline, target_words)
        if not continuation:
            return Draft(content, words)
        content = f"{content}\n\n{continuation}"
        return Draft(content, count_words(content), continued=True)

    async def continue_chapter(self, partial: str, outline: ChapterOutline, target_words: int) -> str:
        """Ask for the rest of a short chapter; returns cleaned prose or ``""``."""
        written = count_words(partial)
        remaining = target_words - written
        event_logger.info(
            f"Chapter short ({written}/{target_words} words); requesting continuation",
            event_type=EventType.AGENT_OPERATION,
            component="writer",
            chapter_number=outline.chapter_number,
        )
        remaining_scenes = "\n".join(
            s.model_dump_json() for s in outline.scenes[-3:]
        )
        prompt = f"""Continue the chapter. {written} words written; {remaining} more needed.

WRITTEN SO FAR (ending):
...{partial[-TAIL_CHARS:]}

REMAINING SCENES FROM THE BLUEPRINT:
{remaining_scenes}

Continue exactly where it stops. Do not repeat anything."""
        try:
            completion = await self.call_llm(prompt)
        except SerialistError as exc:
            event_logger.warning(
                f"Continuation failed: {exc}",
                event_type=EventType.AGENT_OPERATION,
                component="writer",
                chapter_number=outline.chapter_number,
            )
            return ""
        return clean_content(completion.content)


__all__ = ["ChapterWriter", "Draft", "PACING", "infer_scene_type", "scene_guidance", "voice_guide"]
