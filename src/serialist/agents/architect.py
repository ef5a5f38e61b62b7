# src/serialist/agents/architect.py
"""Architect agent: turns assembled context into a validated chapter outline."""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

from serialist.agents.base import Agent
from serialist.config import config
from serialist.core.json_repair import parse_model
from serialist.core.llm import LLMClient
from serialist.core.logs import EventType, get_event_logger, log_calls
from serialist.core.text import most_similar_title, split_sentences
from serialist.errors import OutlineError
from serialist.models import ChapterOutline, SceneOutline, ScenePace

event_logger = get_event_logger()

WORDS_PER_SCENE = 600
MIN_SCENES = 4
RECENT_TITLE_WINDOW = 20
TITLE_SIMILARITY = 0.7

ARCHITECT_SYSTEM = """You are the ARCHITECT of a long-running serialized novel.
You plan one chapter at a time as structured JSON: scenes with clear goals and
conflicts, varied pacing, a planned emotional arc and a closing hook that makes
the reader open the next chapter. You never contradict the established story state."""

OPENING_GUIDE = {
    1: "Open in motion: introduce the protagonist through action, establish the core "
    "want and the central injustice or mystery within the first scene. No info dumps.",
    2: "Deepen the world through consequence: show one rule of the world biting the "
    "protagonist, and give the reader a first small win.",
    3: "Lock in the promise of the story: a clear escalation, a named antagonist force "
    "and a hook strong enough to carry the reader into the first arc.",
}


def min_scene_count(target_words: int) -> int:
    return max(MIN_SCENES, math.ceil(target_words / WORDS_PER_SCENE))


def filler_scenes(count: int, words_per_scene: int, pov: str, start: int = 1) -> list[SceneOutline]:
    return [
        SceneOutline(order=start + i, goal=f"Scene {start + i}", estimated_words=words_per_scene, pov=pov)
        for i in range(count)
    ]


def filler_outline(chapter_number: int, target_words: int, pov: str) -> ChapterOutline:
    count = min_scene_count(target_words)
    return ChapterOutline(
        chapter_number=chapter_number,
        title=f"Chapter {chapter_number}",
        pov=pov,
        scenes=filler_scenes(count, round(target_words / count), pov),
        target_word_count=target_words,
    )


def validate_outline(
    outline: ChapterOutline,
    chapter_number: int,
    target_words: int,
    *,
    pov: str = "",
    terminal: bool = False,
) -> ChapterOutline:
    """Enforce the structural minimums every outline must meet before drafting."""
    outline = outline.model_copy(deep=True)
    needed = min_scene_count(target_words)
    per_scene = round(target_words / needed)
    scenes = list(outline.scenes)
    if len(scenes) < needed:
        scenes += filler_scenes(needed - len(scenes), per_scene, outline.pov or pov, start=len(scenes) + 1)
    for index, scene in enumerate(scenes, start=1):
        scene.order = index

    if sum(s.estimated_words for s in scenes) < target_words * 0.8:
        even = round(target_words / len(scenes))
        for scene in scenes:
            scene.estimated_words = even

    if not any(s.pace == ScenePace.SLOW for s in scenes):
        scenes[len(scenes) // 2].pace = ScenePace.SLOW

    comedic_beat = outline.comedic_beat
    if not comedic_beat and not any(s.comedic for s in scenes):
        scenes[min(1, len(scenes) - 1)].comedic = True
        comedic_beat = "A moment of levity between characters"

    cliffhanger = outline.cliffhanger
    if not cliffhanger.strip() and not terminal:
        last = scenes[-1]
        cliffhanger = (
            f"{last.conflict.rstrip('.')} remains unresolved as the chapter closes."
            if last.conflict
            else "A new threat surfaces just as the scene resolves."
        )

    return outline.model_copy(
        update={
            "chapter_number": chapter_number,
            "pov": outline.pov or pov,
            "scenes": scenes,
            "comedic_beat": comedic_beat,
            "cliffhanger": cliffhanger,
            "target_word_count": target_words,
        }
    )


def title_rules(previous_titles: Sequence[str]) -> str:
    recent = list(previous_titles)[-RECENT_TITLE_WINDOW:]
    if not recent:
        return "TITLE: short and evocative (4-60 characters)."
    return (
        "TITLE: short and evocative (4-60 characters), and clearly different from these recent titles:\n"
        + "\n".join(f"- {t}" for t in recent)
    )


_HEADING = re.compile(r"^Chapter\s+\d+\s*[:\-–]\s*(.+)$", re.IGNORECASE)


def choose_title(content: str, chapter_number: int, outline_title: str, previous_titles: Sequence[str]) -> str:
    """Pick a chapter title that does not echo recent ones.

    Order of preference: the outline's title, a ``Chapter N: Title`` heading
    in the prose, and when the result is too close to an earlier title, a
    short sentence from the opening of the chapter.
    """
    recent = list(previous_titles)[-RECENT_TITLE_WINDOW:]
    title = outline_title.strip()
    if 4 <= len(title) <= 60 and title not in recent:
        return title

    for line in content.splitlines()[:8]:
        match = _HEADING.match(line.strip())
        if match and 4 <= len(match.group(1).strip()) <= 60:
            return match.group(1).strip()

    title = title or f"Chapter {chapter_number}"
    if previous_titles:
        _, similarity = most_similar_title(title, list(previous_titles))
        if similarity >= TITLE_SIMILARITY:
            for sentence in split_sentences(content[:500]):
                if 5 <= len(sentence) <= 40 and not sentence.startswith(('"', "-", "“")):
                    return sentence.strip(" .!?\"'“”")
            return f"Chapter {chapter_number}"
    return title


class StoryArchitect(Agent):
    """Plans chapters."""

    system_prompt = ARCHITECT_SYSTEM

    def __init__(self, llm: LLMClient, *, model: str | None = None) -> None:
        super().__init__(llm, model=model, default_model=config.agents.architect)

    def build_prompt(
        self,
        chapter_number: int,
        context: str,
        target_words: int,
        *,
        previous_titles: Sequence[str] = (),
        feedback: Sequence[str] = (),
        terminal: bool = False,
    ) -> str:
        scenes = min_scene_count(target_words)
        per_scene = round(target_words / scenes)
        parts = [f"Plan CHAPTER {chapter_number}.", context, title_rules(previous_titles)]
        parts.append(f"Target: {target_words} words. At least {scenes} scenes (~{per_scene} words each).")
        if feedback:
            parts.append("FIX FROM THE PREVIOUS ATTEMPT:\n" + "\n".join(f"- {f}" for f in feedback))
        if chapter_number in OPENING_GUIDE:
            parts.append(f"OPENING CHAPTER {chapter_number}: {OPENING_GUIDE[chapter_number]}")
        parts.append(
            "EMOTIONAL ARC: plan the reader's feeling at the opening, midpoint, climax and "
            "close, with real contrast between them."
        )
        parts.append(
            "PACING: include at least one slow, low-intensity scene and at least one comedic beat."
        )
        if terminal:
            parts.append(
                "ENDING (final arc): no cliffhanger. Close satisfyingly and open no new plot threads."
            )
        else:
            parts.append(
                "CLOSING HOOK: end on an unresolved question, threat, reveal or decision."
            )
        parts.append(
            f"""Return JSON:
{{"chapter_number": {chapter_number}, "title": "...", "summary": "2-3 sentences", "pov": "...", "location": "...",
 "scenes": [{{"order": 1, "setting": "...", "characters": ["..."], "goal": "...", "conflict": "...",
   "resolution": "...", "estimated_words": {per_scene}, "pov": "...", "pace": "slow|medium|fast", "comedic": false}}],
 "tension_level": 7, "dopamine_points": [{{"type": "...", "scene": 1, "description": "...", "intensity": 8}}],
 "emotional_arc": {{"opening": "...", "midpoint": "...", "climax": "...", "closing": "..."}},
 "comedic_beat": "...", "cliffhanger": "...", "target_word_count": {target_words}}}"""
        )
        return "\n\n".join(p for p in parts if p)

    @log_calls
    async def plan_chapter(
        self,
        chapter_number: int,
        context: str,
        *,
        target_words: int,
        protagonist: str = "",
        previous_titles: Sequence[str] = (),
        feedback: Sequence[str] = (),
        terminal: bool = False,
    ) -> ChapterOutline:
        """Return a validated outline for ``chapter_number``.

        Raises
        ------
        OutlineError
            If the model returns no content at all.
        """
        prompt = self.build_prompt(
            chapter_number,
            context,
            target_words,
            previous_titles=previous_titles,
            feedback=feedback,
            terminal=terminal,
        )
        completion = await self.call_llm(prompt, temperature=0.3, max_tokens=8192, json_mode=True)
        if not completion.content.strip():
            raise OutlineError(chapter_number, "architect returned an empty response")
        if completion.truncated:
            event_logger.warning(
                f"Architect output truncated (finish_reason={completion.finish_reason})",
                event_type=EventType.AGENT_OPERATION,
                component="architect",
                chapter_number=chapter_number,
            )

        outline = parse_model(completion.content, ChapterOutline)
        if outline is None:
            event_logger.warning(
                "Architect output unparsable; using filler outline",
                event_type=EventType.AGENT_OPERATION,
                component="architect",
                chapter_number=chapter_number,
            )
            outline = filler_outline(chapter_number, target_words, protagonist)
        return validate_outline(
            outline, chapter_number, target_words, pov=protagonist, terminal=terminal
        )


__all__ = [
    "StoryArchitect",
    "choose_title",
    "filler_outline",
    "min_scene_count",
    "validate_outline",
]
