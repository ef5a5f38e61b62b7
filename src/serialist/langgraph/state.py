# src/serialist/langgraph/state.py
"""State carried through one chapter's outline, draft and critique loop."""

from __future__ import annotations

import operator
from typing import Annotated, Literal, TypedDict

from serialist.agents.writer import Draft
from serialist.models import ChapterOutline, CriticReport

Verdict = Literal["approved", "revise", "rewrite"]


class ChapterState(TypedDict, total=False):
    """State container for the chapter generation graph.

    Inputs are set once by the caller; ``feedback`` accumulates critique
    instructions across attempts so each retry sees everything asked so far.
    """

    chapter_number: int
    context: str
    target_words: int
    protagonist: str
    previous_titles: list[str]
    dead_characters: list[str]
    voices: dict[str, str]
    terminal: bool
    max_attempts: int

    attempt: int
    outline: ChapterOutline | None
    draft: Draft | None
    report: CriticReport | None
    verdict: Verdict | None
    feedback: Annotated[list[str], operator.add]
    reports: Annotated[list[CriticReport], operator.add]


__all__ = ["ChapterState", "Verdict"]
