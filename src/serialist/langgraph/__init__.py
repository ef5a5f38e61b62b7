# src/serialist/langgraph/__init__.py
"""LangGraph integration modules."""

from .context import AssembledContext, ContextAssembler
from .graph import ChapterPipeline, ChapterRequest, GeneratedChapter
from .orchestrator import ChapterResult, Orchestrator, TrackerOutcome, resolve_next_chapter
from .state import ChapterState

__all__ = [
    "AssembledContext",
    "ChapterPipeline",
    "ChapterRequest",
    "ChapterResult",
    "ChapterState",
    "ContextAssembler",
    "GeneratedChapter",
    "Orchestrator",
    "TrackerOutcome",
    "resolve_next_chapter",
]
