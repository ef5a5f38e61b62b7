# src/serialist/memory/__init__.py
"""Narrative memory: the trackers, the semantic store and the summary manager."""

from .base import CommittedChapter, Tracker
from .character_arcs import CharacterArcTracker
from .consistency import ConsistencyChecker
from .foreshadowing import ForeshadowingLedger
from .pacing import PacingDirector
from .plot_ledger import PlotBeatLedger
from .power import PowerLedger
from .semantic_store import SemanticStore
from .summaries import SummaryManager
from .voice import VoiceTracker
from .world import WorldTracker
from .world_rules import WorldRuleIndex

__all__ = [
    "CharacterArcTracker",
    "CommittedChapter",
    "ConsistencyChecker",
    "ForeshadowingLedger",
    "PacingDirector",
    "PlotBeatLedger",
    "PowerLedger",
    "SemanticStore",
    "SummaryManager",
    "Tracker",
    "VoiceTracker",
    "WorldRuleIndex",
    "WorldTracker",
]
