# src/serialist/models/sqlalchemy_models.py
"""SQLAlchemy ORM models for the narrative canon stored in PostgreSQL."""

from __future__ import annotations

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from serialist.config import config

from .base import Base


class ProjectSQL(Base):
    """A serialized narrative.

    Holds the chapter cursor (``current_chapter``), which only the
    orchestrator writes, along with the long-lived planning material that
    frames every chapter: the master outline and the story bible.
    """

    __tablename__ = "projects"
    id = Column(String(64), primary_key=True)
    title = Column(Text, nullable=False, default="")
    genre = Column(Text, default="")
    protagonist_name = Column(Text, default="")
    world_description = Column(Text, default="")
    master_outline = Column(Text, default="")
    story_bible = Column(Text, default="")
    total_planned_chapters = Column(Integer, nullable=False, default=1000)
    current_chapter = Column(Integer, nullable=False, default=0)
    target_word_count = Column(Integer)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, onupdate=func.now())


class ChapterSQL(Base):
    """Committed chapter prose, unique per project and number."""

    __tablename__ = "chapters"
    __table_args__ = (UniqueConstraint("project_id", "chapter_number"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    chapter_number = Column(Integer, nullable=False)
    title = Column(Text, default="")
    content = Column(Text, nullable=False)
    word_count = Column(Integer, default=0)
    quality_score = Column(Float)
    created_at = Column(TIMESTAMP, server_default=func.now())


class ChapterSummarySQL(Base):
    __tablename__ = "chapter_summaries"
    __table_args__ = (UniqueConstraint("project_id", "chapter_number"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    chapter_number = Column(Integer, nullable=False)
    title = Column(Text, default="")
    summary = Column(Text, default="")
    opening_sentence = Column(Text, default="")
    protagonist_state = Column(Text, default="")
    cliffhanger = Column(Text, default="")


class SynopsisSQL(Base):
    """Rolling synopsis; one live row per project, replaced on refresh."""

    __tablename__ = "synopses"
    project_id = Column(String(64), primary_key=True)
    synopsis_text = Column(Text, default="")
    protagonist_state = Column(Text, default="")
    active_allies = Column(JSON, default=list)
    active_enemies = Column(JSON, default=list)
    open_threads = Column(JSON, default=list)
    last_updated_chapter = Column(Integer, default=0)


class ArcPlanSQL(Base):
    __tablename__ = "arc_plans"
    __table_args__ = (UniqueConstraint("project_id", "arc_number"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    arc_number = Column(Integer, nullable=False)
    start_chapter = Column(Integer, nullable=False)
    end_chapter = Column(Integer, nullable=False)
    theme = Column(Text, default="")
    plan_text = Column(Text, default="")
    chapter_briefs = Column(JSON, default=list)
    threads_to_advance = Column(JSON, default=list)
    threads_to_resolve = Column(JSON, default=list)
    new_threads = Column(JSON, default=list)


class PlotThreadSQL(Base):
    __tablename__ = "plot_threads"
    id = Column(String(128), primary_key=True)
    project_id = Column(String(64), primary_key=True)
    name = Column(Text, nullable=False)
    description = Column(Text, default="")
    priority = Column(String(20), default="sub")
    status = Column(String(20), default="open")
    start_chapter = Column(Integer, default=1)
    target_payoff_chapter = Column(Integer)
    last_active_chapter = Column(Integer, default=0)
    related_characters = Column(JSON, default=list)
    importance = Column(Integer, default=50)


class ForeshadowingHintSQL(Base):
    __tablename__ = "foreshadowing_hints"
    __table_args__ = (UniqueConstraint("project_id", "hint_id"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    hint_id = Column(String(128), nullable=False)
    hint_text = Column(Text, default="")
    hint_type = Column(String(32), default="event")
    plant_chapter = Column(Integer, nullable=False)
    payoff_chapter = Column(Integer, nullable=False)
    payoff_description = Column(Text, default="")
    status = Column(String(20), default="planned")
    arc_number = Column(Integer, default=1)


class CharacterArcSQL(Base):
    __tablename__ = "character_arcs"
    __table_args__ = (UniqueConstraint("project_id", "character_name"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    character_name = Column(Text, nullable=False)
    role = Column(Text, default="")
    internal_conflict = Column(Text, default="")
    phases = Column(JSON, default=list)
    signature_traits = Column(JSON, default=list)
    relationship_with_protagonist = Column(Text, default="")
    appearance_count = Column(Integer, default=0)
    last_seen_chapter = Column(Integer, default=0)


class CharacterStateSQL(Base):
    __tablename__ = "character_states"
    __table_args__ = (UniqueConstraint("project_id", "chapter_number", "character_name"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    chapter_number = Column(Integer, nullable=False)
    character_name = Column(Text, nullable=False)
    status = Column(String(20), default="alive")
    power_level = Column(Text, default="")
    location = Column(Text, default="")
    notes = Column(Text, default="")


class PowerStateSQL(Base):
    """Single live power snapshot per project, overwritten on each update."""

    __tablename__ = "power_states"
    project_id = Column(String(64), primary_key=True)
    power_state = Column(JSON, nullable=False)
    last_updated_chapter = Column(Integer, default=0)


class VoiceFingerprintSQL(Base):
    __tablename__ = "voice_fingerprints"
    project_id = Column(String(64), primary_key=True)
    fingerprint = Column(JSON, nullable=False)
    sample_chapters = Column(JSON, default=list)
    drift_warnings = Column(JSON, default=list)
    last_updated_chapter = Column(Integer, default=0)


class LocationBibleSQL(Base):
    __tablename__ = "location_bibles"
    __table_args__ = (UniqueConstraint("project_id", "location_name"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    location_name = Column(Text, nullable=False)
    arc_start = Column(Integer, default=1)
    arc_end = Column(Integer, default=1)
    explored = Column(Boolean, default=False)
    bible = Column(JSON)
    position = Column(Integer, default=0)


class BeatUsageSQL(Base):
    __tablename__ = "beat_usage"
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    chapter_number = Column(Integer, nullable=False)
    arc_number = Column(Integer, default=1)
    beat_category = Column(String(20), nullable=False)
    beat_type = Column(String(64), nullable=False)
    intensity = Column(Integer, default=0)
    cooldown_until = Column(Integer, default=0)


class MemoryChunkSQL(Base):
    """A slice of committed prose with its embedding for long-range recall.

    ``embedding`` stays NULL until a vector is available; only embedded
    chunks take part in similarity search.
    """

    __tablename__ = "memory_chunks"
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    chapter_number = Column(Integer, nullable=False)
    chunk_type = Column(String(32), nullable=False)
    content = Column(Text, nullable=False)
    meta = Column(JSON, default=dict)
    embedding = Column(Vector(config.embedding.dim), nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())


class ArcAgendaSQL(Base):
    """Marks that a tracker has planned an arc, even when the plan came back empty."""

    __tablename__ = "arc_agendas"
    __table_args__ = (UniqueConstraint("project_id", "arc_number", "tracker"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    arc_number = Column(Integer, nullable=False)
    tracker = Column(String(32), nullable=False)
    item_count = Column(Integer, default=0)


class PacingBlueprintSQL(Base):
    __tablename__ = "pacing_blueprints"
    __table_args__ = (UniqueConstraint("project_id", "arc_number"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    arc_number = Column(Integer, nullable=False)
    blueprint = Column(JSON, nullable=False)


class WorldRuleSQL(Base):
    """A world fact lifted from committed prose, keyed by a hash of its text."""

    __tablename__ = "world_rules"
    __table_args__ = (UniqueConstraint("project_id", "rule_key"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    rule_key = Column(String(40), nullable=False)
    rule_text = Column(Text, nullable=False)
    category = Column(String(32), default="power_system")
    tags = Column(JSON, default=list)
    introduced_chapter = Column(Integer, default=0)
    importance = Column(Integer, default=60)
    usage_count = Column(Integer, default=0)


class ConsistencyIssueSQL(Base):
    __tablename__ = "consistency_issues"
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False, index=True)
    chapter_number = Column(Integer, nullable=False)
    issue_type = Column(String(20), default="consistency")
    severity = Column(String(20), default="moderate")
    description = Column(Text, default="")


__all__ = [
    "ArcAgendaSQL",
    "ArcPlanSQL",
    "BeatUsageSQL",
    "ChapterSQL",
    "ChapterSummarySQL",
    "CharacterArcSQL",
    "CharacterStateSQL",
    "ConsistencyIssueSQL",
    "ForeshadowingHintSQL",
    "LocationBibleSQL",
    "MemoryChunkSQL",
    "PacingBlueprintSQL",
    "PlotThreadSQL",
    "PowerStateSQL",
    "ProjectSQL",
    "SynopsisSQL",
    "VoiceFingerprintSQL",
    "WorldRuleSQL",
]
