"""Pytest fixtures for Serialist tests."""

from __future__ import annotations

import pytest

from serialist.core.logs import get_event_logger
from serialist.models import Project

from tests.fakes import FakeEmbedder, FakeLLM, MemoryStore

PROJECT_ID = "novel-1"


@pytest.fixture(autouse=True)
def clear_event_log():
    """Start every test with an empty structured event buffer."""
    get_event_logger().clear_logs()
    yield
    get_event_logger().clear_logs()


@pytest.fixture
def project() -> Project:
    return Project(
        id=PROJECT_ID,
        title="The Ninth Furnace",
        genre="cultivation fantasy",
        protagonist_name="Lin Wei",
        world_description="A mountain sect built over a sleeping volcano.",
        master_outline="Lin Wei rises from outer disciple to furnace master.",
        total_planned_chapters=200,
        current_chapter=0,
        target_word_count=1000,
    )


@pytest.fixture
def store(project: Project) -> MemoryStore:
    store = MemoryStore()
    store.rows("projects").append(project.model_dump())
    return store


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
