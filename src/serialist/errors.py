# src/serialist/errors.py
"""Exception hierarchy shared across the engine."""

from __future__ import annotations


class SerialistError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(SerialistError):
    """Raised when a required provider setting is missing."""


class ProviderError(SerialistError):
    """Raised when a provider call keeps failing after the retry budget."""


class StructuredOutputError(SerialistError):
    """Raised when a model response cannot be repaired into the expected record."""

    def __init__(self, reason: str, raw: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class ProjectNotFoundError(SerialistError):
    """No project row exists for the requested id."""


class ChapterGenerationError(SerialistError):
    """A chapter could not be produced; nothing was committed for it."""

    def __init__(self, chapter_number: int, reason: str) -> None:
        super().__init__(f"Chapter {chapter_number}: {reason}")
        self.chapter_number = chapter_number
        self.reason = reason


class OutlineError(ChapterGenerationError):
    """The architect returned no usable outline."""


__all__ = [
    "SerialistError",
    "ConfigurationError",
    "ProviderError",
    "StructuredOutputError",
    "ProjectNotFoundError",
    "ChapterGenerationError",
    "OutlineError",
]
