# src/serialist/core/logs.py
"""Structured event log layered over the standard ``logging`` tree.

Every event is written to the ``serialist`` logger hierarchy and kept in a
bounded in-memory buffer so batch runners and tests can inspect what
happened during a chapter cycle without parsing log output.
"""

from __future__ import annotations

import functools
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4


class LogLevel(Enum):
    """Log levels with numeric values for filtering."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


class EventType(Enum):
    """Event categories emitted by the engine."""

    SYSTEM = "system"
    LLM_REQUEST = "llm_request"
    DATABASE_OPERATION = "database_operation"
    AGENT_OPERATION = "agent_operation"
    PIPELINE_STEP = "pipeline_step"
    TRACKER_UPDATE = "tracker_update"
    CURSOR_REPAIR = "cursor_repair"
    BATCH = "batch"
    RETRY_ATTEMPT = "retry_attempt"
    ERROR = "error"
    WARNING = "warning"


class Priority(Enum):
    """Event priority levels."""

    CRITICAL = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4


@dataclass
class StructuredLogEvent:
    """Structured log event with engine metadata."""

    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: float = field(default_factory=time.time)
    event_type: EventType = EventType.SYSTEM
    level: LogLevel = LogLevel.INFO
    priority: Priority = Priority.NORMAL
    message: str = ""
    component: str | None = None
    project_id: str | None = None
    chapter_number: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class EventLogger:
    """Structured event log with a bounded in-memory history."""

    def __init__(self, max_events: int = 10000) -> None:
        self.max_events = max_events
        self._events: deque[StructuredLogEvent] = deque(maxlen=max_events)
        self._traditional_logger = logging.getLogger("serialist")

    def log(
        self,
        level: LogLevel,
        message: str,
        event_type: EventType = EventType.SYSTEM,
        priority: Priority = Priority.NORMAL,
        component: str | None = None,
        project_id: str | None = None,
        chapter_number: int | None = None,
        **metadata: Any,
    ) -> StructuredLogEvent:
        """Record an event and forward it to the standard logger."""
        event = StructuredLogEvent(
            level=level,
            event_type=event_type,
            priority=priority,
            message=message,
            component=component,
            project_id=project_id,
            chapter_number=chapter_number,
            metadata=metadata.pop("metadata", None) or metadata,
        )
        self._events.append(event)
        self._log_to_traditional(event)
        return event

    def _log_to_traditional(self, event: StructuredLogEvent) -> None:
        logger = (
            self._traditional_logger.getChild(event.component)
            if event.component
            else self._traditional_logger
        )
        context = []
        if event.project_id:
            context.append(f"project={event.project_id}")
        if event.chapter_number is not None:
            context.append(f"chapter={event.chapter_number}")
        prefix = f"[{event.event_type.value}] "
        suffix = f" ({' '.join(context)})" if context else ""
        logger.log(event.level.value, "%s%s%s", prefix, event.message, suffix)

    def debug(self, message: str, **kwargs: Any) -> StructuredLogEvent:
        """Log debug message."""
        return self.log(LogLevel.DEBUG, message, priority=Priority.LOW, **kwargs)

    def info(self, message: str, **kwargs: Any) -> StructuredLogEvent:
        """Log info message."""
        return self.log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> StructuredLogEvent:
        """Log warning message."""
        kwargs.setdefault("event_type", EventType.WARNING)
        return self.log(LogLevel.WARNING, message, priority=Priority.HIGH, **kwargs)

    def error(self, message: str, **kwargs: Any) -> StructuredLogEvent:
        """Log error message."""
        kwargs.setdefault("event_type", EventType.ERROR)
        return self.log(LogLevel.ERROR, message, priority=Priority.CRITICAL, **kwargs)

    def log_retry_attempt(
        self, operation: str, attempt: int, max_attempts: int, error: str, **kwargs: Any
    ) -> StructuredLogEvent:
        """Log a retry of a transient failure."""
        return self.log(
            LogLevel.WARNING,
            f"Retrying {operation} ({attempt}/{max_attempts}) after: {error}",
            event_type=EventType.RETRY_ATTEMPT,
            priority=Priority.HIGH,
            **kwargs,
        )

    def get_events(
        self,
        event_type: EventType | None = None,
        project_id: str | None = None,
        limit: int = 100,
    ) -> list[StructuredLogEvent]:
        """Return the most recent events, optionally filtered."""
        events = [
            e
            for e in self._events
            if (event_type is None or e.event_type == event_type)
            and (project_id is None or e.project_id == project_id)
        ]
        return events[-limit:]

    def clear_logs(self) -> None:
        """Drop all buffered events."""
        self._events.clear()


# Global event logger instance
_event_logger: EventLogger | None = None


def get_event_logger() -> EventLogger:
    """Get global event logger instance."""
    global _event_logger
    if _event_logger is None:
        _event_logger = EventLogger()
    return _event_logger


def get_logger(name: str) -> logging.Logger:
    """Return a namespaced logger under the Serialist root logger."""
    return get_event_logger()._traditional_logger.getChild(name)


def log_message(message: str, **kwargs: Any) -> None:
    """Store message in the structured logging system."""
    get_event_logger().info(message, **kwargs)


def log_calls(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Decorate an agent coroutine to log entry, exit and failure at DEBUG level."""
    event_logger = get_event_logger()

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        start_time = time.time()
        event_logger.debug(
            f"Entering {func.__qualname__}",
            event_type=EventType.AGENT_OPERATION,
            function=func.__qualname__,
        )
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            event_logger.error(
                f"Error in {func.__qualname__}: {e}",
                function=func.__qualname__,
                error_type=type(e).__name__,
                duration_ms=(time.time() - start_time) * 1000,
            )
            raise
        event_logger.debug(
            f"Exiting {func.__qualname__}",
            event_type=EventType.AGENT_OPERATION,
            function=func.__qualname__,
            duration_ms=(time.time() - start_time) * 1000,
        )
        return result

    return wrapper


__all__ = [
    "EventLogger",
    "StructuredLogEvent",
    "LogLevel",
    "EventType",
    "Priority",
    "get_event_logger",
    "get_logger",
    "log_message",
    "log_calls",
]
