# src/serialist/config/__init__.py
"""Configuration package."""

from .config import (
    AgentModelConfig,
    ConcurrencyConfig,
    DatabaseConfig,
    EmbeddingConfig,
    EngineConfig,
    LLMConfig,
    RetryConfig,
    SerialistConfig,
    SystemConfig,
    config,
)

__all__ = [
    "AgentModelConfig",
    "ConcurrencyConfig",
    "DatabaseConfig",
    "EmbeddingConfig",
    "EngineConfig",
    "LLMConfig",
    "RetryConfig",
    "SerialistConfig",
    "SystemConfig",
    "config",
]
