# src/serialist/config/config.py
"""Configuration system for Serialist."""

from __future__ import annotations

import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator


class _EnvSection(BaseModel):
    """Section whose fields are populated from environment variable aliases."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DatabaseConfig(_EnvSection):
    """Database configuration settings."""

    postgres_user: str = Field(default="serialist", validation_alias="POSTGRES_USER")
    postgres_password: str = Field(
        default="serialist_password", validation_alias="POSTGRES_PASSWORD"
    )
    postgres_db: str = Field(default="serialist", validation_alias="POSTGRES_DB")
    postgres_host: str = Field(default="localhost", validation_alias="POSTGRES_HOST")
    postgres_port: str = Field(default="5432", validation_alias="POSTGRES_PORT")

    @property
    def postgres_url(self) -> str:
        """Generate PostgreSQL connection URL with psycopg driver."""
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}@"
            f"{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


class LLMConfig(_EnvSection):
    """LLM provider configuration."""

    api_base: str = Field(default="http://localhost:8080/v1", validation_alias="OPENAI_API_BASE")
    api_key: str = Field(default="sk-1234", validation_alias="OPENAI_API_KEY")
    temperature: float = Field(default=0.75, validation_alias="TEMPERATURE")
    max_tokens: int = Field(default=32768, validation_alias="LLM_MAX_TOKENS")
    timeout: float = Field(default=120.0, validation_alias="LLM_TIMEOUT")

    @field_validator("temperature")
    @classmethod
    def _clamp_temperature(cls, value: float) -> float:
        return min(2.0, max(0.0, value))


class RetryConfig(_EnvSection):
    """Retry configuration for transient provider failures."""

    retry_attempts: int = Field(default=3, validation_alias="RETRY_ATTEMPTS")
    retry_backoff: float = Field(default=2.0, validation_alias="RETRY_BACKOFF")
    retry_increment: float = Field(default=3.0, validation_alias="RETRY_INCREMENT")
    retry_max_interval: float = Field(default=30.0, validation_alias="RETRY_MAX_INTERVAL")


class EmbeddingConfig(_EnvSection):
    """Embedding model configuration."""

    model: str = Field(default="ollama/nomic-embed-text:latest", validation_alias="EMBEDDING_MODEL")
    api_base: str = Field(default="", validation_alias="EMBEDDING_API_BASE")
    api_key: str = Field(default="", validation_alias="EMBEDDING_API_KEY")
    dim: int = Field(default=768, validation_alias="EMBEDDING_DIM")
    batch_size: int = Field(default=100, validation_alias="EMBEDDING_BATCH_SIZE")
    max_chars: int = Field(default=8000, validation_alias="EMBEDDING_MAX_CHARS")


class AgentModelConfig(_EnvSection):
    """Agent model configuration."""

    architect: str = Field(default="openai/qwen3-a3b", validation_alias="ARCHITECT_MODEL")
    writer: str = Field(default="openai/qwen3-a3b", validation_alias="WRITER_MODEL")
    critic: str = Field(default="openai/qwen3-a3b", validation_alias="CRITIC_MODEL")
    analyst: str = Field(default="openai/qwen3-a3b", validation_alias="ANALYST_MODEL")


class EngineConfig(_EnvSection):
    """Chapter engine tuning."""

    target_word_count: int = Field(default=2800, validation_alias="TARGET_WORD_COUNT")
    max_chapter_retries: int = Field(default=3, validation_alias="MAX_CHAPTER_RETRIES")
    min_quality_score: float = Field(default=6.0, validation_alias="MIN_QUALITY_SCORE")
    arc_size: int = Field(default=20, validation_alias="ARC_SIZE")
    context_char_budget: int = Field(default=60000, validation_alias="CONTEXT_CHAR_BUDGET")
    recent_chapters: int = Field(default=3, validation_alias="RECENT_CHAPTERS")


class ConcurrencyConfig(_EnvSection):
    """Concurrency configuration."""

    batch_workers: int = Field(default=3, validation_alias="BATCH_WORKERS")


class SystemConfig(_EnvSection):
    """System configuration settings."""

    log_level: str = Field(default="INFO", validation_alias="SERIALIST_LOG_LEVEL")
    log_format: str = Field(default="", validation_alias="SERIALIST_LOG_FORMAT")


class SerialistConfig(BaseModel):
    """Main configuration class."""

    model_config = ConfigDict(extra="ignore")

    database: DatabaseConfig = DatabaseConfig()
    llm: LLMConfig = LLMConfig()
    retry: RetryConfig = RetryConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    agents: AgentModelConfig = AgentModelConfig()
    engine: EngineConfig = EngineConfig()
    concurrency: ConcurrencyConfig = ConcurrencyConfig()
    system: SystemConfig = SystemConfig()

    @classmethod
    def load(cls, environ: dict[str, Any] | None = None) -> SerialistConfig:
        """Load configuration from environment variables."""
        env = dict(os.environ if environ is None else environ)
        sections = {
            name: field.annotation.model_validate(env)  # type: ignore[union-attr]
            for name, field in cls.model_fields.items()
        }
        return cls(**sections)


# Global configuration instance; a local .env is read before the environment snapshot
load_dotenv()
config = SerialistConfig.load()
