# src/serialist/agents/base.py
"""Base class for Serialist agents."""

from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel

from serialist.core.llm import Completion, LLMClient
from serialist.core.logs import log_calls, log_message
from serialist.errors import ConfigurationError

T = TypeVar("T", bound=BaseModel)


class Agent:
    """Base class for the pipeline agents, providing common LLM utilities."""

    system_prompt: str = ""

    def __init__(self, llm: LLMClient, *, model: str | None = None, default_model: str = "") -> None:
        """Initialize the agent with a client and a model.

        Parameters
        ----------
        llm:
            Shared completion client.
        model:
            The LLM model name; falls back to ``default_model``.
        default_model:
            The configured model for this agent role.

        Raises
        ------
        ConfigurationError
            If neither ``model`` nor ``default_model`` is set.
        """
        self.llm = llm
        self.model = model or default_model
        if not self.model:
            raise ConfigurationError(f"No model configured for {type(self).__name__}")

    @log_calls
    async def call_llm(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        """Call the configured LLM with the agent's system prompt."""
        try:
            return await self.llm.complete(
                prompt,
                model=self.model,
                system=self.system_prompt or None,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=json_mode,
            )
        except Exception as exc:
            await self.log_message(f"LLM error: {exc}")
            raise

    @log_calls
    async def call_llm_structured(
        self,
        prompt: str,
        response_model: type[T],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_retries: int = 2,
    ) -> T:
        """Call the LLM with structured output validation and error logging."""
        try:
            return await self.llm.complete_structured(
                prompt,
                response_model,
                model=self.model,
                system=self.system_prompt or None,
                temperature=temperature,
                max_tokens=max_tokens,
                max_retries=max_retries,
            )
        except Exception as exc:
            await self.log_message(f"LLM error: {exc}")
            raise

    async def log_message(self, message: str) -> None:
        """Log a message with the agent's name."""
        log_message(f"{self.__class__.__name__}: {message}")


__all__ = ["Agent"]
