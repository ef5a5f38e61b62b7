# src/serialist/core/llm.py
"""Lightweight wrapper around LiteLLM for async LLM calls with structured output support."""

from __future__ import annotations

import asyncio
import time
from typing import Any, TypeVar

from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from serialist.config import config
from serialist.core.json_repair import parse_model
from serialist.core.logs import EventType, get_event_logger
from serialist.errors import ConfigurationError, ProviderError, StructuredOutputError

event_logger = get_event_logger()

T = TypeVar("T", bound=BaseModel)

TRUNCATION_REASONS = frozenset({"length", "max_tokens", "MAX_TOKENS"})

STRICT_JSON_SUFFIX = (
    "\n\nYour previous answer was not valid JSON for the requested shape. "
    "Return ONLY one JSON object. No markdown, code fences, or prose."
)

_TRANSIENT_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class Completion(BaseModel):
    """Result of a single completion call."""

    content: str = ""
    finish_reason: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason in TRUNCATION_REASONS


def is_transient(exc: BaseException) -> bool:
    """Return True for provider failures worth retrying (timeouts, 429, 503...)."""
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and status in _TRANSIENT_STATUS:
        return True

    import litellm

    transient = (
        litellm.RateLimitError,
        litellm.ServiceUnavailableError,
        litellm.Timeout,
        litellm.APIConnectionError,
        litellm.InternalServerError,
    )
    return isinstance(exc, transient)


def _field(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    value = getattr(obj, key, None)
    if value is None:
        try:
            value = obj[key]
        except (KeyError, TypeError, IndexError):
            return None
    return value


def _to_completion(response: Any) -> Completion:
    choice = _field(response, "choices")[0]
    message = _field(choice, "message")
    usage = _field(response, "usage")
    return Completion(
        content=_field(message, "content") or "",
        finish_reason=_field(choice, "finish_reason"),
        prompt_tokens=_field(usage, "prompt_tokens"),
        completion_tokens=_field(usage, "completion_tokens"),
    )


class LLMClient:
    """Completion client with timeout, bounded linear-backoff retries and JSON repair.

    Parameters
    ----------
    api_base, api_key:
        Provider endpoint and credentials; default to the global configuration.
    timeout:
        Per-call timeout in seconds.
    retry_attempts:
        Number of retries after the first call for transient failures.
    retry_backoff, retry_increment, retry_max_interval:
        Linear backoff: first wait, per-retry increase and ceiling, in seconds.
    """

    def __init__(
        self,
        *,
        api_base: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_backoff: float | None = None,
        retry_increment: float | None = None,
        retry_max_interval: float | None = None,
    ) -> None:
        self.api_base = config.llm.api_base if api_base is None else api_base
        self.api_key = config.llm.api_key if api_key is None else api_key
        self.timeout = config.llm.timeout if timeout is None else timeout
        self.retry_attempts = (
            config.retry.retry_attempts if retry_attempts is None else retry_attempts
        )
        self.retry_backoff = (
            config.retry.retry_backoff if retry_backoff is None else retry_backoff
        )
        self.retry_increment = (
            config.retry.retry_increment if retry_increment is None else retry_increment
        )
        self.retry_max_interval = (
            config.retry.retry_max_interval
            if retry_max_interval is None
            else retry_max_interval
        )

    async def _acompletion(self, **kwargs: Any) -> Any:
        import litellm

        return await litellm.acompletion(**kwargs)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        event_logger.log_retry_attempt(
            "llm completion",
            retry_state.attempt_number,
            self.retry_attempts + 1,
            f"{type(exc).__name__}: {exc}",
            component="llm",
        )

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        """Call the configured LLM and return the generated text.

        Parameters
        ----------
        prompt:
            User prompt passed directly to the model.
        model:
            Name of the model to query.
        system:
            Optional system instruction.
        temperature:
            Sampling temperature; the global default when ``None``.
        max_tokens:
            Output token budget; the global default when ``None``.
        json_mode:
            Ask the provider for a JSON object response.

        Returns
        -------
        Completion
            Text, finish reason and token usage.

        Raises
        ------
        ConfigurationError
            If the API base or key is missing.
        ProviderError
            If transient failures persist past the retry budget.
        """
        if not self.api_base or not self.api_key:
            raise ConfigurationError("OPENAI_API_BASE and OPENAI_API_KEY must be set")

        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "api_base": self.api_base,
            "api_key": self.api_key,
            "temperature": config.llm.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or config.llm.max_tokens,
            "timeout": self.timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        start_time = time.time()
        event_logger.debug(
            f"Starting LLM call to {model}",
            event_type=EventType.LLM_REQUEST,
            component="llm",
            prompt_length=len(prompt),
            json_mode=json_mode,
        )
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts + 1),
                wait=wait_incrementing(
                    start=self.retry_backoff,
                    increment=self.retry_increment,
                    max=self.retry_max_interval,
                ),
                retry=retry_if_exception(is_transient),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    response = await asyncio.wait_for(
                        self._acompletion(**kwargs), timeout=self.timeout
                    )
        except Exception as exc:
            if is_transient(exc):
                event_logger.error(
                    f"LLM call to {model} failed after {self.retry_attempts + 1} attempts: {exc}",
                    component="llm",
                )
                raise ProviderError(f"{model}: {exc}") from exc
            raise

        completion = _to_completion(response)
        event_logger.debug(
            f"Received response from {model}",
            event_type=EventType.LLM_REQUEST,
            component="llm",
            duration=time.time() - start_time,
            response_length=len(completion.content),
            finish_reason=completion.finish_reason,
        )
        if completion.truncated:
            event_logger.warning(
                f"Output from {model} truncated (finish_reason={completion.finish_reason})",
                component="llm",
            )
        return completion

    async def complete_structured(
        self,
        prompt: str,
        response_model: type[T],
        *,
        model: str,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_retries: int = 2,
    ) -> T:
        """Call the LLM and repair its output into ``response_model``.

        Re-prompts with a stricter JSON-only suffix when the response cannot be
        recovered, up to ``max_retries`` extra attempts.

        Raises
        ------
        StructuredOutputError
            If no attempt produced a usable record.
        """
        current = prompt
        last_raw = ""
        for attempt in range(max_retries + 1):
            completion = await self.complete(
                current,
                model=model,
                system=system,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=True,
            )
            last_raw = completion.content
            parsed = parse_model(completion.content, response_model)
            if parsed is not None:
                return parsed
            event_logger.warning(
                f"Unparsable {response_model.__name__} from {model} "
                f"(attempt {attempt + 1}/{max_retries + 1})",
                component="llm",
            )
            current = prompt + STRICT_JSON_SUFFIX
        raise StructuredOutputError(
            f"{response_model.__name__}: no valid JSON after {max_retries + 1} attempts",
            raw=last_raw,
        )


__all__ = [
    "Completion",
    "LLMClient",
    "STRICT_JSON_SUFFIX",
    "TRUNCATION_REASONS",
    "is_transient",
]
