"""Tests for the completion client's retries and structured output."""

import pytest
from pydantic import BaseModel

from serialist.core.llm import STRICT_JSON_SUFFIX, is_transient
from serialist.core.logs import EventType, get_event_logger
from serialist.errors import ConfigurationError, ProviderError, StructuredOutputError
from tests.fakes import FakeLLM


class Verdict(BaseModel):
    score: int
    note: str = ""


class StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class TestIsTransient:
    """Tests for is_transient."""

    def test_timeouts_and_overload_are_transient(self):
        """Should retry timeouts, connection errors and 429/5xx responses."""
        assert is_transient(TimeoutError())
        assert is_transient(ConnectionError())
        assert is_transient(StatusError(429))
        assert is_transient(StatusError(503))

    def test_client_errors_are_not_transient(self):
        """Should not retry bad requests."""
        assert not is_transient(StatusError(400))
        assert not is_transient(ValueError("bad prompt"))


class TestComplete:
    """Tests for LLMClient.complete."""

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self):
        """Should retry once after a timeout and return the next answer."""
        llm = FakeLLM([TimeoutError("slow"), "The furnace woke."])
        completion = await llm.complete("Write.", model="writer")
        assert completion.content == "The furnace woke."
        assert len(llm.calls) == 2
        retries = get_event_logger().get_events(event_type=EventType.RETRY_ATTEMPT)
        assert len(retries) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_retry_budget(self):
        """Should raise ProviderError once every attempt failed transiently."""
        llm = FakeLLM([StatusError(503)] * 3, retry_attempts=2)
        with pytest.raises(ProviderError):
            await llm.complete("Write.", model="writer")
        assert len(llm.calls) == 3

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        """Should raise a non-transient error immediately."""
        llm = FakeLLM([ValueError("bad request")])
        with pytest.raises(ValueError):
            await llm.complete("Write.", model="writer")
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_endpoint_is_a_configuration_error(self):
        """Should refuse to call without an API base."""
        llm = FakeLLM(api_base="")
        with pytest.raises(ConfigurationError):
            await llm.complete("Write.", model="writer")
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_reports_truncation(self):
        """Should flag a response cut off by the token limit."""
        llm = FakeLLM([("The furnace", "length")])
        completion = await llm.complete("Write.", model="writer", system="You write.")
        assert completion.truncated
        assert llm.calls[0]["messages"][0] == {"role": "system", "content": "You write."}


class TestCompleteStructured:
    """Tests for LLMClient.complete_structured."""

    @pytest.mark.asyncio
    async def test_repairs_fenced_json(self):
        """Should parse JSON wrapped in a code fence."""
        llm = FakeLLM(['```json\n{"score": 7, "note": "tight",}\n```'])
        verdict = await llm.complete_structured("Judge.", Verdict, model="critic")
        assert verdict == Verdict(score=7, note="tight")
        assert llm.calls[0]["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_reprompts_strictly_after_bad_output(self):
        """Should retry with the JSON-only suffix when the first answer is prose."""
        llm = FakeLLM(["It is quite good.", {"score": 6}])
        verdict = await llm.complete_structured("Judge.", Verdict, model="critic")
        assert verdict.score == 6
        assert llm.prompts[1] == "Judge." + STRICT_JSON_SUFFIX

    @pytest.mark.asyncio
    async def test_raises_after_exhausting_retries(self):
        """Should raise StructuredOutputError carrying the last raw answer."""
        llm = FakeLLM(["no", "still no"])
        with pytest.raises(StructuredOutputError) as info:
            await llm.complete_structured("Judge.", Verdict, model="critic", max_retries=1)
        assert info.value.raw == "still no"
