"""Tests for RetryingTransport and failure classification."""

from __future__ import annotations

import asyncio

import litellm
import pytest

from companion.config.schema import RetryConfig
from companion.core.llm.provider import CompletionResult, Message, Role
from companion.core.llm.transport import FailureClass, RetryingTransport, classify_failure
from companion.errors import AuthError, TerminalError, TransportError
from tests.utils import FakeProvider, RecordingSleep

MESSAGES = [Message(Role.USER, "hi")]


def _auth_error() -> litellm.AuthenticationError:
    return litellm.AuthenticationError(message="bad key", llm_provider="mistral", model="m")


def _bad_request() -> litellm.BadRequestError:
    return litellm.BadRequestError(message="nope", model="m", llm_provider="mistral")


def _rate_limit() -> litellm.RateLimitError:
    return litellm.RateLimitError(message="slow down", llm_provider="mistral", model="m")


class TestClassifyFailure:
    def test_transport_error_is_retryable(self) -> None:
        assert classify_failure(TransportError("reset")) is FailureClass.RETRYABLE

    def test_connection_and_timeout_are_retryable(self) -> None:
        assert classify_failure(ConnectionResetError()) is FailureClass.RETRYABLE
        assert classify_failure(asyncio.TimeoutError()) is FailureClass.RETRYABLE

    def test_rate_limit_is_retryable(self) -> None:
        assert classify_failure(_rate_limit()) is FailureClass.RETRYABLE

    def test_status_codes(self) -> None:
        assert classify_failure(TransportError("x", status_code=401)) is FailureClass.AUTH
        assert classify_failure(TransportError("x", status_code=403)) is FailureClass.AUTH

        class StatusError(Exception):
            def __init__(self, status_code: int) -> None:
                self.status_code = status_code

        assert classify_failure(StatusError(429)) is FailureClass.RETRYABLE
        assert classify_failure(StatusError(503)) is FailureClass.RETRYABLE
        assert classify_failure(StatusError(422)) is FailureClass.FATAL

    def test_litellm_auth_and_bad_request(self) -> None:
        assert classify_failure(_auth_error()) is FailureClass.AUTH
        assert classify_failure(_bad_request()) is FailureClass.FATAL

    def test_unknown_error_is_fatal(self) -> None:
        assert classify_failure(ValueError("bug")) is FailureClass.FATAL


class TestDelays:
    def test_configured_delays_then_doubling(self) -> None:
        transport = RetryingTransport(FakeProvider(), RetryConfig(max_attempts=6, delays=[1, 2, 4]))
        assert [transport.delay_for(i) for i in range(5)] == [1, 2, 4, 8, 16]

    @pytest.mark.asyncio
    async def test_doubling_applies_to_sleeps(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider([TransportError(str(i)) for i in range(4)] + ["ok"])
        transport = RetryingTransport(
            provider, RetryConfig(max_attempts=5, delays=[1, 2]), sleep=sleep
        )

        await transport.execute(MESSAGES)

        assert sleep.delays == [1, 2, 4, 8]

    @pytest.mark.asyncio
    async def test_jitter_adds_bounded_noise(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider([TransportError(str(i)) for i in range(10)] + ["ok"])
        transport = RetryingTransport(
            provider, RetryConfig(max_attempts=11, delays=[1.0] * 10, jitter=0.5), sleep=sleep
        )

        await transport.execute(MESSAGES)

        assert len(sleep.delays) == 10
        assert all(1.0 <= delay <= 1.5 for delay in sleep.delays)

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryingTransport(FakeProvider(), RetryConfig(max_attempts=0))


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider(["hello"])
        transport = RetryingTransport(provider, sleep=sleep)

        result = await transport.execute(MESSAGES)

        assert result.content == "hello"
        assert sleep.delays == []
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider([TransportError("a"), TransportError("b"), "ok"])
        transport = RetryingTransport(
            provider, RetryConfig(max_attempts=4, delays=[1, 2, 4]), sleep=sleep
        )

        result = await transport.execute(MESSAGES)

        assert result.content == "ok"
        assert sleep.delays == [1, 2]
        assert len(provider.requests) == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider([TransportError(str(i)) for i in range(4)])
        transport = RetryingTransport(
            provider, RetryConfig(max_attempts=4, delays=[1, 2, 4]), sleep=sleep
        )

        with pytest.raises(TerminalError) as exc_info:
            await transport.execute(MESSAGES)

        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.last_error, TransportError)
        assert sleep.delays == [1, 2, 4]
        assert len(provider.requests) == 4

    @pytest.mark.asyncio
    async def test_auth_error_is_not_retried(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider([TransportError("unauthorized", status_code=401), "never"])
        transport = RetryingTransport(provider, sleep=sleep)

        with pytest.raises(AuthError) as exc_info:
            await transport.execute(MESSAGES)

        assert exc_info.value.attempts == 1
        assert sleep.delays == []
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_auth_error_after_retry_counts_attempts(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider([TransportError("reset"), _auth_error(), "never"])
        transport = RetryingTransport(provider, sleep=sleep)

        with pytest.raises(AuthError) as exc_info:
            await transport.execute(MESSAGES)

        assert exc_info.value.attempts == 2
        assert sleep.delays == [1]
        assert len(provider.requests) == 2

    @pytest.mark.asyncio
    async def test_single_attempt_is_not_retried(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider([TransportError("reset"), "never"])
        transport = RetryingTransport(provider, RetryConfig(max_attempts=1), sleep=sleep)

        with pytest.raises(TerminalError, match="after 1 attempts"):
            await transport.execute(MESSAGES)

        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_are_logged(self, caplog) -> None:
        provider = FakeProvider([TransportError("reset"), "ok"])
        transport = RetryingTransport(provider, sleep=RecordingSleep())

        with caplog.at_level("WARNING", logger="companion.core.llm.transport"):
            await transport.execute(MESSAGES)

        assert "attempt 1/4" in caplog.text
        assert "retrying in 1.0s" in caplog.text

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self) -> None:
        sleep = RecordingSleep()
        provider = FakeProvider([_bad_request(), "never"])
        transport = RetryingTransport(provider, sleep=sleep)

        with pytest.raises(TerminalError) as exc_info:
            await transport.execute(MESSAGES)

        assert not isinstance(exc_info.value, AuthError)
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        provider = FakeProvider([asyncio.CancelledError()])
        transport = RetryingTransport(provider, sleep=RecordingSleep())

        with pytest.raises(asyncio.CancelledError):
            await transport.execute(MESSAGES)

    @pytest.mark.asyncio
    async def test_max_tokens_default_and_override(self) -> None:
        provider = FakeProvider(["a", "b"])
        transport = RetryingTransport(provider, sleep=RecordingSleep(), max_tokens=2048)

        await transport.execute(MESSAGES)
        await transport.execute(MESSAGES, max_tokens=100)

        assert provider.max_tokens == [2048, 100]


class TestCompletionResult:
    def test_truncated_on_length(self) -> None:
        assert CompletionResult("partial", finish_reason="length").truncated
        assert not CompletionResult("done", finish_reason="stop").truncated
