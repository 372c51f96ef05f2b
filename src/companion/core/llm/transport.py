"""Bounded retry around a chat-completion provider.

Failures are sorted into three classes:

- retryable: connection errors, timeouts, HTTP 429 and 5xx
- auth: 401/403 and litellm's authentication errors, raised as ``AuthError``
- fatal: bad requests and content-policy rejections, raised at once

Every non-success exit raises a ``TerminalError`` subclass so callers handle
exactly one exception type per failed request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

import litellm
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
    wait_random,
)
from tenacity.wait import wait_base

from companion.config.schema import RetryConfig
from companion.errors import AuthError, TerminalError, TransportError

if TYPE_CHECKING:
    from companion.core.llm.provider import CompletionResult, LLMProvider, Message

_log = logging.getLogger("companion.core.llm.transport")


class FailureClass(Enum):
    RETRYABLE = "retryable"
    AUTH = "auth"
    FATAL = "fatal"


_AUTH_ERRORS: tuple[type[BaseException], ...] = (
    litellm.AuthenticationError,
    litellm.PermissionDeniedError,
)

# ContentPolicyViolationError subclasses BadRequestError
_FATAL_ERRORS: tuple[type[BaseException], ...] = (litellm.BadRequestError,)

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    TransportError,
    litellm.RateLimitError,
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.InternalServerError,
    litellm.ServiceUnavailableError,
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
)


def _status_code(exc: BaseException) -> int | None:
    code = getattr(exc, "status_code", None)
    return code if isinstance(code, int) else None


def classify_failure(exc: BaseException) -> FailureClass:
    """Decide whether a provider failure is worth another attempt."""
    status = _status_code(exc)
    if isinstance(exc, _AUTH_ERRORS) or status in (401, 403):
        return FailureClass.AUTH
    if isinstance(exc, _FATAL_ERRORS):
        return FailureClass.FATAL
    if isinstance(exc, _RETRYABLE_ERRORS):
        return FailureClass.RETRYABLE
    if status is not None and (status == 429 or status >= 500):
        return FailureClass.RETRYABLE
    return FailureClass.FATAL


def _is_retryable(exc: BaseException) -> bool:
    return classify_failure(exc) is FailureClass.RETRYABLE


class RetryingTransport:
    """Wraps ``LLMProvider.complete`` with exponential-backoff retry.

    Usage:
        transport = RetryingTransport(provider, RetryConfig(max_attempts=4))
        result = await transport.execute(messages)

    ``sleep`` is injectable so tests can record delays instead of waiting.
    """

    def __init__(
        self,
        provider: LLMProvider,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_tokens: int = 4096,
    ) -> None:
        self._provider = provider
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._max_tokens = max_tokens
        if self._config.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    def delay_for(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (0-based), without jitter.

        Past the end of the configured list the last delay keeps doubling.
        """
        delays = self._config.delays or [1.0]
        if retry_index < len(delays):
            return float(delays[retry_index])
        return float(delays[-1] * 2 ** (retry_index - len(delays) + 1))

    def _wait(self) -> wait_base:
        fixed = [wait_fixed(self.delay_for(i)) for i in range(self._config.max_attempts - 1)]
        wait: wait_base = wait_chain(*fixed) if fixed else wait_none()
        if self._config.jitter > 0:
            wait = wait + wait_random(0, self._config.jitter)
        return wait

    def _log_retry(self, retry_state: RetryCallState) -> None:
        _log.warning(
            "Model request failed (attempt %d/%d): %s; retrying in %.1fs",
            retry_state.attempt_number,
            self._config.max_attempts,
            retry_state.outcome.exception() if retry_state.outcome else None,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )

    async def execute(
        self,
        messages: list[Message],
        *,
        max_tokens: int | None = None,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        """Send ``messages`` and return the completion, retrying transient failures.

        Raises:
            AuthError: Credentials were rejected
            TerminalError: A non-retryable failure, or all attempts used
        """
        retrying = self._retrying()
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._provider.complete(
                        messages,
                        max_tokens=max_tokens or self._max_tokens,
                        stop=stop,
                    )
        except RetryError as e:
            attempts = e.last_attempt.attempt_number
            last_error = e.last_attempt.exception()
            raise TerminalError(
                f"Model request failed after {attempts} attempts: {last_error}",
                last_error=last_error,
                attempts=attempts,
            ) from last_error
        except asyncio.CancelledError:
            raise
        except Exception as e:
            attempt_number = retrying.statistics.get("attempt_number", 1)
            if classify_failure(e) is FailureClass.AUTH:
                raise AuthError(
                    f"Authentication failed: {e}", last_error=e, attempts=attempt_number
                ) from e
            raise TerminalError(
                f"Request rejected: {e}", last_error=e, attempts=attempt_number
            ) from e
        return result
