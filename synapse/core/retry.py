"""
Exponential backoff for outbound calls.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from synapse.core.exceptions import RequestTimeoutError, StorageError
from synapse.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
RetryPredicate = Callable[[BaseException], bool]

BACKOFF_MULTIPLIER = 2
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable(exc: BaseException) -> bool:
    """Network failures, throttling and 5xx responses are worth another attempt."""
    if isinstance(exc, (httpx.TransportError, RequestTimeoutError, StorageError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return False


def is_safe_to_resend(exc: BaseException) -> bool:
    """
    Retry predicate for requests that must not be repeated once delivered.

    Only failures that prove the server never acted on the request qualify:
    the connection was never established, or the server throttled it.
    """
    if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429
    return False


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay slept after the given (1-based) failed attempt."""
    return base_delay * (BACKOFF_MULTIPLIER ** (attempt - 1))


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Operation failed, retrying",
        attempt=retry_state.attempt_number,
        delay=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


async def retry_async(
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Optional[RetryPredicate] = None,
    **kwargs: Any,
) -> T:
    """
    Await an operation, retrying with exponential backoff.

    The wait after attempt n is base_delay * 2 ** (n - 1). The last error is
    re-raised once max_attempts is reached.

    Args:
        operation: Coroutine function to call
        max_attempts: Total attempts including the first one
        base_delay: Delay before the first retry in seconds
        retry_on: Predicate selecting retryable errors (defaults to is_retryable)

    Returns:
        The operation's result
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=lambda state: backoff_delay(state.attempt_number, base_delay),
        retry=retry_if_exception(retry_on or is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation(*args, **kwargs)
    raise RuntimeError("unreachable")  # pragma: no cover
