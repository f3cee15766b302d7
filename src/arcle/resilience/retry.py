"""
Retry strategies using Tenacity.

Only transient failures are retried: connection problems, timeouts, rate
limits and provider 5xx responses. Authorization errors are never retried
here; the credential manager owns that path.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from arcle.core.exceptions import NetworkError
from arcle.core.logging import get_logger

T = TypeVar("T")

_logger = get_logger("retry")

DEFAULT_ATTEMPTS = 5
DEFAULT_WAIT_MIN = 1.0
DEFAULT_WAIT_MAX = 16.0


def is_transient_error(exception: BaseException) -> bool:
    """Check if an exception is a transient network or infrastructure error."""
    if isinstance(exception, NetworkError):
        if exception.status_code is None:
            return True
        return exception.is_rate_limited() or exception.is_server_error()
    return isinstance(exception, (httpx.TransportError, TimeoutError))


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    _logger.warning(f"Retrying after transient error (attempt {retry_state.attempt_number}): {exc}")


def retrying(
    attempts: int = DEFAULT_ATTEMPTS,
    wait_min: float = DEFAULT_WAIT_MIN,
    wait_max: float = DEFAULT_WAIT_MAX,
) -> AsyncRetrying:
    """Build the standard async retry controller (1s, 2s, 4s, 8s, 16s by default)."""
    return AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        wait=wait_exponential(multiplier=wait_min, min=wait_min, max=wait_max),
        stop=stop_after_attempt(attempts),
        reraise=True,
        before_sleep=_log_retry,
    )


async def execute_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: AsyncRetrying | None = None,
    **kwargs: Any,
) -> T:
    """Execute an async function under ``policy`` (the standard one by default)."""
    async for attempt in policy or retrying():
        with attempt:
            return await func(*args, **kwargs)
    raise AssertionError("unreachable")  # pragma: no cover
