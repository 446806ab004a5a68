"""Fixed-delay retry helper for flaky listing calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import AuthError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and fixed pause between attempts."""

    max_attempts: int = 3
    delay_seconds: float = 1.0


def is_retryable(error: BaseException) -> bool:
    """Auth failures are handled by the request client, never retried here."""

    if isinstance(error, AuthError):
        return False
    return not isinstance(error, (asyncio.CancelledError, KeyboardInterrupt, SystemExit))


async def call_with_retry(
    invoke: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] | None = None,
    on_failure: Callable[[int, int, BaseException], None] | None = None,
) -> T:
    """Run ``invoke`` up to ``policy.max_attempts`` times."""

    decider = should_retry or is_retryable
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await invoke()
        except Exception as error:
            if on_failure is not None:
                on_failure(attempt, attempts, error)
            if attempt >= attempts or not decider(error):
                raise
            if policy.delay_seconds > 0:
                await asyncio.sleep(policy.delay_seconds)
    raise RuntimeError("retry loop exited without a result")  # pragma: no cover


__all__ = ["RetryPolicy", "call_with_retry", "is_retryable"]
