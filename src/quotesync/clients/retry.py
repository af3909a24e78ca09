"""Retry policy shared by the outbound API clients.

One policy object parameterised by attempt count, backoff calculator and a
retryable-error predicate, executed through tenacity's ``AsyncRetrying`` so
neither client carries its own sleep/retry loop. The sleep callable is
injectable so tests can record waits instead of sleeping.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from src.quotesync.clients.errors import RateLimitError, TransportError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_RATE_LIMIT_WAIT_SECONDS = 30.0


class wait_retry_after(wait_base):
    """Wait for the ``retry_after`` carried by the last RateLimitError.

    Falls back to ``default`` when the failing exception carries no usable
    value.
    """

    def __init__(self, default: float = DEFAULT_RATE_LIMIT_WAIT_SECONDS) -> None:
        self.default = default

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        retry_after = getattr(exc, "retry_after", None)
        if isinstance(retry_after, (int, float)) and retry_after >= 0:
            return float(retry_after)
        return self.default


@dataclass
class RetryPolicy:
    """Retry parameters for one remote system.

    Args:
        name: System name, used in log events.
        max_attempts: Total attempts including the first call.
        wait: tenacity wait strategy computing the backoff per attempt.
        retry_on: Exception types considered retryable.
        sleep: Awaitable sleep used between attempts.
    """

    name: str
    max_attempts: int
    wait: Any
    retry_on: tuple[type[BaseException], ...]
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "retry.backoff",
            system=self.name,
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            delay_seconds=delay,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    def retrying(self) -> AsyncRetrying:
        """Build a fresh tenacity controller for one logical operation."""
        return AsyncRetrying(
            sleep=self.sleep,
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=self._before_sleep,
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` under this policy, re-raising the final failure as-is."""
        return await self.retrying()(fn, *args, **kwargs)


def monday_retry_policy(
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryPolicy:
    """Rate-limit policy for monday.com: wait the advertised time, retry once."""
    return RetryPolicy(
        name="monday",
        max_attempts=2,
        wait=wait_retry_after(),
        retry_on=(RateLimitError,),
        sleep=sleep,
    )


def simpro_retry_policy(
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryPolicy:
    """Transport policy for simPRO: 3 attempts, exponential backoff 1-10s."""
    return RetryPolicy(
        name="simpro",
        max_attempts=3,
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry_on=(TransportError,),
        sleep=sleep,
    )
