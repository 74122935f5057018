# Hey future me - this is THE retry policy for every outbound call!
#
# Last.fm, Deezer, LRCLIB and plain image downloads all go through
# RetryPolicy.execute(). Providers never loop or sleep themselves - they
# make ONE attempt and return a tagged outcome:
#
#   Success(value)        -> done (value may be None = "provider doesn't know it")
#   RetryableFailure(...) -> sleep (delay_override or base_delay) * attempt, retry
#   PermanentFailure(...) -> give up NOW, zero delays
#
# The backoff is LINEAR in the attempt number: with base 2s we wait 2s after
# attempt 1 and 4s after attempt 2. A rate-limited provider can pass its
# Retry-After as delay_override.
#
# Running out of attempts returns None, NOT an exception. Enrichment is best
# effort - the caller marks the entity as checked and the cooldown decides
# when we try again. Cancellation (asyncio.CancelledError) is never retried
# and always propagates.
"""Retry policy for outbound provider calls."""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import httpx

from soulscan.domain.value_objects.outcomes import (
    AttemptOutcome,
    PermanentFailure,
    RetryableFailure,
    Success,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2.0
DEFAULT_RATE_LIMIT_DELAY = 5.0

# Gateway/server hiccups that usually fix themselves
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({500, 502, 503, 504})
RATE_LIMIT_STATUS = 429

_TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,  # ConnectError, ReadError, WriteError, CloseError
    httpx.RemoteProtocolError,
    socket.gaierror,  # DNS
    ConnectionError,
    TimeoutError,
)


class RetryState(str, Enum):
    """States of one execute() call, used in logs."""

    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    BACKOFF = "backoff"
    PERMANENTLY_FAILED = "permanently_failed"
    EXHAUSTED = "exhausted"


# =============================================================================
# Classification helpers (used by the provider clients)
# =============================================================================


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds (HTTP-dates are ignored)."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def outcome_from_status(
    status_code: int,
    *,
    retry_after: str | None = None,
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
) -> RetryableFailure | PermanentFailure:
    """Classify a non-success HTTP status.

    Args:
        status_code: HTTP status of the failed response
        retry_after: Raw Retry-After header, if any
        rate_limit_delay: Backoff multiplier for 429 without Retry-After

    Returns:
        RetryableFailure for 429 and RETRYABLE_STATUS_CODES, else PermanentFailure
    """
    if status_code == RATE_LIMIT_STATUS:
        delay = parse_retry_after(retry_after)
        return RetryableFailure(
            reason="rate limited",
            status_code=status_code,
            delay_override=delay if delay is not None else rate_limit_delay,
        )
    if status_code in RETRYABLE_STATUS_CODES:
        return RetryableFailure(reason=f"HTTP {status_code}", status_code=status_code)
    return PermanentFailure(reason=f"HTTP {status_code}", status_code=status_code)


def outcome_from_exception(exc: BaseException) -> RetryableFailure | PermanentFailure:
    """Classify an exception raised by an attempt.

    Connection, timeout and DNS failures are transient. Anything else (bad
    JSON, programming errors) is permanent - retrying won't change it.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        return outcome_from_status(
            exc.response.status_code,
            retry_after=exc.response.headers.get("Retry-After"),
        )
    if isinstance(exc, _TRANSIENT_EXCEPTIONS):
        return RetryableFailure(reason=f"{exc.__class__.__name__}: {exc}")
    return PermanentFailure(reason=f"{exc.__class__.__name__}: {exc}")


# =============================================================================
# Policy
# =============================================================================


@dataclass
class RetryStats:
    """Counters across every execute() call of one policy."""

    calls: int = 0
    attempts: int = 0
    retries: int = 0
    successes: int = 0
    permanent_failures: int = 0
    exhausted: int = 0

    def as_dict(self) -> dict[str, Any]:
        """Get counters as a dictionary (for health/status endpoints)."""
        return {
            "calls": self.calls,
            "attempts": self.attempts,
            "retries": self.retries,
            "successes": self.successes,
            "permanent_failures": self.permanent_failures,
            "exhausted": self.exhausted,
        }


class RetryPolicy:
    """Linear-backoff retry around one-attempt operations."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize policy.

        Args:
            max_attempts: Total attempts including the first one
            base_delay: Backoff multiplier in seconds
            sleep: Awaitable sleep (tests inject a mock to record delays)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self.stats = RetryStats()

    async def execute(
        self,
        operation: Callable[[], Awaitable[AttemptOutcome[T]]],
        *,
        name: str = "operation",
    ) -> T | None:
        """Run operation until success, permanent failure or attempts run out.

        Args:
            operation: Zero-arg coroutine factory making ONE attempt
            name: Label for logs ("lastfm artist.getinfo 'Air'")

        Returns:
            The success value, or None if it failed permanently or ran out
            of attempts

        Raises:
            asyncio.CancelledError: Never swallowed, never retried
        """
        self.stats.calls += 1
        for attempt in range(1, self.max_attempts + 1):
            self.stats.attempts += 1
            try:
                outcome = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                outcome = outcome_from_exception(e)

            if isinstance(outcome, Success):
                self.stats.successes += 1
                if attempt > 1:
                    logger.info(f"{name}: {RetryState.SUCCEEDED.value} on attempt {attempt}")
                return outcome.value

            if isinstance(outcome, PermanentFailure):
                self.stats.permanent_failures += 1
                logger.debug(f"{name}: {RetryState.PERMANENTLY_FAILED.value} ({outcome.reason})")
                return None

            if attempt >= self.max_attempts:
                break

            multiplier = (
                outcome.delay_override
                if outcome.delay_override is not None
                else self.base_delay
            )
            delay = multiplier * attempt
            self.stats.retries += 1
            logger.warning(
                f"{name}: attempt {attempt}/{self.max_attempts} failed ({outcome.reason}), "
                f"{RetryState.BACKOFF.value} {delay:.1f}s"
            )
            await self._sleep(delay)

        self.stats.exhausted += 1
        logger.warning(f"{name}: {RetryState.EXHAUSTED.value} after {self.max_attempts} attempts")
        return None
