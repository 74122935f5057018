"""Tagged outcome of a single attempt at an outbound call.

Hey future me - providers NEVER raise for "expected" HTTP trouble. One
attempt returns exactly one of these and the RetryPolicy branches on the
type. That keeps "not found" (Success(None)), "try again later"
(RetryableFailure) and "don't bother" (PermanentFailure) explicit at every
call site instead of hiding them in except blocks.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """The call worked. value may be None for a conclusive "not found"."""

    value: T


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    """Transient failure (network blip, 5xx, rate limit).

    delay_override replaces the policy's base delay as the backoff
    multiplier, e.g. a provider's Retry-After seconds.
    """

    reason: str = ""
    status_code: int | None = None
    delay_override: float | None = None


@dataclass(frozen=True, slots=True)
class PermanentFailure:
    """Failure that retrying cannot fix (404, 401, malformed request)."""

    reason: str = ""
    status_code: int | None = None


AttemptOutcome = Success[T] | RetryableFailure | PermanentFailure
