import enum
from dataclasses import dataclass
from typing import Optional


class DispatchOutcome(enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    # Another worker holds the lock for this event log
    LOCKED = "locked"
    # Event log is no longer deliverable (already sent or handled)
    SKIPPED = "skipped"
    # Event log does not exist or cannot be resolved; retrying cannot help
    DROPPED = "dropped"


@dataclass(frozen=True)
class DispatchResult:
    outcome: DispatchOutcome
    event_log_id: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class RetryDecision:
    requeue: bool
    countdown_seconds: float = 0.0


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    """Exponential backoff: base_delay_ms * 2^attempt."""
    return base_delay_ms * (2 ** max(attempt, 0))


def decide_retry(
    outcome: DispatchOutcome,
    attempt: int,
    max_attempts: int,
    base_delay_ms: int,
) -> RetryDecision:
    """
    Decide whether a dispatch attempt is requeued.

    Only FAILED outcomes are retried, and only while attempts remain. `attempt`
    is zero-based, so the first retry waits `base_delay_ms`, the second twice
    that, and so on.
    """
    if outcome != DispatchOutcome.FAILED:
        return RetryDecision(requeue=False)

    if attempt + 1 >= max_attempts:
        return RetryDecision(requeue=False)

    return RetryDecision(
        requeue=True,
        countdown_seconds=backoff_delay_ms(attempt, base_delay_ms) / 1000,
    )
