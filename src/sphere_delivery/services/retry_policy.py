"""Retry scheduling and state resolution for delivery attempts.

Backoff is exponential with a cap and symmetric jitter::

    delay = min(base * 2 ** (retry_count - 1), cap) * (1 + U(-jitter, +jitter))

Jitter spreads retries aimed at the same remote host.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sphere_delivery.models import DeliveryStatus
from sphere_delivery.services.config import DeliveryConfig
from sphere_delivery.services.outcomes import (
    AttemptOutcome,
    RetryableFailure,
    Success,
    TerminalFailure,
)

# 2 ** 63 seconds is far past any sane cap; stop doubling there.
_MAX_EXPONENT = 63


@dataclass(frozen=True)
class DeliveryTransition:
    """Resolved state to write back after an attempt.

    ``response_status_code`` of ``None`` leaves the stored value untouched so
    the last observed remote status survives a timeout.
    """

    status: DeliveryStatus
    retry_count: int
    last_attempt_at: datetime
    next_retry_at: datetime | None = None
    sent_at: datetime | None = None
    error_message: str | None = None
    response_status_code: str | None = None


@dataclass
class RetryPolicy:
    """Decides between re-arming and dead-lettering, and when to retry."""

    max_attempts: int
    base_delay_seconds: float
    cap_delay_seconds: float
    jitter_fraction: float
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    @classmethod
    def from_config(cls, config: DeliveryConfig, rng: random.Random | None = None) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_delay_seconds=config.base_delay_seconds,
            cap_delay_seconds=config.cap_delay_seconds,
            jitter_fraction=config.jitter_fraction,
            rng=rng or random.Random(),
        )

    def base_delay(self, retry_count: int) -> float:
        """Return the un-jittered delay in seconds after ``retry_count`` attempts."""
        exponent = min(max(0, retry_count - 1), _MAX_EXPONENT)
        return min(self.base_delay_seconds * (2**exponent), self.cap_delay_seconds)

    def compute_delay(self, retry_count: int) -> timedelta:
        """Return the jittered delay before the next attempt."""
        delay = self.base_delay(retry_count)
        if self.jitter_fraction:
            delay *= 1 + self.rng.uniform(-self.jitter_fraction, self.jitter_fraction)
        return timedelta(seconds=delay)

    def next_retry_at(self, retry_count: int, last_attempt_at: datetime) -> datetime:
        return last_attempt_at + self.compute_delay(retry_count)

    def resolve(
        self,
        retry_count: int,
        outcome: AttemptOutcome,
        attempted_at: datetime,
    ) -> DeliveryTransition:
        """Map an attempt outcome onto the next record state.

        Args:
            retry_count: Attempts recorded before this one.
            outcome: Result of the attempt that just finished.
            attempted_at: When the attempt was made.

        Returns:
            The transition to persist; ``retry_count`` is always one higher.
        """
        attempts = retry_count + 1

        if isinstance(outcome, Success):
            return DeliveryTransition(
                status=DeliveryStatus.SENT,
                retry_count=attempts,
                last_attempt_at=attempted_at,
                sent_at=attempted_at,
                response_status_code=str(outcome.status_code),
            )

        status_code = str(outcome.status_code) if outcome.status_code is not None else None

        if isinstance(outcome, RetryableFailure) and attempts < self.max_attempts:
            return DeliveryTransition(
                status=DeliveryStatus.PENDING,
                retry_count=attempts,
                last_attempt_at=attempted_at,
                next_retry_at=self.next_retry_at(attempts, attempted_at),
                error_message=outcome.reason,
                response_status_code=status_code,
            )

        if isinstance(outcome, RetryableFailure):
            reason = f"Exhausted {attempts} attempts: {outcome.reason}"
        elif isinstance(outcome, TerminalFailure):
            reason = outcome.reason
        else:  # pragma: no cover - exhaustive over AttemptOutcome
            raise TypeError(f"Unknown attempt outcome: {outcome!r}")

        return DeliveryTransition(
            status=DeliveryStatus.DEAD_LETTERED,
            retry_count=attempts,
            last_attempt_at=attempted_at,
            error_message=reason,
            response_status_code=status_code,
        )
