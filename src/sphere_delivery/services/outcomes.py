"""Result types for a single delivery attempt.

Outcomes are ordinary values rather than exceptions: remote inboxes fail
often and every failure mode has a defined place in the delivery state
machine.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Success:
    """The remote inbox accepted the activity with a 2xx status."""

    status_code: int


@dataclass(frozen=True)
class RetryableFailure:
    """Transient failure: network error, timeout, 429 or 5xx."""

    reason: str
    status_code: int | None = None


@dataclass(frozen=True)
class TerminalFailure:
    """Failure that will never succeed on retry (4xx, bad destination, bad key)."""

    reason: str
    status_code: int | None = None


AttemptOutcome = Success | RetryableFailure | TerminalFailure
