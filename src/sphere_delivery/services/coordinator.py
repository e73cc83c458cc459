"""Background delivery loop.

This module provides the DeliveryCoordinator class, the control loop of the
delivery engine. Each pass it:

- Fetches due records from the store, bounded by the batch size
- Claims each one exclusively, skipping records another worker holds
- Dispatches claimed records through a bounded worker pool
- Resolves the outcome through the retry policy and writes it back

Several coordinators may run at once, in one process or many; they only
coordinate through conditional updates on the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from sphere_delivery.db.time import utcnow
from sphere_delivery.models import ActivityPubDelivery, DeliveryStatus
from sphere_delivery.services.activity_store import ActivityStore
from sphere_delivery.services.config import DeliveryConfig, load_delivery_config
from sphere_delivery.services.delivery_store import DeliveryClaim, DeliveryStore
from sphere_delivery.services.dispatcher import DeliveryDispatcher
from sphere_delivery.services.errors import (
    ActivityNotFoundError,
    DeliveryNotFoundError,
    DeliveryPersistenceError,
    KeyNotFoundError,
    LeaseLostError,
)
from sphere_delivery.services.keys import KeyStore
from sphere_delivery.services.outcomes import AttemptOutcome, TerminalFailure
from sphere_delivery.services.retry_policy import DeliveryTransition, RetryPolicy

# Configure logger for this module
logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class DeliveryCoordinator:
    """Polls for due deliveries, dispatches them and records the results."""

    def __init__(
        self,
        store: DeliveryStore,
        dispatcher: DeliveryDispatcher,
        keys: KeyStore,
        activities: ActivityStore,
        config: DeliveryConfig | None = None,
        *,
        policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Delivery record store shared with other workers.
            dispatcher: Performs the network attempts.
            keys: Source of actor signing keys.
            activities: Source of activity payloads.
            config: Engine configuration; defaults to values from settings.
            policy: Retry policy; built from ``config`` when omitted.
            clock: Returns the current aware UTC time.
            sleep: Awaitable used for write-back backoff.
        """
        self.store = store
        self.dispatcher = dispatcher
        self.keys = keys
        self.activities = activities
        self.config = config or load_delivery_config()
        self.policy = policy or RetryPolicy.from_config(self.config)
        self._clock = clock
        self._sleep = sleep
        self.durability_alarms = 0
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._last_recovery: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background delivery loop."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the loop, letting in-flight attempts finish."""

        if self._task is None:
            return

        self._stopping.set()
        self._wakeup.set()
        await self._task
        self._task = None

    def notify(self) -> None:
        """Wake the loop early because new records were enqueued."""
        self._wakeup.set()

    async def _run(self) -> None:
        interval = max(0.05, float(self.config.poll_interval_seconds))

        while not self._stopping.is_set():
            processed = 0
            try:
                if self._recovery_due():
                    await self.recover()
                processed = await self.run_once()
            except SQLAlchemyError as e:
                logger.warning("DeliveryCoordinator could not reach the store: %s", e)
                await self._wait(min(interval * 4, 30.0))
                continue
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error(
                    "DeliveryCoordinator encountered data processing error: %s", e, exc_info=True
                )
                await self._wait(min(interval * 4, 30.0))
                continue

            # A full batch probably means more work is already due.
            if processed >= self.config.batch_size:
                continue
            await self._wait(interval)

    async def _wait(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except TimeoutError:
            pass
        finally:
            self._wakeup.clear()

    def _recovery_due(self) -> bool:
        if self._last_recovery is None:
            return True
        elapsed = self._clock() - self._last_recovery
        return elapsed >= timedelta(seconds=self.config.recovery_interval_seconds)

    async def recover(self) -> int:
        """Release claims whose lease expired, e.g. after a worker crashed.

        Returns:
            Number of records returned to pending.
        """
        now = self._clock()
        self._last_recovery = now
        cutoff = now - timedelta(seconds=self.config.claim_lease_timeout_seconds)
        released = self.store.release_stale_claims(cutoff, now)
        if released:
            logger.warning("Released %d stale delivery claim(s) older than %s", released, cutoff)
        return released

    async def run_once(self) -> int:
        """Run a single polling pass.

        Returns:
            Number of records that were claimed and attempted.
        """
        due = self.store.fetch_due(self._clock(), self.config.batch_size)
        if not due:
            return 0

        logger.debug("Found %d due deliveries", len(due))
        semaphore = asyncio.Semaphore(self.config.worker_count)
        results = await asyncio.gather(*(self._process(record, semaphore) for record in due))
        return sum(results)

    async def _process(self, record: ActivityPubDelivery, semaphore: asyncio.Semaphore) -> int:
        async with semaphore:
            if self._stopping.is_set():
                return 0

            try:
                claim = self.store.claim(record.id, self._clock())
            except SQLAlchemyError as e:
                logger.warning("Could not claim delivery %s: %s", record.id, e)
                return 0
            if claim is None:
                logger.debug("Delivery %s was claimed elsewhere; skipping", record.id)
                return 0

            try:
                outcome = await self._attempt(record)
            except SQLAlchemyError as e:
                # The claim stays in place and the recovery pass re-arms it.
                logger.error(
                    "Could not load delivery inputs for %s: %s", record.id, e, exc_info=True
                )
                return 0
            except Exception as e:
                logger.exception("Unexpected error while attempting delivery %s", record.id)
                outcome = TerminalFailure(reason=f"Unexpected dispatch error: {e!r}")

            transition = self.policy.resolve(claim.retry_count, outcome, self._clock())
            self._log_transition(record, transition)

            try:
                await self._persist(claim, transition)
            except DeliveryPersistenceError as e:
                self.durability_alarms += 1
                logger.critical("Durability alarm: %s", e, exc_info=True)
            return 1

    async def _attempt(self, record: ActivityPubDelivery) -> AttemptOutcome:
        try:
            key_pair = self.keys.get_key_pair(record.actor_uri)
        except KeyNotFoundError as e:
            return TerminalFailure(reason=str(e))
        try:
            payload = self.activities.get_payload(record.activity_id)
        except ActivityNotFoundError as e:
            return TerminalFailure(reason=str(e))
        return await self.dispatcher.attempt(record, payload, key_pair)

    async def _persist(self, claim: DeliveryClaim, transition: DeliveryTransition) -> None:
        """Write the resolved state, retrying the write (never the delivery).

        Raises:
            DeliveryPersistenceError: When the store stays unavailable for the
                whole write budget.
        """
        attempts = self.config.store_write_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                self.store.apply_transition(
                    claim.record_id, claim.lease_token, transition, now=self._clock()
                )
                return
            except (DeliveryNotFoundError, LeaseLostError) as e:
                logger.warning("Discarding outcome of delivery %s: %s", claim.record_id, e)
                return
            except SQLAlchemyError as e:
                last_error = e
                if attempt == attempts:
                    break
                delay = self.config.store_write_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Failed to persist delivery %s (write %d/%d), retrying in %.2fs: %s",
                    claim.record_id,
                    attempt,
                    attempts,
                    delay,
                    e,
                )
                await self._sleep(delay)

        raise DeliveryPersistenceError(
            f"Could not persist {transition.status.value} state of delivery "
            f"{claim.record_id} after {attempts} write attempts"
        ) from last_error

    @staticmethod
    def _log_transition(record: ActivityPubDelivery, transition: DeliveryTransition) -> None:
        if transition.status is DeliveryStatus.SENT:
            logger.info(
                "Delivered activity %s to %s", record.activity_id, record.inbox_uri
            )
        elif transition.status is DeliveryStatus.PENDING:
            logger.warning(
                "Failed to deliver activity %s to %s: %s. Retry %d at %s",
                record.activity_id,
                record.inbox_uri,
                transition.error_message,
                transition.retry_count,
                transition.next_retry_at,
            )
        else:
            logger.error(
                "Dead-lettered delivery of activity %s to %s: %s",
                record.activity_id,
                record.inbox_uri,
                transition.error_message,
            )


def build_coordinator(
    session_factory: sessionmaker[Session] | None = None,
    config: DeliveryConfig | None = None,
) -> DeliveryCoordinator:
    """Wire a coordinator with database-backed stores."""

    if session_factory is None:
        from sphere_delivery.db.session import SessionLocal

        session_factory = SessionLocal

    config = config or load_delivery_config()
    return DeliveryCoordinator(
        store=DeliveryStore(session_factory),
        dispatcher=DeliveryDispatcher(config),
        keys=KeyStore(session_factory),
        activities=ActivityStore(session_factory),
        config=config,
    )
