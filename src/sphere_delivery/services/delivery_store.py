"""Durable access to delivery records.

The table is the only shared mutable state between delivery workers, which
may live in different processes. Every state change is a single conditional
UPDATE so that concurrent workers coordinate through the database rather
than through in-process locks.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from sphere_delivery.db.time import utcnow
from sphere_delivery.models import ActivityPubDelivery, DeliveryStatus
from sphere_delivery.services.errors import DeliveryNotFoundError, LeaseLostError
from sphere_delivery.services.retry_policy import DeliveryTransition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryClaim:
    """Exclusive, time-bounded right to attempt one delivery."""

    record_id: str
    lease_token: str
    retry_count: int
    claimed_at: datetime


@dataclass(frozen=True)
class DeliveryStats:
    """Delivery counts for records created inside a time window."""

    start: datetime
    end: datetime
    total: int = 0
    sent: int = 0
    failed: int = 0
    pending: int = 0


class DeliveryStore:
    """CRUD and state transitions over ``ActivityPubDelivery`` rows."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def create(
        self,
        *,
        activity_id: str,
        activity_type: str,
        inbox_uri: str,
        actor_uri: str,
        now: datetime | None = None,
    ) -> ActivityPubDelivery:
        """Create a pending delivery for one (activity, inbox) pair.

        Creating a pair that already exists returns the existing record.
        """
        now = now or utcnow()
        record = ActivityPubDelivery(
            activity_id=activity_id,
            activity_type=activity_type,
            inbox_uri=inbox_uri,
            actor_uri=actor_uri,
            status=DeliveryStatus.PENDING,
            retry_count=0,
            next_retry_at=now,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as db:
            db.add(record)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = db.scalar(
                    select(ActivityPubDelivery).where(
                        ActivityPubDelivery.activity_id == activity_id,
                        ActivityPubDelivery.inbox_uri == inbox_uri,
                    )
                )
                if existing is None:
                    raise
                return existing
            db.refresh(record)

        logger.debug(
            "Created delivery %s of type %s to %s", record.id, activity_type, inbox_uri
        )
        return record

    def get(self, record_id: str) -> ActivityPubDelivery:
        """Return a record by id.

        Raises:
            DeliveryNotFoundError: If no such record exists.
        """
        with self._session_factory() as db:
            record = db.get(ActivityPubDelivery, record_id)
            if record is None:
                raise DeliveryNotFoundError(record_id)
            return record

    def fetch_due(self, now: datetime, limit: int) -> list[ActivityPubDelivery]:
        """Return up to ``limit`` pending records whose retry time has come."""
        stmt = (
            select(ActivityPubDelivery)
            .where(
                ActivityPubDelivery.status == DeliveryStatus.PENDING,
                ActivityPubDelivery.deleted_at.is_(None),
                or_(
                    ActivityPubDelivery.next_retry_at.is_(None),
                    ActivityPubDelivery.next_retry_at <= now,
                ),
            )
            .order_by(
                ActivityPubDelivery.next_retry_at.asc().nulls_first(),
                ActivityPubDelivery.created_at.asc(),
            )
            .limit(limit)
        )
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def claim(self, record_id: str, now: datetime) -> DeliveryClaim | None:
        """Atomically move a due record from pending to sending.

        Returns:
            The claim, or None if another worker won the race or the record
            is no longer due.
        """
        token = secrets.token_hex(16)
        stmt = (
            update(ActivityPubDelivery)
            .where(
                ActivityPubDelivery.id == record_id,
                ActivityPubDelivery.status == DeliveryStatus.PENDING,
                ActivityPubDelivery.deleted_at.is_(None),
                or_(
                    ActivityPubDelivery.next_retry_at.is_(None),
                    ActivityPubDelivery.next_retry_at <= now,
                ),
            )
            .values(
                status=DeliveryStatus.SENDING,
                lease_token=token,
                claimed_at=now,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self._session_factory() as db:
            result = db.execute(stmt)
            if result.rowcount != 1:
                db.rollback()
                return None
            retry_count = db.scalar(
                select(ActivityPubDelivery.retry_count).where(ActivityPubDelivery.id == record_id)
            )
            db.commit()
        return DeliveryClaim(
            record_id=record_id,
            lease_token=token,
            retry_count=int(retry_count or 0),
            claimed_at=now,
        )

    def apply_transition(
        self,
        record_id: str,
        lease_token: str,
        transition: DeliveryTransition,
        now: datetime | None = None,
    ) -> None:
        """Persist the outcome of an attempt made under ``lease_token``.

        Raises:
            DeliveryNotFoundError: If the record was deleted meanwhile.
            LeaseLostError: If the record is no longer held by this claim.
        """
        values: dict[str, Any] = {
            "status": transition.status,
            "retry_count": transition.retry_count,
            "last_attempt_at": transition.last_attempt_at,
            "next_retry_at": transition.next_retry_at,
            "sent_at": transition.sent_at,
            "error_message": transition.error_message,
            "lease_token": None,
            "claimed_at": None,
            "updated_at": now or utcnow(),
        }
        if transition.response_status_code is not None:
            values["response_status_code"] = transition.response_status_code

        stmt = (
            update(ActivityPubDelivery)
            .where(
                ActivityPubDelivery.id == record_id,
                ActivityPubDelivery.status == DeliveryStatus.SENDING,
                ActivityPubDelivery.lease_token == lease_token,
                ActivityPubDelivery.retry_count == transition.retry_count - 1,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session_factory() as db:
            result = db.execute(stmt)
            if result.rowcount == 1:
                db.commit()
                return
            db.rollback()
            if db.get(ActivityPubDelivery, record_id) is None:
                raise DeliveryNotFoundError(record_id)
            raise LeaseLostError(record_id)

    def release_stale_claims(self, older_than: datetime, now: datetime) -> int:
        """Return records stuck in sending since before ``older_than`` to pending.

        ``retry_count`` is left unchanged: the interrupted attempt never
        reported an outcome.

        Returns:
            Number of records released.
        """
        stmt = (
            update(ActivityPubDelivery)
            .where(
                ActivityPubDelivery.status == DeliveryStatus.SENDING,
                or_(
                    ActivityPubDelivery.claimed_at.is_(None),
                    ActivityPubDelivery.claimed_at < older_than,
                ),
            )
            .values(
                status=DeliveryStatus.PENDING,
                lease_token=None,
                claimed_at=None,
                next_retry_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self._session_factory() as db:
            result = db.execute(stmt)
            released = result.rowcount or 0
            if released:
                db.commit()
            else:
                db.rollback()
        return released

    def soft_delete(self, record_id: str, now: datetime | None = None) -> None:
        """Hide a record from operational views while keeping it for audit."""
        now = now or utcnow()
        with self._session_factory() as db:
            record = db.get(ActivityPubDelivery, record_id)
            if record is None:
                raise DeliveryNotFoundError(record_id)
            if record.deleted_at is None:
                record.deleted_at = now
                record.updated_at = now
                db.commit()

    def list_by_activity(self, activity_id: str) -> list[ActivityPubDelivery]:
        """Return every visible delivery of one activity, oldest first."""
        stmt = (
            select(ActivityPubDelivery)
            .where(
                ActivityPubDelivery.activity_id == activity_id,
                ActivityPubDelivery.deleted_at.is_(None),
            )
            .order_by(ActivityPubDelivery.created_at.asc(), ActivityPubDelivery.inbox_uri.asc())
        )
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def stats(self, start: datetime, end: datetime) -> DeliveryStats:
        """Count deliveries created in ``[start, end]`` by coarse status."""
        stmt = (
            select(ActivityPubDelivery.status, func.count())
            .where(
                ActivityPubDelivery.created_at >= start,
                ActivityPubDelivery.created_at <= end,
                ActivityPubDelivery.deleted_at.is_(None),
            )
            .group_by(ActivityPubDelivery.status)
        )
        with self._session_factory() as db:
            counts: dict[DeliveryStatus, int] = {
                DeliveryStatus(status): count for status, count in db.execute(stmt)
            }

        return DeliveryStats(
            start=start,
            end=end,
            total=sum(counts.values()),
            sent=counts.get(DeliveryStatus.SENT, 0),
            failed=counts.get(DeliveryStatus.FAILED, 0)
            + counts.get(DeliveryStatus.DEAD_LETTERED, 0),
            pending=counts.get(DeliveryStatus.PENDING, 0)
            + counts.get(DeliveryStatus.SENDING, 0),
        )
