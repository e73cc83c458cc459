"""SQLAlchemy model for outbound ActivityPub deliveries."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sphere_delivery.db.session import Base
from sphere_delivery.db.time import UTCDateTime, utcnow


class DeliveryStatus(str, Enum):
    """Lifecycle states of a delivery record.

    ``SENT`` and ``DEAD_LETTERED`` are terminal. ``FAILED`` is kept in the
    vocabulary for reporting; re-armed records return to ``PENDING``.
    """

    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


def _new_delivery_id() -> str:
    return str(uuid.uuid4())


class ActivityPubDelivery(Base):
    """One delivery lineage for a single (activity, destination inbox) pair."""

    __tablename__ = "activitypub_delivery"
    __table_args__ = (
        UniqueConstraint("activity_id", "inbox_uri", name="uq_activitypub_delivery_activity_inbox"),
        Index("ix_activitypub_delivery_status_next_retry", "status", "next_retry_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_delivery_id)
    activity_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. 'Create'
    inbox_uri: Mapped[str] = mapped_column(Text, nullable=False)
    actor_uri: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[DeliveryStatus] = mapped_column(
        SAEnum(
            DeliveryStatus,
            name="delivery_status",
            native_enum=False,
            length=20,
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_status_code: Mapped[str | None] = mapped_column(String(8), nullable=True)

    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Claim bookkeeping: the token must match on write-back so a worker whose
    # lease was recovered cannot overwrite a newer attempt.
    lease_token: Mapped[str | None] = mapped_column(String(32), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"ActivityPubDelivery(id={self.id!r}, activity_id={self.activity_id!r}, "
            f"inbox_uri={self.inbox_uri!r}, status={self.status!r}, retry_count={self.retry_count})"
        )
