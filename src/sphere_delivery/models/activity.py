"""SQLAlchemy model for outbound activity documents."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sphere_delivery.db.session import Base
from sphere_delivery.db.time import UTCDateTime, utcnow


class ActivityDocument(Base):
    """Opaque activity payload, looked up by ``activity_id`` at dispatch time.

    One document fans out to many delivery records, so the payload is kept
    once here instead of being copied onto every row.
    """

    __tablename__ = "activitypub_activity"

    activity_id: Mapped[str] = mapped_column(Text, primary_key=True)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_uri: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
