"""SQLAlchemy model for actor signing keys."""

from datetime import datetime

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from sphere_delivery.db.session import Base
from sphere_delivery.db.time import UTCDateTime, utcnow


class ActivityPubKey(Base):
    """RSA keypair owned by one local publisher actor.

    The private half never leaves the key store; the public half is
    advertised on the actor document by the publishing surface.
    """

    __tablename__ = "activitypub_key"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_uri: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    private_key_pem: Mapped[str] = mapped_column(Text, nullable=False)
    public_key_pem: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
