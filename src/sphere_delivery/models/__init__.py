# src/sphere_delivery/models/__init__.py
"""SQLAlchemy models for the delivery engine."""

from .activity import ActivityDocument
from .delivery import ActivityPubDelivery, DeliveryStatus
from .key import ActivityPubKey

__all__ = [
    "ActivityDocument",
    "ActivityPubDelivery", "DeliveryStatus",
    "ActivityPubKey",
]
