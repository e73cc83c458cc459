# src/sphere_delivery/schemas/delivery.py
"""Delivery-related Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sphere_delivery.models import DeliveryStatus


class ActivityDeliveryRequest(BaseModel):
    """Schema for scheduling one activity to a set of inboxes."""

    activity: dict[str, Any] = Field(..., description="ActivityStreams document to deliver")
    actor_uri: str = Field(..., min_length=1, description="Local actor that signs the requests")
    inbox_uris: list[str] = Field(..., min_length=1, description="Destination inbox URLs")
    activity_type: str | None = Field(None, description="Overrides the document's type")
    activity_id: str | None = Field(None, description="Overrides the document's id")


class DeliveryResponse(BaseModel):
    """Schema for a delivery record returned by the API."""

    id: str
    activity_id: str
    activity_type: str
    inbox_uri: str
    actor_uri: str
    status: DeliveryStatus
    retry_count: int
    last_attempt_at: datetime | None
    next_retry_at: datetime | None
    sent_at: datetime | None
    error_message: str | None
    response_status_code: str | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryStatsResponse(BaseModel):
    """Schema for delivery counts over a time window."""

    start: datetime
    end: datetime
    total: int
    sent: int
    failed: int
    pending: int

    model_config = ConfigDict(from_attributes=True)
