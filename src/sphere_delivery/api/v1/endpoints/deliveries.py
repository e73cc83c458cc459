# src/sphere_delivery/api/v1/endpoints/deliveries.py
"""Delivery scheduling and reporting endpoints."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, Request, Response, status

from sphere_delivery.db.time import ensure_utc, utcnow
from sphere_delivery.models import ActivityPubDelivery
from sphere_delivery.schemas.delivery import (
    ActivityDeliveryRequest,
    DeliveryResponse,
    DeliveryStatsResponse,
)
from sphere_delivery.services.delivery_store import DeliveryStats
from sphere_delivery.services.errors import DeliveryNotFoundError

from ..dependencies import DeliveryServiceDep, DeliveryStoreDep

router = APIRouter(prefix="/deliveries", tags=["deliveries"])

DEFAULT_STATS_WINDOW = timedelta(hours=24)


def _wake_coordinator(request: Request) -> None:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is not None:
        coordinator.notify()


@router.post("/",
          response_model=list[DeliveryResponse],
          status_code=status.HTTP_202_ACCEPTED)
async def enqueue_delivery(
    payload: ActivityDeliveryRequest,
    request: Request,
    service: DeliveryServiceDep,
) -> list[ActivityPubDelivery]:
    """Schedule an activity for delivery to every listed inbox.

    The response lists one record per distinct inbox. Records that already
    existed for the same activity and inbox are returned unchanged.
    """
    # Key generation for a new actor is CPU bound; keep it off the event loop.
    records = await asyncio.to_thread(
        service.enqueue_activity,
        payload.activity,
        payload.actor_uri,
        payload.inbox_uris,
        activity_type=payload.activity_type,
        activity_id=payload.activity_id,
    )
    if not records:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No usable inbox URIs"
        )
    _wake_coordinator(request)
    return records


@router.get("/stats", response_model=DeliveryStatsResponse)
async def get_delivery_stats(
    service: DeliveryServiceDep,
    start: datetime | None = None,
    end: datetime | None = None,
) -> DeliveryStats:
    """Count deliveries created inside a window (default: the last 24 hours)."""
    end = ensure_utc(end) if end else utcnow()
    start = ensure_utc(start) if start else end - DEFAULT_STATS_WINDOW
    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start must not be after end"
        )
    return service.get_delivery_stats(start, end)


@router.get("/activity/{activity_id:path}", response_model=list[DeliveryResponse])
async def list_activity_deliveries(
    activity_id: str,
    service: DeliveryServiceDep,
) -> list[ActivityPubDelivery]:
    """List the deliveries of one activity."""
    return service.get_deliveries_by_activity(activity_id)


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(delivery_id: str, store: DeliveryStoreDep) -> ActivityPubDelivery:
    """Get a delivery record by ID."""
    try:
        record = store.get(delivery_id)
    except DeliveryNotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery not found"
        ) from err
    if record.deleted_at is not None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery not found"
        )
    return record


@router.delete("/{delivery_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_delivery(delivery_id: str, store: DeliveryStoreDep) -> Response:
    """Soft delete a delivery so workers and reports ignore it."""
    try:
        store.soft_delete(delivery_id)
    except DeliveryNotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery not found"
        ) from err
    return Response(status_code=status.HTTP_204_NO_CONTENT)
