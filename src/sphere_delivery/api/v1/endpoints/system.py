"""System endpoints for the delivery engine."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from sphere_delivery.core.settings import settings
from sphere_delivery.services.config import load_delivery_config

from ..dependencies import SessionDep

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of runtime configuration.

    Excludes connection strings and key material.
    """
    config = load_delivery_config()
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "delivery": {
            "worker_enabled": settings.delivery_worker_enabled,
            "max_attempts": config.max_attempts,
            "base_delay_seconds": config.base_delay_seconds,
            "cap_delay_seconds": config.cap_delay_seconds,
            "jitter_fraction": config.jitter_fraction,
            "batch_size": config.batch_size,
            "worker_count": config.worker_count,
            "claim_lease_timeout_seconds": config.claim_lease_timeout_seconds,
            "request_timeout_seconds": config.request_timeout_seconds,
            "poll_interval_seconds": config.poll_interval_seconds,
            "user_agent": config.user_agent,
        },
    }


@router.get("/health")
async def get_system_health(request: Request, db: SessionDep) -> dict[str, object]:
    """Health check covering the database and the delivery worker.

    Returns:
        Dictionary with overall status, component health and version info
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {e}"

    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        worker_status = "disabled"
    elif coordinator.running:
        worker_status = "running"
    else:
        worker_status = "stopped"

    return {
        "status": "healthy" if db_status == "healthy" else "unhealthy",
        "timestamp": int(time.time()),
        "components": {
            "database": db_status,
            "worker": worker_status,
        },
        "durability_alarms": coordinator.durability_alarms if coordinator else 0,
        "version": settings.app_version,
    }
