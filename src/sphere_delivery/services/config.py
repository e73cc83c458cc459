"""Delivery engine configuration."""

from __future__ import annotations

from dataclasses import dataclass

from sphere_delivery.core.settings import settings


@dataclass(frozen=True)
class DeliveryConfig:
    """Immutable configuration for the delivery engine.

    Components take this object explicitly so tests can pass their own
    values instead of patching global settings.
    """

    max_attempts: int = 10
    base_delay_seconds: float = 30.0
    cap_delay_seconds: float = 6 * 60 * 60
    jitter_fraction: float = 0.2
    batch_size: int = 100
    claim_lease_timeout_seconds: float = 300.0
    request_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 5.0
    recovery_interval_seconds: float = 60.0
    worker_count: int = 4
    store_write_attempts: int = 5
    store_write_backoff_seconds: float = 0.5
    user_agent: str = "SphereDelivery/0.1"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if self.cap_delay_seconds < self.base_delay_seconds:
            raise ValueError("cap_delay_seconds must not be below base_delay_seconds")
        if not 0 <= self.jitter_fraction < 1:
            raise ValueError("jitter_fraction must be within [0, 1)")
        if self.batch_size < 1 or self.worker_count < 1:
            raise ValueError("batch_size and worker_count must be at least 1")
        if self.request_timeout_seconds <= 0 or self.claim_lease_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if self.store_write_attempts < 1:
            raise ValueError("store_write_attempts must be at least 1")


def load_delivery_config() -> DeliveryConfig:
    """Build configuration object from global settings."""

    return DeliveryConfig(
        max_attempts=settings.delivery_max_attempts,
        base_delay_seconds=settings.delivery_base_delay_seconds,
        cap_delay_seconds=settings.delivery_cap_delay_seconds,
        jitter_fraction=settings.delivery_jitter_fraction,
        batch_size=settings.delivery_batch_size,
        claim_lease_timeout_seconds=settings.delivery_claim_lease_timeout_seconds,
        request_timeout_seconds=settings.delivery_request_timeout_seconds,
        poll_interval_seconds=settings.delivery_poll_interval_seconds,
        recovery_interval_seconds=settings.delivery_recovery_interval_seconds,
        worker_count=settings.delivery_worker_count,
        store_write_attempts=settings.delivery_store_write_attempts,
        store_write_backoff_seconds=settings.delivery_store_write_backoff_seconds,
        user_agent=settings.delivery_user_agent,
    )
