"""Version 1 API endpoints."""

from .endpoints import deliveries_router, system_router

__all__ = [
    "deliveries_router",
    "system_router",
]
