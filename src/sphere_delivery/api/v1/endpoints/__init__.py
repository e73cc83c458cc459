# src/sphere_delivery/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .deliveries import router as deliveries_router
from .system import router as system_router

__all__ = [
    "deliveries_router",
    "system_router",
]
