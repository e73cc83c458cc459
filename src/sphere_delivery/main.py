# src/sphere_delivery/main.py
"""Main entry point for the delivery engine API."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sphere_delivery.api.v1 import deliveries_router, system_router
from sphere_delivery.core.settings import settings
from sphere_delivery.services.coordinator import DeliveryCoordinator, build_coordinator

# Initialize FastAPI app
app = FastAPI(
    title="Sphere Delivery API",
    description="Outbound ActivityPub delivery engine",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(deliveries_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.delivery_worker_enabled:
        coordinator = build_coordinator()
        await coordinator.start()
        app.state.coordinator = coordinator
    else:
        app.state.coordinator = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    coordinator: DeliveryCoordinator | None = getattr(app.state, "coordinator", None)
    if coordinator:
        await coordinator.stop()
        await coordinator.dispatcher.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Outbound ActivityPub delivery engine",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("sphere_delivery.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
