"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from sphere_delivery.db.session import SessionLocal, get_db
from sphere_delivery.services.activity_store import ActivityStore
from sphere_delivery.services.delivery_service import DeliveryService
from sphere_delivery.services.delivery_store import DeliveryStore
from sphere_delivery.services.keys import KeyStore

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_session_factory() -> sessionmaker[Session]:
    """Return the session factory the delivery stores open sessions from."""
    return SessionLocal


SessionFactoryDep = Annotated[sessionmaker[Session], Depends(get_session_factory)]


def get_delivery_store(session_factory: SessionFactoryDep) -> DeliveryStore:
    return DeliveryStore(session_factory)


def get_delivery_service(session_factory: SessionFactoryDep) -> DeliveryService:
    """Build the producer-facing delivery service for one request."""
    return DeliveryService(
        deliveries=DeliveryStore(session_factory),
        activities=ActivityStore(session_factory),
        keys=KeyStore(session_factory),
    )


DeliveryStoreDep = Annotated[DeliveryStore, Depends(get_delivery_store)]
DeliveryServiceDep = Annotated[DeliveryService, Depends(get_delivery_service)]
