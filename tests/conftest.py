# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DELIVERY_WORKER_ENABLED", "false")

from sphere_delivery.api.v1.dependencies import get_session_factory
from sphere_delivery.db.session import Base
from sphere_delivery.db.session import get_db as app_get_session
from sphere_delivery.main import app as fastapi_app
from sphere_delivery.models import ActivityPubKey
from sphere_delivery.services.activity_store import ActivityStore
from sphere_delivery.services.config import DeliveryConfig
from sphere_delivery.services.delivery_store import DeliveryStore
from sphere_delivery.services.keys import KeyStore, SigningKeyPair, generate_key_pair

TEST_DB_URL = "sqlite://"

ACTOR_URI = "https://local.example/users/alice"
INBOX_URI = "https://remote.example/users/bob/inbox"
ACTIVITY_ID = "https://local.example/activities/1"

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic, manually advanced replacement for ``utcnow``."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def delivery_store(session_factory: sessionmaker[Session]) -> DeliveryStore:
    return DeliveryStore(session_factory)


@pytest.fixture()
def activity_store(session_factory: sessionmaker[Session]) -> ActivityStore:
    return ActivityStore(session_factory)


@pytest.fixture()
def key_store(session_factory: sessionmaker[Session]) -> KeyStore:
    return KeyStore(session_factory)


@pytest.fixture(scope="session")
def rsa_pem_pair() -> tuple[str, str]:
    """One RSA keypair shared by the whole run; generation is slow."""
    return generate_key_pair(2048)


@pytest.fixture()
def key_pair(rsa_pem_pair: tuple[str, str]) -> SigningKeyPair:
    private_pem, public_pem = rsa_pem_pair
    return SigningKeyPair(actor_uri=ACTOR_URI, private_key_pem=private_pem, public_key_pem=public_pem)


@pytest.fixture()
def stored_key(
    session_factory: sessionmaker[Session],
    key_pair: SigningKeyPair,
) -> SigningKeyPair:
    """Persist ``key_pair`` for ``ACTOR_URI``."""
    with session_factory() as db:
        db.add(
            ActivityPubKey(
                actor_uri=key_pair.actor_uri,
                private_key_pem=key_pair.private_key_pem,
                public_key_pem=key_pair.public_key_pem,
            )
        )
        db.commit()
    return key_pair


@pytest.fixture()
def activity() -> dict[str, object]:
    return {
        "@context": "https://www.w3.org/ns/activitystreams",
        "id": ACTIVITY_ID,
        "type": "Create",
        "actor": ACTOR_URI,
        "object": {"type": "Note", "content": "hello"},
    }


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def delivery_config() -> DeliveryConfig:
    return DeliveryConfig(
        max_attempts=3,
        base_delay_seconds=30.0,
        cap_delay_seconds=3600.0,
        jitter_fraction=0.2,
        batch_size=10,
        claim_lease_timeout_seconds=300.0,
        request_timeout_seconds=1.0,
        poll_interval_seconds=0.05,
        worker_count=2,
        store_write_attempts=3,
        store_write_backoff_seconds=0.01,
        user_agent="SphereDelivery/test",
    )


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(
    app: FastAPI,
    session_factory: sessionmaker[Session],
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        with session_factory() as session:
            yield session

    overrides: dict[Callable[..., object], Callable[..., object]] = {
        app_get_session: _get_session_override,
        get_session_factory: lambda: session_factory,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
