from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from editguard.api.deps.stores import get_change_feed
from editguard.db.base import Base
from editguard.db.session import get_session_factory
from editguard.main import app as fastapi_app
from editguard.services.change_feed import ChangeFeed
from editguard.services.presence_store import PresenceStore
from editguard.services.resource_store import ResourceStore

# Ensure all models are registered with SQLAlchemy metadata
import editguard.models  # noqa: F401


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 10, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def session_factory(engine):
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def presence_store(session_factory, feed):
    return PresenceStore(session_factory, feed)


@pytest.fixture
def resource_store(session_factory):
    return ResourceStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def purchase_order(resource_store):
    return resource_store.create(
        "purchase_orders",
        {"po_number": "PO-1001", "supplier_name": "Acme Flour", "status": "draft"},
    )


@pytest.fixture(scope="function")
def client(session_factory):
    feed = ChangeFeed()
    fastapi_app.dependency_overrides[get_session_factory] = lambda: session_factory
    fastapi_app.dependency_overrides[get_change_feed] = lambda: feed
    with TestClient(fastapi_app) as test_client:
        yield test_client
    fastapi_app.dependency_overrides.clear()
