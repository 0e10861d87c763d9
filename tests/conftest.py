"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime, timedelta

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of shamba.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, so we register a custom type
# compiler that renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from shamba.config import CommunityConfig  # noqa: E402
from shamba.database.models import Base, Category, Tag  # noqa: E402
from shamba.services.aggregation_service import AggregationService  # noqa: E402
from shamba.services.content_service import ContentService  # noqa: E402
from shamba.services.engagement_service import EngagementService  # noqa: E402
from shamba.services.event_service import EventService  # noqa: E402
from shamba.services.taxonomy_service import TaxonomyService  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


# Helper to run async code without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Shamba tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def config() -> CommunityConfig:
    return CommunityConfig()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------
@pytest.fixture
def taxonomy(db_engine, config) -> TaxonomyService:
    return TaxonomyService(db_engine, config)


@pytest.fixture
def content(db_engine, config, taxonomy) -> ContentService:
    return ContentService(db_engine, config, taxonomy)


@pytest.fixture
def engagement(db_engine, config) -> EngagementService:
    return EngagementService(db_engine, config)


@pytest.fixture
def events(db_engine, config) -> EventService:
    return EventService(db_engine, config)


@pytest.fixture
def aggregation(db_engine, config) -> AggregationService:
    return AggregationService(db_engine, config)


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_tags(db_engine):
    """Insert tags by name and return their ids in the same order."""
    from sqlalchemy.orm import Session

    from shamba.constants import slugify

    def _make(*names: str) -> list[int]:
        with Session(db_engine) as session:
            tags = [Tag(name=n, slug=slugify(n), usage_count=0) for n in names]
            session.add_all(tags)
            session.commit()
            return [t.id for t in tags]

    return _make


@pytest.fixture
def category_id(db_engine) -> int:
    from sqlalchemy.orm import Session

    with Session(db_engine) as session:
        category = Category(name="Crop Farming", slug="crop-farming", color="#4caf50")
        session.add(category)
        session.commit()
        return category.id


def event_payload(**overrides) -> dict:
    """A valid ``create_event`` payload starting tomorrow."""
    start = datetime.now(UTC) + timedelta(days=1)
    data = {
        "title": "Coffee pruning workshop",
        "description": "Hands-on pruning for smallholder coffee.",
        "event_type": "workshop",
        "start_datetime": start,
        "end_datetime": start + timedelta(hours=3),
        "location": "Mbale demonstration farm",
        "contact_info": "+256 700 000000",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_event(events):
    """Create an event as ``organizer`` and return its id."""

    def _make(organizer: str = "organizer", **overrides) -> int:
        result = events.create_event(organizer, event_payload(**overrides))
        assert result.ok, result.error
        return result.data["id"]

    return _make


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
def make_token(sub: str) -> str:
    """Create a bearer token the API accepts for user *sub*."""
    import jwt

    from shamba.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def auth(sub: str) -> dict:
    return {"Authorization": f"Bearer {make_token(sub)}"}


@pytest.fixture
def client(db_engine, config):
    """FastAPI TestClient with the engine and config dependencies overridden."""
    from fastapi.testclient import TestClient

    from shamba.api.deps import get_config, get_engine
    from shamba.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: config
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
