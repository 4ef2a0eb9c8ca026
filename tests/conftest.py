"""
tests/conftest.py -- Shared test fixtures for ETracker tests.

This module provides:
  - make_document(): builds a raw inventory document mapping for insert_document()
  - stores: fresh in-memory InventoryStore + AuditTrail pair per test
  - engine: ExceptionEngine over the stores with a pinned clock
  - api_client: TestClient with actor headers for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API client because TestClient runs sync route handlers in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from core.config import Settings
from core.engine import ExceptionEngine, ExceptionPolicy
from core.models import Actor
from core.reports import ReportCompiler
from inventory.audit import AuditTrail
from inventory.store import InventoryStore

# Reference time for engine tests. Timestamps written by the engine are
# derived from this, so assertions can compare exact strings.
FIXED_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
FIXED_NOW_ISO = "2025-01-01T12:00:00Z"

ACTOR = Actor(id="42", name="Alice Admin")
ACTOR_HEADERS = {"X-Actor-Id": "42", "X-Actor-Name": "Alice Admin"}


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------


def make_document(
    document_id: str,
    hostname: str,
    enforced: Optional[dict[str, dict[str, Any]]] = None,
    application: str = "Payroll",
    **instance: Any,
) -> dict[str, Any]:
    """Return a raw document mapping in the shape the inventory loader produces.

    Extra keyword arguments land in descriptor["instance"] (e.g. owner=...,
    reference_code=...).
    """
    return {
        "id": document_id,
        "descriptor": {
            "hostname": hostname,
            "instance": {"name": application, **instance},
        },
        "enforced": enforced or {},
    }


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- isolated stores per test
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[InventoryStore, AuditTrail], None, None]:
    """Fresh in-memory inventory store and audit trail."""
    store = InventoryStore("sqlite:///:memory:")
    audit = AuditTrail("sqlite:///:memory:")
    yield store, audit
    store.close()
    audit.close()


@pytest.fixture
def engine(stores: tuple[InventoryStore, AuditTrail]) -> ExceptionEngine:
    """ExceptionEngine over the test stores, with the clock pinned to FIXED_NOW."""
    store, audit = stores
    return ExceptionEngine(store, audit, policy=ExceptionPolicy(), clock=lambda: FIXED_NOW)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: InventoryStore, audit: AuditTrail, settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured databases.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.inventory = store
        app.state.audit = audit
        app.state.engine = ExceptionEngine(store, audit, policy=ExceptionPolicy.from_settings(settings))
        app.state.reports = ReportCompiler(store, batch_size=settings.report_batch_size)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[tuple[TestClient, InventoryStore], None, None]:
    """Yield (client, store) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use isolated in-memory stores. Each test
    module gets its own databases, named after the module.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    store = InventoryStore(f"sqlite:///file:test_inventory_{suffix}?mode=memory&cache=shared&uri=true")
    audit = AuditTrail(f"sqlite:///file:test_audit_{suffix}?mode=memory&cache=shared&uri=true")
    settings = Settings(_env_file=None)

    app.router.lifespan_context = _patch_lifespan(store, audit, settings)
    # Rate limits are per client address and every test shares one address.
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store

    limiter.enabled = True
    store.close()
    audit.close()
