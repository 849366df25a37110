"""
Pytest fixtures for the lab ledger test suite.

Provides:
- A database session per test, rolled back at teardown
- A deterministic clock and the standard actors
- Service and selector fixtures
- Builders for stock and approved requests

Environment Variables:
- DATABASE_URL: connection URL for the test database.  Defaults to an
  in-memory SQLite database; point it at PostgreSQL to run the suite
  against the production dialect.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from lab_config import LedgerConfig
from lab_kernel.db.engine import create_tables, drop_tables, init_engine_from_url, reset_engine
from lab_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from lab_kernel.domain.clock import DeterministicClock
from lab_kernel.domain.dtos import ExperimentSpec, ItemLineSpec
from lab_kernel.domain.values import Actor, ItemKind
from lab_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from lab_kernel.models.request import Request
from lab_kernel.selectors.ledger_selector import LedgerSelector
from lab_kernel.selectors.request_selector import RequestSelector
from lab_kernel.selectors.stock_selector import StockSelector
from lab_kernel.services.allocation_service import AllocationService
from lab_kernel.services.item_admin_service import ItemAdminService
from lab_kernel.services.ledger_writer import LedgerWriter
from lab_kernel.services.reconciliation_service import ReconciliationService
from lab_kernel.services.request_service import RequestService
from lab_kernel.services.return_service import ReturnService
from lab_kernel.services.stock_service import StockService
from tests.builders import CENTRAL, LAB, TODAY

DEFAULT_DATABASE_URL = "sqlite:///:memory:"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture lab_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, allocation_service):
            allocation_service.allocate(command)
            logs = captured_logs()
            assert any(r["message"] == "allocation_line_succeeded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("lab_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability listeners stay active."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection;
    service savepoints nest inside it and the outer transaction is rolled
    back at teardown, undoing every change the test made.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Clock, config and actors
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock pinned to noon UTC on TODAY."""
    return DeterministicClock(datetime(TODAY.year, TODAY.month, TODAY.day, 12, tzinfo=timezone.utc))


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig.with_defaults()


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id=uuid4(), role="admin")


@pytest.fixture
def faculty() -> Actor:
    return Actor(actor_id=uuid4(), role="faculty")


@pytest.fixture
def assistant() -> Actor:
    return Actor(actor_id=uuid4(), role="lab_assistant")


# =============================================================================
# Services and selectors
# =============================================================================


@pytest.fixture
def ledger_writer(session, deterministic_clock) -> LedgerWriter:
    return LedgerWriter(session, deterministic_clock)


@pytest.fixture
def stock_service(session, deterministic_clock, config, ledger_writer) -> StockService:
    return StockService(session, deterministic_clock, config, ledger_writer)


@pytest.fixture
def request_service(session, deterministic_clock, config) -> RequestService:
    return RequestService(session, deterministic_clock, config)


@pytest.fixture
def allocation_service(session, deterministic_clock, config) -> AllocationService:
    return AllocationService(session, deterministic_clock, config)


@pytest.fixture
def return_service(session, deterministic_clock, config) -> ReturnService:
    return ReturnService(session, deterministic_clock, config)


@pytest.fixture
def item_admin_service(session, deterministic_clock, config) -> ItemAdminService:
    return ItemAdminService(session, deterministic_clock, config)


@pytest.fixture
def reconciliation_service(session, deterministic_clock, config) -> ReconciliationService:
    return ReconciliationService(session, deterministic_clock, config)


@pytest.fixture
def stock_selector(session) -> StockSelector:
    return StockSelector(session)


@pytest.fixture
def ledger_selector(session) -> LedgerSelector:
    return LedgerSelector(session)


@pytest.fixture
def request_selector(session, deterministic_clock, config) -> RequestSelector:
    return RequestSelector(session, deterministic_clock, config)


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def receive_stock(stock_service, admin):
    """Factory fixture: put pooled stock on the shelf (central store by default)."""

    def _receive(
        product_id: str,
        quantity,
        *,
        lot_code: str = "",
        expiry_date: date | None = None,
        item_kind: ItemKind = ItemKind.CHEMICAL,
        location: str = CENTRAL,
        variant: str = "",
    ):
        return stock_service.receive(
            item_kind=item_kind,
            product_id=product_id,
            location=location,
            quantity=Decimal(str(quantity)),
            actor_id=admin.actor_id,
            variant=variant,
            lot_code=lot_code,
            expiry_date=expiry_date,
        )

    return _receive


@pytest.fixture
def register_units(stock_service, admin):
    """Factory fixture: register serialized equipment units by item code."""

    def _register(product_id: str, *item_codes: str, location: str = CENTRAL, variant: str = ""):
        return [
            stock_service.register_equipment(
                item_code=code,
                product_id=product_id,
                location=location,
                actor_id=admin.actor_id,
                variant=variant,
            )
            for code in item_codes
        ]

    return _register


@pytest.fixture
def make_request(request_service, faculty, admin):
    """
    Factory fixture: a request with one experiment per date, approved by default.

    Usage::

        request = make_request(chemical("ethanol", 60))
        line = request.experiments[0].item_lines[0]
    """

    def _make(
        *items: ItemLineSpec,
        scheduled_date: date = date(2025, 3, 20),
        lab_id: str = LAB,
        approve: bool = True,
        experiments: list[ExperimentSpec] | None = None,
    ) -> Request:
        specs = experiments or [
            ExperimentSpec(
                experiment_ref="EXP-1",
                scheduled_date=scheduled_date,
                items=tuple(items),
                experiment_name="Titration",
            )
        ]
        request = request_service.create_request(
            faculty_id=faculty.actor_id,
            lab_id=lab_id,
            experiments=specs,
            actor=faculty,
        )
        if approve:
            request_service.approve_request(request.id, admin)
        return request

    return _make

