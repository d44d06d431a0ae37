"""
Pytest fixtures for the costing engine test suite.

Provides:
- An in-memory SQLite engine shared by the session, with every test run
  inside an outer transaction that is rolled back at teardown
- Service fixtures wired to a deterministic clock and a fresh report cache
- Small data builders (products, layers, sale lines)
- Structured log capture

Tests that need real commits (concurrency, retry) build their own
file-backed engine through the ``committing_factory`` fixture.
"""

import json
import logging
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from costing_config.schema import CostingConfig
from costing_kernel.db.engine import build_engine, create_tables
from costing_kernel.db.immutability import register_immutability_listeners
from costing_kernel.domain.clock import DeterministicClock
from costing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from costing_kernel.models.sale_line import SaleLineModel
from costing_services.catalog import ProductCatalog
from costing_services.consumption_service import FifoConsumptionEngine
from costing_services.layer_store import LayerStore
from costing_services.profitability_service import ProfitabilityAggregator
from costing_services.report_cache import ReportCache
from costing_services.reporting import CostingReports
from costing_services.sale_posting import SalePostingService
from costing_services.valuation_service import ValuationCalculator

DAY0 = date(2024, 1, 1)


def day(n: int) -> date:
    """Calendar date ``n`` days after DAY0."""
    return DAY0 + timedelta(days=n)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


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
    Capture costing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, consumption):
            consumption.consume(...)
            logs = captured_logs()
            assert any(r["message"] == "consume_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("costing_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    engine = build_engine("sqlite://")
    create_tables(engine)
    register_immutability_listeners()
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection and
    never commits it; teardown rolls everything back, so each test starts
    from empty tables.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="rollback_only", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture
def committing_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """Session factory over a file-backed SQLite database with real commits."""
    engine = build_engine(f"sqlite:///{tmp_path / 'costing.db'}")
    create_tables(engine)
    register_immutability_listeners()
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def config() -> CostingConfig:
    return CostingConfig()


@pytest.fixture
def cache() -> ReportCache:
    return ReportCache()


@pytest.fixture
def catalog(session) -> ProductCatalog:
    return ProductCatalog(session)


@pytest.fixture
def layer_store(session, clock, cache) -> LayerStore:
    return LayerStore(session, clock, cache)


@pytest.fixture
def consumption(session, layer_store, clock, config) -> FifoConsumptionEngine:
    return FifoConsumptionEngine(session, layer_store, clock, config)


@pytest.fixture
def valuation(session, layer_store, clock, config, cache) -> ValuationCalculator:
    return ValuationCalculator(session, layer_store, clock, config, cache)


@pytest.fixture
def profitability(session, clock, config, cache) -> ProfitabilityAggregator:
    return ProfitabilityAggregator(session, clock, config, cache)


@pytest.fixture
def sale_posting(session, consumption, clock) -> SalePostingService:
    return SalePostingService(session, consumption, clock)


@pytest.fixture
def reports(session, clock, config, cache) -> CostingReports:
    return CostingReports(session, clock, config, cache)


# =============================================================================
# Data builders
# =============================================================================


@pytest.fixture
def product(catalog):
    """A product with no fallback cost."""
    return catalog.add_product("SKU-1", "Phone case")


@pytest.fixture
def make_product(catalog):
    counter = {"n": 100}

    def _make(name: str = "Product", fallback_unit_cost: Decimal | None = None):
        counter["n"] += 1
        return catalog.add_product(f"SKU-{counter['n']}", name, fallback_unit_cost)

    return _make


@pytest.fixture
def make_sale_line(session):
    """Insert a sale line directly, without costing it."""

    def _make(
        product_id: int,
        quantity: Decimal,
        unit_price: Decimal = Decimal("150"),
        sale_date: date = DAY0,
        sale_id: str = "S-1",
        discount_per_unit: Decimal = Decimal("0"),
        customer_segment: str | None = None,
    ) -> int:
        model = SaleLineModel(
            sale_id=sale_id,
            product_id=product_id,
            quantity_sold=quantity,
            unit_price_sold=unit_price,
            discount_per_unit=discount_per_unit,
            sale_date=sale_date,
            customer_segment=customer_segment,
        )
        session.add(model)
        session.flush()
        return model.id

    return _make


@pytest.fixture
def scenario_layers(product, layer_store):
    """Two layers: (day0, 10 @ 100) and (day5, 5 @ 120)."""
    l1 = layer_store.append_layer(product.id, Decimal("10"), Decimal("100"), day(0), "PO-1")
    l2 = layer_store.append_layer(product.id, Decimal("5"), Decimal("120"), day(5), "PO-2")
    return l1, l2
