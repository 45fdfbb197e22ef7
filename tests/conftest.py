"""Shared test fixtures for the billing core test suite."""

import os
import pytest
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from core.config import BillingConfig
from core.event_bus import EventBus
from core.models import (
    CapacityFee,
    CapacityThreshold,
    InvoiceNew,
    Subscription,
)
from core.usage import MockUsageSource
from fakes import (
    TEST_TENANT_B_ID,
    TEST_TENANT_ID,
    FakeInvoiceRepository,
    FakeSubscriptionRepository,
    RecordingEventBus,
    make_subscription,
)
from utils.tenant_context import clear_current_tenant_id, tenant_context

SCHEMA_PATH = Path(__file__).parent.parent / "sql" / "schema.sql"


# =============================================================================
# TENANT CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_tenant_context():
    """Ensure clean tenant context before and after each test."""
    clear_current_tenant_id()
    yield
    clear_current_tenant_id()


@pytest.fixture
def tenant_id() -> UUID:
    """The primary test tenant's ID."""
    return TEST_TENANT_ID


@pytest.fixture
def tenant_b_id() -> UUID:
    """The secondary test tenant's ID (for isolation tests)."""
    return TEST_TENANT_B_ID


@pytest.fixture
def as_tenant(tenant_id):
    """Tenant context for the primary test tenant."""
    with tenant_context(tenant_id):
        yield tenant_id


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


@pytest.fixture
def config() -> BillingConfig:
    return BillingConfig(worker_page_size=2, draft_lookback_days=7, default_grace_period_hours=24)


@pytest.fixture
def subscription() -> Subscription:
    return make_subscription()


@pytest.fixture
def capacity_fee() -> CapacityFee:
    """100 units for $12.00 or 1000 units for $82.00, overage per unit above."""
    return CapacityFee(
        metric_id=UUID("00000000-0000-0000-0000-0000000000e1"),
        thresholds=[
            CapacityThreshold(included_amount=100, price=Decimal("12.00"), per_unit_overage=Decimal("0.05")),
            CapacityThreshold(included_amount=1000, price=Decimal("82.00"), per_unit_overage=Decimal("0.04")),
        ],
    )


@pytest.fixture
def subscription_repo(subscription) -> FakeSubscriptionRepository:
    repo = FakeSubscriptionRepository()
    repo.add(subscription)
    return repo


@pytest.fixture
def invoice_repo() -> FakeInvoiceRepository:
    return FakeInvoiceRepository()


@pytest.fixture
def draft(invoice_repo, subscription):
    """Factory inserting a draft invoice of the test subscription."""
    def _draft(invoice_date, **overrides):
        fields = dict(
            tenant_id=subscription.tenant_id,
            customer_id=subscription.customer_id,
            subscription_id=subscription.id,
            currency="USD",
            invoice_date=invoice_date,
            grace_period_hours=24,
        )
        fields.update(overrides)
        return invoice_repo.insert(InvoiceNew(**fields))
    return _draft


@pytest.fixture
def usage_source() -> MockUsageSource:
    return MockUsageSource()


@pytest.fixture
def event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def real_event_bus() -> EventBus:
    return EventBus()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """
    Session-scoped PostgresClient against TEST_DATABASE_URL.

    Database-backed tests are skipped when the variable is not set. The
    schema is applied once per session.
    """
    database_url = os.getenv("TEST_DATABASE_URL")
    if not database_url:
        pytest.skip("TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(database_url)
    client.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def clean_db(db):
    """Empty billing tables before each database test."""
    db.execute("""
        TRUNCATE
            mrr_movement_logs, invoices, subscription_events, slot_transactions,
            subscription_components, subscriptions, audit_log
        CASCADE
    """)
    yield db
