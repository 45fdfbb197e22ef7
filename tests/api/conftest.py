"""API test fixtures: the billing app over mocked services."""

from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from fakes import TEST_TENANT_ID


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def invoice_service():
    return Mock()


@pytest.fixture
def mrr_service():
    return Mock()


@pytest.fixture
def subscription_service():
    return Mock()


@pytest.fixture
def services(invoice_service, mrr_service, subscription_service):
    return {
        "invoice": invoice_service,
        "mrr": mrr_service,
        "subscription": subscription_service,
    }


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
def client(app):
    """Test client sending the test tenant on every request."""
    c = TestClient(app, raise_server_exceptions=False)
    c.headers["X-Tenant-Id"] = str(TEST_TENANT_ID)
    return c


@pytest.fixture
def anonymous_client(app):
    """Test client without a tenant header."""
    return TestClient(app, raise_server_exceptions=False)
