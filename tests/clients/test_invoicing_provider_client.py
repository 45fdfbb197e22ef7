"""Tests for InvoicingProviderClient - HMAC-signed invoice issuance."""

import hashlib
import hmac
import json
from datetime import date
from uuid import uuid4

import pytest
import requests
import responses

from clients.invoicing_provider_client import InvoicingProviderClient, InvoicingProviderError
from core.errors import InternalError
from core.models import Invoice, InvoiceLine, InvoiceStatus, InvoiceType, InvoicingProvider
from utils.timezone import now_utc

ENDPOINT = "https://provider.example.com/invoices"


@pytest.fixture
def invoice():
    now = now_utc()
    return Invoice(
        id=uuid4(),
        tenant_id=uuid4(),
        customer_id=uuid4(),
        subscription_id=uuid4(),
        status=InvoiceStatus.FINALIZED,
        currency="USD",
        invoice_date=date(2024, 2, 1),
        invoice_type=InvoiceType.RECURRING,
        invoicing_provider=InvoicingProvider.STRIPE,
        line_items=[InvoiceLine(name="Platform", total=2000)],
        subtotal_cents=2000,
        total_cents=2000,
        days_until_due=30,
        finalized_at=now,
        created_at=now,
        updated_at=now,
    )


class TestInvoicingProviderClientInit:
    """Fail-fast on invalid config."""

    @pytest.mark.parametrize("field", ["endpoint_url", "api_key", "hmac_secret"])
    def test_rejects_empty_credentials(self, field):
        kwargs = {"endpoint_url": ENDPOINT, "api_key": "key", "hmac_secret": "secret"}
        kwargs[field] = ""
        with pytest.raises(ValueError, match=field):
            InvoicingProviderClient(**kwargs)


class TestIssueInvoice:
    """issue_invoice - uses responses library for HTTP mocking."""

    @pytest.fixture
    def client(self):
        return InvoicingProviderClient(endpoint_url=ENDPOINT, api_key="test-api-key", hmac_secret="test-hmac-secret")

    @responses.activate
    def test_returns_external_id(self, client, invoice):
        responses.add(responses.POST, ENDPOINT, json={"success": True, "external_invoice_id": "in_1Nx2"}, status=200)

        assert client.issue_invoice(invoice) == "in_1Nx2"

    @responses.activate
    def test_signature_matches_body(self, client, invoice):
        """X-Signature is HMAC-SHA256 of the exact body sent."""
        responses.add(responses.POST, ENDPOINT, json={"success": True, "external_invoice_id": "in_1"}, status=200)

        client.issue_invoice(invoice)

        request = responses.calls[0].request
        body = request.body.decode("utf-8") if isinstance(request.body, bytes) else request.body
        expected = hmac.new(b"test-hmac-secret", body.encode("utf-8"), hashlib.sha256).hexdigest()
        assert request.headers["X-Signature"] == expected
        assert request.headers["X-API-Key"] == "test-api-key"
        payload = json.loads(body)
        assert payload["total"] == 2000
        assert payload["line_items"][0]["name"] == "Platform"

    @responses.activate
    def test_rejection_raises(self, client, invoice):
        responses.add(responses.POST, ENDPOINT, json={"success": False, "message": "customer unknown"}, status=200)

        with pytest.raises(InvoicingProviderError, match="customer unknown"):
            client.issue_invoice(invoice)

    @responses.activate
    def test_server_error_raises(self, client, invoice):
        responses.add(responses.POST, ENDPOINT, json={"message": "down"}, status=502)

        with pytest.raises(InvoicingProviderError):
            client.issue_invoice(invoice)

    @responses.activate
    def test_invalid_json_raises(self, client, invoice):
        responses.add(responses.POST, ENDPOINT, body="<html>", status=200)

        with pytest.raises(InvoicingProviderError, match="Invalid response"):
            client.issue_invoice(invoice)

    @responses.activate
    def test_connection_error_raises(self, client, invoice):
        responses.add(responses.POST, ENDPOINT, body=requests.exceptions.ConnectionError("refused"))

        with pytest.raises(InvoicingProviderError, match="Connection failed"):
            client.issue_invoice(invoice)

    @responses.activate
    def test_missing_external_id_raises(self, client, invoice):
        responses.add(responses.POST, ENDPOINT, json={"success": True}, status=200)

        with pytest.raises(InvoicingProviderError, match="external_invoice_id"):
            client.issue_invoice(invoice)

    def test_provider_error_is_internal(self):
        assert issubclass(InvoicingProviderError, InternalError)
