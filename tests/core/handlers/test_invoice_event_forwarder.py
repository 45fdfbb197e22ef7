"""Tests for the invoice event forwarder."""

from datetime import date
from unittest.mock import Mock

import pytest

from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoiceFinalized, InvoiceIssued
from core.handlers.invoice_event_forwarder import handle_invoice_event, register_invoice_event_forwarder


@pytest.fixture
def invoice(draft):
    return draft(date(2024, 2, 1))


@pytest.fixture
def valkey():
    client = Mock()
    client.publish_json.return_value = 2
    return client


class TestHandleInvoiceEvent:

    def test_publishes_payload_on_channel(self, invoice, valkey):
        event = InvoiceFinalized.create(invoice)

        handle_invoice_event(valkey, "billing.invoices")(event)

        valkey.publish_json.assert_called_once_with("billing.invoices", event.to_payload())


class TestRegisterForwarder:

    @pytest.mark.parametrize("event_class", [InvoiceCreated, InvoiceFinalized, InvoiceIssued])
    def test_every_lifecycle_event_is_forwarded(self, invoice, valkey, event_class):
        bus = EventBus()
        register_invoice_event_forwarder(bus, valkey, "billing.invoices")

        bus.publish(event_class.create(invoice))

        payload = valkey.publish_json.call_args[0][1]
        assert payload["event_type"] == event_class.__name__

    def test_valkey_failure_is_contained(self, invoice, valkey):
        valkey.publish_json.side_effect = ConnectionError("valkey down")
        bus = EventBus()
        register_invoice_event_forwarder(bus, valkey, "billing.invoices")

        bus.publish(InvoiceFinalized.create(invoice))

        valkey.publish_json.assert_called_once()
