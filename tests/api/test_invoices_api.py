"""Tests for the billing HTTP routes."""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from core.errors import NotFoundError
from core.models import (
    BillingPeriod,
    InvoiceStatus,
    MrrMovementLog,
    MrrMovementType,
    OrderBy,
    PaginatedVec,
    RateFee,
    RateSubscriptionFee,
    SlotSubscriptionFee,
    SlotTransaction,
    SubscriptionComponent,
    SubscriptionFeeBillingPeriod,
)
from fakes import TEST_PLAN_VERSION_ID, TEST_TENANT_ID, make_subscription
from utils.timezone import now_utc


@pytest.fixture
def invoice(draft):
    return draft(date(2024, 2, 1))


def _seat_component(subscription_id):
    return SubscriptionComponent(
        id=uuid4(),
        subscription_id=subscription_id,
        name="Seats",
        period=SubscriptionFeeBillingPeriod.MONTHLY,
        fee=SlotSubscriptionFee(unit="seat", unit_rate=Decimal("10.00"), max_slots=50, initial_slots=5),
    )


# =============================================================================
# INVOICES
# =============================================================================


class TestListInvoices:

    def test_lists_tenant_invoices(self, client, invoice_service, invoice):
        invoice_service.list.return_value = PaginatedVec(items=[invoice], total_pages=1, total_results=1)

        response = client.get("/api/invoices", params={"status": "draft", "per_page": 10})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["total_results"] == 1
        assert body["data"]["items"][0]["id"] == str(invoice.id)
        args, kwargs = invoice_service.list.call_args
        assert args[0] == TEST_TENANT_ID
        assert args[1].per_page == 10
        assert kwargs["status"] == InvoiceStatus.DRAFT
        assert kwargs["order_by"] == OrderBy.DATE_DESC

    def test_invalid_status_is_validation_error(self, client):
        response = client.get("/api/invoices", params={"status": "paid"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_requires_tenant(self, anonymous_client, invoice_service):
        response = anonymous_client.get("/api/invoices")

        assert response.status_code == 400
        invoice_service.list.assert_not_called()


class TestGetInvoice:

    def test_returns_invoice(self, client, invoice_service, invoice):
        invoice_service.find_by_id.return_value = invoice

        response = client.get(f"/api/invoices/{invoice.id}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "draft"
        assert data["invoice_date"] == "2024-02-01"
        invoice_service.find_by_id.assert_called_once_with(TEST_TENANT_ID, invoice.id)

    def test_missing_is_404(self, client, invoice_service):
        invoice_id = uuid4()
        invoice_service.find_by_id.side_effect = NotFoundError("Invoice", invoice_id)

        response = client.get(f"/api/invoices/{invoice_id}")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_service_call_runs_off_the_event_loop(self, client, invoice_service, invoice):
        loops = []

        def find_by_id(tenant_id, invoice_id):
            try:
                loops.append(asyncio.get_running_loop())
            except RuntimeError:
                loops.append(None)
            return invoice

        invoice_service.find_by_id.side_effect = find_by_id

        response = client.get(f"/api/invoices/{invoice.id}")

        assert response.status_code == 200
        assert loops == [None]


class TestVoidInvoice:

    def test_voids(self, client, invoice_service):
        invoice_service.void.return_value = True
        invoice_id = uuid4()

        response = client.post(f"/api/invoices/{invoice_id}/void")

        assert response.status_code == 200
        assert response.json()["data"] == {"id": str(invoice_id), "status": "void"}

    def test_closed_invoice_is_rejected(self, client, invoice_service):
        invoice_service.void.return_value = False

        response = client.post(f"/api/invoices/{uuid4()}/void")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"


# =============================================================================
# MRR LEDGER
# =============================================================================


class TestMrrLogs:

    def test_lists_logs(self, client, mrr_service):
        log = MrrMovementLog(
            id=uuid4(), tenant_id=TEST_TENANT_ID, subscription_id=uuid4(), invoice_id=uuid4(),
            movement_type=MrrMovementType.CHURN, net_mrr_change=-5000, currency="USD",
            applies_to=date(2024, 3, 1), plan_version_id=TEST_PLAN_VERSION_ID,
            description="Subscription cancelled", created_at=now_utc(),
        )
        mrr_service.list_logs.return_value = PaginatedVec(items=[log], total_pages=1, total_results=1)

        response = client.get("/api/mrr/logs", params={"applies_from": "2024-03-01"})

        assert response.status_code == 200
        item = response.json()["data"]["items"][0]
        assert item["movement_type"] == "churn"
        assert item["net_mrr_change"] == -5000
        assert mrr_service.list_logs.call_args.kwargs["applies_from"] == date(2024, 3, 1)


# =============================================================================
# SUBSCRIPTION COMPONENTS
# =============================================================================


class TestBindComponent:

    def _body(self, **overrides):
        body = {
            "price_component_id": str(uuid4()),
            "plan_version_id": str(TEST_PLAN_VERSION_ID),
            "name": "Platform fee",
            "fee": {"Rate": {"rates": [{"term": "Monthly", "price": "20.00"}]}},
            "parameters": {"billing_period": "Monthly"},
        }
        body.update(overrides)
        return body

    def test_binds_component(self, client, subscription_service):
        subscription_id = uuid4()
        subscription_service.bind_component.return_value = SubscriptionComponent(
            id=uuid4(), subscription_id=subscription_id, name="Platform fee",
            period=SubscriptionFeeBillingPeriod.MONTHLY, fee=RateSubscriptionFee(rate=Decimal("20.00")),
        )

        response = client.post(f"/api/subscriptions/{subscription_id}/components", json=self._body())

        assert response.status_code == 200
        args = subscription_service.bind_component.call_args[0]
        assert args[0] == TEST_TENANT_ID
        assert args[1] == subscription_id
        assert args[2].fee == RateFee(rates=[{"term": "Monthly", "price": Decimal("20.00")}])
        assert args[3].billing_period == BillingPeriod.MONTHLY

    def test_malformed_fee_is_bad_request(self, client, subscription_service):
        response = client.post(
            f"/api/subscriptions/{uuid4()}/components", json=self._body(fee={"Bogus": {}})
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"
        subscription_service.bind_component.assert_not_called()


class TestChangeSlots:

    def test_records_slot_change(self, client, subscription_service):
        subscription = make_subscription()
        component = _seat_component(subscription.id)
        subscription_service.list_components.return_value = [component]
        subscription_service.add_slot_transaction.return_value = SlotTransaction(
            id=uuid4(), subscription_id=subscription.id, component_id=component.id,
            slots=12, effective_at=date(2024, 2, 15), created_at=now_utc(),
        )

        response = client.post(
            f"/api/subscriptions/{subscription.id}/components/{component.id}/slots",
            json={"slots": 12, "effective_at": "2024-02-15"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["slots"] == 12
        subscription_service.add_slot_transaction.assert_called_once_with(
            TEST_TENANT_ID, component, 12, date(2024, 2, 15)
        )

    def test_unbound_component(self, client, subscription_service):
        subscription_service.list_components.return_value = []

        response = client.post(
            f"/api/subscriptions/{uuid4()}/components/{uuid4()}/slots",
            json={"slots": 12, "effective_at": "2024-02-15"},
        )

        assert response.status_code == 400

    def test_negative_slots_is_validation_error(self, client):
        response = client.post(
            f"/api/subscriptions/{uuid4()}/components/{uuid4()}/slots",
            json={"slots": -1, "effective_at": "2024-02-15"},
        )

        assert response.status_code == 422
