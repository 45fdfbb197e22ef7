"""Tests for PriceWorker."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, Mock
from uuid import uuid4

import pytest

from core.errors import InternalError
from core.models import (
    InvoiceStatus,
    OneTimeFee,
    SubscriptionComponent,
    UsageFee,
    PerUnitPricing,
    lines_to_document,
)
from core import fee_model
from core.services.invoice_service import InvoiceService
from core.services.pricing_service import PricingService
from core.workers import PriceWorker
from fakes import make_invoice_row

METRIC_ID = uuid4()


@pytest.fixture
def pricing(subscription_repo, usage_source, subscription):
    for position, fee in enumerate([
        OneTimeFee(unit_price=Decimal("50.00"), quantity=1),
        UsageFee(metric_id=METRIC_ID, pricing=PerUnitPricing(rate=Decimal("0.10"))),
    ]):
        period, resolved = fee_model.resolve(fee)
        subscription_repo.add_component(SubscriptionComponent(
            id=uuid4(), subscription_id=subscription.id, name=f"Component {position}",
            period=period, fee=resolved, position=position,
        ))
    usage_source.set_usage(METRIC_ID, Decimal("30"))
    return PricingService(subscription_repo, usage_source)


class TestPriceWorker:

    def test_prices_drafts_whose_date_has_come(self, invoice_repo, pricing, draft, config):
        due = draft(date(2024, 2, 1))
        future = draft(date(2024, 3, 1))

        summary = PriceWorker(invoice_repo, pricing, config).run(date(2024, 2, 10))

        assert invoice_repo.invoices[due.id].total_cents == 300
        assert invoice_repo.invoices[due.id].data_updated_at is not None
        assert invoice_repo.invoices[future.id].line_items == []
        assert summary.processed == 1

    def test_recomputing_overwrites_instead_of_adding(self, invoice_repo, pricing, draft, config, usage_source):
        invoice = draft(date(2024, 1, 1))
        worker = PriceWorker(invoice_repo, pricing, config)

        worker.run(date(2024, 1, 1))
        first = lines_to_document(invoice_repo.invoices[invoice.id].line_items)
        worker.run(date(2024, 1, 1))
        second = lines_to_document(invoice_repo.invoices[invoice.id].line_items)

        assert first == second
        assert invoice_repo.invoices[invoice.id].total_cents == 5000

    def test_late_usage_is_picked_up(self, invoice_repo, pricing, draft, config, usage_source):
        invoice = draft(date(2024, 2, 1))
        worker = PriceWorker(invoice_repo, pricing, config)

        worker.run(date(2024, 2, 1))
        usage_source.set_usage(METRIC_ID, Decimal("50"))
        worker.run(date(2024, 2, 1))

        assert invoice_repo.invoices[invoice.id].total_cents == 500

    def test_pricing_failure_is_counted_and_status_kept(self, invoice_repo, pricing, draft, config):
        orphan = draft(date(2024, 2, 1), subscription_id=uuid4())
        priced = draft(date(2024, 2, 1))

        summary = PriceWorker(invoice_repo, pricing, config).run(date(2024, 2, 1))

        assert summary.failed == 1
        assert summary.failed_ids == [orphan.id]
        assert summary.processed == 1
        assert invoice_repo.invoices[orphan.id].status == InvoiceStatus.DRAFT
        assert invoice_repo.invoices[priced.id].total_cents == 300

    def test_usage_source_failure_aborts(self, invoice_repo, draft, config):
        draft(date(2024, 2, 1))
        pricing = Mock()
        pricing.compute_lines.side_effect = InternalError("metering unavailable")

        with pytest.raises(InternalError):
            PriceWorker(invoice_repo, pricing, config).run(date(2024, 2, 1))

    def test_invoice_closed_meanwhile_is_skipped(self, draft, config):
        invoice = draft(date(2024, 2, 1))
        invoices = Mock()
        invoices.list_by_cursor_predicate.return_value = Mock(items=[invoice], next_cursor=None, failed_ids=[])
        invoices.update_lines.return_value = False
        pricing = Mock()
        pricing.compute_lines.return_value = []

        summary = PriceWorker(invoices, pricing, config).run(date(2024, 2, 1))

        assert summary.skipped == 1
        assert summary.processed == 0


class TestUnreadableInvoices:
    """A corrupt stored invoice is a failure of its own, not of the run."""

    def test_corrupt_invoice_does_not_block_the_next(self, config):
        corrupt = make_invoice_row(line_items=[{"bogus": 1}])
        healthy = make_invoice_row()
        postgres = MagicMock()
        postgres.execute.return_value = [corrupt, healthy]
        invoices = Mock(wraps=InvoiceService(postgres, Mock(), Mock(), Mock()))
        invoices.update_lines.return_value = True
        pricing = Mock()
        pricing.compute_lines.return_value = []

        summary = PriceWorker(invoices, pricing, config).run(date(2024, 2, 10))

        priced = pricing.compute_lines.call_args[0][0]
        assert pricing.compute_lines.call_count == 1
        assert priced.id == healthy["id"]
        assert summary.failed_ids == [corrupt["id"]]
        assert summary.processed == 1
