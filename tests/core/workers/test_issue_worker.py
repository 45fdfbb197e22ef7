"""Tests for IssueWorker."""

from datetime import date
from unittest.mock import Mock

import pytest

from clients.invoicing_provider_client import InvoicingProviderError
from core.models import InvoiceExternalStatus, InvoicingProvider
from core.workers import IssueWorker


@pytest.fixture
def finalized(invoice_repo, draft):
    """Factory for finalized invoices, not yet issued."""
    def _finalized(invoice_date=date(2024, 2, 1), **overrides):
        invoice = draft(invoice_date, **overrides)
        return invoice_repo.finalize(invoice.tenant_id, invoice.id, [])
    return _finalized


@pytest.fixture
def stripe_client():
    client = Mock()
    client.issue_invoice.return_value = "in_1Nx2"
    return client


@pytest.fixture
def worker(invoice_repo, stripe_client, event_bus, config):
    return IssueWorker(invoice_repo, {InvoicingProvider.STRIPE: stripe_client}, event_bus, config)


class TestIssueSuccess:

    def test_marks_issued_with_external_id(self, worker, invoice_repo, finalized, stripe_client):
        invoice = finalized()

        summary = worker.run()

        issued = invoice_repo.invoices[invoice.id]
        assert issued.issued is True
        assert issued.external_invoice_id == "in_1Nx2"
        assert issued.external_status == InvoiceExternalStatus.FINALIZED
        assert issued.issue_attempts == 1
        assert summary.processed == 1
        stripe_client.issue_invoice.assert_called_once()

    def test_publishes_invoice_issued(self, worker, finalized, event_bus):
        invoice = finalized()

        worker.run()

        [event] = event_bus.of_type("InvoiceIssued")
        assert event.invoice.id == invoice.id

    def test_issued_invoices_are_not_sent_again(self, worker, finalized, stripe_client):
        finalized()

        worker.run()
        worker.run()

        assert stripe_client.issue_invoice.call_count == 1

    def test_drafts_are_not_issued(self, worker, draft, stripe_client):
        draft(date(2024, 2, 1))

        summary = worker.run()

        assert summary.scanned == 0
        stripe_client.issue_invoice.assert_not_called()

    def test_manual_invoices_skip_the_provider(self, worker, invoice_repo, finalized, stripe_client):
        invoice = finalized(invoicing_provider=InvoicingProvider.MANUAL)

        worker.run()

        assert invoice_repo.invoices[invoice.id].issued is True
        assert invoice_repo.invoices[invoice.id].external_invoice_id is None
        stripe_client.issue_invoice.assert_not_called()


class TestIssueFailure:

    def test_provider_error_is_recorded(self, worker, invoice_repo, finalized, stripe_client, event_bus):
        stripe_client.issue_invoice.side_effect = InvoicingProviderError("Provider returned 502")
        invoice = finalized()

        summary = worker.run()

        failed = invoice_repo.invoices[invoice.id]
        assert failed.issued is False
        assert failed.issue_attempts == 1
        assert failed.last_issue_error == "Provider returned 502"
        assert summary.failed_ids == [invoice.id]
        assert event_bus.published == []

    def test_retried_until_max_attempts(self, worker, invoice_repo, finalized, stripe_client, config):
        stripe_client.issue_invoice.side_effect = InvoicingProviderError("timeout")
        invoice = finalized()

        for _ in range(config.max_issue_attempts + 2):
            worker.run()

        assert invoice_repo.invoices[invoice.id].issue_attempts == config.max_issue_attempts
        assert stripe_client.issue_invoice.call_count == config.max_issue_attempts

    def test_success_after_failure_clears_error(self, worker, invoice_repo, finalized, stripe_client):
        stripe_client.issue_invoice.side_effect = [InvoicingProviderError("timeout"), "in_9"]
        invoice = finalized()

        worker.run()
        worker.run()

        issued = invoice_repo.invoices[invoice.id]
        assert issued.issued is True
        assert issued.last_issue_error is None
        assert issued.issue_attempts == 2

    def test_missing_provider_client_counts_as_failed_attempt(self, invoice_repo, finalized, event_bus, config):
        invoice = finalized()

        summary = IssueWorker(invoice_repo, {}, event_bus, config).run()

        assert summary.failed == 1
        assert "stripe" in invoice_repo.invoices[invoice.id].last_issue_error

    def test_concurrently_issued_invoice_is_skipped(self, finalized, stripe_client, event_bus, config, invoice_repo):
        invoice = finalized()
        invoices = Mock(wraps=invoice_repo)
        invoice_repo.record_issue_attempt(invoice.tenant_id, invoice.id, success=True)
        invoices.list_by_cursor_predicate.return_value = Mock(items=[invoice], next_cursor=None, failed_ids=[])

        summary = IssueWorker(invoices, {InvoicingProvider.STRIPE: stripe_client}, event_bus, config).run()

        assert summary.skipped == 1
        assert event_bus.published == []
