"""
Issue worker: hand finalized invoices to their invoicing provider.

Each attempt is recorded: success marks the invoice issued, failure stores
the error and leaves it for the next run until max_issue_attempts is
reached. Manual invoices have no provider and are marked issued directly.
"""

import logging

from clients.invoicing_provider_client import InvoicingProviderError
from core.config import BillingConfig
from core.errors import InvalidArgumentError
from core.event_bus import EventBus
from core.events import InvoiceIssued
from core.models import Invoice, InvoicePredicate, InvoiceStatus, InvoicingProvider
from core.workers.base import WorkerRunSummary, iter_pages
from utils.tenant_context import tenant_context

logger = logging.getLogger(__name__)


class IssueWorker:
    def __init__(self, invoices, providers: dict, event_bus: EventBus, config: BillingConfig):
        """
        Args:
            invoices: InvoiceService
            providers: InvoicingProvider -> InvoicingProviderClient
            event_bus: Receives InvoiceIssued
            config: Worker configuration
        """
        self.invoices = invoices
        self.providers = providers
        self.event_bus = event_bus
        self.config = config

    def run(self) -> WorkerRunSummary:
        summary = WorkerRunSummary(worker="issue")
        predicate = InvoicePredicate(
            statuses=[InvoiceStatus.FINALIZED],
            issued=False,
            issue_attempts_below=self.config.max_issue_attempts,
        )

        def fetch(pagination):
            return self.invoices.list_by_cursor_predicate(predicate, pagination)

        for page in iter_pages(fetch, self.config.worker_page_size, summary):
            summary.pages += 1
            for invoice in page:
                summary.scanned += 1
                with tenant_context(invoice.tenant_id):
                    self._issue(invoice, summary)

        summary.log()
        return summary

    def _issue(self, invoice: Invoice, summary: WorkerRunSummary) -> None:
        external_id = None
        error = None

        if invoice.invoicing_provider != InvoicingProvider.MANUAL:
            client = self.providers.get(invoice.invoicing_provider)
            if client is None:
                error = f"No client configured for provider {invoice.invoicing_provider.value}"
            else:
                try:
                    external_id = client.issue_invoice(invoice)
                except InvoicingProviderError as e:
                    error = str(e)

        try:
            updated = self.invoices.record_issue_attempt(
                invoice.tenant_id,
                invoice.id,
                success=error is None,
                error=error,
                external_invoice_id=external_id,
            )
        except InvalidArgumentError:
            logger.warning("Invoice %s was issued concurrently", invoice.id)
            summary.skipped += 1
            return

        if error is not None:
            logger.error(
                "Issuing invoice %s failed (attempt %d of %d): %s",
                invoice.id, updated.issue_attempts, self.config.max_issue_attempts, error,
            )
            summary.record_failure(invoice.id)
            return

        summary.processed += 1
        self.event_bus.publish(InvoiceIssued.create(updated))
