"""
Price worker: recompute the lines of draft invoices whose date has come.

Every run recomputes from scratch and overwrites; usage may still change
until the invoice is finalized.
"""

import logging
from datetime import date

from core.config import BillingConfig
from core.models import InvoicePredicate, InvoiceStatus
from core.workers.base import ROW_ERRORS, WorkerRunSummary, iter_pages
from utils.tenant_context import tenant_context

logger = logging.getLogger(__name__)


class PriceWorker:
    def __init__(self, invoices, pricing, config: BillingConfig):
        self.invoices = invoices
        self.pricing = pricing
        self.config = config

    def run(self, today: date) -> WorkerRunSummary:
        summary = WorkerRunSummary(worker="price")
        predicate = InvoicePredicate(
            statuses=[InvoiceStatus.DRAFT],
            invoice_date_on_or_before=today,
        )

        def fetch(pagination):
            return self.invoices.list_by_cursor_predicate(predicate, pagination)

        for page in iter_pages(fetch, self.config.worker_page_size, summary):
            summary.pages += 1
            for invoice in page:
                summary.scanned += 1
                with tenant_context(invoice.tenant_id):
                    try:
                        lines = self.pricing.compute_lines(invoice)
                        updated = self.invoices.update_lines(invoice.tenant_id, invoice.id, lines)
                    except ROW_ERRORS:
                        logger.exception(
                            "Pricing failed for invoice %s (tenant %s)", invoice.id, invoice.tenant_id
                        )
                        summary.record_failure(invoice.id)
                        continue

                if updated:
                    summary.processed += 1
                else:
                    logger.warning("Invoice %s left draft before its lines were written", invoice.id)
                    summary.skipped += 1

        summary.log()
        return summary
