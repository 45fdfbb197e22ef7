"""
Pending-status worker: flag drafts whose invoice date has passed.

Only drafts still inside their grace period are marked pending. Drafts
already finalize-ready are left as they are for the finalize worker, which
takes draft and pending invoices alike.
"""

import logging
from datetime import datetime

from core.config import BillingConfig
from core.models import InvoicePredicate, InvoiceStatus
from core.workers.base import WorkerRunSummary, iter_pages
from utils.tenant_context import tenant_context

logger = logging.getLogger(__name__)


class PendingStatusWorker:
    def __init__(self, invoices, config: BillingConfig):
        self.invoices = invoices
        self.config = config

    def run(self, now: datetime) -> WorkerRunSummary:
        summary = WorkerRunSummary(worker="pending_status")
        predicate = InvoicePredicate(
            statuses=[InvoiceStatus.DRAFT],
            invoice_date_on_or_before=now.date(),
            grace_running_at=now,
        )

        def fetch(pagination):
            return self.invoices.list_by_cursor_predicate(predicate, pagination)

        for page in iter_pages(fetch, self.config.worker_page_size, summary):
            summary.pages += 1
            for invoice in page:
                summary.scanned += 1
                with tenant_context(invoice.tenant_id):
                    moved = self.invoices.update_status_conditional(
                        invoice.tenant_id, invoice.id, InvoiceStatus.DRAFT, InvoiceStatus.PENDING
                    )
                if moved:
                    summary.processed += 1
                else:
                    logger.warning("Invoice %s changed status concurrently, not marked pending", invoice.id)
                    summary.skipped += 1

        summary.log()
        return summary
