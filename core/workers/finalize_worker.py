"""
Finalize worker: freeze invoices whose grace period has elapsed.

Lines are priced one last time to capture late usage, then written together
with the finalized status in one conditional update. InvoiceFinalized is
published after the commit; a publication failure is logged by the event
bus and never undoes the finalization.
"""

import logging
from datetime import datetime

from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceFinalized
from core.models import InvoicePredicate, InvoiceStatus
from core.workers.base import ROW_ERRORS, WorkerRunSummary, iter_pages
from utils.tenant_context import tenant_context

logger = logging.getLogger(__name__)


class FinalizeWorker:
    def __init__(self, invoices, pricing, event_bus: EventBus, config: BillingConfig):
        self.invoices = invoices
        self.pricing = pricing
        self.event_bus = event_bus
        self.config = config

    def run(self, now: datetime) -> WorkerRunSummary:
        summary = WorkerRunSummary(worker="finalize")
        predicate = InvoicePredicate(
            statuses=[InvoiceStatus.DRAFT, InvoiceStatus.PENDING],
            grace_elapsed_at=now,
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
                    except ROW_ERRORS:
                        logger.exception(
                            "Final pricing failed for invoice %s (tenant %s)", invoice.id, invoice.tenant_id
                        )
                        summary.record_failure(invoice.id)
                        continue

                    finalized = self.invoices.finalize(invoice.tenant_id, invoice.id, lines)

                if finalized is None:
                    logger.warning("Invoice %s was finalized or voided concurrently", invoice.id)
                    summary.skipped += 1
                    continue

                summary.processed += 1
                logger.info(f"Finalized invoice {finalized.id} ({finalized.total_cents} {finalized.currency})")
                self.event_bus.publish(InvoiceFinalized.create(finalized))

        summary.log()
        return summary
