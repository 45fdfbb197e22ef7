"""
Draft worker: materialize draft invoices on schedule.

For every active subscription it makes sure a draft exists for each invoice
date inside the look-back window and for the next upcoming invoice date.
Existing invoices are checked before inserting, and the unique recurring
invoice key turns a concurrent duplicate into a skip.
"""

import logging
from datetime import date, timedelta

from core.config import BillingConfig
from core.errors import DuplicateInvoiceError
from core.event_bus import EventBus
from core.events import InvoiceCreated
from core.models import InvoiceNew, InvoiceStatus, InvoiceType, Subscription
from core.periods import InvoiceSchedule
from core.workers.base import ROW_ERRORS, WorkerRunSummary, iter_pages
from utils.tenant_context import tenant_context

logger = logging.getLogger(__name__)


class DraftWorker:
    def __init__(self, invoices, subscriptions, event_bus: EventBus, config: BillingConfig):
        self.invoices = invoices
        self.subscriptions = subscriptions
        self.event_bus = event_bus
        self.config = config

    def invoice_dates_due(self, subscription: Subscription, today: date) -> list[date]:
        """Invoice dates a subscription should have drafts for on `today`."""
        schedule = InvoiceSchedule(
            billing_start_date=subscription.billing_start_date,
            billing_day=subscription.billing_day,
            billing_end_date=subscription.billing_end_date,
        )
        window_start = today - timedelta(days=self.config.draft_lookback_days)
        dates = schedule.dates_between(window_start, today)
        upcoming = schedule.next_after(today)
        if upcoming is not None:
            dates.append(upcoming)
        return dates

    def run(self, today: date) -> WorkerRunSummary:
        summary = WorkerRunSummary(worker="draft")

        for page in iter_pages(self.subscriptions.list_active, self.config.worker_page_size, summary):
            summary.pages += 1
            for subscription in page:
                summary.scanned += 1
                with tenant_context(subscription.tenant_id):
                    try:
                        self._ensure_drafts(subscription, today, summary)
                    except ROW_ERRORS:
                        logger.exception(
                            "Draft creation failed for subscription %s (tenant %s)",
                            subscription.id, subscription.tenant_id,
                        )
                        summary.record_failure(subscription.id)

        summary.log()
        return summary

    def _ensure_drafts(self, subscription: Subscription, today: date, summary: WorkerRunSummary) -> None:
        for invoice_date in self.invoice_dates_due(subscription, today):
            if self.invoices.exists_for_date(subscription.tenant_id, subscription.id, invoice_date):
                summary.skipped += 1
                continue

            grace = subscription.grace_period_hours
            if grace is None:
                grace = self.config.default_grace_period_hours

            try:
                invoice = self.invoices.insert(
                    InvoiceNew(
                        tenant_id=subscription.tenant_id,
                        customer_id=subscription.customer_id,
                        subscription_id=subscription.id,
                        currency=subscription.currency,
                        invoice_date=invoice_date,
                        status=InvoiceStatus.DRAFT,
                        invoice_type=InvoiceType.RECURRING,
                        invoicing_provider=subscription.invoicing_provider,
                        plan_version_id=subscription.plan_version_id,
                        days_until_due=subscription.net_terms,
                        grace_period_hours=grace,
                    )
                )
            except DuplicateInvoiceError:
                logger.warning(
                    "Draft for subscription %s on %s was created concurrently",
                    subscription.id, invoice_date,
                )
                summary.skipped += 1
                continue

            summary.processed += 1
            logger.info(f"Created draft invoice {invoice.id} for subscription {subscription.id} on {invoice_date}")
            self.event_bus.publish(InvoiceCreated.create(invoice))
