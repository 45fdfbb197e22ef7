"""
Domain events for billing.

Immutable event objects that represent state changes in the invoice
lifecycle. Workers publish what happened, and handlers react without the
publisher knowing who's listening.

Events carry the full invoice so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice; Any avoids a circular import

    def to_payload(self) -> dict[str, Any]:
        """JSON-compatible summary published outside the process."""
        invoice = self.invoice
        return {
            "event_id": self.event_id,
            "event_type": self.__class__.__name__,
            "occurred_at": self.occurred_at.isoformat(),
            "tenant_id": str(invoice.tenant_id),
            "invoice_id": str(invoice.id),
            "subscription_id": str(invoice.subscription_id),
            "status": invoice.status.value,
            "invoice_date": invoice.invoice_date.isoformat(),
            "total": invoice.total_cents,
            "currency": invoice.currency,
        }


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A draft invoice was created for a subscription's invoice date."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCreated":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceFinalized(InvoiceEvent):
    """An invoice was finalized; its lines and totals are frozen."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceFinalized":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceIssued(InvoiceEvent):
    """A finalized invoice was accepted by its invoicing provider."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceIssued":
        return cls(invoice=invoice)
