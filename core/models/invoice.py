"""Invoice domain models.

All amounts are stored in minor units (integer) to avoid floating point
issues. $10.00 = 1000 cents. Tax is carried but always zero in this core.

Status moves forward only:

    draft -> pending -> finalized
    draft -> finalized
    draft | pending -> void

Issuance is tracked separately (issued, issue_attempts) once finalized.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.models.line_item import InvoiceLine
from utils.timezone import hours_after


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status. PENDING is pending finalization."""

    DRAFT = "draft"
    PENDING = "pending"
    FINALIZED = "finalized"
    VOID = "void"

    def can_transition_to(self, new_status: "InvoiceStatus") -> bool:
        return new_status in _ALLOWED_TRANSITIONS[self]

    @property
    def is_mutable(self) -> bool:
        """Whether line items may still be recomputed."""
        return self in (InvoiceStatus.DRAFT, InvoiceStatus.PENDING)


_ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.PENDING, InvoiceStatus.FINALIZED, InvoiceStatus.VOID}),
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.FINALIZED, InvoiceStatus.VOID}),
    InvoiceStatus.FINALIZED: frozenset(),
    InvoiceStatus.VOID: frozenset(),
}


class InvoiceExternalStatus(str, Enum):
    """Status reported by the invoicing provider once issued."""

    DRAFT = "draft"
    FINALIZED = "finalized"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    UNCOLLECTIBLE = "uncollectible"
    VOID = "void"
    DELETED = "deleted"


class InvoiceType(str, Enum):
    RECURRING = "recurring"
    ONE_OFF = "one_off"
    ADJUSTMENT = "adjustment"
    IMPORTED = "imported"
    USAGE_THRESHOLD = "usage_threshold"

    @property
    def moves_mrr(self) -> bool:
        """Only recurring and adjustment invoices carry MRR movements."""
        return self in (InvoiceType.RECURRING, InvoiceType.ADJUSTMENT)


class InvoicingProvider(str, Enum):
    STRIPE = "stripe"
    MANUAL = "manual"


class IssueState(str, Enum):
    """Derived issuance sub-state of a finalized invoice."""

    NOT_READY = "not_ready"
    PENDING_ISSUE = "pending_issue"
    ISSUE_FAILED = "issue_failed"
    ISSUED = "issued"


class InvoiceNew(BaseModel):
    """Data required to insert an invoice."""

    tenant_id: UUID
    customer_id: UUID
    subscription_id: UUID
    currency: str = Field(..., min_length=3, max_length=3)
    invoice_date: date
    status: InvoiceStatus = InvoiceStatus.DRAFT
    invoice_type: InvoiceType = InvoiceType.RECURRING
    invoicing_provider: InvoicingProvider = InvoicingProvider.STRIPE
    plan_version_id: UUID | None = None
    days_until_due: int | None = Field(None, ge=0)
    grace_period_hours: int = Field(0, ge=0)
    line_items: list[InvoiceLine] = Field(default_factory=list)

    @model_validator(mode="after")
    def only_open_statuses(self) -> "InvoiceNew":
        """Invoices enter the lifecycle as draft (or pending for backfills)."""
        if self.status not in (InvoiceStatus.DRAFT, InvoiceStatus.PENDING):
            raise ValueError("New invoices must be draft or pending")
        return self


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    tenant_id: UUID
    customer_id: UUID
    subscription_id: UUID
    status: InvoiceStatus
    external_status: InvoiceExternalStatus | None = None
    currency: str
    invoice_date: date
    invoice_type: InvoiceType
    invoicing_provider: InvoicingProvider
    line_items: list[InvoiceLine] = Field(default_factory=list)
    subtotal_cents: int = 0
    tax_amount_cents: int = 0
    total_cents: int = 0
    issued: bool = False
    issue_attempts: int = 0
    last_issue_attempt_at: datetime | None = None
    last_issue_error: str | None = None
    external_invoice_id: str | None = None
    days_until_due: int | None = None
    grace_period_hours: int = 0
    data_updated_at: datetime | None = None
    finalized_at: datetime | None = None
    plan_version_id: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def finalize_ready_at(self) -> datetime:
        """Instant after which the invoice may be finalized."""
        return hours_after(self.invoice_date, self.grace_period_hours)

    @property
    def issue_state(self) -> IssueState:
        if self.issued:
            return IssueState.ISSUED
        if self.status != InvoiceStatus.FINALIZED:
            return IssueState.NOT_READY
        if self.issue_attempts > 0:
            return IssueState.ISSUE_FAILED
        return IssueState.PENDING_ISSUE


class InvoicePredicate(BaseModel):
    """
    Eligibility filter for worker scans.

    Every field narrows the selection; unset fields do not filter. The
    repository translates this into SQL, and matches() gives the same answer
    for one invoice in memory.
    """

    statuses: list[InvoiceStatus] = Field(..., min_length=1)
    invoice_date_on_or_before: date | None = None
    grace_elapsed_at: datetime | None = None
    grace_running_at: datetime | None = None
    issued: bool | None = None
    issue_attempts_below: int | None = Field(None, ge=1)

    def matches(self, invoice: Invoice) -> bool:
        if invoice.status not in self.statuses:
            return False
        if self.invoice_date_on_or_before is not None and invoice.invoice_date > self.invoice_date_on_or_before:
            return False
        if self.grace_elapsed_at is not None and invoice.finalize_ready_at > self.grace_elapsed_at:
            return False
        if self.grace_running_at is not None and invoice.finalize_ready_at <= self.grace_running_at:
            return False
        if self.issued is not None and invoice.issued != self.issued:
            return False
        if self.issue_attempts_below is not None and invoice.issue_attempts >= self.issue_attempts_below:
            return False
        return True
