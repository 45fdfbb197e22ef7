"""Subscription domain models."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.models.fees import (
    BillingPeriod,
    SubscriptionFee,
    SubscriptionFeeBillingPeriod,
    parse_subscription_fee,
)
from core.models.invoice import InvoicingProvider


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    ENDED = "ended"


class SubscriptionEventType(str, Enum):
    CREATED = "created"
    ACTIVATED = "activated"
    SWITCH = "switch"
    CANCELLED = "cancelled"
    REACTIVATED = "reactivated"
    UPDATED = "updated"


class Subscription(BaseModel):
    """Full subscription entity as stored. mrr_cents is the running MRR total."""

    id: UUID
    tenant_id: UUID
    customer_id: UUID
    plan_version_id: UUID
    currency: str
    billing_start_date: date
    billing_end_date: date | None = None
    billing_day: int = Field(..., ge=1, le=31)
    net_terms: int = 0
    status: SubscriptionStatus
    invoicing_provider: InvoicingProvider = InvoicingProvider.STRIPE
    grace_period_hours: int | None = Field(None, ge=0)
    mrr_cents: int = 0
    activated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ComponentParameters(BaseModel):
    """
    Variant parameters chosen when a parametrized component is bound.

    Stored with the subscription component; a component is resolved once.
    """

    billing_period: BillingPeriod | None = None
    initial_slot_count: int | None = Field(None, ge=0)
    committed_capacity: int | None = Field(None, ge=0)

    @property
    def is_empty(self) -> bool:
        return (
            self.billing_period is None
            and self.initial_slot_count is None
            and self.committed_capacity is None
        )


class SubscriptionComponent(BaseModel):
    """A price component bound to a subscription with its resolved fee."""

    id: UUID
    subscription_id: UUID
    price_component_id: UUID | None = None
    name: str
    period: SubscriptionFeeBillingPeriod
    fee: SubscriptionFee
    parameters: ComponentParameters = Field(default_factory=ComponentParameters)
    position: int = 0

    model_config = {"from_attributes": True}

    @field_validator("fee", mode="before")
    @classmethod
    def _parse_fee_document(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return parse_subscription_fee(value)
        return value


class SlotTransaction(BaseModel):
    """Slot count change effective from a date."""

    id: UUID
    subscription_id: UUID
    component_id: UUID
    slots: int = Field(..., ge=0)
    effective_at: date
    created_at: datetime


class SubscriptionEvent(BaseModel):
    """Append-only lifecycle record carrying a signed MRR delta in minor units."""

    id: UUID
    tenant_id: UUID
    subscription_id: UUID
    event_type: SubscriptionEventType
    mrr_delta: int | None = None
    event_date: date
    details: dict[str, Any] | None = None
    created_at: datetime
