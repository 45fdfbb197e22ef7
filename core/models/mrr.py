"""MRR movement ledger models. Deltas are signed minor units."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class MrrMovementType(str, Enum):
    NEW_BUSINESS = "new_business"
    EXPANSION = "expansion"
    CONTRACTION = "contraction"
    CHURN = "churn"
    REACTIVATION = "reactivation"


class MrrMovementLogNew(BaseModel):
    """Ledger row derived from one subscription event for one invoice."""

    tenant_id: UUID
    subscription_id: UUID
    invoice_id: UUID
    movement_type: MrrMovementType
    net_mrr_change: int
    currency: str = Field(..., min_length=3, max_length=3)
    applies_to: date
    plan_version_id: UUID
    description: str


class MrrMovementLog(MrrMovementLogNew):
    """Stored ledger row. Never updated."""

    id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}
