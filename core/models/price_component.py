"""Plan price component model."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.models.fees import FeeType, parse_fee


class PriceComponent(BaseModel):
    """A priced component of a plan version, carrying one fee definition."""

    id: UUID
    plan_version_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    fee: FeeType
    product_item_id: UUID | None = None
    position: int = 0

    model_config = {"from_attributes": True}

    @field_validator("fee", mode="before")
    @classmethod
    def _parse_fee_document(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return parse_fee(value)
        return value
