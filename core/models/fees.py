"""Fee definition domain models.

A price component on a plan carries one FeeType: a closed tagged union over
Rate, Slot, Capacity, Usage, ExtraRecurring and OneTime. Binding a component
to a subscription resolves it into a SubscriptionFee.

Rates are decimals in major currency units ($12.00 = Decimal("12.00")).
Quantities are integers except metered usage, which is a decimal.

Persisted documents are externally tagged, the variant name wrapping its
fields, with decimals as strings:

    {"Capacity": {"metric_id": "...", "thresholds": [
        {"included_amount": 100, "price": "12.00", "per_unit_overage": "0.05"}]}}

Unknown variants are rejected with SerdeError instead of being defaulted.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_serializer,
    field_validator,
)

from core.errors import SerdeError


class BillingPeriod(str, Enum):
    """Contract term a rate is quoted for."""

    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUAL = "Annual"

    @property
    def months(self) -> int:
        return {"Monthly": 1, "Quarterly": 3, "Annual": 12}[self.value]

    def as_subscription_billing_period(self) -> "SubscriptionFeeBillingPeriod":
        return SubscriptionFeeBillingPeriod(self.value)


class SubscriptionFeeBillingPeriod(str, Enum):
    """Effective billing period of a resolved subscription fee."""

    ONE_TIME = "OneTime"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUAL = "Annual"

    @property
    def months(self) -> int | None:
        """Length in months, None for one-time fees."""
        if self == SubscriptionFeeBillingPeriod.ONE_TIME:
            return None
        return BillingPeriod(self.value).months


class BillingType(str, Enum):
    """Whether a recurring charge is billed at the start or end of its period."""

    ARREAR = "Arrear"
    ADVANCE = "Advance"


class UpgradePolicy(str, Enum):
    PRORATED = "Prorated"


class DowngradePolicy(str, Enum):
    REMOVE_AT_END_OF_PERIOD = "RemoveAtEndOfPeriod"


class _FeeModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# =============================================================================
# BUILDING BLOCKS
# =============================================================================


class TermRate(_FeeModel):
    """Price for one billing term."""

    term: BillingPeriod
    price: Decimal


class CapacityThreshold(_FeeModel):
    """Committed capacity tier: fixed price for `included_amount`, overage beyond it."""

    included_amount: int = Field(..., ge=0)
    price: Decimal
    per_unit_overage: Decimal


class TierRow(_FeeModel):
    """One pricing tier. The upper bound is the next tier's first_unit (last: unbounded)."""

    first_unit: int = Field(..., ge=0)
    rate: Decimal
    flat_fee: Decimal | None = None
    flat_cap: Decimal | None = None


class MatrixDimension(_FeeModel):
    key: str
    value: str


class MatrixRow(_FeeModel):
    """Per-unit price for one combination of one or two dimension values."""

    dimension1: MatrixDimension
    dimension2: MatrixDimension | None = None
    per_unit_price: Decimal

    def dimensions(self) -> dict[str, str]:
        """Dimension filters identifying this row."""
        dims = {self.dimension1.key: self.dimension1.value}
        if self.dimension2 is not None:
            dims[self.dimension2.key] = self.dimension2.value
        return dims


# =============================================================================
# USAGE PRICING MODELS
# =============================================================================


class PerUnitPricing(_FeeModel):
    kind: Literal["PerUnit"] = "PerUnit"
    rate: Decimal


class TieredPricing(_FeeModel):
    kind: Literal["Tiered"] = "Tiered"
    tiers: list[TierRow] = Field(..., min_length=1)
    block_size: int | None = Field(None, ge=1)


class VolumePricing(_FeeModel):
    kind: Literal["Volume"] = "Volume"
    tiers: list[TierRow] = Field(..., min_length=1)
    block_size: int | None = Field(None, ge=1)


class PackagePricing(_FeeModel):
    kind: Literal["Package"] = "Package"
    block_size: int = Field(..., ge=1)
    rate: Decimal


class MatrixPricing(_FeeModel):
    kind: Literal["Matrix"] = "Matrix"
    rates: list[MatrixRow] = Field(..., min_length=1)


UsagePricingModel = Annotated[
    Union[PerUnitPricing, TieredPricing, VolumePricing, PackagePricing, MatrixPricing],
    Field(discriminator="kind"),
]


def _from_external(value: Any) -> Any:
    """Turn {"Variant": {...fields}} into {"kind": "Variant", ...fields}."""
    if isinstance(value, dict) and len(value) == 1 and "kind" not in value:
        ((tag, body),) = value.items()
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ValueError(f"Variant {tag!r} must wrap an object")
        return {"kind": tag, **body}
    return value


def tagged_document(model: BaseModel) -> dict[str, Any]:
    """Externally tagged JSON-compatible document for one variant."""
    return {model.kind: model.model_dump(mode="json", exclude={"kind"})}


# =============================================================================
# FEE TYPES (plan price components)
# =============================================================================


class RateFee(_FeeModel):
    """Flat recurring rate, one price per available term."""

    kind: Literal["Rate"] = "Rate"
    rates: list[TermRate] = Field(..., min_length=1)


class SlotFee(_FeeModel):
    """Per-seat (slot) rate with optional minimum and quota."""

    kind: Literal["Slot"] = "Slot"
    rates: list[TermRate] = Field(..., min_length=1)
    slot_unit_name: str
    upgrade_policy: UpgradePolicy = UpgradePolicy.PRORATED
    downgrade_policy: DowngradePolicy = DowngradePolicy.REMOVE_AT_END_OF_PERIOD
    minimum_count: int | None = Field(None, ge=0)
    quota: int | None = Field(None, ge=0)


class CapacityFee(_FeeModel):
    """Committed capacity on a metric: fixed fee in advance, overage in arrear."""

    kind: Literal["Capacity"] = "Capacity"
    metric_id: UUID
    thresholds: list[CapacityThreshold] = Field(..., min_length=1)


class UsageFee(_FeeModel):
    """Metered fee priced by a usage pricing model."""

    kind: Literal["Usage"] = "Usage"
    metric_id: UUID
    pricing: UsagePricingModel

    @field_validator("pricing", mode="before")
    @classmethod
    def _untag_pricing(cls, value: Any) -> Any:
        return _from_external(value)

    @field_serializer("pricing")
    def _tag_pricing(self, pricing: BaseModel) -> dict[str, Any]:
        return tagged_document(pricing)


class ExtraRecurringFee(_FeeModel):
    """Ad-hoc recurring charge on its own cadence."""

    kind: Literal["ExtraRecurring"] = "ExtraRecurring"
    unit_price: Decimal
    quantity: int = Field(..., ge=0)
    billing_type: BillingType
    cadence: BillingPeriod


class OneTimeFee(_FeeModel):
    kind: Literal["OneTime"] = "OneTime"
    unit_price: Decimal
    quantity: int = Field(..., ge=0)


FeeType = Annotated[
    Union[RateFee, SlotFee, CapacityFee, UsageFee, ExtraRecurringFee, OneTimeFee],
    Field(discriminator="kind"),
]


# =============================================================================
# SUBSCRIPTION FEES (resolved at component binding)
# =============================================================================


class RateSubscriptionFee(_FeeModel):
    kind: Literal["Rate"] = "Rate"
    rate: Decimal


class SlotSubscriptionFee(_FeeModel):
    kind: Literal["Slot"] = "Slot"
    unit: str
    unit_rate: Decimal
    min_slots: int | None = None
    max_slots: int | None = None
    initial_slots: int = Field(0, ge=0)


class CapacitySubscriptionFee(_FeeModel):
    kind: Literal["Capacity"] = "Capacity"
    metric_id: UUID
    rate: Decimal
    included: int = Field(..., ge=0)
    overage_rate: Decimal


class UsageSubscriptionFee(_FeeModel):
    kind: Literal["Usage"] = "Usage"
    metric_id: UUID
    model: UsagePricingModel

    @field_validator("model", mode="before")
    @classmethod
    def _untag_model(cls, value: Any) -> Any:
        return _from_external(value)

    @field_serializer("model")
    def _tag_model(self, model: BaseModel) -> dict[str, Any]:
        return tagged_document(model)


class RecurringSubscriptionFee(_FeeModel):
    kind: Literal["Recurring"] = "Recurring"
    rate: Decimal
    quantity: int = Field(..., ge=0)
    billing_type: BillingType


class OneTimeSubscriptionFee(_FeeModel):
    kind: Literal["OneTime"] = "OneTime"
    rate: Decimal
    quantity: int = Field(..., ge=0)


SubscriptionFee = Annotated[
    Union[
        RateSubscriptionFee,
        SlotSubscriptionFee,
        CapacitySubscriptionFee,
        UsageSubscriptionFee,
        RecurringSubscriptionFee,
        OneTimeSubscriptionFee,
    ],
    Field(discriminator="kind"),
]


# =============================================================================
# DOCUMENT CODEC
# =============================================================================

_FEE_ADAPTER: TypeAdapter = TypeAdapter(FeeType)
_SUBSCRIPTION_FEE_ADAPTER: TypeAdapter = TypeAdapter(SubscriptionFee)


def parse_fee(document: Any) -> FeeType:
    """
    Read a persisted price component fee document.

    Raises:
        SerdeError: If the document is malformed or names an unknown variant
    """
    try:
        return _FEE_ADAPTER.validate_python(_from_external(document))
    except (ValidationError, ValueError) as e:
        raise SerdeError(f"Failed to deserialize fee: {e}", "price_component.fee") from e


def parse_subscription_fee(document: Any) -> SubscriptionFee:
    """
    Read a persisted subscription component fee document.

    Raises:
        SerdeError: If the document is malformed or names an unknown variant
    """
    try:
        return _SUBSCRIPTION_FEE_ADAPTER.validate_python(_from_external(document))
    except (ValidationError, ValueError) as e:
        raise SerdeError(
            f"Failed to deserialize subscription fee: {e}", "subscription_component.fee"
        ) from e
