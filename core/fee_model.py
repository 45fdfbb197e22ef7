"""
Fee model: fee resolution and usage pricing math.

Pure functions, no I/O. Amounts are decimals in major currency units;
conversion to minor units is left to core.money.

resolve() turns a plan fee definition into the fee a subscription is billed
with, choosing one term rate, slot count or capacity threshold. The
price_* functions turn a usage quantity into an amount with a per-tier
breakdown.
"""

from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal

from core.errors import InvalidArgumentError
from core.models.fees import (
    BillingPeriod,
    CapacityFee,
    CapacityThreshold,
    CapacitySubscriptionFee,
    ExtraRecurringFee,
    FeeType,
    MatrixPricing,
    MatrixRow,
    OneTimeFee,
    OneTimeSubscriptionFee,
    PackagePricing,
    PerUnitPricing,
    RateFee,
    RateSubscriptionFee,
    RecurringSubscriptionFee,
    SlotFee,
    SlotSubscriptionFee,
    SubscriptionFee,
    SubscriptionFeeBillingPeriod,
    TermRate,
    TieredPricing,
    TierRow,
    UsageFee,
    UsagePricingModel,
    UsageSubscriptionFee,
    VolumePricing,
)


# =============================================================================
# RESOLUTION
# =============================================================================


def _select_rate(rates: list[TermRate], billing_period: BillingPeriod | None) -> TermRate:
    if billing_period is not None:
        for rate in rates:
            if rate.term == billing_period:
                return rate
        raise InvalidArgumentError(f"No rate for billing period {billing_period.value}")
    if len(rates) != 1:
        raise InvalidArgumentError("A billing period is required when several term rates exist")
    return rates[0]


def to_subscription_fee(fee: FeeType) -> tuple[SubscriptionFeeBillingPeriod, SubscriptionFee]:
    """
    Resolve a fee that needs no binding parameters.

    Rate and Slot fees must carry exactly one term rate and Capacity fees
    exactly one threshold; anything else needs explicit parameters.
    """
    if isinstance(fee, RateFee):
        rate = _select_rate(fee.rates, None)
        return rate.term.as_subscription_billing_period(), RateSubscriptionFee(rate=rate.price)

    if isinstance(fee, SlotFee):
        rate = _select_rate(fee.rates, None)
        return rate.term.as_subscription_billing_period(), _slot_subscription_fee(fee, rate, None)

    if isinstance(fee, CapacityFee):
        if len(fee.thresholds) != 1:
            raise InvalidArgumentError("A committed capacity is required when several thresholds exist")
        return SubscriptionFeeBillingPeriod.MONTHLY, _capacity_subscription_fee(fee, fee.thresholds[0])

    if isinstance(fee, UsageFee):
        return SubscriptionFeeBillingPeriod.MONTHLY, UsageSubscriptionFee(
            metric_id=fee.metric_id, model=fee.pricing
        )

    if isinstance(fee, ExtraRecurringFee):
        return fee.cadence.as_subscription_billing_period(), RecurringSubscriptionFee(
            rate=fee.unit_price, quantity=fee.quantity, billing_type=fee.billing_type
        )

    if isinstance(fee, OneTimeFee):
        return SubscriptionFeeBillingPeriod.ONE_TIME, OneTimeSubscriptionFee(
            rate=fee.unit_price, quantity=fee.quantity
        )

    raise InvalidArgumentError(f"Unsupported fee type: {type(fee).__name__}")


def resolve(
    fee: FeeType,
    billing_period: BillingPeriod | None = None,
    slot_count: int | None = None,
    committed_capacity: int | None = None,
) -> tuple[SubscriptionFeeBillingPeriod, SubscriptionFee]:
    """
    Resolve a fee definition with the parameters chosen at binding time.

    Args:
        fee: Fee definition of the price component
        billing_period: Term chosen for Rate and Slot fees
        slot_count: Initial slot count for Slot fees
        committed_capacity: Included amount identifying a Capacity threshold

    Returns:
        Effective billing period and the resolved subscription fee

    Raises:
        InvalidArgumentError: If the parameters are missing, ambiguous or do
            not apply to the fee type
    """
    if billing_period is None and slot_count is None and committed_capacity is None:
        return to_subscription_fee(fee)

    if slot_count is not None and slot_count < 0:
        raise InvalidArgumentError("Slot count cannot be negative")

    if isinstance(fee, RateFee):
        if slot_count is not None or committed_capacity is not None:
            raise InvalidArgumentError("Rate fees take no slot count or committed capacity")
        rate = _select_rate(fee.rates, billing_period)
        return rate.term.as_subscription_billing_period(), RateSubscriptionFee(rate=rate.price)

    if isinstance(fee, SlotFee):
        if billing_period is None:
            raise InvalidArgumentError("Slot fees require a billing period")
        if committed_capacity is not None:
            raise InvalidArgumentError("Slot fees take no committed capacity")
        rate = _select_rate(fee.rates, billing_period)
        return rate.term.as_subscription_billing_period(), _slot_subscription_fee(fee, rate, slot_count)

    if isinstance(fee, CapacityFee):
        if billing_period is not None or slot_count is not None:
            raise InvalidArgumentError("Capacity fees take no billing period or slot count")
        if committed_capacity is None:
            raise InvalidArgumentError("Capacity fees require a committed capacity")
        for threshold in fee.thresholds:
            if threshold.included_amount == committed_capacity:
                return SubscriptionFeeBillingPeriod.MONTHLY, _capacity_subscription_fee(fee, threshold)
        raise InvalidArgumentError(f"No capacity threshold includes {committed_capacity} units")

    if isinstance(fee, (UsageFee, ExtraRecurringFee, OneTimeFee)):
        raise InvalidArgumentError(f"{fee.kind} fees cannot be parametrized")

    raise InvalidArgumentError(f"Unsupported fee type: {type(fee).__name__}")


def _slot_subscription_fee(fee: SlotFee, rate: TermRate, slot_count: int | None) -> SlotSubscriptionFee:
    if slot_count is not None:
        initial = slot_count
    elif fee.minimum_count is not None:
        initial = fee.minimum_count
    else:
        initial = 0
    return SlotSubscriptionFee(
        unit=fee.slot_unit_name,
        unit_rate=rate.price,
        min_slots=fee.minimum_count,
        max_slots=fee.quota,
        initial_slots=initial,
    )


def _capacity_subscription_fee(fee: CapacityFee, threshold: CapacityThreshold) -> CapacitySubscriptionFee:
    return CapacitySubscriptionFee(
        metric_id=fee.metric_id,
        rate=threshold.price,
        included=threshold.included_amount,
        overage_rate=threshold.per_unit_overage,
    )


# =============================================================================
# USAGE PRICING
# =============================================================================


@dataclass(frozen=True)
class TierCharge:
    """Portion of a quantity billed in one tier. last_unit is exclusive, None if unbounded."""

    first_unit: int
    last_unit: int | None
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    flat_fee: Decimal | None = None


@dataclass(frozen=True)
class UsagePrice:
    """
    Priced usage. `quantity` is the billed quantity (blocks for package
    pricing); `amount` always equals the sum of the breakdown when present.
    """

    amount: Decimal
    quantity: Decimal
    breakdown: tuple[TierCharge, ...] = field(default_factory=tuple)


def _check_quantity(quantity: Decimal) -> None:
    if quantity < 0:
        raise InvalidArgumentError(f"Usage quantity cannot be negative: {quantity}")


def _check_tiers(tiers: list[TierRow]) -> None:
    if not tiers:
        raise InvalidArgumentError("At least one tier is required")
    for lower, upper in zip(tiers, tiers[1:]):
        if upper.first_unit <= lower.first_unit:
            raise InvalidArgumentError("Tiers must be strictly ascending by first_unit")


def _blocks(quantity: Decimal, block_size: int) -> Decimal:
    return (quantity / Decimal(block_size)).to_integral_value(rounding=ROUND_CEILING)


def _tier_amount(tier: TierRow, quantity: Decimal, block_size: int | None) -> Decimal:
    billed = _blocks(quantity, block_size) if block_size else quantity
    amount = billed * tier.rate
    if tier.flat_fee is not None:
        amount += tier.flat_fee
    if tier.flat_cap is not None and amount > tier.flat_cap:
        amount = tier.flat_cap
    return amount


def price_per_unit(quantity: Decimal, rate: Decimal) -> UsagePrice:
    _check_quantity(quantity)
    return UsagePrice(amount=quantity * rate, quantity=quantity)


def price_package(quantity: Decimal, block_size: int, rate: Decimal) -> UsagePrice:
    """Quantity rounded up to whole packages of `block_size`, `rate` per package."""
    _check_quantity(quantity)
    if block_size < 1:
        raise InvalidArgumentError("Package block size must be positive")
    packages = _blocks(quantity, block_size)
    return UsagePrice(amount=packages * rate, quantity=packages)


def price_tiered(quantity: Decimal, tiers: list[TierRow], block_size: int | None = None) -> UsagePrice:
    """
    Graduated pricing: each tier bills the part of the quantity inside it.

    A tier spans [first_unit, next tier's first_unit). Its flat fee is added
    once when any quantity falls in it, and its flat cap bounds the tier
    amount. With a block size, the tier's part is billed per started block.
    """
    _check_quantity(quantity)
    _check_tiers(tiers)
    charges = []
    for index, tier in enumerate(tiers):
        upper = tiers[index + 1].first_unit if index + 1 < len(tiers) else None
        ceiling = quantity if upper is None else min(quantity, Decimal(upper))
        portion = ceiling - Decimal(tier.first_unit)
        if portion <= 0:
            continue
        charges.append(
            TierCharge(
                first_unit=tier.first_unit,
                last_unit=upper,
                quantity=portion,
                rate=tier.rate,
                amount=_tier_amount(tier, portion, block_size),
                flat_fee=tier.flat_fee,
            )
        )
    return UsagePrice(
        amount=sum((c.amount for c in charges), Decimal(0)),
        quantity=quantity,
        breakdown=tuple(charges),
    )


def price_volume(quantity: Decimal, tiers: list[TierRow], block_size: int | None = None) -> UsagePrice:
    """Volume pricing: the whole quantity at the rate of the tier it falls into."""
    _check_quantity(quantity)
    _check_tiers(tiers)
    if quantity == 0:
        return UsagePrice(amount=Decimal(0), quantity=quantity)
    selected_index = None
    for index, tier in enumerate(tiers):
        if Decimal(tier.first_unit) <= quantity:
            selected_index = index
    if selected_index is None:
        return UsagePrice(amount=Decimal(0), quantity=quantity)
    tier = tiers[selected_index]
    upper = tiers[selected_index + 1].first_unit if selected_index + 1 < len(tiers) else None
    charge = TierCharge(
        first_unit=tier.first_unit,
        last_unit=upper,
        quantity=quantity,
        rate=tier.rate,
        amount=_tier_amount(tier, quantity, block_size),
        flat_fee=tier.flat_fee,
    )
    return UsagePrice(amount=charge.amount, quantity=quantity, breakdown=(charge,))


def matrix_rate(rates: list[MatrixRow], dimensions: dict[str, str]) -> MatrixRow:
    """
    Row whose dimensions match exactly.

    Raises:
        InvalidArgumentError: If no row matches the dimension combination
    """
    for row in rates:
        if row.dimensions() == dimensions:
            return row
    raise InvalidArgumentError(f"No matrix rate for dimensions {dimensions}")


def price_usage(
    model: UsagePricingModel,
    quantity: Decimal,
    dimensions: dict[str, str] | None = None,
) -> UsagePrice:
    """Price a usage quantity with any usage pricing model."""
    if isinstance(model, PerUnitPricing):
        return price_per_unit(quantity, model.rate)
    if isinstance(model, PackagePricing):
        return price_package(quantity, model.block_size, model.rate)
    if isinstance(model, TieredPricing):
        return price_tiered(quantity, model.tiers, model.block_size)
    if isinstance(model, VolumePricing):
        return price_volume(quantity, model.tiers, model.block_size)
    if isinstance(model, MatrixPricing):
        row = matrix_rate(model.rates, dimensions or {})
        return price_per_unit(quantity, row.per_unit_price)
    raise InvalidArgumentError(f"Unsupported pricing model: {type(model).__name__}")


def capacity_overage(included: int, usage: Decimal) -> Decimal:
    """Units measured beyond the committed capacity."""
    _check_quantity(usage)
    overage = usage - Decimal(included)
    return overage if overage > 0 else Decimal(0)
