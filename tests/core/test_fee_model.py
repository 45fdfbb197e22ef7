"""Tests for fee resolution and usage pricing math."""

from decimal import Decimal
from uuid import uuid4

import pytest

from core import fee_model
from core.errors import InvalidArgumentError
from core.models import (
    BillingPeriod,
    BillingType,
    CapacitySubscriptionFee,
    ExtraRecurringFee,
    MatrixDimension,
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
    SubscriptionFeeBillingPeriod,
    TermRate,
    TieredPricing,
    TierRow,
    UsageFee,
    UsageSubscriptionFee,
    VolumePricing,
)


def _rate_fee(*terms: tuple[BillingPeriod, str]) -> RateFee:
    return RateFee(rates=[TermRate(term=t, price=Decimal(p)) for t, p in terms])


def _slot_fee(minimum_count=None, quota=None) -> SlotFee:
    return SlotFee(
        rates=[
            TermRate(term=BillingPeriod.MONTHLY, price=Decimal("10.00")),
            TermRate(term=BillingPeriod.ANNUAL, price=Decimal("100.00")),
        ],
        slot_unit_name="seat",
        minimum_count=minimum_count,
        quota=quota,
    )


STANDARD_TIERS = [
    TierRow(first_unit=0, rate=Decimal("1.00")),
    TierRow(first_unit=100, rate=Decimal("0.50")),
    TierRow(first_unit=1000, rate=Decimal("0.10")),
]


# =============================================================================
# RESOLUTION
# =============================================================================


class TestResolveWithoutParameters:

    def test_single_rate_fee_resolves_to_its_term(self):
        period, fee = fee_model.resolve(_rate_fee((BillingPeriod.QUARTERLY, "30.00")))

        assert period == SubscriptionFeeBillingPeriod.QUARTERLY
        assert fee == RateSubscriptionFee(rate=Decimal("30.00"))

    def test_multi_rate_fee_needs_a_billing_period(self):
        fee = _rate_fee((BillingPeriod.MONTHLY, "10.00"), (BillingPeriod.ANNUAL, "100.00"))

        with pytest.raises(InvalidArgumentError, match="billing period is required"):
            fee_model.resolve(fee)

    def test_capacity_with_several_thresholds_needs_a_commitment(self, capacity_fee):
        with pytest.raises(InvalidArgumentError, match="committed capacity"):
            fee_model.resolve(capacity_fee)

    def test_usage_fee_keeps_its_pricing_model(self):
        metric_id = uuid4()
        pricing = PerUnitPricing(rate=Decimal("0.02"))

        period, fee = fee_model.resolve(UsageFee(metric_id=metric_id, pricing=pricing))

        assert period == SubscriptionFeeBillingPeriod.MONTHLY
        assert fee == UsageSubscriptionFee(metric_id=metric_id, model=pricing)

    def test_extra_recurring_uses_its_cadence(self):
        period, fee = fee_model.resolve(
            ExtraRecurringFee(
                unit_price=Decimal("5.00"), quantity=2,
                billing_type=BillingType.ARREAR, cadence=BillingPeriod.ANNUAL,
            )
        )

        assert period == SubscriptionFeeBillingPeriod.ANNUAL
        assert fee == RecurringSubscriptionFee(
            rate=Decimal("5.00"), quantity=2, billing_type=BillingType.ARREAR
        )

    def test_one_time_fee(self):
        period, fee = fee_model.resolve(OneTimeFee(unit_price=Decimal("99.00"), quantity=1))

        assert period == SubscriptionFeeBillingPeriod.ONE_TIME
        assert fee == OneTimeSubscriptionFee(rate=Decimal("99.00"), quantity=1)


class TestResolveWithParameters:

    def test_rate_fee_selects_the_chosen_term(self):
        fee = _rate_fee((BillingPeriod.MONTHLY, "10.00"), (BillingPeriod.ANNUAL, "100.00"))

        period, resolved = fee_model.resolve(fee, billing_period=BillingPeriod.ANNUAL)

        assert period == SubscriptionFeeBillingPeriod.ANNUAL
        assert resolved.rate == Decimal("100.00")

    def test_rate_fee_without_the_chosen_term_is_rejected(self):
        fee = _rate_fee((BillingPeriod.MONTHLY, "10.00"))

        with pytest.raises(InvalidArgumentError, match="No rate for billing period Annual"):
            fee_model.resolve(fee, billing_period=BillingPeriod.ANNUAL)

    def test_slot_count_defaults_to_minimum(self):
        _, fee = fee_model.resolve(_slot_fee(minimum_count=5), billing_period=BillingPeriod.MONTHLY)

        assert fee == SlotSubscriptionFee(
            unit="seat", unit_rate=Decimal("10.00"), min_slots=5, max_slots=None, initial_slots=5
        )

    def test_slot_count_defaults_to_zero_without_minimum(self):
        _, fee = fee_model.resolve(_slot_fee(), billing_period=BillingPeriod.MONTHLY)

        assert fee.initial_slots == 0

    def test_explicit_slot_count_wins_over_minimum(self):
        _, fee = fee_model.resolve(
            _slot_fee(minimum_count=5, quota=50), billing_period=BillingPeriod.ANNUAL, slot_count=12
        )

        assert fee.initial_slots == 12
        assert fee.unit_rate == Decimal("100.00")
        assert fee.max_slots == 50

    def test_slot_fee_requires_billing_period(self):
        with pytest.raises(InvalidArgumentError, match="require a billing period"):
            fee_model.resolve(_slot_fee(), slot_count=3)

    def test_negative_slot_count_is_rejected(self):
        with pytest.raises(InvalidArgumentError, match="negative"):
            fee_model.resolve(_slot_fee(), billing_period=BillingPeriod.MONTHLY, slot_count=-1)

    def test_capacity_matches_threshold_by_included_amount(self, capacity_fee):
        period, fee = fee_model.resolve(capacity_fee, committed_capacity=1000)

        assert period == SubscriptionFeeBillingPeriod.MONTHLY
        assert fee == CapacitySubscriptionFee(
            metric_id=capacity_fee.metric_id,
            rate=Decimal("82.00"),
            included=1000,
            overage_rate=Decimal("0.04"),
        )

    def test_capacity_without_matching_threshold_is_rejected(self, capacity_fee):
        with pytest.raises(InvalidArgumentError, match="No capacity threshold includes 500"):
            fee_model.resolve(capacity_fee, committed_capacity=500)

    def test_capacity_rejects_billing_period(self, capacity_fee):
        with pytest.raises(InvalidArgumentError):
            fee_model.resolve(capacity_fee, billing_period=BillingPeriod.MONTHLY, committed_capacity=100)

    def test_usage_fee_cannot_be_parametrized(self):
        fee = UsageFee(metric_id=uuid4(), pricing=PerUnitPricing(rate=Decimal("1")))

        with pytest.raises(InvalidArgumentError, match="cannot be parametrized"):
            fee_model.resolve(fee, billing_period=BillingPeriod.MONTHLY)


# =============================================================================
# SIMPLE MODELS
# =============================================================================


class TestPerUnitAndPackage:

    def test_per_unit_multiplies(self):
        price = fee_model.price_per_unit(Decimal("249"), Decimal("0.05"))

        assert price.amount == Decimal("12.45")
        assert price.quantity == Decimal("249")

    def test_package_rounds_up_to_whole_packages(self):
        price = fee_model.price_package(Decimal("101"), 50, Decimal("2.00"))

        assert price.quantity == Decimal("3")
        assert price.amount == Decimal("6.00")

    def test_package_exact_multiple(self):
        price = fee_model.price_package(Decimal("100"), 50, Decimal("2.00"))

        assert price.quantity == Decimal("2")

    def test_zero_quantity_costs_nothing(self):
        assert fee_model.price_package(Decimal("0"), 50, Decimal("2.00")).amount == 0

    @pytest.mark.parametrize("price", [
        lambda: fee_model.price_per_unit(Decimal("-1"), Decimal("1")),
        lambda: fee_model.price_package(Decimal("-1"), 10, Decimal("1")),
        lambda: fee_model.price_tiered(Decimal("-1"), STANDARD_TIERS),
        lambda: fee_model.price_volume(Decimal("-1"), STANDARD_TIERS),
        lambda: fee_model.capacity_overage(100, Decimal("-1")),
    ])
    def test_negative_quantities_are_rejected(self, price):
        with pytest.raises(InvalidArgumentError, match="negative"):
            price()


# =============================================================================
# TIERED
# =============================================================================


class TestTiered:

    def test_quantity_spans_tiers(self):
        price = fee_model.price_tiered(Decimal("1500"), STANDARD_TIERS)

        # 100 x 1.00 + 900 x 0.50 + 500 x 0.10
        assert price.amount == Decimal("600.00")
        assert [c.quantity for c in price.breakdown] == [Decimal("100"), Decimal("900"), Decimal("500")]
        assert [(c.first_unit, c.last_unit) for c in price.breakdown] == [(0, 100), (100, 1000), (1000, None)]

    def test_quantity_inside_first_tier(self):
        price = fee_model.price_tiered(Decimal("40"), STANDARD_TIERS)

        assert price.amount == Decimal("40.00")
        assert len(price.breakdown) == 1

    @pytest.mark.parametrize("quantity", ["0", "1", "99", "100", "101", "999.5", "1000", "12345"])
    def test_portions_sum_to_quantity_and_stay_inside_tiers(self, quantity):
        quantity = Decimal(quantity)
        price = fee_model.price_tiered(quantity, STANDARD_TIERS)

        assert sum(c.quantity for c in price.breakdown) == quantity
        assert price.amount == sum(c.amount for c in price.breakdown)
        for charge in price.breakdown:
            assert charge.quantity > 0
            if charge.last_unit is not None:
                assert charge.quantity <= charge.last_unit - charge.first_unit

    def test_flat_fee_added_once_per_used_tier(self):
        tiers = [
            TierRow(first_unit=0, rate=Decimal("1.00"), flat_fee=Decimal("5.00")),
            TierRow(first_unit=10, rate=Decimal("0.50"), flat_fee=Decimal("3.00")),
        ]

        price = fee_model.price_tiered(Decimal("8"), tiers)

        assert price.amount == Decimal("13.00")

    def test_flat_cap_bounds_tier_amount(self):
        tiers = [
            TierRow(first_unit=0, rate=Decimal("1.00"), flat_cap=Decimal("50.00")),
            TierRow(first_unit=100, rate=Decimal("0.50")),
        ]

        price = fee_model.price_tiered(Decimal("110"), tiers)

        assert price.breakdown[0].amount == Decimal("50.00")
        assert price.amount == Decimal("55.00")

    def test_block_size_bills_started_blocks(self):
        tiers = [TierRow(first_unit=0, rate=Decimal("2.00"))]

        price = fee_model.price_tiered(Decimal("25"), tiers, block_size=10)

        assert price.amount == Decimal("6.00")

    def test_unordered_tiers_are_rejected(self):
        tiers = [TierRow(first_unit=100, rate=Decimal("1")), TierRow(first_unit=0, rate=Decimal("2"))]

        with pytest.raises(InvalidArgumentError, match="ascending"):
            fee_model.price_tiered(Decimal("10"), tiers)


# =============================================================================
# VOLUME
# =============================================================================


class TestVolume:

    def test_whole_quantity_at_reached_tier_rate(self):
        price = fee_model.price_volume(Decimal("1500"), STANDARD_TIERS)

        assert price.amount == Decimal("150.00")
        assert len(price.breakdown) == 1
        assert price.breakdown[0].first_unit == 1000
        assert price.breakdown[0].last_unit is None

    def test_boundary_belongs_to_upper_tier(self):
        price = fee_model.price_volume(Decimal("100"), STANDARD_TIERS)

        assert price.amount == Decimal("50.00")

    def test_zero_quantity(self):
        price = fee_model.price_volume(Decimal("0"), STANDARD_TIERS)

        assert price.amount == 0
        assert price.breakdown == ()

    def test_quantity_below_first_tier_costs_nothing(self):
        tiers = [TierRow(first_unit=10, rate=Decimal("1.00"))]

        assert fee_model.price_volume(Decimal("5"), tiers).amount == 0


# =============================================================================
# MATRIX AND DISPATCH
# =============================================================================


class TestMatrix:

    ROWS = [
        MatrixRow(
            dimension1=MatrixDimension(key="region", value="eu"),
            dimension2=MatrixDimension(key="tier", value="gold"),
            per_unit_price=Decimal("0.30"),
        ),
        MatrixRow(
            dimension1=MatrixDimension(key="region", value="us"),
            per_unit_price=Decimal("0.20"),
        ),
    ]

    def test_exact_match(self):
        row = fee_model.matrix_rate(self.ROWS, {"region": "eu", "tier": "gold"})

        assert row.per_unit_price == Decimal("0.30")

    def test_partial_match_is_not_a_match(self):
        with pytest.raises(InvalidArgumentError, match="No matrix rate"):
            fee_model.matrix_rate(self.ROWS, {"region": "eu"})

    def test_price_usage_with_dimensions(self):
        price = fee_model.price_usage(MatrixPricing(rates=self.ROWS), Decimal("10"), {"region": "us"})

        assert price.amount == Decimal("2.00")


class TestPriceUsageDispatch:

    def test_package(self):
        price = fee_model.price_usage(PackagePricing(block_size=100, rate=Decimal("1.50")), Decimal("250"))

        assert price.amount == Decimal("4.50")

    def test_tiered(self):
        price = fee_model.price_usage(TieredPricing(tiers=STANDARD_TIERS), Decimal("150"))

        assert price.amount == Decimal("125.00")

    def test_volume(self):
        price = fee_model.price_usage(VolumePricing(tiers=STANDARD_TIERS), Decimal("150"))

        assert price.amount == Decimal("75.00")


class TestCapacityOverage:

    def test_units_beyond_included(self):
        assert fee_model.capacity_overage(100, Decimal("249")) == Decimal("149")

    def test_no_overage_within_capacity(self):
        assert fee_model.capacity_overage(100, Decimal("80")) == 0
