"""
Pricing engine: line items of one invoice.

For each component bound to the invoice's subscription, in plan order, the
fee decides which lines the invoice date carries:

- Advance charges (Rate, Slot, Capacity commitment, advance Recurring)
  cover the term starting on the invoice date and are billed on
  term-aligned dates only. A partial first term is prorated by days.
- Arrear charges (Usage, Capacity overage, arrear Recurring) cover the
  period that ends on the invoice date, so the first invoice has none.
- OneTime charges are billed on the first invoice only.

Usage lines whose measured quantity is zero are left out. Computation is
deterministic: the same inputs produce the same lines, field for field.
"""

import logging
from decimal import Decimal

from core import fee_model
from core.errors import InvalidArgumentError
from core.models import (
    BillingType,
    CapacitySubscriptionFee,
    Invoice,
    InvoiceLine,
    InvoiceLinePeriod,
    InvoiceSubLine,
    MatrixPricing,
    OneTimeSubscriptionFee,
    PackagePricing,
    RateSubscriptionFee,
    RecurringSubscriptionFee,
    SlotSubscriptionFee,
    Subscription,
    SubscriptionComponent,
    TieredPricing,
    UsageSubscriptionFee,
    VolumePricing,
)
from core.money import to_minor_unit_price, to_minor_units
from core.periods import InvoiceSchedule, TermWindow
from core.services.invoice_service import compute_totals
from core.usage import UsageSource

logger = logging.getLogger(__name__)


class PricingService:
    """Compute invoice lines from bound fees and metered usage."""

    def __init__(self, subscriptions, usage_source: UsageSource):
        self.subscriptions = subscriptions
        self.usage_source = usage_source

    def compute_lines(self, invoice: Invoice) -> list[InvoiceLine]:
        """
        Ordered line items for an invoice.

        Raises:
            NotFoundError: If the subscription does not exist
            InvalidArgumentError: If the invoice date is not on the
                subscription's schedule or a fee cannot be priced
            InternalError: If the usage source fails
        """
        subscription = self.subscriptions.get_by_id(invoice.tenant_id, invoice.subscription_id)
        schedule = InvoiceSchedule(
            billing_start_date=subscription.billing_start_date,
            billing_day=subscription.billing_day,
            billing_end_date=subscription.billing_end_date,
        )
        if schedule.index_of(invoice.invoice_date) is None:
            raise InvalidArgumentError(
                f"{invoice.invoice_date.isoformat()} is not an invoice date of subscription {subscription.id}"
            )

        components = sorted(
            self.subscriptions.list_components(subscription.id),
            key=lambda c: (c.position, str(c.id)),
        )

        lines: list[InvoiceLine] = []
        for component in components:
            lines.extend(self._component_lines(invoice, subscription, schedule, component))
        return lines

    def compute_totals(self, lines: list[InvoiceLine]) -> tuple[int, int, int]:
        return compute_totals(lines)

    # =========================================================================
    # PER FEE TYPE
    # =========================================================================

    def _component_lines(
        self,
        invoice: Invoice,
        subscription: Subscription,
        schedule: InvoiceSchedule,
        component: SubscriptionComponent,
    ) -> list[InvoiceLine]:
        fee = component.fee

        if isinstance(fee, RateSubscriptionFee):
            window = self._advance_window(invoice, schedule, component)
            if window is None:
                return []
            return [self._term_line(component, window, fee.rate, Decimal(1), subscription.currency)]

        if isinstance(fee, SlotSubscriptionFee):
            window = self._advance_window(invoice, schedule, component)
            if window is None:
                return []
            slots = self.usage_source.fetch_slots(
                invoice.tenant_id, invoice.subscription_id, component.id, invoice.invoice_date
            )
            if slots <= 0:
                return []
            return [self._term_line(component, window, fee.unit_rate, Decimal(slots), subscription.currency)]

        if isinstance(fee, CapacitySubscriptionFee):
            return self._capacity_lines(invoice, subscription, schedule, component, fee)

        if isinstance(fee, UsageSubscriptionFee):
            previous = schedule.previous(invoice.invoice_date)
            if previous is None:
                return []
            period = InvoiceLinePeriod(start=previous, end=invoice.invoice_date)
            return self._usage_lines(invoice, subscription, component, fee, period)

        if isinstance(fee, RecurringSubscriptionFee):
            if fee.billing_type == BillingType.ADVANCE:
                window = self._advance_window(invoice, schedule, component)
            else:
                window = self._arrear_window(invoice, schedule, component)
            if window is None or fee.quantity == 0:
                return []
            return [self._term_line(component, window, fee.rate, Decimal(fee.quantity), subscription.currency)]

        if isinstance(fee, OneTimeSubscriptionFee):
            if schedule.index_of(invoice.invoice_date) != 0 or fee.quantity == 0:
                return []
            quantity = Decimal(fee.quantity)
            return [
                InvoiceLine(
                    name=component.name,
                    quantity=quantity,
                    unit_price=to_minor_unit_price(fee.rate, subscription.currency),
                    total=to_minor_units(fee.rate * quantity, subscription.currency),
                    price_component_id=component.price_component_id,
                )
            ]

        raise InvalidArgumentError(f"Unsupported subscription fee: {type(fee).__name__}")

    def _capacity_lines(
        self,
        invoice: Invoice,
        subscription: Subscription,
        schedule: InvoiceSchedule,
        component: SubscriptionComponent,
        fee: CapacitySubscriptionFee,
    ) -> list[InvoiceLine]:
        currency = subscription.currency
        lines = []

        window = self._advance_window(invoice, schedule, component)
        if window is not None:
            lines.append(self._term_line(component, window, fee.rate, Decimal(1), currency))

        previous = schedule.previous(invoice.invoice_date)
        if previous is not None:
            period = InvoiceLinePeriod(start=previous, end=invoice.invoice_date)
            usage = self.usage_source.fetch_usage(
                invoice.tenant_id, invoice.subscription_id, fee.metric_id, {}, period
            )
            overage = fee_model.capacity_overage(fee.included, usage)
            if overage > 0:
                lines.append(
                    InvoiceLine(
                        name=f"{component.name} - Overage",
                        quantity=overage,
                        unit_price=to_minor_unit_price(fee.overage_rate, currency),
                        total=to_minor_units(overage * fee.overage_rate, currency),
                        period=period,
                        price_component_id=component.price_component_id,
                        metric_id=fee.metric_id,
                    )
                )
        return lines

    def _usage_lines(
        self,
        invoice: Invoice,
        subscription: Subscription,
        component: SubscriptionComponent,
        fee: UsageSubscriptionFee,
        period: InvoiceLinePeriod,
    ) -> list[InvoiceLine]:
        currency = subscription.currency
        model = fee.model

        if isinstance(model, MatrixPricing):
            lines = []
            for row in model.rates:
                dimensions = row.dimensions()
                quantity = self.usage_source.fetch_usage(
                    invoice.tenant_id, invoice.subscription_id, fee.metric_id, dimensions, period
                )
                if quantity == 0:
                    continue
                price = fee_model.price_usage(model, quantity, dimensions)
                label = ", ".join(dimensions.values())
                lines.append(
                    InvoiceLine(
                        name=f"{component.name} ({label})",
                        quantity=quantity,
                        unit_price=to_minor_unit_price(row.per_unit_price, currency),
                        total=to_minor_units(price.amount, currency),
                        period=period,
                        price_component_id=component.price_component_id,
                        metric_id=fee.metric_id,
                    )
                )
            return lines

        quantity = self.usage_source.fetch_usage(
            invoice.tenant_id, invoice.subscription_id, fee.metric_id, {}, period
        )
        if quantity == 0:
            return []
        price = fee_model.price_usage(model, quantity)

        if isinstance(model, (TieredPricing, VolumePricing)):
            sub_lines = [
                InvoiceSubLine(
                    name=_tier_label(charge.first_unit, charge.last_unit),
                    quantity=charge.quantity,
                    unit_price=to_minor_unit_price(charge.rate, currency),
                    total=to_minor_units(charge.amount, currency),
                )
                for charge in price.breakdown
            ]
            unit_price = sub_lines[0].unit_price if isinstance(model, VolumePricing) and sub_lines else None
            return [
                InvoiceLine(
                    name=component.name,
                    quantity=quantity,
                    unit_price=unit_price,
                    total=sum(s.total for s in sub_lines),
                    period=period,
                    price_component_id=component.price_component_id,
                    metric_id=fee.metric_id,
                    sub_lines=sub_lines,
                )
            ]

        # PerUnit bills units, Package bills whole packages; both carry one rate
        name = component.name
        if isinstance(model, PackagePricing):
            name = f"{component.name} ({model.block_size} units per package)"
        return [
            InvoiceLine(
                name=name,
                quantity=price.quantity,
                unit_price=to_minor_unit_price(model.rate, currency),
                total=to_minor_units(price.amount, currency),
                period=period,
                price_component_id=component.price_component_id,
                metric_id=fee.metric_id,
            )
        ]

    # =========================================================================
    # PERIODS
    # =========================================================================

    def _term_months(self, component: SubscriptionComponent) -> int:
        months = component.period.months
        if months is None:
            raise InvalidArgumentError(f"Component {component.id} has no recurring term")
        return months

    def _advance_window(
        self,
        invoice: Invoice,
        schedule: InvoiceSchedule,
        component: SubscriptionComponent,
    ) -> TermWindow | None:
        """Term starting on the invoice date, None when no term starts there."""
        end = schedule.billing_end_date
        if end is not None and invoice.invoice_date >= end:
            return None
        months = self._term_months(component)
        if not schedule.is_term_aligned(invoice.invoice_date, months):
            return None
        return schedule.term_window(invoice.invoice_date, months)

    def _arrear_window(
        self,
        invoice: Invoice,
        schedule: InvoiceSchedule,
        component: SubscriptionComponent,
    ) -> TermWindow | None:
        """Term ending on the invoice date, None when no term ends there."""
        months = self._term_months(component)
        term_start = schedule.previous_term_start(invoice.invoice_date, months)
        if term_start is None:
            return None
        return schedule.term_window(term_start, months)

    def _term_line(
        self,
        component: SubscriptionComponent,
        window: TermWindow,
        rate: Decimal,
        quantity: Decimal,
        currency: str,
    ) -> InvoiceLine:
        amount = rate * quantity
        if window.proration_factor is not None:
            amount = amount * window.proration_factor
        return InvoiceLine(
            name=component.name,
            quantity=quantity,
            unit_price=to_minor_unit_price(rate, currency),
            total=to_minor_units(amount, currency),
            period=window.period,
            sub_period=window.sub_period,
            proration_factor=window.proration_factor,
            price_component_id=component.price_component_id,
        )


def _tier_label(first_unit: int, last_unit: int | None) -> str:
    if last_unit is None:
        return f"{first_unit}+"
    return f"{first_unit}-{last_unit - 1}"
