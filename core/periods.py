"""
Invoice schedule of a subscription.

A subscription is invoiced on its billing start date, then monthly on its
billing day (clamped to the last day of short months). When the start date
does not fall on the billing day, the first cycle is partial:

    start 2024-01-10, billing_day 1  ->  2024-01-10, 2024-02-01, 2024-03-01, ...
    start 2024-01-01, billing_day 1  ->  2024-01-01, 2024-02-01, 2024-03-01, ...
    start 2024-01-31, billing_day 31 ->  2024-01-31, 2024-02-29, 2024-03-31, ...

Invoice dates are numbered from 0 (the start date). A fee with a term of
several months is billed on term-aligned invoice dates only.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from core.errors import InvalidArgumentError
from core.models.line_item import InvoiceLinePeriod

PRORATION_PRECISION = Decimal("0.000001")


def clamp_to_month(year: int, month: int, day: int) -> date:
    """Date for `day` in the given month, clamped to the month's last day."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def add_months(value: date, months: int, day: int | None = None) -> date:
    """
    Shift a date by whole months, anchoring on `day` (default: value's day).

    The anchor keeps a 31st billing day on the 31st after a short month.
    """
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    return clamp_to_month(year, month + 1, day if day is not None else value.day)


@dataclass(frozen=True)
class TermWindow:
    """Period covered by one term charge, with proration for a partial first term."""

    period: InvoiceLinePeriod
    sub_period: InvoiceLinePeriod | None = None
    proration_factor: Decimal | None = None


@dataclass(frozen=True)
class InvoiceSchedule:
    billing_start_date: date
    billing_day: int
    billing_end_date: date | None = None

    def __post_init__(self):
        if not 1 <= self.billing_day <= 31:
            raise InvalidArgumentError(f"Invalid billing day: {self.billing_day}")

    @property
    def anchor(self) -> date:
        """First invoice date that falls on the billing day."""
        start = self.billing_start_date
        candidate = clamp_to_month(start.year, start.month, self.billing_day)
        if candidate < start:
            candidate = add_months(candidate, 1, self.billing_day)
        return candidate

    @property
    def is_aligned(self) -> bool:
        return self.anchor == self.billing_start_date

    def date_at(self, index: int) -> date:
        """Invoice date number `index` (0 is the billing start date)."""
        if index < 0:
            raise InvalidArgumentError(f"Invalid invoice index: {index}")
        if index == 0:
            return self.billing_start_date
        if self.is_aligned:
            return add_months(self.anchor, index, self.billing_day)
        return add_months(self.anchor, index - 1, self.billing_day)

    def index_of(self, invoice_date: date) -> int | None:
        """Position of `invoice_date` in the schedule, None if it is not an invoice date."""
        if invoice_date < self.billing_start_date:
            return None
        if invoice_date == self.billing_start_date:
            return 0
        anchor = self.anchor
        months = (invoice_date.year - anchor.year) * 12 + (invoice_date.month - anchor.month)
        if months < 0 or add_months(anchor, months, self.billing_day) != invoice_date:
            return None
        return months if self.is_aligned else months + 1

    def contains(self, invoice_date: date) -> bool:
        if self.index_of(invoice_date) is None:
            return False
        return self.billing_end_date is None or invoice_date <= self.billing_end_date

    def dates_between(self, start: date, end: date) -> list[date]:
        """Invoice dates in [start, end], bounded by the billing end date."""
        dates = []
        index = 0
        current = self.date_at(0)
        while current <= end:
            if self.billing_end_date is not None and current > self.billing_end_date:
                break
            if current >= start:
                dates.append(current)
            index += 1
            current = self.date_at(index)
        return dates

    def next_after(self, value: date) -> date | None:
        """First invoice date strictly after `value`, None past the billing end date."""
        if value < self.billing_start_date:
            candidate = self.billing_start_date
        else:
            anchor = self.anchor
            if value < anchor:
                candidate = anchor
            else:
                months = (value.year - anchor.year) * 12 + (value.month - anchor.month)
                candidate = add_months(anchor, months, self.billing_day)
                if candidate <= value:
                    candidate = add_months(anchor, months + 1, self.billing_day)
        if self.billing_end_date is not None and candidate > self.billing_end_date:
            return None
        return candidate

    def previous(self, invoice_date: date) -> date | None:
        """Invoice date preceding `invoice_date`, None for the first one."""
        index = self._require_index(invoice_date)
        return self.date_at(index - 1) if index > 0 else None

    def is_term_aligned(self, invoice_date: date, months: int) -> bool:
        """Whether a term of `months` starts on this invoice date."""
        index = self._require_index(invoice_date)
        if self.is_aligned:
            return index % months == 0
        return index == 0 or (index - 1) % months == 0

    def previous_term_start(self, invoice_date: date, months: int) -> date | None:
        """Start of the term that ends on this (term-aligned) invoice date."""
        index = self._require_index(invoice_date)
        if index == 0 or not self.is_term_aligned(invoice_date, months):
            return None
        if not self.is_aligned and index == 1:
            return self.billing_start_date
        return self.date_at(max(index - months, 0))

    def term_window(self, term_start: date, months: int) -> TermWindow:
        """
        Period billed for the term starting on `term_start`.

        The partial first term of an unaligned schedule covers the full term
        ending on the anchor, with the billed sub period and its day ratio.
        """
        anchor = self.anchor
        if term_start == self.billing_start_date and not self.is_aligned:
            full = InvoiceLinePeriod(start=add_months(anchor, -months, self.billing_day), end=anchor)
            sub = InvoiceLinePeriod(start=term_start, end=anchor)
            factor = (Decimal(sub.days) / Decimal(full.days)).quantize(
                PRORATION_PRECISION, rounding=ROUND_HALF_UP
            )
            return TermWindow(period=full, sub_period=sub, proration_factor=factor)
        end = add_months(term_start, months, self.billing_day)
        return TermWindow(period=InvoiceLinePeriod(start=term_start, end=end))

    def _require_index(self, invoice_date: date) -> int:
        index = self.index_of(invoice_date)
        if index is None:
            raise InvalidArgumentError(f"{invoice_date.isoformat()} is not an invoice date of this schedule")
        return index
