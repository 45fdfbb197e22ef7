"""Invoice line item domain models.

Line totals are integers in the currency's minor unit ($12.00 = 1200 cents).
Unit prices are decimals in minor units so sub-cent rates stay exact
($0.0004 per call = Decimal("0.04") cents).

Lines are persisted on the invoice row as an ordered JSON list; periods use
"from"/"to" keys in that document.
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from core.errors import SerdeError


class InvoiceLinePeriod(BaseModel):
    """Half-open date range [start, end) covered by a line."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start: date = Field(..., alias="from")
    end: date = Field(..., alias="to")

    @model_validator(mode="after")
    def check_order(self) -> "InvoiceLinePeriod":
        if self.end < self.start:
            raise ValueError("Period end precedes period start")
        return self

    @property
    def days(self) -> int:
        return (self.end - self.start).days


class InvoiceSubLine(BaseModel):
    """Breakdown entry of a line, e.g. the portion billed in one tier."""

    model_config = ConfigDict(frozen=True)

    name: str
    quantity: Decimal
    unit_price: Decimal
    total: int


class InvoiceLine(BaseModel):
    """One priced entry on an invoice."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=500)
    total: int
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    period: InvoiceLinePeriod | None = None
    sub_period: InvoiceLinePeriod | None = None
    proration_factor: Decimal | None = None
    price_component_id: UUID | None = None
    metric_id: UUID | None = None
    sub_lines: list[InvoiceSubLine] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_sub_lines_total(self) -> "InvoiceLine":
        """A broken-down line must total exactly its parts."""
        if self.sub_lines and sum(s.total for s in self.sub_lines) != self.total:
            raise ValueError("Line total does not match the sum of its sub lines")
        return self


_LINES_ADAPTER: TypeAdapter = TypeAdapter(list[InvoiceLine])


def lines_to_document(lines: list[InvoiceLine]) -> list[dict[str, Any]]:
    """JSON-compatible document stored in invoices.line_items."""
    return [line.model_dump(mode="json", by_alias=True) for line in lines]


def parse_lines(document: Any) -> list[InvoiceLine]:
    """
    Read the persisted line item document of an invoice.

    A NULL document (fresh draft) is an empty list.

    Raises:
        SerdeError: If the document does not match the line schema
    """
    if document is None:
        return []
    try:
        return _LINES_ADAPTER.validate_python(document)
    except ValidationError as e:
        raise SerdeError(f"Failed to deserialize invoice lines: {e}", "invoice.line_items") from e
