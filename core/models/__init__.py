"""Core domain models."""

from core.models.fees import (
    BillingPeriod, BillingType, FeeType, SubscriptionFee, SubscriptionFeeBillingPeriod,
    RateFee, SlotFee, CapacityFee, UsageFee, ExtraRecurringFee, OneTimeFee,
    RateSubscriptionFee, SlotSubscriptionFee, CapacitySubscriptionFee,
    UsageSubscriptionFee, RecurringSubscriptionFee, OneTimeSubscriptionFee,
    PerUnitPricing, TieredPricing, VolumePricing, PackagePricing, MatrixPricing,
    TermRate, CapacityThreshold, TierRow, MatrixRow, MatrixDimension,
    parse_fee, parse_subscription_fee, tagged_document,
)
from core.models.line_item import InvoiceLine, InvoiceLinePeriod, InvoiceSubLine, lines_to_document, parse_lines
from core.models.invoice import (
    Invoice, InvoiceNew, InvoiceStatus, InvoiceExternalStatus, InvoiceType,
    InvoicingProvider, InvoicePredicate, IssueState,
)
from core.models.price_component import PriceComponent
from core.models.subscription import (
    Subscription, SubscriptionStatus, SubscriptionComponent, ComponentParameters,
    SlotTransaction, SubscriptionEvent, SubscriptionEventType,
)
from core.models.mrr import MrrMovementLog, MrrMovementLogNew, MrrMovementType
from core.models.pagination import (
    CursorPaginationRequest, CursorPaginatedVec, PaginationRequest, PaginatedVec, OrderBy,
    encode_cursor, decode_cursor,
)

__all__ = [
    # Fees
    "BillingPeriod", "BillingType", "FeeType", "SubscriptionFee", "SubscriptionFeeBillingPeriod",
    "RateFee", "SlotFee", "CapacityFee", "UsageFee", "ExtraRecurringFee", "OneTimeFee",
    "RateSubscriptionFee", "SlotSubscriptionFee", "CapacitySubscriptionFee",
    "UsageSubscriptionFee", "RecurringSubscriptionFee", "OneTimeSubscriptionFee",
    "PerUnitPricing", "TieredPricing", "VolumePricing", "PackagePricing", "MatrixPricing",
    "TermRate", "CapacityThreshold", "TierRow", "MatrixRow", "MatrixDimension",
    "parse_fee", "parse_subscription_fee", "tagged_document",
    # Line items
    "InvoiceLine", "InvoiceLinePeriod", "InvoiceSubLine", "lines_to_document", "parse_lines",
    # Invoice
    "Invoice", "InvoiceNew", "InvoiceStatus", "InvoiceExternalStatus", "InvoiceType",
    "InvoicingProvider", "InvoicePredicate", "IssueState",
    # Price component
    "PriceComponent",
    # Subscription
    "Subscription", "SubscriptionStatus", "SubscriptionComponent", "ComponentParameters",
    "SlotTransaction", "SubscriptionEvent", "SubscriptionEventType",
    # MRR
    "MrrMovementLog", "MrrMovementLogNew", "MrrMovementType",
    # Pagination
    "CursorPaginationRequest", "CursorPaginatedVec", "PaginationRequest", "PaginatedVec", "OrderBy",
    "encode_cursor", "decode_cursor",
]
