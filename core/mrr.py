"""
MRR movement derivation rules.

Subscription events dated on an invoice's date become ledger rows when the
invoice is inserted. Each event with a non-zero delta yields exactly one
row; offsetting events on the same day (a cancellation followed by a
reactivation) produce two rows rather than netting to zero, and a
cancellation does not supersede earlier rows of the subscription.
"""

from uuid import UUID

from core.models.invoice import Invoice
from core.models.mrr import MrrMovementLogNew, MrrMovementType
from core.models.subscription import SubscriptionEvent, SubscriptionEventType

_DESCRIPTIONS = {
    SubscriptionEventType.CREATED: "Subscription created",
    SubscriptionEventType.ACTIVATED: "Subscription activated",
    SubscriptionEventType.SWITCH: "Switched plan",
    SubscriptionEventType.CANCELLED: "Subscription cancelled",
    SubscriptionEventType.REACTIVATED: "Subscription reactivated",
    SubscriptionEventType.UPDATED: "Subscription updated",
}


def classify_movement(event_type: SubscriptionEventType, mrr_delta: int) -> MrrMovementType:
    """Movement type of an event by its type and the sign of its delta."""
    if event_type in (SubscriptionEventType.CREATED, SubscriptionEventType.ACTIVATED):
        return MrrMovementType.NEW_BUSINESS
    if event_type in (SubscriptionEventType.SWITCH, SubscriptionEventType.UPDATED):
        return MrrMovementType.EXPANSION if mrr_delta > 0 else MrrMovementType.CONTRACTION
    if event_type == SubscriptionEventType.CANCELLED:
        return MrrMovementType.CHURN
    return MrrMovementType.REACTIVATION


def describe(event_type: SubscriptionEventType) -> str:
    return _DESCRIPTIONS[event_type]


def build_movement_logs(
    invoice: Invoice,
    events: list[SubscriptionEvent],
    fallback_plan_version_id: UUID,
) -> list[MrrMovementLogNew]:
    """
    Ledger rows for an inserted invoice.

    Args:
        invoice: The invoice just inserted
        events: Subscription events dated on the invoice date
        fallback_plan_version_id: Subscription's plan version, used when the
            invoice carries none

    Returns:
        One row per event with a non-zero delta, in event order. Empty for
        invoice types that do not move MRR.
    """
    if not invoice.invoice_type.moves_mrr:
        return []

    plan_version_id = invoice.plan_version_id or fallback_plan_version_id
    logs = []
    for event in events:
        if event.subscription_id != invoice.subscription_id or event.event_date != invoice.invoice_date:
            continue
        if not event.mrr_delta:
            continue
        logs.append(
            MrrMovementLogNew(
                tenant_id=invoice.tenant_id,
                subscription_id=invoice.subscription_id,
                invoice_id=invoice.id,
                movement_type=classify_movement(event.event_type, event.mrr_delta),
                net_mrr_change=event.mrr_delta,
                currency=invoice.currency,
                applies_to=invoice.invoice_date,
                plan_version_id=plan_version_id,
                description=describe(event.event_type),
            )
        )
    return logs


def net_change(logs: list[MrrMovementLogNew]) -> int:
    """Sum applied to the subscription's running MRR total."""
    return sum(log.net_mrr_change for log in logs)
