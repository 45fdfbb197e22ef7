"""
Subscription service: subscriptions, bound components, slots and events.

Read paths used by the pricing engine and the draft worker, component
binding (where a parametrized fee is resolved, once), slot transactions and
the lifecycle events consumed by MRR derivation.
"""

import logging
from datetime import date
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from core import fee_model
from core.audit import AuditLogger, AuditAction
from core.errors import InvalidArgumentError, NotFoundError
from core.models import (
    ComponentParameters,
    CursorPaginatedVec,
    CursorPaginationRequest,
    PriceComponent,
    SlotSubscriptionFee,
    SlotTransaction,
    Subscription,
    SubscriptionComponent,
    SubscriptionEvent,
    SubscriptionStatus,
    encode_cursor,
    tagged_document,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Service for subscription operations."""

    def __init__(self, postgres: PostgresClient, audit: AuditLogger):
        self.postgres = postgres
        self.audit = audit

    def get_by_id(self, tenant_id: UUID, subscription_id: UUID) -> Subscription:
        """
        Get subscription by ID.

        Raises:
            NotFoundError: If the tenant has no such subscription
        """
        row = self.postgres.execute_single(
            "SELECT * FROM subscriptions WHERE id = %s AND tenant_id = %s",
            (subscription_id, tenant_id)
        )

        if row is None:
            raise NotFoundError("Subscription", subscription_id)

        return Subscription.model_validate(row)

    def list_active(self, pagination: CursorPaginationRequest) -> CursorPaginatedVec[Subscription]:
        """One page of active subscriptions across tenants, ordered by id."""
        after_id = pagination.after_id()
        rows = self.postgres.execute(
            """
            SELECT * FROM subscriptions
            WHERE status = %s AND (%s::uuid IS NULL OR id > %s::uuid)
            ORDER BY id
            LIMIT %s
            """,
            (SubscriptionStatus.ACTIVE.value, after_id, after_id, pagination.limit + 1)
        )

        items = [Subscription.model_validate(row) for row in rows[:pagination.limit]]
        next_cursor = encode_cursor(items[-1].id) if len(rows) > pagination.limit else None
        return CursorPaginatedVec[Subscription](items=items, next_cursor=next_cursor)

    def list_components(self, subscription_id: UUID) -> list[SubscriptionComponent]:
        """Bound components in plan order (position, then id)."""
        rows = self.postgres.execute(
            """
            SELECT * FROM subscription_components
            WHERE subscription_id = %s
            ORDER BY position, id
            """,
            (subscription_id,)
        )
        return [SubscriptionComponent.model_validate(row) for row in rows]

    def bind_component(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        price_component: PriceComponent,
        parameters: ComponentParameters | None = None,
    ) -> SubscriptionComponent:
        """
        Bind a plan price component to a subscription, resolving its fee.

        Binding the same component again with the same parameters returns the
        existing binding. A component is resolved once: binding it again with
        different parameters is rejected.

        Raises:
            NotFoundError: If the subscription does not exist
            InvalidArgumentError: If the parameters do not resolve the fee or
                conflict with an existing binding
        """
        parameters = parameters or ComponentParameters()
        self.get_by_id(tenant_id, subscription_id)

        existing = self.postgres.execute_single(
            """
            SELECT * FROM subscription_components
            WHERE subscription_id = %s AND price_component_id = %s
            """,
            (subscription_id, price_component.id)
        )
        if existing is not None:
            bound = SubscriptionComponent.model_validate(existing)
            if bound.parameters != parameters:
                raise InvalidArgumentError(
                    f"Price component {price_component.id} is already bound with different parameters"
                )
            return bound

        period, fee = fee_model.resolve(
            price_component.fee,
            billing_period=parameters.billing_period,
            slot_count=parameters.initial_slot_count,
            committed_capacity=parameters.committed_capacity,
        )

        component_id = uuid4()
        with self.postgres.transaction() as tx:
            row = tx.execute_single(
                """
                INSERT INTO subscription_components (
                    id, subscription_id, price_component_id, name,
                    period, fee, parameters, position, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    component_id, subscription_id, price_component.id, price_component.name,
                    period.value, Json(tagged_document(fee)),
                    Json(parameters.model_dump(mode="json", exclude_none=True)),
                    price_component.position, now_utc()
                )
            )
            component = SubscriptionComponent.model_validate(row)

            self.audit.log_change(
                entity_type="subscription_component",
                entity_id=component.id,
                action=AuditAction.CREATE,
                changes={"created": component.model_dump(mode="json")},
                tenant_id=tenant_id,
                tx=tx,
            )

        logger.info(f"Bound price component {price_component.id} to subscription {subscription_id}")
        return component

    def get_current_slots(self, component: SubscriptionComponent, as_of: date) -> int:
        """
        Slot count of a slot component at a date.

        The latest transaction effective on or before `as_of` wins; without
        one the resolved initial slot count applies.
        """
        if not isinstance(component.fee, SlotSubscriptionFee):
            raise InvalidArgumentError(f"Component {component.id} is not a slot component")

        row = self.postgres.execute_single(
            """
            SELECT slots FROM slot_transactions
            WHERE component_id = %s AND effective_at <= %s
            ORDER BY effective_at DESC, created_at DESC
            LIMIT 1
            """,
            (component.id, as_of)
        )
        if row is None:
            return component.fee.initial_slots
        return row["slots"]

    def add_slot_transaction(
        self,
        tenant_id: UUID,
        component: SubscriptionComponent,
        slots: int,
        effective_at: date,
    ) -> SlotTransaction:
        """
        Record a new slot count for a slot component.

        Raises:
            InvalidArgumentError: If the count is outside the component's bounds
        """
        fee = component.fee
        if not isinstance(fee, SlotSubscriptionFee):
            raise InvalidArgumentError(f"Component {component.id} is not a slot component")
        if slots < 0:
            raise InvalidArgumentError("Slot count cannot be negative")
        if fee.min_slots is not None and slots < fee.min_slots:
            raise InvalidArgumentError(f"Slot count {slots} is below the minimum of {fee.min_slots}")
        if fee.max_slots is not None and slots > fee.max_slots:
            raise InvalidArgumentError(f"Slot count {slots} exceeds the quota of {fee.max_slots}")

        with self.postgres.transaction() as tx:
            row = tx.execute_single(
                """
                INSERT INTO slot_transactions (id, subscription_id, component_id, slots, effective_at, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (uuid4(), component.subscription_id, component.id, slots, effective_at, now_utc())
            )
            transaction = SlotTransaction.model_validate(row)

            self.audit.log_change(
                entity_type="slot_transaction",
                entity_id=transaction.id,
                action=AuditAction.CREATE,
                changes={"created": transaction.model_dump(mode="json")},
                tenant_id=tenant_id,
                tx=tx,
            )

        return transaction

    def list_events_for_date(
        self,
        subscription_id: UUID,
        event_date: date,
        tx: Transaction | None = None,
    ) -> list[SubscriptionEvent]:
        """Lifecycle events of a subscription dated on `event_date`, oldest first."""
        query = """
            SELECT * FROM subscription_events
            WHERE subscription_id = %s AND event_date = %s
            ORDER BY created_at, id
        """
        params = (subscription_id, event_date)
        rows = tx.execute(query, params) if tx is not None else self.postgres.execute(query, params)
        return [SubscriptionEvent.model_validate(row) for row in rows]

    def activate(self, tenant_id: UUID, subscription_id: UUID, tx: Transaction | None = None) -> bool:
        """
        Mark a pending subscription active.

        Returns:
            True if the subscription moved to active, False if it already was
            (or is no longer pending)
        """
        now = now_utc()
        query = """
            UPDATE subscriptions
            SET status = %s, activated_at = COALESCE(activated_at, %s), updated_at = %s
            WHERE id = %s AND tenant_id = %s AND status = %s
            RETURNING id
        """
        params = (
            SubscriptionStatus.ACTIVE.value, now, now,
            subscription_id, tenant_id, SubscriptionStatus.PENDING.value
        )
        if tx is not None:
            rows = tx.execute(query, params)
        else:
            rows = self.postgres.execute(query, params)

        if rows:
            self.audit.log_change(
                entity_type="subscription",
                entity_id=subscription_id,
                action=AuditAction.UPDATE,
                changes={"status": {"old": SubscriptionStatus.PENDING.value, "new": SubscriptionStatus.ACTIVE.value}},
                tenant_id=tenant_id,
                tx=tx,
            )
            logger.info(f"Subscription {subscription_id} activated")
        return bool(rows)
