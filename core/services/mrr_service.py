"""
MRR ledger persistence.

derive_for_invoice() runs inside the invoice insert transaction: it turns
the subscription's events dated on the invoice date into ledger rows, bulk
inserts them and adds their sum to the subscription's running MRR total.
Any failure propagates and rolls the invoice insert back.
"""

import logging
from datetime import date
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient, Transaction
from core import mrr
from core.errors import NotFoundError
from core.models import Invoice, MrrMovementLog, PaginatedVec, PaginationRequest
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class MrrService:
    """Service for the MRR movement ledger."""

    def __init__(self, postgres: PostgresClient, subscriptions):
        self.postgres = postgres
        self.subscriptions = subscriptions

    def derive_for_invoice(self, tx: Transaction, invoice: Invoice) -> list[MrrMovementLog]:
        """
        Record the MRR movements attributed to a just-inserted invoice.

        Args:
            tx: The transaction that inserted the invoice
            invoice: The inserted invoice

        Returns:
            Inserted ledger rows (empty for invoice types that do not move MRR)
        """
        if not invoice.invoice_type.moves_mrr:
            return []

        subscription = tx.execute_single(
            "SELECT plan_version_id FROM subscriptions WHERE id = %s AND tenant_id = %s FOR UPDATE",
            (invoice.subscription_id, invoice.tenant_id)
        )
        if subscription is None:
            raise NotFoundError("Subscription", invoice.subscription_id)

        events = self.subscriptions.list_events_for_date(invoice.subscription_id, invoice.invoice_date, tx=tx)
        logs = mrr.build_movement_logs(invoice, events, subscription["plan_version_id"])
        if not logs:
            return []

        created_at = now_utc()
        rows = tx.execute_values(
            """
            INSERT INTO mrr_movement_logs (
                id, tenant_id, subscription_id, invoice_id, movement_type,
                net_mrr_change, currency, applies_to, plan_version_id, description, created_at
            ) VALUES %s
            RETURNING *
            """,
            [
                (
                    uuid4(), log.tenant_id, log.subscription_id, log.invoice_id, log.movement_type.value,
                    log.net_mrr_change, log.currency, log.applies_to, log.plan_version_id,
                    log.description, created_at,
                )
                for log in logs
            ]
        )

        delta = mrr.net_change(logs)
        tx.execute(
            """
            UPDATE subscriptions
            SET mrr_cents = mrr_cents + %s, updated_at = %s
            WHERE id = %s AND tenant_id = %s
            """,
            (delta, created_at, invoice.subscription_id, invoice.tenant_id)
        )

        logger.info(
            f"Recorded {len(rows)} MRR movements ({delta:+d}) for invoice {invoice.id} "
            f"of subscription {invoice.subscription_id}"
        )
        return [MrrMovementLog.model_validate(row) for row in rows]

    def list_logs(
        self,
        tenant_id: UUID,
        pagination: PaginationRequest,
        subscription_id: UUID | None = None,
        applies_from: date | None = None,
        applies_to: date | None = None,
    ) -> PaginatedVec[MrrMovementLog]:
        """List a tenant's ledger rows, newest first."""
        where = ["tenant_id = %s"]
        params: list = [tenant_id]
        if subscription_id is not None:
            where.append("subscription_id = %s")
            params.append(subscription_id)
        if applies_from is not None:
            where.append("applies_to >= %s")
            params.append(applies_from)
        if applies_to is not None:
            where.append("applies_to <= %s")
            params.append(applies_to)
        where_sql = " AND ".join(where)

        total = self.postgres.execute_scalar(
            f"SELECT COUNT(*) FROM mrr_movement_logs WHERE {where_sql}",
            tuple(params)
        ) or 0

        rows = self.postgres.execute(
            f"""
            SELECT * FROM mrr_movement_logs
            WHERE {where_sql}
            ORDER BY applies_to DESC, created_at DESC, id
            LIMIT %s OFFSET %s
            """,
            tuple(params) + (pagination.per_page, pagination.offset)
        )

        return PaginatedVec[MrrMovementLog](
            items=[MrrMovementLog.model_validate(row) for row in rows],
            total_pages=-(-total // pagination.per_page),
            total_results=total,
        )
