"""
Invoice repository.

Invoices are created by the draft worker (or manually for backfills) and
then only move forward through their lifecycle. Every status-moving update
is a compare-and-swap on the current status: the UPDATE carries the
expected status in its WHERE clause, and a lost race returns False instead
of raising. Transitions the lifecycle never allows (finalized -> draft) are
rejected before any SQL runs.

Inserting a recurring or adjustment invoice derives its MRR movements in
the same transaction.
"""

import logging
from datetime import date
from typing import Any, List
from uuid import UUID, uuid4

import psycopg2.errors
from psycopg2.extras import Json
from pydantic import ValidationError

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction
from core.errors import DuplicateInvoiceError, InvalidArgumentError, NotFoundError, SerdeError
from core.models import (
    CursorPaginatedVec,
    CursorPaginationRequest,
    Invoice,
    InvoiceExternalStatus,
    InvoiceLine,
    InvoiceNew,
    InvoicePredicate,
    InvoiceStatus,
    InvoiceType,
    OrderBy,
    PaginatedVec,
    PaginationRequest,
    encode_cursor,
    lines_to_document,
    parse_lines,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Instant an invoice becomes finalize-ready: its date at midnight UTC plus its grace period
_FINALIZE_READY_AT_SQL = (
    "((invoice_date::timestamp AT TIME ZONE 'UTC') + make_interval(hours => grace_period_hours))"
)


def compute_totals(lines: list[InvoiceLine]) -> tuple[int, int, int]:
    """(subtotal, tax, total) in minor units. Tax is always zero here."""
    subtotal = sum(line.total for line in lines)
    tax = 0
    return subtotal, tax, subtotal + tax


def row_to_invoice(row: dict[str, Any]) -> Invoice:
    """
    Build an Invoice from a database row.

    Raises:
        SerdeError: If the row or its stored line item document is unreadable
    """
    data = dict(row)
    data["line_items"] = parse_lines(data.get("line_items"))
    try:
        return Invoice.model_validate(data)
    except ValidationError as e:
        raise SerdeError(f"Failed to read invoice {row.get('id')}: {e}", "invoice") from e


class InvoiceService:
    """Service for invoice operations."""

    def __init__(self, postgres: PostgresClient, audit: AuditLogger, mrr_service, subscriptions):
        self.postgres = postgres
        self.audit = audit
        self.mrr_service = mrr_service
        self.subscriptions = subscriptions

    # =========================================================================
    # INSERT
    # =========================================================================

    def insert(self, data: InvoiceNew) -> Invoice:
        """
        Insert one invoice and derive its MRR movements atomically.

        Raises:
            DuplicateInvoiceError: If a recurring invoice already exists for
                the subscription's invoice date
        """
        with self.postgres.transaction() as tx:
            return self._insert(tx, data)

    def insert_batch(self, data: list[InvoiceNew]) -> list[Invoice]:
        """Insert several invoices in one transaction; all or nothing."""
        with self.postgres.transaction() as tx:
            return [self._insert(tx, item) for item in data]

    def _insert(self, tx: Transaction, data: InvoiceNew) -> Invoice:
        subtotal, tax, total = compute_totals(data.line_items)
        invoice_id = uuid4()
        now = now_utc()

        try:
            row = tx.execute_single(
                """
                INSERT INTO invoices (
                    id, tenant_id, customer_id, subscription_id,
                    status, currency, invoice_date, invoice_type, invoicing_provider,
                    line_items, subtotal_cents, tax_amount_cents, total_cents,
                    days_until_due, grace_period_hours, plan_version_id,
                    data_updated_at, created_at, updated_at
                ) VALUES (
                    %s, %s, %s, %s,
                    %s, %s, %s, %s, %s,
                    %s, %s, %s, %s,
                    %s, %s, %s,
                    %s, %s, %s
                )
                RETURNING *
                """,
                (
                    invoice_id, data.tenant_id, data.customer_id, data.subscription_id,
                    data.status.value, data.currency.upper(), data.invoice_date,
                    data.invoice_type.value, data.invoicing_provider.value,
                    Json(lines_to_document(data.line_items)), subtotal, tax, total,
                    data.days_until_due, data.grace_period_hours, data.plan_version_id,
                    now if data.line_items else None, now, now
                )
            )
        except psycopg2.errors.UniqueViolation as e:
            raise DuplicateInvoiceError(
                f"Invoice already exists for subscription {data.subscription_id} on {data.invoice_date}"
            ) from e

        invoice = row_to_invoice(row)
        self.mrr_service.derive_for_invoice(tx, invoice)

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude={"line_items"})},
            tenant_id=invoice.tenant_id,
            tx=tx,
        )
        return invoice

    # =========================================================================
    # READ
    # =========================================================================

    def find_by_id(self, tenant_id: UUID, invoice_id: UUID) -> Invoice:
        """
        Get invoice by ID.

        Raises:
            NotFoundError: If the tenant has no such invoice
        """
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s AND tenant_id = %s",
            (invoice_id, tenant_id)
        )

        if row is None:
            raise NotFoundError("Invoice", invoice_id)

        return row_to_invoice(row)

    def list(
        self,
        tenant_id: UUID,
        pagination: PaginationRequest,
        order_by: OrderBy = OrderBy.DATE_DESC,
        status: InvoiceStatus | None = None,
        subscription_id: UUID | None = None,
        customer_id: UUID | None = None,
    ) -> PaginatedVec[Invoice]:
        """List a tenant's invoices with optional filters."""
        where = ["tenant_id = %s"]
        params: list = [tenant_id]
        if status is not None:
            where.append("status = %s")
            params.append(status.value)
        if subscription_id is not None:
            where.append("subscription_id = %s")
            params.append(subscription_id)
        if customer_id is not None:
            where.append("customer_id = %s")
            params.append(customer_id)
        where_sql = " AND ".join(where)

        total = self.postgres.execute_scalar(
            f"SELECT COUNT(*) FROM invoices WHERE {where_sql}",
            tuple(params)
        ) or 0

        rows = self.postgres.execute(
            f"""
            SELECT * FROM invoices
            WHERE {where_sql}
            ORDER BY {order_by.sql}
            LIMIT %s OFFSET %s
            """,
            tuple(params) + (pagination.per_page, pagination.offset)
        )

        return PaginatedVec[Invoice](
            items=[row_to_invoice(row) for row in rows],
            total_pages=-(-total // pagination.per_page),
            total_results=total,
        )

    def list_by_cursor_predicate(
        self,
        predicate: InvoicePredicate,
        pagination: CursorPaginationRequest,
    ) -> CursorPaginatedVec[Invoice]:
        """
        One page of invoices matching a predicate, across tenants, ordered by id.

        The next cursor is the last id of the page, so rows inserted while a
        worker walks the pages never shift the remaining ones.
        """
        where = ["status = ANY(%s)"]
        params: list = [[s.value for s in predicate.statuses]]

        if predicate.invoice_date_on_or_before is not None:
            where.append("invoice_date <= %s")
            params.append(predicate.invoice_date_on_or_before)
        if predicate.grace_elapsed_at is not None:
            where.append(f"{_FINALIZE_READY_AT_SQL} <= %s")
            params.append(predicate.grace_elapsed_at)
        if predicate.grace_running_at is not None:
            where.append(f"{_FINALIZE_READY_AT_SQL} > %s")
            params.append(predicate.grace_running_at)
        if predicate.issued is not None:
            where.append("issued = %s")
            params.append(predicate.issued)
        if predicate.issue_attempts_below is not None:
            where.append("issue_attempts < %s")
            params.append(predicate.issue_attempts_below)

        after_id = pagination.after_id()
        if after_id is not None:
            where.append("id > %s")
            params.append(after_id)

        rows = self.postgres.execute(
            f"""
            SELECT * FROM invoices
            WHERE {' AND '.join(where)}
            ORDER BY id
            LIMIT %s
            """,
            tuple(params) + (pagination.limit + 1,)
        )

        page_rows = rows[:pagination.limit]
        items = []
        failed_ids = []
        for row in page_rows:
            try:
                items.append(row_to_invoice(row))
            except SerdeError:
                logger.exception(
                    "Unreadable invoice %s (tenant %s) left out of the page", row["id"], row["tenant_id"]
                )
                failed_ids.append(UUID(str(row["id"])))

        next_cursor = None
        if len(rows) > pagination.limit:
            next_cursor = encode_cursor(UUID(str(page_rows[-1]["id"])))
        return CursorPaginatedVec[Invoice](items=items, next_cursor=next_cursor, failed_ids=failed_ids)

    def exists_for_date(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        invoice_date: date,
        invoice_type: InvoiceType = InvoiceType.RECURRING,
    ) -> bool:
        """Whether an invoice of this type exists for the subscription's invoice date."""
        row = self.postgres.execute_single(
            """
            SELECT 1 AS found FROM invoices
            WHERE tenant_id = %s AND subscription_id = %s AND invoice_date = %s AND invoice_type = %s
            LIMIT 1
            """,
            (tenant_id, subscription_id, invoice_date, invoice_type.value)
        )
        return row is not None

    # =========================================================================
    # LIFECYCLE UPDATES
    # =========================================================================

    def update_lines(self, tenant_id: UUID, invoice_id: UUID, lines: List[InvoiceLine]) -> bool:
        """
        Overwrite an open invoice's line items and totals.

        Returns:
            True if written, False if the invoice is no longer draft or pending

        Raises:
            NotFoundError: If the tenant has no such invoice
        """
        subtotal, tax, total = compute_totals(lines)
        now = now_utc()

        with self.postgres.transaction() as tx:
            row = tx.execute_single(
                """
                UPDATE invoices AS i
                SET line_items = %s, subtotal_cents = %s, tax_amount_cents = %s, total_cents = %s,
                    data_updated_at = %s, updated_at = %s
                FROM (SELECT id, total_cents FROM invoices WHERE id = %s AND tenant_id = %s) AS prev
                WHERE i.id = prev.id AND i.status = ANY(%s)
                RETURNING prev.total_cents AS previous_total
                """,
                (
                    Json(lines_to_document(lines)), subtotal, tax, total, now, now,
                    invoice_id, tenant_id,
                    [InvoiceStatus.DRAFT.value, InvoiceStatus.PENDING.value],
                )
            )

            if row is None:
                self._require_exists(tx, tenant_id, invoice_id)
                return False

            if row["previous_total"] != total:
                self.audit.log_change(
                    entity_type="invoice",
                    entity_id=invoice_id,
                    action=AuditAction.UPDATE,
                    changes={"total_cents": {"old": row["previous_total"], "new": total}},
                    tenant_id=tenant_id,
                    tx=tx,
                )
        return True

    def update_status_conditional(
        self,
        tenant_id: UUID,
        invoice_id: UUID,
        expected: InvoiceStatus,
        new_status: InvoiceStatus,
    ) -> bool:
        """
        Move an invoice from `expected` to `new_status` if it is still `expected`.

        Returns:
            True if this call moved the invoice, False if its status had
            already changed

        Raises:
            InvalidArgumentError: If the lifecycle never allows the transition
        """
        if not expected.can_transition_to(new_status):
            raise InvalidArgumentError(
                f"Invoice status cannot move from {expected.value} to {new_status.value}"
            )

        now = now_utc()
        finalized_at = now if new_status == InvoiceStatus.FINALIZED else None

        with self.postgres.transaction() as tx:
            rows = tx.execute(
                """
                UPDATE invoices
                SET status = %s, finalized_at = COALESCE(%s, finalized_at), updated_at = %s
                WHERE id = %s AND tenant_id = %s AND status = %s
                RETURNING id
                """,
                (new_status.value, finalized_at, now, invoice_id, tenant_id, expected.value)
            )
            if not rows:
                return False

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={"status": {"old": expected.value, "new": new_status.value}},
                tenant_id=tenant_id,
                tx=tx,
            )
        return True

    def finalize(self, tenant_id: UUID, invoice_id: UUID, lines: List[InvoiceLine]) -> Invoice | None:
        """
        Freeze final lines and totals and mark the invoice finalized.

        Returns:
            The finalized invoice, or None if it was no longer draft or
            pending (another run finalized or voided it)
        """
        subtotal, tax, total = compute_totals(lines)
        now = now_utc()

        with self.postgres.transaction() as tx:
            row = tx.execute_single(
                """
                UPDATE invoices AS i
                SET status = %s, finalized_at = %s,
                    line_items = %s, subtotal_cents = %s, tax_amount_cents = %s, total_cents = %s,
                    data_updated_at = %s, updated_at = %s
                FROM (SELECT id, status FROM invoices WHERE id = %s AND tenant_id = %s) AS prev
                WHERE i.id = prev.id AND i.status = ANY(%s)
                RETURNING i.*, prev.status AS previous_status
                """,
                (
                    InvoiceStatus.FINALIZED.value, now,
                    Json(lines_to_document(lines)), subtotal, tax, total, now, now,
                    invoice_id, tenant_id,
                    [InvoiceStatus.DRAFT.value, InvoiceStatus.PENDING.value],
                )
            )
            if row is None:
                return None

            previous_status = row.pop("previous_status")
            invoice = row_to_invoice(row)

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "status": {"old": previous_status, "new": InvoiceStatus.FINALIZED.value},
                    "total_cents": {"old": None, "new": total},
                },
                tenant_id=tenant_id,
                tx=tx,
            )
        return invoice

    def record_issue_attempt(
        self,
        tenant_id: UUID,
        invoice_id: UUID,
        success: bool,
        error: str | None = None,
        external_invoice_id: str | None = None,
    ) -> Invoice:
        """
        Record the outcome of one issuance attempt.

        Every attempt increments issue_attempts and stamps
        last_issue_attempt_at. Success marks the invoice issued; failure
        stores the error and leaves it for the next run.

        Raises:
            NotFoundError: If the tenant has no such invoice
            InvalidArgumentError: If the invoice is not finalized or already issued
        """
        now = now_utc()

        with self.postgres.transaction() as tx:
            if success:
                row = tx.execute_single(
                    """
                    UPDATE invoices
                    SET issued = true, issue_attempts = issue_attempts + 1,
                        last_issue_attempt_at = %s, last_issue_error = NULL,
                        external_invoice_id = COALESCE(%s, external_invoice_id),
                        external_status = %s, updated_at = %s
                    WHERE id = %s AND tenant_id = %s AND status = %s AND NOT issued
                    RETURNING *
                    """,
                    (
                        now, external_invoice_id, InvoiceExternalStatus.FINALIZED.value, now,
                        invoice_id, tenant_id, InvoiceStatus.FINALIZED.value,
                    )
                )
            else:
                row = tx.execute_single(
                    """
                    UPDATE invoices
                    SET issue_attempts = issue_attempts + 1,
                        last_issue_attempt_at = %s, last_issue_error = %s, updated_at = %s
                    WHERE id = %s AND tenant_id = %s AND status = %s AND NOT issued
                    RETURNING *
                    """,
                    (now, error, now, invoice_id, tenant_id, InvoiceStatus.FINALIZED.value)
                )

            if row is None:
                self._require_exists(tx, tenant_id, invoice_id)
                raise InvalidArgumentError(f"Invoice {invoice_id} is not awaiting issuance")

            invoice = row_to_invoice(row)
            changes = {"issue_attempts": {"old": invoice.issue_attempts - 1, "new": invoice.issue_attempts}}
            if success:
                changes["issued"] = {"old": False, "new": True}
            else:
                changes["last_issue_error"] = {"old": None, "new": error}
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes=changes,
                tenant_id=tenant_id,
                tx=tx,
            )
        return invoice

    def update_external_status(
        self,
        tenant_id: UUID,
        invoice_id: UUID,
        external_status: InvoiceExternalStatus,
    ) -> Invoice:
        """
        Store the status reported by the invoicing provider.

        A paid invoice activates its subscription in the same transaction.

        Raises:
            NotFoundError: If the tenant has no such invoice
        """
        now = now_utc()

        with self.postgres.transaction() as tx:
            row = tx.execute_single(
                """
                UPDATE invoices AS i
                SET external_status = %s, updated_at = %s
                FROM (SELECT id, external_status FROM invoices WHERE id = %s AND tenant_id = %s) AS prev
                WHERE i.id = prev.id
                RETURNING i.*, prev.external_status AS previous_external_status
                """,
                (external_status.value, now, invoice_id, tenant_id)
            )
            if row is None:
                raise NotFoundError("Invoice", invoice_id)

            previous = row.pop("previous_external_status")
            invoice = row_to_invoice(row)

            if external_status == InvoiceExternalStatus.PAID:
                self.subscriptions.activate(tenant_id, invoice.subscription_id, tx=tx)

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={"external_status": {"old": previous, "new": external_status.value}},
                tenant_id=tenant_id,
                tx=tx,
            )
        return invoice

    def void(self, tenant_id: UUID, invoice_id: UUID) -> bool:
        """
        Void an open invoice.

        Returns:
            True if voided, False if it was already finalized or void
        """
        invoice = self.find_by_id(tenant_id, invoice_id)
        if not invoice.status.can_transition_to(InvoiceStatus.VOID):
            return False
        return self.update_status_conditional(tenant_id, invoice_id, invoice.status, InvoiceStatus.VOID)

    def _require_exists(self, tx: Transaction, tenant_id: UUID, invoice_id: UUID) -> None:
        row = tx.execute_single(
            "SELECT 1 AS found FROM invoices WHERE id = %s AND tenant_id = %s",
            (invoice_id, tenant_id)
        )
        if row is None:
            raise NotFoundError("Invoice", invoice_id)
