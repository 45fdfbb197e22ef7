"""
Audit trail for invoice and subscription changes.

Every mutation made by the repositories is logged here. The audit log is:
- Append-only (entries never modified or deleted)
- Tenant-attributed (whose data changed, and which actor changed it)
- Detailed (captures old and new values)

Entries can be written inside the caller's transaction so an audit row
exists exactly when its change committed.
"""

from enum import Enum
from uuid import UUID, uuid4
from typing import Any

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from utils.tenant_context import peek_current_tenant_id
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"


class AuditLogger:
    """
    Audit trail writer.

    IMPORTANT: Always use model_dump(mode="json") when passing Pydantic models
    to ensure UUIDs, decimals and datetimes are serialized to JSON-compatible
    strings.

    Usage:
        audit = AuditLogger(postgres)

        with postgres.transaction() as tx:
            ...
            audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={"created": invoice.model_dump(mode="json")},
                tenant_id=invoice.tenant_id,
                tx=tx,
            )

        history = audit.get_entity_history("invoice", invoice.id)
    """

    def __init__(self, postgres: PostgresClient, actor: str = "system"):
        self.postgres = postgres
        self.actor = actor

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        tenant_id: UUID | None = None,
        tx: Transaction | None = None,
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: Type of entity ("invoice", "subscription", etc.)
            entity_id: ID of the entity
            action: The action performed (CREATE, UPDATE)
            changes: The changes made (format depends on action)
            tenant_id: Owning tenant (defaults to current context)
            tx: Transaction to write in (defaults to its own)

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        """
        if tenant_id is None:
            tenant_id = peek_current_tenant_id()

        query = """
            INSERT INTO audit_log (id, tenant_id, actor, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """
        params = (
            uuid4(),
            tenant_id,
            self.actor,
            entity_type,
            entity_id,
            action.value,
            Json(changes),
            now_utc(),
        )
        if tx is not None:
            tx.execute(query, params)
        else:
            self.postgres.execute(query, params)

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Returns:
            List of audit entries, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, tenant_id, actor, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )
