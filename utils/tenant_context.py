"""Propagate tenant identity through the call stack using contextvars.

API requests set the tenant from the request; workers set it per invoice
while they process rows that belong to different tenants.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_tenant_id: ContextVar[UUID | None] = ContextVar("current_tenant_id", default=None)


def get_current_tenant_id() -> UUID:
    """
    Get current tenant ID from context.

    Raises RuntimeError if no tenant context is set. Tenant-scoped code
    running without a tenant is a bug, not an empty result.
    """
    tenant_id = _current_tenant_id.get()
    if tenant_id is None:
        raise RuntimeError(
            "No tenant context set. This usually means tenant-scoped code "
            "is running outside of a request or worker iteration."
        )
    return tenant_id


def peek_current_tenant_id() -> UUID | None:
    """Current tenant ID, or None when no context is set."""
    return _current_tenant_id.get()


def set_current_tenant_id(tenant_id: UUID) -> None:
    """Set current tenant ID in context."""
    _current_tenant_id.set(tenant_id)


def clear_current_tenant_id() -> None:
    """
    Clear tenant context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_tenant_id.set(None)


@contextmanager
def tenant_context(tenant_id: UUID):
    """
    Context manager for temporarily setting tenant context.

    Example:
        for invoice in page.items:
            with tenant_context(invoice.tenant_id):
                price(invoice)
    """
    previous = _current_tenant_id.get()
    set_current_tenant_id(tenant_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_tenant_id()
        else:
            set_current_tenant_id(previous)
