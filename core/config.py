"""Billing core configuration."""

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Tunables for the invoicing workers and their collaborators.

    Durations are in their natural units (days for scheduling windows,
    hours for grace periods, seconds for network timeouts).
    """

    # Draft worker
    draft_lookback_days: int = Field(
        default=7,
        description="How far back a period start may lie and still get its draft invoice",
        ge=0,
        le=31,
    )

    # Pagination
    worker_page_size: int = Field(
        default=100,
        description="Rows fetched per cursor page by every worker",
        ge=1,
        le=1000,
    )

    # Finalization
    default_grace_period_hours: int = Field(
        default=24,
        description="Grace period before an invoice whose date has passed is finalized",
        ge=0,
        le=24 * 31,
    )

    # Issuance
    max_issue_attempts: int = Field(
        default=5,
        description="Issue attempts before an invoice is left for manual follow-up",
        ge=1,
        le=50,
    )

    # Timeouts
    statement_timeout_ms: int = Field(
        default=15000,
        description="PostgreSQL statement_timeout applied to every pooled connection",
        ge=100,
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for metering and invoicing provider HTTP calls",
        gt=0,
        le=120,
    )
    valkey_socket_timeout_seconds: float = Field(
        default=5.0,
        description="Read/write timeout on the Valkey socket",
        gt=0,
        le=60,
    )
    valkey_connect_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for establishing the Valkey connection",
        gt=0,
        le=60,
    )

    # Events
    event_channel: str = Field(
        default="billing.invoices",
        description="Valkey pub/sub channel receiving invoice lifecycle events",
        min_length=1,
    )
