"""Typed exceptions for billing failures.

InvalidArgumentError and NotFoundError are caller errors and are surfaced to
the API as 4xx. InternalError marks transport, storage and usage-source
failures; a worker page that hits one is retried on the next scheduled run.
SerdeError means a persisted fee or line-item document could not be read.
"""


class BillingError(Exception):
    """Base class for billing core errors."""


class InvalidArgumentError(BillingError):
    """Malformed or contradictory input. Never retried."""


class NotFoundError(BillingError):
    """Referenced entity does not exist for the tenant."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InternalError(BillingError):
    """
    Storage, network or usage-source failure.

    The message is for logs only. API callers receive an opaque error.
    """


class SerdeError(BillingError):
    """
    A persisted JSON document failed to (de)serialize.

    Indicates data corruption or schema drift. Always logged loudly,
    never skipped silently.
    """

    def __init__(self, message: str, document_kind: str):
        self.document_kind = document_kind
        super().__init__(f"{message} ({document_kind})")


class DuplicateInvoiceError(InvalidArgumentError):
    """An invoice already exists for the subscription's invoice date."""
