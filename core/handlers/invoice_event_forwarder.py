"""
Handler forwarding invoice events to Valkey pub/sub.

Downstream consumers (webhook delivery, notifications) subscribe to the
channel. Publication is fire-and-forget: a Valkey failure raises into the
event bus, which logs it, and the invoice transition stays committed.
"""

import logging
from typing import Callable

from core.events import InvoiceEvent

logger = logging.getLogger(__name__)

FORWARDED_EVENTS = ("InvoiceCreated", "InvoiceFinalized", "InvoiceIssued")


def handle_invoice_event(valkey_client, channel: str) -> Callable:
    """
    Factory that returns an invoice event handler.

    Args:
        valkey_client: ValkeyClient instance
        channel: Pub/sub channel name

    Returns:
        Handler callable that publishes the event payload
    """

    def handler(event: InvoiceEvent):
        receivers = valkey_client.publish_json(channel, event.to_payload())
        logger.debug(
            "Forwarded %s for invoice %s to %d subscribers",
            event.__class__.__name__,
            event.invoice.id,
            receivers,
        )

    return handler


def register_invoice_event_forwarder(event_bus, valkey_client, channel: str) -> None:
    """Subscribe the forwarder to every invoice lifecycle event."""
    handler = handle_invoice_event(valkey_client, channel)
    for event_type in FORWARDED_EVENTS:
        event_bus.subscribe(event_type, handler)
