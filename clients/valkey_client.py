"""
Valkey (Redis-compatible) client for invoice event publication.

Simple wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import json
import logging
from typing import Any

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.publish_json("billing.invoices", {"type": "InvoiceFinalized"})
    """

    def __init__(
        self,
        url: str,
        client: redis.Redis | None = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
    ):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            client: Pre-built redis client (tests)
            socket_timeout: Seconds before a blocked read or write gives up
            socket_connect_timeout: Seconds before connecting gives up

        Raises:
            redis.ConnectionError: If connection fails
            redis.TimeoutError: If Valkey does not answer in time
        """
        self._client = client or redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
        )
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def publish(self, channel: str, message: str) -> int:
        """
        Publish a message to a pub/sub channel.

        Returns the number of subscribers that received it.
        """
        return self._client.publish(channel, message)

    def publish_json(self, channel: str, payload: dict[str, Any]) -> int:
        """Publish a JSON-serialized payload. Non-JSON values are stringified."""
        return self.publish(channel, json.dumps(payload, default=str, separators=(",", ":")))

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
