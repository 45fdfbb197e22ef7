"""
Metering service client for aggregated usage queries.

The metering service ingests raw events and aggregates them per billable
metric; billing only asks it for totals over a period. Every call runs under
a request timeout, and transport failures, timeouts and error responses
raise InternalError. A missing aggregate is never reported as zero.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from uuid import UUID

import requests

from core.errors import InternalError

logger = logging.getLogger(__name__)


class MeteringClient:
    """Query aggregated usage from the metering HTTP API."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0, session: requests.Session | None = None):
        """
        Initialize with metering service credentials.

        Args:
            base_url: Metering API base URL
            api_key: API key for X-API-Key header
            timeout: Per-request timeout in seconds

        Raises:
            ValueError: If any credential is empty
        """
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def query_usage(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        metric_id: UUID,
        period_start: date,
        period_end: date,
        dimensions: dict[str, str] | None = None,
    ) -> Decimal:
        """
        Aggregated usage of one metric over [period_start, period_end).

        Raises:
            InternalError: On transport failure, timeout or a malformed response
        """
        payload = {
            "tenant_id": str(tenant_id),
            "subscription_id": str(subscription_id),
            "metric_id": str(metric_id),
            "period": {"from": period_start.isoformat(), "to": period_end.isoformat()},
            "dimensions": dimensions or {},
        }
        url = f"{self.base_url}/v1/usage/aggregate"

        try:
            response = self._session.post(
                url,
                json=payload,
                headers={"X-API-Key": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Metering request failed for metric {metric_id}: {e}")
            raise InternalError(f"Metering service unavailable: {e}") from e

        if response.status_code != 200:
            logger.error(f"Metering returned {response.status_code} for metric {metric_id}: {response.text}")
            raise InternalError(f"Metering service error: HTTP {response.status_code}")

        try:
            value = response.json()["value"]
            return Decimal(str(value))
        except (ValueError, KeyError, TypeError, InvalidOperation) as e:
            logger.error(f"Metering returned an invalid aggregate for metric {metric_id}: {response.text}")
            raise InternalError("Invalid response from metering service") from e
