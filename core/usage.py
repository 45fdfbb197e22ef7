"""
Usage source: slot counts and aggregated usage for pricing.

MeteringUsageSource is the production implementation. MockUsageSource is an
explicit in-memory stand-in for tests and local runs; it is the only source
that answers zero for data it does not know about.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from uuid import UUID

from core.errors import InvalidArgumentError
from core.models.line_item import InvoiceLinePeriod

logger = logging.getLogger(__name__)


class UsageSource(ABC):
    @abstractmethod
    def fetch_slots(self, tenant_id: UUID, subscription_id: UUID, component_id: UUID, as_of: date) -> int:
        """Slot count of a slot component at a date."""

    @abstractmethod
    def fetch_usage(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        metric_id: UUID,
        dimension_filters: dict[str, str],
        period: InvoiceLinePeriod,
    ) -> Decimal:
        """Aggregated usage of a metric over the half-open period."""


class MeteringUsageSource(UsageSource):
    """
    Slots from the subscription store, usage from the metering service.

    Failures of either raise InternalError; nothing is defaulted.
    """

    def __init__(self, subscriptions, metering_client):
        self.subscriptions = subscriptions
        self.metering_client = metering_client

    def fetch_slots(self, tenant_id: UUID, subscription_id: UUID, component_id: UUID, as_of: date) -> int:
        for component in self.subscriptions.list_components(subscription_id):
            if component.id == component_id:
                return self.subscriptions.get_current_slots(component, as_of)
        raise InvalidArgumentError(f"Component {component_id} is not bound to subscription {subscription_id}")

    def fetch_usage(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        metric_id: UUID,
        dimension_filters: dict[str, str],
        period: InvoiceLinePeriod,
    ) -> Decimal:
        value = self.metering_client.query_usage(
            tenant_id,
            subscription_id,
            metric_id,
            period.start,
            period.end,
            dimension_filters,
        )
        if value < 0:
            logger.warning(f"Metering returned negative usage {value} for metric {metric_id}")
        return value


class MockUsageSource(UsageSource):
    """
    In-memory usage source.

    Usage:
        source = MockUsageSource()
        source.set_usage(metric_id, Decimal("249"))
        source.set_usage(metric_id, Decimal("12"), dimensions={"region": "eu"})
        source.set_slots(component_id, 10)
    """

    def __init__(self):
        self._slots: dict[UUID, int] = {}
        self._usage: dict[tuple[UUID, frozenset, date | None, date | None], Decimal] = {}

    def set_slots(self, component_id: UUID, slots: int) -> None:
        self._slots[component_id] = slots

    def set_usage(
        self,
        metric_id: UUID,
        value: Decimal,
        dimensions: dict[str, str] | None = None,
        period: InvoiceLinePeriod | None = None,
    ) -> None:
        """Usage for a metric; without a period it answers for any period."""
        start, end = (period.start, period.end) if period is not None else (None, None)
        self._usage[(metric_id, frozenset((dimensions or {}).items()), start, end)] = value

    def fetch_slots(self, tenant_id: UUID, subscription_id: UUID, component_id: UUID, as_of: date) -> int:
        return self._slots.get(component_id, 0)

    def fetch_usage(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        metric_id: UUID,
        dimension_filters: dict[str, str],
        period: InvoiceLinePeriod,
    ) -> Decimal:
        dims = frozenset(dimension_filters.items())
        exact = self._usage.get((metric_id, dims, period.start, period.end))
        if exact is not None:
            return exact
        return self._usage.get((metric_id, dims, None, None), Decimal(0))
