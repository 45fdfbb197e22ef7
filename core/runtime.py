"""
Wiring of clients, services and workers.

build_runtime() assembles everything from already-constructed clients, so
tests pass fakes or mocks. connect() builds those clients from Vault secrets
and fails fast when one is missing.
"""

import logging
from dataclasses import dataclass

from clients import vault_client
from clients.invoicing_provider_client import InvoicingProviderClient
from clients.metering_client import MeteringClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers.invoice_event_forwarder import register_invoice_event_forwarder
from core.models import InvoicingProvider
from core.services.invoice_service import InvoiceService
from core.services.mrr_service import MrrService
from core.services.pricing_service import PricingService
from core.services.subscription_service import SubscriptionService
from core.usage import MeteringUsageSource, UsageSource
from core.workers import DraftWorker, FinalizeWorker, IssueWorker, PendingStatusWorker, PriceWorker

logger = logging.getLogger(__name__)


@dataclass
class BillingRuntime:
    """Every long-lived object of a billing process."""

    config: BillingConfig
    postgres: PostgresClient
    event_bus: EventBus
    subscriptions: SubscriptionService
    invoices: InvoiceService
    mrr: MrrService
    pricing: PricingService
    draft_worker: DraftWorker
    price_worker: PriceWorker
    pending_status_worker: PendingStatusWorker
    finalize_worker: FinalizeWorker
    issue_worker: IssueWorker

    @property
    def services(self) -> dict:
        """Services keyed the way the API router expects them."""
        return {
            "invoice": self.invoices,
            "mrr": self.mrr,
            "subscription": self.subscriptions,
        }


def build_runtime(
    config: BillingConfig,
    postgres: PostgresClient,
    providers: dict,
    usage_source: UsageSource | None = None,
    metering_client: MeteringClient | None = None,
    valkey: ValkeyClient | None = None,
) -> BillingRuntime:
    """
    Assemble services and workers around existing clients.

    Usage comes from usage_source when given, otherwise from the metering
    service through MeteringUsageSource. Invoice events are forwarded to
    Valkey only when a client is given.

    Raises:
        ValueError: If neither a usage source nor a metering client is given
    """
    if usage_source is None and metering_client is None:
        raise ValueError("A usage source or a metering client is required")

    event_bus = EventBus()
    if valkey is not None:
        register_invoice_event_forwarder(event_bus, valkey, config.event_channel)

    audit = AuditLogger(postgres)
    subscriptions = SubscriptionService(postgres, audit)
    mrr = MrrService(postgres, subscriptions)
    invoices = InvoiceService(postgres, audit, mrr, subscriptions)
    if usage_source is None:
        usage_source = MeteringUsageSource(subscriptions, metering_client)
    pricing = PricingService(subscriptions, usage_source)

    return BillingRuntime(
        config=config,
        postgres=postgres,
        event_bus=event_bus,
        subscriptions=subscriptions,
        invoices=invoices,
        mrr=mrr,
        pricing=pricing,
        draft_worker=DraftWorker(invoices, subscriptions, event_bus, config),
        price_worker=PriceWorker(invoices, pricing, config),
        pending_status_worker=PendingStatusWorker(invoices, config),
        finalize_worker=FinalizeWorker(invoices, pricing, event_bus, config),
        issue_worker=IssueWorker(invoices, providers, event_bus, config),
    )


def connect(config: BillingConfig | None = None) -> BillingRuntime:
    """
    Build a runtime from Vault secrets.

    Raises:
        VaultError: If a required secret is missing
    """
    config = config or BillingConfig()

    postgres = PostgresClient(
        vault_client.get_database_url(),
        statement_timeout_ms=config.statement_timeout_ms,
    )
    valkey = ValkeyClient(
        vault_client.get_valkey_url(),
        socket_timeout=config.valkey_socket_timeout_seconds,
        socket_connect_timeout=config.valkey_connect_timeout_seconds,
    )

    metering = vault_client.get_metering_config()
    metering_client = MeteringClient(
        metering["base_url"],
        metering["api_key"],
        timeout=config.http_timeout_seconds,
    )

    # Manual invoices never reach a provider
    providers = {}
    for provider in InvoicingProvider:
        if provider == InvoicingProvider.MANUAL:
            continue
        secrets = vault_client.get_invoicing_provider_config(provider.value)
        providers[provider] = InvoicingProviderClient(
            secrets["endpoint_url"],
            secrets["api_key"],
            secrets["hmac_secret"],
            timeout=config.http_timeout_seconds,
        )

    runtime = build_runtime(config, postgres, providers, metering_client=metering_client, valkey=valkey)
    logger.info(f"Billing runtime connected ({len(providers)} invoicing providers)")
    return runtime
