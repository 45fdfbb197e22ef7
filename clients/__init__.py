# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_valkey_url,
    get_metering_config,
    get_invoicing_provider_config,
)
from clients.postgres_client import PostgresClient, Transaction
from clients.valkey_client import ValkeyClient
from clients.metering_client import MeteringClient
from clients.invoicing_provider_client import InvoicingProviderClient, InvoicingProviderError
