"""
Invoicing provider client for issuing finalized invoices.

Uses HMAC-SHA256 signature for request authentication. The provider answers
with its own invoice id, which is stored as the invoice's external id.
"""

import hashlib
import hmac
import json
import logging

import requests

from core.errors import InternalError
from core.models.invoice import Invoice
from core.models.line_item import lines_to_document

logger = logging.getLogger(__name__)


class InvoicingProviderError(InternalError):
    """Raised when the provider rejects or cannot be reached for an issuance."""


class InvoicingProviderClient:
    """Issue invoices to an external provider with HMAC signature verification."""

    def __init__(self, endpoint_url: str, api_key: str, hmac_secret: str, timeout: float = 10.0):
        """
        Initialize with provider credentials.

        Args:
            endpoint_url: Full URL to the provider's issuance endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            timeout: Per-request timeout in seconds

        Raises:
            ValueError: If any credential is empty
        """
        if not endpoint_url:
            raise ValueError("endpoint_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def sign(self, payload_json: str) -> str:
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _sign_and_send(self, payload: dict) -> dict:
        """
        Sign payload with HMAC and send to the provider.

        Args:
            payload: Dict to send as JSON

        Returns:
            Decoded response body

        Raises:
            InvoicingProviderError: On any failure
        """
        payload_json = json.dumps(payload, separators=(",", ":"))

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": self.sign(payload_json),
        }

        try:
            response = requests.post(
                self.endpoint_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Invoicing provider connection failed: {e}")
            raise InvoicingProviderError(f"Connection failed: {e}") from e

        try:
            response_data = response.json()
        except ValueError as e:
            logger.error(f"Invoicing provider returned invalid JSON: {response.text}")
            raise InvoicingProviderError("Invalid response from provider") from e

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Invoicing provider error: {error_msg}")
            raise InvoicingProviderError(f"Provider error: {error_msg}")

        return response_data

    def issue_invoice(self, invoice: Invoice) -> str:
        """
        Issue a finalized invoice.

        Args:
            invoice: Finalized invoice with frozen lines

        Returns:
            The provider's id for the issued invoice

        Raises:
            InvoicingProviderError: On any failure
        """
        payload = {
            "invoice_id": str(invoice.id),
            "tenant_id": str(invoice.tenant_id),
            "customer_id": str(invoice.customer_id),
            "currency": invoice.currency,
            "invoice_date": invoice.invoice_date.isoformat(),
            "days_until_due": invoice.days_until_due,
            "subtotal": invoice.subtotal_cents,
            "tax_amount": invoice.tax_amount_cents,
            "total": invoice.total_cents,
            "line_items": lines_to_document(invoice.line_items),
        }
        response_data = self._sign_and_send(payload)

        external_id = response_data.get("external_invoice_id")
        if not external_id:
            raise InvoicingProviderError("Provider response is missing external_invoice_id")

        logger.info(f"Invoice {invoice.id} issued as {external_id}")
        return external_id
