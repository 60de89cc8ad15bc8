"""
Invoicing provider client
Requests invoices for settled payments from the external provider
"""

import logging
from typing import Optional

import httpx

from ..config import (
    INVOICE_CURRENCY,
    INVOICE_PROVIDER_API_KEY,
    INVOICE_PROVIDER_URL,
    INVOICE_TIMEOUT_SECONDS,
)
from ..shared.errors import InvoicingError

logger = logging.getLogger(__name__)


class InvoiceProvider:
    """HTTP client for the invoicing provider; every call is bounded by a timeout"""

    def __init__(
        self,
        base_url: Optional[str] = INVOICE_PROVIDER_URL,
        api_key: Optional[str] = INVOICE_PROVIDER_API_KEY,
        timeout: float = INVOICE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def create_invoice(self, payload: dict) -> dict:
        """
        Request an invoice for a settlement.

        Returns:
            {"invoice_id": <provider reference>}

        Raises:
            InvoicingError: On timeout, transport failure, non-2xx status or a
                response without an invoice reference
        """
        if not self.base_url:
            raise InvoicingError("Invoicing provider is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/invoices", json=payload, headers=self._headers()
                )
        except httpx.TimeoutException as e:
            raise InvoicingError(f"Invoicing provider timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise InvoicingError(f"Invoicing provider unreachable: {e}") from e

        if response.status_code not in (200, 201):
            raise InvoicingError(
                f"Invoicing provider returned {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise InvoicingError("Invoicing provider returned an invalid response") from e
        if not isinstance(data, dict):
            raise InvoicingError(
                f"Invoicing provider returned an unexpected response: {str(data)[:200]}"
            )

        invoice_id = data.get("invoice_id") or data.get("id")
        if not invoice_id:
            raise InvoicingError("Invoicing provider response has no invoice reference")

        logger.info(f"✅ Invoice {invoice_id} issued for payment {payload.get('payment_id')}")
        return {"invoice_id": str(invoice_id)}


def get_invoice_provider() -> InvoiceProvider:
    """Dependency injection for the invoicing provider"""
    return InvoiceProvider()


def build_invoice_payload(payment) -> dict:
    """Request body for a settled payment; stored for retries"""
    return {
        "payment_id": payment.id,
        "client_id": payment.client_id,
        "method": payment.method,
        "currency": INVOICE_CURRENCY,
        "subtotal": payment.subtotal,
        "discounts": round(payment.deposit_amount + payment.giftcard_amount, 2),
        "total": payment.total_due,
        "items": [
            {
                "description": item.get("name"),
                "quantity": item["quantity"],
                "unit_price": item["unit_price"],
                "total": item["total"],
            }
            for item in payment.items or []
        ],
    }
