"""
PayPal Payment Client - Orders v2 API.

Handles:
- OAuth client-credentials tokens
- Order creation (intent CAPTURE)
- Order capture
"""

from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from storefront.core.config import settings
from storefront.core.exceptions import PaymentConfigurationError, PaymentProviderError


class PayPalClient:
    """
    Async PayPal REST client.

    Usage:
        paypal = PayPalClient()
        order_id = await paypal.create_order(Decimal("7.54"), "SGD")
        capture = await paypal.capture_order(order_id)
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        api_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize PayPal client.

        Args:
            client_id: REST app client id (default from settings)
            client_secret: REST app secret (default from settings)
            api_url: API base URL, sandbox by default
            http_client: Pre-built HTTP client
        """
        self.client_id = client_id or settings.paypal_client_id
        self.client_secret = client_secret or settings.paypal_client_secret
        self.api_url = (api_url or settings.paypal_api_url).rstrip("/")
        self._client = http_client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.paypal_timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _send(self, action: str, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.client.request(method, f"{self.api_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"PayPal {action} transport error: {e}")
            raise PaymentProviderError(f"PayPal {action} failed.") from e

        if response.is_error:
            logger.error(f"PayPal {action} failed: {response.status_code} {response.text}")
            raise PaymentProviderError(f"PayPal {action} failed: {response.text}")

        return response.json()

    async def get_access_token(self) -> str:
        """Exchange client credentials for a bearer token."""
        if not self.client_id or not self.client_secret:
            raise PaymentConfigurationError("Missing PayPal client credentials")

        data = await self._send(
            "auth",
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        return data["access_token"]

    async def _authorized_headers(self) -> dict[str, str]:
        token = await self.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def create_order(
        self,
        amount: Decimal,
        currency: str | None = None,
        return_url: str | None = None,
        cancel_url: str | None = None,
    ) -> str:
        """
        Create a remote order for the buyer to approve.

        Returns:
            PayPal order id
        """
        body: dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {
                        "currency_code": currency or settings.shop_currency,
                        "value": f"{amount:.2f}",
                    }
                }
            ],
        }

        application_context = {}
        if return_url:
            application_context["return_url"] = return_url
        if cancel_url:
            application_context["cancel_url"] = cancel_url
        if application_context:
            body["application_context"] = application_context

        data = await self._send(
            "order create",
            "POST",
            "/v2/checkout/orders",
            json=body,
            headers=await self._authorized_headers(),
        )
        logger.info(f"PayPal order created: {data.get('id')}")
        return data["id"]

    async def capture_order(self, order_id: str) -> dict[str, Any]:
        """Capture funds for an approved order."""
        return await self._send(
            "capture",
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            headers=await self._authorized_headers(),
        )


# Singleton instance
_paypal_client: PayPalClient | None = None


def get_paypal_client() -> PayPalClient:
    """Get or create PayPal client singleton."""
    global _paypal_client
    if _paypal_client is None:
        _paypal_client = PayPalClient()
    return _paypal_client
