"""
NETS QR Payment Client.

Handles:
- QR code requests (one retry on gateway errors)
- Transaction status queries
- Status classification
- Server-sent status stream for the QR page
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from decimal import Decimal
from enum import Enum
from typing import Any

import httpx
from loguru import logger

from storefront.core.config import settings
from storefront.core.exceptions import (
    PaymentConfigurationError,
    PaymentGatewayTimeout,
    PaymentProviderError,
)

RETRYABLE_STATUS_CODES = {502, 503, 504}

SUCCESS_WORDS = ("success", "approved", "completed")
PAYMENT_SUCCESS_WORDS = SUCCESS_WORDS + ("paid",)
FAILURE_WORDS = ("fail", "decline", "timeout", "expired", "cancel")
FAILED_TXN_STATUSES = {3, 4, 5}


class TxnStatus(str, Enum):
    """Classified state of a QR transaction."""

    PENDING = "pending"
    SUCCESS = "success"
    FAIL = "fail"


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def classify_txn_status(data: dict[str, Any] | None) -> TxnStatus:
    """
    Reduce a NETS status payload to success, fail or pending.

    An explicit non-"00" response code always means failure. Otherwise the
    numeric status fields and the status descriptions are checked for
    success and then failure vocabulary.
    """
    data = data or {}
    response_code = str(data.get("response_code") or "")
    txn_status = _as_int(data.get("txn_status"))
    payment_status = _as_int(data.get("payment_status"))
    status_text = str(data.get("txn_status_desc") or "").lower()
    payment_text = str(data.get("payment_status_desc") or "").lower()

    if response_code and response_code != "00":
        return TxnStatus.FAIL

    if (
        txn_status == 1
        or payment_status == 1
        or any(word in status_text for word in SUCCESS_WORDS)
        or any(word in payment_text for word in PAYMENT_SUCCESS_WORDS)
    ):
        return TxnStatus.SUCCESS

    if (
        txn_status in FAILED_TXN_STATUSES
        or any(word in status_text for word in FAILURE_WORDS)
        or any(word in payment_text for word in FAILURE_WORDS)
    ):
        return TxnStatus.FAIL

    return TxnStatus.PENDING


class NetsClient:
    """
    Async client for the NETS QR sandbox API.

    Usage:
        async with NetsClient() as nets:
            qr = await nets.request_qr(txn_id, Decimal("7.54"))
            status, raw = await nets.query_status(qr["txn_retrieval_ref"])
    """

    def __init__(
        self,
        api_key: str | None = None,
        project_id: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize NETS client.

        Args:
            api_key: NETS API key (default from settings)
            project_id: NETS project id (default from settings)
            timeout: Per-request timeout in seconds
            http_client: Pre-built HTTP client
        """
        self.api_key = api_key or settings.nets_api_key
        self.project_id = project_id or settings.nets_project_id
        self.timeout = timeout or settings.nets_request_timeout
        self._client = http_client

    async def __aenter__(self) -> "NetsClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    @property
    def headers(self) -> dict[str, str]:
        return {
            "api-key": self.api_key,
            "project-id": self.project_id,
        }

    async def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key or not self.project_id:
            raise PaymentConfigurationError("NETS credentials are not configured.")

        response = await self.client.post(url, json=body, headers=self.headers)
        response.raise_for_status()
        return response.json()

    async def _post_with_retry(
        self,
        url: str,
        body: dict[str, Any],
        retries: int = 1,
    ) -> dict[str, Any]:
        """
        POST with a bounded retry on gateway and timeout errors.

        Raises:
            PaymentGatewayTimeout: Gateway timeout after the last attempt
            PaymentProviderError: Any other transport or HTTP failure
        """
        for attempt in range(retries + 1):
            try:
                return await self._post(url, body)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status in RETRYABLE_STATUS_CODES and attempt < retries:
                    logger.warning(f"NETS returned {status}, retrying")
                    continue
                logger.error(f"NETS request failed with HTTP {status}")
                if status == 504:
                    raise PaymentGatewayTimeout() from e
                raise PaymentProviderError(f"NETS request failed with HTTP {status}.") from e
            except httpx.TimeoutException as e:
                if attempt < retries:
                    logger.warning("NETS request timed out, retrying")
                    continue
                logger.error("NETS request timed out")
                raise PaymentGatewayTimeout() from e
            except httpx.HTTPError as e:
                logger.error(f"NETS transport error: {e}")
                raise PaymentProviderError() from e

        raise PaymentProviderError()

    async def request_qr(self, txn_id: str, amount: Decimal) -> dict[str, Any]:
        """
        Request a QR code for ``amount``.

        Returns:
            The ``result.data`` section of the NETS response
        """
        body = {
            "txn_id": txn_id,
            "amt_in_dollars": f"{amount:.2f}",
            "notify_mobile": 0,
        }
        payload = await self._post_with_retry(settings.nets_qr_request_url, body, retries=1)
        return (payload.get("result") or {}).get("data") or {}

    async def query_status(
        self,
        txn_retrieval_ref: str,
        txn_id: str | None = None,
        txn_nets_qr_id: str | None = None,
    ) -> tuple[TxnStatus, dict[str, Any]]:
        """
        Query the transaction once and classify it.

        Raises:
            PaymentProviderError: On transport failure
        """
        body: dict[str, Any] = {"txn_retrieval_ref": txn_retrieval_ref}
        if txn_id:
            body["txn_id"] = txn_id
        if txn_nets_qr_id:
            body["txn_nets_qr_id"] = txn_nets_qr_id

        payload = await self._post_with_retry(settings.nets_qr_query_url, body, retries=0)
        data = (payload.get("result") or {}).get("data") or {}
        return classify_txn_status(data), data


class NetsStatusStream:
    """
    Polls NETS until the transaction settles one way or the other.

    States move from PENDING to SUCCESS or FAIL. Each tick waits
    ``poll_interval`` seconds, stops if the caller has gone away, then
    queries once. The sleep is the only suspension point, so cancelling the
    consuming task stops polling immediately.

    Usage:
        stream = NetsStatusStream(client, ref, txn_id)
        async for event in stream.events(request.is_disconnected):
            ...
    """

    def __init__(
        self,
        client: NetsClient,
        txn_retrieval_ref: str,
        txn_id: str | None = None,
        txn_nets_qr_id: str | None = None,
        poll_interval: float | None = None,
        timeout: float | None = None,
    ) -> None:
        self.client = client
        self.txn_retrieval_ref = txn_retrieval_ref
        self.txn_id = txn_id
        self.txn_nets_qr_id = txn_nets_qr_id
        self.poll_interval = settings.nets_poll_interval if poll_interval is None else poll_interval
        self.timeout = settings.nets_stream_timeout if timeout is None else timeout

        self.state = TxnStatus.PENDING
        self.polls = 0

    async def events(
        self,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield status events until a terminal state or the time budget runs out."""
        loop = asyncio.get_running_loop()
        started_at = loop.time()

        try:
            while self.state is TxnStatus.PENDING:
                await asyncio.sleep(self.poll_interval)

                if is_disconnected and await is_disconnected():
                    logger.info(f"NETS stream client left ({self.txn_retrieval_ref})")
                    return

                event = await self._poll()
                if event:
                    yield event

                if self.state is TxnStatus.PENDING and loop.time() - started_at >= self.timeout:
                    self.state = TxnStatus.FAIL
                    logger.warning(f"NETS stream timed out ({self.txn_retrieval_ref})")
                    yield {"fail": True}
        except asyncio.CancelledError:
            logger.info(f"NETS stream cancelled ({self.txn_retrieval_ref})")
            raise

    async def _poll(self) -> dict[str, Any] | None:
        self.polls += 1
        try:
            status, raw = await self.client.query_status(
                self.txn_retrieval_ref,
                self.txn_id,
                self.txn_nets_qr_id,
            )
        except PaymentProviderError as e:
            logger.error(f"Error polling NETS status: {e}")
            return None

        logger.debug(f"NETS poll {self.polls}: {status.value}")
        self.state = status
        return {status.value: True, "raw": raw}


# Singleton instance
_nets_client: NetsClient | None = None


def get_nets_client() -> NetsClient:
    """Get or create NETS client singleton."""
    global _nets_client
    if _nets_client is None:
        _nets_client = NetsClient()
    return _nets_client
