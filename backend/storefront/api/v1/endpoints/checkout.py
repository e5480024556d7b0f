"""
Checkout API Endpoints.

Shipping and payment selection, the PayPal approve/capture pair and the
NETS QR flow with its server-sent status stream.
"""

from typing import Any, AsyncIterator

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.exceptions import PaymentProviderError
from storefront.core.security import require_user
from storefront.core.session import SessionState, SessionUser, get_session, render
from storefront.modules.payments.base import CheckoutOutcome
from storefront.modules.payments.nets import NetsStatusStream, get_nets_client
from storefront.modules.shop.checkout import CheckoutForm, CheckoutOrchestrator

router = APIRouter()


# ==================== Schemas ====================


class PayPalCaptureRequest(BaseModel):
    """Approved PayPal order to capture."""

    orderID: str | None = None


def _respond(session: SessionState, outcome: CheckoutOutcome) -> dict[str, Any]:
    return render(session, **outcome.to_dict())


# ==================== Checkout ====================


@router.get("/checkout")
async def get_checkout(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Cart summary and available payment methods."""
    outcome = CheckoutOrchestrator(db, session).summary()
    return _respond(session, outcome)


@router.post("/checkout")
async def submit_checkout(
    form: CheckoutForm,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """
    Submit shipping and payment method.

    Posting again with card details completes a card checkout.
    """
    outcome = await CheckoutOrchestrator(db, session).process(form)
    return _respond(session, outcome)


# ==================== PayPal ====================


@router.get("/checkout/paypal")
async def get_paypal_checkout(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    outcome = CheckoutOrchestrator(db, session).paypal_summary()
    return _respond(session, outcome)


@router.post("/checkout/paypal/orders")
async def create_paypal_order(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Create the remote order the PayPal buttons approve."""
    order_id = await CheckoutOrchestrator(db, session).create_paypal_order()
    return {"id": order_id}


@router.post("/checkout/paypal/capture")
async def capture_paypal_order(
    request: PayPalCaptureRequest,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Capture an approved PayPal order and place the order."""
    outcome = await CheckoutOrchestrator(db, session).capture_paypal(request.orderID)
    return _respond(session, outcome)


# ==================== NETS QR ====================


@router.post("/nets-qr")
async def generate_nets_qr(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Request a QR code for the current cart total."""
    outcome = await CheckoutOrchestrator(db, session).generate_nets_qr()
    return _respond(session, outcome)


@router.get("/nets-qr/stream/{txn_retrieval_ref}")
async def stream_nets_status(
    txn_retrieval_ref: str,
    request: Request,
    session: SessionState = Depends(get_session),
) -> StreamingResponse:
    """
    Server-sent status events for a QR transaction.

    Emits ``{"success": true}`` or ``{"fail": true}`` once the payment
    settles, or ``{"fail": true}`` when the stream times out.
    """
    payment = session.nets_payment
    stream = NetsStatusStream(
        get_nets_client(),
        txn_retrieval_ref,
        txn_id=payment.txn_id if payment else None,
        txn_nets_qr_id=payment.txn_nets_qr_id if payment else None,
    )

    async def event_source() -> AsyncIterator[str]:
        async for event in stream.events(request.is_disconnected):
            yield f"data: {orjson.dumps(event).decode()}\n\n"
        logger.debug(f"NETS stream for {txn_retrieval_ref} closed after {stream.polls} poll(s)")

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/nets-qr/status/{txn_retrieval_ref}")
async def get_nets_status(
    txn_retrieval_ref: str,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Single status query for clients that cannot hold a stream open."""
    try:
        return await CheckoutOrchestrator(db, session).nets_status(txn_retrieval_ref)
    except PaymentProviderError as e:
        logger.error(f"NETS status query failed for {txn_retrieval_ref}: {e}")
        raise HTTPException(status_code=500, detail="Unable to fetch NETS status.") from None


@router.get("/nets-qr/success")
async def nets_success(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Finalize a confirmed QR payment; repeat visits return the same order."""
    outcome = await CheckoutOrchestrator(db, session).finalize_nets()
    return _respond(session, outcome)


@router.get("/nets-qr/fail")
async def nets_fail(
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    return render(session, state="failed", detail="Payment failed or timed out.")
