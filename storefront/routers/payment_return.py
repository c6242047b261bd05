"""
Payment Return Router
Landing point after the payment gateway sends the shopper back
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from storefront.config import settings
from storefront.dependencies import get_payment_verifier, get_session_storage, order_store_for
from storefront.models.payment import PaymentReturnResponse
from storefront.services.payment_verification import PaymentVerificationController, PaymentVerifier
from storefront.services.storage import StorageService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payment"])

NAVIGATION_STATE_KEY = "navigation_state"


async def _resolve_payment_return(
    request: Request,
    verifier: PaymentVerifier,
    session_storage: StorageService,
) -> PaymentVerificationController:
    """Run one controller for this page load and hand its navigation state to the next view."""
    session_id: Optional[str] = request.cookies.get(settings.session_cookie_name)
    order_store = None
    if session_id and settings.recover_order_id_from_storage:
        order_store = order_store_for(session_id)

    controller = PaymentVerificationController(verifier, order_store=order_store)
    redirect = await controller.run(
        request.query_params,
        current_url=str(request.url),
        cookie_header=request.headers.get("cookie"),
    )

    if session_id:
        session_storage.scoped(session_id).set(NAVIGATION_STATE_KEY, redirect.state)
    return controller


@router.get("/payment-return")
async def payment_return(
    request: Request,
    verifier: PaymentVerifier = Depends(get_payment_verifier),
    session_storage: StorageService = Depends(get_session_storage),
):
    """
    Verify the payment and redirect to the confirmation or cart view.

    The redirect replaces the return page (303 See Other), so going back never
    re-triggers verification.
    """
    controller = await _resolve_payment_return(request, verifier, session_storage)
    logger.info(
        f"Payment return resolved - Order: {controller.order_id}, State: {controller.state.value}"
    )
    return RedirectResponse(url=controller.redirect.url, status_code=303)


@router.get("/api/payment/return", response_model=PaymentReturnResponse)
async def payment_return_json(
    request: Request,
    verifier: PaymentVerifier = Depends(get_payment_verifier),
    session_storage: StorageService = Depends(get_session_storage),
):
    """
    Same decision as /payment-return, as JSON, including the manual
    "continue" affordance for clients that could not follow the redirect.
    """
    controller = await _resolve_payment_return(request, verifier, session_storage)
    redirect = controller.redirect
    fallback = controller.continue_redirect()

    return PaymentReturnResponse(
        status=controller.state.value,
        order_id=controller.order_id,
        redirect_url=redirect.url,
        replace=redirect.replace,
        continue_url=fallback.url if fallback else None,
        continue_label=controller.continue_label,
        state=redirect.state,
    )
