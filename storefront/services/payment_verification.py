"""
Payment Verification Controller
Confirms a returning shopper's payment with the backend exactly once and
decides where to send them next
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Mapping, Optional
from urllib.parse import quote

import httpx
import structlog

from storefront.config import settings
from storefront.models.payment import Redirect, VerificationResult
from storefront.middleware.correlation_id import correlation_headers, get_correlation_id
from storefront.services.monitoring.circuit_breakers import get_verify_breaker
from storefront.services.monitoring.error_tracking import add_breadcrumb, set_verification_context
from storefront.services.storage.order_store import RedundantOrderStore
from storefront.services.throttle import ThrottleGateway, throttled_fetch

logger = structlog.get_logger(__name__)

# Checked in this order; the first non-empty value wins
ORDER_ID_PARAMS = ["order_id", "orderId", "ORDER_ID"]

CONTINUE_LABELS = {
    "success": "Continue",
    "failed": "Try Again",
    "error": "Go to Cart",
}


class VerificationError(Exception):
    """Raised when the verify backend returns an unusable response."""


class VerificationState(str, Enum):
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


def extract_order_id(params: Mapping[str, str]) -> Optional[str]:
    """Return the order id from inbound query parameters, by fixed priority."""
    for name in ORDER_ID_PARAMS:
        value = params.get(name)
        if value:
            return value
    return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PaymentVerifier:
    """
    Client for the backend verify endpoint.

    Calls go through the throttle gateway's fetch wrapper and the verify
    circuit breaker. A gateway-suppressed failure (None) is reported as a
    VerificationError so the caller always gets a result or an exception.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        gateway: Optional[ThrottleGateway] = None,
        timeout: Optional[float] = None,
        breaker=None,
    ):
        self.base_url = (base_url or settings.verify_base_url).rstrip("/")
        self.client = client
        self.gateway = gateway
        self.timeout = timeout if timeout is not None else settings.verify_timeout_seconds
        self.breaker = breaker or get_verify_breaker()

    async def verify(self, order_id: str, cookie_header: Optional[str] = None) -> VerificationResult:
        """
        Ask the backend whether the order has been paid.

        Args:
            order_id: Storefront order ID
            cookie_header: Shopper's Cookie header, forwarded so the request is credentialed

        Raises:
            VerificationError: Suppressed transport failure or malformed response
            CircuitBreakerError: Verify backend circuit is open
            httpx.HTTPError: Non-suppressible transport failure
        """
        url = f"{self.base_url}/verify/{quote(order_id, safe='')}"
        headers = {"Accept": "application/json", **correlation_headers()}
        if cookie_header:
            headers["Cookie"] = cookie_header

        client = self.client or httpx.AsyncClient()
        try:
            with self.breaker.calling():
                response = await throttled_fetch(
                    client, "GET", url, gateway=self.gateway, timeout=self.timeout, headers=headers
                )
                if response is None:
                    raise VerificationError(f"Verify request for {order_id} did not complete")

            try:
                payload = response.json()
            except ValueError as e:
                raise VerificationError(f"Malformed verify response: {e}") from e

            if not isinstance(payload, dict):
                raise VerificationError("Malformed verify response: expected an object")
            return VerificationResult.model_validate(payload)
        finally:
            if self.client is None:
                await client.aclose()


class PaymentVerificationController:
    """
    One controller per payment-return page load.

    States: VERIFYING -> SUCCESS | FAILED | ERROR. Terminal states never
    change and every path ends in a redirect; the verify call is made at most
    once no matter how often ``run`` is awaited.
    """

    def __init__(
        self,
        verifier: PaymentVerifier,
        order_store: Optional[RedundantOrderStore] = None,
        confirmation_path: Optional[str] = None,
        cart_path: Optional[str] = None,
        payment_method: Optional[str] = None,
        now: Callable[[], str] = _utc_now_iso,
    ):
        self.verifier = verifier
        self.order_store = order_store
        self.confirmation_path = confirmation_path or settings.confirmation_path
        self.cart_path = cart_path or settings.cart_path
        self.payment_method = payment_method or settings.payment_method
        self.now = now

        self.state = VerificationState.VERIFYING
        self.order_id: Optional[str] = None
        self.order_details: Optional[dict] = None
        self.redirect: Optional[Redirect] = None
        self._task: Optional[asyncio.Future] = None
        self.logger = logger.bind(service="payment_verification")

    async def run(
        self,
        params: Mapping[str, str],
        current_url: str = "",
        cookie_header: Optional[str] = None,
    ) -> Redirect:
        """Resolve the page load into a redirect. Repeated calls share the first run."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._resolve(dict(params), current_url, cookie_header))
        return await asyncio.shield(self._task)

    async def _resolve(self, params: dict, current_url: str, cookie_header: Optional[str]) -> Redirect:
        self.logger.info("payment_return_loaded", params=params)

        order_id = extract_order_id(params)
        if not order_id and self.order_store is not None:
            order_id = self.order_store.get_id()
            if order_id:
                self.logger.info("order_id_recovered_from_storage", order_id=order_id)

        if not order_id:
            return self._no_order_id(params, current_url)

        self.order_id = order_id
        log = self.logger.bind(order_id=order_id)
        log.info("payment_verification_started")
        set_verification_context(order_id, self.state.value, get_correlation_id())

        try:
            result = await self.verifier.verify(order_id, cookie_header=cookie_header)
        except Exception as e:
            log.error("payment_verification_error", error=str(e), error_type=type(e).__name__)
            return self._verification_error(order_id, e)

        self.order_details = result.order
        if result.is_paid:
            log.info("payment_verified", status=result.status)
            return self._success(order_id, params, result)

        log.warning("payment_not_paid", status=result.status)
        return self._failed(order_id, params, result)

    def _finish(self, state: VerificationState, redirect: Redirect) -> Redirect:
        self.state = state
        self.redirect = redirect
        set_verification_context(self.order_id, state.value, get_correlation_id())
        add_breadcrumb("verification", f"Payment return resolved as {state.value}", data={"path": redirect.path})
        self.logger.info(
            "payment_return_redirect",
            state=state.value,
            order_id=self.order_id,
            url=redirect.url
        )
        return redirect

    def _no_order_id(self, params: dict, current_url: str) -> Redirect:
        timestamp = self.now()
        self.logger.error("payment_return_missing_order_id", params=params)
        return self._finish(
            VerificationState.ERROR,
            Redirect(
                path=self.cart_path,
                params={"error": "no_order_id", "source": "payment_return", "timestamp": timestamp},
                state={
                    "error": "Payment verification failed. No order ID found.",
                    "debug_info": {"all_params": params, "url": current_url, "timestamp": timestamp},
                },
            ),
        )

    def _success(self, order_id: str, params: dict, result: VerificationResult) -> Redirect:
        query = {
            "order_id": order_id,
            "payment_status": "success",
            "verified": "true",
            "timestamp": self.now(),
        }
        if params.get("cf_order_id"):
            query["cf_order_id"] = params["cf_order_id"]
        if params.get("payment_session_id"):
            query["payment_session_id"] = params["payment_session_id"]

        order = result.order or {}
        if order.get("order_amount") is not None:
            query["amount"] = str(order["order_amount"])
        if order.get("order_currency"):
            query["currency"] = str(order["order_currency"])

        return self._finish(
            VerificationState.SUCCESS,
            Redirect(
                path=self.confirmation_path,
                params=query,
                state={"order_details": result.order, "payment_method": self.payment_method},
            ),
        )

    def _failed(self, order_id: str, params: dict, result: VerificationResult) -> Redirect:
        query = {
            "error": "payment_failed",
            "order_id": order_id,
            "payment_status": result.status or "unknown",
            "timestamp": self.now(),
        }
        if params.get("cf_order_id"):
            query["cf_order_id"] = params["cf_order_id"]

        return self._finish(
            VerificationState.FAILED,
            Redirect(
                path=self.cart_path,
                params=query,
                state={"error": "Payment failed. Please try again.", "order_details": result.order},
            ),
        )

    def _verification_error(self, order_id: str, error: Exception) -> Redirect:
        return self._finish(
            VerificationState.ERROR,
            Redirect(
                path=self.cart_path,
                params={"error": "verification_failed", "order_id": order_id, "timestamp": self.now()},
                state={
                    "error": "Payment verification failed. Please try again.",
                    "debug_info": str(error) or type(error).__name__,
                },
            ),
        )

    @property
    def continue_label(self) -> Optional[str]:
        if self.state == VerificationState.VERIFYING:
            return None
        return CONTINUE_LABELS[self.state.value]

    def continue_redirect(self) -> Optional[Redirect]:
        """
        Manual fallback for when the automatic redirect is not observed.
        None while still verifying.
        """
        if self.state == VerificationState.VERIFYING:
            return None
        if self.state == VerificationState.SUCCESS:
            return Redirect(
                path=self.confirmation_path,
                state={"order_details": self.order_details, "payment_method": self.payment_method},
                replace=False,
            )
        return Redirect(path=self.cart_path, replace=False)
