"""
Process-wide service instances
Created lazily on first use and handed to routers through FastAPI dependencies,
so tests can override any of them
"""

import uuid
from typing import Optional

from fastapi import Request, Response

from storefront.config import settings
from storefront.services.payment_verification import PaymentVerifier
from storefront.services.storage import (
    MemoryBackend,
    RedundantOrderStore,
    StorageService,
    create_persistent_backend,
)
from storefront.services.throttle import ThrottleGateway, throttle_gateway
from storefront.services.tracking import TrackingOrchestrator, build_orchestrator

_persistent_storage: Optional[StorageService] = None
_session_storage: Optional[StorageService] = None
_tracking_orchestrator: Optional[TrackingOrchestrator] = None
_payment_verifier: Optional[PaymentVerifier] = None


def get_gateway() -> ThrottleGateway:
    return throttle_gateway


def get_persistent_storage() -> StorageService:
    global _persistent_storage
    if _persistent_storage is None:
        _persistent_storage = StorageService(
            create_persistent_backend(settings.redis_url), prefix=settings.storage_prefix
        )
    return _persistent_storage


def get_session_storage() -> StorageService:
    global _session_storage
    if _session_storage is None:
        _session_storage = StorageService(MemoryBackend(), prefix=settings.storage_prefix)
    return _session_storage


def get_tracking_orchestrator() -> TrackingOrchestrator:
    global _tracking_orchestrator
    if _tracking_orchestrator is None:
        _tracking_orchestrator = build_orchestrator(
            gateway=get_gateway(),
            purchase_store=get_session_storage(),
        )
    return _tracking_orchestrator


def get_payment_verifier() -> PaymentVerifier:
    global _payment_verifier
    if _payment_verifier is None:
        _payment_verifier = PaymentVerifier(gateway=get_gateway())
    return _payment_verifier


def get_session_id(request: Request, response: Response) -> str:
    """Browser session id from the session cookie, issuing one when missing."""
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        session_id = uuid.uuid4().hex
        response.set_cookie(settings.session_cookie_name, session_id, httponly=True, samesite="lax")
    return session_id


def order_store_for(session_id: str) -> RedundantOrderStore:
    return RedundantOrderStore(
        persistent=get_persistent_storage().scoped(session_id),
        session=get_session_storage().scoped(session_id),
    )
