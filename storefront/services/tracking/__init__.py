"""
Tracking Module
Analytics sinks, their hook registry and the conversion tracking orchestrator
"""

from typing import Optional

from storefront.config import settings
from storefront.services.storage.storage_service import StorageService
from storefront.services.throttle import ThrottleGateway
from storefront.services.tracking.hooks import CollectorHook, HookRegistry, collector_loader
from storefront.services.tracking.orchestrator import TrackingOrchestrator, generate_transaction_id
from storefront.services.tracking.sinks import (
    AnalyticsSink,
    FacebookPixelSink,
    GoogleAdsSink,
    GoogleAnalyticsSink,
)


def build_orchestrator(
    gateway: ThrottleGateway,
    purchase_store: StorageService,
    registry: Optional[HookRegistry] = None,
) -> TrackingOrchestrator:
    """
    Wire the three sinks from settings.

    GA4 and Google Ads share the gtag hook; Facebook uses fbq.
    """
    registry = registry or HookRegistry()
    gtag_loader = collector_loader("gtag", settings.gtag_collector_url, gateway=gateway)
    fbq_loader = collector_loader("fbq", settings.fbq_collector_url, gateway=gateway)

    sinks = [
        GoogleAnalyticsSink(
            registry,
            tracking_id=settings.ga_measurement_id,
            loader=gtag_loader,
            load_timeout=settings.gtag_load_timeout_seconds,
        ),
        GoogleAdsSink(
            registry,
            tracking_id=settings.google_ads_id,
            conversion_id=settings.google_ads_conversion_id,
            loader=gtag_loader,
            load_timeout=settings.gtag_load_timeout_seconds,
        ),
        FacebookPixelSink(
            registry,
            tracking_id=settings.facebook_pixel_id,
            loader=fbq_loader,
            load_timeout=settings.fbq_load_timeout_seconds,
        ),
    ]
    return TrackingOrchestrator(sinks=sinks, gateway=gateway, purchase_store=purchase_store)


__all__ = [
    "AnalyticsSink",
    "CollectorHook",
    "FacebookPixelSink",
    "GoogleAdsSink",
    "GoogleAnalyticsSink",
    "HookRegistry",
    "TrackingOrchestrator",
    "build_orchestrator",
    "collector_loader",
    "generate_transaction_id",
]
