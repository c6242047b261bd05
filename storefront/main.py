"""
Storefront Checkout Pipeline - Main Application
FastAPI entry point for payment return handling, in-flight order storage and
conversion tracking
"""

import asyncio

from fastapi import FastAPI
import structlog

from storefront.config import settings
from storefront.dependencies import get_gateway, get_tracking_orchestrator
from storefront.middleware import CorrelationIdMiddleware
from storefront.routers import orders_router, payment_return_router, tracking_router
from storefront.services.monitoring import init_sentry, setup_logging

# Structured Logging Setup
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ]
)
logger = structlog.get_logger()

setup_logging()
init_sentry()

# FastAPI App
app = FastAPI(
    title="Storefront Checkout Pipeline",
    description="Payment verification, redundant order storage and conversion tracking",
    version="0.1.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)

# Register routers
app.include_router(payment_return_router)
app.include_router(orders_router)
app.include_router(tracking_router)

_background_tasks = set()


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    logger.info("startup", environment=settings.environment)

    # Sinks load in the background; track_* calls before then degrade gracefully
    task = asyncio.ensure_future(get_tracking_orchestrator().initialize())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    get_gateway().reset()
    logger.info("shutdown")


@app.get("/health")
async def health_check():
    """
    Health check reporting tracking readiness and gateway load.
    """
    orchestrator = get_tracking_orchestrator()
    return {
        "status": "healthy",
        "environment": settings.environment,
        "tracking": orchestrator.get_status(),
        "tracking_ready": orchestrator.is_ready(),
        "gateway": get_gateway().get_status(),
    }
