# backend/app/main.py
"""
FastAPI application for real-time update delivery.

Startup connects the shared pub/sub transport and the updates service;
shutdown closes live streams before the transport goes away.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.broadcast import connect_broadcast, disconnect_broadcast
from .core.config import is_running_tests, settings
from .errors import register_error_handlers
from .routes import health, prometheus
from .routes.v1 import updates as updates_v1
from .services.updates import init_updates_service, shutdown_updates_service

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = "Daycare Updates API"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{API_TITLE} starting up (environment={settings.environment})")
    if settings.is_testing or is_running_tests():
        logger.info("Running under pytest (test mode active)")

    try:
        await connect_broadcast()
    except Exception as e:
        # Publishes are logged as failed and streams close until the transport returns
        logger.error(f"[BROADCAST] Failed to initialize broadcaster: {e}")

    init_updates_service()
    logger.info("[UPDATES-STREAM] Updates service ready")

    yield

    logger.info(f"{API_TITLE} shutting down...")
    await shutdown_updates_service()

    try:
        await disconnect_broadcast()
    except Exception as e:
        logger.error(f"[BROADCAST] Error disconnecting broadcaster: {e}")


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials="*" not in settings.cors_allowed_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(prometheus.router)
app.include_router(updates_v1.router)
