"""FastAPI application entry point — wires everything together.

Usage:
    python -m carsure.main

Serves the appointment API, the notification API and the live
notification socket; runs the expiry sweeper in the background.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from carsure.admin.router import router as admin_router
from carsure.api.errors import register_exception_handlers
from carsure.config import settings
from carsure.db.engine import db_lifespan
from carsure.events.audit import audit_on_event
from carsure.events.bus import emit, start_event_system, stop_event_system, subscribe, unsubscribe
from carsure.notifications.channel import router as channel_router
from carsure.notifications.pubsub import notification_publisher
from carsure.notifications.registry import connection_registry
from carsure.notifications.router import router as notification_router
from carsure.scheduling.expiry import start_expiry_sweeper, stop_expiry_sweeper
from carsure.scheduling.router import router as appointment_router
from carsure.scheduling.router import stats_router
from carsure.schemas.events import EventType, SystemEvent

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if not settings.is_production else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting CarSure appointments (env=%s)", settings.environment)

    # 1. Database + Redis
    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Event system
        await start_event_system()
        subscribe(audit_on_event)
        logger.info("Event system started, audit subscriber registered")
        await emit(SystemEvent(
            event_type=EventType.SYSTEM_STARTUP,
            actor_id="system",
            actor_role="system",
            data={"environment": settings.environment},
            source_module="main",
        ))

        # 3. Cross-process notification relay
        await notification_publisher.start()
        logger.info("Notification relay started")

        # 4. Expiry sweeper
        start_expiry_sweeper()

        try:
            yield
        finally:
            # Shutdown in reverse order
            logger.info("Shutting down CarSure appointments...")

            await stop_expiry_sweeper()
            await notification_publisher.stop()
            await emit(SystemEvent(
                event_type=EventType.SYSTEM_SHUTDOWN,
                actor_id="system",
                actor_role="system",
                data={"socket_rooms": connection_registry.room_count},
                source_module="main",
            ))
            await stop_event_system()
            unsubscribe(audit_on_event)
            logger.info("Event system stopped")

    logger.info("CarSure appointments shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    app = FastAPI(
        title="CarSure DZ Appointments API",
        description="Workshop inspection booking for the CarSure DZ marketplace",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(appointment_router)
    app.include_router(stats_router)
    app.include_router(notification_router)
    app.include_router(admin_router)
    app.include_router(channel_router)

    upload_dir = Path(settings.storage.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount(settings.storage.public_url_prefix, StaticFiles(directory=upload_dir), name="uploads")

    @app.get("/health")
    async def health_check() -> dict[str, str | int]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "environment": settings.environment,
            "socketRooms": connection_registry.room_count,
        }

    return app


app = create_app()


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "carsure.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
