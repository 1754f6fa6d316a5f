import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from time import time
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from ireporter.core.config import Settings, settings as default_settings
from ireporter.core.database import Database
from ireporter.core.events import IncidentEventPublisher, incident_event_listener
from ireporter.core.exceptions import register_exception_handlers
from ireporter.core.logging_config import setup_logging
from ireporter.core.websocket import ConnectionManager
from ireporter.routers import auth, incidents, notifications, users
from ireporter.services.incidents import IncidentService

logger = logging.getLogger(__name__)


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time()
        response = await call_next(request)
        duration_ms = int((time() - start) * 1000)
        logger.info("%s %s -> %s (%d ms)", request.method, request.url.path, response.status_code, duration_ms)
        return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    app = FastAPI(title="iReporter API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggerMiddleware)
    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(incidents.router)
    app.include_router(notifications.router)

    db = Database.from_settings(settings)
    publisher = IncidentEventPublisher.from_url(settings.REDIS_URL, settings.INCIDENT_EVENTS_CHANNEL)

    app.state.settings = settings
    app.state.db = db
    app.state.publisher = publisher
    app.state.connections = ConnectionManager()
    app.state.incident_service = IncidentService(
        db,
        publisher=publisher,
        delete_policy=settings.INCIDENT_DELETE_POLICY,
        timeout=settings.DB_OPERATION_TIMEOUT_SECONDS,
    )
    app.state.listener_task = None

    @app.on_event("startup")
    async def startup():
        await db.init()
        await db.create_all()
        if publisher.enabled:
            app.state.listener_task = asyncio.create_task(
                incident_event_listener(publisher, app.state.connections)
            )
        logger.info("iReporter API started (delete policy: %s)", settings.INCIDENT_DELETE_POLICY)

    @app.on_event("shutdown")
    async def shutdown():
        task = app.state.listener_task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await publisher.close()
        await db.close()

    @app.get("/")
    async def root():
        return {"message": "iReporter API is running"}

    @app.get("/health")
    async def health():
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()


def run():
    uvicorn.run("ireporter.main:app", host="0.0.0.0", port=default_settings.API_PORT)
