from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from orderdesk.api.desk import router as desk_router
from orderdesk.api.health import router as health_router
from orderdesk.config import Settings, get_settings
from orderdesk.core.logging_utils import setup_logging
from orderdesk.infrastructure.container import Desk, build_desk

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, *, desk: Optional[Desk] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        current = desk or build_desk(settings)
        app.state.desk = current
        app.state.orchestrator = current.orchestrator
        app.state.ledger = current.ledger
        app.state.watchers = current.watchers
        app.state.metrics = current.metrics
        await current.start()
        logger.info("Desk started | service=%s", settings.SERVICE_NAME)
        try:
            yield
        finally:
            await current.stop()
            logger.info("Desk stopped | service=%s", settings.SERVICE_NAME)

    app = FastAPI(title="Order Desk", lifespan=lifespan)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests"""
        start_time = time.time()
        logger.info("Request: %s %s", request.method, request.url.path)

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info("Response: %s - %.4fs", response.status_code, process_time)
        response.headers["X-Process-Time"] = str(process_time)
        return response

    app.include_router(health_router)
    app.include_router(desk_router)
    return app


app = create_app()
