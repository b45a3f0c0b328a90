import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from telehook.cleanup import capture_cleanup_task, log_cleanup_task
from telehook.config import Settings
from telehook.database import open_db
from telehook.dependencies import get_settings
from telehook.logging_setup import configure_logging
from telehook.router import router
from telehook.services import build_services

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level, settings.log_format)
        app.state.ready = False
        app.state.db = await open_db(settings.db_path)
        app.state.http = httpx.AsyncClient(timeout=settings.delivery_timeout_seconds)
        services = build_services(app.state.db, app.state.http, settings)
        app.state.services = services
        await services.templates.warm_up()
        tasks = [
            asyncio.create_task(capture_cleanup_task(services.captures, settings)),
            asyncio.create_task(log_cleanup_task(services.log_store, settings)),
        ]
        app.state.ready = True
        yield
        app.state.ready = False
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await services.notifier.drain()
        await app.state.http.aclose()
        await app.state.db.close()

    app = FastAPI(lifespan=lifespan)
    app.include_router(router)

    @app.exception_handler(Exception)
    async def internal_fault(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        content: dict = {"message": "Internal server error"}
        if settings.development:
            content["details"] = [f"{type(exc).__name__}: {exc}"]
        return JSONResponse(status_code=500, content=content)

    return app
