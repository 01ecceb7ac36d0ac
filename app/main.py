from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi_pagination import add_pagination

from app.config import get_settings
from app.core.exceptions import ChannelError
from app.core.registry import ConnectorRegistry, build_connector_registry
from app.infra.logging_config import LoggingConfig, get_logger
from app.routers.channels_router import channels_router
from app.routers.conversations_router import conversations_router
from app.routers.webhooks import router as webhooks_router

logger = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry: ConnectorRegistry = app.state.connector_registry
    await registry.start_all()
    try:
        yield
    finally:
        await registry.stop_all()


async def channel_error_handler(request: Request, exc: ChannelError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    testing: bool = False, registry: Optional[ConnectorRegistry] = None
) -> FastAPI:
    settings = get_settings()
    if not testing:
        LoggingConfig()

    app = FastAPI(
        title="Switchboard",
        description="Multi-channel message ingestion and dispatch",
        lifespan=lifespan,
    )
    app.state.connector_registry = registry or build_connector_registry(settings)

    app.add_exception_handler(ChannelError, channel_error_handler)

    app.include_router(channels_router)
    app.include_router(conversations_router)
    app.include_router(webhooks_router)

    @app.get("/health", tags=["system"])
    def health() -> dict[str, str]:
        return {"status": "ok", "app": settings.app_name, "environment": settings.environment}

    add_pagination(app)
    return app
