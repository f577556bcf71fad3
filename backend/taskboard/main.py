"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from taskboard.api import router as api_router
from taskboard.api.errors import register_error_handlers
from taskboard.config import Settings, get_settings
from taskboard.db.session import async_session_factory, close_db, init_db
from taskboard.middleware.logging import LoggingMiddleware
from taskboard.middleware.request_id import RequestIDMiddleware
from taskboard.notifications.chat import build_chat_sink
from taskboard.notifications.email import build_email_sink
from taskboard.notifications.feed import InMemoryChangeFeed

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    logger.info("taskboard_api_starting", version=settings.app_version, environment=settings.environment)
    await init_db()

    yield

    logger.info("taskboard_api_stopping", subscribers=app.state.change_feed.subscriber_count)
    await close_db()


def configure_state(app: FastAPI, settings: Settings) -> None:
    """Process-wide collaborators shared by every request."""
    app.state.settings = settings
    app.state.change_feed = InMemoryChangeFeed(
        queue_size=settings.change_feed_queue_size,
        idle_timeout=settings.change_feed_idle_timeout_seconds,
    )
    app.state.email_sink = build_email_sink(settings)
    app.state.chat_sink = build_chat_sink(settings)
    app.state.session_factory = async_session_factory


async def health_check(request: Request) -> dict[str, str | int]:
    """Liveness probe for load balancers."""
    return {
        "status": "healthy",
        "version": request.app.state.settings.app_version,
        "feed_subscribers": request.app.state.change_feed.subscriber_count,
    }


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application with its middleware stack, routers and shared state."""
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Task approval and workflow engine for collaborative Kanban projects",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    configure_state(app, settings)
    register_error_handlers(app)

    # Last added runs first: proxy headers, then request id, then logging
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    app.include_router(api_router, prefix=settings.api_prefix)
    app.add_api_route("/health", health_check, methods=["GET"])

    return app


app = create_app()
