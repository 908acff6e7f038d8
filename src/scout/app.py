"""FastAPI application factory with lifespan management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import AppConfig, load_config
from .context import ServiceContext, build_context

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    context: ServiceContext | None = getattr(app.state, "context", None)
    if context is None:
        context = build_context(app.state.config)
        app.state.context = context
    context.broker.start()
    if not context.config.auth.users:
        logger.warning("No API users configured; every request will be rejected with 401")
    logger.info("Tracing %s", "enabled" if context.tracer.enabled else "disabled")

    yield

    await context.aclose()


def create_app(config: AppConfig | None = None, context: ServiceContext | None = None) -> FastAPI:
    if context is not None:
        config = context.config
    if config is None:
        config = load_config()

    app = FastAPI(title="Scout", version=__version__, lifespan=lifespan)
    app.state.config = config
    if context is not None:
        app.state.context = context

    origin = f"http://{config.app.host}:{config.app.port}"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin, "http://127.0.0.1:" + str(config.app.port), "http://localhost:" + str(config.app.port)],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Stream-Id"],
    )

    from .routers import chat, chats

    app.include_router(chat.router, prefix="/api")
    app.include_router(chats.router, prefix="/api")

    return app
