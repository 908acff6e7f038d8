"""Process-wide service handles, built once at startup and passed to the routers."""

from __future__ import annotations

from dataclasses import dataclass

from .auth import TokenIdentityProvider
from .config import AppConfig
from .db import ThreadSafeConnection, init_db
from .services.ai_service import AIService
from .services.stream_broker import ResumableStreamBroker
from .services.stream_events import error_chunk, is_terminal
from .services.tracing import Tracer
from .services.web_search import SearchService


@dataclass
class ServiceContext:
    config: AppConfig
    db: ThreadSafeConnection
    broker: ResumableStreamBroker
    ai_service: AIService
    search: SearchService
    tracer: Tracer
    identity: TokenIdentityProvider

    async def aclose(self) -> None:
        await self.broker.close()
        await self.tracer.shutdown()
        await self.search.close()
        await self.ai_service.close()
        self.db.close()


def build_context(config: AppConfig, db: ThreadSafeConnection | None = None) -> ServiceContext:
    if db is None:
        db = init_db(config.app.data_dir / "chat.db")
    broker = ResumableStreamBroker(
        max_duration=config.streams.max_duration,
        retention=config.streams.retention,
        sweep_interval=config.streams.sweep_interval,
        error_chunk=error_chunk,
        is_terminal=is_terminal,
    )
    return ServiceContext(
        config=config,
        db=db,
        broker=broker,
        ai_service=AIService(config.ai),
        search=SearchService(config.search),
        tracer=Tracer(config.tracing),
        identity=TokenIdentityProvider(config.auth),
    )
