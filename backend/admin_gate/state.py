"""
Lifecycle-scoped collaborators of the gate.

Everything the gate needs is built once at application start and torn down
at shutdown. Nothing here is a module-level global; tests build their own
AppState and hand it to ``create_app``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from redis.asyncio import Redis as AsyncRedis
from sqlalchemy.ext.asyncio import AsyncEngine

from .auth.identity import IdentityProvider, TokenIdentityProvider
from .auth.role_cache import RedisRoleCache, RoleCache, RoleCacheBackend
from .auth.role_resolver import RoleResolver
from .config import Settings
from .database import create_engine, create_session_factory
from .infra.redis import get_async_redis_client
from .rpc.invoker import RemoteInvoker
from .rpc.transport import HttpxTransport
from .services.audit.recorder import AuditRecorder, SqlAlchemyAuditLogStore

logger = logging.getLogger("admin_gate")

AUDIT_DRAIN_TIMEOUT_SECONDS = 5.0


@dataclass
class AppState:
    identity: IdentityProvider
    resolver: RoleResolver
    recorder: AuditRecorder
    sign_in_path: str = "/login"
    app_root_path: str = "/"
    transport: HttpxTransport | None = None
    redis: AsyncRedis | None = None
    engine: AsyncEngine | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppState":
        if not settings.token_secret:
            raise ValueError("TOKEN_SECRET environment variable must be set")
        transport = HttpxTransport(
            base_url=settings.functions_url,
            api_key=settings.functions_api_key,
            timeout_seconds=settings.rpc_timeout_seconds,
        )
        redis_client: AsyncRedis | None = None
        cache: RoleCacheBackend
        if settings.redis_url:
            redis_client = get_async_redis_client(settings.redis_url)
            cache = RedisRoleCache(redis_client, ttl_seconds=settings.role_cache_ttl_seconds)
        else:
            cache = RoleCache(ttl_seconds=settings.role_cache_ttl_seconds)

        engine = create_engine(settings)
        recorder = AuditRecorder(SqlAlchemyAuditLogStore(create_session_factory(engine)))

        identity = TokenIdentityProvider(
            settings.token_secret,
            algorithm=settings.token_algorithm,
            audience=settings.token_audience,
        )
        return cls(
            identity=identity,
            resolver=RoleResolver(RemoteInvoker(transport), cache),
            recorder=recorder,
            sign_in_path=settings.sign_in_path,
            app_root_path=settings.app_root_path,
            transport=transport,
            redis=redis_client,
            engine=engine,
        )

    async def aclose(self) -> None:
        try:
            await asyncio.wait_for(self.recorder.drain(), timeout=AUDIT_DRAIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Audit writes still pending at shutdown count=%d", self.recorder.pending)
        await self.recorder.aclose()
        if self.transport is not None:
            await self.transport.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("Application state closed")
