"""
Process-wide connection handles.

Entry points call open_resources() once at startup and Resources.close() on
shutdown; services receive the handles they need instead of importing globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import asyncpg

from shared.cache import Cache
from shared.config import Settings
from shared.events import EventPublisher
from shared.metrics import db_pool_free, db_pool_size
from shared.redis_client import RedisConnection

logger = logging.getLogger(__name__)


async def _init_db_connection(conn: asyncpg.Connection) -> None:
    # Avoid passing statement_timeout as a startup parameter (PgBouncer rejects it).
    await conn.execute("SET statement_timeout TO 30000")


async def create_pool(settings: Settings) -> asyncpg.Pool:
    if settings.database_url:
        return await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.pg_pool_min,
            max_size=settings.pg_pool_max,
            command_timeout=30,
            init=_init_db_connection,
        )
    return await asyncpg.create_pool(
        host=settings.pg_host,
        port=settings.pg_port,
        database=settings.pg_db,
        user=settings.pg_user,
        password=settings.pg_pass,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=30,
        init=_init_db_connection,
    )


def record_pool_stats(pool: asyncpg.Pool, service: str) -> None:
    try:
        db_pool_size.labels(service=service).set(pool.get_size())
        db_pool_free.labels(service=service).set(pool.get_idle_size())
    except AttributeError:
        pass


@dataclass
class Resources:
    pool: asyncpg.Pool
    redis: RedisConnection
    cache: Cache
    publisher: EventPublisher

    async def close(self) -> None:
        try:
            await self.redis.close()
        finally:
            await self.pool.close()
            logger.info("database pool closed")


async def open_resources(settings: Settings) -> Resources:
    """Open the database pool and Redis client.

    The pool is required; Redis is not, since cache and pub/sub degrade to
    no-ops while it is unreachable.
    """
    pool = await create_pool(settings)
    redis = RedisConnection(settings.redis_url)
    if not await redis.connect():
        logger.warning("starting without redis; cache and live updates degraded")
    return Resources(
        pool=pool,
        redis=redis,
        cache=Cache(redis),
        publisher=EventPublisher(redis),
    )
