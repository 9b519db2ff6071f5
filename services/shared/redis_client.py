"""Process-wide Redis connection shared by the cache and the event publisher."""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisConnection:
    """Owns one redis-py asyncio client with an explicit connect/close lifecycle."""

    def __init__(self, url: str):
        self._url = url
        self._client: Optional[aioredis.Redis] = None
        self._connected = False

    @property
    def client(self) -> Optional[aioredis.Redis]:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """Create the client and ping it.

        A failed ping keeps the client: redis-py reconnects on the next command,
        and callers already treat Redis errors as non-fatal.
        """
        if self._client is None:
            self._client = aioredis.Redis.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
                health_check_interval=30,
            )
        return await self.ping()

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.ping()
        except (RedisError, OSError) as exc:
            if self._connected:
                logger.warning("[redis] connection lost: %s", exc)
            else:
                logger.warning("[redis] connection failed: %s", exc)
            self._connected = False
            return False
        if not self._connected:
            logger.info("[redis] connected: %s", self._url.split("@")[-1])
        self._connected = True
        return True

    def pubsub(self):
        if self._client is None:
            raise RuntimeError("RedisConnection.connect() must be called before pubsub()")
        return self._client.pubsub(ignore_subscribe_messages=True)

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except (RedisError, OSError) as exc:
                logger.warning("[redis] close failed: %s", exc)
            self._client = None
        self._connected = False
        logger.info("[redis] connection closed")
