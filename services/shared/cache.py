"""
Read-through cache helpers over Redis.

The cache is never the source of truth: every Redis failure is logged and
reported to the caller as a miss (reads) or ignored (writes and deletes).
Values are stored as JSON; timestamp columns are restored to datetimes on read.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from redis.exceptions import RedisError

from shared.metrics import cache_operations_total
from shared.redis_client import RedisConnection
from shared.utils import restore_timestamps, to_jsonable

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")
_DELETE_CHUNK = 500


def device_key(device_id: str) -> str:
    return f"device:{device_id}"


def device_list_key(organization_id: str) -> str:
    return f"devices:org:{organization_id}"


def telemetry_latest_key(device_id: str) -> str:
    return f"telemetry:{device_id}:latest"


class Cache:
    def __init__(self, connection: RedisConnection):
        self._conn = connection

    def _client(self, operation: str):
        client = self._conn.client
        if client is None:
            cache_operations_total.labels(operation=operation, result="error").inc()
        return client

    def _failed(self, operation: str, key: str, exc: Exception) -> None:
        cache_operations_total.labels(operation=operation, result="error").inc()
        logger.warning(
            "cache %s failed",
            operation,
            extra={"cache_key": key, "error_type": type(exc).__name__, "error": str(exc)},
        )

    async def get(self, key: str) -> Optional[Any]:
        client = self._client("get")
        if client is None:
            return None
        try:
            raw = await client.get(key)
        except (RedisError, OSError, UnicodeDecodeError) as exc:
            self._failed("get", key, exc)
            return None

        if raw is None:
            cache_operations_total.labels(operation="get", result="miss").inc()
            return None
        try:
            value = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            self._failed("get", key, exc)
            return None

        cache_operations_total.labels(operation="get", result="hit").inc()
        return restore_timestamps(value)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        client = self._client("set")
        if client is None:
            return
        data = json.dumps(to_jsonable(value))
        try:
            if ttl_seconds:
                await client.setex(key, ttl_seconds, data)
            else:
                await client.set(key, data)
        except (RedisError, OSError) as exc:
            self._failed("set", key, exc)
            return
        cache_operations_total.labels(operation="set", result="ok").inc()

    async def delete(self, key: str) -> None:
        client = self._client("delete")
        if client is None:
            return
        try:
            await client.delete(key)
        except (RedisError, OSError) as exc:
            self._failed("delete", key, exc)
            return
        cache_operations_total.labels(operation="delete", result="ok").inc()

    async def invalidate_pattern(self, prefix: str) -> int:
        """Delete every key starting with `prefix`. Returns the number of keys removed."""
        client = self._client("invalidate")
        if client is None:
            return 0
        match = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        removed = 0
        try:
            batch: list[str] = []
            async for key in client.scan_iter(match=match, count=_DELETE_CHUNK):
                batch.append(key)
                if len(batch) >= _DELETE_CHUNK:
                    removed += await client.delete(*batch)
                    batch = []
            if batch:
                removed += await client.delete(*batch)
        except (RedisError, OSError) as exc:
            self._failed("invalidate", prefix, exc)
            return removed
        cache_operations_total.labels(operation="invalidate", result="ok").inc()
        return removed
