"""Domain event publishing over Redis pub/sub.

Publishing is a side effect of the operation that triggers it: a failure is
logged and counted here and never raised back into the caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from redis.exceptions import RedisError

from shared.metrics import events_published_total
from shared.redis_client import RedisConnection
from shared.utils import format_timestamp, now_utc, to_jsonable

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Envelope published on a channel; organizationId/deviceId route it to rooms."""

    type: str
    payload: Any
    organization_id: Optional[str] = None
    device_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: format_timestamp(now_utc()))

    def to_dict(self) -> dict:
        body: dict[str, Any] = {
            "type": self.type,
            "payload": to_jsonable(self.payload),
            "timestamp": self.timestamp,
        }
        if self.organization_id is not None:
            body["organizationId"] = str(self.organization_id)
        if self.device_id is not None:
            body["deviceId"] = str(self.device_id)
        return body

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class EventPublisher:
    def __init__(self, connection: RedisConnection):
        self._conn = connection

    async def publish(
        self,
        channel: str,
        event_type: str,
        payload: Any,
        organization_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> bool:
        """Publish one event. Returns False (never raises) when delivery fails."""
        event = Event(
            type=event_type,
            payload=payload,
            organization_id=organization_id,
            device_id=device_id,
        )
        client = self._conn.client
        if client is None:
            events_published_total.labels(channel=channel, result="error").inc()
            logger.warning(
                "event dropped, redis not connected",
                extra={"channel": channel, "event_type": event_type},
            )
            return False

        try:
            receivers = await client.publish(channel, event.to_json())
        except (RedisError, OSError, TypeError, ValueError) as exc:
            events_published_total.labels(channel=channel, result="error").inc()
            logger.warning(
                "event publish failed",
                extra={
                    "channel": channel,
                    "event_type": event_type,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return False

        events_published_total.labels(channel=channel, result="ok").inc()
        logger.debug(
            "event published",
            extra={"channel": channel, "event_type": event_type, "receivers": receivers},
        )
        return True
