"""
Redis pub/sub -> live-client rooms.

Each channel maps to one room family; the routing id comes from the event
envelope. Anything that cannot be routed is logged and dropped.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from redis.exceptions import RedisError

from broadcaster.rooms import RoomManager
from shared.constants import (
    ALL_CHANNELS,
    CHANNEL_ALERT_EVENTS,
    CHANNEL_DEVICE_EVENTS,
    CHANNEL_TELEMETRY_EVENTS,
    CLIENT_EVENT_ALERT_UPDATE,
    CLIENT_EVENT_DEVICE_UPDATE,
    CLIENT_EVENT_TELEMETRY_UPDATE,
    device_telemetry_room,
    org_alerts_room,
    org_devices_room,
)
from shared.logging import log_exception
from shared.redis_client import RedisConnection

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 2.0

# channel -> (envelope key holding the routing id, room builder, client event)
_ROUTES = {
    CHANNEL_DEVICE_EVENTS: ("organizationId", org_devices_room, CLIENT_EVENT_DEVICE_UPDATE),
    CHANNEL_TELEMETRY_EVENTS: ("deviceId", device_telemetry_room, CLIENT_EVENT_TELEMETRY_UPDATE),
    CHANNEL_ALERT_EVENTS: ("organizationId", org_alerts_room, CLIENT_EVENT_ALERT_UPDATE),
}


def route_event(channel: str, event: dict[str, Any]) -> Optional[tuple[str, str]]:
    """Return (room, client event name), or None when the event cannot be routed."""
    route = _ROUTES.get(channel)
    if route is None:
        return None
    id_key, room_for, client_event = route
    routing_id = event.get(id_key)
    if not routing_id:
        return None
    return room_for(str(routing_id)), client_event


async def handle_message(rooms: RoomManager, message: dict[str, Any]) -> int:
    """Rebroadcast one pub/sub message. Returns the number of clients reached."""
    channel = message.get("channel")
    try:
        event = json.loads(message.get("data"))
    except (TypeError, json.JSONDecodeError):
        logger.warning("dropping malformed event", extra={"channel": channel})
        return 0
    if not isinstance(event, dict):
        logger.warning("dropping malformed event", extra={"channel": channel})
        return 0

    target = route_event(channel, event)
    if target is None:
        logger.warning(
            "dropping unroutable event",
            extra={"channel": channel, "event_type": event.get("type")},
        )
        return 0

    room, client_event = target
    return await rooms.broadcast(room, client_event, event)


async def _wait_before_retry(stop_event: asyncio.Event) -> None:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=RECONNECT_DELAY_SECONDS)
    except asyncio.TimeoutError:
        pass


async def run_subscriber(
    redis: RedisConnection,
    rooms: RoomManager,
    stop_event: asyncio.Event,
    poll_timeout: float = 1.0,
) -> None:
    """Consume the event channels until stop_event is set, resubscribing after any failure."""
    while not stop_event.is_set():
        pubsub = None
        try:
            pubsub = redis.pubsub()
            await pubsub.subscribe(*ALL_CHANNELS)
            logger.info("subscribed to event channels", extra={"channels": list(ALL_CHANNELS)})
            while not stop_event.is_set():
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=poll_timeout,
                )
                if message is None:
                    continue
                await handle_message(rooms, message)
        except asyncio.CancelledError:
            raise
        except (RedisError, OSError, RuntimeError) as exc:
            logger.warning(
                "event subscription failed, retrying",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            await _wait_before_retry(stop_event)
        except Exception as exc:
            log_exception(logger, "event subscriber error, resubscribing", exc)
            await _wait_before_retry(stop_event)
        finally:
            if pubsub is not None:
                try:
                    await pubsub.aclose()
                except (RedisError, OSError):
                    pass
