import asyncio
import json

import pytest

from broadcaster import subscriber
from broadcaster.subscriber import handle_message, route_event, run_subscriber

pytestmark = [pytest.mark.unit]


class RecordingRooms:
    def __init__(self):
        self.sent = []

    async def broadcast(self, room, event, data):
        self.sent.append((room, event, data))
        return 1


def test_route_device_events_to_org_room():
    assert route_event("device:events", {"organizationId": "o1"}) == ("org:o1:devices", "device:update")


def test_route_telemetry_events_to_device_room():
    assert route_event("telemetry:events", {"deviceId": "d1"}) == ("device:d1:telemetry", "telemetry:update")


def test_route_alert_events_to_org_alert_room():
    assert route_event("alert:events", {"organizationId": "o1", "deviceId": "d1"}) == (
        "org:o1:alerts",
        "alert:update",
    )


def test_route_requires_routing_id():
    assert route_event("device:events", {"deviceId": "d1"}) is None
    assert route_event("telemetry:events", {"organizationId": "o1"}) is None
    assert route_event("other:events", {"organizationId": "o1"}) is None


async def test_handle_message_broadcasts_envelope():
    rooms = RecordingRooms()
    event = {"type": "telemetry:received", "deviceId": "d1", "payload": {}}

    sent = await handle_message(rooms, {"channel": "telemetry:events", "data": json.dumps(event)})

    assert sent == 1
    assert rooms.sent == [("device:d1:telemetry", "telemetry:update", event)]


@pytest.mark.parametrize(
    "data",
    ["not json", json.dumps([1, 2]), json.dumps({"type": "device:updated"}), None],
)
async def test_handle_message_drops_bad_events(data):
    rooms = RecordingRooms()
    assert await handle_message(rooms, {"channel": "device:events", "data": data}) == 0
    assert rooms.sent == []


class FakePubSub:
    def __init__(self, messages, stop_event):
        self.messages = list(messages)
        self.stop_event = stop_event
        self.channels = ()
        self.closed = False

    async def subscribe(self, *channels):
        self.channels = channels

    async def get_message(self, ignore_subscribe_messages=True, timeout=1.0):
        if self.messages:
            return self.messages.pop(0)
        self.stop_event.set()
        return None

    async def aclose(self):
        self.closed = True


class FakeConnection:
    def __init__(self, pubsub):
        self._pubsub = pubsub

    def pubsub(self):
        return self._pubsub


async def test_run_subscriber_consumes_until_stopped():
    stop_event = asyncio.Event()
    event = {"type": "device:updated", "organizationId": "o1"}
    pubsub = FakePubSub([{"channel": "device:events", "data": json.dumps(event)}], stop_event)
    rooms = RecordingRooms()

    await asyncio.wait_for(run_subscriber(FakeConnection(pubsub), rooms, stop_event), timeout=1)

    assert pubsub.channels == ("device:events", "telemetry:events", "alert:events")
    assert rooms.sent == [("org:o1:devices", "device:update", event)]
    assert pubsub.closed is True


async def test_run_subscriber_retries_after_error(monkeypatch):
    monkeypatch.setattr(subscriber, "RECONNECT_DELAY_SECONDS", 0.01)
    stop_event = asyncio.Event()
    attempts = []

    class FlakyConnection:
        def pubsub(self):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("not connected")
            return FakePubSub([], stop_event)

    await asyncio.wait_for(run_subscriber(FlakyConnection(), RecordingRooms(), stop_event), timeout=1)
    assert len(attempts) == 2


async def test_run_subscriber_resubscribes_after_undecodable_payload(monkeypatch):
    monkeypatch.setattr(subscriber, "RECONNECT_DELAY_SECONDS", 0.01)
    stop_event = asyncio.Event()
    event = {"type": "device:updated", "organizationId": "o1"}
    created = []

    class UndecodablePubSub(FakePubSub):
        async def get_message(self, ignore_subscribe_messages=True, timeout=1.0):
            raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    class Connection:
        def pubsub(self):
            if not created:
                pubsub = UndecodablePubSub([], stop_event)
            else:
                pubsub = FakePubSub([{"channel": "device:events", "data": json.dumps(event)}], stop_event)
            created.append(pubsub)
            return pubsub

    rooms = RecordingRooms()
    await asyncio.wait_for(run_subscriber(Connection(), rooms, stop_event), timeout=1)

    assert len(created) == 2
    assert created[0].closed is True
    assert rooms.sent == [("org:o1:devices", "device:update", event)]
