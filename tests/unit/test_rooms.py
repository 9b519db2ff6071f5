from types import SimpleNamespace

import pytest

from broadcaster.rooms import RoomManager

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


class FakeWebSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.messages = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("stale")
        self.messages.append(payload)


async def test_connect_accepts_and_tracks():
    manager = RoomManager()
    ws = FakeWebSocket()
    conn = await manager.connect(ws)
    assert ws.accepted is True
    assert manager.connection_count == 1
    assert conn.rooms == set()


async def test_broadcast_reaches_room_members_only():
    manager = RoomManager()
    ws_a, ws_b = FakeWebSocket(), FakeWebSocket()
    a = await manager.connect(ws_a)
    await manager.connect(ws_b)
    manager.join(a, "org:o1:devices")

    sent = await manager.broadcast("org:o1:devices", "device:update", {"type": "device:updated"})

    assert sent == 1
    assert ws_a.messages == [{"event": "device:update", "data": {"type": "device:updated"}}]
    assert ws_b.messages == []


async def test_leave_removes_empty_room():
    manager = RoomManager()
    conn = await manager.connect(FakeWebSocket())
    manager.join(conn, "device:d1:telemetry")
    manager.leave(conn, "device:d1:telemetry")
    assert "device:d1:telemetry" not in manager.rooms
    assert await manager.broadcast("device:d1:telemetry", "telemetry:update", {}) == 0


async def test_failed_send_drops_stale_client():
    manager = RoomManager()
    good = await manager.connect(FakeWebSocket())
    stale = await manager.connect(FakeWebSocket(fail=True))
    for conn in (good, stale):
        manager.join(conn, "org:o1:alerts")

    sent = await manager.broadcast("org:o1:alerts", "alert:update", {})

    assert sent == 1
    assert stale not in manager.connections
    assert manager.members("org:o1:alerts") == [good]


async def test_disconnect_leaves_all_rooms():
    manager = RoomManager()
    conn = await manager.connect(FakeWebSocket())
    manager.join(conn, "org:o1:devices")
    manager.join(conn, "org:o1:alerts")
    manager.disconnect(conn)
    assert manager.rooms == {}
    assert manager.connection_count == 0


async def test_disconnect_unknown_connection_is_harmless():
    manager = RoomManager()
    manager.disconnect(SimpleNamespace(rooms=set()))
    assert manager.connection_count == 0
