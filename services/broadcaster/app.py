import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.websockets import WebSocket, WebSocketDisconnect

from broadcaster.rooms import RoomManager
from broadcaster.subscriber import run_subscriber
from shared.config import load_settings
from shared.constants import device_telemetry_room, org_alerts_room, org_devices_room
from shared.logging import configure_logging, log_exception, trace_id_var
from shared.resources import open_resources, record_pool_stats
from shared.schema import ensure_schema

logger = logging.getLogger(__name__)

SERVICE_NAME = "broadcaster"

_SCOPE_ROOMS = {
    "devices": org_devices_room,
    "telemetry": device_telemetry_room,
    "alerts": org_alerts_room,
}


async def check_database(pool) -> dict:
    if pool is None:
        return {"status": "down", "error": "pool not initialized"}
    started = time.monotonic()
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except Exception as exc:
        return {"status": "down", "error": str(exc)}
    return {"status": "up", "latency_ms": round((time.monotonic() - started) * 1000, 2)}


async def check_redis(redis) -> dict:
    if redis is None:
        return {"status": "down", "error": "redis not initialized"}
    started = time.monotonic()
    if not await redis.ping():
        return {"status": "down"}
    return {"status": "up", "latency_ms": round((time.monotonic() - started) * 1000, 2)}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    configure_logging(SERVICE_NAME, settings.log_level)
    resources = await open_resources(settings)
    async with resources.pool.acquire() as conn:
        await ensure_schema(conn)

    app.state.pool = resources.pool
    app.state.redis = resources.redis
    stop_event = asyncio.Event()
    subscriber = asyncio.create_task(
        run_subscriber(resources.redis, app.state.rooms, stop_event)
    )
    try:
        yield
    finally:
        stop_event.set()
        subscriber.cancel()
        try:
            await subscriber
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            log_exception(logger, "event subscriber exited with error", exc)
        finally:
            await resources.close()


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(title="netpulse-broadcaster", lifespan=lifespan if use_lifespan else None)
    app.state.rooms = RoomManager()
    app.state.pool = None
    app.state.redis = None

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": SERVICE_NAME}

    @app.get("/health/live")
    async def live():
        return {"status": "alive"}

    @app.get("/health/ready")
    async def ready(request: Request):
        database = await check_database(request.app.state.pool)
        if database["status"] != "up":
            return JSONResponse({"status": "not_ready", "database": database}, status_code=503)
        return {"status": "ready"}

    @app.get("/health/detailed")
    async def detailed(request: Request):
        database, cache = await asyncio.gather(
            check_database(request.app.state.pool),
            check_redis(request.app.state.redis),
        )
        up = [c["status"] == "up" for c in (database, cache)]
        if all(up):
            status = "healthy"
        elif any(up):
            status = "degraded"
        else:
            status = "unhealthy"
        body = {
            "status": status,
            "service": SERVICE_NAME,
            "checks": {"database": database, "redis": cache},
            "connections": request.app.state.rooms.connection_count,
        }
        return JSONResponse(body, status_code=503 if status == "unhealthy" else 200)

    @app.get("/metrics")
    async def metrics(request: Request):
        if request.app.state.pool is not None:
            record_pool_stats(request.app.state.pool, SERVICE_NAME)
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Live updates.

        Client messages (JSON):
            {"action": "subscribe", "scope": "devices", "id": "<org id>"}
            {"action": "subscribe", "scope": "telemetry", "id": "<device id>"}
            {"action": "unsubscribe", "scope": "alerts", "id": "<org id>"}

        Server messages (JSON):
            {"event": "device:update", "data": {...event envelope...}}
            {"type": "subscribed", "room": "org:o1:devices"}
            {"type": "error", "message": "..."}
        """
        rooms: RoomManager = websocket.app.state.rooms
        trace_token = trace_id_var.set(str(uuid.uuid4()))
        conn = await rooms.connect(websocket)
        try:
            while True:
                data = await websocket.receive_json()
                if not isinstance(data, dict):
                    await websocket.send_json({"type": "error", "message": "expected a JSON object"})
                    continue

                action = data.get("action")
                room_for = _SCOPE_ROOMS.get(data.get("scope"))
                target_id = data.get("id")
                if action not in ("subscribe", "unsubscribe") or room_for is None or not target_id:
                    await websocket.send_json({
                        "type": "error",
                        "message": "action, scope and id are required",
                    })
                    continue

                room = room_for(str(target_id))
                if action == "subscribe":
                    rooms.join(conn, room)
                    await websocket.send_json({"type": "subscribed", "room": room})
                else:
                    rooms.leave(conn, room)
                    await websocket.send_json({"type": "unsubscribed", "room": room})
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("[ws] error in WebSocket handler")
        finally:
            rooms.disconnect(conn)
            trace_id_var.reset(trace_token)

    return app


app = create_app()
