"""
Periodic telemetry roll-ups.

One loop per aggregate period. Each tick walks every registered device and
upserts the aggregate for the window ending at the current period boundary,
so a re-run within the same period rewrites the same row.
"""

import asyncio
import logging
import signal
import time
import uuid
from datetime import datetime, timezone

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from device_registry import queries as device_queries
from shared.config import Settings, load_settings
from shared.constants import AGGREGATE_PERIODS
from shared.logging import configure_logging, log_exception, trace_id_var
from shared.metrics import rollup_duration_seconds
from shared.resources import Resources, open_resources, record_pool_stats
from shared.schema import ensure_schema
from telemetry_ingest.service import TelemetryService

logger = logging.getLogger(__name__)

SERVICE_NAME = "rollup_worker"


def period_boundary(now: datetime, period: str) -> datetime:
    """Floor `now` to the start of its hourly/daily bucket (UTC)."""
    seconds = AGGREGATE_PERIODS[period]
    epoch = int(now.timestamp())
    return datetime.fromtimestamp(epoch - epoch % seconds, tz=timezone.utc)


async def run_rollup_tick(service: TelemetryService, period: str, now: datetime | None = None) -> int:
    """Aggregate every device for one period. Returns the number of rows written."""
    window_end = period_boundary(now or datetime.now(timezone.utc), period)
    async with service.pool.acquire() as conn:
        device_ids = await device_queries.fetch_all_device_ids(conn)

    written = 0
    for device_id in device_ids:
        try:
            row = await service.create_aggregates(device_id, period, now=window_end)
        except Exception as exc:
            log_exception(
                logger,
                "aggregate failed",
                exc,
                context={"device_id": device_id, "period": period},
            )
            continue
        if row is not None:
            written += 1
    return written


async def worker_loop(service: TelemetryService, period: str, interval: int, stop_event: asyncio.Event) -> None:
    while not stop_event.is_set():
        trace_token = trace_id_var.set(str(uuid.uuid4()))
        try:
            logger.info("tick_start", extra={"tick": "rollup", "period": period})
            tick_start = time.monotonic()

            written = await run_rollup_tick(service, period)

            rollup_duration_seconds.labels(period=period).observe(time.monotonic() - tick_start)
            logger.info("tick_done", extra={"tick": "rollup", "period": period, "written": written})
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Worker loop failed", extra={"worker": "rollup", "period": period})
        finally:
            trace_id_var.reset(trace_token)

        record_pool_stats(service.pool, SERVICE_NAME)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def start_health_server(resources: Resources, port: int) -> web.AppRunner:
    async def health_handler(_request):
        return web.json_response({"status": "ok", "service": SERVICE_NAME})

    async def ready_handler(_request):
        redis_up = resources.redis.is_connected
        if resources.pool is not None:
            return web.json_response({"status": "ready", "redis": redis_up})
        return web.json_response({"status": "not_ready"}, status=503)

    async def metrics_handler(_request):
        return web.Response(body=generate_latest(), content_type=CONTENT_TYPE_LATEST.split(";")[0])

    app = web.Application()
    app.router.add_get("/health", health_handler)
    app.router.add_get("/ready", ready_handler)
    app.router.add_get("/metrics", metrics_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    return runner


def _intervals(settings: Settings) -> dict[str, int]:
    return {
        "hourly": settings.rollup_hourly_seconds,
        "daily": settings.rollup_daily_seconds,
    }


async def main() -> None:
    settings = load_settings()
    configure_logging(SERVICE_NAME, settings.log_level)

    resources = await open_resources(settings)
    async with resources.pool.acquire() as conn:
        await ensure_schema(conn)
    service = TelemetryService(resources.pool, resources.cache, resources.publisher)
    runner = await start_health_server(resources, settings.health_port)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await asyncio.gather(
            *(
                worker_loop(service, period, interval, stop_event)
                for period, interval in _intervals(settings).items()
            )
        )
    finally:
        logger.info("shutting down")
        await runner.cleanup()
        await resources.close()


if __name__ == "__main__":
    asyncio.run(main())
