"""
Telemetry ingestion: persist samples, refresh the latest-value cache,
announce them, and raise threshold alerts for known devices.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

import asyncpg

from alerting import queries as alert_queries
from alerting.service import AlertService
from device_registry import queries as device_queries
from shared.cache import Cache, telemetry_latest_key
from shared.constants import (
    AGGREGATE_PERIODS,
    CACHE_TTL_TELEMETRY,
    CHANNEL_TELEMETRY_EVENTS,
    DASHBOARD_WINDOW_SECONDS,
    EVENT_TELEMETRY_RECEIVED,
    MAX_BATCH_SIZE,
    MAX_HISTORY_LIMIT,
)
from shared.errors import ValidationError
from shared.events import EventPublisher
from shared.logging import log_event, log_exception
from shared.metrics import aggregates_written_total, alert_failures_total, telemetry_ingested_total
from shared.models import AlertSeverity, TelemetryInput
from shared.stats import avg, max_of, median, min_of, percentile, sum_of
from shared.utils import now_utc
from telemetry_ingest import queries as telemetry_queries
from telemetry_ingest.thresholds import (
    DEFAULT_THRESHOLD_RULES,
    ThresholdRule,
    alert_title,
    evaluate_sample,
)

logger = logging.getLogger(__name__)


def _column(rows: Iterable[dict], name: str) -> list:
    return [r.get(name) for r in rows]


def compute_aggregate(samples: Sequence[dict]) -> dict[str, Any]:
    """Roll a window of samples up into one aggregate row's values."""
    latency = _column(samples, "latency_ms")
    return {
        "avg_latency": avg(latency),
        "min_latency": min_of(latency),
        "max_latency": max_of(latency),
        "avg_packet_loss": avg(_column(samples, "packet_loss")),
        "avg_bandwidth_up": avg(_column(samples, "bandwidth_up")),
        "avg_bandwidth_down": avg(_column(samples, "bandwidth_down")),
        "avg_cpu_usage": avg(_column(samples, "cpu_usage")),
        "avg_memory_usage": avg(_column(samples, "memory_usage")),
        "sample_count": len(samples),
    }


def _or_zero(value):
    return 0 if value is None else value


class TelemetryService:
    def __init__(
        self,
        pool: asyncpg.Pool,
        cache: Cache,
        publisher: EventPublisher,
        rules: Sequence[ThresholdRule] = DEFAULT_THRESHOLD_RULES,
    ):
        self.pool = pool
        self.cache = cache
        self.publisher = publisher
        self.rules = tuple(rules)
        self.alerts = AlertService(pool, publisher)

    async def ingest(self, sample: TelemetryInput) -> dict[str, Any]:
        async with self.pool.acquire() as conn:
            row = await telemetry_queries.insert_telemetry(
                conn,
                sample.device_id,
                sample.metrics(),
                sample.metadata,
            )
        telemetry_ingested_total.labels(path="single").inc()

        await self.cache.set(telemetry_latest_key(sample.device_id), row, CACHE_TTL_TELEMETRY)
        await self.publisher.publish(
            CHANNEL_TELEMETRY_EVENTS,
            EVENT_TELEMETRY_RECEIVED,
            {"telemetry": row},
            device_id=sample.device_id,
        )

        await self._check_thresholds(sample)
        return row

    async def _check_thresholds(self, sample: TelemetryInput) -> None:
        async with self.pool.acquire() as conn:
            device = await device_queries.fetch_device(conn, sample.device_id)
        if device is None:
            logger.debug("no device for telemetry, skipping alerts", extra={"device_id": sample.device_id})
            return

        for candidate in evaluate_sample(sample.metrics(), self.rules):
            try:
                await self.alerts.create_alert(
                    device["organization_id"],
                    device["id"],
                    candidate.type,
                    candidate.severity,
                    alert_title(candidate.type, device["name"]),
                    candidate.message,
                )
            except Exception as exc:
                alert_failures_total.inc()
                log_exception(
                    logger,
                    "alert creation failed",
                    exc,
                    context={
                        "device_id": device["id"],
                        "alert_type": candidate.type.value,
                        "metric": candidate.metric,
                    },
                )

    async def batch_ingest(self, samples: Sequence[TelemetryInput]) -> int:
        if not samples:
            raise ValidationError("batch must contain at least one sample")
        if len(samples) > MAX_BATCH_SIZE:
            raise ValidationError(
                f"batch size {len(samples)} exceeds maximum of {MAX_BATCH_SIZE}",
                {"max": MAX_BATCH_SIZE},
            )

        rows = [
            {"device_id": s.device_id, "metadata": s.metadata, **s.metrics()}
            for s in samples
        ]
        async with self.pool.acquire() as conn:
            count = await telemetry_queries.insert_telemetry_batch(conn, rows)
        telemetry_ingested_total.labels(path="batch").inc(count)
        log_event(logger, "telemetry batch stored", count=count)
        return count

    async def get_latest(self, device_id: str) -> Optional[dict[str, Any]]:
        key = telemetry_latest_key(device_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        async with self.pool.acquire() as conn:
            row = await telemetry_queries.fetch_latest_telemetry(conn, device_id)
        if row is not None:
            await self.cache.set(key, row, CACHE_TTL_TELEMETRY)
        return row

    async def get_history(
        self,
        device_id: str,
        start: datetime,
        end: datetime,
        limit: int = MAX_HISTORY_LIMIT,
    ) -> list[dict[str, Any]]:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if start > end:
            raise ValidationError("start must not be after end")
        async with self.pool.acquire() as conn:
            return await telemetry_queries.fetch_telemetry_history(
                conn, device_id, start, end, min(limit, MAX_HISTORY_LIMIT)
            )

    async def get_aggregated(
        self,
        device_id: str,
        period: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        if period not in AGGREGATE_PERIODS:
            raise ValidationError(f"unknown aggregate period: {period}")
        async with self.pool.acquire() as conn:
            return await telemetry_queries.fetch_aggregates(conn, device_id, period, start, end)

    async def create_aggregates(
        self,
        device_id: str,
        period: str,
        now: Optional[datetime] = None,
    ) -> Optional[dict[str, Any]]:
        """Upsert the roll-up for the window ending at `now`. None when the window is empty."""
        if period not in AGGREGATE_PERIODS:
            raise ValidationError(f"unknown aggregate period: {period}")
        end = now or now_utc()
        start = end - timedelta(seconds=AGGREGATE_PERIODS[period])

        async with self.pool.acquire() as conn:
            samples = await telemetry_queries.fetch_telemetry_window(conn, device_id, start, end)
            if not samples:
                return None
            row = await telemetry_queries.upsert_aggregate(
                conn, device_id, period, start, compute_aggregate(samples)
            )
        aggregates_written_total.labels(period=period).inc()
        return row

    async def _fetch_recent_samples(self, organization_id: str, since: datetime) -> list[dict]:
        async with self.pool.acquire() as conn:
            return await telemetry_queries.fetch_org_telemetry_since(conn, organization_id, since)

    async def _fetch_alert_counts(self, organization_id: str) -> dict[str, int]:
        async with self.pool.acquire() as conn:
            return await alert_queries.count_unresolved_by_severity(conn, organization_id)

    async def get_dashboard_metrics(self, organization_id: str) -> dict[str, Any]:
        since = now_utc() - timedelta(seconds=DASHBOARD_WINDOW_SECONDS)
        samples, counts = await asyncio.gather(
            self._fetch_recent_samples(organization_id, since),
            self._fetch_alert_counts(organization_id),
        )

        latency = _column(samples, "latency_ms")
        return {
            "avg_latency": _or_zero(avg(latency)),
            "avg_packet_loss": _or_zero(avg(_column(samples, "packet_loss"))),
            "total_bandwidth": {
                "up": _or_zero(sum_of(_column(samples, "bandwidth_up"))),
                "down": _or_zero(sum_of(_column(samples, "bandwidth_down"))),
            },
            "alert_counts": {s.value: counts.get(s.value, 0) for s in AlertSeverity},
            "data_points": len(samples),
            "p95_latency": _or_zero(percentile(latency, 95)),
            "median_latency": _or_zero(median(latency)),
        }
