from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from alerting import queries as alert_queries
from device_registry import queries as device_queries
from shared.constants import MAX_BATCH_SIZE
from shared.errors import ValidationError
from shared.models import TelemetryInput
from telemetry_ingest import queries as telemetry_queries
from telemetry_ingest.service import TelemetryService, compute_aggregate
from tests.helpers.fakes import FakePool, FakePublisher

pytestmark = [pytest.mark.unit]

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
DEVICE = {"id": "dev-1", "name": "edge-router", "organization_id": "org-1"}


def _row(**metrics):
    return {"id": "t-1", "device_id": "dev-1", "timestamp": NOW, "metadata": None, **metrics}


def _alert_row(alert_type, severity, title, message):
    return {
        "id": f"a-{alert_type}",
        "type": alert_type,
        "severity": severity,
        "title": title,
        "message": message,
        "device_id": "dev-1",
        "organization_id": "org-1",
    }


@pytest.fixture
def service(cache):
    return TelemetryService(FakePool(), cache, FakePublisher())


@pytest.fixture
def insert_alert(monkeypatch):
    async def _insert(conn, org, device_id, alert_type, severity, title, message):
        return _alert_row(alert_type, severity, title, message)

    mock = AsyncMock(side_effect=_insert)
    monkeypatch.setattr(alert_queries, "insert_alert", mock)
    return mock


async def test_ingest_stores_caches_publishes_and_alerts(service, monkeypatch, fake_redis, insert_alert):
    row = _row(latency_ms=650)
    monkeypatch.setattr(telemetry_queries, "insert_telemetry", AsyncMock(return_value=row))
    monkeypatch.setattr(device_queries, "fetch_device", AsyncMock(return_value=DEVICE))

    result = await service.ingest(TelemetryInput(deviceId="dev-1", latencyMs=650))

    assert result == row
    assert "telemetry:dev-1:latest" in fake_redis.store
    assert fake_redis.ttls["telemetry:dev-1:latest"] == 60
    assert service.publisher.types() == ["telemetry:received", "alert:created"]
    assert service.publisher.events[0]["device_id"] == "dev-1"

    args = insert_alert.await_args.args
    assert args[1:] == (
        "org-1",
        "dev-1",
        "HIGH_LATENCY",
        "CRITICAL",
        "HIGH_LATENCY on edge-router",
        "Critical latency: 650ms",
    )
    alert_event = service.publisher.events[1]
    assert alert_event["channel"] == "alert:events"
    assert alert_event["organization_id"] == "org-1"


async def test_ingest_unknown_device_skips_alerting(service, monkeypatch, insert_alert):
    monkeypatch.setattr(telemetry_queries, "insert_telemetry", AsyncMock(return_value=_row(latency_ms=900)))
    monkeypatch.setattr(device_queries, "fetch_device", AsyncMock(return_value=None))

    result = await service.ingest(TelemetryInput(device_id="ghost", latency_ms=900))

    assert result["id"] == "t-1"
    insert_alert.assert_not_awaited()
    assert service.publisher.types() == ["telemetry:received"]


async def test_alert_failure_does_not_stop_other_alerts(service, monkeypatch):
    monkeypatch.setattr(telemetry_queries, "insert_telemetry", AsyncMock(return_value=_row()))
    monkeypatch.setattr(device_queries, "fetch_device", AsyncMock(return_value=DEVICE))
    calls = []

    async def _insert(conn, org, device_id, alert_type, severity, title, message):
        calls.append(alert_type)
        if alert_type == "HIGH_LATENCY":
            raise RuntimeError("db down")
        return _alert_row(alert_type, severity, title, message)

    monkeypatch.setattr(alert_queries, "insert_alert", AsyncMock(side_effect=_insert))

    result = await service.ingest(TelemetryInput(device_id="dev-1", latency_ms=600, cpu_usage=97))

    assert result["id"] == "t-1"
    assert calls == ["HIGH_LATENCY", "HIGH_CPU"]
    assert service.publisher.types() == ["telemetry:received", "alert:created"]


async def test_ingest_survives_redis_outage(service, monkeypatch, fake_redis):
    fake_redis.fail = True
    monkeypatch.setattr(telemetry_queries, "insert_telemetry", AsyncMock(return_value=_row()))
    monkeypatch.setattr(device_queries, "fetch_device", AsyncMock(return_value=None))
    service.publisher = FakePublisher(result=False)

    result = await service.ingest(TelemetryInput(device_id="dev-1", latency_ms=10))
    assert result["id"] == "t-1"


async def test_ingest_propagates_persistence_errors(service, monkeypatch):
    monkeypatch.setattr(telemetry_queries, "insert_telemetry", AsyncMock(side_effect=RuntimeError("boom")))
    with pytest.raises(RuntimeError):
        await service.ingest(TelemetryInput(device_id="dev-1"))
    assert service.publisher.events == []


async def test_batch_ingest_rejects_empty_and_oversized(service, monkeypatch):
    insert = AsyncMock(return_value=0)
    monkeypatch.setattr(telemetry_queries, "insert_telemetry_batch", insert)

    with pytest.raises(ValidationError):
        await service.batch_ingest([])
    with pytest.raises(ValidationError):
        await service.batch_ingest([TelemetryInput(device_id="d")] * 1001)
    insert.assert_not_awaited()


async def test_batch_ingest_accepts_max_batch_size(service, monkeypatch):
    insert = AsyncMock(return_value=MAX_BATCH_SIZE)
    monkeypatch.setattr(telemetry_queries, "insert_telemetry_batch", insert)

    count = await service.batch_ingest([TelemetryInput(device_id="d")] * MAX_BATCH_SIZE)

    assert count == 1000
    insert.assert_awaited_once()
    assert len(insert.await_args.args[1]) == 1000


async def test_batch_ingest_has_no_side_effects(service, monkeypatch, fake_redis):
    insert = AsyncMock(return_value=2)
    monkeypatch.setattr(telemetry_queries, "insert_telemetry_batch", insert)

    count = await service.batch_ingest(
        [TelemetryInput(device_id="a", latency_ms=900), TelemetryInput(device_id="b")]
    )

    assert count == 2
    rows = insert.await_args.args[1]
    assert rows[0]["device_id"] == "a"
    assert rows[0]["latency_ms"] == 900
    assert fake_redis.store == {}
    assert service.publisher.events == []


async def test_get_latest_reads_through_cache(service, monkeypatch):
    fetch = AsyncMock(return_value=_row(latency_ms=12))
    monkeypatch.setattr(telemetry_queries, "fetch_latest_telemetry", fetch)

    first = await service.get_latest("dev-1")
    second = await service.get_latest("dev-1")

    assert first == second
    assert fetch.await_count == 1


async def test_get_latest_none_is_not_cached(service, monkeypatch, fake_redis):
    monkeypatch.setattr(telemetry_queries, "fetch_latest_telemetry", AsyncMock(return_value=None))
    assert await service.get_latest("dev-1") is None
    assert fake_redis.store == {}


async def test_get_history_caps_limit_and_validates(service, monkeypatch):
    fetch = AsyncMock(return_value=[])
    monkeypatch.setattr(telemetry_queries, "fetch_telemetry_history", fetch)
    start, end = NOW - timedelta(hours=1), NOW

    await service.get_history("dev-1", start, end, limit=5000)
    assert fetch.await_args.args[-1] == 1000

    with pytest.raises(ValidationError):
        await service.get_history("dev-1", start, end, limit=0)
    with pytest.raises(ValidationError):
        await service.get_history("dev-1", end, start)


async def test_get_aggregated_rejects_unknown_period(service):
    with pytest.raises(ValidationError):
        await service.get_aggregated("dev-1", "weekly", NOW, NOW)


async def test_create_aggregates_upserts_window(service, monkeypatch):
    samples = [
        {"latency_ms": 10, "packet_loss": 0, "bandwidth_up": 5, "bandwidth_down": 50, "cpu_usage": 20, "memory_usage": None},
        {"latency_ms": 30, "packet_loss": 2, "bandwidth_up": None, "bandwidth_down": 70, "cpu_usage": 40, "memory_usage": 60},
    ]
    window = AsyncMock(return_value=samples)
    upsert = AsyncMock(side_effect=lambda conn, d, p, start, values: {"device_id": d, "timestamp": start, **values})
    monkeypatch.setattr(telemetry_queries, "fetch_telemetry_window", window)
    monkeypatch.setattr(telemetry_queries, "upsert_aggregate", upsert)

    row = await service.create_aggregates("dev-1", "hourly", now=NOW)

    assert window.await_args.args[2:] == (NOW - timedelta(hours=1), NOW)
    assert row["timestamp"] == NOW - timedelta(hours=1)
    assert row["avg_latency"] == 20
    assert row["min_latency"] == 10
    assert row["max_latency"] == 30
    assert row["avg_packet_loss"] == 1
    assert row["avg_bandwidth_up"] == 5
    assert row["avg_memory_usage"] == 60
    assert row["sample_count"] == 2


async def test_create_aggregates_empty_window_is_noop(service, monkeypatch):
    upsert = AsyncMock()
    monkeypatch.setattr(telemetry_queries, "fetch_telemetry_window", AsyncMock(return_value=[]))
    monkeypatch.setattr(telemetry_queries, "upsert_aggregate", upsert)

    assert await service.create_aggregates("dev-1", "daily", now=NOW) is None
    upsert.assert_not_awaited()


async def test_dashboard_metrics(service, monkeypatch):
    samples = [
        {"latency_ms": 10, "packet_loss": 1, "bandwidth_up": 5, "bandwidth_down": 100},
        {"latency_ms": 30, "packet_loss": None, "bandwidth_up": 15, "bandwidth_down": None},
    ]
    monkeypatch.setattr(telemetry_queries, "fetch_org_telemetry_since", AsyncMock(return_value=samples))
    monkeypatch.setattr(alert_queries, "count_unresolved_by_severity", AsyncMock(return_value={"CRITICAL": 2}))

    metrics = await service.get_dashboard_metrics("org-1")

    assert metrics["avg_latency"] == 20
    assert metrics["avg_packet_loss"] == 1
    assert metrics["total_bandwidth"] == {"up": 20, "down": 100}
    assert metrics["alert_counts"] == {"CRITICAL": 2, "HIGH": 0, "MEDIUM": 0, "LOW": 0, "INFO": 0}
    assert metrics["data_points"] == 2
    assert metrics["p95_latency"] == 30
    assert metrics["median_latency"] == 20
    assert service.pool.acquired == 2


async def test_dashboard_metrics_empty(service, monkeypatch):
    monkeypatch.setattr(telemetry_queries, "fetch_org_telemetry_since", AsyncMock(return_value=[]))
    monkeypatch.setattr(alert_queries, "count_unresolved_by_severity", AsyncMock(return_value={}))

    metrics = await service.get_dashboard_metrics("org-1")

    assert metrics["avg_latency"] == 0
    assert metrics["total_bandwidth"] == {"up": 0, "down": 0}
    assert metrics["data_points"] == 0
    assert set(metrics["alert_counts"].values()) == {0}


def test_compute_aggregate_all_none_metrics():
    values = compute_aggregate([{"latency_ms": None}])
    assert values["avg_latency"] is None
    assert values["sample_count"] == 1
