from unittest.mock import AsyncMock

import pytest

from shared.metrics import (
    cache_operations_total,
    events_published_total,
    telemetry_ingested_total,
)
from shared.models import TelemetryInput
from telemetry_ingest import queries as telemetry_queries
from telemetry_ingest.service import TelemetryService
from tests.helpers.fakes import FakePool, FakePublisher

pytestmark = [pytest.mark.unit]


def _counter_value(metric, **labels):
    return metric.labels(**labels)._value.get()


async def test_batch_ingest_counts_samples(cache, monkeypatch):
    monkeypatch.setattr(telemetry_queries, "insert_telemetry_batch", AsyncMock(return_value=3))
    service = TelemetryService(FakePool(), cache, FakePublisher())
    before = _counter_value(telemetry_ingested_total, path="batch")

    await service.batch_ingest([TelemetryInput(device_id="d")] * 3)

    assert _counter_value(telemetry_ingested_total, path="batch") == before + 3


async def test_cache_miss_and_error_counted(cache, fake_redis):
    misses = _counter_value(cache_operations_total, operation="get", result="miss")
    errors = _counter_value(cache_operations_total, operation="get", result="error")

    await cache.get("device:none")
    fake_redis.fail = True
    await cache.get("device:none")

    assert _counter_value(cache_operations_total, operation="get", result="miss") == misses + 1
    assert _counter_value(cache_operations_total, operation="get", result="error") == errors + 1


async def test_publish_outcomes_counted(publisher, fake_redis):
    ok = _counter_value(events_published_total, channel="device:events", result="ok")
    failed = _counter_value(events_published_total, channel="device:events", result="error")

    await publisher.publish("device:events", "device:updated", {})
    fake_redis.fail = True
    await publisher.publish("device:events", "device:updated", {})

    assert _counter_value(events_published_total, channel="device:events", result="ok") == ok + 1
    assert _counter_value(events_published_total, channel="device:events", result="error") == failed + 1
