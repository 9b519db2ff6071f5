from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import json

import asyncpg

from shared.models import METRIC_FIELDS

TELEMETRY_COLUMNS = "id, device_id, timestamp, " + ", ".join(METRIC_FIELDS) + ", metadata"

AGGREGATE_COLUMNS = """
    id, device_id, period, timestamp, avg_latency, min_latency, max_latency,
    avg_packet_loss, avg_bandwidth_up, avg_bandwidth_down, avg_cpu_usage,
    avg_memory_usage, sample_count
"""

# Above this many rows COPY beats executemany.
COPY_THRESHOLD = 100


def _telemetry_from_row(row) -> Dict[str, Any]:
    sample = dict(row)
    meta = sample.get("metadata")
    if isinstance(meta, str):
        try:
            sample["metadata"] = json.loads(meta)
        except json.JSONDecodeError:
            sample["metadata"] = None
    return sample


def _metric_values(metrics: Dict[str, Any]) -> list:
    return [metrics.get(name) for name in METRIC_FIELDS]


async def insert_telemetry(
    conn: asyncpg.Connection,
    device_id: str,
    metrics: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Insert one sample; id and timestamp are assigned by the server."""
    placeholders = ", ".join(f"${i}" for i in range(2, len(METRIC_FIELDS) + 2))
    meta_idx = len(METRIC_FIELDS) + 2
    row = await conn.fetchrow(
        f"""
        INSERT INTO telemetry_data (device_id, {", ".join(METRIC_FIELDS)}, metadata)
        VALUES ($1, {placeholders}, ${meta_idx}::jsonb)
        RETURNING {TELEMETRY_COLUMNS}
        """,
        device_id,
        *_metric_values(metrics),
        json.dumps(metadata) if metadata is not None else None,
    )
    return _telemetry_from_row(row)


async def insert_telemetry_batch(
    conn: asyncpg.Connection,
    samples: Sequence[Dict[str, Any]],
) -> int:
    """
    Bulk insert samples shaped as {device_id, metadata, <metric>...}.
    Small batches use executemany, larger ones COPY. Returns rows written.
    """
    if not samples:
        return 0

    columns = ["device_id", *METRIC_FIELDS, "metadata"]
    records = [
        (
            s["device_id"],
            *_metric_values(s),
            json.dumps(s["metadata"]) if s.get("metadata") is not None else None,
        )
        for s in samples
    ]

    if len(records) > COPY_THRESHOLD:
        await conn.copy_records_to_table(
            "telemetry_data",
            records=records,
            columns=columns,
        )
        return len(records)

    placeholders = ", ".join(f"${i}" for i in range(1, len(columns)))
    await conn.executemany(
        f"""
        INSERT INTO telemetry_data ({", ".join(columns)})
        VALUES ({placeholders}, ${len(columns)}::jsonb)
        """,
        records,
    )
    return len(records)


async def fetch_latest_telemetry(
    conn: asyncpg.Connection,
    device_id: str,
) -> Dict[str, Any] | None:
    row = await conn.fetchrow(
        f"""
        SELECT {TELEMETRY_COLUMNS}
        FROM telemetry_data
        WHERE device_id = $1
        ORDER BY timestamp DESC
        LIMIT 1
        """,
        device_id,
    )
    return _telemetry_from_row(row) if row else None


async def fetch_telemetry_history(
    conn: asyncpg.Connection,
    device_id: str,
    start: datetime,
    end: datetime,
    limit: int,
) -> List[Dict[str, Any]]:
    rows = await conn.fetch(
        f"""
        SELECT {TELEMETRY_COLUMNS}
        FROM telemetry_data
        WHERE device_id = $1
          AND timestamp >= $2
          AND timestamp <= $3
        ORDER BY timestamp DESC
        LIMIT $4
        """,
        device_id,
        start,
        end,
        limit,
    )
    return [_telemetry_from_row(r) for r in rows]


async def fetch_telemetry_window(
    conn: asyncpg.Connection,
    device_id: str,
    start: datetime,
    end: datetime,
) -> List[Dict[str, Any]]:
    """Metric columns used by roll-ups for samples in [start, end]."""
    rows = await conn.fetch(
        """
        SELECT latency_ms, packet_loss, bandwidth_up, bandwidth_down,
               cpu_usage, memory_usage
        FROM telemetry_data
        WHERE device_id = $1
          AND timestamp >= $2
          AND timestamp <= $3
        """,
        device_id,
        start,
        end,
    )
    return [dict(r) for r in rows]


async def fetch_org_telemetry_since(
    conn: asyncpg.Connection,
    organization_id: str,
    since: datetime,
) -> List[Dict[str, Any]]:
    if not organization_id or not organization_id.strip():
        raise ValueError("organization_id is required")
    rows = await conn.fetch(
        """
        SELECT t.latency_ms, t.packet_loss, t.bandwidth_up, t.bandwidth_down
        FROM telemetry_data t
        JOIN network_device d ON d.id = t.device_id
        WHERE d.organization_id = $1
          AND t.timestamp >= $2
        """,
        organization_id,
        since,
    )
    return [dict(r) for r in rows]


async def fetch_aggregates(
    conn: asyncpg.Connection,
    device_id: str,
    period: str,
    start: datetime,
    end: datetime,
) -> List[Dict[str, Any]]:
    rows = await conn.fetch(
        f"""
        SELECT {AGGREGATE_COLUMNS}
        FROM telemetry_aggregate
        WHERE device_id = $1
          AND period = $2
          AND timestamp >= $3
          AND timestamp <= $4
        ORDER BY timestamp ASC
        """,
        device_id,
        period,
        start,
        end,
    )
    return [dict(r) for r in rows]


async def upsert_aggregate(
    conn: asyncpg.Connection,
    device_id: str,
    period: str,
    window_start: datetime,
    values: Dict[str, Any],
) -> Dict[str, Any]:
    row = await conn.fetchrow(
        f"""
        INSERT INTO telemetry_aggregate (
            device_id, period, timestamp, avg_latency, min_latency, max_latency,
            avg_packet_loss, avg_bandwidth_up, avg_bandwidth_down, avg_cpu_usage,
            avg_memory_usage, sample_count
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
        ON CONFLICT (device_id, period, timestamp) DO UPDATE SET
            avg_latency = EXCLUDED.avg_latency,
            min_latency = EXCLUDED.min_latency,
            max_latency = EXCLUDED.max_latency,
            avg_packet_loss = EXCLUDED.avg_packet_loss,
            avg_bandwidth_up = EXCLUDED.avg_bandwidth_up,
            avg_bandwidth_down = EXCLUDED.avg_bandwidth_down,
            avg_cpu_usage = EXCLUDED.avg_cpu_usage,
            avg_memory_usage = EXCLUDED.avg_memory_usage,
            sample_count = EXCLUDED.sample_count
        RETURNING {AGGREGATE_COLUMNS}
        """,
        device_id,
        period,
        window_start,
        values.get("avg_latency"),
        values.get("min_latency"),
        values.get("max_latency"),
        values.get("avg_packet_loss"),
        values.get("avg_bandwidth_up"),
        values.get("avg_bandwidth_down"),
        values.get("avg_cpu_usage"),
        values.get("avg_memory_usage"),
        values["sample_count"],
    )
    return dict(row)
