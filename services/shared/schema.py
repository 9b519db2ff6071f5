"""Idempotent DDL for the tables the core services read and write."""

DDL = """
CREATE TABLE IF NOT EXISTS network_device (
  id                TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
  name              TEXT NOT NULL,
  type              TEXT NOT NULL,
  status            TEXT NOT NULL DEFAULT 'UNKNOWN',
  ip_address        TEXT NULL,
  mac_address       TEXT NULL,
  firmware_version  TEXT NULL,
  latitude          DOUBLE PRECISION NULL,
  longitude         DOUBLE PRECISION NULL,
  location_name     TEXT NULL,
  parent_device_id  TEXT NULL, -- no FK: deleting a parent orphans its children
  organization_id   TEXT NOT NULL,
  metadata          JSONB NOT NULL DEFAULT '{}'::jsonb,
  config            JSONB NOT NULL DEFAULT '{}'::jsonb,
  last_seen_at      TIMESTAMPTZ NULL,
  created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at        TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS telemetry_data (
  id                 TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
  device_id          TEXT NOT NULL, -- no FK: samples for unknown devices are kept
  timestamp          TIMESTAMPTZ NOT NULL DEFAULT now(),
  latency_ms         DOUBLE PRECISION NULL,
  jitter_ms          DOUBLE PRECISION NULL,
  packet_loss        DOUBLE PRECISION NULL,
  bandwidth_up       DOUBLE PRECISION NULL,
  bandwidth_down     DOUBLE PRECISION NULL,
  cpu_usage          DOUBLE PRECISION NULL,
  memory_usage       DOUBLE PRECISION NULL,
  disk_usage         DOUBLE PRECISION NULL,
  temperature        DOUBLE PRECISION NULL,
  signal_strength    DOUBLE PRECISION NULL,
  connected_clients  INTEGER NULL,
  metadata           JSONB NULL
);

CREATE TABLE IF NOT EXISTS telemetry_aggregate (
  id                  BIGSERIAL PRIMARY KEY,
  device_id           TEXT NOT NULL,
  period              TEXT NOT NULL CHECK (period IN ('hourly', 'daily')),
  timestamp           TIMESTAMPTZ NOT NULL,
  avg_latency         DOUBLE PRECISION NULL,
  min_latency         DOUBLE PRECISION NULL,
  max_latency         DOUBLE PRECISION NULL,
  avg_packet_loss     DOUBLE PRECISION NULL,
  avg_bandwidth_up    DOUBLE PRECISION NULL,
  avg_bandwidth_down  DOUBLE PRECISION NULL,
  avg_cpu_usage       DOUBLE PRECISION NULL,
  avg_memory_usage    DOUBLE PRECISION NULL,
  sample_count        INTEGER NOT NULL,
  UNIQUE (device_id, period, timestamp)
);

CREATE TABLE IF NOT EXISTS alert (
  id               TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
  type             TEXT NOT NULL,
  severity         TEXT NOT NULL,
  title            TEXT NOT NULL,
  message          TEXT NOT NULL,
  device_id        TEXT NULL,
  organization_id  TEXT NOT NULL,
  acknowledged_at  TIMESTAMPTZ NULL,
  acknowledged_by  TEXT NULL,
  resolved_at      TIMESTAMPTZ NULL,
  resolved_by      TEXT NULL,
  created_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS network_device_org_idx ON network_device (organization_id, created_at DESC);
CREATE INDEX IF NOT EXISTS network_device_parent_idx ON network_device (parent_device_id);
CREATE INDEX IF NOT EXISTS telemetry_data_device_ts_idx ON telemetry_data (device_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS telemetry_aggregate_lookup_idx ON telemetry_aggregate (device_id, period, timestamp);
CREATE INDEX IF NOT EXISTS alert_org_open_idx ON alert (organization_id, resolved_at);
"""


async def ensure_schema(conn) -> None:
    for stmt in DDL.strip().split(";"):
        s = stmt.strip()
        if s:
            await conn.execute(s + ";")
