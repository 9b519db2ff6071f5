"""
Shared Prometheus metrics registry.

Each service imports and increments these counters/gauges.
Use prometheus_client.generate_latest() in service /metrics handlers.
"""

from prometheus_client import Counter, Gauge, Histogram

# Ingest
telemetry_ingested_total = Counter(
    "netpulse_telemetry_ingested_total",
    "Telemetry samples persisted",
    ["path"],  # single | batch
)

# Alerting
alerts_created_total = Counter(
    "netpulse_alerts_created_total",
    "Alerts persisted by threshold evaluation",
    ["type", "severity"],
)

alert_failures_total = Counter(
    "netpulse_alert_failures_total",
    "Candidate alerts that could not be persisted or published",
)

# Cache / pub-sub side effects
cache_operations_total = Counter(
    "netpulse_cache_operations_total",
    "Cache operations by outcome",
    ["operation", "result"],  # hit | miss | ok | error
)

events_published_total = Counter(
    "netpulse_events_published_total",
    "Events published on pub/sub channels",
    ["channel", "result"],  # ok | error
)

# Broadcaster
broadcast_messages_total = Counter(
    "netpulse_broadcast_messages_total",
    "Messages rebroadcast to live-client rooms",
    ["event"],
)

ws_connections = Gauge(
    "netpulse_ws_connections",
    "Currently connected live clients",
)

# Roll-ups
rollup_duration_seconds = Histogram(
    "netpulse_rollup_duration_seconds",
    "Duration of one aggregate roll-up tick in seconds",
    ["period"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0],
)

aggregates_written_total = Counter(
    "netpulse_aggregates_written_total",
    "Telemetry aggregate rows upserted",
    ["period"],
)

db_pool_size = Gauge(
    "netpulse_db_pool_size",
    "Current total size of the database connection pool",
    ["service"],
)

db_pool_free = Gauge(
    "netpulse_db_pool_free",
    "Current number of free (idle) connections in the pool",
    ["service"],
)
