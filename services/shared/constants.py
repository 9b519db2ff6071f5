"""Centralized constants shared by the ingest, registry and broadcast services."""

# Cache TTL values (seconds)
CACHE_TTL_DEVICE = 300
CACHE_TTL_DEVICE_LIST = 60
CACHE_TTL_TELEMETRY = 60

# Pagination / batch limits
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
MAX_BATCH_SIZE = 1000
MAX_HISTORY_LIMIT = 1000

# Aggregation windows (seconds)
AGGREGATE_PERIODS = {
    "hourly": 3600,
    "daily": 86400,
}

DASHBOARD_WINDOW_SECONDS = 3600

# Pub/sub channels
CHANNEL_DEVICE_EVENTS = "device:events"
CHANNEL_TELEMETRY_EVENTS = "telemetry:events"
CHANNEL_ALERT_EVENTS = "alert:events"

ALL_CHANNELS = (CHANNEL_DEVICE_EVENTS, CHANNEL_TELEMETRY_EVENTS, CHANNEL_ALERT_EVENTS)

# Event types carried in the envelope "type" field
EVENT_DEVICE_REGISTERED = "device:registered"
EVENT_DEVICE_UPDATED = "device:updated"
EVENT_DEVICE_DELETED = "device:deleted"
EVENT_DEVICE_STATUS_CHANGED = "device:status_changed"
EVENT_TELEMETRY_RECEIVED = "telemetry:received"
EVENT_ALERT_CREATED = "alert:created"
EVENT_ALERT_ACKNOWLEDGED = "alert:acknowledged"
EVENT_ALERT_RESOLVED = "alert:resolved"

# Names emitted to live clients by the broadcaster
CLIENT_EVENT_DEVICE_UPDATE = "device:update"
CLIENT_EVENT_TELEMETRY_UPDATE = "telemetry:update"
CLIENT_EVENT_ALERT_UPDATE = "alert:update"


def org_devices_room(organization_id: str) -> str:
    return f"org:{organization_id}:devices"


def device_telemetry_room(device_id: str) -> str:
    return f"device:{device_id}:telemetry"


def org_alerts_room(organization_id: str) -> str:
    return f"org:{organization_id}:alerts"
