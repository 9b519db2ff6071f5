"""Shared utilities across services."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from dateutil import parser as dtparser

# Row keys that hold timestamps; restored to datetimes when rows come back from JSON.
TIMESTAMP_FIELDS = frozenset(
    {
        "timestamp",
        "created_at",
        "updated_at",
        "last_seen_at",
        "acknowledged_at",
        "resolved_at",
    }
)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime to ISO string with UTC timezone."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_ts(v) -> Optional[datetime]:
    """
    Parse an ISO 8601 string to an aware datetime.
    Naive values are assumed UTC; anything unparseable returns None.
    """
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)
    if isinstance(v, str):
        try:
            dt = dtparser.isoparse(v)
        except (ValueError, OverflowError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    return None


def check_delete_result(result: str) -> bool:
    """Check if DELETE affected any rows."""
    if not result:
        return False
    parts = result.split()
    if len(parts) != 2 or parts[0] != "DELETE":
        return False
    try:
        return int(parts[1]) > 0
    except ValueError:
        return False


def coerce_json_map(value) -> dict:
    """JSONB columns arrive as text unless a codec is registered."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def to_jsonable(value: Any) -> Any:
    """Convert rows (datetimes, UUIDs, enums, nested containers) to JSON-safe values."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def restore_timestamps(row: Any) -> Any:
    """Inverse of to_jsonable for the timestamp columns of a row dict."""
    if not isinstance(row, dict):
        return row
    restored = {}
    for key, value in row.items():
        if key in TIMESTAMP_FIELDS and isinstance(value, str):
            restored[key] = parse_ts(value) or value
        elif isinstance(value, list):
            restored[key] = [restore_timestamps(v) for v in value]
        else:
            restored[key] = value
    return restored
