from typing import Any, Dict, List, Optional
import json

import asyncpg

from shared.utils import check_delete_result, coerce_json_map

DEVICE_COLUMNS = """
    id, name, type, status, ip_address, mac_address, firmware_version,
    latitude, longitude, location_name, parent_device_id, organization_id,
    metadata, config, last_seen_at, created_at, updated_at
"""

_RETURNING_DEVICE_COLUMNS = ", ".join(f"d.{c.strip()}" for c in DEVICE_COLUMNS.split(","))

# Public sort keys (snake_case or camelCase) -> column.
SORT_COLUMNS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
    "last_seen_at": "last_seen_at",
    "lastSeenAt": "last_seen_at",
    "name": "name",
    "type": "type",
    "status": "status",
}

_JSON_COLUMNS = ("metadata", "config")

# Columns that may be left out of an update but never set to NULL.
NOT_NULL_COLUMNS = ("name", "type")

UPDATABLE_COLUMNS = (
    "name",
    "type",
    "ip_address",
    "mac_address",
    "firmware_version",
    "latitude",
    "longitude",
    "location_name",
    "parent_device_id",
    "metadata",
    "config",
)


def _require_org(organization_id: str) -> None:
    if not organization_id or not organization_id.strip():
        raise ValueError("organization_id is required")


def _device_from_row(row) -> Dict[str, Any]:
    device = dict(row)
    for column in _JSON_COLUMNS:
        if column in device:
            device[column] = coerce_json_map(device[column])
    return device


def resolve_sort_column(sort_by: str) -> Optional[str]:
    return SORT_COLUMNS.get(sort_by)


async def insert_device(
    conn: asyncpg.Connection,
    organization_id: str,
    data: Dict[str, Any],
) -> Dict[str, Any]:
    _require_org(organization_id)
    row = await conn.fetchrow(
        f"""
        INSERT INTO network_device (
            name, type, status, ip_address, mac_address, firmware_version,
            latitude, longitude, location_name, parent_device_id, organization_id,
            metadata, config
        )
        VALUES ($1, $2, 'UNKNOWN', $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb, $12::jsonb)
        RETURNING {DEVICE_COLUMNS}
        """,
        data["name"],
        data["type"],
        data.get("ip_address"),
        data.get("mac_address"),
        data.get("firmware_version"),
        data.get("latitude"),
        data.get("longitude"),
        data.get("location_name"),
        data.get("parent_device_id"),
        organization_id,
        json.dumps(data.get("metadata") or {}),
        json.dumps(data.get("config") or {}),
    )
    return _device_from_row(row)


async def fetch_device(
    conn: asyncpg.Connection,
    device_id: str,
    organization_id: str | None = None,
) -> Dict[str, Any] | None:
    """Fetch one device; scoped to the organization when one is given."""
    if organization_id is None:
        row = await conn.fetchrow(
            f"SELECT {DEVICE_COLUMNS} FROM network_device WHERE id = $1",
            device_id,
        )
    else:
        row = await conn.fetchrow(
            f"SELECT {DEVICE_COLUMNS} FROM network_device WHERE id = $1 AND organization_id = $2",
            device_id,
            organization_id,
        )
    return _device_from_row(row) if row else None


async def fetch_child_devices(
    conn: asyncpg.Connection,
    parent_device_id: str,
    organization_id: str,
) -> List[Dict[str, Any]]:
    rows = await conn.fetch(
        """
        SELECT id, name
        FROM network_device
        WHERE parent_device_id = $1 AND organization_id = $2
        ORDER BY name
        """,
        parent_device_id,
        organization_id,
    )
    return [dict(r) for r in rows]


async def fetch_devices(
    conn: asyncpg.Connection,
    organization_id: str,
    limit: int = 20,
    offset: int = 0,
    sort_column: str = "created_at",
    sort_order: str = "desc",
    device_type: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> Dict[str, Any]:
    """Filtered, sorted page of an organization's devices plus the unpaged total."""
    _require_org(organization_id)
    if sort_column not in SORT_COLUMNS.values():
        raise ValueError(f"unsupported sort column: {sort_column}")
    direction = "ASC" if sort_order.lower() == "asc" else "DESC"

    params: list[Any] = [organization_id]
    where_clauses = ["organization_id = $1"]
    idx = 2

    if device_type:
        where_clauses.append(f"type = ${idx}")
        params.append(device_type)
        idx += 1

    if status:
        where_clauses.append(f"status = ${idx}")
        params.append(status)
        idx += 1

    if search:
        where_clauses.append(f"(name ILIKE ${idx} OR ip_address LIKE ${idx + 1})")
        params.append(f"%{search}%")
        params.append(f"%{search}%")
        idx += 2

    where_sql = " AND ".join(where_clauses)
    total_count = await conn.fetchval(
        f"SELECT COUNT(*) FROM network_device WHERE {where_sql}",
        *params,
    )

    rows = await conn.fetch(
        f"""
        SELECT {DEVICE_COLUMNS},
               COALESCE(
                   (
                       SELECT json_agg(json_build_object('id', c.id, 'name', c.name) ORDER BY c.name)
                       FROM network_device c
                       WHERE c.parent_device_id = network_device.id
                   ),
                   '[]'::json
               ) AS child_devices
        FROM network_device
        WHERE {where_sql}
        ORDER BY {sort_column} {direction}, id
        LIMIT ${idx} OFFSET ${idx + 1}
        """,
        *params,
        limit,
        offset,
    )
    devices = []
    for r in rows:
        device = _device_from_row(r)
        children = device.get("child_devices")
        if isinstance(children, str):
            device["child_devices"] = json.loads(children)
        devices.append(device)
    return {"devices": devices, "total": int(total_count or 0)}


async def update_device(
    conn: asyncpg.Connection,
    device_id: str,
    organization_id: str,
    fields: Dict[str, Any],
) -> Dict[str, Any] | None:
    """
    Merge the given columns into one device. Returns None when no row matched.
    The returned row carries `previous_parent_device_id` alongside the updated columns.
    """
    _require_org(organization_id)

    sets: list[str] = []
    params: list[Any] = [device_id, organization_id]
    idx = 3

    for column in UPDATABLE_COLUMNS:
        if column not in fields:
            continue
        value = fields[column]
        if column in _JSON_COLUMNS:
            sets.append(f"{column} = ${idx}::jsonb")
            params.append(json.dumps(value or {}))
        else:
            sets.append(f"{column} = ${idx}")
            params.append(value)
        idx += 1

    sets.append("updated_at = now()")
    query = (
        "WITH prev AS ("
        " SELECT id, parent_device_id FROM network_device"
        " WHERE id = $1 AND organization_id = $2 FOR UPDATE"
        ") "
        "UPDATE network_device d SET "
        + ", ".join(sets)
        + " FROM prev WHERE d.id = prev.id "
        + f"RETURNING {_RETURNING_DEVICE_COLUMNS}, prev.parent_device_id AS previous_parent_device_id"
    )
    row = await conn.fetchrow(query, *params)
    return _device_from_row(row) if row else None


async def delete_device(
    conn: asyncpg.Connection,
    device_id: str,
    organization_id: str,
) -> bool:
    _require_org(organization_id)
    result = await conn.execute(
        "DELETE FROM network_device WHERE id = $1 AND organization_id = $2",
        device_id,
        organization_id,
    )
    return check_delete_result(result)


async def update_device_status(
    conn: asyncpg.Connection,
    device_id: str,
    status: str,
    touch_last_seen: bool,
) -> Dict[str, Any] | None:
    """
    Set a device's status, refreshing last_seen_at only when asked.
    The returned row carries `previous_status` alongside the updated columns.
    """
    row = await conn.fetchrow(
        f"""
        WITH prev AS (
            SELECT id, status FROM network_device WHERE id = $1 FOR UPDATE
        )
        UPDATE network_device d
        SET status = $2,
            last_seen_at = CASE WHEN $3 THEN now() ELSE d.last_seen_at END,
            updated_at = now()
        FROM prev
        WHERE d.id = prev.id
        RETURNING {_RETURNING_DEVICE_COLUMNS}, prev.status AS previous_status
        """,
        device_id,
        status,
        touch_last_seen,
    )
    return _device_from_row(row) if row else None


async def fetch_status_type_counts(
    conn: asyncpg.Connection,
    organization_id: str,
) -> List[Dict[str, Any]]:
    _require_org(organization_id)
    rows = await conn.fetch(
        """
        SELECT status, type, COUNT(*) AS count
        FROM network_device
        WHERE organization_id = $1
        GROUP BY status, type
        """,
        organization_id,
    )
    return [dict(r) for r in rows]


async def fetch_topology_rows(
    conn: asyncpg.Connection,
    organization_id: str,
) -> List[Dict[str, Any]]:
    _require_org(organization_id)
    rows = await conn.fetch(
        """
        SELECT id, name, type, status, parent_device_id, latitude, longitude
        FROM network_device
        WHERE organization_id = $1
        ORDER BY created_at, id
        """,
        organization_id,
    )
    return [dict(r) for r in rows]


async def fetch_all_device_ids(conn: asyncpg.Connection) -> List[str]:
    rows = await conn.fetch("SELECT id FROM network_device ORDER BY id")
    return [r["id"] for r in rows]
