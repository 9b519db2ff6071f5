from typing import Any, Dict, List
import asyncpg

ALERT_COLUMNS = """
    id, type, severity, title, message, device_id, organization_id,
    acknowledged_at, acknowledged_by, resolved_at, resolved_by, created_at
"""

# Sort key: most severe first.
_SEVERITY_ORDER_SQL = """
    CASE severity
        WHEN 'CRITICAL' THEN 5
        WHEN 'HIGH' THEN 4
        WHEN 'MEDIUM' THEN 3
        WHEN 'LOW' THEN 2
        WHEN 'INFO' THEN 1
        ELSE 0
    END
"""


def _require_org(organization_id: str) -> None:
    if not organization_id or not organization_id.strip():
        raise ValueError("organization_id is required")


async def insert_alert(
    conn: asyncpg.Connection,
    organization_id: str,
    device_id: str | None,
    alert_type: str,
    severity: str,
    title: str,
    message: str,
) -> Dict[str, Any]:
    _require_org(organization_id)
    row = await conn.fetchrow(
        f"""
        INSERT INTO alert (type, severity, title, message, device_id, organization_id)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {ALERT_COLUMNS}
        """,
        alert_type,
        severity,
        title,
        message,
        device_id,
        organization_id,
    )
    return dict(row)


async def count_unresolved_by_severity(
    conn: asyncpg.Connection,
    organization_id: str,
) -> Dict[str, int]:
    _require_org(organization_id)
    rows = await conn.fetch(
        """
        SELECT severity, COUNT(*) AS count
        FROM alert
        WHERE organization_id = $1 AND resolved_at IS NULL
        GROUP BY severity
        """,
        organization_id,
    )
    return {r["severity"]: int(r["count"]) for r in rows}


async def fetch_alerts(
    conn: asyncpg.Connection,
    organization_id: str,
    unresolved_only: bool = False,
    severity: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    _require_org(organization_id)

    params: list[Any] = [organization_id]
    where_clauses = ["organization_id = $1"]
    idx = 2

    if unresolved_only:
        where_clauses.append("resolved_at IS NULL")

    if severity:
        where_clauses.append(f"severity = ${idx}")
        params.append(severity)
        idx += 1

    rows = await conn.fetch(
        f"""
        SELECT {ALERT_COLUMNS}
        FROM alert
        WHERE {" AND ".join(where_clauses)}
        ORDER BY {_SEVERITY_ORDER_SQL} DESC, created_at DESC
        LIMIT ${idx} OFFSET ${idx + 1}
        """,
        *params,
        limit,
        offset,
    )
    return [dict(r) for r in rows]


async def acknowledge_alert(
    conn: asyncpg.Connection,
    alert_id: str,
    organization_id: str,
    user_id: str,
) -> Dict[str, Any] | None:
    """
    Stamp acknowledgement once. A second call leaves the first stamp in place
    and still returns the row; None means the alert is not in this org.
    """
    _require_org(organization_id)
    row = await conn.fetchrow(
        f"""
        UPDATE alert
        SET acknowledged_at = COALESCE(acknowledged_at, now()),
            acknowledged_by = COALESCE(acknowledged_by, $3)
        WHERE id = $1 AND organization_id = $2
        RETURNING {ALERT_COLUMNS}
        """,
        alert_id,
        organization_id,
        user_id,
    )
    return dict(row) if row else None


async def resolve_alert(
    conn: asyncpg.Connection,
    alert_id: str,
    organization_id: str,
    resolved_by: str | None,
) -> Dict[str, Any] | None:
    _require_org(organization_id)
    row = await conn.fetchrow(
        f"""
        UPDATE alert
        SET resolved_at = COALESCE(resolved_at, now()),
            resolved_by = CASE WHEN resolved_at IS NULL THEN $3 ELSE resolved_by END
        WHERE id = $1 AND organization_id = $2
        RETURNING {ALERT_COLUMNS}
        """,
        alert_id,
        organization_id,
        resolved_by,
    )
    return dict(row) if row else None
