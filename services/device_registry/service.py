"""Device registry: CRUD, status transitions, fleet stats and topology."""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

import asyncpg

from device_registry import queries as device_queries
from shared.cache import Cache, device_key, device_list_key
from shared.constants import (
    CACHE_TTL_DEVICE,
    CACHE_TTL_DEVICE_LIST,
    CHANNEL_DEVICE_EVENTS,
    EVENT_DEVICE_DELETED,
    EVENT_DEVICE_REGISTERED,
    EVENT_DEVICE_STATUS_CHANGED,
    EVENT_DEVICE_UPDATED,
)
from shared.errors import NotFoundError, ValidationError
from shared.events import EventPublisher
from shared.logging import log_event
from shared.models import DeviceInput, DeviceListParams, DeviceStatus, DeviceType, DeviceUpdate

logger = logging.getLogger(__name__)


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


def build_topology(rows: list[dict[str, Any]]) -> dict[str, list]:
    """Flat device rows -> {nodes, edges}. Parent links are taken as-is."""
    nodes = []
    edges = []
    for row in rows:
        lat, lng = row.get("latitude"), row.get("longitude")
        nodes.append(
            {
                "id": row["id"],
                "name": row["name"],
                "type": row["type"],
                "status": row["status"],
                "position": {"lat": lat, "lng": lng} if lat is not None and lng is not None else None,
            }
        )
        if row.get("parent_device_id"):
            edges.append({"source": row["parent_device_id"], "target": row["id"]})
    return {"nodes": nodes, "edges": edges}


def _list_cache_key(organization_id: str, params: DeviceListParams, sort_column: str) -> str:
    """All list pages of an org share the devices:org:<org> prefix."""
    parts = [
        str(params.page),
        str(params.limit),
        sort_column,
        params.sort_order,
        _enum_value(params.type) or "",
        _enum_value(params.status) or "",
        params.search or "",
    ]
    return f"{device_list_key(organization_id)}:" + ":".join(parts)


def summarize_counts(rows: list[dict[str, Any]]) -> dict[str, Any]:
    by_status = {s.value: 0 for s in DeviceStatus}
    by_type = {t.value: 0 for t in DeviceType}
    total = 0
    for row in rows:
        count = int(row["count"])
        total += count
        by_status[row["status"]] = by_status.get(row["status"], 0) + count
        by_type[row["type"]] = by_type.get(row["type"], 0) + count
    return {"total": total, "by_status": by_status, "by_type": by_type}


class DeviceService:
    def __init__(self, pool: asyncpg.Pool, cache: Cache, publisher: EventPublisher):
        self.pool = pool
        self.cache = cache
        self.publisher = publisher

    async def _invalidate(self, device_id: str, organization_id: str, *parent_ids: Optional[str]) -> None:
        """Drop the device, its parents' cached child lists and every list page of the org."""
        await self.cache.delete(device_key(device_id))
        for parent_id in {p for p in parent_ids if p}:
            await self.cache.delete(device_key(parent_id))
        await self.cache.invalidate_pattern(device_list_key(organization_id))

    async def create(self, organization_id: str, data: DeviceInput) -> dict[str, Any]:
        fields = data.model_dump(exclude={"status"}, mode="python")
        fields["type"] = _enum_value(fields["type"])
        async with self.pool.acquire() as conn:
            device = await device_queries.insert_device(conn, organization_id, fields)

        await self._invalidate(device["id"], organization_id, device.get("parent_device_id"))
        log_event(logger, "device registered", device_id=device["id"], organization_id=organization_id)
        await self.publisher.publish(
            CHANNEL_DEVICE_EVENTS,
            EVENT_DEVICE_REGISTERED,
            {"device": device},
            organization_id=organization_id,
            device_id=device["id"],
        )
        return device

    async def get_by_id(self, device_id: str, organization_id: str) -> Optional[dict[str, Any]]:
        key = device_key(device_id)
        cached = await self.cache.get(key)
        if cached is not None and cached.get("organization_id") == organization_id:
            return cached

        async with self.pool.acquire() as conn:
            device = await device_queries.fetch_device(conn, device_id, organization_id)
            if device is None:
                return None
            device["child_devices"] = await device_queries.fetch_child_devices(
                conn, device_id, organization_id
            )

        await self.cache.set(key, device, CACHE_TTL_DEVICE)
        return device

    async def list(self, organization_id: str, params: DeviceListParams) -> dict[str, Any]:
        sort_column = device_queries.resolve_sort_column(params.sort_by)
        if sort_column is None:
            raise ValidationError(
                f"unsupported sort field: {params.sort_by}",
                {"allowed": sorted(device_queries.SORT_COLUMNS)},
            )

        key = _list_cache_key(organization_id, params, sort_column)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        async with self.pool.acquire() as conn:
            result = await device_queries.fetch_devices(
                conn,
                organization_id,
                limit=params.limit,
                offset=(params.page - 1) * params.limit,
                sort_column=sort_column,
                sort_order=params.sort_order,
                device_type=_enum_value(params.type) if params.type else None,
                status=_enum_value(params.status) if params.status else None,
                search=params.search or None,
            )

        total = result["total"]
        page = {
            "data": result["devices"],
            "pagination": {
                "page": params.page,
                "limit": params.limit,
                "total": total,
                "total_pages": math.ceil(total / params.limit),
            },
        }
        await self.cache.set(key, page, CACHE_TTL_DEVICE_LIST)
        return page

    async def update(
        self,
        device_id: str,
        organization_id: str,
        data: DeviceUpdate,
    ) -> dict[str, Any]:
        fields = data.model_dump(exclude_unset=True, mode="python")
        nulled = [c for c in device_queries.NOT_NULL_COLUMNS if c in fields and fields[c] is None]
        if nulled:
            raise ValidationError(f"fields cannot be null: {', '.join(nulled)}", {"fields": nulled})
        if "type" in fields:
            fields["type"] = _enum_value(fields["type"])

        async with self.pool.acquire() as conn:
            device = await device_queries.update_device(conn, device_id, organization_id, fields)
        if device is None:
            raise NotFoundError("Device", device_id)

        previous_parent = device.pop("previous_parent_device_id", None)
        await self._invalidate(device_id, organization_id, previous_parent, device.get("parent_device_id"))
        await self.publisher.publish(
            CHANNEL_DEVICE_EVENTS,
            EVENT_DEVICE_UPDATED,
            {"device": device},
            organization_id=organization_id,
            device_id=device_id,
        )
        return device

    async def delete(self, device_id: str, organization_id: str) -> None:
        async with self.pool.acquire() as conn:
            existing = await device_queries.fetch_device(conn, device_id, organization_id)
            deleted = existing is not None and await device_queries.delete_device(
                conn, device_id, organization_id
            )
        if not deleted:
            raise NotFoundError("Device", device_id)

        await self._invalidate(device_id, organization_id, existing.get("parent_device_id"))
        log_event(logger, "device deleted", device_id=device_id, organization_id=organization_id)
        await self.publisher.publish(
            CHANNEL_DEVICE_EVENTS,
            EVENT_DEVICE_DELETED,
            {"deviceId": device_id},
            organization_id=organization_id,
            device_id=device_id,
        )

    async def update_status(self, device_id: str, status: DeviceStatus | str) -> dict[str, Any]:
        try:
            status = DeviceStatus(status)
        except ValueError:
            raise ValidationError(f"unknown device status: {status}")

        async with self.pool.acquire() as conn:
            device = await device_queries.update_device_status(
                conn,
                device_id,
                status.value,
                touch_last_seen=status is DeviceStatus.ONLINE,
            )
        if device is None:
            raise NotFoundError("Device", device_id)

        previous = device.pop("previous_status", None)
        organization_id = device["organization_id"]
        await self._invalidate(device_id, organization_id)

        if previous != status.value:
            log_event(
                logger,
                "device status changed",
                device_id=device_id,
                status=status.value,
                previous_status=previous,
            )
        await self.publisher.publish(
            CHANNEL_DEVICE_EVENTS,
            EVENT_DEVICE_STATUS_CHANGED,
            {"deviceId": device_id, "status": status.value, "previousStatus": previous},
            organization_id=organization_id,
            device_id=device_id,
        )
        return device

    async def heartbeat(self, device_id: str) -> dict[str, Any]:
        return await self.update_status(device_id, DeviceStatus.ONLINE)

    async def get_stats(self, organization_id: str) -> dict[str, Any]:
        async with self.pool.acquire() as conn:
            rows = await device_queries.fetch_status_type_counts(conn, organization_id)
        return summarize_counts(rows)

    async def get_topology(self, organization_id: str) -> dict[str, list]:
        async with self.pool.acquire() as conn:
            rows = await device_queries.fetch_topology_rows(conn, organization_id)
        return build_topology(rows)
