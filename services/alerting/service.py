"""Alert persistence and lifecycle transitions."""

from __future__ import annotations

import logging
from typing import Any, Optional

import asyncpg

from alerting import queries as alert_queries
from shared.constants import (
    CHANNEL_ALERT_EVENTS,
    EVENT_ALERT_ACKNOWLEDGED,
    EVENT_ALERT_CREATED,
    EVENT_ALERT_RESOLVED,
)
from shared.errors import NotFoundError, ValidationError
from shared.events import EventPublisher
from shared.logging import log_event
from shared.metrics import alerts_created_total
from shared.models import AlertSeverity, AlertType

logger = logging.getLogger(__name__)

MAX_ALERT_PAGE = 200


class AlertService:
    def __init__(self, pool: asyncpg.Pool, publisher: EventPublisher):
        self.pool = pool
        self.publisher = publisher

    async def create_alert(
        self,
        organization_id: str,
        device_id: Optional[str],
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
    ) -> dict[str, Any]:
        """Persist an alert and announce it. Persistence errors propagate."""
        async with self.pool.acquire() as conn:
            alert = await alert_queries.insert_alert(
                conn,
                organization_id,
                device_id,
                AlertType(alert_type).value,
                AlertSeverity(severity).value,
                title,
                message,
            )
        alerts_created_total.labels(type=alert["type"], severity=alert["severity"]).inc()
        log_event(
            logger,
            "alert created",
            alert_id=alert["id"],
            alert_type=alert["type"],
            severity=alert["severity"],
            device_id=device_id,
        )
        await self.publisher.publish(
            CHANNEL_ALERT_EVENTS,
            EVENT_ALERT_CREATED,
            {"alert": alert},
            organization_id=organization_id,
            device_id=device_id,
        )
        return alert

    async def list_alerts(
        self,
        organization_id: str,
        unresolved_only: bool = False,
        severity: AlertSeverity | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be >= 1 and offset >= 0")
        if severity is not None:
            try:
                severity = AlertSeverity(severity).value
            except ValueError:
                raise ValidationError(f"unknown severity: {severity}")
        async with self.pool.acquire() as conn:
            return await alert_queries.fetch_alerts(
                conn,
                organization_id,
                unresolved_only=unresolved_only,
                severity=severity,
                limit=min(limit, MAX_ALERT_PAGE),
                offset=offset,
            )

    async def acknowledge(
        self,
        alert_id: str,
        organization_id: str,
        user_id: str,
    ) -> dict[str, Any]:
        async with self.pool.acquire() as conn:
            alert = await alert_queries.acknowledge_alert(conn, alert_id, organization_id, user_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id)

        await self.publisher.publish(
            CHANNEL_ALERT_EVENTS,
            EVENT_ALERT_ACKNOWLEDGED,
            {"alertId": alert["id"], "acknowledgedBy": alert["acknowledged_by"]},
            organization_id=organization_id,
            device_id=alert.get("device_id"),
        )
        return alert

    async def resolve(
        self,
        alert_id: str,
        organization_id: str,
        resolved_by: Optional[str] = None,
    ) -> dict[str, Any]:
        async with self.pool.acquire() as conn:
            alert = await alert_queries.resolve_alert(conn, alert_id, organization_id, resolved_by)
        if alert is None:
            raise NotFoundError("Alert", alert_id)

        log_event(logger, "alert resolved", alert_id=alert["id"], resolved_by=alert["resolved_by"])
        await self.publisher.publish(
            CHANNEL_ALERT_EVENTS,
            EVENT_ALERT_RESOLVED,
            {"alertId": alert["id"], "resolvedBy": alert["resolved_by"]},
            organization_id=organization_id,
            device_id=alert.get("device_id"),
        )
        return alert
