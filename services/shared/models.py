"""Enumerations and input models for devices, telemetry and alerts."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.constants import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT


class DeviceType(str, Enum):
    ROUTER = "ROUTER"
    ACCESS_POINT = "ACCESS_POINT"
    GATEWAY = "GATEWAY"
    MESH_NODE = "MESH_NODE"
    SWITCH = "SWITCH"
    MODEM = "MODEM"
    REPEATER = "REPEATER"


class DeviceStatus(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    DEGRADED = "DEGRADED"
    MAINTENANCE = "MAINTENANCE"
    UNKNOWN = "UNKNOWN"


class AlertType(str, Enum):
    DEVICE_OFFLINE = "DEVICE_OFFLINE"
    HIGH_LATENCY = "HIGH_LATENCY"
    PACKET_LOSS = "PACKET_LOSS"
    HIGH_CPU = "HIGH_CPU"
    HIGH_MEMORY = "HIGH_MEMORY"
    LOW_SIGNAL = "LOW_SIGNAL"
    FIRMWARE_UPDATE = "FIRMWARE_UPDATE"
    SECURITY = "SECURITY"
    CUSTOM = "CUSTOM"


class AlertSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


# Optional numeric columns of a telemetry sample, in storage order.
METRIC_FIELDS = (
    "latency_ms",
    "jitter_ms",
    "packet_loss",
    "bandwidth_up",
    "bandwidth_down",
    "cpu_usage",
    "memory_usage",
    "disk_usage",
    "temperature",
    "signal_strength",
    "connected_clients",
)


class _InputModel(BaseModel):
    # Accept both snake_case and the camelCase names used by device agents.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TelemetryInput(_InputModel):
    device_id: str = Field(min_length=1)
    latency_ms: Optional[float] = Field(default=None, ge=0)
    jitter_ms: Optional[float] = Field(default=None, ge=0)
    packet_loss: Optional[float] = Field(default=None, ge=0, le=100)
    bandwidth_up: Optional[float] = Field(default=None, ge=0)
    bandwidth_down: Optional[float] = Field(default=None, ge=0)
    cpu_usage: Optional[float] = Field(default=None, ge=0, le=100)
    memory_usage: Optional[float] = Field(default=None, ge=0, le=100)
    disk_usage: Optional[float] = Field(default=None, ge=0, le=100)
    temperature: Optional[float] = None
    signal_strength: Optional[float] = None
    connected_clients: Optional[int] = Field(default=None, ge=0)
    metadata: Optional[dict[str, Any]] = None

    def metrics(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in METRIC_FIELDS}


class DeviceInput(_InputModel):
    name: str = Field(min_length=1, max_length=255)
    type: DeviceType
    # Accepted for compatibility; creation always starts at UNKNOWN.
    status: Optional[DeviceStatus] = None
    ip_address: Optional[str] = Field(default=None, max_length=64)
    mac_address: Optional[str] = Field(default=None, max_length=32)
    firmware_version: Optional[str] = Field(default=None, max_length=64)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    location_name: Optional[str] = Field(default=None, max_length=255)
    parent_device_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    config: Optional[dict[str, Any]] = None


class DeviceUpdate(_InputModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[DeviceType] = None
    ip_address: Optional[str] = Field(default=None, max_length=64)
    mac_address: Optional[str] = Field(default=None, max_length=32)
    firmware_version: Optional[str] = Field(default=None, max_length=64)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    location_name: Optional[str] = Field(default=None, max_length=255)
    parent_device_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    config: Optional[dict[str, Any]] = None


class DeviceListParams(_InputModel):
    page: int = Field(default=DEFAULT_PAGE, ge=1)
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    sort_by: str = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    type: Optional[DeviceType] = None
    status: Optional[DeviceStatus] = None
    search: Optional[str] = Field(default=None, max_length=255)
