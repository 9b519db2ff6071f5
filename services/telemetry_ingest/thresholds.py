"""
Static threshold evaluation for telemetry samples.

evaluate_sample() is pure: the same sample and rule table always produce the
same ordered list of candidate alerts. Persisting and naming alerts is left to
the caller, which knows the device.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from shared.models import AlertSeverity, AlertType


@dataclass(frozen=True)
class ThresholdRule:
    metric: str
    alert_type: AlertType
    warning: float
    critical: float
    label: str
    unit: str = ""
    # True for metrics such as signal strength (dBm) where smaller is worse.
    lower_is_worse: bool = False


@dataclass(frozen=True)
class CandidateAlert:
    type: AlertType
    severity: AlertSeverity
    message: str
    metric: str
    value: float
    threshold: float


# Check order is part of the contract: alerts come out in this order.
DEFAULT_THRESHOLD_RULES: tuple[ThresholdRule, ...] = (
    ThresholdRule("latency_ms", AlertType.HIGH_LATENCY, warning=100, critical=500, label="latency", unit="ms"),
    ThresholdRule("packet_loss", AlertType.PACKET_LOSS, warning=1, critical=5, label="packet loss", unit="%"),
    ThresholdRule("cpu_usage", AlertType.HIGH_CPU, warning=80, critical=95, label="CPU usage", unit="%"),
    ThresholdRule("memory_usage", AlertType.HIGH_MEMORY, warning=85, critical=95, label="memory usage", unit="%"),
    ThresholdRule(
        "signal_strength",
        AlertType.LOW_SIGNAL,
        warning=-70,
        critical=-80,
        label="signal strength",
        unit="dBm",
        lower_is_worse=True,
    ),
    ThresholdRule("temperature", AlertType.CUSTOM, warning=70, critical=85, label="temperature", unit="C"),
)


def breaches(value: float, threshold: float, lower_is_worse: bool) -> bool:
    """True when `value` is at or beyond `threshold` in the worse direction."""
    if lower_is_worse:
        return value <= threshold
    return value >= threshold


def _numeric(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _format_value(value: float, unit: str) -> str:
    text = f"{value:g}"
    if not unit:
        return text
    if unit == "%" or unit == "ms":
        return f"{text}{unit}"
    return f"{text} {unit}"


def evaluate_rule(rule: ThresholdRule, value: float) -> Optional[CandidateAlert]:
    """Critical is checked first; a metric yields at most one alert."""
    if breaches(value, rule.critical, rule.lower_is_worse):
        severity, threshold, prefix = AlertSeverity.CRITICAL, rule.critical, "Critical"
    elif breaches(value, rule.warning, rule.lower_is_worse):
        severity, threshold = AlertSeverity.HIGH, rule.warning
        prefix = "Low" if rule.lower_is_worse else "High"
    else:
        return None
    return CandidateAlert(
        type=rule.alert_type,
        severity=severity,
        message=f"{prefix} {rule.label}: {_format_value(value, rule.unit)}",
        metric=rule.metric,
        value=value,
        threshold=threshold,
    )


def evaluate_sample(
    sample: Mapping[str, Any],
    rules: Sequence[ThresholdRule] = DEFAULT_THRESHOLD_RULES,
) -> list[CandidateAlert]:
    alerts = []
    for rule in rules:
        value = _numeric(sample.get(rule.metric))
        if value is None:
            continue
        alert = evaluate_rule(rule, value)
        if alert is not None:
            alerts.append(alert)
    return alerts


def alert_title(alert_type: AlertType, device_name: str) -> str:
    return f"{alert_type.value} on {device_name}"
