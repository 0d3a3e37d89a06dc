from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from site_monitor.probe import FailureKind, ProbeFailure, ProbeResult, ProbeSuccess


class AlertReason(str, enum.Enum):
    UNREACHABLE = "unreachable"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class AlertEvent:
    target: str
    timestamp: datetime
    reason: AlertReason
    detail: str
    duration: float | None = None


def format_seconds(value: float) -> str:
    return f"{float(value):.2f}s"


def classify(result: ProbeResult, timeout_threshold: float, *, now: datetime | None = None) -> AlertEvent | None:
    """
    Decide whether a probe result is alert-worthy.

    Every failure alerts: hard timeouts as TIMED_OUT, everything else as
    UNREACHABLE with the raw error detail. A successful load alerts as
    TIMED_OUT only when it took strictly longer than ``timeout_threshold``.
    """
    ts = now or datetime.now()

    if isinstance(result, ProbeFailure):
        if result.kind is FailureKind.TIMEOUT:
            return AlertEvent(target=result.url, timestamp=ts, reason=AlertReason.TIMED_OUT, detail=result.detail)
        return AlertEvent(target=result.url, timestamp=ts, reason=AlertReason.UNREACHABLE, detail=result.detail)

    if isinstance(result, ProbeSuccess):
        if result.duration > float(timeout_threshold):
            return AlertEvent(
                target=result.url,
                timestamp=ts,
                reason=AlertReason.TIMED_OUT,
                detail=f"load time {format_seconds(result.duration)}",
                duration=result.duration,
            )
        return None

    raise TypeError(f"Unsupported probe result: {result!r}")
