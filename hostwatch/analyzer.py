"""
Snapshot comparison helpers.

The maxima feed the detector; calculate_delta, calculate_rate,
classify_severity and has_usb_timeout are public helpers for consumers
reading stored snapshots.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

from .models import Severity, Snapshot


@dataclass(frozen=True)
class MetricsDelta:
    cpu_usage_delta: float
    memory_usage_delta: float
    temperature_delta: float
    swap_delta: int
    disk_io_delta: float


def max_temperature(s: Snapshot) -> float:
    return max((t.value for t in s.temperatures), default=0.0)


def max_disk_usage(s: Snapshot) -> float:
    return max((d.usage_percent for d in s.disks), default=0.0)


def max_disk_io(s: Snapshot) -> float:
    return max((d.read_mb + d.write_mb for d in s.disks), default=0.0)


def timed_out_devices(s: Snapshot) -> List[str]:
    return [d.id for d in s.usb_devices if d.has_timeout]


def has_usb_timeout(s: Snapshot) -> bool:
    return any(d.has_timeout for d in s.usb_devices)


def calculate_delta(current: Snapshot, previous: Snapshot) -> MetricsDelta:
    """Signed change from ``previous`` to ``current``."""
    return MetricsDelta(
        cpu_usage_delta=current.cpu.global_usage - previous.cpu.global_usage,
        memory_usage_delta=current.memory.usage_percent - previous.memory.usage_percent,
        temperature_delta=max_temperature(current) - max_temperature(previous),
        swap_delta=current.memory.swap_used - previous.memory.swap_used,
        disk_io_delta=max_disk_io(current) - max_disk_io(previous),
    )


def calculate_rate(delta: float, time_interval_secs: float) -> float:
    if time_interval_secs > 0:
        return delta / time_interval_secs
    return 0.0


def classify_severity(value: float, warning_threshold: float,
                      critical_threshold: float) -> Optional[Severity]:
    if value >= critical_threshold:
        return Severity.CRITICAL
    if value >= warning_threshold:
        return Severity.WARNING
    return None
