from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .analyzer import (
    max_disk_io, max_disk_usage, max_temperature, timed_out_devices,
)
from .models import Anomaly, Category, Severity, Snapshot


# ──────────────────────────────────────────────
# Fixed thresholds
# ──────────────────────────────────────────────
CPU_SPIKE_THRESHOLD = 40.0          # percentage points between ticks
CPU_CRITICAL_THRESHOLD = 90.0       # % usage, both ticks
MEMORY_SPIKE_THRESHOLD = 20.0       # percentage points between ticks
MEMORY_CRITICAL_THRESHOLD = 95.0    # % usage
TEMPERATURE_CRITICAL = 85.0         # °C
TEMPERATURE_DROP_THRESHOLD = 30.0   # °C decrease between ticks
DISK_CRITICAL_THRESHOLD = 90.0      # % usage
DISK_IO_HIGH_THRESHOLD = 500.0      # MB/s, read + write
LOAD_AVG_MULTIPLIER = 2.0           # x logical cores
GPU_TEMP_CRITICAL = 90.0            # °C
GPU_USAGE_CRITICAL = 95.0           # % usage
GPU_MEMORY_CRITICAL = 95.0          # % usage


class AnomalyDetector:
    """
    Compares each snapshot with the one before it and against fixed limits.

    Comparative rules need the retained previous snapshot and are skipped on
    the first call; absolute rules run every time. The retained snapshot is
    replaced on every check(), whether or not anything fired.
    """

    def __init__(self, num_cpus: int):
        self.num_cpus = max(1, int(num_cpus))
        self._previous: Optional[Snapshot] = None

    # ══════════════════════════════════════════
    # PUBLIC entry-points
    # ══════════════════════════════════════════

    def check(self, current: Snapshot) -> List[Anomaly]:
        anomalies: List[Anomaly] = []
        if self._previous is not None:
            anomalies.extend(self._check_comparative(current, self._previous))
        anomalies.extend(self._check_absolute(current))
        self._previous = current
        return anomalies

    def reset(self) -> None:
        self._previous = None

    def has_previous_metrics(self) -> bool:
        return self._previous is not None

    # ══════════════════════════════════════════
    # PRIVATE rule implementations
    # ══════════════════════════════════════════

    def _check_comparative(self, cur: Snapshot, prev: Snapshot) -> List[Anomaly]:
        out: List[Anomaly] = []

        # ── CPU spike ─────────────────────────
        cpu_delta = cur.cpu.global_usage - prev.cpu.global_usage
        if cpu_delta > CPU_SPIKE_THRESHOLD:
            out.append(_anomaly(
                Severity.WARNING, Category.CPU,
                f"CPU spike detected: {prev.cpu.global_usage:.0f}% → {cur.cpu.global_usage:.0f}%",
                previous=prev.cpu.global_usage, current=cur.cpu.global_usage, delta=cpu_delta,
            ))

        # ── sustained CPU (level-triggered) ───
        if (cur.cpu.global_usage > CPU_CRITICAL_THRESHOLD
                and prev.cpu.global_usage > CPU_CRITICAL_THRESHOLD):
            out.append(_anomaly(
                Severity.CRITICAL, Category.CPU,
                f"Sustained critical CPU usage: {cur.cpu.global_usage:.0f}%",
                usage=cur.cpu.global_usage,
            ))

        # ── memory spike ──────────────────────
        mem_delta = cur.memory.usage_percent - prev.memory.usage_percent
        if mem_delta > MEMORY_SPIKE_THRESHOLD:
            out.append(_anomaly(
                Severity.WARNING, Category.MEMORY,
                f"Memory spike detected: {prev.memory.usage_percent:.0f}% → {cur.memory.usage_percent:.0f}%",
                previous=prev.memory.usage_percent, current=cur.memory.usage_percent, delta=mem_delta,
            ))

        # ── temperature crossing (edge-triggered) ──
        cur_temp = max_temperature(cur)
        prev_temp = max_temperature(prev)
        if cur_temp > TEMPERATURE_CRITICAL and prev_temp <= TEMPERATURE_CRITICAL:
            out.append(_anomaly(
                Severity.CRITICAL, Category.TEMPERATURE,
                f"Critical temperature reached: {cur_temp:.0f}°C",
                temperature=cur_temp,
            ))

        # ── sudden temperature drop ───────────
        drop = prev_temp - cur_temp
        if drop > TEMPERATURE_DROP_THRESHOLD:
            out.append(_anomaly(
                Severity.WARNING, Category.TEMPERATURE,
                f"Sudden temperature drop: {prev_temp:.0f}°C → {cur_temp:.0f}°C",
                previous=prev_temp, current=cur_temp, delta=drop,
            ))

        # ── swap activation (edge-triggered) ──
        if prev.memory.swap_used == 0 and cur.memory.swap_used > 0:
            out.append(_anomaly(
                Severity.WARNING, Category.MEMORY,
                "SWAP memory activated",
                swap_used=cur.memory.swap_used,
            ))

        return out

    def _check_absolute(self, cur: Snapshot) -> List[Anomaly]:
        out: List[Anomaly] = []

        if cur.memory.usage_percent > MEMORY_CRITICAL_THRESHOLD:
            out.append(_anomaly(
                Severity.CRITICAL, Category.MEMORY,
                f"Critical memory usage: {cur.memory.usage_percent:.0f}%",
                usage=cur.memory.usage_percent,
            ))

        disk_usage = max_disk_usage(cur)
        if disk_usage > DISK_CRITICAL_THRESHOLD:
            out.append(_anomaly(
                Severity.WARNING, Category.DISK,
                f"Critical disk usage: {disk_usage:.0f}%",
                usage=disk_usage,
            ))

        devices = timed_out_devices(cur)
        if devices:
            out.append(_anomaly(
                Severity.CRITICAL, Category.USB,
                f"USB timeout detected: {', '.join(devices)}",
                devices=devices,
            ))

        disk_io = max_disk_io(cur)
        if disk_io > DISK_IO_HIGH_THRESHOLD:
            out.append(_anomaly(
                Severity.WARNING, Category.DISK,
                f"High disk I/O: {disk_io:.0f} MB/s",
                io_mbs=disk_io,
            ))

        load_threshold = self.num_cpus * LOAD_AVG_MULTIPLIER
        if cur.cpu.load_avg_15 > load_threshold:
            out.append(_anomaly(
                Severity.CRITICAL, Category.CPU,
                f"Critical load average: {cur.cpu.load_avg_15:.2f}",
                load_avg_15=cur.cpu.load_avg_15, threshold=load_threshold, num_cpus=self.num_cpus,
            ))

        gpu = cur.gpu
        if gpu is not None:
            if gpu.temperature > GPU_TEMP_CRITICAL:
                out.append(_anomaly(
                    Severity.CRITICAL, Category.GPU,
                    f"Critical GPU temperature: {gpu.temperature:.0f}°C",
                    temperature=gpu.temperature, gpu_name=gpu.name,
                ))
            if gpu.usage_percent > GPU_USAGE_CRITICAL:
                out.append(_anomaly(
                    Severity.WARNING, Category.GPU,
                    f"Critical GPU usage: {gpu.usage_percent:.0f}%",
                    usage=gpu.usage_percent, gpu_name=gpu.name,
                ))
            if gpu.memory_usage_percent > GPU_MEMORY_CRITICAL:
                out.append(_anomaly(
                    Severity.WARNING, Category.GPU,
                    f"Critical GPU memory usage: {gpu.memory_usage_percent:.0f}%",
                    memory_usage=gpu.memory_usage_percent,
                    memory_used_mb=gpu.memory_used_mb,
                    memory_total_mb=gpu.memory_total_mb,
                    gpu_name=gpu.name,
                ))

        return out


def _anomaly(severity: Severity, category: Category, message: str, **metrics: Any) -> Anomaly:
    payload: Dict[str, Any] = dict(metrics)
    return Anomaly(
        id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc),
        severity=severity,
        category=category,
        message=message,
        metrics=payload,
    )
