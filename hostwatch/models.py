from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Severity(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    CRITICAL = "Critical"


class Category(str, Enum):
    CPU = "Cpu"
    MEMORY = "Memory"
    TEMPERATURE = "Temperature"
    DISK = "Disk"
    USB = "Usb"
    NETWORK = "Network"
    GPU = "Gpu"
    SYSTEM = "System"


@dataclass(frozen=True)
class CpuMetrics:
    global_usage: float                 # 0-100
    per_core: Tuple[float, ...] = ()
    load_avg_1: float = 0.0
    load_avg_5: float = 0.0
    load_avg_15: float = 0.0


@dataclass(frozen=True)
class MemoryMetrics:
    total: int                          # bytes
    used: int
    available: int
    usage_percent: float                # 0 when total is 0
    swap_total: int = 0
    swap_used: int = 0


@dataclass(frozen=True)
class Temperature:
    sensor: str                         # hwmon group name, e.g. "k10temp"
    value: float                        # °C
    label: str


@dataclass(frozen=True)
class DiskMetrics:
    name: str
    mount_point: str
    total: int
    used: int
    available: int
    usage_percent: float
    read_mb: float = 0.0                # MB per tick interval
    write_mb: float = 0.0


@dataclass(frozen=True)
class UsbDevice:
    id: str                             # vendor:product
    manufacturer: str
    product: str
    has_timeout: bool = False
    bus_path: str = ""                  # sysfs entry name, e.g. "1-2.3"


@dataclass(frozen=True)
class NetworkMetrics:
    rx_bytes: int = 0                   # deltas since previous read
    tx_bytes: int = 0
    rx_packets: int = 0
    tx_packets: int = 0


@dataclass(frozen=True)
class GpuMetrics:
    name: str
    temperature: float
    usage_percent: float
    memory_usage_percent: float
    memory_total_mb: int
    memory_used_mb: int
    memory_free_mb: int
    power_draw_watts: float
    fan_speed_percent: float


@dataclass(frozen=True)
class Snapshot:
    timestamp: datetime
    cpu: CpuMetrics
    memory: MemoryMetrics
    temperatures: Tuple[Temperature, ...] = ()
    disks: Tuple[DiskMetrics, ...] = ()
    usb_devices: Tuple[UsbDevice, ...] = ()
    network: NetworkMetrics = field(default_factory=NetworkMetrics)
    gpu: Optional[GpuMetrics] = None


@dataclass(frozen=True)
class Anomaly:
    id: str
    timestamp: datetime
    severity: Severity
    category: Category
    message: str
    metrics: Dict[str, Any] = field(default_factory=dict)


# ──────────────────────────────────────────────
# JSON-shaped conversion (store rows, --once output)
# ──────────────────────────────────────────────

def snapshot_to_dict(s: Snapshot) -> Dict[str, Any]:
    d = asdict(s)
    d["timestamp"] = s.timestamp.isoformat()
    return d


def snapshot_from_dict(d: Dict[str, Any]) -> Snapshot:
    cpu = dict(d["cpu"])
    cpu["per_core"] = tuple(cpu.get("per_core") or ())
    gpu = d.get("gpu")
    return Snapshot(
        timestamp=datetime.fromisoformat(d["timestamp"]),
        cpu=CpuMetrics(**cpu),
        memory=MemoryMetrics(**d["memory"]),
        temperatures=tuple(Temperature(**t) for t in d.get("temperatures") or ()),
        disks=tuple(DiskMetrics(**x) for x in d.get("disks") or ()),
        usb_devices=tuple(UsbDevice(**u) for u in d.get("usb_devices") or ()),
        network=NetworkMetrics(**(d.get("network") or {})),
        gpu=GpuMetrics(**gpu) if gpu else None,
    )


def anomaly_to_dict(a: Anomaly) -> Dict[str, Any]:
    return {
        "id": a.id,
        "timestamp": a.timestamp.isoformat(),
        "severity": a.severity.value,
        "category": a.category.value,
        "message": a.message,
        "metrics": dict(a.metrics),
    }


def anomaly_from_dict(d: Dict[str, Any]) -> Anomaly:
    return Anomaly(
        id=d["id"],
        timestamp=datetime.fromisoformat(d["timestamp"]),
        severity=Severity(d["severity"]),
        category=Category(d["category"]),
        message=d["message"],
        metrics=dict(d.get("metrics") or {}),
    )
