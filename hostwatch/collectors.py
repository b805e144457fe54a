from __future__ import annotations
import logging
import re
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import psutil

from .gpu import GpuBackend, build_gpu_backend
from .models import (
    CpuMetrics, DiskMetrics, GpuMetrics, MemoryMetrics, NetworkMetrics,
    Snapshot, Temperature, UsbDevice,
)

logger = logging.getLogger(__name__)

DISKSTATS_PATH = "/proc/diskstats"
HWMON_ROOT = "/sys/class/hwmon"
USB_DEVICES_ROOT = "/sys/bus/usb/devices"

SECTOR_SIZE = 512
MAX_TEMP_CHANNELS = 10
KERNEL_LOG_TIMEOUT_S = 5.0


class CollectorInitError(RuntimeError):
    """A required OS enumeration source is unavailable at startup."""


def _pct(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return min(100.0, max(0.0, part / whole * 100.0))


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return None


# ──────────────────────────────────────────────
# CPU
# ──────────────────────────────────────────────
class CpuSampler:
    """
    psutil computes usage from the delta between two calls, so refresh()
    primes the counters, waits ``settle_s`` and reads again.
    """

    def __init__(self, settle_s: float = 0.2):
        self.settle_s = settle_s
        self._global = 0.0
        self._per_core: Tuple[float, ...] = ()
        try:
            psutil.cpu_percent(interval=None)
            psutil.cpu_percent(interval=None, percpu=True)
        except (psutil.Error, OSError) as e:
            logger.debug("cpu warmup failed: %s", e)

    def core_count(self) -> int:
        try:
            return psutil.cpu_count(logical=True) or 1
        except (psutil.Error, OSError):
            return 1

    def refresh(self) -> None:
        try:
            psutil.cpu_percent(interval=None)
            psutil.cpu_percent(interval=None, percpu=True)
            if self.settle_s > 0:
                time.sleep(self.settle_s)
            self._global = float(psutil.cpu_percent(interval=None))
            self._per_core = tuple(float(v) for v in psutil.cpu_percent(interval=None, percpu=True))
        except (psutil.Error, OSError) as e:
            logger.debug("cpu refresh failed: %s", e)
            self._global, self._per_core = 0.0, ()

    @staticmethod
    def load_average() -> Tuple[float, float, float]:
        try:
            l1, l5, l15 = psutil.getloadavg()
        except (psutil.Error, OSError, AttributeError) as e:
            logger.debug("load average unavailable: %s", e)
            return 0.0, 0.0, 0.0
        return float(l1), float(l5), float(l15)

    def collect(self) -> CpuMetrics:
        l1, l5, l15 = self.load_average()
        return CpuMetrics(
            global_usage=min(100.0, max(0.0, self._global)),
            per_core=tuple(min(100.0, max(0.0, v)) for v in self._per_core),
            load_avg_1=l1,
            load_avg_5=l5,
            load_avg_15=l15,
        )


# ──────────────────────────────────────────────
# Memory
# ──────────────────────────────────────────────
class MemorySampler:
    def __init__(self):
        self._vm = None
        self._swap = None
        self.refresh()

    def refresh(self) -> None:
        try:
            self._vm = psutil.virtual_memory()
        except (psutil.Error, OSError) as e:
            logger.debug("virtual_memory failed: %s", e)
            self._vm = None
        try:
            self._swap = psutil.swap_memory()
        except (psutil.Error, OSError) as e:
            logger.debug("swap_memory failed: %s", e)
            self._swap = None

    def collect(self) -> MemoryMetrics:
        total = int(self._vm.total) if self._vm else 0
        available = min(total, int(self._vm.available)) if self._vm else 0
        # "used" means not available, so used + available == total
        used = max(0, total - available)
        return MemoryMetrics(
            total=total,
            used=used,
            available=available,
            usage_percent=_pct(used, total),
            swap_total=int(self._swap.total) if self._swap else 0,
            swap_used=int(self._swap.used) if self._swap else 0,
        )


# ──────────────────────────────────────────────
# Disk
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class DiskStats:
    read_sectors: int
    write_sectors: int


# sda1, vdb2, xvda1 / nvme0n1p1, mmcblk0p2, md0p1, loop0p1
_PARTITION_RE = re.compile(
    r"^(?:(?:[shv]d|xvd)[a-z]+\d+|(?:nvme\d+n\d+|mmcblk\d+|md\d+|loop\d+)p\d+)$"
)
_PARTITION_SUFFIX_RE = re.compile(r"^(.+\d)p\d+$")


def is_partition(device: str) -> bool:
    return bool(_PARTITION_RE.match(device))


def parse_diskstats(content: str) -> Dict[str, DiskStats]:
    """Whole-disk sector counters keyed by kernel device name."""
    stats: Dict[str, DiskStats] = {}
    for line in content.splitlines():
        parts = line.split()
        if len(parts) < 14:
            continue
        device = parts[2]
        if is_partition(device):
            continue
        try:
            stats[device] = DiskStats(int(parts[5]), int(parts[9]))
        except ValueError:
            continue
    return stats


def read_diskstats(path: str = DISKSTATS_PATH) -> Dict[str, DiskStats]:
    with open(path, "r", encoding="utf-8") as fh:
        return parse_diskstats(fh.read())


def candidate_names(disk_name: str) -> List[str]:
    """
    Names a mounted device may appear under in the counter table:
    /dev/sda1 -> sda1, sda ; /dev/nvme0n1p2 -> nvme0n1p2, nvme0n1.
    """
    device = disk_name[5:] if disk_name.startswith("/dev/") else disk_name
    names = [device]
    m = _PARTITION_SUFFIX_RE.match(device)
    if m:
        names.append(m.group(1))
    stripped = device.rstrip("0123456789")
    if stripped and stripped not in names:
        names.append(stripped)
    return names


class DiskSampler:
    """
    Space usage per mounted filesystem plus I/O rate from sector counters.

    Rates are the sector delta since the previous collect(), converted to MB
    and divided by the nominal sampling interval. The first observation of a
    device yields 0; counter resets saturate to 0.
    """

    def __init__(self, interval_s: float = 2.0, diskstats_path: str = DISKSTATS_PATH,
                 sector_size: int = SECTOR_SIZE):
        self.interval_s = interval_s if interval_s > 0 else 1.0
        self.diskstats_path = diskstats_path
        self.sector_size = sector_size
        try:
            read_diskstats(diskstats_path)
        except OSError as e:
            raise CollectorInitError(f"cannot read disk counters from {diskstats_path}: {e}") from e
        # empty until the first collect(), so first-call rates are 0
        self._previous: Dict[str, DiskStats] = {}
        self._partitions: list = []
        self._last: List[DiskMetrics] = []

    def refresh(self) -> None:
        try:
            self._partitions = list(psutil.disk_partitions(all=False))
        except (psutil.Error, OSError) as e:
            logger.debug("disk_partitions failed, keeping previous list: %s", e)

    def io_rate(self, disk_name: str, current: Dict[str, DiskStats]) -> Tuple[float, float]:
        for name in candidate_names(disk_name):
            cur = current.get(name)
            prev = self._previous.get(name)
            if cur is None or prev is None:
                continue
            read_sectors = max(0, cur.read_sectors - prev.read_sectors)
            write_sectors = max(0, cur.write_sectors - prev.write_sectors)
            scale = self.sector_size / 1024.0 / 1024.0 / self.interval_s
            return read_sectors * scale, write_sectors * scale
        return 0.0, 0.0

    def collect(self) -> List[DiskMetrics]:
        try:
            current = read_diskstats(self.diskstats_path)
        except OSError as e:
            logger.debug("diskstats read failed: %s", e)
            current = {}

        out: List[DiskMetrics] = []
        for part in self._partitions:
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except (psutil.Error, OSError) as e:
                logger.debug("disk_usage(%s) failed: %s", part.mountpoint, e)
                continue
            total = int(usage.total)
            if total <= 0:
                continue
            available = min(total, int(usage.free))
            used = max(0, total - available)
            read_mb, write_mb = self.io_rate(part.device, current)
            out.append(DiskMetrics(
                name=part.device,
                mount_point=part.mountpoint,
                total=total,
                used=used,
                available=available,
                usage_percent=_pct(used, total),
                read_mb=read_mb,
                write_mb=write_mb,
            ))

        self._previous = current
        self._last = out
        return out

    def max_usage(self) -> float:
        return max((d.usage_percent for d in self._last), default=0.0)

    def max_io_rate(self) -> float:
        return max((d.read_mb + d.write_mb for d in self._last), default=0.0)


# ──────────────────────────────────────────────
# Network
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class InterfaceStats:
    name: str
    rx_bytes: int
    tx_bytes: int
    rx_packets: int
    tx_packets: int


def _is_loopback(name: str) -> bool:
    return name == "lo" or bool(re.match(r"^lo\d+$", name)) or name.lower().startswith("loopback")


def _read_per_nic() -> Optional[dict]:
    try:
        return psutil.net_io_counters(pernic=True)
    except (psutil.Error, OSError) as e:
        logger.debug("net_io_counters failed: %s", e)
        return None


def _interface_rows(per_nic: dict) -> List[InterfaceStats]:
    rows: List[InterfaceStats] = []
    for name, c in sorted(per_nic.items()):
        if _is_loopback(name):
            continue
        rows.append(InterfaceStats(
            name=name,
            rx_bytes=int(c.bytes_recv),
            tx_bytes=int(c.bytes_sent),
            rx_packets=int(c.packets_recv),
            tx_packets=int(c.packets_sent),
        ))
    return rows


class NetworkSampler:
    """
    Traffic since the previous collect(), summed over non-loopback interfaces.

    Deltas are taken per interface and only for interfaces present in both
    readings, so one interface vanishing or resetting its counters does not
    hide the traffic of the others.
    """

    def __init__(self):
        self._previous: Optional[Dict[str, InterfaceStats]] = self._read_rows()

    def interface_stats(self) -> List[InterfaceStats]:
        return _interface_rows(_read_per_nic() or {})

    @staticmethod
    def _read_rows() -> Optional[Dict[str, InterfaceStats]]:
        per_nic = _read_per_nic()
        if per_nic is None:
            return None
        return {r.name: r for r in _interface_rows(per_nic)}

    def collect(self) -> NetworkMetrics:
        current = self._read_rows()
        prev = self._previous
        rx = tx = rx_p = tx_p = 0
        if current is not None and prev is not None:
            for name, cur in current.items():
                old = prev.get(name)
                if old is None:
                    continue
                # saturating: a counter reset or wrap reads as zero traffic
                rx += max(0, cur.rx_bytes - old.rx_bytes)
                tx += max(0, cur.tx_bytes - old.tx_bytes)
                rx_p += max(0, cur.rx_packets - old.rx_packets)
                tx_p += max(0, cur.tx_packets - old.tx_packets)
        self._previous = current
        return NetworkMetrics(rx_bytes=rx, tx_bytes=tx, rx_packets=rx_p, tx_packets=tx_p)

    def total_mb(self) -> float:
        if not self._previous:
            return 0.0
        total = sum(r.rx_bytes + r.tx_bytes for r in self._previous.values())
        return total / 1024.0 / 1024.0

    @staticmethod
    def count_established_connections() -> int:
        try:
            conns = psutil.net_connections(kind="tcp")
        except (psutil.Error, OSError) as e:
            logger.debug("net_connections failed: %s", e)
            return 0
        return sum(1 for c in conns if c.status == psutil.CONN_ESTABLISHED)


# ──────────────────────────────────────────────
# Temperature
# ──────────────────────────────────────────────
class TemperatureSampler:
    """hwmon sensor groups, temp1_input..tempN_input in millidegrees."""

    CPU_SENSORS = ("k10temp", "coretemp")
    NVME_SENSORS = ("nvme",)
    GPU_SENSORS = ("amdgpu", "nvidia", "radeon")

    def __init__(self, root: str = HWMON_ROOT, max_channels: int = MAX_TEMP_CHANNELS):
        self.root = Path(root)
        self.max_channels = max_channels

    def collect(self) -> List[Temperature]:
        temps: List[Temperature] = []
        try:
            groups = sorted(self.root.iterdir())
        except OSError as e:
            logger.debug("hwmon unavailable at %s: %s", self.root, e)
            return temps
        for group in groups:
            temps.extend(self._read_group(group))
        return temps

    def _read_group(self, group: Path) -> List[Temperature]:
        sensor = _read_text(group / "name") or "unknown"
        out: List[Temperature] = []
        for i in range(1, self.max_channels + 1):
            raw = _read_text(group / f"temp{i}_input")
            if raw is None:
                continue
            try:
                value = int(raw) / 1000.0
            except ValueError:
                continue
            label = _read_text(group / f"temp{i}_label") or f"Sensor {i}"
            out.append(Temperature(sensor=sensor, value=value, label=label))
        return out

    def _filtered(self, needles: Iterable[str]) -> List[Temperature]:
        needles = tuple(needles)
        return [t for t in self.collect() if any(n in t.sensor for n in needles)]

    def cpu_temps(self) -> List[Temperature]:
        return self._filtered(self.CPU_SENSORS)

    def nvme_temps(self) -> List[Temperature]:
        return self._filtered(self.NVME_SENSORS)

    def gpu_temps(self) -> List[Temperature]:
        return self._filtered(self.GPU_SENSORS)

    def max_temp(self) -> float:
        return max((t.value for t in self.collect()), default=0.0)


# ──────────────────────────────────────────────
# USB
# ──────────────────────────────────────────────
def read_kernel_log() -> str:
    """Recent kernel ring buffer; empty when dmesg is missing or denied."""
    try:
        proc = subprocess.run(
            ["dmesg", "-T", "--since", "5 minutes ago"],
            capture_output=True, text=True, timeout=KERNEL_LOG_TIMEOUT_S, check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("dmesg unavailable: %s", e)
        return ""
    if proc.returncode != 0:
        logger.debug("dmesg exited %s", proc.returncode)
        return ""
    return proc.stdout


_BUS_PATH_RE = re.compile(r"(\d+-[\d.]+)")


def extract_device_id(line: str) -> Optional[str]:
    """
    Best-effort device path from a kernel message:
    "usb 1-2: timeout" -> "1-2", "device timeout on usb1-2.3" -> "1-2.3".
    """
    for word in line.split():
        if "-" not in word or not any(ch.isdigit() for ch in word):
            continue
        m = _BUS_PATH_RE.search(word)
        if m:
            return m.group(1).rstrip(".")
    return None


def scan_usb_timeouts(log_text: str) -> Set[str]:
    found: Set[str] = set()
    for line in log_text.lower().splitlines():
        if "usb" in line and "timeout" in line:
            dev = extract_device_id(line)
            if dev:
                found.add(dev)
    return found


class UsbSampler:
    def __init__(self, root: str = USB_DEVICES_ROOT,
                 kernel_log: Callable[[], str] = read_kernel_log):
        self.root = Path(root)
        self.kernel_log = kernel_log

    def _read_device(self, path: Path) -> Optional[UsbDevice]:
        # interfaces (e.g. "1-2:1.0") carry no idVendor/idProduct
        vendor = _read_text(path / "idVendor")
        product = _read_text(path / "idProduct")
        if vendor is None or product is None:
            return None
        dev_id = f"{vendor}:{product}"
        return UsbDevice(
            id=dev_id,
            manufacturer=_read_text(path / "manufacturer") or "Unknown",
            product=_read_text(path / "product") or f"USB Device {dev_id}",
            bus_path=path.name,
        )

    def _timeouts(self) -> Set[str]:
        try:
            return scan_usb_timeouts(self.kernel_log() or "")
        except Exception as e:  # heuristic only, must not fail the sampler
            logger.debug("usb timeout scan failed: %s", e)
            return set()

    def collect(self) -> List[UsbDevice]:
        devices: List[UsbDevice] = []
        try:
            entries = sorted(self.root.iterdir())
        except OSError as e:
            logger.debug("usb sysfs unavailable at %s: %s", self.root, e)
            return devices
        for entry in entries:
            dev = self._read_device(entry)
            if dev is not None:
                devices.append(dev)

        timed_out = self._timeouts()
        if not timed_out:
            return devices
        return [
            UsbDevice(d.id, d.manufacturer, d.product, True, d.bus_path)
            if (d.bus_path in timed_out or d.id in timed_out) else d
            for d in devices
        ]

    def has_recent_timeouts(self) -> bool:
        return bool(self._timeouts())

    def timeout_count(self) -> int:
        return sum(1 for d in self.collect() if d.has_timeout)


# ──────────────────────────────────────────────
# GPU
# ──────────────────────────────────────────────
class GpuSampler:
    def __init__(self, backend: GpuBackend):
        self.backend = backend

    def available(self) -> bool:
        return self.backend.available()

    def collect(self) -> Optional[GpuMetrics]:
        if not self.backend.available():
            return None
        return self.backend.collect()


# ──────────────────────────────────────────────
# MetricsCollector – one tick
# ──────────────────────────────────────────────
class MetricsCollector:
    """
    Owns the seven samplers and builds one Snapshot per collect_all().
    Only construction can fail (CollectorInitError from the disk sampler);
    per-tick read errors are absorbed by each sampler.
    """

    def __init__(self, interval_s: float = 2.0, gpu_timeout_s: float = 5.0, *,
                 cpu: Optional[CpuSampler] = None,
                 memory: Optional[MemorySampler] = None,
                 disk: Optional[DiskSampler] = None,
                 network: Optional[NetworkSampler] = None,
                 temperature: Optional[TemperatureSampler] = None,
                 usb: Optional[UsbSampler] = None,
                 gpu: Optional[GpuSampler] = None):
        self.cpu = cpu if cpu is not None else CpuSampler()
        self.memory = memory if memory is not None else MemorySampler()
        self.disk = disk if disk is not None else DiskSampler(interval_s=interval_s)
        self.network = network if network is not None else NetworkSampler()
        self.temperature = temperature if temperature is not None else TemperatureSampler()
        self.usb = usb if usb is not None else UsbSampler()
        self.gpu = gpu if gpu is not None else GpuSampler(build_gpu_backend(gpu_timeout_s))
        logger.debug("MetricsCollector initialized (gpu=%s)", self.gpu.available())

    def core_count(self) -> int:
        return self.cpu.core_count()

    def collect_all(self) -> Snapshot:
        self.cpu.refresh()
        self.memory.refresh()
        self.disk.refresh()

        return Snapshot(
            timestamp=datetime.now(timezone.utc),
            cpu=self.cpu.collect(),
            memory=self.memory.collect(),
            temperatures=tuple(self.temperature.collect()),
            disks=tuple(self.disk.collect()),
            usb_devices=tuple(self.usb.collect()),
            network=self.network.collect(),
            gpu=self.gpu.collect(),
        )
