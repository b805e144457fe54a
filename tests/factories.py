"""Snapshot builders shared by the test modules."""
from datetime import datetime, timezone
from typing import Optional, Sequence

from hostwatch.models import (
    CpuMetrics, DiskMetrics, GpuMetrics, MemoryMetrics, NetworkMetrics,
    Snapshot, Temperature, UsbDevice,
)


def make_snapshot(cpu: float = 50.0, mem: float = 50.0, temp: Optional[float] = 60.0,
                  swap_used: int = 0, disk_usage: float = 50.0,
                  read_mb: float = 0.0, write_mb: float = 0.0,
                  load15: float = 1.0, usb: Sequence[UsbDevice] = (),
                  gpu: Optional[GpuMetrics] = None,
                  timestamp: Optional[datetime] = None) -> Snapshot:
    return Snapshot(
        timestamp=timestamp or datetime.now(timezone.utc),
        cpu=CpuMetrics(global_usage=cpu, per_core=(cpu, cpu),
                       load_avg_1=1.0, load_avg_5=1.0, load_avg_15=load15),
        memory=MemoryMetrics(
            total=1000, used=int(mem * 10), available=int((100 - mem) * 10),
            usage_percent=mem, swap_total=1000, swap_used=swap_used,
        ),
        temperatures=() if temp is None else (Temperature("k10temp", temp, "Tctl"),),
        disks=(DiskMetrics(
            name="/dev/sda1", mount_point="/", total=1000,
            used=int(disk_usage * 10), available=int((100 - disk_usage) * 10),
            usage_percent=disk_usage, read_mb=read_mb, write_mb=write_mb,
        ),),
        usb_devices=tuple(usb),
        network=NetworkMetrics(),
        gpu=gpu,
    )


def make_gpu(temperature: float = 60.0, usage: float = 30.0, memory_usage: float = 20.0) -> GpuMetrics:
    return GpuMetrics(
        name="NVIDIA GeForce RTX 3080",
        temperature=temperature,
        usage_percent=usage,
        memory_usage_percent=memory_usage,
        memory_total_mb=10240,
        memory_used_mb=2048,
        memory_free_mb=8192,
        power_draw_watts=120.0,
        fan_speed_percent=40.0,
    )
