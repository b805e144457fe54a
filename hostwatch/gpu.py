"""GPU backends. Vendor-specific, optional, never required for a tick."""
from __future__ import annotations
import logging
import shutil
import subprocess
from typing import List, Optional

from .models import GpuMetrics

logger = logging.getLogger(__name__)

NVIDIA_SMI = "nvidia-smi"
_QUERY_FIELDS = (
    "name,temperature.gpu,utilization.gpu,utilization.memory,"
    "memory.total,memory.used,memory.free,power.draw,fan.speed"
)


class GpuBackend:
    """No-GPU backend; also the interface alternate vendors implement."""

    def available(self) -> bool:
        return False

    def collect(self) -> Optional[GpuMetrics]:
        return None


class NullGpuBackend(GpuBackend):
    """Used when no vendor tool is present."""


def _num(raw: str) -> float:
    # nvidia-smi prints "[N/A]" / "[Not Supported]" for missing sensors
    try:
        return float(raw.strip())
    except ValueError:
        return 0.0


def parse_nvidia_smi_row(line: str) -> Optional[GpuMetrics]:
    """
    Parse one ``--format=csv,noheader,nounits`` row in query-field order.
    Returns None when the row has fewer than nine columns.
    """
    line = line.strip()
    if not line:
        return None
    parts: List[str] = [p.strip() for p in line.split(",")]
    if len(parts) < 9:
        logger.warning("Unexpected nvidia-smi output format: %s", line)
        return None
    return GpuMetrics(
        name=parts[0],
        temperature=_num(parts[1]),
        usage_percent=min(100.0, max(0.0, _num(parts[2]))),
        memory_usage_percent=min(100.0, max(0.0, _num(parts[3]))),
        memory_total_mb=int(_num(parts[4])),
        memory_used_mb=int(_num(parts[5])),
        memory_free_mb=int(_num(parts[6])),
        power_draw_watts=_num(parts[7]),
        fan_speed_percent=min(100.0, max(0.0, _num(parts[8]))),
    )


class NvidiaSmiBackend(GpuBackend):
    """
    Reads the first GPU through the ``nvidia-smi`` CLI.
    Availability is probed once at construction; every call is bounded
    by ``timeout_s`` so a hung driver cannot stall the tick.
    """

    def __init__(self, timeout_s: float = 5.0, executable: str = NVIDIA_SMI):
        self.timeout_s = timeout_s
        self.executable = executable
        self._available = self._probe()
        if self._available:
            logger.debug("nvidia-smi detected, GPU metrics collection enabled")
        else:
            logger.debug("nvidia-smi not available, GPU metrics collection disabled")

    def _probe(self) -> bool:
        if shutil.which(self.executable) is None:
            return False
        try:
            proc = subprocess.run(
                [self.executable, "--version"],
                capture_output=True, text=True, timeout=self.timeout_s, check=False,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return proc.returncode == 0

    def available(self) -> bool:
        return self._available

    def collect(self) -> Optional[GpuMetrics]:
        if not self._available:
            return None
        try:
            proc = subprocess.run(
                [self.executable, f"--query-gpu={_QUERY_FIELDS}",
                 "--format=csv,noheader,nounits"],
                capture_output=True, text=True, timeout=self.timeout_s, check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("nvidia-smi timed out after %.1fs", self.timeout_s)
            return None
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("nvidia-smi invocation failed: %s", e)
            return None
        if proc.returncode != 0:
            logger.warning("nvidia-smi command failed (exit %s)", proc.returncode)
            return None
        lines = proc.stdout.strip().splitlines()
        return parse_nvidia_smi_row(lines[0]) if lines else None


def build_gpu_backend(timeout_s: float = 5.0) -> GpuBackend:
    backend = NvidiaSmiBackend(timeout_s=timeout_s)
    if backend.available():
        return backend
    return NullGpuBackend()
