import subprocess
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from hostwatch.gpu import (
    NullGpuBackend, NvidiaSmiBackend, build_gpu_backend, parse_nvidia_smi_row,
)

ROW = "NVIDIA GeForce RTX 3080, 64, 37, 12, 10240, 2048, 8192, 115.50, 45"


def completed(stdout="", returncode=0):
    return SimpleNamespace(stdout=stdout, stderr="", returncode=returncode)


class ParseRowTests(unittest.TestCase):
    def test_full_row(self):
        g = parse_nvidia_smi_row(ROW)
        self.assertEqual(g.name, "NVIDIA GeForce RTX 3080")
        self.assertEqual(g.temperature, 64.0)
        self.assertEqual(g.usage_percent, 37.0)
        self.assertEqual(g.memory_usage_percent, 12.0)
        self.assertEqual((g.memory_total_mb, g.memory_used_mb, g.memory_free_mb), (10240, 2048, 8192))
        self.assertAlmostEqual(g.power_draw_watts, 115.5)
        self.assertEqual(g.fan_speed_percent, 45.0)

    def test_not_available_fields_are_zero(self):
        g = parse_nvidia_smi_row("Tesla T4, 40, 0, 0, 15360, 0, 15360, [N/A], [N/A]")
        self.assertEqual(g.power_draw_watts, 0.0)
        self.assertEqual(g.fan_speed_percent, 0.0)

    def test_percent_fields_are_clamped(self):
        g = parse_nvidia_smi_row("X, 40, 130, -5, 100, 10, 90, 50, 110")
        self.assertEqual(g.usage_percent, 100.0)
        self.assertEqual(g.memory_usage_percent, 0.0)
        self.assertEqual(g.fan_speed_percent, 100.0)
        self.assertEqual(parse_nvidia_smi_row("X, 40, 10, 10, 100, 10, 90, 50, -3").fan_speed_percent, 0.0)

    def test_short_row(self):
        self.assertIsNone(parse_nvidia_smi_row("GPU, 50, 10"))
        self.assertIsNone(parse_nvidia_smi_row(""))


class NvidiaSmiBackendTests(unittest.TestCase):
    def test_missing_binary_is_unavailable(self):
        with patch("hostwatch.gpu.shutil.which", return_value=None):
            backend = NvidiaSmiBackend()
        self.assertFalse(backend.available())
        self.assertIsNone(backend.collect())

    def test_collect_first_gpu(self):
        responses = [completed("NVIDIA-SMI 550.54\n"), completed(ROW + "\nsecond gpu row\n")]
        with patch("hostwatch.gpu.shutil.which", return_value="/usr/bin/nvidia-smi"), \
                patch("hostwatch.gpu.subprocess.run", side_effect=responses) as run:
            backend = NvidiaSmiBackend(timeout_s=3.0)
            self.assertTrue(backend.available())
            g = backend.collect()
        self.assertEqual(g.name, "NVIDIA GeForce RTX 3080")
        self.assertEqual(run.call_args.kwargs["timeout"], 3.0)

    def test_timeout_yields_none(self):
        responses = [completed("ok"), subprocess.TimeoutExpired("nvidia-smi", 3.0)]
        with patch("hostwatch.gpu.shutil.which", return_value="/usr/bin/nvidia-smi"), \
                patch("hostwatch.gpu.subprocess.run", side_effect=responses):
            backend = NvidiaSmiBackend(timeout_s=3.0)
            self.assertIsNone(backend.collect())

    def test_failed_command_yields_none(self):
        responses = [completed("ok"), completed("", returncode=9)]
        with patch("hostwatch.gpu.shutil.which", return_value="/usr/bin/nvidia-smi"), \
                patch("hostwatch.gpu.subprocess.run", side_effect=responses):
            self.assertIsNone(NvidiaSmiBackend().collect())

    def test_build_falls_back_to_null(self):
        with patch("hostwatch.gpu.shutil.which", return_value=None):
            backend = build_gpu_backend()
        self.assertIsInstance(backend, NullGpuBackend)
        self.assertIsNone(backend.collect())


if __name__ == "__main__":
    unittest.main()
