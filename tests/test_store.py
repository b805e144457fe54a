import os
import sqlite3
import tempfile
import unittest
import uuid
from datetime import datetime, timedelta, timezone

from hostwatch.models import Anomaly, Category, Severity, UsbDevice
from hostwatch.store import Store

from factories import make_gpu, make_snapshot


def anomaly(ts: datetime, message: str = "CPU spike detected: 10% → 60%") -> Anomaly:
    return Anomaly(str(uuid.uuid4()), ts, Severity.WARNING, Category.CPU, message,
                   {"previous": 10.0, "current": 60.0, "delta": 50.0})


class StoreTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = Store(os.path.join(self._tmp.name, "data", "hostwatch.db"))
        self.now = datetime.now(timezone.utc)

    def tearDown(self):
        self.store.close()
        self._tmp.cleanup()

    def test_metrics_round_trip_through_rows(self):
        usb = [UsbDevice("046d:c52b", "Logitech", "Receiver", True, "1-2")]
        snap = make_snapshot(cpu=33.0, temp=55.0, read_mb=1.5, usb=usb, gpu=make_gpu(), timestamp=self.now)
        row_id = self.store.store_metrics(snap)
        self.assertGreater(row_id, 0)

        [loaded] = self.store.get_recent_metrics(1)
        self.assertEqual(loaded, snap)

    def test_snapshot_without_gpu(self):
        self.store.store_metrics(make_snapshot(timestamp=self.now))
        self.assertIsNone(self.store.get_recent_metrics(1)[0].gpu)

    def test_metrics_range_is_inclusive_and_ascending(self):
        times = [self.now - timedelta(minutes=m) for m in (30, 20, 10, 0)]
        for ts in reversed(times):
            self.store.store_metrics(make_snapshot(timestamp=ts))
        got = self.store.get_metrics_range(times[1], times[3])
        self.assertEqual([s.timestamp for s in got], times[1:])

    def test_recent_is_newest_first(self):
        for m in (3, 1, 2):
            self.store.store_metrics(make_snapshot(cpu=float(m), timestamp=self.now - timedelta(minutes=m)))
        self.assertEqual([s.cpu.global_usage for s in self.store.get_recent_metrics(2)], [1.0, 2.0])

    def test_anomalies(self):
        old = anomaly(self.now - timedelta(hours=2))
        new = anomaly(self.now, "Critical temperature reached: 88°C")
        self.store.store_anomaly(new)
        self.store.store_anomaly(old)

        self.assertEqual(self.store.get_recent_anomalies(10), [new, old])
        got = self.store.get_anomalies_range(self.now - timedelta(hours=1), self.now)
        self.assertEqual(got, [new])

    def test_cleanup_old_data(self):
        self.store.store_metrics(make_snapshot(timestamp=self.now - timedelta(days=40)))
        self.store.store_metrics(make_snapshot(timestamp=self.now))
        self.store.store_anomaly(anomaly(self.now - timedelta(days=40)))
        self.assertEqual(self.store.cleanup_old_data(30), (1, 1))
        self.assertEqual(len(self.store.get_recent_metrics()), 1)
        self.assertEqual(self.store.get_recent_anomalies(), [])

    def test_config(self):
        self.assertIsNone(self.store.get_config("theme"))
        self.store.set_config("theme", "dark")
        self.store.set_config("theme", "light")
        self.assertEqual(self.store.get_config("theme"), "light")

    def test_insert_failure_raises(self):
        self.store.close()
        with self.assertRaises(sqlite3.Error):
            self.store.store_metrics(make_snapshot())


if __name__ == "__main__":
    unittest.main()
