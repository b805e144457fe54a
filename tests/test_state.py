import unittest
import uuid
from datetime import datetime, timezone

from PySide6 import QtCore

from hostwatch.models import Anomaly, Category, Severity
from hostwatch.state import SharedState

from factories import make_snapshot


def anomaly(n: int) -> Anomaly:
    return Anomaly(str(uuid.uuid4()), datetime.now(timezone.utc),
                   Severity.INFO, Category.SYSTEM, f"event {n}")


class SharedStateTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])

    def test_empty_at_start(self):
        state = SharedState()
        self.assertIsNone(state.latest())
        self.assertEqual(state.recent_anomalies(), [])
        self.assertEqual(state.capacity, 100)

    def test_bounded_fifo_evicts_oldest(self):
        state = SharedState(capacity=100)
        state.append_anomalies(anomaly(i) for i in range(95))
        state.append_anomalies(anomaly(i) for i in range(95, 105))
        kept = state.recent_anomalies()
        self.assertEqual(len(kept), 100)
        self.assertEqual(kept[0].message, "event 5")
        self.assertEqual(kept[-1].message, "event 104")

    def test_readers_get_a_copy(self):
        state = SharedState(capacity=3)
        state.append_anomalies([anomaly(1)])
        state.recent_anomalies().clear()
        self.assertEqual(len(state.recent_anomalies()), 1)

    def test_publish_updates_both(self):
        state = SharedState(capacity=3)
        fired = []
        state.updated.connect(lambda: fired.append(True))
        snap = make_snapshot(cpu=12.0)
        state.publish(snap, [anomaly(1), anomaly(2)])
        self.assertIs(state.latest(), snap)
        self.assertEqual(len(state.recent_anomalies()), 2)
        self.assertEqual(fired, [True])

        newer = make_snapshot(cpu=13.0)
        state.replace_current(newer)
        self.assertIs(state.latest(), newer)


if __name__ == "__main__":
    unittest.main()
