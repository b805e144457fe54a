from __future__ import annotations
import logging
import sqlite3
import time
from typing import List, Optional

from PySide6 import QtCore

from .collectors import MetricsCollector
from .detectors import AnomalyDetector
from .models import Anomaly, Snapshot
from .state import SharedState
from .store import Store

logger = logging.getLogger(__name__)

_POLL_S = 0.1


class CollectionWorker(QtCore.QThread):
    """
    The tick loop: sample -> detect -> persist -> publish, once per interval.

    Runs on its own thread and is the only writer of the detector history and
    of the shared state. stop() is honoured between ticks, never mid-tick, so
    an in-flight store write always completes.
    """

    snapshot_ready = QtCore.Signal(object)   # Snapshot
    anomalies_ready = QtCore.Signal(list)    # List[Anomaly]

    def __init__(self, collector: MetricsCollector, detector: AnomalyDetector,
                 store: Optional[Store], state: SharedState, interval_s: float = 2.0,
                 retention_days: int = 30, cleanup_interval_s: float = 3600):
        super().__init__()
        self.collector = collector
        self.detector = detector
        self.store = store
        self.state = state
        self.interval_s = interval_s
        self.retention_days = retention_days
        self.cleanup_interval_s = cleanup_interval_s

        self._running = True
        self._last_cleanup: Optional[float] = None
        self.ticks = 0

    def stop(self) -> None:
        """Graceful shutdown; blocks until the current tick has finished."""
        self._running = False
        self.wait()

    def run(self) -> None:
        logger.info("Starting collection loop (interval %.1fs)", self.interval_s)
        while self._running:
            started = time.monotonic()
            try:
                self.tick()
            except Exception:
                # one bad tick must not end the loop
                logger.exception("Collection tick failed")

            deadline = started + self.interval_s
            while self._running:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                time.sleep(min(_POLL_S, remaining))
        logger.info("Collection loop stopped after %d ticks", self.ticks)

    def tick(self) -> List[Anomaly]:
        snapshot = self.collector.collect_all()
        anomalies = self.detector.check(snapshot)
        for a in anomalies:
            logger.warning("[%s] %s", a.severity.value, a.message)

        self._persist(snapshot, anomalies)
        self.state.publish(snapshot, anomalies)

        self.snapshot_ready.emit(snapshot)
        if anomalies:
            self.anomalies_ready.emit(anomalies)

        self._maybe_cleanup()
        self.ticks += 1
        logger.debug("Metrics collected and stored")
        return anomalies

    # ── persistence (logged and dropped, never retried) ──
    def _persist(self, snapshot: Snapshot, anomalies: List[Anomaly]) -> None:
        if self.store is None:
            return
        try:
            self.store.store_metrics(snapshot)
        except sqlite3.Error as e:
            logger.error("Failed to store metrics: %s", e)

        for a in anomalies:
            try:
                self.store.store_anomaly(a)
            except sqlite3.Error as e:
                logger.error("Failed to store anomaly %s: %s", a.id, e)

    def _maybe_cleanup(self) -> None:
        if self.store is None or self.retention_days <= 0:
            return
        now = time.monotonic()
        if self._last_cleanup is not None and now - self._last_cleanup < self.cleanup_interval_s:
            return
        self._last_cleanup = now
        try:
            removed_m, removed_a = self.store.cleanup_old_data(self.retention_days)
        except sqlite3.Error as e:
            logger.error("Retention cleanup failed: %s", e)
            return
        if removed_m or removed_a:
            logger.info("Retention cleanup removed %d metrics, %d anomalies", removed_m, removed_a)
