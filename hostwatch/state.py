from __future__ import annotations
from typing import Iterable, List, Optional

from PySide6 import QtCore

from .models import Anomaly, Snapshot

DEFAULT_ANOMALY_CAPACITY = 100


class SharedState(QtCore.QObject):
    """
    Latest snapshot plus a bounded FIFO of recent anomalies.

    One writer (the collection worker), any number of readers. Readers get
    either a complete Snapshot or None, and a copy of the anomaly list.
    ``updated`` fires after every publish for readers that prefer a push.
    """

    updated = QtCore.Signal()

    def __init__(self, capacity: int = DEFAULT_ANOMALY_CAPACITY):
        super().__init__()
        self.capacity = max(1, int(capacity))
        self._lock = QtCore.QReadWriteLock()
        self._latest: Optional[Snapshot] = None
        self._anomalies: List[Anomaly] = []

    # ── readers ───────────────────────────────
    def latest(self) -> Optional[Snapshot]:
        self._lock.lockForRead()
        try:
            return self._latest
        finally:
            self._lock.unlock()

    def recent_anomalies(self) -> List[Anomaly]:
        self._lock.lockForRead()
        try:
            return list(self._anomalies)
        finally:
            self._lock.unlock()

    # ── writer ────────────────────────────────
    def replace_current(self, snapshot: Snapshot) -> None:
        self._lock.lockForWrite()
        try:
            self._latest = snapshot
        finally:
            self._lock.unlock()
        self.updated.emit()

    def append_anomalies(self, anomalies: Iterable[Anomaly]) -> None:
        self._lock.lockForWrite()
        try:
            self._append_locked(anomalies)
        finally:
            self._lock.unlock()
        self.updated.emit()

    def publish(self, snapshot: Snapshot, anomalies: Iterable[Anomaly]) -> None:
        """Snapshot and anomalies become visible together."""
        self._lock.lockForWrite()
        try:
            self._latest = snapshot
            self._append_locked(anomalies)
        finally:
            self._lock.unlock()
        self.updated.emit()

    def _append_locked(self, anomalies: Iterable[Anomaly]) -> None:
        self._anomalies.extend(anomalies)
        overflow = len(self._anomalies) - self.capacity
        if overflow > 0:
            del self._anomalies[:overflow]
