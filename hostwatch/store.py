from __future__ import annotations
import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .models import (
    Anomaly, Snapshot, anomaly_from_dict, snapshot_from_dict, snapshot_to_dict,
)

SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS metrics (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  timestamp TEXT NOT NULL,

  cpu_global REAL NOT NULL,
  cpu_per_core TEXT NOT NULL,      -- JSON array
  load_avg_1 REAL NOT NULL,
  load_avg_5 REAL NOT NULL,
  load_avg_15 REAL NOT NULL,

  memory_total INTEGER NOT NULL,
  memory_used INTEGER NOT NULL,
  memory_available INTEGER NOT NULL,
  memory_percent REAL NOT NULL,
  swap_total INTEGER NOT NULL,
  swap_used INTEGER NOT NULL,

  temperatures TEXT,               -- JSON array
  disks TEXT,                      -- JSON array
  usb_devices TEXT,                -- JSON array
  gpu TEXT,                        -- JSON object or NULL

  network_rx INTEGER NOT NULL,
  network_tx INTEGER NOT NULL,
  network_rx_packets INTEGER NOT NULL,
  network_tx_packets INTEGER NOT NULL,

  created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON metrics(timestamp);

CREATE TABLE IF NOT EXISTS anomalies (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  uuid TEXT NOT NULL,
  timestamp TEXT NOT NULL,
  severity TEXT NOT NULL,
  category TEXT NOT NULL,
  message TEXT NOT NULL,
  metrics TEXT NOT NULL,           -- JSON object
  created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_anomalies_timestamp ON anomalies(timestamp);

CREATE TABLE IF NOT EXISTS config (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
"""

_METRICS_COLUMNS = (
    "timestamp, cpu_global, cpu_per_core, load_avg_1, load_avg_5, load_avg_15, "
    "memory_total, memory_used, memory_available, memory_percent, swap_total, swap_used, "
    "temperatures, disks, usb_devices, gpu, "
    "network_rx, network_tx, network_rx_packets, network_tx_packets"
)
_ANOMALY_COLUMNS = "uuid, timestamp, severity, category, message, metrics"


def _ts(dt: datetime) -> str:
    # UTC ISO text sorts chronologically, which the range queries rely on
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


class Store:
    """
    SQLite persistence for snapshots and anomalies.

    Inserts are at-most-once: a failed insert raises sqlite3.Error and the
    caller decides; nothing here retries.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error:
            pass

    # ── metrics ───────────────────────────────
    def store_metrics(self, s: Snapshot) -> int:
        d = snapshot_to_dict(s)
        cur = self._conn.execute(
            f"INSERT INTO metrics({_METRICS_COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (
                _ts(s.timestamp),
                s.cpu.global_usage, json.dumps(list(s.cpu.per_core)),
                s.cpu.load_avg_1, s.cpu.load_avg_5, s.cpu.load_avg_15,
                s.memory.total, s.memory.used, s.memory.available,
                s.memory.usage_percent, s.memory.swap_total, s.memory.swap_used,
                json.dumps(d["temperatures"]), json.dumps(d["disks"]),
                json.dumps(d["usb_devices"]),
                json.dumps(d["gpu"]) if s.gpu is not None else None,
                s.network.rx_bytes, s.network.tx_bytes,
                s.network.rx_packets, s.network.tx_packets,
            ),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def get_metrics_range(self, start: datetime, end: datetime) -> List[Snapshot]:
        cur = self._conn.execute(
            f"SELECT {_METRICS_COLUMNS} FROM metrics "
            "WHERE timestamp >= ? AND timestamp <= ? ORDER BY timestamp ASC, id ASC",
            (_ts(start), _ts(end)),
        )
        return [self._row_to_snapshot(r) for r in cur.fetchall()]

    def get_recent_metrics(self, limit: int = 100) -> List[Snapshot]:
        cur = self._conn.execute(
            f"SELECT {_METRICS_COLUMNS} FROM metrics ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_snapshot(r) for r in cur.fetchall()]

    @staticmethod
    def _row_to_snapshot(r: Tuple[Any, ...]) -> Snapshot:
        (ts, cpu_global, per_core, l1, l5, l15,
         m_total, m_used, m_avail, m_pct, s_total, s_used,
         temps, disks, usb, gpu,
         rx, tx, rx_p, tx_p) = r
        return snapshot_from_dict({
            "timestamp": ts,
            "cpu": {
                "global_usage": cpu_global, "per_core": json.loads(per_core or "[]"),
                "load_avg_1": l1, "load_avg_5": l5, "load_avg_15": l15,
            },
            "memory": {
                "total": m_total, "used": m_used, "available": m_avail,
                "usage_percent": m_pct, "swap_total": s_total, "swap_used": s_used,
            },
            "temperatures": json.loads(temps or "[]"),
            "disks": json.loads(disks or "[]"),
            "usb_devices": json.loads(usb or "[]"),
            "gpu": json.loads(gpu) if gpu else None,
            "network": {
                "rx_bytes": rx, "tx_bytes": tx, "rx_packets": rx_p, "tx_packets": tx_p,
            },
        })

    # ── anomalies ─────────────────────────────
    def store_anomaly(self, a: Anomaly) -> int:
        cur = self._conn.execute(
            f"INSERT INTO anomalies({_ANOMALY_COLUMNS}) VALUES(?,?,?,?,?,?)",
            (a.id, _ts(a.timestamp), a.severity.value, a.category.value,
             a.message, json.dumps(a.metrics)),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def get_anomalies_range(self, start: datetime, end: datetime) -> List[Anomaly]:
        cur = self._conn.execute(
            f"SELECT {_ANOMALY_COLUMNS} FROM anomalies "
            "WHERE timestamp >= ? AND timestamp <= ? ORDER BY timestamp ASC, id ASC",
            (_ts(start), _ts(end)),
        )
        return [self._row_to_anomaly(r) for r in cur.fetchall()]

    def get_recent_anomalies(self, limit: int = 100) -> List[Anomaly]:
        cur = self._conn.execute(
            f"SELECT {_ANOMALY_COLUMNS} FROM anomalies ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_anomaly(r) for r in cur.fetchall()]

    @staticmethod
    def _row_to_anomaly(r: Tuple[Any, ...]) -> Anomaly:
        uid, ts, severity, category, message, metrics = r
        return anomaly_from_dict({
            "id": uid, "timestamp": ts, "severity": severity,
            "category": category, "message": message,
            "metrics": json.loads(metrics or "{}"),
        })

    # ── retention ─────────────────────────────
    def cleanup_old_data(self, retention_days: int) -> Tuple[int, int]:
        """Delete rows older than ``retention_days``. Returns (metrics, anomalies) removed."""
        cutoff = _ts(datetime.now(timezone.utc) - timedelta(days=retention_days))
        m = self._conn.execute("DELETE FROM metrics WHERE timestamp < ?", (cutoff,))
        a = self._conn.execute("DELETE FROM anomalies WHERE timestamp < ?", (cutoff,))
        self._conn.commit()
        return m.rowcount, a.rowcount

    # ── config ────────────────────────────────
    def set_config(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT INTO config(key,value,updated_at) VALUES(?,?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (key, value, _ts(datetime.now(timezone.utc))),
        )
        self._conn.commit()

    def get_config(self, key: str) -> Optional[str]:
        cur = self._conn.execute("SELECT value FROM config WHERE key=?", (key,))
        row = cur.fetchone()
        return row[0] if row else None
