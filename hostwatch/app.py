from __future__ import annotations
import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from PySide6 import QtCore

from .collectors import CollectorInitError, MetricsCollector
from .config import AppConfig, apply_env, load_config, parse_interval
from .detectors import AnomalyDetector
from .logging_setup import configure_logging
from .models import anomaly_to_dict, snapshot_to_dict
from .state import SharedState
from .store import Store
from .workers import CollectionWorker

logger = logging.getLogger(__name__)


class Controller(QtCore.QObject):
    """GUI-thread side of the worker: reads published state and logs a status line."""

    def __init__(self, state: SharedState, worker: CollectionWorker):
        super().__init__()
        self.state = state
        self.worker = worker
        self.worker.snapshot_ready.connect(self.on_snapshot)
        self.worker.anomalies_ready.connect(self.on_anomalies)

    @QtCore.Slot(object)
    def on_snapshot(self, _s) -> None:
        s = self.state.latest()
        if s is None:
            return
        logger.debug(
            "CPU %.0f%% | MEM %.0f%% | NET ↓%dB ↑%dB",
            s.cpu.global_usage, s.memory.usage_percent,
            s.network.rx_bytes, s.network.tx_bytes,
        )

    @QtCore.Slot(list)
    def on_anomalies(self, anomalies) -> None:
        logger.info("%d new anomalies (%d buffered)",
                    len(anomalies), len(self.state.recent_anomalies()))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hostwatch", description="Host resource monitor and anomaly detector")
    p.add_argument("--config", help="path to config.json")
    p.add_argument("--interval", type=int, help="collection interval in seconds")
    p.add_argument("--db", help="SQLite database path")
    p.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    p.add_argument("--once", action="store_true",
                   help="collect one snapshot, print it with its anomalies as JSON and exit")
    return p


def resolve_config(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(Path(args.config) if args.config else None)
    apply_env(cfg)
    if args.interval is not None:
        secs = parse_interval(args.interval)
        if secs is None:
            logger.warning("ignoring invalid --interval %r", args.interval)
        else:
            cfg.sample_interval_ms = secs * 1000
    if args.db:
        cfg.db_path = args.db
    if args.log_level:
        cfg.log_level = args.log_level.upper()
    return cfg


def run_once(collector: MetricsCollector, detector: AnomalyDetector) -> dict:
    snapshot = collector.collect_all()
    anomalies = detector.check(snapshot)
    return {
        "snapshot": snapshot_to_dict(snapshot),
        "anomalies": [anomaly_to_dict(a) for a in anomalies],
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = resolve_config(args)
    configure_logging(cfg.log_level, None if args.once else cfg.log_dir)

    logger.info("Database: %s", cfg.db_path)
    logger.info("Collection interval: %.1fs", cfg.interval_s)

    try:
        collector = MetricsCollector(interval_s=cfg.interval_s, gpu_timeout_s=cfg.gpu_timeout_s)
    except CollectorInitError as e:
        logger.error("Failed to initialize collectors: %s", e)
        return 2
    detector = AnomalyDetector(collector.core_count())

    if args.once:
        print(json.dumps(run_once(collector, detector), indent=2, ensure_ascii=False))
        return 0

    store = Store(cfg.db_path)
    state = SharedState(cfg.anomaly_buffer_size)

    app = QtCore.QCoreApplication(sys.argv[:1])
    worker = CollectionWorker(
        collector, detector, store, state,
        interval_s=cfg.interval_s,
        retention_days=cfg.retention_days,
        cleanup_interval_s=cfg.cleanup_interval_s,
    )
    controller = Controller(state, worker)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: app.quit())
    # Python handlers only run when the interpreter regains control
    wake = QtCore.QTimer()
    wake.timeout.connect(lambda: None)
    wake.start(200)

    worker.start()
    code = app.exec()

    # Cleanup
    worker.stop()
    store.close()
    return code
