from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import json
import logging
import os

logger = logging.getLogger(__name__)

APP_DIR = Path.home() / ".hostwatch"
DB_PATH = APP_DIR / "hostwatch.db"
CFG_PATH = APP_DIR / "config.json"
LOG_DIR = APP_DIR / "logs"


@dataclass
class AppConfig:
    sample_interval_ms: int = 2000
    db_path: str = str(DB_PATH)

    # Shared state
    anomaly_buffer_size: int = 100

    # Retention
    retention_days: int = 30
    cleanup_interval_s: int = 3600

    # GPU tool call bound
    gpu_timeout_s: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_dir: str = str(LOG_DIR)

    @property
    def interval_s(self) -> float:
        return max(1, self.sample_interval_ms) / 1000.0


def ensure_dirs(path: Path = CFG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def parse_interval(raw) -> Optional[int]:
    """Whole seconds > 0, or None."""
    try:
        secs = int(raw)
    except (TypeError, ValueError):
        return None
    return secs if secs > 0 else None


def apply_env(cfg: AppConfig, env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """HOSTWATCH_DB_PATH, HOSTWATCH_INTERVAL_SECS, HOSTWATCH_LOG_LEVEL."""
    env = os.environ if env is None else env
    if env.get("HOSTWATCH_DB_PATH"):
        cfg.db_path = env["HOSTWATCH_DB_PATH"]
    if env.get("HOSTWATCH_INTERVAL_SECS"):
        secs = parse_interval(env["HOSTWATCH_INTERVAL_SECS"])
        if secs is None:
            logger.warning("ignoring invalid HOSTWATCH_INTERVAL_SECS=%r", env["HOSTWATCH_INTERVAL_SECS"])
        else:
            cfg.sample_interval_ms = secs * 1000
    if env.get("HOSTWATCH_LOG_LEVEL"):
        cfg.log_level = env["HOSTWATCH_LOG_LEVEL"].upper()
    return cfg


def load_config(path: Optional[Path] = None) -> AppConfig:
    path = path or CFG_PATH
    ensure_dirs(path)
    if not path.exists():
        cfg = AppConfig()
        save_config(cfg, path)
        return cfg
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        known = {k: data[k] for k in data if k in AppConfig.__dataclass_fields__}
        return AppConfig(**known)
    except (OSError, ValueError, TypeError) as e:
        logger.warning("config at %s unreadable (%s), rewriting defaults", path, e)
        cfg = AppConfig()
        save_config(cfg, path)
        return cfg


def save_config(cfg: AppConfig, path: Optional[Path] = None) -> None:
    path = path or CFG_PATH
    ensure_dirs(path)
    path.write_text(json.dumps(cfg.__dict__, indent=2), encoding="utf-8")
