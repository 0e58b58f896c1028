"""Append-only event log shared by the webhook layer and the orchestrator."""

from __future__ import annotations

import os
import threading
from datetime import datetime, timezone
from pathlib import Path

from .config import BASE_DIR

_LOG_DIR = Path(os.getenv("LOG_DIR", "") or BASE_DIR / "logs")
_WRITE_LOCK = threading.Lock()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def configure_log_dir(path: Path) -> None:
    global _LOG_DIR
    _LOG_DIR = Path(path)


def log_path() -> Path:
    return _LOG_DIR / f"interview-agent-{datetime.now(timezone.utc).strftime('%Y%m%d')}.log"


def log_event(message: str):
    p = log_path()
    with _WRITE_LOCK:
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("a", encoding="utf-8") as f:
            f.write(f"[{_now()}] {message}\n")
