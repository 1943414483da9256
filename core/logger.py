"""
core/logger.py — JSONL structured logger for OmniCore.

OmniLogger writes one JSON object per line to ``logs/omnicore_{date}.jsonl``,
rotating automatically each day. WARN/ERROR/CRITICAL are also mirrored
to Python stdlib logging (stderr). Thread-safe via threading.Lock.

The log directory defaults to ``logs`` and can be redirected with the
``OMNICORE_LOG_DIR`` environment variable.

Usage::

    from core.logger import get_logger
    log = get_logger()
    log.info("pipeline", "stage_started", {"stage": "route"})
    log.perf("pipeline", "run_complete", latency_ms=4812.0, data={"domain": "Code"})
"""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# ── stdlib mirror logger (stderr for WARN+) ──────────────────
_stdlib = logging.getLogger("omnicore")
if not _stdlib.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s — %(message)s"))
    _stdlib.addHandler(_handler)
_stdlib.setLevel(logging.DEBUG)
_stdlib.propagate = False

# ── Singleton storage ─────────────────────────────────────────
_instance: Optional["OmniLogger"] = None
_instance_lock = threading.Lock()


def _log_dir() -> Path:
    return Path(os.environ.get("OMNICORE_LOG_DIR", "logs"))


class OmniLogger:
    """
    Singleton JSONL structured logger for OmniCore.

    Each call to a log method appends a single JSON line to
    ``<log_dir>/omnicore_{YYYY-MM-DD}.jsonl``. A new file is opened
    automatically when the calendar date changes.

    Fields written per entry:

    .. code-block:: json

        {
          "timestamp_iso": "2026-10-19T08:20:49.123456+00:00",
          "level": "INFO",
          "phase": "pipeline",
          "event": "stage_completed",
          "data": {"stage": "route", "index": 0},
          "latency_ms": 912.4
        }

    ``latency_ms`` is omitted when ``None``.

    Do not instantiate directly — use :func:`get_logger`.
    """

    def __init__(self, log_dir: Path | None = None) -> None:
        self._lock = threading.Lock()
        self._file: Optional[Any] = None
        self._current_date: str = ""
        self._log_dir = log_dir if log_dir is not None else _log_dir()
        self._open_file()
        self._write_startup()

    # ──────────────────────────────────────────
    # Public logging methods
    # ──────────────────────────────────────────

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Write an INFO-level structured log entry.

        Args:
            phase: Subsystem (e.g. ``'pipeline'``, ``'resolver'``).
            event: Short event identifier (e.g. ``'stage_started'``).
            data: Optional dict of additional key-value context.
        """
        self._write("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write a WARN-level entry and mirror it to stderr."""
        self._write("WARN", phase, event, data)
        _stdlib.warning("[%s] %s | %s", phase, event, data or {})

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write an ERROR-level entry and mirror it to stderr."""
        self._write("ERROR", phase, event, data)
        _stdlib.error("[%s] %s | %s", phase, event, data or {})

    def critical(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write a CRITICAL-level entry and mirror it to stderr."""
        self._write("CRITICAL", phase, event, data)
        _stdlib.critical("[%s] %s | %s", phase, event, data or {})

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """
        Write a PERF-level entry for latency tracking.

        Args:
            phase: Subsystem the measurement belongs to.
            event: What was measured (e.g. ``'stage_completed'``).
            latency_ms: Measured latency in milliseconds.
            data: Optional additional context dict.
        """
        self._write("PERF", phase, event, data, latency_ms=latency_ms)

    def flush(self) -> None:
        """Flush the underlying file buffer immediately."""
        with self._lock:
            if self._file and not self._file.closed:
                self._file.flush()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _write(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        """Serialise and append one JSON line; rotation is checked on every write."""
        now = datetime.now(tz=timezone.utc)
        record: dict[str, Any] = {
            "timestamp_iso": now.isoformat(),
            "level": level,
            "phase": phase,
            "event": event,
            "data": data or {},
        }
        if latency_ms is not None:
            record["latency_ms"] = round(latency_ms, 3)

        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock:
            self._rotate_if_needed(now)
            if self._file and not self._file.closed:
                self._file.write(line + "\n")
                self._file.flush()

    def _rotate_if_needed(self, now: datetime) -> None:
        """
        Open a new log file if the calendar date has changed.

        Called inside ``self._lock`` — do not call from outside.
        """
        today = now.strftime("%Y-%m-%d")
        if today != self._current_date:
            if self._file and not self._file.closed:
                self._file.close()
            self._current_date = today
            log_path = self._log_dir / f"omnicore_{today}.jsonl"
            self._log_dir.mkdir(parents=True, exist_ok=True)
            self._file = open(log_path, "a", encoding="utf-8", buffering=1)  # noqa: WPS515

    def _open_file(self) -> None:
        now = datetime.now(tz=timezone.utc)
        with self._lock:
            self._rotate_if_needed(now)

    def _write_startup(self) -> None:
        """Write a startup entry with Python version and platform."""
        self.info(
            phase="system",
            event="startup",
            data={
                "python_version": sys.version,
                "platform": platform.platform(),
                "hostname": platform.node(),
                "timestamp_local": datetime.now().isoformat(),
            },
        )


# ──────────────────────────────────────────────────────────────
# Singleton accessor
# ──────────────────────────────────────────────────────────────

def get_logger() -> OmniLogger:
    """
    Return the singleton :class:`OmniLogger` instance.

    The first call creates the instance; subsequent calls return the same
    object without acquiring the creation lock.
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = OmniLogger()
    return _instance


def set_stderr_level(level: str) -> None:
    """Set the minimum level mirrored to stderr (``'DEBUG'``, ``'INFO'``, ``'WARN'``...)."""
    name = "WARNING" if level.upper() == "WARN" else level.upper()
    _stdlib.setLevel(getattr(logging, name, logging.INFO))
