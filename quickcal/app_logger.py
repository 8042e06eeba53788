"""
JSON-lines event log.

Every notable step of a scheduling turn is written as one line
``{"timestamp", "level", "event", "data"}`` so the recent history of a
session can be inspected from the debug endpoint. Writing never raises.
"""

from __future__ import annotations

import json
import logging
import pathlib
from typing import Any, Dict, List, Optional

from .config import DEFAULT_RECENT_LOGS, LOG_FILE, MAX_RECENT_LOGS
from .utils import _now_iso_utc

logger = logging.getLogger("quickcal")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_log_file: Optional[pathlib.Path] = LOG_FILE


def set_log_file(path: Optional[pathlib.Path]) -> None:
    """Redirect the event log; ``None`` keeps events in the logging module only."""
    global _log_file
    _log_file = path


def get_log_file_path() -> Optional[str]:
    return str(_log_file) if _log_file else None


def _to_safe_json(value: Any) -> Any:
    try:
        return json.loads(json.dumps(value, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return str(value)


def log_event(level: str, event: str, data: Optional[Dict[str, Any]] = None) -> None:
    payload = {
        "timestamp": _now_iso_utc(),
        "level": str(level or "info"),
        "event": str(event or "unknown"),
        "data": _to_safe_json(data or {}),
    }
    line = json.dumps(payload, ensure_ascii=False)
    logger.log(_LEVELS.get(payload["level"], logging.INFO), "%s %s", payload["event"],
               json.dumps(payload["data"], ensure_ascii=False))
    if _log_file is None:
        return
    try:
        _log_file.parent.mkdir(parents=True, exist_ok=True)
        with _log_file.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
    except OSError as exc:
        logger.warning("event log write failed: %s", exc)


def read_recent_logs(limit: int = DEFAULT_RECENT_LOGS) -> Dict[str, Any]:
    try:
        max_lines = max(1, min(int(limit), MAX_RECENT_LOGS))
    except (TypeError, ValueError):
        max_lines = DEFAULT_RECENT_LOGS
    path = get_log_file_path()
    if _log_file is None or not _log_file.exists():
        return {"path": path, "entries": []}
    try:
        lines = [line.strip() for line in _log_file.read_text(encoding="utf-8").splitlines()]
    except OSError as exc:
        logger.warning("event log read failed: %s", exc)
        return {"path": path, "entries": []}

    entries: List[Dict[str, Any]] = []
    for line in [item for item in lines if item][-max_lines:]:
        try:
            entries.append(json.loads(line))
        except ValueError:
            entries.append({
                "timestamp": None,
                "level": "raw",
                "event": "raw_line",
                "data": line,
            })
    return {"path": path, "entries": entries}
