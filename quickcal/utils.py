from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .config import LLM_DEBUG, LLM_LOG_PREVIEW_CHARS


def _log_debug(message: str) -> None:
    if LLM_DEBUG:
        print(message, flush=True)


def _now_iso_utc() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def preview(value: Any, limit: int = LLM_LOG_PREVIEW_CHARS) -> str:
    return str(value or "")[:limit]
