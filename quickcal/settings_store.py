from __future__ import annotations

import json
import logging
import pathlib
import threading
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import DEFAULT_INSTRUCTION_PRESETS, MAX_HISTORY_ITEMS
from .models import HistoryEntry, InstructionPreset, Settings, SettingsPatch

logger = logging.getLogger(__name__)


def _dedupe_presets(raw_presets: Any) -> List[InstructionPreset]:
    source = raw_presets if isinstance(raw_presets, list) else DEFAULT_INSTRUCTION_PRESETS
    unique: List[InstructionPreset] = []
    seen_ids = set()
    for index, preset in enumerate(source):
        data = preset.model_dump() if isinstance(preset, InstructionPreset) else dict(preset or {})
        sanitized = InstructionPreset(
            id=str(data.get("id") or f"preset-{index + 1}"),
            name=str(data.get("name") or "Untitled"),
            text=str(data.get("text") or ""),
        )
        if sanitized.id in seen_ids:
            continue
        seen_ids.add(sanitized.id)
        unique.append(sanitized)
    if not unique:
        unique = [InstructionPreset(**preset) for preset in DEFAULT_INSTRUCTION_PRESETS]
    return unique


def merge_with_defaults(raw: Optional[Dict[str, Any]] = None) -> Settings:
    """Build a Settings value from stored JSON, dropping unknown or invalid keys."""
    data = dict(raw or {})
    presets = _dedupe_presets(data.pop("instruction_presets", None))
    history = data.pop("history", None)

    known = {}
    for key, value in data.items():
        if key not in Settings.model_fields:
            continue
        try:
            Settings.model_validate({key: value})
        except ValidationError:
            logger.warning("ignoring invalid setting %s=%r", key, value)
            continue
        known[key] = value

    settings = Settings.model_validate(known)
    if settings.default_duration_minutes <= 0:
        settings.default_duration_minutes = Settings.model_fields["default_duration_minutes"].default
    settings.instruction_presets = presets
    if not any(preset.id == settings.active_preset_id for preset in presets):
        settings.active_preset_id = presets[0].id

    entries: List[HistoryEntry] = []
    for item in history if isinstance(history, list) else []:
        try:
            entries.append(HistoryEntry.model_validate(item))
        except ValidationError:
            continue
    settings.history = entries[:MAX_HISTORY_ITEMS]
    return settings


def active_instruction_text(settings: Settings) -> str:
    if settings.instruction.strip():
        return settings.instruction.strip()
    for preset in settings.instruction_presets:
        if preset.id == settings.active_preset_id:
            return preset.text.strip()
    return ""


class SettingsStore:
    """
    JSON-file backed settings with the creation history.

    With ``path=None`` everything stays in memory, which is what the tests
    and ephemeral deployments use.
    """

    def __init__(self, path: Optional[pathlib.Path] = None):
        self.path = pathlib.Path(path) if path else None
        self._lock = threading.Lock()
        self._memory: Optional[Settings] = None

    def _read(self) -> Settings:
        if self.path is None:
            if self._memory is None:
                self._memory = merge_with_defaults()
            return self._memory.model_copy(deep=True)
        if not self.path.exists():
            return self._write(merge_with_defaults())
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("settings file unreadable, using defaults: %s", exc)
            return self._write(merge_with_defaults())
        return merge_with_defaults(raw if isinstance(raw, dict) else None)

    def _write(self, settings: Settings) -> Settings:
        if self.path is None:
            self._memory = settings.model_copy(deep=True)
            return settings
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(settings.model_dump(), ensure_ascii=False, indent=2), encoding="utf-8")
        return settings

    def load(self) -> Settings:
        with self._lock:
            return self._read()

    def save(self, settings: Settings) -> Settings:
        with self._lock:
            return self._write(merge_with_defaults(settings.model_dump()))

    def update(self, patch: SettingsPatch) -> Settings:
        with self._lock:
            current = self._read().model_dump()
            current.update(patch.model_dump(exclude_unset=True))
            return self._write(merge_with_defaults(current))

    def append_history(self, entry: HistoryEntry) -> Settings:
        with self._lock:
            current = self._read()
            current.history = [entry, *current.history][:MAX_HISTORY_ITEMS]
            return self._write(current)

    def history(self) -> List[HistoryEntry]:
        return self.load().history
