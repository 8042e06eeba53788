from __future__ import annotations

import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..config import DEFAULT_DURATION_MINUTES, MAX_SESSION_IMAGES
from ..models import DraftPreview, EventDraft, ImageInput
from .dates import add_minutes, coerce_local_datetime, parse_flexible_datetime

# Fields a refinement is allowed to overwrite. Confirmation flags are owned by
# the dialogue and never come from the interpreter.
REFINABLE_FIELDS = (
    "title",
    "start",
    "end",
    "location",
    "description",
    "confidence",
    "uncertain",
    "needs_clarification",
    "clarification_question",
)

# LLM output and older clients use camelCase keys.
_FIELD_ALIASES = {
    "needsClarification": "needs_clarification",
    "clarificationQuestion": "clarification_question",
    "userConfirmed": "user_confirmed",
    "duplicateConfirmed": "duplicate_confirmed",
}

_FALSY_STRINGS = {"", "0", "false", "no", "off", "none", "null"}
_DATE_PART_RE = re.compile(r"\d{4}-\d{1,2}-\d{1,2}")

DraftLike = Union[EventDraft, Mapping[str, Any], None]


def normalize_input_as_text(value: Optional[str]) -> str:
  if not isinstance(value, str):
    return ""
  return value.strip()


def _as_dict(draft: DraftLike) -> Dict[str, Any]:
  if draft is None:
    return {}
  if isinstance(draft, EventDraft):
    return draft.model_dump()
  if not isinstance(draft, Mapping):
    return {}
  data: Dict[str, Any] = {}
  for key, value in draft.items():
    data[_FIELD_ALIASES.get(key, key)] = value
  return data


def _coerce_str(value: Any) -> str:
  if value is None:
    return ""
  return str(value).strip()


def _coerce_bool(value: Any) -> bool:
  if isinstance(value, str):
    return value.strip().lower() not in _FALSY_STRINGS
  return bool(value)


def _coerce_timestamp(value: Any) -> str:
  """Canonical local timestamp, or "" when no calendar date can be resolved."""
  text = _coerce_str(value)
  if not text:
    return ""
  parsed = parse_flexible_datetime(text, allow_loose=False)
  if parsed:
    return parsed
  if _DATE_PART_RE.search(text):
    return coerce_local_datetime(text) or ""
  return ""


def _coerce_confidence(value: Any) -> float:
  if isinstance(value, bool):
    return 1.0 if value else 0.0
  try:
    number = float(value)
  except (TypeError, ValueError):
    return 0.0
  if math.isnan(number):
    return 0.0
  return min(1.0, max(0.0, number))


def sanitize_draft(draft: DraftLike,
                   default_duration_minutes: int = DEFAULT_DURATION_MINUTES) -> EventDraft:
  """Coerce any draft-shaped value into an EventDraft and fill a default end."""
  raw = _as_dict(draft)
  normalized = EventDraft(
      title=_coerce_str(raw.get("title")),
      start=_coerce_timestamp(raw.get("start")),
      end=_coerce_timestamp(raw.get("end")),
      location=_coerce_str(raw.get("location")),
      description=_coerce_str(raw.get("description")),
      confidence=_coerce_confidence(raw.get("confidence")),
      uncertain=_coerce_bool(raw.get("uncertain")),
      needs_clarification=_coerce_bool(raw.get("needs_clarification")),
      clarification_question=_coerce_str(raw.get("clarification_question")),
      user_confirmed=_coerce_bool(raw.get("user_confirmed")),
      duplicate_confirmed=_coerce_bool(raw.get("duplicate_confirmed")),
  )
  if normalized.start and not normalized.end:
    normalized.end = add_minutes(normalized.start, default_duration_minutes) or ""
  return normalized


def merge_refined_draft(draft: EventDraft, refined: DraftLike) -> EventDraft:
  """Overwrite known draft fields with a refinement; unknown keys are ignored."""
  updates = _as_dict(refined)
  merged = draft.model_dump()
  for field in REFINABLE_FIELDS:
    if field in updates:
      merged[field] = updates[field]
  return EventDraft(**{
      **merged,
      "title": _coerce_str(merged["title"]),
      "start": _coerce_str(merged["start"]),
      "end": _coerce_str(merged["end"]),
      "location": _coerce_str(merged["location"]),
      "description": _coerce_str(merged["description"]),
      "confidence": _coerce_confidence(merged["confidence"]),
      "uncertain": _coerce_bool(merged["uncertain"]),
      "needs_clarification": _coerce_bool(merged["needs_clarification"]),
      "clarification_question": _coerce_str(merged["clarification_question"]),
  })


def clear_pending_question(draft: EventDraft) -> EventDraft:
  return draft.model_copy(update={
      "needs_clarification": False,
      "clarification_question": "",
  })


def build_draft_preview(draft: EventDraft) -> DraftPreview:
  return DraftPreview(
      title=draft.title,
      start=draft.start,
      end=draft.end,
      location=draft.location,
      description=draft.description,
  )


def _estimate_size(data_base64: str) -> int:
  return (len(data_base64) * 3) // 4


def normalize_image_inputs(raw_inputs: Optional[Iterable[Any]]) -> List[ImageInput]:
  if not raw_inputs:
    return []
  normalized: List[ImageInput] = []
  for item in raw_inputs:
    if isinstance(item, ImageInput):
      raw = item.model_dump()
    elif isinstance(item, Mapping):
      raw = dict(item)
    else:
      continue
    mime_type = _coerce_str(raw.get("mime_type") or raw.get("mimeType")).lower()
    data_base64 = _coerce_str(raw.get("data_base64") or raw.get("dataBase64"))
    if not mime_type or not data_base64:
      continue
    name = _coerce_str(raw.get("name")) or "image"
    estimated = _estimate_size(data_base64)
    try:
      size_bytes = int(raw.get("size_bytes") or raw.get("sizeBytes") or estimated)
    except (TypeError, ValueError):
      size_bytes = estimated
    normalized.append(ImageInput(
        name=name,
        mime_type=mime_type,
        data_base64=data_base64,
        size_bytes=size_bytes if size_bytes > 0 else estimated,
    ))
  return normalized


def merge_image_inputs(base_inputs: Optional[Iterable[Any]],
                       additional_inputs: Optional[Iterable[Any]]) -> List[ImageInput]:
  merged = normalize_image_inputs(base_inputs) + normalize_image_inputs(additional_inputs)
  return merged[-MAX_SESSION_IMAGES:]
