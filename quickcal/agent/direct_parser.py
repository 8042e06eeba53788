from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence, Tuple
import re

from ..config import DEFAULT_DURATION_MINUTES, DEFAULT_TITLE
from ..models import EventDraft
from .dates import (
    DAY_TOKEN,
    add_minutes,
    now_local,
    parse_flexible_datetime,
)

QUESTION_TITLE = "What is the title of the event?"
QUESTION_START = "When does it start? (e.g. 2026-02-14 19:00)"
QUESTION_END = "When does it end? (e.g. 2026-02-14 20:00)"

_LABELS = {
    "title": ("Title:", "タイトル:"),
    "start": ("Start:", "開始:"),
    "end": ("End:", "終了:"),
    "location": ("Location:", "場所:"),
    "description": ("Description:", "説明:"),
}

_DASHES = "-~〜–—"
_NUM_WIDE = "[0-9０-９〇零一二三四五六七八九十]"
_RELATIVE_TAIL = (
    rf"(?:(?::|：)\s*{_NUM_WIDE}{{1,3}}|時半|時\s*{_NUM_WIDE}{{0,3}}\s*分?)?")

_RANGE_RE = re.compile(
    rf"(\d{{4}}[/-]\d{{1,2}}[/-]\d{{1,2}})\s+(\d{{1,2}}:\d{{2}})\s*[{_DASHES}]\s*(\d{{1,2}}:\d{{2}})")
_DATE_CANDIDATE_RE = re.compile(
    r"(\d{4}[/-]\d{1,2}[/-]\d{1,2}(?:\s+\d{1,2}(?::\d{2})?)?"
    r"|\d{1,2}[/-]\d{1,2}(?:\s+\d{1,2}(?::\d{2})?)?"
    rf"|(?:{DAY_TOKEN})\s*{_NUM_WIDE}{{1,3}}{_RELATIVE_TAIL})",
    re.IGNORECASE)

_LEADING_PREFIXES = (
    re.compile(
        rf"^\d{{4}}[/-]\d{{1,2}}[/-]\d{{1,2}}\s+\d{{1,2}}:\d{{2}}\s*[{_DASHES}]\s*\d{{1,2}}:\d{{2}}\s*"),
    re.compile(r"^\d{4}[/-]\d{1,2}[/-]\d{1,2}\s+\d{1,2}(?::\d{2})?\s*"),
    re.compile(r"^\d{1,2}[/-]\d{1,2}\s+\d{1,2}(?::\d{2})?\s*"),
    re.compile(
        rf"^(?:{DAY_TOKEN})\s*{_NUM_WIDE}{{1,3}}{_RELATIVE_TAIL}(?:\s*(?:am|pm))?\s*",
        re.IGNORECASE),
)
_CONNECTOR_RE = re.compile(r"^(?:から|より|(?:from|starting)\b)\s*", re.IGNORECASE)


def _extract_line_value(lines: Sequence[str], field: str) -> str:
  for line in lines:
    for label in _LABELS[field]:
      if line.startswith(label):
        return line[len(label):].strip()
  return ""


def _extract_range(text: str, now: datetime) -> Optional[Tuple[str, str]]:
  match = _RANGE_RE.search(text)
  if not match:
    return None
  date_text = match.group(1).replace("/", "-")
  start = parse_flexible_datetime(f"{date_text} {match.group(2)}", now)
  end = parse_flexible_datetime(f"{date_text} {match.group(3)}", now)
  if not start or not end:
    return None
  return start, end


def _extract_date_candidates(text: str, now: datetime) -> List[str]:
  found: List[str] = []
  for match in _DATE_CANDIDATE_RE.finditer(text):
    parsed = parse_flexible_datetime(match.group(0), now)
    if parsed:
      found.append(parsed)
  return found


def strip_leading_schedule_prefix(text: str) -> str:
  source = (text or "").strip()
  if not source:
    return ""
  stripped = source
  for pattern in _LEADING_PREFIXES:
    stripped = pattern.sub("", stripped, count=1)
  if stripped != source:
    stripped = _CONNECTOR_RE.sub("", stripped, count=1)
  return stripped.strip()


def parse_direct_input(text: Optional[str],
                       default_duration_minutes: int = DEFAULT_DURATION_MINUTES,
                       now: Optional[datetime] = None) -> EventDraft:
  """Build a draft from labelled or loosely patterned text without any LLM call."""
  reference = now or now_local()
  normalized_text = (text or "").strip()
  lines = [line.strip() for line in normalized_text.split("\n") if line.strip()]

  explicit_title = _extract_line_value(lines, "title")
  explicit_start = _extract_line_value(lines, "start")
  explicit_end = _extract_line_value(lines, "end")
  explicit_location = _extract_line_value(lines, "location")
  explicit_description = _extract_line_value(lines, "description")

  span = _extract_range(normalized_text, reference)
  from_whole_text = parse_flexible_datetime(normalized_text, reference)
  candidates = _extract_date_candidates(normalized_text, reference)

  start = (parse_flexible_datetime(explicit_start, reference)
           or (span[0] if span else None)
           or from_whole_text
           or (candidates[0] if candidates else None)
           or "")
  end = (parse_flexible_datetime(explicit_end, reference)
         or (span[1] if span else None)
         or (candidates[1] if len(candidates) > 1 else None)
         or (add_minutes(start, default_duration_minutes) if start else None)
         or "")

  title = explicit_title
  if not title and lines:
    title = strip_leading_schedule_prefix(lines[0])
  if not title and start:
    title = DEFAULT_TITLE

  complete = bool(title and start and end)
  draft = EventDraft(
      title=title,
      start=start,
      end=end,
      location=explicit_location,
      description=explicit_description or normalized_text,
      confidence=0.8 if complete else 0.4,
      uncertain=not complete,
  )

  if not draft.title:
    draft.needs_clarification = True
    draft.clarification_question = QUESTION_TITLE
  elif not draft.start:
    draft.needs_clarification = True
    draft.clarification_question = QUESTION_START
  elif not draft.end:
    draft.needs_clarification = True
    draft.clarification_question = QUESTION_END
  return draft
