"""
Temporal parser.

Turns flexible date/time expressions ("明日五時半", "today 9:00", "2/20 19:00",
"2026年2月20日 19時") into the canonical local wall-clock string
``YYYY-MM-DDTHH:MM:00``. Pure functions only; the reference time is always
passed in (or taken from the configured timezone).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional
import re

from dateutil import parser as dateutil_parser

from ..config import CANONICAL_DATETIME_FORMAT, LOCAL_TZ

_FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９", "0123456789")
_KANJI_DIGITS = {
    "零": 0,
    "〇": 0,
    "一": 1,
    "二": 2,
    "三": 3,
    "四": 4,
    "五": 5,
    "六": 6,
    "七": 7,
    "八": 8,
    "九": 9,
}
_DAY_OFFSETS = {
    "今日": 0,
    "明日": 1,
    "today": 0,
    "tomorrow": 1,
}

NUMBER_TOKEN = "[0-9〇零一二三四五六七八九十]{1,3}"
DAY_TOKEN = "今日|明日|today|tomorrow"
_NOT_NUMBER = "(?![0-9〇零一二三四五六七八九十])"
_MERIDIEM = r"(?:\s*(?P<meridiem>am|pm))?"

# Order matters: the first pattern that yields a valid datetime wins.
_RELATIVE_PATTERNS = (
    rf"(?P<day>{DAY_TOKEN})\s*(?P<hour>{NUMBER_TOKEN})\s*:\s*(?P<minute>{NUMBER_TOKEN}){_MERIDIEM}",
    rf"(?P<day>{DAY_TOKEN})\s*(?P<hour>{NUMBER_TOKEN})時\s*(?P<minute>{NUMBER_TOKEN})\s*分?",
    rf"(?P<day>{DAY_TOKEN})\s*(?P<hour>{NUMBER_TOKEN})時(?P<half>半)",
    rf"(?P<day>{DAY_TOKEN})\s*(?P<hour>{NUMBER_TOKEN})時",
    rf"(?P<day>{DAY_TOKEN})\s*(?P<hour>{NUMBER_TOKEN}){_MERIDIEM}{_NOT_NUMBER}",
)
_STRICT_RELATIVE_RES = tuple(
    re.compile(rf"^{pattern}$", re.IGNORECASE) for pattern in _RELATIVE_PATTERNS)
_LOOSE_RELATIVE_RES = tuple(
    re.compile(pattern, re.IGNORECASE) for pattern in _RELATIVE_PATTERNS)

_FULL_DATE_RE = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[ T](\d{1,2})(?::(\d{1,2}))?(?::\d{1,2})?)?$")
_SHORT_DATE_RE = re.compile(
    r"^(\d{1,2})-(\d{1,2})(?:[ T](\d{1,2})(?::(\d{1,2}))?(?::\d{1,2})?)?$")
_TITLE_PUNCT_RE = re.compile(r"[!-/:-@\[-`{-~]")

DEFAULT_HOUR = 9


def to_half_width_digits(text: Any) -> str:
  return str(text or "").translate(_FULLWIDTH_DIGITS)


def parse_ja_number(token: Any) -> Optional[int]:
  """Parse "18", "１８", "十八", "二十三" or "〇" into an int."""
  normalized = to_half_width_digits(token).strip()
  if not normalized:
    return None
  if normalized.isdigit():
    return int(normalized)

  total = 0
  current = 0
  for char in normalized:
    if char == "十":
      total += (current or 1) * 10
      current = 0
      continue
    if char not in _KANJI_DIGITS:
      return None
    current += _KANJI_DIGITS[char]
  return total + current


def now_local() -> datetime:
  return datetime.now(LOCAL_TZ).replace(tzinfo=None, second=0, microsecond=0)


def _reference(now: Optional[datetime]) -> datetime:
  if now is None:
    return now_local()
  if now.tzinfo is not None:
    return now.astimezone(LOCAL_TZ).replace(tzinfo=None)
  return now


def format_local_datetime(value: datetime) -> str:
  return value.strftime(CANONICAL_DATETIME_FORMAT)


def build_validated_datetime(year: Any, month: Any, day: Any,
                             hour: Any = DEFAULT_HOUR,
                             minute: Any = 0) -> Optional[datetime]:
  # datetime() rejects Feb 31 instead of rolling over to March.
  try:
    return datetime(int(year), int(month), int(day), int(hour), int(minute))
  except (TypeError, ValueError):
    return None


def _build_relative(match: "re.Match[str]", now: datetime) -> Optional[str]:
  hour = parse_ja_number(match.group("hour"))
  groups = match.groupdict()
  if groups.get("half"):
    minute: Optional[int] = 30
  elif groups.get("minute") is not None:
    minute = parse_ja_number(groups["minute"])
  else:
    minute = 0
  if hour is None or minute is None:
    return None

  meridiem = (groups.get("meridiem") or "").lower()
  if meridiem == "pm" and hour < 12:
    hour += 12
  elif meridiem == "am" and hour == 12:
    hour = 0

  base = now.date() + timedelta(days=_DAY_OFFSETS[match.group("day").lower()])
  built = build_validated_datetime(base.year, base.month, base.day, hour, minute)
  return format_local_datetime(built) if built else None


def resolve_relative_datetime(text: str, now: datetime, *, loose: bool = False) -> Optional[str]:
  patterns = _LOOSE_RELATIVE_RES if loose else _STRICT_RELATIVE_RES
  for pattern in patterns:
    match = pattern.search(text)
    if not match:
      continue
    parsed = _build_relative(match, now)
    if parsed:
      return parsed
  return None


def _normalize_absolute(text: str) -> str:
  normalized = (text.replace("時半", ":30")
                .replace("年", "-")
                .replace("月", "-")
                .replace("日", " ")
                .replace("時", ":")
                .replace("分", "")
                .replace("/", "-"))
  normalized = re.sub(r"\s+", " ", normalized).strip()
  return normalized.rstrip(":")


def parse_flexible_datetime(text: Any,
                            now: Optional[datetime] = None,
                            *,
                            allow_loose: bool = True) -> Optional[str]:
  """
  Parse a date/time expression into ``YYYY-MM-DDTHH:MM:00``.

  Relative expressions are tried strictly (whole string) first, then loosely
  (anywhere in the sentence) when ``allow_loose`` is set. Absolute dates must
  match the whole string. Returns None for anything else, including dates
  that do not exist on the calendar.
  """
  if not isinstance(text, str):
    return None
  cleaned = to_half_width_digits(text.strip())
  if not cleaned:
    return None
  reference = _reference(now)

  # 「今日/明日」 must be matched before 日 is stripped below.
  relative_prepared = re.sub(r"\s+", " ", cleaned.replace("：", ":")).strip()
  strict = resolve_relative_datetime(relative_prepared, reference)
  if strict:
    return strict
  if allow_loose:
    loose = resolve_relative_datetime(relative_prepared, reference, loose=True)
    if loose:
      return loose

  normalized = _normalize_absolute(relative_prepared)
  full = _FULL_DATE_RE.match(normalized)
  if full:
    built = build_validated_datetime(full.group(1), full.group(2), full.group(3),
                                     full.group(4) or DEFAULT_HOUR, full.group(5) or 0)
    if built:
      return format_local_datetime(built)

  short = _SHORT_DATE_RE.match(normalized)
  if short:
    built = build_validated_datetime(reference.year, short.group(1), short.group(2),
                                     short.group(3) or DEFAULT_HOUR, short.group(4) or 0)
    if built:
      return format_local_datetime(built)

  return None


def to_datetime(value: Any) -> Optional[datetime]:
  """General coercion of a timestamp-ish value to naive local wall-clock time."""
  if isinstance(value, datetime):
    parsed = value
  else:
    if not isinstance(value, str):
      return None
    raw = re.sub(r"\s*:\s*", ":", value.strip())
    if not raw:
      return None
    try:
      parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
      try:
        parsed = dateutil_parser.parse(raw)
      except (ValueError, OverflowError):
        return None
  if parsed.tzinfo is not None:
    parsed = parsed.astimezone(LOCAL_TZ).replace(tzinfo=None)
  return parsed


def coerce_local_datetime(value: Any) -> Optional[str]:
  parsed = to_datetime(value)
  return format_local_datetime(parsed) if parsed else None


def add_minutes(value: Any, minutes: int) -> Optional[str]:
  base = to_datetime(value)
  if base is None:
    return None
  return format_local_datetime(base + timedelta(minutes=minutes))


def is_start_before_end(start: Any, end: Any) -> bool:
  start_dt = to_datetime(start)
  end_dt = to_datetime(end)
  if start_dt is None or end_dt is None:
    return False
  return start_dt < end_dt


def normalize_title(title: Any) -> str:
  lowered = str(title or "").strip().casefold()
  compact = re.sub(r"\s+", "", lowered)
  return _TITLE_PUNCT_RE.sub("", compact)
