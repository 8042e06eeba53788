from __future__ import annotations

from enum import Enum
from typing import Any
import re


class AnswerKind(str, Enum):
  AFFIRMATIVE = "affirmative"
  NEGATIVE = "negative"
  NEITHER = "neither"


_AFFIRMATIVE_WORD_RE = re.compile(r"\b(?:y|yes|ok|okay)\b", re.IGNORECASE)
_NEGATIVE_WORD_RE = re.compile(r"\b(?:n|no)\b", re.IGNORECASE)
_COMPACT_RE = re.compile(r"[\s　。、,.!！?？]")

AFFIRMATIVE_PHRASES = ("はい", "登録", "進めて", "お願いします", "おねがいします", "実行")
NEGATIVE_PHRASES = ("いいえ", "キャンセル", "やめる", "中止", "停止")


def _compact(text: str) -> str:
  return _COMPACT_RE.sub("", text)


def is_affirmative(text: Any) -> bool:
  source = str(text or "").strip()
  if not source:
    return False
  if _AFFIRMATIVE_WORD_RE.search(source):
    return True
  compact = _compact(source)
  return any(phrase in compact for phrase in AFFIRMATIVE_PHRASES)


def is_negative(text: Any) -> bool:
  source = str(text or "").strip()
  if not source:
    return False
  if _NEGATIVE_WORD_RE.search(source):
    return True
  compact = _compact(source)
  return any(phrase in compact for phrase in NEGATIVE_PHRASES)


def classify_answer(text: Any) -> AnswerKind:
  """Negative wins when an answer matches both sets ("yes... no, cancel")."""
  if is_negative(text):
    return AnswerKind.NEGATIVE
  if is_affirmative(text):
    return AnswerKind.AFFIRMATIVE
  return AnswerKind.NEITHER
