from __future__ import annotations

from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..config import (
    DEFAULT_GEMINI_MODEL,
    LLM_REQUEST_TIMEOUT_SECONDS,
    LLM_RETRY_BACKOFF_SECONDS,
    LLM_TIMEOUT_RETRY_COUNT,
)
from ..models import CreatedEvent, DraftPreview, EventDraft, ImageInput, Settings


class QuestionType(str, Enum):
  MISSING_TITLE = "missing_title"
  MISSING_START = "missing_start"
  MISSING_END = "missing_end"
  INVALID_TIME_RANGE = "invalid_time_range"
  MODEL_FOLLOWUP = "model_followup"
  CONFIRM_BEFORE_CREATE = "confirm_before_create"
  DUPLICATE_CONFIRM = "duplicate_confirm"


class ClarificationSession(BaseModel):
  """Server-held state for one in-progress draft."""
  session_id: str
  draft: EventDraft
  question_type: QuestionType
  question: str
  settings: Settings
  source_text: str = ""
  source_images: List[ImageInput] = Field(default_factory=list)
  instruction_text: str = ""


# ---------------------------------------------------------------------------
#  Turn results
# ---------------------------------------------------------------------------

class NeedsClarificationResult(BaseModel):
  status: Literal["needs_clarification"] = "needs_clarification"
  session_id: str
  question: str
  draft: DraftPreview


class SuccessResult(BaseModel):
  status: Literal["success"] = "success"
  message: str
  event: CreatedEvent


class CancelledResult(BaseModel):
  status: Literal["cancelled"] = "cancelled"
  message: str


class ErrorResult(BaseModel):
  status: Literal["error"] = "error"
  message: str
  session_id: Optional[str] = None


ScheduleResult = Union[NeedsClarificationResult, SuccessResult, CancelledResult, ErrorResult]


class SessionPreview(BaseModel):
  session_id: str
  question_type: QuestionType
  question: str
  draft: DraftPreview


# ---------------------------------------------------------------------------
#  Interpreter output
# ---------------------------------------------------------------------------

class InterpretedDraftSchema(BaseModel):
  """Shape an interpreter response must have; values are coerced later."""
  model_config = ConfigDict(extra="ignore")

  title: Any = ""
  start: Any = ""
  end: Any = ""
  location: Any = ""
  description: Any = ""
  confidence: Any = 0.0
  uncertain: Any = False
  needs_clarification: Any = Field(
      default=False,
      validation_alias=AliasChoices("needs_clarification", "needsClarification"))
  clarification_question: Any = Field(
      default="",
      validation_alias=AliasChoices("clarification_question", "clarificationQuestion"))


class RetryPolicy(BaseModel):
  model_config = ConfigDict(frozen=True)

  max_attempts: int = Field(default=1 + LLM_TIMEOUT_RETRY_COUNT, ge=1)
  timeout_seconds: float = Field(default=LLM_REQUEST_TIMEOUT_SECONDS, gt=0)
  backoff_seconds: float = Field(default=LLM_RETRY_BACKOFF_SECONDS, ge=0)
  fallback_model: Optional[str] = DEFAULT_GEMINI_MODEL
