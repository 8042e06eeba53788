"""
Clarification dialogue engine.

A turn either comes from fresh input (``create_from_input``) or from an
answer to a pending question (``answer_clarification``). Both end in the same
validation pipeline, which checks the draft field by field and stops at the
first unmet condition: it stores a session and asks one question, or it writes
the event to the calendar.

Turns for the same session are serialized with a per-session lock. Cancelling
does not wait for that lock; a turn that finishes after its session has been
cancelled throws its result away instead of re-creating the session.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..app_logger import log_event
from ..config import CONFIDENCE_THRESHOLD, MAX_SESSION_IMAGES
from ..gcal import CalendarError, CalendarGateway
from ..models import EventDraft, HistoryEntry, ImageInput, Settings
from ..settings_store import SettingsStore, active_instruction_text
from ..utils import _now_iso_utc, preview
from .answers import AnswerKind, classify_answer
from .dates import coerce_local_datetime, is_start_before_end, parse_flexible_datetime
from .direct_parser import QUESTION_END, QUESTION_START, QUESTION_TITLE, parse_direct_input
from .interpreter import InterpretationError, InterpretationGateway
from .normalizer import (
    build_draft_preview,
    clear_pending_question,
    merge_image_inputs,
    merge_refined_draft,
    normalize_image_inputs,
    normalize_input_as_text,
    sanitize_draft,
)
from .schemas import (
    CancelledResult,
    ClarificationSession,
    ErrorResult,
    NeedsClarificationResult,
    QuestionType,
    ScheduleResult,
    SessionPreview,
    SuccessResult,
)
from .state import InMemorySessionStore, SessionStore

# -------------------------
# 메시지
# -------------------------
MSG_INPUT_REQUIRED = "Enter some text or attach an image."
MSG_SESSION_NOT_FOUND = "Clarification session not found. Please enter the event again."
MSG_CANCELLED = "Cancelled the event."
MSG_DUPLICATE_CANCELLED = "Cancelled because a similar event already exists."
MSG_CREATED = "Added to Google Calendar."
MSG_NO_INTERPRETER = "no interpreter is configured"

QUESTION_INVALID_RANGE = "Enter an end time after the start time (e.g. 2026-02-14 20:00)."
RETRY_START = "Couldn't determine the start time. Please be more specific (e.g. 2026-02-14 19:00)."
RETRY_END = "Couldn't determine the end time. Please be more specific (e.g. 2026-02-14 20:00)."
RETRY_INVALID_RANGE = (
    "Please enter the end time again. It has to be after the start (e.g. 2026-02-14 20:00).")
REPLY_HINT = 'Reply "yes" to create it or "no" to cancel.'
GAP_FILL_QUESTION = (
    "Fill in the missing fields from the original input. Only set "
    "needs_clarification=true when a field really cannot be inferred.")

AnswerHandler = Callable[[ClarificationSession, str, List[ImageInput]],
                         Awaitable[Optional[ScheduleResult]]]


def build_confirm_question(draft: EventDraft) -> str:
  return (
      "Create this event?\n"
      f"Title: {draft.title}\n"
      f"Start: {draft.start}\n"
      f"End: {draft.end}\n"
      f"Location: {draft.location or '(none)'}\n\n"
      f"{REPLY_HINT}")


def build_duplicate_question(candidate: Dict[str, Any]) -> str:
  start = candidate.get("start") or {}
  when = start.get("dateTime") or start.get("date") or ""
  summary = candidate.get("summary") or "Untitled"
  return f"A similar event already exists ({summary} / {when}). Create it anyway?\n{REPLY_HINT}"


def needs_confirmation(draft: EventDraft, settings: Settings) -> bool:
  if draft.user_confirmed:
    return False
  if settings.confirmation_policy == "always":
    return True
  return draft.uncertain or draft.confidence < CONFIDENCE_THRESHOLD


class SchedulerService:
  """Drives one event from raw input through clarification to the calendar."""

  def __init__(self,
               interpreter: Optional[InterpretationGateway],
               calendar: CalendarGateway,
               session_store: Optional[SessionStore] = None,
               settings_store: Optional[SettingsStore] = None):
    self._interpreter = interpreter
    self._calendar = calendar
    self._sessions = session_store or InMemorySessionStore()
    self._settings = settings_store or SettingsStore()
    self._locks: Dict[str, asyncio.Lock] = {}
    self._handlers = self._answer_handlers()
    missing = set(QuestionType) - set(self._handlers)
    if missing:
      raise RuntimeError(f"no answer handler for {sorted(q.value for q in missing)}")

  def _answer_handlers(self) -> Dict[QuestionType, AnswerHandler]:
    return {
        QuestionType.MISSING_TITLE: self._answer_missing_title,
        QuestionType.MISSING_START: self._answer_missing_start,
        QuestionType.MISSING_END: self._answer_missing_end,
        QuestionType.INVALID_TIME_RANGE: self._answer_invalid_time_range,
        QuestionType.MODEL_FOLLOWUP: self._answer_model_followup,
        QuestionType.CONFIRM_BEFORE_CREATE: self._answer_confirm_before_create,
        QuestionType.DUPLICATE_CONFIRM: self._answer_duplicate_confirm,
    }

  @property
  def sessions(self) -> SessionStore:
    return self._sessions

  @property
  def settings_store(self) -> SettingsStore:
    return self._settings

  # -------------------------
  # 공개 API
  # -------------------------
  async def create_from_input(self,
                              text: Optional[str] = None,
                              images: Optional[Sequence[Any]] = None) -> ScheduleResult:
    source_text = normalize_input_as_text(text)
    source_images = normalize_image_inputs(images)
    if not source_text and not source_images:
      return ErrorResult(message=MSG_INPUT_REQUIRED)

    settings = self._settings.load()
    instruction_text = active_instruction_text(settings)
    log_event("info", "schedule.create.start", {
        "input_preview": preview(source_text, 120),
        "image_count": len(source_images),
        "input_mode": settings.input_mode,
        "model": settings.model,
        "calendar_id": settings.calendar_id,
    })

    if settings.input_mode == "direct":
      draft = clear_pending_question(
          parse_direct_input(source_text, settings.default_duration_minutes))
    else:
      if self._interpreter is None:
        return ErrorResult(message=f"Failed to interpret input: {MSG_NO_INTERPRETER}")
      try:
        draft = await self._interpreter.interpret(source_text, source_images, settings,
                                                  instruction_text)
      except InterpretationError as exc:
        log_event("error", "schedule.create.interpret_error", {"message": str(exc)})
        return ErrorResult(message=f"Failed to interpret input: {exc}")

    log_event("info", "schedule.create.interpreted", {
        "missing": draft.missing_fields(),
        "needs_clarification": draft.needs_clarification,
    })
    return await self._progress_draft(
        settings=settings,
        draft=draft,
        source_text=source_text,
        source_images=source_images[-MAX_SESSION_IMAGES:],
        instruction_text=instruction_text,
    )

  async def answer_clarification(self,
                                 session_id: str,
                                 text: Optional[str] = None,
                                 images: Optional[Sequence[Any]] = None) -> ScheduleResult:
    try:
      async with self._lock_for(session_id):
        return await self._answer_locked(session_id, text, images)
    finally:
      self._release_lock(session_id)

  def cancel_session(self, session_id: str) -> CancelledResult:
    existed = self._sessions.contains(session_id)
    self._sessions.delete(session_id)
    log_event("info", "schedule.cancelled", {
        "session_id": session_id,
        "existed": existed,
        "open_sessions": len(self._sessions),
    })
    return CancelledResult(message=MSG_CANCELLED)

  def get_session_preview(self, session_id: str) -> Optional[SessionPreview]:
    session = self._sessions.get(session_id)
    if session is None:
      return None
    return SessionPreview(
        session_id=session.session_id,
        question_type=session.question_type,
        question=session.question,
        draft=build_draft_preview(session.draft),
    )

  # -------------------------
  # 세션 잠금
  # -------------------------
  def _lock_for(self, session_id: str) -> asyncio.Lock:
    lock = self._locks.get(session_id)
    if lock is None:
      lock = asyncio.Lock()
      self._locks[session_id] = lock
    return lock

  def _release_lock(self, session_id: str) -> None:
    lock = self._locks.get(session_id)
    if lock is not None and not lock.locked() and not self._sessions.contains(session_id):
      self._locks.pop(session_id, None)

  def _uses_interpreter(self, settings: Settings) -> bool:
    return self._interpreter is not None and settings.input_mode == "ai"

  def _discarded(self, session_id: str) -> CancelledResult:
    log_event("info", "schedule.answer.discarded", {"session_id": session_id})
    return CancelledResult(message=MSG_CANCELLED)

  # -------------------------
  # 답변 처리
  # -------------------------
  async def _answer_locked(self,
                           session_id: str,
                           text: Optional[str],
                           images: Optional[Sequence[Any]]) -> ScheduleResult:
    session = self._sessions.get(session_id)
    if session is None:
      log_event("warn", "schedule.answer.session_not_found", {"session_id": session_id})
      return ErrorResult(message=MSG_SESSION_NOT_FOUND)

    answer = normalize_input_as_text(text)
    answer_images = normalize_image_inputs(images)
    question_type = session.question_type
    log_event("info", "schedule.answer.start", {
        "session_id": session_id,
        "question_type": question_type.value,
        "answer_preview": preview(answer, 120),
        "image_count": len(answer_images),
    })

    if not answer and not answer_images and question_type != QuestionType.CONFIRM_BEFORE_CREATE:
      return NeedsClarificationResult(
          session_id=session_id,
          question=session.question,
          draft=build_draft_preview(session.draft),
      )

    session.source_images = merge_image_inputs(session.source_images, answer_images)
    try:
      early = await self._handlers[question_type](session, answer, answer_images)
    except InterpretationError as exc:
      log_event("error", "schedule.answer.error", {
          "session_id": session_id,
          "question_type": question_type.value,
          "message": str(exc),
      })
      return ErrorResult(message=f"Failed to process the answer: {exc}", session_id=session_id)
    if early is not None:
      return early

    return await self._progress_draft(
        settings=session.settings,
        draft=session.draft,
        source_text=session.source_text,
        source_images=session.source_images,
        instruction_text=session.instruction_text,
        existing_session_id=session_id,
    )

  async def _resolve_datetime(self, session: ClarificationSession, answer: str,
                              field: str) -> Optional[str]:
    if self._uses_interpreter(session.settings):
      try:
        refined = await self._interpreter.refine(session.draft, session.question, answer,
                                                 session.source_images, session.settings,
                                                 session.instruction_text)
      except InterpretationError as exc:
        log_event("warn", "schedule.answer.refine_failed", {
            "session_id": session.session_id,
            "field": field,
            "message": str(exc),
        })
        refined = {}
      candidate = str(refined.get(field) or "").strip()
      if candidate:
        parsed = parse_flexible_datetime(candidate) or coerce_local_datetime(candidate)
        if parsed:
          return parsed
    return parse_flexible_datetime(answer) if answer else None

  async def _answer_datetime(self, session: ClarificationSession, answer: str, field: str,
                             retry_question: str) -> Optional[ScheduleResult]:
    parsed = await self._resolve_datetime(session, answer, field)
    if not parsed:
      session.question = retry_question
      return self._issue(session, existing=True)
    setattr(session.draft, field, parsed)
    session.draft = clear_pending_question(session.draft)
    return None

  async def _answer_missing_title(self, session: ClarificationSession, answer: str,
                                  answer_images: List[ImageInput]) -> Optional[ScheduleResult]:
    if not answer and answer_images:
      if not self._uses_interpreter(session.settings):
        return self._issue(session, existing=True)
      refined = await self._interpreter.refine(session.draft, session.question, "",
                                               session.source_images, session.settings,
                                               session.instruction_text)
      session.draft.title = str(refined.get("title") or "").strip()
    else:
      session.draft.title = answer
    session.draft = clear_pending_question(session.draft)
    return None

  async def _answer_missing_start(self, session: ClarificationSession, answer: str,
                                  answer_images: List[ImageInput]) -> Optional[ScheduleResult]:
    return await self._answer_datetime(session, answer, "start", RETRY_START)

  async def _answer_missing_end(self, session: ClarificationSession, answer: str,
                                answer_images: List[ImageInput]) -> Optional[ScheduleResult]:
    return await self._answer_datetime(session, answer, "end", RETRY_END)

  async def _answer_invalid_time_range(self, session: ClarificationSession, answer: str,
                                       answer_images: List[ImageInput]) -> Optional[ScheduleResult]:
    return await self._answer_datetime(session, answer, "end", RETRY_INVALID_RANGE)

  async def _answer_model_followup(self, session: ClarificationSession, answer: str,
                                   answer_images: List[ImageInput]) -> Optional[ScheduleResult]:
    draft = clear_pending_question(session.draft)
    if self._uses_interpreter(session.settings):
      refined = await self._interpreter.refine(session.draft, session.question, answer,
                                               session.source_images, session.settings,
                                               session.instruction_text)
      draft = merge_refined_draft(draft, refined)
    session.draft = draft
    return None

  async def _answer_confirm_before_create(self, session: ClarificationSession, answer: str,
                                          answer_images: List[ImageInput]) -> Optional[ScheduleResult]:
    kind = classify_answer(answer)
    if kind == AnswerKind.NEGATIVE:
      self._sessions.delete(session.session_id)
      return CancelledResult(message=MSG_CANCELLED)
    if kind == AnswerKind.NEITHER:
      session.question = REPLY_HINT
      return self._issue(session, existing=True)
    session.draft.user_confirmed = True
    return None

  async def _answer_duplicate_confirm(self, session: ClarificationSession, answer: str,
                                      answer_images: List[ImageInput]) -> Optional[ScheduleResult]:
    if classify_answer(answer) != AnswerKind.AFFIRMATIVE:
      self._sessions.delete(session.session_id)
      return CancelledResult(message=MSG_DUPLICATE_CANCELLED)
    session.draft.duplicate_confirmed = True
    return None

  # -------------------------
  # 검증 파이프라인
  # -------------------------
  def _issue(self, session: ClarificationSession, *, existing: bool) -> ScheduleResult:
    if existing and not self._sessions.contains(session.session_id):
      return self._discarded(session.session_id)
    self._sessions.set(session.session_id, session)
    log_event("info", "schedule.question.issued", {
        "session_id": session.session_id,
        "question_type": session.question_type.value,
        "question": session.question,
        "open_sessions": len(self._sessions),
    })
    return NeedsClarificationResult(
        session_id=session.session_id,
        question=session.question,
        draft=build_draft_preview(session.draft),
    )

  async def _complete_missing_fields(self, draft: EventDraft, settings: Settings,
                                     source_text: str, source_images: List[ImageInput],
                                     instruction_text: str) -> EventDraft:
    missing = draft.missing_fields()
    if not missing or not self._uses_interpreter(settings):
      return draft
    log_event("info", "schedule.refine_missing.start", {"missing": missing})
    try:
      refined = await self._interpreter.refine(draft, GAP_FILL_QUESTION, source_text,
                                               source_images, settings, instruction_text)
    except InterpretationError as exc:
      log_event("warn", "schedule.refine_missing.failed", {"message": str(exc)})
      return draft
    return sanitize_draft(merge_refined_draft(draft, refined), settings.default_duration_minutes)

  async def _find_duplicates(self, draft: EventDraft, settings: Settings) -> List[Dict[str, Any]]:
    try:
      candidates = await self._calendar.find_duplicates(draft, settings)
    except CalendarError as exc:
      log_event("warn", "schedule.progress.duplicate_check_failed", {"message": str(exc)})
      candidates = []
    log_event("info", "schedule.progress.duplicate_check_done", {"count": len(candidates)})
    return candidates

  async def _progress_draft(self,
                            *,
                            settings: Settings,
                            draft: EventDraft,
                            source_text: str,
                            source_images: List[ImageInput],
                            instruction_text: str,
                            existing_session_id: Optional[str] = None) -> ScheduleResult:
    normalized = sanitize_draft(draft, settings.default_duration_minutes)
    normalized = await self._complete_missing_fields(normalized, settings, source_text,
                                                     source_images, instruction_text)
    log_event("info", "schedule.progress.normalized", {
        "missing": normalized.missing_fields(),
        "needs_clarification": normalized.needs_clarification,
        "confidence": normalized.confidence,
    })

    session_id = existing_session_id or uuid.uuid4().hex

    def ask(question_type: QuestionType, question: str) -> ScheduleResult:
      return self._issue(ClarificationSession(
          session_id=session_id,
          draft=normalized,
          question_type=question_type,
          question=question,
          settings=settings,
          source_text=source_text,
          source_images=source_images,
          instruction_text=instruction_text,
      ), existing=existing_session_id is not None)

    if not normalized.title:
      return ask(QuestionType.MISSING_TITLE, QUESTION_TITLE)
    if not normalized.start:
      return ask(QuestionType.MISSING_START, QUESTION_START)
    if not normalized.end:
      return ask(QuestionType.MISSING_END, QUESTION_END)
    if not is_start_before_end(normalized.start, normalized.end):
      return ask(QuestionType.INVALID_TIME_RANGE, QUESTION_INVALID_RANGE)
    if normalized.needs_clarification and normalized.clarification_question:
      return ask(QuestionType.MODEL_FOLLOWUP, normalized.clarification_question)
    if needs_confirmation(normalized, settings):
      return ask(QuestionType.CONFIRM_BEFORE_CREATE, build_confirm_question(normalized))

    duplicates = await self._find_duplicates(normalized, settings)
    if duplicates and not normalized.duplicate_confirmed:
      return ask(QuestionType.DUPLICATE_CONFIRM, build_duplicate_question(duplicates[0]))

    return await self._commit(normalized, settings, ask, existing_session_id)

  async def _commit(self,
                    draft: EventDraft,
                    settings: Settings,
                    ask: Callable[[QuestionType, str], ScheduleResult],
                    existing_session_id: Optional[str]) -> ScheduleResult:
    if existing_session_id and not self._sessions.contains(existing_session_id):
      return self._discarded(existing_session_id)

    log_event("info", "calendar.insert.start", {
        "calendar_id": settings.calendar_id,
        "title": draft.title,
        "start": draft.start,
        "end": draft.end,
    })
    try:
      created = await self._calendar.insert(draft, settings)
    except CalendarError as exc:
      log_event("error", "calendar.insert.failed", {"message": str(exc)})
      message = f"Failed to add to Google Calendar: {exc}"
      if existing_session_id is None:
        return ErrorResult(message=message)
      # Keep the session so that "yes" retries the insert.
      draft.user_confirmed = True
      retry = ask(QuestionType.CONFIRM_BEFORE_CREATE, f"{message}\n{REPLY_HINT}")
      if isinstance(retry, CancelledResult):
        return retry
      return ErrorResult(message=message, session_id=existing_session_id)

    log_event("info", "calendar.insert.success", {
        "event_id": created.id,
        "html_link": created.html_link,
    })
    try:
      self._settings.append_history(HistoryEntry(
          id=created.id,
          title=draft.title,
          start=draft.start,
          end=draft.end,
          created_at=_now_iso_utc(),
          html_link=created.html_link,
      ))
    except OSError as exc:
      log_event("warn", "schedule.history.write_failed", {"message": str(exc)})

    if existing_session_id:
      self._sessions.delete(existing_session_id)
    return SuccessResult(message=MSG_CREATED, event=created)
