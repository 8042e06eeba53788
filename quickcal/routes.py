from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from .agent.scheduler import SchedulerService
from .agent.schemas import ScheduleResult, SessionPreview
from .app_logger import read_recent_logs
from .config import DEFAULT_RECENT_LOGS, MAX_RECENT_LOGS
from .google_auth import GoogleOAuthError, GoogleOAuthFlow
from .models import AnswerRequest, HistoryEntry, ScheduleRequest, Settings, SettingsPatch

router = APIRouter()
logger = logging.getLogger(__name__)


def get_scheduler(request: Request) -> SchedulerService:
  scheduler = getattr(request.app.state, "scheduler", None)
  if scheduler is None:
    raise HTTPException(status_code=503, detail="Scheduler is not configured.")
  return scheduler


def get_google_auth(request: Request) -> GoogleOAuthFlow:
  flow = getattr(request.app.state, "google_auth", None)
  if flow is None:
    raise HTTPException(status_code=503, detail="Google sign-in is not configured.")
  return flow


# -------------------------
# 일정 대화
# -------------------------
@router.post("/schedule")
async def create_schedule(body: ScheduleRequest, request: Request) -> ScheduleResult:
  scheduler = get_scheduler(request)
  result = await scheduler.create_from_input(body.text, body.images)
  logger.info("schedule create -> %s", result.status)
  return result


@router.post("/schedule/{session_id}/answer")
async def answer_schedule(session_id: str, body: AnswerRequest, request: Request) -> ScheduleResult:
  scheduler = get_scheduler(request)
  result = await scheduler.answer_clarification(session_id, body.text, body.images)
  logger.info("schedule answer %s -> %s", session_id, result.status)
  return result


@router.post("/schedule/{session_id}/cancel")
def cancel_schedule(session_id: str, request: Request) -> ScheduleResult:
  return get_scheduler(request).cancel_session(session_id)


@router.get("/schedule/{session_id}")
def get_schedule(session_id: str, request: Request) -> SessionPreview:
  session = get_scheduler(request).get_session_preview(session_id)
  if session is None:
    raise HTTPException(status_code=404, detail="Clarification session not found.")
  return session


# -------------------------
# 설정 / 기록
# -------------------------
@router.get("/settings")
def get_settings(request: Request) -> Settings:
  return get_scheduler(request).settings_store.load()


@router.put("/settings")
def update_settings(body: SettingsPatch, request: Request) -> Settings:
  return get_scheduler(request).settings_store.update(body)


@router.get("/history")
def get_history(request: Request) -> List[HistoryEntry]:
  return get_scheduler(request).settings_store.history()


@router.get("/debug/logs")
def get_debug_logs(limit: int = Query(DEFAULT_RECENT_LOGS, ge=1, le=MAX_RECENT_LOGS)) -> Dict[str, Any]:
  return read_recent_logs(limit)


# -------------------------
# Google OAuth
# -------------------------
@router.get("/auth/google/login")
def google_login(request: Request, force: bool = False) -> RedirectResponse:
  flow = get_google_auth(request)
  redirect_uri = flow.redirect_uri or str(request.url_for("google_callback"))
  try:
    url = flow.authorization_url(redirect_uri, force=force)
  except GoogleOAuthError as exc:
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
  return RedirectResponse(url)


@router.get("/auth/google/callback")
def google_callback(request: Request) -> JSONResponse:
  error = request.query_params.get("error")
  if error:
    logger.warning("google callback error=%s", error)
    return JSONResponse({"ok": False, "error": error})
  flow = get_google_auth(request)
  try:
    flow.exchange_code(request.query_params.get("code"), request.query_params.get("state"))
  except GoogleOAuthError as exc:
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
  return JSONResponse({"ok": True})


@router.get("/auth/google/status")
def google_status(request: Request) -> Dict[str, Any]:
  return get_google_auth(request).status()


@router.post("/auth/google/disconnect")
def google_disconnect(request: Request) -> Dict[str, Any]:
  return get_google_auth(request).revoke()
