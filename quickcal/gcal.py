from __future__ import annotations

import abc
import asyncio
import json
import pathlib
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiError, HttpError
from httplib2 import HttpLib2Error

from .agent.dates import normalize_title, to_datetime
from .app_logger import log_event
from .config import (
    APP_TIMEZONE_NAME,
    DUPLICATE_MAX_RESULTS,
    DUPLICATE_WINDOW_MINUTES,
    GCAL_SCOPES,
    GOOGLE_CALENDAR_ID,
    GOOGLE_TOKEN_FILE,
    LOCAL_TZ,
)
from .models import CreatedEvent, EventDraft, Settings
from .utils import _log_debug


class CalendarError(Exception):
  """A calendar read or write failed."""


class CalendarGateway(abc.ABC):

  @abc.abstractmethod
  async def insert(self, draft: EventDraft, settings: Settings) -> CreatedEvent:
    ...

  @abc.abstractmethod
  async def find_duplicates(self, draft: EventDraft, settings: Settings) -> List[Dict[str, Any]]:
    ...


def build_event_body(draft: EventDraft) -> Dict[str, Any]:
  event_body: Dict[str, Any] = {
      "summary": draft.title,
      "start": {"dateTime": draft.start, "timeZone": APP_TIMEZONE_NAME},
      "end": {"dateTime": draft.end, "timeZone": APP_TIMEZONE_NAME},
  }
  if draft.location:
    event_body["location"] = draft.location
  if draft.description:
    event_body["description"] = draft.description
  return event_body


def filter_duplicate_candidates(draft: EventDraft,
                                items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
  """Keep events whose normalized title matches and whose start is within the window."""
  start = to_datetime(draft.start)
  if start is None:
    return []
  target_title = normalize_title(draft.title)
  window = timedelta(minutes=DUPLICATE_WINDOW_MINUTES)
  matches: List[Dict[str, Any]] = []
  for item in items:
    item_title = normalize_title(item.get("summary") or "")
    if not item_title or item_title != target_title:
      continue
    item_start_raw = (item.get("start") or {}).get("dateTime") or (item.get("start") or {}).get("date")
    item_start = to_datetime(item_start_raw)
    if item_start is None:
      continue
    if abs(item_start - start) <= window:
      matches.append(item)
  return matches


class GoogleCalendarGateway(CalendarGateway):
  """
  Google Calendar v3 over google-api-python-client.

  OAuth user credentials are read from ``token_file`` (the JSON written by
  ``Credentials.to_json()``) and refreshed in place when they expire. The
  discovery client is blocking, so every call is pushed to a worker thread.
  """

  def __init__(self,
               token_file: pathlib.Path = GOOGLE_TOKEN_FILE,
               service_factory: Optional[Callable[[], Any]] = None) -> None:
    self.token_file = pathlib.Path(token_file)
    self._service_factory = service_factory or self._build_service

  # -------------------------
  # 인증
  # -------------------------
  def load_token(self) -> Optional[Dict[str, Any]]:
    if not self.token_file.exists():
      return None
    try:
      with self.token_file.open("r", encoding="utf-8") as f:
        data = json.load(f)
    except (OSError, ValueError) as exc:
      _log_debug(f"[GCAL] token load error: {exc}")
      return None
    return data if isinstance(data, dict) else None

  def save_token(self, data: Dict[str, Any]) -> None:
    self.token_file.parent.mkdir(parents=True, exist_ok=True)
    self.token_file.write_text(json.dumps(data, ensure_ascii=False, indent=2),
                               encoding="utf-8")

  def clear_token(self) -> None:
    self.token_file.unlink(missing_ok=True)

  def _build_service(self) -> Any:
    token_data = self.load_token()
    if not token_data:
      raise CalendarError(
          f"Google OAuth token not found at {self.token_file}. Connect Google Calendar first.")
    try:
      creds = Credentials.from_authorized_user_info(token_data, GCAL_SCOPES)
    except ValueError as exc:
      raise CalendarError(f"Google OAuth token is invalid: {exc}") from exc
    if creds.expired and creds.refresh_token:
      try:
        creds.refresh(GoogleRequest())
      except GoogleAuthError as exc:
        raise CalendarError(f"Google token refresh failed: {exc}") from exc
      self.save_token(json.loads(creds.to_json()))
    return build("calendar", "v3", credentials=creds, cache_discovery=False)

  # -------------------------
  # 블로킹 호출
  # -------------------------
  def _insert_sync(self, draft: EventDraft, calendar_id: str) -> Dict[str, Any]:
    service = self._service_factory()
    return service.events().insert(calendarId=calendar_id,
                                   body=build_event_body(draft)).execute()

  def _list_window_sync(self, draft: EventDraft, calendar_id: str) -> List[Dict[str, Any]]:
    start = to_datetime(draft.start)
    if start is None:
      return []
    window = timedelta(minutes=DUPLICATE_WINDOW_MINUTES)
    start_local = start.replace(tzinfo=LOCAL_TZ)
    service = self._service_factory()
    response = service.events().list(
        calendarId=calendar_id,
        timeMin=(start_local - window).isoformat(),
        timeMax=(start_local + window).isoformat(),
        singleEvents=True,
        orderBy="startTime",
        maxResults=DUPLICATE_MAX_RESULTS,
    ).execute()
    return response.get("items") or []

  async def insert(self, draft: EventDraft, settings: Settings) -> CreatedEvent:
    calendar_id = settings.calendar_id or GOOGLE_CALENDAR_ID
    log_event("info", "calendar.insert.request", {
        "calendar_id": calendar_id,
        "summary": draft.title,
        "start": draft.start,
        "end": draft.end,
        "time_zone": APP_TIMEZONE_NAME,
    })
    try:
      created = await asyncio.to_thread(self._insert_sync, draft, calendar_id)
    except CalendarError:
      raise
    except HttpError as exc:
      raise CalendarError(f"Google Calendar rejected the event: {exc}") from exc
    except (GoogleApiError, GoogleAuthError, HttpLib2Error, OSError) as exc:
      raise CalendarError(str(exc)) from exc
    log_event("info", "calendar.insert.response", {
        "calendar_id": calendar_id,
        "event_id": created.get("id", ""),
        "html_link": created.get("htmlLink", ""),
        "status": created.get("status", ""),
    })
    return CreatedEvent(
        id=str(created.get("id") or ""),
        html_link=str(created.get("htmlLink") or ""),
        title=draft.title,
        start=draft.start,
        end=draft.end,
    )

  async def find_duplicates(self, draft: EventDraft, settings: Settings) -> List[Dict[str, Any]]:
    calendar_id = settings.calendar_id or GOOGLE_CALENDAR_ID
    try:
      items = await asyncio.to_thread(self._list_window_sync, draft, calendar_id)
    except CalendarError:
      raise
    except HttpError as exc:
      raise CalendarError(f"Google Calendar lookup failed: {exc}") from exc
    except (GoogleApiError, GoogleAuthError, HttpLib2Error, OSError) as exc:
      raise CalendarError(str(exc)) from exc
    return filter_duplicate_candidates(draft, items)
