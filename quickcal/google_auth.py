from __future__ import annotations

import secrets
import threading
import time
import urllib.parse
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from .app_logger import log_event
from .config import (
    GCAL_SCOPES,
    GOOGLE_AUTH_URL,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REDIRECT_URI,
    GOOGLE_REVOKE_URI,
    GOOGLE_TOKEN_URI,
    OAUTH_HTTP_TIMEOUT_SECONDS,
    OAUTH_STATE_MAX_AGE_SECONDS,
)
from .gcal import GoogleCalendarGateway
from .utils import _log_debug

MSG_NOT_CONFIGURED = (
    "Google OAuth environment variables (GOOGLE_CLIENT_ID/SECRET/REDIRECT_URI) are not configured.")


class GoogleOAuthError(Exception):
  """An OAuth step failed; ``status_code`` is the HTTP status to report."""

  def __init__(self, message: str, status_code: int = 500):
    super().__init__(message)
    self.status_code = status_code


class GoogleOAuthFlow:
  """
  Authorization-code flow for connecting a Google account.

  ``authorization_url`` issues a one-time state value, ``exchange_code``
  trades the callback code for tokens and stores them through the calendar
  gateway, and ``revoke`` invalidates the stored tokens at Google before
  deleting them locally.
  """

  def __init__(self,
               gateway: GoogleCalendarGateway,
               client_id: Optional[str] = GOOGLE_CLIENT_ID,
               client_secret: Optional[str] = GOOGLE_CLIENT_SECRET,
               redirect_uri: Optional[str] = GOOGLE_REDIRECT_URI,
               http: Optional[Any] = None,
               clock: Callable[[], float] = time.time):
    self.gateway = gateway
    self.client_id = client_id or ""
    self.client_secret = client_secret or ""
    self.redirect_uri = redirect_uri or ""
    self._http = http or requests.Session()
    self._clock = clock
    self._states: Dict[str, Dict[str, Any]] = {}
    self._lock = threading.Lock()

  def is_configured(self, redirect_uri: Optional[str] = None) -> bool:
    return bool(self.client_id and self.client_secret and (redirect_uri or self.redirect_uri))

  def status(self) -> Dict[str, Any]:
    token = self.gateway.load_token() or {}
    return {
        "configured": self.is_configured(),
        "connected": bool(token.get("refresh_token") or token.get("token")),
        "has_refresh_token": bool(token.get("refresh_token")),
    }

  # -------------------------
  # state
  # -------------------------
  def _store_state(self, state_value: str, redirect_uri: str) -> None:
    with self._lock:
      self._states[state_value] = {
          "redirect_uri": redirect_uri,
          "created_at": self._clock(),
      }

  def _pop_state(self, state_value: Optional[str]) -> Optional[Dict[str, Any]]:
    if not state_value:
      return None
    with self._lock:
      entry = self._states.pop(state_value, None)
    if not entry:
      return None
    if (self._clock() - float(entry["created_at"])) > OAUTH_STATE_MAX_AGE_SECONDS:
      return None
    return entry

  # -------------------------
  # login / callback
  # -------------------------
  def authorization_url(self, redirect_uri: Optional[str] = None, force: bool = False) -> str:
    redirect_uri = redirect_uri or self.redirect_uri
    if not self.is_configured(redirect_uri):
      raise GoogleOAuthError(MSG_NOT_CONFIGURED, status_code=500)

    existing = self.gateway.load_token() or {}
    state_value = secrets.token_urlsafe(16)
    params = {
        "client_id": self.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(GCAL_SCOPES),
        "access_type": "offline",
        "state": state_value,
    }
    if force or not existing.get("refresh_token"):
      params["prompt"] = "consent"
    self._store_state(state_value, redirect_uri)
    url = GOOGLE_AUTH_URL + "?" + urllib.parse.urlencode(params)
    _log_debug(f"[GCAL] login redirect url={url}")
    log_event("info", "google_auth.login", {"redirect_uri": redirect_uri, "force": force})
    return url

  def exchange_code(self, code: Optional[str], state: Optional[str]) -> Dict[str, Any]:
    if not code:
      raise GoogleOAuthError("Missing code.", status_code=400)
    entry = self._pop_state(state)
    if entry is None:
      raise GoogleOAuthError("State verification failed.", status_code=400)
    redirect_uri = entry.get("redirect_uri") or self.redirect_uri
    if not self.is_configured(redirect_uri):
      raise GoogleOAuthError(MSG_NOT_CONFIGURED, status_code=500)

    data = {
        "code": code,
        "client_id": self.client_id,
        "client_secret": self.client_secret,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }
    try:
      resp = self._http.post(GOOGLE_TOKEN_URI, data=data, timeout=OAUTH_HTTP_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
      raise GoogleOAuthError(f"Token exchange failed: {exc}") from exc
    if not resp.ok:
      _log_debug(f"[GCAL] token exchange failed: {resp.status_code} {resp.text}")
      log_event("error", "google_auth.exchange_failed", {"status": resp.status_code})
      raise GoogleOAuthError(f"Token exchange failed: {resp.status_code} {resp.text}")

    token_json = resp.json()
    access_token = token_json.get("access_token")
    refresh_token = token_json.get("refresh_token")
    if not refresh_token:
      refresh_token = (self.gateway.load_token() or {}).get("refresh_token")
    if not access_token or not refresh_token:
      raise GoogleOAuthError(
          "access_token/refresh_token missing. Retry with /auth/google/login?force=1")

    expiry_dt = datetime.now(timezone.utc) + timedelta(
        seconds=int(token_json.get("expires_in") or 0))
    token_data = {
        "token": access_token,
        "refresh_token": refresh_token,
        "token_uri": GOOGLE_TOKEN_URI,
        "client_id": self.client_id,
        "client_secret": self.client_secret,
        "scopes": GCAL_SCOPES,
        "expiry": expiry_dt.isoformat().replace("+00:00", "Z"),
    }
    self.gateway.save_token(token_data)
    log_event("info", "google_auth.connected", {"has_refresh_token": True})
    return token_data

  # -------------------------
  # disconnect
  # -------------------------
  def _revoke_one(self, token: str) -> None:
    try:
      resp = self._http.post(GOOGLE_REVOKE_URI, data={"token": token},
                             timeout=OAUTH_HTTP_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
      raise GoogleOAuthError(f"Token revoke failed: {exc}") from exc
    if not resp.ok:
      raise GoogleOAuthError(f"Token revoke failed: {resp.status_code} {resp.text}")

  def revoke(self) -> Dict[str, Any]:
    """Revoke the refresh and access tokens at Google, then forget them locally."""
    token = self.gateway.load_token() or {}
    candidates: List[str] = []
    for key in ("refresh_token", "token"):
      value = str(token.get(key) or "").strip()
      if value and value not in candidates:
        candidates.append(value)

    revoked_count = 0
    errors: List[str] = []
    for candidate in candidates:
      try:
        self._revoke_one(candidate)
        revoked_count += 1
      except GoogleOAuthError as exc:
        errors.append(str(exc))

    self.gateway.clear_token()
    result: Dict[str, Any] = {
        "revoked": revoked_count > 0,
        "revoked_count": revoked_count,
        "errors": errors,
    }
    if not candidates:
      result["reason"] = "no_token"
    log_event("warn" if errors else "info", "google_auth.disconnected", result)
    return result
