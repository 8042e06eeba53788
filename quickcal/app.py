from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .agent.interpreter import LLMInterpreter
from .agent.scheduler import SchedulerService
from .config import API_BASE, APP_NAME, SETTINGS_FILE, cors_origins
from .gcal import GoogleCalendarGateway
from .google_auth import GoogleOAuthFlow
from .routes import router
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)


def build_default_scheduler(gateway: Optional[GoogleCalendarGateway] = None) -> SchedulerService:
  return SchedulerService(
      interpreter=LLMInterpreter(),
      calendar=gateway or GoogleCalendarGateway(),
      settings_store=SettingsStore(SETTINGS_FILE),
  )


def create_app(scheduler: Optional[SchedulerService] = None,
               google_auth: Optional[GoogleOAuthFlow] = None) -> FastAPI:
  """Without arguments, the scheduler and the OAuth flow share one token file."""
  app = FastAPI(title=APP_NAME)
  if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
  if scheduler is None:
    gateway = GoogleCalendarGateway()
    scheduler = build_default_scheduler(gateway)
    google_auth = google_auth or GoogleOAuthFlow(gateway)
  app.state.scheduler = scheduler
  app.state.google_auth = google_auth
  app.include_router(router, prefix=API_BASE)
  logger.info("%s ready (api base %s)", APP_NAME, API_BASE)
  return app
