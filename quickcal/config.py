from __future__ import annotations

import os
import pathlib
from zoneinfo import ZoneInfo

APP_NAME = "QuickCal"
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

APP_TIMEZONE_NAME = os.getenv("APP_TIMEZONE", "Asia/Tokyo").strip() or "Asia/Tokyo"
LOCAL_TZ = ZoneInfo(APP_TIMEZONE_NAME)

CANONICAL_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:00"

# -------------------------
# LLM 설정
# -------------------------
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
LLM_REQUEST_TIMEOUT_SECONDS = float(os.getenv("LLM_REQUEST_TIMEOUT_SECONDS", "90"))
LLM_TIMEOUT_RETRY_COUNT = int(os.getenv("LLM_TIMEOUT_RETRY_COUNT", "1"))
LLM_RETRY_BACKOFF_SECONDS = float(os.getenv("LLM_RETRY_BACKOFF_SECONDS", "0.5"))
LLM_TEMPERATURE = 0.2
LLM_LOG_PREVIEW_CHARS = 200

MAX_IMAGE_COUNT = 3
MAX_IMAGE_SIZE_BYTES = 6 * 1024 * 1024
MAX_TOTAL_IMAGE_BYTES = 18 * 1024 * 1024

# -------------------------
# Google Calendar 설정
# -------------------------
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GCAL_SCOPES = ["https://www.googleapis.com/auth/calendar.events"]
DUPLICATE_WINDOW_MINUTES = 30
DUPLICATE_MAX_RESULTS = 20
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI")
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URI = "https://oauth2.googleapis.com/revoke"
OAUTH_STATE_MAX_AGE_SECONDS = int(os.getenv("GCAL_OAUTH_STATE_MAX_AGE_SECONDS", "600"))
OAUTH_HTTP_TIMEOUT_SECONDS = 15

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DATA_DIR = pathlib.Path(os.getenv("QUICKCAL_DATA_DIR", str(BASE_DIR / "data")))
SETTINGS_FILE = pathlib.Path(
    os.getenv("QUICKCAL_SETTINGS_FILE", str(DATA_DIR / "settings.json")))
LOG_FILE = pathlib.Path(os.getenv("QUICKCAL_LOG_FILE", str(DATA_DIR / "logs" / "app.log")))
GOOGLE_TOKEN_FILE = pathlib.Path(
    os.getenv("GOOGLE_TOKEN_FILE", str(DATA_DIR / "google_token.json")))

API_BASE = os.getenv("API_BASE", "/api")
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "")
cors_origins: list[str] = [
    origin.strip() for origin in CORS_ALLOW_ORIGINS.split(",") if origin.strip()
]

# -------------------------
# 대화/기본값
# -------------------------
DEFAULT_DURATION_MINUTES = 60
DEFAULT_TITLE = "schedule"
CONFIDENCE_THRESHOLD = 0.6
MAX_HISTORY_ITEMS = 5
MAX_SESSION_IMAGES = 3
MAX_RECENT_LOGS = 1000
DEFAULT_RECENT_LOGS = 200

DEFAULT_INSTRUCTION = (
    "Extract one event from the input. If anything is ambiguous, ask one question "
    "at a time before it is added to Google Calendar.")
DEFAULT_TIME_RESOLUTION_RULES = (
    "Meals (lunch, dinner, drinks) without an explicit end last 2 hours.")
DEFAULT_INSTRUCTION_PRESETS = [
    {
        "id": "work",
        "name": "Work",
        "text": "Make start and end times explicit for work events and keep meeting titles short.",
    },
    {
        "id": "private",
        "name": "Private",
        "text": "Use natural titles for private events and put places or things to bring in the description.",
    },
    {
        "id": "meal",
        "name": "Meals",
        "text": "For lunch, dinner or drinks without an end time, assume 2 hours.",
    },
]
