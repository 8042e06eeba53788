"""Shared fakes and fixtures for the dialogue engine and HTTP tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from quickcal import app_logger
from quickcal.agent.interpreter import InterpretationError, InterpretationGateway
from quickcal.agent.scheduler import SchedulerService
from quickcal.agent.state import InMemorySessionStore
from quickcal.config import LOG_FILE
from quickcal.gcal import CalendarError, CalendarGateway
from quickcal.models import CreatedEvent, EventDraft, ImageInput, Settings
from quickcal.settings_store import SettingsStore


def make_draft(**overrides: Any) -> EventDraft:
    values: Dict[str, Any] = {
        "title": "Dinner",
        "start": "2030-03-01T19:00:00",
        "end": "2030-03-01T20:00:00",
        "confidence": 0.9,
    }
    values.update(overrides)
    return EventDraft(**values)


def make_image(name: str) -> Dict[str, Any]:
    return {"name": name, "mime_type": "image/png", "data_base64": "aGVsbG8="}


class FakeInterpreter(InterpretationGateway):
    """Returns a fixed draft; refinements come from ``on_refine`` (default: nothing)."""

    def __init__(self, draft: Optional[EventDraft] = None):
        self.draft = draft or make_draft()
        self.interpret_error: Optional[InterpretationError] = None
        self.on_refine: Optional[Callable[[str, str], Dict[str, Any]]] = None
        self.refine_entered = asyncio.Event()
        self.refine_gate: Optional[asyncio.Event] = None
        self.interpret_calls: List[Dict[str, Any]] = []
        self.refine_calls: List[Dict[str, Any]] = []

    async def interpret(self,
                        text: str,
                        images: Sequence[ImageInput],
                        settings: Settings,
                        instruction_text: str) -> EventDraft:
        self.interpret_calls.append({
            "text": text,
            "images": list(images),
            "instruction_text": instruction_text,
        })
        if self.interpret_error is not None:
            raise self.interpret_error
        return self.draft.model_copy(deep=True)

    async def refine(self,
                     draft: EventDraft,
                     question: str,
                     answer: str,
                     images: Sequence[ImageInput],
                     settings: Settings,
                     instruction_text: str) -> Dict[str, Any]:
        self.refine_calls.append({
            "question": question,
            "answer": answer,
            "images": list(images),
        })
        self.refine_entered.set()
        if self.refine_gate is not None:
            await self.refine_gate.wait()
        if self.on_refine is None:
            return {}
        return self.on_refine(question, answer)


class FakeCalendar(CalendarGateway):

    def __init__(self):
        self.inserted: List[EventDraft] = []
        self.insert_errors: List[CalendarError] = []
        self.duplicates: List[Dict[str, Any]] = []
        self.duplicate_error: Optional[CalendarError] = None

    async def insert(self, draft: EventDraft, settings: Settings) -> CreatedEvent:
        if self.insert_errors:
            raise self.insert_errors.pop(0)
        self.inserted.append(draft.model_copy(deep=True))
        event_id = f"evt-{len(self.inserted)}"
        return CreatedEvent(
            id=event_id,
            html_link=f"https://calendar.google.com/event?eid={event_id}",
            title=draft.title,
            start=draft.start,
            end=draft.end,
        )

    async def find_duplicates(self, draft: EventDraft, settings: Settings) -> List[Dict[str, Any]]:
        if self.duplicate_error is not None:
            raise self.duplicate_error
        return list(self.duplicates)


@pytest.fixture(autouse=True)
def event_log(tmp_path):
    path = tmp_path / "logs" / "app.log"
    app_logger.set_log_file(path)
    yield path
    app_logger.set_log_file(LOG_FILE)


@pytest.fixture
def interpreter() -> FakeInterpreter:
    return FakeInterpreter()


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def settings_store() -> SettingsStore:
    return SettingsStore()


@pytest.fixture
def scheduler(interpreter, calendar, session_store, settings_store) -> SchedulerService:
    return SchedulerService(
        interpreter=interpreter,
        calendar=calendar,
        session_store=session_store,
        settings_store=settings_store,
    )
