from __future__ import annotations

from quickcal.agent.schemas import ClarificationSession, QuestionType
from quickcal.agent.state import InMemorySessionStore
from quickcal.models import Settings

from .conftest import make_draft


def _session(session_id="s1"):
    return ClarificationSession(
        session_id=session_id,
        draft=make_draft(),
        question_type=QuestionType.MISSING_END,
        question="When does it end?",
        settings=Settings(),
    )


def test_values_are_copied_in_and_out():
    store = InMemorySessionStore()
    session = _session()
    store.set("s1", session)

    session.draft.title = "changed after set"
    loaded = store.get("s1")
    loaded.question = "changed after get"

    assert store.get("s1").draft.title == "Dinner"
    assert store.get("s1").question == "When does it end?"


def test_delete_and_contains():
    store = InMemorySessionStore()
    store.set("s1", _session())
    store.set("", _session(""))

    assert len(store) == 1
    assert store.contains("s1")
    store.delete("s1")
    store.delete("missing")
    assert not store.contains("s1")
    assert store.get("s1") is None
    assert len(store) == 0
