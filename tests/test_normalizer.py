from __future__ import annotations

import pytest

from quickcal.agent.normalizer import (
    build_draft_preview,
    merge_image_inputs,
    merge_refined_draft,
    normalize_image_inputs,
    sanitize_draft,
)
from quickcal.models import EventDraft, ImageInput


@pytest.mark.parametrize("raw, expected", [
    (0.75, 0.75),
    ("0.7", 0.7),
    (1.7, 1.0),
    (-2, 0.0),
    ("abc", 0.0),
    (None, 0.0),
    (float("nan"), 0.0),
])
def test_confidence_is_clamped(raw, expected):
    assert sanitize_draft({"confidence": raw}).confidence == expected


@pytest.mark.parametrize("raw, expected", [
    (True, True),
    ("true", True),
    ("yes", True),
    ("false", False),
    ("0", False),
    ("", False),
    (0, False),
])
def test_booleans_are_coerced(raw, expected):
    assert sanitize_draft({"uncertain": raw}).uncertain is expected


def test_sanitize_trims_and_fills_end():
    draft = sanitize_draft({
        "title": "  Dinner ",
        "start": "2026-02-20T19:00:00",
        "needsClarification": "true",
        "clarificationQuestion": " Where? ",
    }, 90)

    assert draft.title == "Dinner"
    assert draft.end == "2026-02-20T20:30:00"
    assert draft.needs_clarification is True
    assert draft.clarification_question == "Where?"


def test_sanitize_keeps_confirmation_flags():
    draft = sanitize_draft(EventDraft(title="x", user_confirmed=True, duplicate_confirmed=True))

    assert draft.user_confirmed is True
    assert draft.duplicate_confirmed is True


def test_merge_refined_draft_ignores_unknown_and_owned_fields():
    draft = EventDraft(title="Dinner", start="2026-02-20T19:00:00", end="2026-02-20T20:00:00")

    merged = merge_refined_draft(draft, {
        "location": " Sushi Dai ",
        "confidence": "0.9",
        "user_confirmed": True,
        "duplicate_confirmed": True,
        "reasoning": "the user said so",
    })

    assert merged.location == "Sushi Dai"
    assert merged.confidence == 0.9
    assert merged.title == "Dinner"
    assert merged.user_confirmed is False
    assert merged.duplicate_confirmed is False
    assert not hasattr(merged, "reasoning")


def test_merge_refined_draft_accepts_camel_case_keys():
    draft = EventDraft(title="Dinner", needs_clarification=True, clarification_question="Where?")

    merged = merge_refined_draft(draft, {"needsClarification": False, "clarificationQuestion": ""})

    assert merged.needs_clarification is False
    assert merged.clarification_question == ""


def test_build_draft_preview_only_exposes_event_fields():
    preview = build_draft_preview(EventDraft(title="Dinner", location="Ginza", confidence=0.3))

    assert preview.model_dump() == {
        "title": "Dinner",
        "start": "",
        "end": "",
        "location": "Ginza",
        "description": "",
    }


def test_normalize_image_inputs_drops_incomplete_entries():
    images = normalize_image_inputs([
        {"name": "a.png", "mime_type": "IMAGE/PNG", "data_base64": "aGVsbG8gd29ybGQ="},
        {"mimeType": "image/jpeg", "dataBase64": "aGk=", "sizeBytes": 2},
        {"mime_type": "", "data_base64": "aGk="},
        {"mime_type": "image/png"},
        "not an image",
    ])

    assert [image.mime_type for image in images] == ["image/png", "image/jpeg"]
    assert images[0].size_bytes == 12
    assert images[1].name == "image"
    assert images[1].size_bytes == 2


def test_merge_image_inputs_keeps_latest_three():
    base = [ImageInput(name=name, mime_type="image/png", data_base64="aGk=") for name in "ab"]
    extra = [{"name": name, "mime_type": "image/png", "data_base64": "aGk="} for name in "cd"]

    merged = merge_image_inputs(base, extra)

    assert [image.name for image in merged] == ["b", "c", "d"]
    assert merge_image_inputs(None, None) == []


@pytest.mark.parametrize("raw, expected", [
    ("2026-02-20T19:00:00", "2026-02-20T19:00:00"),
    ("2026-02-20 19:00", "2026-02-20T19:00:00"),
    ("2026/2/20 7:05", "2026-02-20T07:05:00"),
    ("2026-02-20T10:00:00Z", "2026-02-20T19:00:00"),
    ("2026-02-20T19:00:00+09:00", "2026-02-20T19:00:00"),
    ("19:00", ""),
    ("next week sometime", ""),
    ("2026-02-30 10:00", ""),
    (None, ""),
])
def test_start_is_canonical_or_empty(raw, expected):
    assert sanitize_draft({"start": raw}).start == expected


def test_unresolvable_end_falls_back_to_default_duration():
    draft = sanitize_draft({"start": "2026-02-20 19:00", "end": "late"}, 45)

    assert draft.start == "2026-02-20T19:00:00"
    assert draft.end == "2026-02-20T19:45:00"


def test_time_without_date_leaves_start_missing():
    draft = sanitize_draft({"title": "Dinner", "start": "19:00", "end": ""})

    assert draft.start == ""
    assert draft.end == ""
    assert draft.missing_fields() == ["start", "end"]
