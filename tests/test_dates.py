from __future__ import annotations

from datetime import datetime

import pytest

from quickcal.agent.dates import (
    add_minutes,
    coerce_local_datetime,
    is_start_before_end,
    normalize_title,
    parse_flexible_datetime,
    parse_ja_number,
)

NOW = datetime(2026, 2, 15, 12, 0)


@pytest.mark.parametrize("text", [
    "2026-02-14 19:00",
    "2026-12-31 23:59",
    "2027-01-01 00:00",
    "2028-02-29 07:05",
])
def test_canonical_inputs_round_trip(text):
    assert parse_flexible_datetime(text, NOW) == text.replace(" ", "T") + ":00"


@pytest.mark.parametrize("text, expected", [
    ("2/20 19:00", "2026-02-20T19:00:00"),
    ("今日 9:00", "2026-02-15T09:00:00"),
    ("明日五時半", "2026-02-16T05:30:00"),
    ("明日 十八時", "2026-02-16T18:00:00"),
    ("明日１９時３０分", "2026-02-16T19:30:00"),
    ("today 9:15", "2026-02-15T09:15:00"),
    ("Tomorrow 3pm", "2026-02-16T15:00:00"),
    ("tomorrow 12am", "2026-02-16T00:00:00"),
    ("2026年2月20日 19時", "2026-02-20T19:00:00"),
    ("2026/3/1", "2026-03-01T09:00:00"),
    ("2026-03-01T08:15:00", "2026-03-01T08:15:00"),
])
def test_parse_flexible_datetime(text, expected):
    assert parse_flexible_datetime(text, NOW) == expected


@pytest.mark.parametrize("text", ["2026-02-31 10:00", "2/30 10:00", "2026-13-01", "明日25時"])
def test_invalid_calendar_dates_are_rejected(text):
    assert parse_flexible_datetime(text, NOW) is None


@pytest.mark.parametrize("text", ["", "   ", "whenever", None, 42])
def test_unparseable_values(text):
    assert parse_flexible_datetime(text, NOW) is None


def test_loose_match_inside_a_sentence():
    assert parse_flexible_datetime("dinner tomorrow 7pm with Aki", NOW) == "2026-02-16T19:00:00"
    assert parse_flexible_datetime("dinner tomorrow 7pm with Aki", NOW, allow_loose=False) is None


@pytest.mark.parametrize("token, expected", [
    ("18", 18),
    ("１８", 18),
    ("十", 10),
    ("十五", 15),
    ("二十三", 23),
    ("〇", 0),
    ("abc", None),
    ("", None),
])
def test_parse_ja_number(token, expected):
    assert parse_ja_number(token) == expected


def test_add_minutes_crosses_midnight():
    assert add_minutes("2026-02-15T23:30:00", 60) == "2026-02-16T00:30:00"
    assert add_minutes("", 60) is None


def test_is_start_before_end():
    assert is_start_before_end("2026-02-15T10:00:00", "2026-02-15T11:00:00")
    assert not is_start_before_end("2026-02-15T11:00:00", "2026-02-15T11:00:00")
    assert not is_start_before_end("2026-02-15T12:00:00", "2026-02-15T11:00:00")
    assert not is_start_before_end("", "2026-02-15T11:00:00")


def test_coerce_local_datetime_converts_offsets_to_local_time():
    assert coerce_local_datetime("2026-02-15T03:00:00Z") == "2026-02-15T12:00:00"
    assert coerce_local_datetime("2026-02-15 18:45") == "2026-02-15T18:45:00"
    assert coerce_local_datetime("not a date") is None


def test_normalize_title():
    assert normalize_title("  Team Sync! ") == normalize_title("team sync")
    assert normalize_title("会議 (定例)") == "会議定例"
