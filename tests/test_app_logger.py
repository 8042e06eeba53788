from __future__ import annotations

import json

from quickcal import app_logger
from quickcal.app_logger import log_event, read_recent_logs


def test_events_are_written_as_json_lines(event_log):
    log_event("info", "schedule.create.start", {"image_count": 2, "when": object()})

    line = event_log.read_text(encoding="utf-8").strip()
    entry = json.loads(line)
    assert entry["level"] == "info"
    assert entry["event"] == "schedule.create.start"
    assert entry["data"]["image_count"] == 2
    assert isinstance(entry["data"]["when"], str)
    assert entry["timestamp"]


def test_read_recent_logs_returns_tail_and_keeps_raw_lines(event_log):
    for index in range(5):
        log_event("info", f"step.{index}")
    with event_log.open("a", encoding="utf-8") as handle:
        handle.write("not json\n")

    entries = read_recent_logs(3)["entries"]

    assert [entry["event"] for entry in entries] == ["step.3", "step.4", "raw_line"]
    assert entries[-1]["data"] == "not json"


def test_missing_log_file(tmp_path):
    app_logger.set_log_file(tmp_path / "absent.log")

    assert read_recent_logs() == {"path": str(tmp_path / "absent.log"), "entries": []}


def test_disabled_file_log():
    app_logger.set_log_file(None)

    log_event("warn", "only.logging")

    assert read_recent_logs() == {"path": None, "entries": []}
