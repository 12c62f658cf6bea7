import json

import pytest

from core.event_log import (
    EVENT_SCHEMA_VERSION,
    ITEM_ESCALATED,
    append_event,
    normalize_event,
    read_events,
    validate_event_shape,
)
from core.exceptions import ValidationError


def test_validate_event_shape_strict_requires_schema_fields():
    legacy = {"type": "x", "timestamp": "2026-02-10T00:00:00"}
    loose = validate_event_shape(legacy, strict=False)
    strict = validate_event_shape(legacy, strict=True)

    assert loose["valid"] is True
    assert strict["valid"] is False
    assert "schema_version" in strict["missing"]
    assert "event_id" in strict["missing"]


def test_normalize_keeps_existing_metadata():
    event = normalize_event({"type": ITEM_ESCALATED, "event_id": "evt_fixed", "timestamp": "2026-03-10T00:00:00"})

    assert event["event_id"] == "evt_fixed"
    assert event["timestamp"] == "2026-03-10T00:00:00"
    assert event["schema_version"] == EVENT_SCHEMA_VERSION
    assert validate_event_shape(event, strict=True)["valid"] is True


def test_append_then_read_filters_by_type(isolated_event_log):
    stored = append_event({"type": ITEM_ESCALATED, "payload": {"item_id": "C"}})
    append_event({"type": "other", "payload": {}})

    assert stored["event_id"].startswith("evt_")
    assert len(read_events()) == 2
    assert read_events(ITEM_ESCALATED) == [stored]

    line = isolated_event_log.read_text(encoding="utf-8").splitlines()[0]
    assert json.loads(line)["payload"] == {"item_id": "C"}


def test_corrupted_lines_are_skipped(isolated_event_log, tmp_path, monkeypatch):
    import core.logger as logger_module

    monkeypatch.setattr(logger_module, "LOGS_DIR", tmp_path / "logs")
    append_event({"type": ITEM_ESCALATED, "payload": {}})
    with open(isolated_event_log, "a", encoding="utf-8") as f:
        f.write("{not json\n\n")

    assert len(read_events()) == 1
    assert "event_log.jsonl:2" in (tmp_path / "logs" / "corruption_dump.log").read_text(encoding="utf-8")


def test_missing_log_reads_empty():
    assert read_events() == []


def test_append_rejects_events_without_type(isolated_event_log):
    with pytest.raises(ValidationError) as exc:
        append_event({"payload": {"item_id": "C"}})

    assert exc.value.field == "type"
    assert not isolated_event_log.exists()


def test_lines_without_type_or_timestamp_are_skipped(isolated_event_log, tmp_path, monkeypatch):
    import core.logger as logger_module

    monkeypatch.setattr(logger_module, "LOGS_DIR", tmp_path / "logs")
    isolated_event_log.write_text(
        json.dumps({"payload": {}}) + "\n"
        + json.dumps(["not", "an", "event"]) + "\n"
        + json.dumps({"type": ITEM_ESCALATED, "timestamp": "2026-03-10T00:00:00"}) + "\n",
        encoding="utf-8",
    )

    events = read_events()

    assert [e["type"] for e in events] == [ITEM_ESCALATED]
    dump = (tmp_path / "logs" / "corruption_dump.log").read_text(encoding="utf-8")
    assert "event_log.jsonl:1" in dump
    assert "event_log.jsonl:2" in dump
