from datetime import datetime, timedelta

from core.event_log import ITEM_ESCALATED, OVERDUE_SCAN_COMPLETED, read_events
from core.lifecycle import (
    TRIGGER_TIMER,
    LifecycleScanner,
    is_overdue,
    scan_overdue,
    start_of_day,
)
from core.models import Severity, WorkItem, WorkItemKind, WorkItemStatus
from core.store import WorkItemRegistry

MIDNIGHT = datetime(2026, 3, 10, 0, 0)


def _registry(*records) -> WorkItemRegistry:
    registry = WorkItemRegistry()
    registry.create_item({"id": "dossier", "title": "Kitchen", "participants": ["alice", "bob"]})
    for record in records:
        data = {"participants": ["alice"], "linked_parent_id": "dossier"}
        data.update(record)
        registry.create_item(data)
    return registry


def test_midnight_scan_escalates_past_due_and_leaves_today_alone():
    registry = _registry(
        {"id": "C", "title": "Order cabinets", "due_date": MIDNIGHT - timedelta(days=2)},
        {"id": "D", "title": "Measure walls", "due_date": MIDNIGHT.replace(hour=15)},
    )

    summary = LifecycleScanner(registry).scan(now=MIDNIGHT, trigger=TRIGGER_TIMER)

    c = registry.get_item("C")
    assert c.kind == WorkItemKind.ROADBLOCK
    assert c.status == WorkItemStatus.PENDING
    assert c.escalated_at == MIDNIGHT
    assert c.root_cause_category == "unclear"
    assert c.severity == Severity.MEDIUM
    assert registry.get_item("D").kind == WorkItemKind.TASK

    assert summary.trigger == TRIGGER_TIMER
    assert summary.converted == 1
    assert summary.converted_ids == ["C"]
    assert summary.per_user == {"alice": 1}
    assert summary.users_affected == 1


def test_due_yesterday_evening_counts_as_overdue():
    registry = _registry({"id": "late", "title": "Sign contract", "due_date": MIDNIGHT - timedelta(minutes=1)})

    summary = scan_overdue(registry, now=MIDNIGHT.replace(hour=8))

    assert summary.converted_ids == ["late"]


def test_second_scan_is_a_no_op_without_new_events():
    registry = _registry({"id": "C", "title": "Order cabinets", "due_date": MIDNIGHT - timedelta(days=2)})
    scanner = LifecycleScanner(registry)

    first = scanner.scan(now=MIDNIGHT)
    before = registry.get_item("C")
    second = scanner.scan(now=MIDNIGHT + timedelta(hours=1))

    assert first.converted == 1
    assert second.converted == 0
    assert second.skipped == 1
    assert registry.get_item("C").updated_at == before.updated_at
    assert len(read_events(ITEM_ESCALATED)) == 1
    assert len(read_events(OVERDUE_SCAN_COMPLETED)) == 2


def test_in_progress_status_is_preserved_and_terminal_items_ignored():
    registry = _registry(
        {"id": "busy", "title": "Tile floor", "status": "in_progress", "due_date": MIDNIGHT - timedelta(days=1)},
        {"id": "done", "title": "Buy paint", "status": "completed", "due_date": MIDNIGHT - timedelta(days=5)},
        {"id": "fixed", "title": "Old blocker", "status": "resolved", "kind": "roadblock",
         "due_date": MIDNIGHT - timedelta(days=5)},
    )

    summary = scan_overdue(registry, now=MIDNIGHT)

    busy = registry.get_item("busy")
    assert busy.kind == WorkItemKind.ROADBLOCK
    assert busy.status == WorkItemStatus.IN_PROGRESS
    assert registry.get_item("done").kind == WorkItemKind.TASK
    assert summary.converted_ids == ["busy"]


def test_activities_are_never_escalated():
    registry = WorkItemRegistry()
    registry.create_item(
        {"id": "trip", "title": "Plan trip", "participants": ["alice"], "due_date": MIDNIGHT - timedelta(days=3)}
    )

    summary = scan_overdue(registry, now=MIDNIGHT)

    assert summary.scanned == 0
    assert registry.get_item("trip").kind == WorkItemKind.TASK


def test_participant_overrides_are_escalated_too():
    registry = _registry(
        {
            "id": "shared",
            "title": "Pick contractor",
            "participants": ["alice", "bob", "carol"],
            "participant_kinds": {"bob": "quick_win"},
            "due_date": MIDNIGHT - timedelta(days=1),
        },
        {"id": "bob-only", "title": "Return tools", "participants": ["bob"], "due_date": MIDNIGHT - timedelta(days=1)},
    )

    summary = scan_overdue(registry, now=MIDNIGHT)

    shared = registry.get_item("shared")
    assert shared.effective_kind("bob") == WorkItemKind.ROADBLOCK
    assert shared.effective_kind("alice") == WorkItemKind.ROADBLOCK
    assert shared.is_fully_roadblock()
    assert summary.per_user == {"alice": 1, "bob": 2, "carol": 1}
    assert summary.users_affected == 3


def test_roadblock_with_stale_override_is_still_converted():
    registry = _registry(
        {
            "id": "half",
            "title": "Permit",
            "participants": ["alice", "bob"],
            "kind": "roadblock",
            "participant_kinds": {"bob": "task"},
            "due_date": MIDNIGHT - timedelta(days=1),
        },
        {"id": "full", "title": "Inspection", "kind": "roadblock", "due_date": MIDNIGHT - timedelta(days=1)},
    )

    summary = scan_overdue(registry, now=MIDNIGHT)

    assert summary.converted_ids == ["half"]
    assert summary.skipped == 1
    assert registry.get_item("half").effective_kind("bob") == WorkItemKind.ROADBLOCK


class FlakyRegistry(WorkItemRegistry):
    def update_item(self, item_id, patch):
        if item_id == "boom":
            raise OSError("disk full")
        return super().update_item(item_id, patch)


def test_per_item_failures_are_collected_and_the_rest_proceeds():
    registry = FlakyRegistry()
    registry.create_item({"id": "dossier", "title": "Kitchen", "participants": ["alice"]})
    for item_id in ("a", "boom", "z"):
        registry.create_item(
            {
                "id": item_id,
                "title": f"Step {item_id}",
                "participants": ["alice"],
                "linked_parent_id": "dossier",
                "due_date": MIDNIGHT - timedelta(days=1),
            }
        )

    summary = LifecycleScanner(registry).scan(now=MIDNIGHT)

    assert sorted(summary.converted_ids) == ["a", "z"]
    assert summary.failed == 1
    assert summary.failures[0]["item_id"] == "boom"
    assert "disk full" in summary.failures[0]["error"]
    # The failed item's transaction rolled back untouched.
    assert registry.get_item("boom").kind == WorkItemKind.TASK


class StaticStore(WorkItemRegistry):
    """Serves hand-built items that bypass create-time validation."""

    def __init__(self, items):
        super().__init__()
        self._served = items

    def list_open_subitems(self):
        return list(self._served)


def test_malformed_due_date_is_reported_not_raised():
    broken = WorkItem(id="bad", title="Broken", participants=["alice"], linked_parent_id="p", due_date="soon")

    summary = LifecycleScanner(StaticStore([broken])).scan(now=MIDNIGHT)

    assert summary.failed == 1
    assert summary.failures[0]["item_id"] == "bad"
    assert summary.converted == 0


class UnreachableStore(WorkItemRegistry):
    def list_open_subitems(self):
        raise ConnectionError("store offline")


def test_listing_failure_returns_summary():
    summary = LifecycleScanner(UnreachableStore()).scan(now=MIDNIGHT)

    assert summary.failed == 1
    assert summary.scanned == 0
    assert summary.finished_at is not None
    assert "store offline" in summary.failures[0]["error"]


def test_escalation_event_payload():
    registry = _registry({"id": "C", "title": "Order cabinets", "due_date": MIDNIGHT - timedelta(days=2)})

    scan_overdue(registry, now=MIDNIGHT)

    (event,) = read_events(ITEM_ESCALATED)
    assert event["payload"]["item_id"] == "C"
    assert event["payload"]["previous_kind"] == "task"
    assert event["payload"]["linked_parent_id"] == "dossier"
    assert event["schema_version"] == "1.0"
    assert event["event_id"].startswith("evt_")


def test_overdue_predicate_and_day_boundary():
    item = WorkItem(id="x", title="X", participants=["alice"], due_date=datetime(2026, 3, 9, 18, 0))

    assert start_of_day(datetime(2026, 3, 10, 13, 45)) == MIDNIGHT
    assert is_overdue(item, datetime(2026, 3, 9, 18, 1))
    assert not is_overdue(item, datetime(2026, 3, 9, 17, 0))

    item.status = WorkItemStatus.COMPLETED
    assert not is_overdue(item, datetime(2026, 3, 12))


def test_committed_escalation_counts_even_if_event_write_fails(monkeypatch):
    import core.lifecycle as lifecycle

    real_append = lifecycle.append_event

    def failing_append(event):
        if event["type"] == ITEM_ESCALATED:
            raise OSError("event log is read-only")
        return real_append(event)

    monkeypatch.setattr(lifecycle, "append_event", failing_append)
    registry = _registry({"id": "C", "title": "Order cabinets", "due_date": MIDNIGHT - timedelta(days=2)})

    summary = scan_overdue(registry, now=MIDNIGHT)

    assert summary.converted_ids == ["C"]
    assert summary.failed == 0
    assert summary.per_user == {"alice": 1}
    assert registry.get_item("C").kind == WorkItemKind.ROADBLOCK
    assert len(read_events(OVERDUE_SCAN_COMPLETED)) == 1
