"""
Lifecycle transitions for sub-items.

    {task|quick_win, pending|in_progress}
        --(overdue scan)--> {roadblock, status unchanged}
        --(rescue)--------> {roadblock, resolved} + new {task, pending}

The overdue scan escalates every open sub-item whose due date lies before the
start of the current calendar day (an item due today is not yet overdue).
The scan is idempotent: an item already roadblock for every participant is
skipped and produces no second escalation event, so repeated or concurrent
runs converge to the same end state. Per-item failures are collected in the
summary; the scan itself never raises.
"""
from collections import defaultdict
from datetime import datetime, time
from typing import Any, Dict, Optional

from core.event_log import ITEM_ESCALATED, OVERDUE_SCAN_COMPLETED, append_event
from core.exceptions import ValidationError
from core.logger import get_logger
from core.models import ScanSummary, Severity, WorkItem, WorkItemKind
from core.store import WorkItemStore

logger = get_logger("lifecycle")

TRIGGER_TIMER = "timer"
TRIGGER_MANUAL = "manual"


def _local_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def start_of_day(now: datetime) -> datetime:
    return datetime.combine(_local_naive(now).date(), time.min)


def due_date_of(item: WorkItem) -> Optional[datetime]:
    """Due date of a stored item; malformed values raise ValidationError."""
    value = getattr(item, "due_date", None)
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Malformed due_date: {value!r}", field="due_date", value=value)
    if not isinstance(value, datetime):
        raise ValidationError(f"Malformed due_date: {value!r}", field="due_date", value=value)
    return _local_naive(value)


def is_overdue(item: WorkItem, now: Optional[datetime] = None) -> bool:
    """Derived predicate: due date passed and not completed/resolved."""
    if item.is_terminal:
        return False
    due = due_date_of(item)
    return due is not None and due < _local_naive(now or datetime.now())


def needs_escalation(item: WorkItem, now: datetime) -> bool:
    """Open sub-item due before today that is not yet roadblock for everyone."""
    if not item.is_subitem or item.is_terminal:
        return False
    due = due_date_of(item)
    if due is None or due >= start_of_day(now):
        return False
    return not item.is_fully_roadblock()


class LifecycleScanner:
    """Escalates overdue sub-items into the roadblock category."""

    def __init__(self, store: WorkItemStore):
        self._store = store

    def _escalation_patch(self, item: WorkItem, now: datetime) -> Dict[str, Any]:
        patch: Dict[str, Any] = {
            "kind": WorkItemKind.ROADBLOCK,
            "participant_kinds": {p: WorkItemKind.ROADBLOCK for p in item.participant_kinds},
            "escalated_at": now,
        }
        if item.root_cause_category is None:
            patch["root_cause_category"] = "unclear"
        if item.severity is None:
            patch["severity"] = Severity.MEDIUM
        return patch

    def _escalate(self, item_id: str, now: datetime) -> Optional[WorkItem]:
        with self._store.transaction():
            # Re-read: a racing scan or user edit may already have handled it.
            current = self._store.get_item(item_id)
            if not needs_escalation(current, now):
                return None
            previous_kind = current.kind
            updated = self._store.update_item(item_id, self._escalation_patch(current, now))

        try:
            append_event(
                {
                    "type": ITEM_ESCALATED,
                    "payload": {
                        "item_id": updated.id,
                        "linked_parent_id": updated.linked_parent_id,
                        "previous_kind": previous_kind.value,
                        "status": updated.status.value,
                        "due_date": updated.due_date.isoformat() if updated.due_date else None,
                        "participants": list(updated.participants),
                        "escalated_at": now.isoformat(),
                    },
                }
            )
        except OSError as e:
            # The store write has committed; the conversion stands without its event.
            logger.warning("Could not record escalation event for %s: %s", updated.id, e)
        return updated

    def scan(self, now: Optional[datetime] = None, trigger: str = TRIGGER_MANUAL) -> ScanSummary:
        now = _local_naive(now or datetime.now())
        summary = ScanSummary(trigger=trigger, started_at=datetime.now())
        per_user: Dict[str, int] = defaultdict(int)

        try:
            candidates = self._store.list_open_subitems()
        except Exception as e:
            logger.error("Overdue scan could not list sub-items: %s", e, exc_info=True)
            summary.failed += 1
            summary.failures.append({"item_id": "", "error": str(e)})
            summary.finished_at = datetime.now()
            return summary

        cutoff = start_of_day(now)
        for item in candidates:
            summary.scanned += 1
            item_id = str(getattr(item, "id", ""))
            try:
                due = due_date_of(item)
                if due is None or due >= cutoff or item.is_terminal:
                    continue
                if item.is_fully_roadblock():
                    summary.skipped += 1
                    continue

                updated = self._escalate(item_id, now)
                if updated is None:
                    summary.skipped += 1
                    continue

                summary.converted += 1
                summary.converted_ids.append(updated.id)
                for participant in updated.participants:
                    per_user[participant] += 1
            except Exception as e:
                logger.error("Overdue scan failed for item %s: %s", item_id, e, exc_info=True)
                summary.failed += 1
                summary.failures.append({"item_id": item_id, "error": str(e)})

        summary.per_user = dict(per_user)
        summary.finished_at = datetime.now()

        logger.info(
            "Overdue scan (%s): scanned=%d converted=%d skipped=%d failed=%d users=%d",
            trigger,
            summary.scanned,
            summary.converted,
            summary.skipped,
            summary.failed,
            summary.users_affected,
        )
        try:
            append_event(
                {
                    "type": OVERDUE_SCAN_COMPLETED,
                    "payload": {
                        "trigger": trigger,
                        "converted": summary.converted,
                        "failed": summary.failed,
                        "users_affected": summary.users_affected,
                    },
                }
            )
        except OSError as e:
            logger.warning("Could not record scan summary event: %s", e)
        return summary


def scan_overdue(
    store: WorkItemStore,
    now: Optional[datetime] = None,
    trigger: str = TRIGGER_MANUAL,
) -> ScanSummary:
    return LifecycleScanner(store).scan(now=now, trigger=trigger)
