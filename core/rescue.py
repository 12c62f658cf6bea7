"""
Rescue workflow: resolve a roadblock and spawn its remediation item.

All input is validated before the store is touched. The two writes run inside
store.transaction(); the new item is created first and the original resolved
second, so on a store without real transactions a crash in between leaves an
unresolved roadblock plus an orphaned rescue item, which
find_orphaned_rescues()/reconcile_orphans() detect and finish.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from core.config_manager import SystemConfig, config as default_config
from core.event_log import RESCUE_RECONCILED, ROADBLOCK_RESCUED, append_event
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.logger import get_logger
from core.models import (
    PRIORITY_RANK,
    Priority,
    Severity,
    WorkItem,
    WorkItemKind,
    WorkItemStatus,
)
from core.root_causes import validate_root_cause
from core.store import WorkItemStore, parse_datetime

logger = get_logger("rescue")


class RescueWorkflow:
    def __init__(self, store: WorkItemStore, config: Optional[SystemConfig] = None):
        self._store = store
        self._config = config or default_config

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _validate(
        self,
        proposed_resolution: Any,
        new_deadline: Any,
        root_cause_category: Any,
        root_cause_factor: Any,
        severity: Any,
        now: datetime,
    ) -> Tuple[str, datetime, str, Optional[str], Severity]:
        category, factor = validate_root_cause(root_cause_category, root_cause_factor)

        try:
            severity_value = Severity(str(severity or Severity.MEDIUM.value).lower())
        except ValueError:
            raise ValidationError(f"Unknown severity: {severity!r}", field="severity", value=severity)

        resolution = str(proposed_resolution or "").strip()
        if len(resolution) < self._config.RESCUE_MIN_RESOLUTION_LENGTH:
            raise ValidationError(
                f"Proposed resolution must be at least "
                f"{self._config.RESCUE_MIN_RESOLUTION_LENGTH} characters",
                field="proposed_resolution",
            )

        deadline = parse_datetime(new_deadline, "new_deadline")
        if deadline is None:
            raise ValidationError("new_deadline is required", field="new_deadline")
        if deadline.tzinfo is not None:
            deadline = deadline.astimezone().replace(tzinfo=None)
        date_only = (
            isinstance(new_deadline, date) and not isinstance(new_deadline, datetime)
        ) or (isinstance(new_deadline, str) and len(new_deadline.strip()) == 10)
        in_past = deadline.date() < now.date() if date_only else deadline < now
        if in_past:
            raise ValidationError(
                f"new_deadline {deadline.isoformat()} lies in the past",
                field="new_deadline",
                value=new_deadline,
            )
        return resolution, deadline, category, factor, severity_value

    @staticmethod
    def _check_rescuable(item: WorkItem, user_id: Optional[str]) -> None:
        if item.status == WorkItemStatus.RESOLVED:
            raise ConflictError(f"Item {item.id} is already resolved", item_id=item.id)
        if item.status == WorkItemStatus.COMPLETED:
            raise ConflictError(f"Item {item.id} is already completed", item_id=item.id)
        if item.effective_kind(user_id) != WorkItemKind.ROADBLOCK:
            raise ValidationError(
                f"Item {item.id} is not a roadblock",
                field="kind",
                value=item.effective_kind(user_id).value,
            )

    # ------------------------------------------------------------------
    # Rescue
    # ------------------------------------------------------------------
    def _rescue_item_data(self, original: WorkItem, resolution: str, deadline: datetime) -> Dict[str, Any]:
        priority = original.priority
        if PRIORITY_RANK[priority] < PRIORITY_RANK[Priority.HIGH]:
            priority = Priority.HIGH
        return {
            "title": f"{self._config.RESCUE_TITLE_PREFIX} {original.title}",
            "description": f"Rescued task with solution: {resolution}",
            "kind": WorkItemKind.TASK,
            "status": WorkItemStatus.PENDING,
            "priority": priority,
            "due_date": deadline,
            "estimated_minutes": original.estimated_minutes,
            "participants": list(original.participants),
            "linked_parent_id": original.linked_parent_id,
            "rescued_from_id": original.id,
        }

    def rescue(
        self,
        item_id: str,
        proposed_resolution: str,
        new_deadline: Any,
        root_cause_category: str,
        root_cause_factor: Optional[str] = None,
        severity: Any = Severity.MEDIUM,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorkItem:
        """Resolve roadblock `item_id` and return the newly created rescue item."""
        now = now or datetime.now()
        if now.tzinfo is not None:
            now = now.astimezone().replace(tzinfo=None)
        resolution, deadline, category, factor, severity_value = self._validate(
            proposed_resolution, new_deadline, root_cause_category, root_cause_factor, severity, now
        )

        original = self._store.get_item(item_id)
        self._check_rescuable(original, user_id)

        with self._store.transaction():
            # Precondition re-check right before mutating.
            current = self._store.get_item(item_id)
            self._check_rescuable(current, user_id)

            rescued = self._store.create_item(self._rescue_item_data(current, resolution, deadline))
            self._store.update_item(
                current.id,
                {
                    "status": WorkItemStatus.RESOLVED,
                    "kind": WorkItemKind.ROADBLOCK,
                    "resolved_at": now,
                    "root_cause_category": category,
                    "root_cause_factor": factor,
                    "severity": severity_value,
                    "resolution": resolution,
                    "rescue_item_id": rescued.id,
                },
            )

        try:
            append_event(
                {
                    "type": ROADBLOCK_RESCUED,
                    "payload": {
                        "item_id": original.id,
                        "rescue_item_id": rescued.id,
                        "linked_parent_id": original.linked_parent_id,
                        "root_cause_category": category,
                        "root_cause_factor": factor,
                        "severity": severity_value.value,
                        "new_deadline": deadline.isoformat(),
                        "user_id": user_id,
                    },
                }
            )
        except OSError as e:
            logger.warning("Could not record rescue event for %s: %s", original.id, e)
        logger.info("Rescued roadblock %s -> %s (%s/%s)", original.id, rescued.id, category, factor)
        return rescued

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def find_orphaned_rescues(self) -> List[Tuple[WorkItem, WorkItem]]:
        """(rescue item, original) pairs whose original roadblock is still open."""
        orphans = []
        for item in self._store.list_items():
            if not item.rescued_from_id:
                continue
            try:
                original = self._store.get_item(item.rescued_from_id)
            except NotFoundError:
                logger.warning("Rescue item %s points to missing original %s", item.id, item.rescued_from_id)
                continue
            if original.status != WorkItemStatus.RESOLVED:
                orphans.append((item, original))
        return orphans

    def reconcile_orphans(self, now: Optional[datetime] = None) -> List[str]:
        """Resolve originals left open by an interrupted rescue; returns their ids."""
        now = now or datetime.now()
        reconciled = []
        for rescued, original in self.find_orphaned_rescues():
            self._store.update_item(
                original.id,
                {
                    "status": WorkItemStatus.RESOLVED,
                    "kind": WorkItemKind.ROADBLOCK,
                    "resolved_at": now,
                    "rescue_item_id": rescued.id,
                },
            )
            try:
                append_event(
                    {
                        "type": RESCUE_RECONCILED,
                        "payload": {"item_id": original.id, "rescue_item_id": rescued.id},
                    }
                )
            except OSError as e:
                logger.warning("Could not record reconcile event for %s: %s", original.id, e)
            logger.warning("Reconciled interrupted rescue: %s resolved by %s", original.id, rescued.id)
            reconciled.append(original.id)
        return reconciled
