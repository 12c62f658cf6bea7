"""
Ranking presenter: bounded, purpose-specific lists for one user.

Builds top-priority, quick-win and per-time-slot lists from the user's active
items. Read-only and recomputed on every call; the only memoization is that
each item is scored once per call. Counts always describe the full filtered
set, not the truncated display lists.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.completion_ledger import CompletionLedger
from core.config_manager import SystemConfig, config as default_config
from core.logger import get_logger
from core.models import PriorityScore, Quadrant, TimeSlot, WorkItem, WorkItemKind
from core.priority_engine import PriorityEngine
from core.store import WorkItemStore, item_to_dict

logger = get_logger("ranking_presenter")

DISPLAY_SLOTS = (TimeSlot.MORNING, TimeSlot.AFTERNOON, TimeSlot.EVENING)


@dataclass
class RankedItem:
    item: WorkItem
    priority: PriorityScore
    effective_kind: WorkItemKind

    def to_dict(self) -> Dict[str, Any]:
        try:
            data = item_to_dict(self.item)
        except Exception:
            data = {"id": getattr(self.item, "id", None), "title": getattr(self.item, "title", "")}
        data["effective_kind"] = self.effective_kind.value
        data["smart_priority"] = self.priority.to_dict()
        return data


@dataclass
class RankingResult:
    user_id: str
    generated_at: datetime
    top_priority: List[RankedItem]
    quick_wins: List[RankedItem]
    time_slot_suggestions: Dict[str, List[RankedItem]]
    counts: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "generated_at": self.generated_at.isoformat(),
            "top_priority": [r.to_dict() for r in self.top_priority],
            "quick_wins": [r.to_dict() for r in self.quick_wins],
            "time_slot_suggestions": {
                slot: [r.to_dict() for r in entries]
                for slot, entries in self.time_slot_suggestions.items()
            },
            "counts": self.counts,
        }


class RankingPresenter:
    def __init__(
        self,
        store: WorkItemStore,
        ledger: Optional[CompletionLedger] = None,
        engine: Optional[PriorityEngine] = None,
        config: Optional[SystemConfig] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._config = config or default_config
        self._engine = engine or PriorityEngine(self._config)

    @staticmethod
    def _effective_kind(item: WorkItem, user_id: str) -> WorkItemKind:
        try:
            return WorkItemKind(item.effective_kind(user_id))
        except (AttributeError, TypeError, ValueError):
            logger.warning("Item %s has a malformed kind, treating as task", getattr(item, "id", "?"))
            return WorkItemKind.TASK

    def _is_quick_win(self, entry: RankedItem) -> bool:
        if entry.effective_kind == WorkItemKind.QUICK_WIN:
            return True
        if entry.effective_kind == WorkItemKind.ROADBLOCK:
            return False
        return entry.priority.factors.effort >= self._config.QUICK_WIN_EFFORT_THRESHOLD

    def present(self, user_id: str, now: Optional[datetime] = None) -> RankingResult:
        now = now or datetime.now()
        fetched = self._store.list_active_items(user_id)

        done_today = set()
        if self._ledger is not None:
            done_today = self._ledger.completed_item_ids(user_id, now.date())

        active = []
        suppressed = 0
        for item in fetched:
            if item.is_terminal:
                continue
            if item.id in done_today:
                suppressed += 1
                continue
            active.append(item)

        entries = [
            RankedItem(item=item, priority=score, effective_kind=self._effective_kind(item, user_id))
            for item, score in self._engine.rank(active, now)
        ]

        quick_wins = [e for e in entries if self._is_quick_win(e)]
        slot_buckets = {
            slot.value: [e for e in entries if e.priority.time_slot == slot]
            for slot in DISPLAY_SLOTS
        }

        counts: Dict[str, Any] = {
            "active": len(entries),
            "completed_today": suppressed,
            "top_priority": len(entries),
            "quick_wins": len(quick_wins),
            "time_slots": {slot: len(bucket) for slot, bucket in slot_buckets.items()},
            "quadrants": {
                q.value: sum(1 for e in entries if e.priority.quadrant == q) for q in Quadrant
            },
        }

        cap = self._config.TIME_SLOT_LIMIT
        return RankingResult(
            user_id=user_id,
            generated_at=now,
            top_priority=entries[: self._config.TOP_PRIORITY_LIMIT],
            quick_wins=quick_wins[: self._config.QUICK_WIN_LIMIT],
            time_slot_suggestions={slot: bucket[:cap] for slot, bucket in slot_buckets.items()},
            counts=counts,
        )
