"""
Daily completion ledger.

Lets a user mark an item "done for today" without touching the item's
permanent status. One mark per (user, item, day), upserted in place; a new
day starts with no marks, so nothing carries over.
"""
import json
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Set

from core.exceptions import StoreError, ValidationError
from core.logger import get_logger, log_corruption
from core.models import DailyCompletionMark

logger = get_logger("completion_ledger")


def _coerce_day(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(f"Invalid day: {value!r}", field="day", value=value)


def _mark_from_dict(data: dict) -> DailyCompletionMark:
    completed_at = data.get("completed_at")
    return DailyCompletionMark(
        user_id=str(data["user_id"]),
        item_id=str(data["item_id"]),
        day=date.fromisoformat(data["day"]),
        completed=bool(data.get("completed", False)),
        completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
    )


class CompletionLedger:
    """Per-day completion marks with optional JSON persistence."""

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._marks: Dict[str, DailyCompletionMark] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise StoreError(f"Cannot read completion ledger: {e}", path=str(self._path))

        for record in data.get("marks", []) if isinstance(data, dict) else []:
            try:
                mark = _mark_from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                log_corruption(self._path.name, json.dumps(record, default=str), str(e))
                continue
            self._marks[mark.key] = mark

    def _save(self, marks: Dict[str, DailyCompletionMark]) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"marks": [m.to_dict() for m in marks.values()]}
        tmp_path = self._path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        tmp_path.replace(self._path)

    def toggle(
        self,
        user_id: str,
        item_id: str,
        day,
        completed: bool,
        now: Optional[datetime] = None,
    ) -> DailyCompletionMark:
        """Upsert the mark for (user, item, day)."""
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        if not item_id:
            raise ValidationError("item_id is required", field="item_id")

        mark = DailyCompletionMark(
            user_id=str(user_id),
            item_id=str(item_id),
            day=_coerce_day(day),
            completed=bool(completed),
            completed_at=(now or datetime.now()) if completed else None,
        )
        with self._lock:
            existed = mark.key in self._marks
            updated = dict(self._marks)
            updated[mark.key] = mark
            self._save(updated)
            self._marks = updated

        logger.info(
            "%s completion mark %s -> %s",
            "Updated" if existed else "Created",
            mark.key,
            mark.completed,
        )
        return mark

    def marks_for(self, user_id: str, day) -> Dict[str, bool]:
        """item_id -> completed for the user's marks on that day."""
        target = _coerce_day(day)
        with self._lock:
            return {
                m.item_id: m.completed
                for m in self._marks.values()
                if m.user_id == str(user_id) and m.day == target
            }

    def completed_item_ids(self, user_id: str, day) -> Set[str]:
        return {item_id for item_id, done in self.marks_for(user_id, day).items() if done}

    def rows_for(self, user_id: str, item_id: str) -> List[DailyCompletionMark]:
        with self._lock:
            rows = [
                m for m in self._marks.values()
                if m.user_id == str(user_id) and m.item_id == str(item_id)
            ]
        return sorted(rows, key=lambda m: m.day)
