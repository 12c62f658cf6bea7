"""
Work item store adapter.

WorkItemStore is the read/write boundary the engine consumes; WorkItemRegistry
is the bundled implementation: an in-memory map with JSON persistence at
data/work_items.json (no path -> memory only, used by tests and embedding).

Reads return copies, so callers can never mutate stored state behind the
store's back. transaction() snapshots the map and restores it on error.
"""
import copy
import json
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import fields
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from core.exceptions import NotFoundError, StoreError, ValidationError
from core.logger import get_logger, log_corruption
from core.models import (
    Priority,
    Severity,
    WorkItem,
    WorkItemKind,
    WorkItemStatus,
)

logger = get_logger("store")

_ENUM_FIELDS = {
    "kind": WorkItemKind,
    "status": WorkItemStatus,
    "priority": Priority,
    "severity": Severity,
}
_DATETIME_FIELDS = ("due_date", "created_at", "updated_at", "escalated_at", "resolved_at")
_ITEM_FIELDS = {f.name for f in fields(WorkItem)}
_IMMUTABLE_FIELDS = {"id", "created_at"}


def parse_datetime(value: Any, field_name: str = "datetime") -> Optional[datetime]:
    """Accept datetime, date (start of day) or ISO string; None stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field_name}: {value!r}", field=field_name, value=value)


def _coerce_enum(name: str, value: Any):
    if value is None:
        return None
    enum_cls = _ENUM_FIELDS[name]
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value!r}", field=name, value=value)


def _coerce_participant_kinds(raw: Any, participants: List[str]) -> Dict[str, WorkItemKind]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("participant_kinds must be a mapping", field="participant_kinds")
    result = {}
    for participant, kind in raw.items():
        if participant not in participants:
            raise ValidationError(
                f"participant_kinds key {participant!r} is not a participant",
                field="participant_kinds",
                value=participant,
            )
        try:
            result[participant] = WorkItemKind(kind)
        except ValueError:
            raise ValidationError(
                f"Invalid kind for {participant!r}: {kind!r}",
                field="participant_kinds",
                value=kind,
            )
    return result


def _coerce_participants(raw: Any) -> List[str]:
    if not raw or isinstance(raw, str):
        raise ValidationError("participants must be a non-empty list", field="participants")
    seen = []
    for participant in raw:
        participant = str(participant).strip()
        if participant and participant not in seen:
            seen.append(participant)
    if not seen:
        raise ValidationError("participants must be a non-empty list", field="participants")
    return seen


def item_to_dict(item: WorkItem) -> Dict[str, Any]:
    data = {}
    for name in _ITEM_FIELDS:
        value = getattr(item, name)
        if name in _ENUM_FIELDS and value is not None:
            value = value.value
        elif name in _DATETIME_FIELDS and isinstance(value, datetime):
            value = value.isoformat()
        elif name == "participant_kinds":
            value = {p: getattr(k, "value", k) for p, k in value.items()}
        elif name == "participants":
            value = list(value)
        data[name] = value
    return data


def dict_to_item(data: Dict[str, Any]) -> WorkItem:
    if not data.get("title"):
        raise ValidationError("title is required", field="title")
    participants = _coerce_participants(data.get("participants"))
    kwargs = {
        "id": str(data["id"]),
        "title": str(data["title"]),
        "participants": participants,
        "participant_kinds": _coerce_participant_kinds(data.get("participant_kinds"), participants),
    }
    for name in ("description", "linked_parent_id", "root_cause_category",
                 "root_cause_factor", "resolution", "rescued_from_id", "rescue_item_id"):
        if data.get(name) is not None:
            kwargs[name] = str(data[name])
    for name in _ENUM_FIELDS:
        if data.get(name) is not None:
            kwargs[name] = _coerce_enum(name, data[name])
    for name in _DATETIME_FIELDS:
        kwargs[name] = parse_datetime(data.get(name), name)
    minutes = data.get("estimated_minutes")
    if minutes is not None:
        try:
            kwargs["estimated_minutes"] = int(minutes)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Invalid estimated_minutes: {minutes!r}", field="estimated_minutes", value=minutes
            )
    return WorkItem(**kwargs)


class WorkItemStore(ABC):
    """Store adapter interface consumed by the engine."""

    supports_transactions = False

    @abstractmethod
    def list_active_items(self, user_id: str) -> List[WorkItem]:
        """Non-terminal items the user participates in."""

    @abstractmethod
    def list_open_subitems(self) -> List[WorkItem]:
        """Every non-terminal sub-item, across users."""

    @abstractmethod
    def list_items(self) -> List[WorkItem]:
        ...

    @abstractmethod
    def get_item(self, item_id: str) -> WorkItem:
        ...

    @abstractmethod
    def update_item(self, item_id: str, patch: Dict[str, Any]) -> WorkItem:
        ...

    @abstractmethod
    def create_item(self, data: Dict[str, Any]) -> WorkItem:
        ...

    @contextmanager
    def transaction(self) -> Iterator["WorkItemStore"]:
        """Default: no atomicity guarantee, callers order writes for recovery."""
        yield self


class WorkItemRegistry(WorkItemStore):
    """In-memory registry with optional JSON persistence."""

    supports_transactions = True

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._items: Dict[str, WorkItem] = {}
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise StoreError(f"Cannot read work items: {e}", path=str(self._path))

        records = data.get("items", []) if isinstance(data, dict) else data
        if not isinstance(records, list):
            records = []
        for record in records:
            try:
                item = dict_to_item(record)
            except (ValidationError, KeyError, TypeError) as e:
                log_corruption(self._path.name, json.dumps(record, default=str), str(e))
                continue
            self._items[item.id] = item

    def save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"items": [item_to_dict(i) for i in self._items.values()]}
        tmp_path = self._path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        tmp_path.replace(self._path)

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self.save()

    @contextmanager
    def transaction(self) -> Iterator["WorkItemRegistry"]:
        with self._lock:
            snapshot = copy.deepcopy(self._items)
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._items = snapshot
                raise
            finally:
                self._tx_depth -= 1
            self._commit()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_items(self) -> List[WorkItem]:
        with self._lock:
            return [copy.deepcopy(i) for i in self._items.values()]

    def list_active_items(self, user_id: str) -> List[WorkItem]:
        with self._lock:
            return [
                copy.deepcopy(i)
                for i in self._items.values()
                if not i.is_terminal and user_id in i.participants
            ]

    def list_open_subitems(self) -> List[WorkItem]:
        with self._lock:
            return [
                copy.deepcopy(i)
                for i in self._items.values()
                if i.is_subitem and not i.is_terminal
            ]

    def list_subitems(self, parent_id: str) -> List[WorkItem]:
        with self._lock:
            return [
                copy.deepcopy(i)
                for i in self._items.values()
                if i.linked_parent_id == parent_id
            ]

    def get_item(self, item_id: str) -> WorkItem:
        with self._lock:
            item = self._items.get(str(item_id))
            if item is None:
                raise NotFoundError("WorkItem", item_id)
            return copy.deepcopy(item)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    @staticmethod
    def _new_id() -> str:
        return f"item_{uuid.uuid4().hex[:8]}"

    def create_item(self, data: Dict[str, Any]) -> WorkItem:
        unknown = set(data) - _ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown fields: {sorted(unknown)}", field=sorted(unknown)[0])
        record = dict(data)
        record.setdefault("id", self._new_id())
        with self._lock:
            if str(record["id"]) in self._items:
                raise ValidationError(f"Duplicate id: {record['id']}", field="id")
            item = dict_to_item(record)
            self._items[item.id] = item
            self._commit()
            logger.debug("Created work item %s (%s)", item.id, item.kind.value)
            return copy.deepcopy(item)

    def update_item(self, item_id: str, patch: Dict[str, Any]) -> WorkItem:
        unknown = set(patch) - _ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown fields: {sorted(unknown)}", field=sorted(unknown)[0])
        immutable = set(patch) & _IMMUTABLE_FIELDS
        if immutable:
            raise ValidationError(f"Immutable fields: {sorted(immutable)}", field=sorted(immutable)[0])

        with self._lock:
            current = self._items.get(str(item_id))
            if current is None:
                raise NotFoundError("WorkItem", item_id)
            record = item_to_dict(current)
            record.update(patch)
            if "updated_at" not in patch:
                record["updated_at"] = datetime.now()
            updated = dict_to_item(record)
            self._items[updated.id] = updated
            self._commit()
            return copy.deepcopy(updated)

    def delete_item(self, item_id: str) -> None:
        """Remove one item. The parent activity is never touched."""
        with self._lock:
            if self._items.pop(str(item_id), None) is None:
                raise NotFoundError("WorkItem", item_id)
            self._commit()
