"""
Append-only event log for TaskFlow lifecycle transitions.

Every escalation, rescue and scan run is recorded as one JSON line in
data/event_log.jsonl with canonical metadata:
- append_event: normalize, validate and append
- read_events: replay the log, skipping corrupted or shapeless lines
"""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from core.exceptions import ValidationError
from core.logger import log_corruption
from core.paths import DATA_DIR

EVENT_LOG_PATH = DATA_DIR / "event_log.jsonl"

EVENT_SCHEMA_VERSION = "1.0"
REQUIRED_EVENT_FIELDS = ("type", "timestamp", "schema_version", "event_id")

ITEM_ESCALATED = "item_escalated"
ROADBLOCK_RESCUED = "roadblock_rescued"
RESCUE_RECONCILED = "rescue_reconciled"
OVERDUE_SCAN_COMPLETED = "overdue_scan_completed"


def validate_event_shape(event: Dict[str, Any], strict: bool = False) -> Dict[str, Any]:
    """
    Validate event shape and return validation details.

    Args:
        event: Event dictionary
        strict: If True, all required fields are mandatory.
            If False, only `type` and `timestamp` are mandatory.
    """
    missing = []
    required = REQUIRED_EVENT_FIELDS if strict else ("type", "timestamp")
    for field in required:
        if not event.get(field):
            missing.append(field)
    return {"valid": not missing, "missing": missing}


def normalize_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an event to the canonical shape.
    """
    normalized = dict(event)
    normalized.setdefault("timestamp", datetime.now().isoformat())
    normalized.setdefault("schema_version", EVENT_SCHEMA_VERSION)
    normalized.setdefault("event_id", f"evt_{uuid4().hex[:12]}")
    return normalized


def append_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Append an event to the event log and return the stored shape.
    """
    normalized_event = normalize_event(event)
    check = validate_event_shape(normalized_event, strict=True)
    if not check["valid"]:
        raise ValidationError(
            f"Event is missing fields: {check['missing']}",
            field=check["missing"][0],
        )

    EVENT_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)

    with open(EVENT_LOG_PATH, "a", encoding="utf-8") as f:
        f.write(json.dumps(normalized_event, ensure_ascii=False, default=str) + "\n")

    return normalized_event


def read_events(event_type: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Read all events (optionally of a single type) in append order.
    """
    if not EVENT_LOG_PATH.exists():
        return []

    events = []
    with open(EVENT_LOG_PATH, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as e:
                log_corruption(f"{EVENT_LOG_PATH.name}:{line_number}", line, str(e))
                continue
            if not isinstance(event, dict) or not validate_event_shape(event)["valid"]:
                log_corruption(f"{EVENT_LOG_PATH.name}:{line_number}", line, "missing type or timestamp")
                continue
            if event_type is None or event.get("type") == event_type:
                events.append(event)
    return events
