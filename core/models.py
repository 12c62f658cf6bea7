"""
Core Data Models for TaskFlow.
Defines work items (activities and sub-items), daily completion marks,
derived priority scores and lifecycle scan summaries.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class WorkItemKind(str, Enum):
    TASK = "task"
    QUICK_WIN = "quick_win"
    ROADBLOCK = "roadblock"


class WorkItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    RESOLVED = "resolved"


TERMINAL_STATUSES = frozenset({WorkItemStatus.COMPLETED, WorkItemStatus.RESOLVED})


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TimeSlot(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    FLEXIBLE = "flexible"


class Quadrant(str, Enum):
    """Eisenhower matrix quadrants."""
    DO_FIRST = "do_first"        # urgent & important
    SCHEDULE = "schedule"        # important, not urgent
    DELEGATE = "delegate"        # urgent, not important
    ELIMINATE = "eliminate"      # neither


@dataclass
class WorkItem:
    """Activity (dossier) or sub-item. Sub-items carry linked_parent_id."""
    id: str
    title: str
    participants: List[str]
    description: Optional[str] = None
    kind: WorkItemKind = WorkItemKind.TASK
    status: WorkItemStatus = WorkItemStatus.PENDING
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    estimated_minutes: Optional[int] = None
    # participant -> kind override; participants without an entry use `kind`
    participant_kinds: Dict[str, WorkItemKind] = field(default_factory=dict)
    linked_parent_id: Optional[str] = None  # back-reference only, never ownership
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    root_cause_category: Optional[str] = None
    root_cause_factor: Optional[str] = None
    severity: Optional[Severity] = None
    resolution: Optional[str] = None
    rescued_from_id: Optional[str] = None
    rescue_item_id: Optional[str] = None

    def __post_init__(self):
        now = datetime.now()
        if self.created_at is None:
            self.created_at = now
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def author(self) -> Optional[str]:
        return self.participants[0] if self.participants else None

    @property
    def is_subitem(self) -> bool:
        return self.linked_parent_id is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def effective_kind(self, participant: Optional[str] = None) -> WorkItemKind:
        """Kind as seen by `participant`, falling back to the item's own kind."""
        if participant is not None and participant in self.participant_kinds:
            return self.participant_kinds[participant]
        return self.kind

    def is_fully_roadblock(self) -> bool:
        if self.kind != WorkItemKind.ROADBLOCK:
            return False
        return all(k == WorkItemKind.ROADBLOCK for k in self.participant_kinds.values())


@dataclass
class DailyCompletionMark:
    """Per-day "done for today" mark; never carried across days."""
    user_id: str
    item_id: str
    day: date
    completed: bool = False
    completed_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return f"{self.user_id}|{self.item_id}|{self.day.isoformat()}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "item_id": self.item_id,
            "day": self.day.isoformat(),
            "completed": self.completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class PriorityFactors:
    urgency: float
    importance: float
    effort: float
    context: float
    collaboration: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "urgency": self.urgency,
            "importance": self.importance,
            "effort": self.effort,
            "context": self.context,
            "collaboration": self.collaboration,
        }


@dataclass
class PriorityScore:
    """Derived per ranking pass; never persisted."""
    score: float
    factors: PriorityFactors
    time_slot: TimeSlot
    quadrant: Quadrant
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 4),
            "factors": {k: round(v, 4) for k, v in self.factors.to_dict().items()},
            "time_slot": self.time_slot.value,
            "quadrant": self.quadrant.value,
            "reasoning": self.reasoning,
        }


@dataclass
class ScanSummary:
    """Result of one overdue scan. Failures are reported here, never raised."""
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    scanned: int = 0
    converted: int = 0
    skipped: int = 0
    failed: int = 0
    per_user: Dict[str, int] = field(default_factory=dict)
    converted_ids: List[str] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def users_affected(self) -> int:
        return len(self.per_user)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "scanned": self.scanned,
            "converted": self.converted,
            "skipped": self.skipped,
            "failed": self.failed,
            "users_affected": self.users_affected,
            "per_user": dict(self.per_user),
            "converted_ids": list(self.converted_ids),
            "failures": list(self.failures),
        }
