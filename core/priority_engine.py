"""
PriorityEngine: Eisenhower-derived composite score for a work item.

Five factors, each in [0, 1]:
- urgency: time left until the due date
- importance: declared priority
- effort: inverse of estimated duration (short work = quick win)
- context: fit between the current time of day and the item's best slot
- collaboration: number of participants

score = weighted sum of the factors, clamped to [0, 1]. Weights, thresholds
and bands live in SystemConfig. Scoring is pure with respect to (item, now)
and never raises on missing or malformed optional attributes.
"""
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from core.config_manager import SystemConfig, config as default_config
from core.logger import get_logger
from core.models import (
    PRIORITY_RANK,
    Priority,
    PriorityFactors,
    PriorityScore,
    Quadrant,
    TimeSlot,
    WorkItem,
    WorkItemKind,
)

logger = get_logger("priority_engine")

SLOT_KEYWORDS = (
    (TimeSlot.MORNING, ("planning", "strategy", "analysis", "writing", "research", "design")),
    (TimeSlot.AFTERNOON, ("meeting", "call", "review", "sync", "discussion")),
    (TimeSlot.EVENING, ("email", "admin", "update", "filing", "inbox")),
)
SLOT_ORDER = {TimeSlot.MORNING: 0, TimeSlot.AFTERNOON: 1, TimeSlot.EVENING: 2}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _naive_local(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def coerce_priority(value: Any) -> Priority:
    if isinstance(value, Priority):
        return value
    try:
        return Priority(str(value).strip().lower())
    except ValueError:
        return Priority.MEDIUM


def coerce_due_date(value: Any) -> Optional[datetime]:
    """Due date as a naive local datetime; unparsable values count as absent."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _naive_local(value)
    if isinstance(value, str):
        try:
            return _naive_local(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


def coerce_minutes(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return None
    return minutes if minutes > 0 else None


class PriorityEngine:
    def __init__(self, config: Optional[SystemConfig] = None):
        self._config = config or default_config

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------
    def urgency_factor(self, due_date: Optional[datetime], now: datetime) -> float:
        cfg = self._config
        if due_date is None:
            return _clamp(cfg.URGENCY_NO_DUE_DATE)

        days_left = (due_date - now).total_seconds() / 86400
        if days_left <= 0:
            return 1.0

        horizon = float(cfg.URGENCY_HORIZON_DAYS)
        if days_left <= horizon:
            span = cfg.URGENCY_HORIZON_MAX - cfg.URGENCY_HORIZON_MIN
            return _clamp(cfg.URGENCY_HORIZON_MAX - span * (days_left / horizon))

        scaled = cfg.URGENCY_FAR_CEILING * horizon / days_left
        return _clamp(scaled, cfg.URGENCY_FAR_FLOOR, cfg.URGENCY_FAR_CEILING)

    def importance_factor(self, priority: Priority) -> float:
        table = self._config.IMPORTANCE_BY_PRIORITY
        return _clamp(float(table.get(priority.value, table.get("medium", 0.5))))

    def effort_factor(self, minutes: Optional[float]) -> float:
        cfg = self._config
        if minutes is None:
            return _clamp(cfg.EFFORT_NEUTRAL)
        for limit, value in cfg.EFFORT_BANDS:
            if minutes <= limit:
                return _clamp(float(value))
        return _clamp(cfg.EFFORT_LONG_TASK)

    def current_time_slot(self, now: datetime) -> TimeSlot:
        cfg = self._config
        hour = now.hour
        if cfg.MORNING_START_HOUR <= hour < cfg.AFTERNOON_START_HOUR:
            return TimeSlot.MORNING
        if cfg.AFTERNOON_START_HOUR <= hour < cfg.EVENING_START_HOUR:
            return TimeSlot.AFTERNOON
        return TimeSlot.EVENING

    def context_factor(self, item_slot: TimeSlot, now: datetime) -> float:
        cfg = self._config
        if item_slot == TimeSlot.FLEXIBLE:
            return _clamp(cfg.CONTEXT_FLEXIBLE)
        distance = abs(SLOT_ORDER[item_slot] - SLOT_ORDER[self.current_time_slot(now)])
        if distance == 0:
            return _clamp(cfg.CONTEXT_EXACT_MATCH)
        if distance == 1:
            return _clamp(cfg.CONTEXT_ADJACENT)
        return _clamp(cfg.CONTEXT_OPPOSITE)

    def collaboration_factor(self, participants: Any) -> float:
        table = {int(k): v for k, v in self._config.COLLABORATION_BY_SIZE.items()}
        try:
            size = len(participants or ())
        except TypeError:
            size = 1
        size = max(1, size)
        largest = max(table)
        if size >= largest:
            return _clamp(float(table[largest]))
        eligible = [k for k in table if k <= size]
        key = max(eligible) if eligible else min(table)
        return _clamp(float(table[key]))

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------
    @staticmethod
    def suggest_time_slot(item: WorkItem) -> TimeSlot:
        """Fixed rule table: keywords, then kind, then priority, else flexible."""
        content = f"{getattr(item, 'title', '') or ''} {getattr(item, 'description', '') or ''}".lower()
        for slot, keywords in SLOT_KEYWORDS:
            if any(keyword in content for keyword in keywords):
                return slot

        kind = getattr(item, "kind", None)
        if kind == WorkItemKind.ROADBLOCK:
            return TimeSlot.MORNING
        if kind == WorkItemKind.QUICK_WIN:
            return TimeSlot.AFTERNOON

        if coerce_priority(getattr(item, "priority", None)) in (Priority.URGENT, Priority.HIGH):
            return TimeSlot.MORNING
        return TimeSlot.FLEXIBLE

    def classify_quadrant(self, factors: PriorityFactors) -> Quadrant:
        urgent = factors.urgency >= self._config.URGENCY_THRESHOLD
        important = factors.importance >= self._config.IMPORTANCE_THRESHOLD
        if urgent and important:
            return Quadrant.DO_FIRST
        if important:
            return Quadrant.SCHEDULE
        if urgent:
            return Quadrant.DELEGATE
        return Quadrant.ELIMINATE

    def explain(self, factors: PriorityFactors) -> str:
        reasons = []
        if factors.urgency > 0.8:
            reasons.append("very urgent because of the deadline")
        elif factors.urgency > 0.6:
            reasons.append("deadline approaching")
        if factors.importance >= self._config.IMPORTANCE_THRESHOLD:
            reasons.append("high impact")
        if factors.effort >= self._config.QUICK_WIN_EFFORT_THRESHOLD:
            reasons.append("quick win possible")
        if factors.collaboration > 0.7:
            reasons.append("team dependency")
        if factors.context >= self._config.CONTEXT_EXACT_MATCH:
            reasons.append("optimal time slot")
        if not reasons:
            return "Standard prioritization"
        return "High priority due to: " + ", ".join(reasons)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def score(self, item: WorkItem, now: Optional[datetime] = None) -> PriorityScore:
        now = _naive_local(now or datetime.now())
        slot = self.suggest_time_slot(item)
        factors = PriorityFactors(
            urgency=self.urgency_factor(coerce_due_date(getattr(item, "due_date", None)), now),
            importance=self.importance_factor(coerce_priority(getattr(item, "priority", None))),
            effort=self.effort_factor(coerce_minutes(getattr(item, "estimated_minutes", None))),
            context=self.context_factor(slot, now),
            collaboration=self.collaboration_factor(getattr(item, "participants", None)),
        )
        weights = self._config.SCORE_WEIGHTS
        total = sum(
            float(weights.get(name, 0.0)) * value
            for name, value in factors.to_dict().items()
        )
        return PriorityScore(
            score=_clamp(total),
            factors=factors,
            time_slot=slot,
            quadrant=self.classify_quadrant(factors),
            reasoning=self.explain(factors),
        )

    def safe_score(self, item: WorkItem, now: Optional[datetime] = None) -> PriorityScore:
        """score() that degrades to neutral defaults instead of failing the pass."""
        try:
            return self.score(item, now)
        except Exception as e:
            logger.warning("Scoring failed for item %s, using defaults: %s", getattr(item, "id", "?"), e)
            cfg = self._config
            factors = PriorityFactors(
                urgency=_clamp(cfg.URGENCY_NO_DUE_DATE),
                importance=self.importance_factor(Priority.MEDIUM),
                effort=_clamp(cfg.EFFORT_NEUTRAL),
                context=_clamp(cfg.CONTEXT_FLEXIBLE),
                collaboration=self.collaboration_factor(None),
            )
            weights = cfg.SCORE_WEIGHTS
            total = sum(float(weights.get(n, 0.0)) * v for n, v in factors.to_dict().items())
            return PriorityScore(
                score=_clamp(total),
                factors=factors,
                time_slot=TimeSlot.FLEXIBLE,
                quadrant=self.classify_quadrant(factors),
                reasoning="Scored with defaults (malformed item)",
            )

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------
    @staticmethod
    def ranking_key(item: WorkItem, score: PriorityScore) -> Tuple:
        """score desc, due date asc (undated last), priority desc, id asc."""
        due = coerce_due_date(getattr(item, "due_date", None))
        priority = coerce_priority(getattr(item, "priority", None))
        return (
            -score.score,
            due is None,
            due or datetime.max,
            -PRIORITY_RANK[priority],
            str(getattr(item, "id", "")),
        )

    def rank(
        self,
        items: Sequence[WorkItem],
        now: Optional[datetime] = None,
    ) -> List[Tuple[WorkItem, PriorityScore]]:
        now = now or datetime.now()
        scored = [(item, self.safe_score(item, now)) for item in items]
        scored.sort(key=lambda pair: self.ranking_key(pair[0], pair[1]))
        return scored
