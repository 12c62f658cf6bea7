"""
Root-cause catalogue for roadblocks.

Each category owns a fixed factor set; a rescue's factor (when given) must
belong to the chosen category. "unclear" is the default for escalations that
have not been analysed yet and has no factors.
"""
from typing import Dict, Optional, Tuple

from core.exceptions import ValidationError

ROOT_CAUSE_FACTORS: Dict[str, Tuple[str, ...]] = {
    "process": (
        "unclear_workflow",
        "missing_standards",
        "inefficient_process",
        "approval_delay",
    ),
    "resources": (
        "budget_shortage",
        "staff_shortage",
        "material_unavailable",
        "tool_licenses",
    ),
    "communication": (
        "miscommunication",
        "unclear_requirements",
        "feedback_delay",
        "stakeholder_alignment",
    ),
    "external": (
        "supplier_delay",
        "client_feedback",
        "third_party_dependency",
        "external_approval",
    ),
    "technical": (
        "software_bugs",
        "hardware_problems",
        "integration_issues",
        "performance_problems",
    ),
    "planning": (
        "unrealistic_deadline",
        "resource_planning",
        "priority_conflict",
        "scope_creep",
    ),
    "skills": (
        "training_needed",
        "expertise_gap",
        "new_technology",
        "knowledge_transfer",
    ),
    "unclear": (),
}

ROOT_CAUSE_CATEGORIES = tuple(ROOT_CAUSE_FACTORS)


def validate_root_cause(category: Optional[str], factor: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """Return the normalized (category, factor) pair or raise ValidationError."""
    normalized = str(category or "").strip().lower()
    if normalized not in ROOT_CAUSE_FACTORS:
        raise ValidationError(
            f"Unknown root cause category: {category!r}",
            field="root_cause_category",
            value=category,
        )

    factor_value = str(factor or "").strip().lower() or None
    if factor_value is not None and factor_value not in ROOT_CAUSE_FACTORS[normalized]:
        raise ValidationError(
            f"Factor {factor!r} does not belong to category {normalized!r}",
            field="root_cause_factor",
            value=factor,
        )
    return normalized, factor_value
