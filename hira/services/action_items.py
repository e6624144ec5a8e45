"""
HIRA — Action Item Deriver

An action item is a view over a worksheet row whose recommendation is not
blank. Nothing here is stored: every call re-derives the items from the
rows, so priority, effort and overdue state always reflect the current
row content.

Priority (category is consulted before score):
    Very High category or score ≥ 20   → Critical
    High category or score ≥ 15        → High
    Moderate category or score ≥ 9     → Medium
    otherwise                          → Low

Estimated effort (days) = complexity × 2, where complexity is 3 for a
recommendation longer than 200 characters, 2 above 100, else 1.

Usage:
    from hira.services.action_items import derive_actions

    items = derive_actions(assessment.worksheet_rows)
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date

from hira.core.exceptions import EmptySelectionError, InvalidInputError
from hira.models.hira import ACTION_COMPLETED
from hira.services.risk_calculator import HIGH, MODERATE, VERY_HIGH, category_for

logger = logging.getLogger(__name__)

PRIORITY_CRITICAL = "Critical"
PRIORITY_HIGH = "High"
PRIORITY_MEDIUM = "Medium"
PRIORITY_LOW = "Low"

# Highest → lowest
PRIORITIES = (PRIORITY_CRITICAL, PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW)

EFFORT_DAYS_PER_UNIT = 2


@dataclass(frozen=True)
class ActionItem:
    index: int
    row_id: int | None
    task_name: str | None
    hazard_concern: str | None
    recommendation: str
    risk_score: int
    risk_category: str
    priority: str
    estimated_effort: int
    action_owner_id: int | None
    target_date: date | None
    action_status: str
    remarks: str | None
    completion_evidence: str | None
    actual_completion_date: date | None
    is_overdue: bool
    days_remaining: int | None

    def to_dict(self) -> dict:
        d = asdict(self)
        for key in ("target_date", "actual_completion_date"):
            d[key] = d[key].isoformat() if d[key] else None
        return d


def is_action_row(row) -> bool:
    """True when the row carries a non-blank recommendation."""
    recommendation = getattr(row, "recommendation", None)
    return bool(recommendation and recommendation.strip())


def priority_for(category: str, risk_score: int) -> str:
    if category == VERY_HIGH or risk_score >= 20:
        return PRIORITY_CRITICAL
    if category == HIGH or risk_score >= 15:
        return PRIORITY_HIGH
    if category == MODERATE or risk_score >= 9:
        return PRIORITY_MEDIUM
    return PRIORITY_LOW


def estimated_effort(recommendation: str | None) -> int:
    length = len(recommendation or "")
    if length > 200:
        complexity = 3
    elif length > 100:
        complexity = 2
    else:
        complexity = 1
    return complexity * EFFORT_DAYS_PER_UNIT


def is_overdue(target_date: date | None, action_status: str | None, today: date | None = None) -> bool:
    if target_date is None or action_status == ACTION_COMPLETED:
        return False
    today = today or date.today()
    return target_date < today


def days_remaining(target_date: date | None, action_status: str | None,
                   today: date | None = None) -> int | None:
    """Signed whole days until the target date; negative once overdue."""
    if target_date is None or action_status == ACTION_COMPLETED:
        return None
    today = today or date.today()
    return (target_date - today).days


def derive_action(index: int, row, today: date | None = None) -> ActionItem:
    score = row.risk_score
    category = category_for(score)
    return ActionItem(
        index=index,
        row_id=getattr(row, "id", None),
        task_name=row.task_name,
        hazard_concern=row.hazard_concern,
        recommendation=row.recommendation.strip(),
        risk_score=score,
        risk_category=category,
        priority=priority_for(category, score),
        estimated_effort=estimated_effort(row.recommendation.strip()),
        action_owner_id=row.action_owner_id,
        target_date=row.target_date,
        action_status=row.action_status,
        remarks=row.remarks,
        completion_evidence=row.completion_evidence,
        actual_completion_date=row.actual_completion_date,
        is_overdue=is_overdue(row.target_date, row.action_status, today),
        days_remaining=days_remaining(row.target_date, row.action_status, today),
    )


def derive_actions(rows, today: date | None = None) -> list[ActionItem]:
    """One ActionItem per recommendation-bearing row, in worksheet order.

    ``index`` on each item is the row's position in the full worksheet,
    not its position among action items, so updates can address the row.
    """
    today = today or date.today()
    return [derive_action(i, row, today) for i, row in enumerate(rows) if is_action_row(row)]


def bulk_assign(rows, indices, owner_id: int | None, target_date: date | None) -> list:
    """Assign one owner and target date to several action rows at once.

    Every index is validated before any row is touched, so the batch is
    applied completely or not at all.

    Raises:
        EmptySelectionError: ``indices`` is empty.
        InvalidInputError: ``indices`` is not a list of integers, or an index
            is out of range or not an action item.
    """
    if indices is None:
        raise EmptySelectionError("bulk_assign")
    if not isinstance(indices, (list, tuple)):
        raise InvalidInputError("indices must be a list of row indices",
                                details={"indices": indices})
    not_ints = [i for i in indices if isinstance(i, bool) or not isinstance(i, int)]
    if not_ints:
        raise InvalidInputError("Row indices must be integers",
                                details={"row_indices": not_ints})

    selected = sorted(set(indices))
    if not selected:
        raise EmptySelectionError("bulk_assign")

    rows = list(rows)
    bad = [i for i in selected if not 0 <= i < len(rows) or not is_action_row(rows[i])]
    if bad:
        raise InvalidInputError(
            "Selection contains rows that are not action items",
            details={"row_indices": bad},
        )

    targets = [rows[i] for i in selected]
    for row in targets:
        row.action_owner_id = owner_id
        row.target_date = target_date

    logger.debug("Bulk-assigned %d action rows to owner=%s target=%s",
                 len(targets), owner_id, target_date)
    return targets
