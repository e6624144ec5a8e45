"""
HIRA — Assessment lifecycle service

Manages assessment status transitions with:
  - Transition validation against HIRA_TRANSITIONS
  - Role checks through the permission gate
  - Pre-transition data checks (team, due date, worksheet completeness,
    review comments and rating)
  - Lifecycle timestamps, written once by the transition reaching a status
  - Audit log entry per transition

    draft ─assign→ assigned ─start*→ in_progress ─complete→ completed
    completed ─approve→ approved ─assign_actions→ actions_assigned
    completed ─reject→ rejected ─start*→ in_progress
    actions_assigned ─complete_actions*→ actions_completed ─close→ closed

    * implicit: ``start`` fires on the first worksheet save in assigned or
      rejected; ``complete_actions`` fires once the last open action item
      is completed.

Every operation runs inside one store transaction: it is applied completely
or rolled back.

Usage:
    from hira.services import hira_lifecycle

    result = hira_lifecycle.review(
        company_id=1, assessment_id=42, actor=user,
        action="approve", comments="Controls adequate", rating=4,
    )
"""

import logging
from datetime import date, datetime, timezone

from hira.core.exceptions import (
    EmptySelectionError,
    IncompleteDataError,
    InvalidInputError,
    InvalidTransitionError,
)
from hira.models.hira import (
    ACTION_COMPLETED,
    ASSESSMENT_PRIORITIES,
    REQUIRED_FOR_COMPLETION,
)
from hira.services import hira_store, worksheet
from hira.services.action_items import bulk_assign, is_action_row
from hira.services.hira_permission import (
    IMPLICIT_TRANSITIONS,
    can_transition,
    check_complete_action,
    check_edit_row,
    check_manage_actions,
    check_transition,
)
from hira.services.hira_summary import all_actions_completed, summarize
from hira.utils.helpers import is_blank, parse_date_input, parse_rating

logger = logging.getLogger(__name__)


HIRA_TRANSITIONS = {
    "assign": {"from": ["draft"], "to": "assigned", "timestamp": "assigned_at"},
    "start": {"from": ["assigned", "rejected"], "to": "in_progress", "timestamp": "started_at"},
    "complete": {"from": ["in_progress"], "to": "completed", "timestamp": "completed_at"},
    "approve": {"from": ["completed"], "to": "approved", "timestamp": "approved_at"},
    "reject": {"from": ["completed"], "to": "rejected", "timestamp": "rejected_at"},
    "assign_actions": {"from": ["approved", "actions_assigned"], "to": "actions_assigned",
                       "timestamp": "actions_assigned_at"},
    "complete_actions": {"from": ["actions_assigned"], "to": "actions_completed",
                         "timestamp": "actions_completed_at"},
    "close": {"from": ["actions_completed"], "to": "closed", "timestamp": "closed_at"},
}

# Re-stamped on every occurrence; all other lifecycle timestamps are write-once
_RESTAMPED = frozenset({"rejected_at"})

# Action owners may only touch these fields of their row
ACTION_OWNER_FIELDS = ("action_status", "remarks", "completion_evidence", "actual_completion_date")

# Row edits by action owners are accepted only while actions are in flight
ACTION_UPDATE_STATUSES = frozenset({"actions_assigned"})


def _utcnow():
    return datetime.now(timezone.utc)


def validate_transition(assessment, action: str) -> dict:
    """Validate whether an action is valid for the assessment's current status."""
    rule = HIRA_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": assessment.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if assessment.status not in rule["from"]:
        return {"valid": False, "from": assessment.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{assessment.status}'"}

    return {"valid": True, "from": assessment.status, "to": rule["to"], "reason": None}


def _require_valid(assessment, action: str) -> dict:
    validation = validate_transition(assessment, action)
    if not validation["valid"]:
        raise InvalidTransitionError(assessment.status, action, validation["reason"])
    return validation


def get_available_transitions(assessment) -> list[str]:
    """Transitions legal from the current status, ignoring who asks."""
    return [action for action, rule in HIRA_TRANSITIONS.items()
            if assessment.status in rule["from"]]


def get_allowed_transitions(assessment, actor) -> list[str]:
    """Explicit transitions this actor may trigger right now."""
    return [
        action for action in get_available_transitions(assessment)
        if action not in IMPLICIT_TRANSITIONS and can_transition(assessment, actor, action)
    ]


def _transition(assessment, action: str, actor, payload: dict | None = None, *,
                implicit: bool = False) -> str:
    """Validate, gate and persist one transition. Returns the previous status.

    Implicit transitions skip the actor check: the mutation that triggers
    them has already been gated.
    """
    validation = _require_valid(assessment, action)
    if not implicit:
        check_transition(assessment, actor, action)

    rule = HIRA_TRANSITIONS[action]
    changes = dict(payload or {})
    changes["status"] = validation["to"]
    stamp = rule["timestamp"]
    if stamp in _RESTAMPED or getattr(assessment, stamp) is None:
        changes[stamp] = _utcnow()

    hira_store.persist_transition(
        assessment.company_id, assessment.id, action, changes,
        actor_id=getattr(actor, "id", None),
    )
    return validation["from"]


def _result(assessment, action: str, previous_status: str, **extra) -> dict:
    return {
        "assessment_id": assessment.id,
        "assessment_number": assessment.assessment_number,
        "previous_status": previous_status,
        "new_status": assessment.status,
        "action": action,
        "summary": summarize(assessment),
        **extra,
    }


def incomplete_rows(rows) -> dict[int, list[str]]:
    """Map row index → required fields left blank."""
    missing = {}
    for i, row in enumerate(rows):
        blank = [field for field in REQUIRED_FOR_COMPLETION if is_blank(getattr(row, field))]
        if blank:
            missing[i] = blank
    return missing


# ── Assignment ───────────────────────────────────────────────────────────────


def assign(company_id: int, assessment_id: int, actor, *, team_ids, due_date,
           priority: str | None = None, comments: str | None = None) -> dict:
    """draft → assigned. Requires a non-empty team and a due date."""
    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        _require_valid(assessment, "assign")
        check_transition(assessment, actor, "assign")

        if not team_ids:
            raise InvalidInputError("At least one team member is required",
                                    details={"field": "team_ids"})
        review_date = parse_date_input(due_date, "due_date")
        if review_date is None:
            raise InvalidInputError("due_date is required", details={"field": "due_date"})
        if priority is not None and priority not in ASSESSMENT_PRIORITIES:
            raise InvalidInputError(f"priority must be one of {ASSESSMENT_PRIORITIES}",
                                    details={"field": "priority"})
        team = hira_store.fetch_company_users(company_id, team_ids, "team_ids")

        payload = {"team": team, "review_date": review_date, "assignment_comments": comments}
        if priority is not None:
            payload["priority"] = priority
        previous = _transition(assessment, "assign", actor, payload)

    return _result(assessment, "assign", previous)


# ── Worksheet ────────────────────────────────────────────────────────────────


def _save_rows(assessment, actor, rows: list) -> str | None:
    """Persist a worksheet and fire the implicit start. Returns the pre-start status."""
    check_edit_row(assessment, actor)
    hira_store.persist_worksheet(assessment.company_id, assessment.id, rows)

    previous = None
    if assessment.status in HIRA_TRANSITIONS["start"]["from"]:
        previous = _transition(assessment, "start", actor, implicit=True)
    else:
        hira_store.record_audit(assessment, "save_worksheet", actor.id,
                                {"row_count": len(assessment.worksheet_rows)})
    return previous


def save_worksheet(company_id: int, assessment_id: int, actor, rows: list) -> dict:
    """Replace the worksheet; the first save in assigned/rejected starts work."""
    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        previous = _save_rows(assessment, actor, rows)

    action = "start" if previous else "save_worksheet"
    return _result(assessment, action, previous or assessment.status)


def complete(company_id: int, assessment_id: int, actor, *, rows: list | None = None) -> dict:
    """in_progress → completed.

    When ``rows`` are supplied they are saved first, so a worksheet submitted
    straight from assigned or rejected starts and completes in one call.
    """
    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        previous = assessment.status
        if rows is not None:
            # Only the implicit start may move the status before completing
            if assessment.status not in HIRA_TRANSITIONS["start"]["from"]:
                _require_valid(assessment, "complete")
            _save_rows(assessment, actor, rows)

        _require_valid(assessment, "complete")
        check_transition(assessment, actor, "complete")

        if not assessment.worksheet_rows:
            raise IncompleteDataError([])
        missing = incomplete_rows(assessment.worksheet_rows)
        if missing:
            raise IncompleteDataError(sorted(missing), missing)

        _transition(assessment, "complete", actor)

    return _result(assessment, "complete", previous)


# ── Review ───────────────────────────────────────────────────────────────────


def review(company_id: int, assessment_id: int, actor, *, action: str,
           comments: str | None, rating=None) -> dict:
    """completed → approved | rejected.

    Comments are always required; a 1–5 rating is required to approve.
    Rejection returns the worksheet to its editors.
    """
    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        if action not in ("approve", "reject"):
            raise InvalidTransitionError(assessment.status, str(action),
                                         "review action must be 'approve' or 'reject'")
        _require_valid(assessment, action)
        check_transition(assessment, actor, action)

        if is_blank(comments):
            raise InvalidInputError("Review comments are required", details={"field": "comments"})

        if action == "approve":
            payload = {
                "approved_by_id": actor.id,
                "approval_comments": comments,
                "approval_rating": parse_rating(rating, "rating", required=True),
                "rejection_reason": None,
            }
        else:
            payload = {
                "approval_comments": comments,
                "rejection_reason": comments,
            }
        previous = _transition(assessment, action, actor, payload)

    return _result(assessment, action, previous)


def approve(company_id: int, assessment_id: int, actor, *, comments, rating) -> dict:
    return review(company_id, assessment_id, actor, action="approve",
                  comments=comments, rating=rating)


def reject(company_id: int, assessment_id: int, actor, *, comments) -> dict:
    return review(company_id, assessment_id, actor, action="reject", comments=comments)


# ── Action items ─────────────────────────────────────────────────────────────


def _action_row(assessment, index):
    rows = assessment.worksheet_rows
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(rows):
        raise InvalidInputError(f"Row index {index} out of range",
                                details={"row_index": index, "row_count": len(rows)})
    row = rows[index]
    if not is_action_row(row):
        raise InvalidInputError(f"Row {index} has no recommendation and is not an action item",
                                details={"row_index": index})
    return row


def _check_action_management(assessment, actor) -> None:
    """Gate for owner/target assignment.

    A closed assessment still accepts reassignment without changing status.
    """
    if assessment.status != "closed":
        _require_valid(assessment, "assign_actions")
    check_manage_actions(assessment, actor)


def _finish_action_management(assessment, actor, diff: dict) -> str:
    if assessment.status == "closed":
        hira_store.record_audit(assessment, "assign_actions", actor.id, diff)
        return assessment.status
    return _transition(assessment, "assign_actions", actor)


def assign_actions(company_id: int, assessment_id: int, actor, assignments: list) -> dict:
    """approved → actions_assigned; set owner and target date per action row.

    ``assignments`` is a list of ``{"index", "action_owner_id", "target_date"}``
    objects, with optional ``remarks``.
    """
    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        _check_action_management(assessment, actor)

        if not assignments:
            raise EmptySelectionError("assign_actions")
        if not isinstance(assignments, list):
            raise InvalidInputError("assignments must be a list")

        cleaned = []
        for entry in assignments:
            if not isinstance(entry, dict):
                raise InvalidInputError("Each assignment must be an object")
            index = entry.get("index")
            _action_row(assessment, index)
            data = {field: entry[field]
                    for field in ("action_owner_id", "target_date", "remarks") if field in entry}
            data = worksheet.clean_row_data(data)
            if data.get("action_owner_id") is not None:
                hira_store.fetch_company_users(company_id, [data["action_owner_id"]],
                                               "action_owner_id")
            cleaned.append((index, data))

        for index, data in cleaned:
            hira_store.persist_action_update(company_id, assessment_id, index, data)
        previous = _finish_action_management(
            assessment, actor, {"assigned_rows": [index for index, _ in cleaned]})

    return _result(assessment, "assign_actions", previous)


def bulk_assign_actions(company_id: int, assessment_id: int, actor, *, indices,
                        owner_id, target_date) -> dict:
    """Give several action rows the same owner and target date."""
    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        _check_action_management(assessment, actor)

        owner_id = worksheet.coerce_field("action_owner_id", owner_id)
        if owner_id is not None:
            hira_store.fetch_company_users(company_id, [owner_id], "owner_id")
        target = parse_date_input(target_date, "target_date")

        updated = bulk_assign(assessment.worksheet_rows, indices, owner_id, target)
        previous = _finish_action_management(
            assessment, actor,
            {"assigned_rows": sorted(row.position for row in updated), "owner_id": owner_id},
        )

    return _result(assessment, "assign_actions", previous, updated_rows=len(updated))


def update_action(company_id: int, assessment_id: int, actor, index: int, data: dict) -> dict:
    """Action owner reports progress on one action item.

    Completing the last open action fires the implicit complete_actions
    transition in the same unit of work.
    """
    if not isinstance(data, dict):
        raise InvalidInputError("Action update must be an object")
    unknown = set(data) - set(ACTION_OWNER_FIELDS)
    if unknown:
        raise InvalidInputError(f"Fields not editable by the action owner: {sorted(unknown)}",
                                details={"fields": sorted(unknown)})

    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        if assessment.status not in ACTION_UPDATE_STATUSES:
            raise InvalidTransitionError(assessment.status, "update_action",
                                         "action items are not in progress")
        row = _action_row(assessment, index)
        check_complete_action(assessment, actor, row)

        cleaned = worksheet.clean_row_data(data, ACTION_OWNER_FIELDS)
        if (cleaned.get("action_status", row.action_status) == ACTION_COMPLETED
                and cleaned.get("actual_completion_date", row.actual_completion_date) is None):
            cleaned["actual_completion_date"] = date.today()

        hira_store.persist_action_update(company_id, assessment_id, index, cleaned)
        hira_store.record_audit(assessment, "update_action", actor.id,
                                {"row_index": index, **cleaned})

        previous = assessment.status
        action = "update_action"
        if all_actions_completed(summarize(assessment)):
            previous = _transition(assessment, "complete_actions", actor, implicit=True)
            action = "complete_actions"

    return _result(assessment, action, previous, row_index=index)


def complete_action(company_id: int, assessment_id: int, actor, index: int,
                    data: dict | None = None) -> dict:
    """Mark one action item Completed, with optional remarks and evidence."""
    payload = dict(data or {})
    payload["action_status"] = ACTION_COMPLETED
    return update_action(company_id, assessment_id, actor, index, payload)


# ── Closure ──────────────────────────────────────────────────────────────────


def close(company_id: int, assessment_id: int, actor, *, comments: str | None,
          performance_rating=None, lessons_learned: str | None = None) -> dict:
    """actions_completed → closed.

    Open action items never block closure; they are reported back as
    ``pending_actions`` so the caller can surface a warning.
    """
    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        _require_valid(assessment, "close")
        check_transition(assessment, actor, "close")

        if is_blank(comments):
            raise InvalidInputError("Closure comments are required",
                                    details={"field": "comments"})
        payload = {
            "closed_by_id": actor.id,
            "closure_comments": comments,
            "performance_rating": parse_rating(performance_rating, "performance_rating"),
            "lessons_learned": lessons_learned,
        }
        previous = _transition(assessment, "close", actor, payload)

    summary = summarize(assessment)
    pending = summary["open_actions"] + summary["in_progress_actions"]
    warnings = []
    if pending:
        warnings.append(f"{pending} action item(s) are still pending at closure")
        logger.warning("Assessment %s closed with %d pending actions",
                       assessment.assessment_number, pending,
                       extra={"company_id": company_id, "assessment_id": assessment_id})
    return _result(assessment, "close", previous, pending_actions=pending, warnings=warnings)
