"""
HIRA — Permission Gate

Pure role/state predicates answering "may this actor do this to this
assessment right now?". Inputs are only the assessment's status, lead
assessor, team and creator plus the actor's id and role name, and nothing
is cached: team membership, role and status may all change between two
calls.

Usage:
    from hira.services.hira_permission import can_transition, check_transition

    if can_transition(assessment, user, "approve"):
        ...
    check_transition(assessment, user, "close")   # raises ForbiddenError
"""

from hira.core.exceptions import ForbiddenError
from hira.models.auth import APPROVER_ROLES, OWNER_ROLES, SUPERADMIN_ROLES
from hira.models.hira import ACTION_COMPLETED

EDITABLE_STATUSES = frozenset({"assigned", "in_progress", "rejected"})
ACTION_MANAGEMENT_STATUSES = frozenset({"approved", "actions_assigned", "closed"})


# ── Relationship helpers ─────────────────────────────────────────────────────


def is_lead(assessment, actor) -> bool:
    return actor is not None and assessment.assessor_id == actor.id


def is_team_member(assessment, actor) -> bool:
    return actor is not None and actor.id in {member.id for member in assessment.team}


def is_creator(assessment, actor) -> bool:
    return actor is not None and assessment.created_by_id == actor.id


def _role(actor) -> str | None:
    return getattr(actor, "role", None)


# ── Actor rules (one per transition family) ─────────────────────────────────


def _owner(assessment, actor) -> bool:
    return _role(actor) in OWNER_ROLES or is_creator(assessment, actor)


def _worksheet_editor(assessment, actor) -> bool:
    return is_lead(assessment, actor) or is_team_member(assessment, actor)


def _approver(assessment, actor) -> bool:
    return is_lead(assessment, actor) or _role(actor) in APPROVER_ROLES


def _action_manager(assessment, actor) -> bool:
    return (
        is_creator(assessment, actor)
        or is_lead(assessment, actor)
        or is_team_member(assessment, actor)
        or _role(actor) in SUPERADMIN_ROLES
    )


def _closer(assessment, actor) -> bool:
    return _owner(assessment, actor) or is_lead(assessment, actor)


def _system(assessment, actor) -> bool:
    # Implicit transitions fire as a consequence of another permitted mutation
    return False


_TRANSITION_ACTORS = {
    "assign": _owner,
    "start": _worksheet_editor,
    "complete": _worksheet_editor,
    "approve": _approver,
    "reject": _approver,
    "assign_actions": _action_manager,
    "complete_actions": _system,
    "close": _closer,
}

# Transitions that are never offered as explicit UI actions
IMPLICIT_TRANSITIONS = frozenset({"start", "complete_actions"})


# ── Predicates ───────────────────────────────────────────────────────────────


def can_transition(assessment, actor, transition_name: str) -> bool:
    """Role check for a transition. Status legality is the state machine's job."""
    rule = _TRANSITION_ACTORS.get(transition_name)
    if rule is None or actor is None:
        return False
    return rule(assessment, actor)


def can_edit_row(assessment, actor) -> bool:
    """Worksheet content may be edited by the lead or team while editable."""
    return assessment.status in EDITABLE_STATUSES and _worksheet_editor(assessment, actor)


def can_manage_actions(assessment, actor) -> bool:
    """Owner / target-date assignment on action items."""
    return assessment.status in ACTION_MANAGEMENT_STATUSES and _action_manager(assessment, actor)


def can_complete_action(assessment, actor, row) -> bool:
    """Only the row's own action owner, and only until the action is completed.

    Being lead assessor or admin does not grant this.
    """
    if actor is None or row is None:
        return False
    if row.action_owner_id is None or row.action_owner_id != actor.id:
        return False
    return row.action_status != ACTION_COMPLETED


# ── Raising variants ─────────────────────────────────────────────────────────


def check_transition(assessment, actor, transition_name: str) -> None:
    if not can_transition(assessment, actor, transition_name):
        raise ForbiddenError(getattr(actor, "id", None), transition_name)


def check_edit_row(assessment, actor) -> None:
    if not can_edit_row(assessment, actor):
        raise ForbiddenError(
            getattr(actor, "id", None), "edit_worksheet",
            f"worksheet is editable only by the lead assessor or team while "
            f"{', '.join(sorted(EDITABLE_STATUSES))} (status={assessment.status})",
        )


def check_manage_actions(assessment, actor) -> None:
    if not can_manage_actions(assessment, actor):
        raise ForbiddenError(getattr(actor, "id", None), "manage_actions")


def check_complete_action(assessment, actor, row) -> None:
    if not can_complete_action(assessment, actor, row):
        raise ForbiddenError(
            getattr(actor, "id", None), "complete_action",
            "only the assigned action owner may update an open action",
        )


# ── Assessment details ───────────────────────────────────────────────────────

DETAIL_EDITABLE_STATUSES = frozenset({"draft", "assigned"})


def can_update_details(assessment, actor) -> bool:
    """Title, process, dates and lead may change until work has started."""
    return assessment.status in DETAIL_EDITABLE_STATUSES and (
        _owner(assessment, actor) or is_lead(assessment, actor)
    )


def check_update_details(assessment, actor) -> None:
    if not can_update_details(assessment, actor):
        raise ForbiddenError(getattr(actor, "id", None), "update")
