"""
HIRA — Persistence boundary

All reads and writes of assessments go through here. Every lookup is scoped
by company: an assessment from another company is reported exactly like a
missing one.

The persist_* functions only flush. The surrounding ``transaction()`` block
commits once at the end, so a lifecycle operation that touches the
worksheet and the status (worksheet save + implicit start, action update +
implicit completion) is stored atomically or not at all.

Usage:
    from hira.services import hira_store

    with hira_store.transaction():
        hira_store.persist_worksheet(company_id, assessment_id, rows)
        hira_store.persist_transition(company_id, assessment_id, "start",
                                      {"status": "in_progress"}, actor_id=7)
"""

import logging
from contextlib import contextmanager

from sqlalchemy import select

from hira.core.exceptions import InvalidInputError, NotFoundError
from hira.models import db
from hira.models.audit import write_audit
from hira.models.auth import User
from hira.models.hira import ROW_ACTION_FIELDS, Assessment
from hira.services import worksheet

logger = logging.getLogger(__name__)

# Assessment attributes a transition may set
TRANSITION_FIELDS = frozenset({
    "status",
    "review_date",
    "priority",
    "team",
    "assignment_comments",
    "assigned_at",
    "started_at",
    "completed_at",
    "approved_at",
    "rejected_at",
    "actions_assigned_at",
    "actions_completed_at",
    "closed_at",
    "approved_by_id",
    "approval_comments",
    "approval_rating",
    "rejection_reason",
    "closed_by_id",
    "closure_comments",
    "lessons_learned",
    "performance_rating",
})


@contextmanager
def transaction():
    """Commit on success; roll back and re-raise on any error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ── Reads ────────────────────────────────────────────────────────────────────


def fetch_assessment(company_id: int, assessment_id: int) -> Assessment:
    """Load one assessment within a company.

    Raises:
        NotFoundError: missing, or owned by another company.
    """
    stmt = select(Assessment).where(
        Assessment.id == assessment_id,
        Assessment.company_id == company_id,
    )
    assessment = db.session.execute(stmt).scalar_one_or_none()
    if assessment is None:
        logger.debug("Assessment id=%s not found in company=%s", assessment_id, company_id)
        raise NotFoundError(resource="Assessment", resource_id=assessment_id,
                            company_id=company_id)
    return assessment


def fetch_user(company_id: int, user_id) -> User:
    stmt = select(User).where(User.id == user_id, User.company_id == company_id)
    user = db.session.execute(stmt).scalar_one_or_none()
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id, company_id=company_id)
    return user


def fetch_company_users(company_id: int, user_ids, field: str) -> list[User]:
    """Resolve a list of user ids within a company, preserving order.

    Raises:
        InvalidInputError: an id is malformed or not a user of this company.
    """
    try:
        ids = [int(uid) for uid in user_ids]
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{field} must be a list of user ids",
                                details={"field": field}) from exc

    found = {
        user.id: user
        for user in db.session.execute(
            select(User).where(User.company_id == company_id, User.id.in_(ids))
        ).scalars()
    }
    unknown = [uid for uid in ids if uid not in found]
    if unknown:
        raise InvalidInputError(f"{field} contains unknown users",
                                details={"field": field, "user_ids": unknown})
    return [found[uid] for uid in dict.fromkeys(ids)]


# ── Writes ───────────────────────────────────────────────────────────────────


def record_audit(assessment: Assessment, action: str, actor_id: int | None,
                 diff: dict | None = None) -> None:
    """Append an audit entry; a failure here never blocks the main flow.

    The entry is written under a SAVEPOINT, so a database error on the audit
    row rolls back only that row and the surrounding transaction can commit.
    """
    # Main-flow changes must fail loudly, not as an audit failure
    db.session.flush()
    try:
        with db.session.begin_nested():
            write_audit(
                entity_type="assessment",
                entity_id=assessment.id,
                action=f"hira.{action}",
                company_id=assessment.company_id,
                actor_user_id=actor_id,
                diff=diff,
            )
    except Exception:
        logger.warning("Audit log failed for hira.%s; main flow unaffected", action,
                       exc_info=True)


def persist_worksheet(company_id: int, assessment_id: int, rows_data: list) -> Assessment:
    """Replace the worksheet rows of an assessment (flush only)."""
    assessment = fetch_assessment(company_id, assessment_id)
    worksheet.replace_rows(assessment, rows_data)
    db.session.flush()
    return assessment


def persist_transition(company_id: int, assessment_id: int, transition_name: str,
                       payload: dict, *, actor_id: int | None = None) -> Assessment:
    """Apply a transition's field changes and audit them (flush only).

    ``payload`` maps assessment attributes to their new values.
    """
    unknown = set(payload) - TRANSITION_FIELDS
    if unknown:
        raise InvalidInputError(f"Fields not settable by a transition: {sorted(unknown)}",
                                details={"fields": sorted(unknown)})

    assessment = fetch_assessment(company_id, assessment_id)
    previous_status = assessment.status
    for field, value in payload.items():
        setattr(assessment, field, value)
    db.session.flush()

    diff = {"status": {"old": previous_status, "new": assessment.status}}
    for field, value in payload.items():
        if field == "team":
            diff["team"] = [member.id for member in value]
        elif field != "status":
            diff[field] = value
    record_audit(assessment, transition_name, actor_id, diff)
    logger.info(
        "HIRA transition %s: %s → %s",
        transition_name, previous_status, assessment.status,
        extra={"company_id": company_id, "assessment_id": assessment_id,
               "actor_id": actor_id, "action": transition_name},
    )
    return assessment


def persist_action_update(company_id: int, assessment_id: int, action_index: int,
                          data: dict) -> Assessment:
    """Write action-tracking fields of the row at ``action_index`` (flush only)."""
    assessment = fetch_assessment(company_id, assessment_id)
    rows = assessment.worksheet_rows
    if not 0 <= action_index < len(rows):
        raise InvalidInputError(f"Row index {action_index} out of range",
                                details={"row_index": action_index, "row_count": len(rows)})

    unknown = set(data) - set(ROW_ACTION_FIELDS)
    if unknown:
        raise InvalidInputError(f"Only action fields may be updated: {sorted(unknown)}",
                                details={"fields": sorted(unknown)})

    worksheet.apply_action_fields(rows[action_index], data)
    db.session.flush()
    return assessment
