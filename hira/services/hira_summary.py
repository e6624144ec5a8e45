"""
HIRA — Summary Aggregator

Risk distribution, significance and action-item counts for one assessment,
plus the company dashboard that rolls those up across assessments.

The per-assessment summary is always recomputed from the full row set.
It is never patched incrementally, so a partial update can not leave it
out of step with the worksheet.
"""

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import or_

from hira.models import db
from hira.models.auth import SUPERADMIN_ROLES
from hira.models.hira import (
    ACTION_COMPLETED,
    ACTION_IN_PROGRESS,
    ACTION_OPEN,
    HIRA_STATUSES,
    Assessment,
    assessment_team,
)
from hira.services.action_items import derive_actions
from hira.services.risk_calculator import (
    HIGH,
    LOW,
    MODERATE,
    RISK_CATEGORIES,
    SIGNIFICANT,
    VERY_HIGH,
    VERY_LOW,
)

logger = logging.getLogger(__name__)

DASHBOARD_PERIODS = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "quarter": timedelta(days=91),
    "year": timedelta(days=365),
}


def completion_rate(completed: int, total: int) -> int:
    """Percentage of completed actions, rounded half up; 100 when there are none."""
    if total == 0:
        return 100
    return (completed * 200 + total) // (total * 2)


def summarize(source, today: date | None = None) -> dict:
    """Summarise an assessment (or a bare row sequence).

    Returns:
        {total_tasks, risk_category_counts, high_risk_count, moderate_risk_count,
         low_risk_count, significant_risks, total_actions, open_actions,
         in_progress_actions, completed_actions, overdue_actions, completion_rate}
    """
    rows = list(getattr(source, "worksheet_rows", source))
    counts = {category: 0 for category in RISK_CATEGORIES}
    for row in rows:
        counts[row.risk_category] += 1

    actions = derive_actions(rows, today)
    completed = sum(1 for a in actions if a.action_status == ACTION_COMPLETED)
    in_progress = sum(1 for a in actions if a.action_status == ACTION_IN_PROGRESS)
    open_ = sum(1 for a in actions if a.action_status == ACTION_OPEN)

    return {
        "total_tasks": len(rows),
        "risk_category_counts": counts,
        "high_risk_count": counts[HIGH] + counts[VERY_HIGH],
        "moderate_risk_count": counts[MODERATE],
        "low_risk_count": counts[LOW] + counts[VERY_LOW],
        "significant_risks": sum(1 for row in rows if row.significance == SIGNIFICANT),
        "total_actions": len(actions),
        "open_actions": open_,
        "in_progress_actions": in_progress,
        "completed_actions": completed,
        "overdue_actions": sum(1 for a in actions if a.is_overdue),
        "completion_rate": completion_rate(completed, len(actions)),
    }


def all_actions_completed(summary: dict) -> bool:
    """True once there is at least one action and none is still open."""
    return (
        summary["total_actions"] > 0
        and summary["open_actions"] == 0
        and summary["in_progress_actions"] == 0
    )


# ── Company dashboard ────────────────────────────────────────────────────────


def scoped_assessment_query(company_id: int, actor):
    """Assessments visible to ``actor`` within a company.

    superadmin → the whole company; admin → their plant;
    everyone else → assessments they created, lead, or are on the team of.
    """
    query = Assessment.query.filter(Assessment.company_id == company_id)
    if actor.role in SUPERADMIN_ROLES:
        return query
    if actor.role == "admin" and actor.plant_id is not None:
        return query.filter(Assessment.plant_id == actor.plant_id)
    team_subq = (
        db.session.query(assessment_team.c.assessment_id)
        .filter(assessment_team.c.user_id == actor.id)
    )
    return query.filter(or_(
        Assessment.created_by_id == actor.id,
        Assessment.assessor_id == actor.id,
        Assessment.id.in_(team_subq),
    ))


def _naive(dt: datetime) -> datetime:
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


def company_dashboard(company_id: int, actor, *, period: str = "month",
                      plant_id: int | None = None, today: date | None = None) -> dict:
    """Roll up status, risk and action statistics for the actor's visible assessments."""
    window = DASHBOARD_PERIODS.get(period, DASHBOARD_PERIODS["month"])
    since = datetime.now(timezone.utc) - window

    query = scoped_assessment_query(company_id, actor).filter(Assessment.created_at >= since)
    if plant_id is not None:
        query = query.filter(Assessment.plant_id == plant_id)
    assessments = query.order_by(Assessment.created_at.desc()).all()

    status_distribution = {status: 0 for status in HIRA_STATUSES}
    risk_distribution = {category: 0 for category in RISK_CATEGORIES}
    action_totals = {"total_actions": 0, "open_actions": 0, "in_progress_actions": 0,
                     "completed_actions": 0, "overdue_actions": 0}
    significant = 0
    closure_days = []

    for assessment in assessments:
        status_distribution[assessment.status] = status_distribution.get(assessment.status, 0) + 1
        summary = summarize(assessment, today)
        for category, count in summary["risk_category_counts"].items():
            risk_distribution[category] += count
        for key in action_totals:
            action_totals[key] += summary[key]
        significant += summary["significant_risks"]
        if assessment.closed_at and assessment.created_at:
            delta = _naive(assessment.closed_at) - _naive(assessment.created_at)
            closure_days.append(delta.total_seconds() / 86400)

    avg_closure = round(sum(closure_days) / len(closure_days), 1) if closure_days else 0

    return {
        "period": period if period in DASHBOARD_PERIODS else "month",
        "total_assessments": len(assessments),
        "status_distribution": status_distribution,
        "risk_distribution": risk_distribution,
        "high_risk_items": risk_distribution[HIGH] + risk_distribution[VERY_HIGH],
        "significant_risks": significant,
        "actions": {
            **action_totals,
            "completion_rate": completion_rate(action_totals["completed_actions"],
                                               action_totals["total_actions"]),
        },
        "avg_closure_days": avg_closure,
        "recent_assessments": [a.to_dict(include_rows=False) for a in assessments[:5]],
    }
