"""Service layer for the HIRA blueprint.

Read models the UI needs (detail, list, allowed transitions, summary, action
items), in-memory row editing, and assessment create/update. State changes
go through hira_lifecycle; this module only adds the query and CRUD side.
"""

import logging
from datetime import date

from sqlalchemy import or_

from hira.core.exceptions import InvalidInputError, InvalidTransitionError
from hira.models import db
from hira.models.audit import get_history
from hira.models.hira import HIRA_STATUSES, Assessment
from hira.services import hira_lifecycle, hira_store, worksheet
from hira.services.action_items import derive_actions
from hira.services.code_generator import generate_assessment_number
from hira.services.hira_permission import (
    can_edit_row,
    can_manage_actions,
    can_update_details,
    check_update_details,
)
from hira.services.hira_summary import scoped_assessment_query, summarize
from hira.utils.helpers import is_blank, parse_date_input

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "process", "description", "assessment_date",
                    "plant_id", "area_id", "assessor_id")

MAX_PER_PAGE = 100


# ── Read models ──────────────────────────────────────────────────────────────


def get_allowed_transitions(assessment, actor) -> list[str]:
    return hira_lifecycle.get_allowed_transitions(assessment, actor)


def get_summary(assessment, today: date | None = None) -> dict:
    return summarize(assessment, today)


def get_action_items(assessment, today: date | None = None) -> list[dict]:
    return [item.to_dict() for item in derive_actions(assessment.worksheet_rows, today)]


def apply_row_edit(assessment, row_index: int, field: str, value):
    """In-memory edit of one row field; nothing is persisted."""
    return worksheet.apply_row_edit(assessment, row_index, field, value)


def save_worksheet(company_id: int, assessment_id: int, actor, rows: list) -> dict:
    return hira_lifecycle.save_worksheet(company_id, assessment_id, actor, rows)


def get_assessment_detail(company_id: int, assessment_id: int, actor) -> dict:
    """Assessment with summary, action items and what this actor may do next."""
    assessment = hira_store.fetch_assessment(company_id, assessment_id)
    d = assessment.to_dict()
    d["summary"] = get_summary(assessment)
    d["action_items"] = get_action_items(assessment)
    d["allowed_transitions"] = get_allowed_transitions(assessment, actor)
    d["permissions"] = {
        "can_edit_worksheet": can_edit_row(assessment, actor),
        "can_manage_actions": can_manage_actions(assessment, actor),
        "can_update": can_update_details(assessment, actor),
    }
    return d


def list_assessments(company_id: int, actor, filters: dict | None = None) -> dict:
    """List the assessments visible to ``actor`` with filtering and pagination.

    Filters: status, plant_id, search (title / process / number), page, per_page.
    """
    filters = filters or {}
    q = scoped_assessment_query(company_id, actor)

    status = filters.get("status")
    if status:
        if status not in HIRA_STATUSES:
            raise InvalidInputError(f"Unknown status '{status}'", details={"field": "status"})
        q = q.filter(Assessment.status == status)
    if filters.get("plant_id"):
        q = q.filter(Assessment.plant_id == filters["plant_id"])
    if filters.get("search"):
        search = filters["search"]
        q = q.filter(or_(
            Assessment.title.ilike(f"%{search}%"),
            Assessment.process.ilike(f"%{search}%"),
            Assessment.assessment_number.ilike(f"%{search}%"),
        ))

    q = q.order_by(Assessment.created_at.desc(), Assessment.id.desc())
    page = max(int(filters.get("page", 1) or 1), 1)
    per_page = min(max(int(filters.get("per_page", 20) or 20), 1), MAX_PER_PAGE)
    paginated = q.paginate(page=page, per_page=per_page, error_out=False)

    items = []
    for assessment in paginated.items:
        d = assessment.to_dict(include_rows=False)
        d["summary"] = summarize(assessment)
        d["allowed_transitions"] = get_allowed_transitions(assessment, actor)
        items.append(d)
    return {"items": items, "total": paginated.total, "page": paginated.page,
            "per_page": per_page, "pages": paginated.pages}


def get_assessment_history(company_id: int, assessment_id: int) -> list[dict]:
    assessment = hira_store.fetch_assessment(company_id, assessment_id)
    return get_history("assessment", assessment.id, company_id=company_id)


# ── Create / update ──────────────────────────────────────────────────────────


def _require_text(data: dict, field: str) -> str:
    value = data.get(field)
    if is_blank(value):
        raise InvalidInputError(f"{field} is required", details={"field": field})
    return str(value).strip()


def _resolve_assessor(company_id: int, assessor_id):
    if assessor_id in (None, ""):
        return None
    return hira_store.fetch_company_users(company_id, [assessor_id], "assessor_id")[0]


def create_assessment(company_id: int, actor, data: dict) -> dict:
    """Create a draft assessment, optionally with initial worksheet rows.

    The lead assessor defaults to the creator.
    """
    title = _require_text(data, "title")
    process = _require_text(data, "process")
    assessment_date = parse_date_input(data.get("assessment_date"), "assessment_date") or date.today()

    with hira_store.transaction():
        assessor = _resolve_assessor(company_id, data.get("assessor_id")) or actor
        assessment = Assessment(
            company_id=company_id,
            plant_id=data.get("plant_id", actor.plant_id),
            area_id=data.get("area_id"),
            assessment_number=generate_assessment_number(company_id),
            title=title,
            process=process,
            description=data.get("description"),
            assessment_date=assessment_date,
            assessor_id=assessor.id,
            created_by_id=actor.id,
            status="draft",
        )
        db.session.add(assessment)
        if data.get("worksheet_rows"):
            worksheet.replace_rows(assessment, data["worksheet_rows"])
        db.session.flush()
        hira_store.record_audit(assessment, "create", actor.id, {
            "assessment_number": assessment.assessment_number,
            "row_count": len(assessment.worksheet_rows),
        })

    logger.info("HIRA created: %s", assessment.assessment_number,
                extra={"company_id": company_id, "assessment_id": assessment.id,
                       "actor_id": actor.id})
    return assessment.to_dict()


def update_assessment(company_id: int, assessment_id: int, actor, data: dict) -> dict:
    """Edit assessment details while it is still draft or assigned."""
    unknown = set(data) - set(UPDATABLE_FIELDS)
    if unknown:
        raise InvalidInputError(f"Fields not updatable: {sorted(unknown)}",
                                details={"fields": sorted(unknown)})

    with hira_store.transaction():
        assessment = hira_store.fetch_assessment(company_id, assessment_id)
        if assessment.status not in ("draft", "assigned"):
            raise InvalidTransitionError(assessment.status, "update",
                                         "details are locked once work has started")
        check_update_details(assessment, actor)

        diff = {}
        for field in UPDATABLE_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field in ("title", "process"):
                value = _require_text(data, field)
            elif field == "assessment_date":
                value = parse_date_input(value, field)
                if value is None:
                    raise InvalidInputError("assessment_date is required",
                                            details={"field": field})
            elif field == "assessor_id":
                assessor = _resolve_assessor(company_id, value)
                if assessor is None:
                    raise InvalidInputError("assessor_id is required", details={"field": field})
                value = assessor.id
            old = getattr(assessment, field)
            if old != value:
                diff[field] = {"old": old, "new": value}
                setattr(assessment, field, value)

        db.session.flush()
        if diff:
            hira_store.record_audit(assessment, "update", actor.id, diff)

    return assessment.to_dict()
