"""
HIRA Lifecycle Engine
HIRA blueprint — assessment lifecycle, worksheet, action item and AI endpoints.

Endpoints summary (all under /api/v1/hira/<company_id>):
    ASSESSMENT  /                              GET, POST
                /dashboard                     GET
                /<id>                          GET, PATCH
                /<id>/history                  GET
    LIFECYCLE   /<id>/assign                   POST
                /<id>/worksheet                PATCH   (save; ?autosave=1 → 202)
                /<id>/complete                 POST
                /<id>/approve                  POST    (action=approve|reject)
                /<id>/close                    POST
    ACTIONS     /<id>/assign-actions           POST
                /<id>/actions/bulk-assign      POST
                /<id>/actions/<index>          PATCH   (action owner progress)
    AI          /<id>/ai-suggestions           POST    (rate limited)
                /<id>/ai-suggestions/<index>   DELETE  (cancel pending request)

The caller is identified by the X-User-Id header, resolved against the
users of the same company. Services own all business logic and commits.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from hira import limiter
from hira.ai.suggestions import get_tracker, request_ai_suggestions
from hira.core.exceptions import HiraError, NotFoundError
from hira.services import hira_lifecycle, hira_service, hira_store
from hira.services.hira_summary import company_dashboard
from hira.utils.errors import E, api_error, error_from_exception, error_from_http

logger = logging.getLogger(__name__)

hira_bp = Blueprint("hira", __name__, url_prefix="/api/v1/hira")

_ai_limit = limiter.limit(lambda: current_app.config["AI_SUGGESTION_RATE_LIMIT"])
_write_limit = limiter.limit(lambda: current_app.config["HIRA_WRITE_RATE_LIMIT"])


# ── Error handlers ────────────────────────────────────────────────────────────


@hira_bp.errorhandler(HiraError)
@hira_bp.errorhandler(NotFoundError)
def _handle_service_error(error):
    return error_from_exception(error)


@hira_bp.errorhandler(HTTPException)
def _handle_http(error: HTTPException):
    return error_from_http(error)


@hira_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in hira_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _actor(company_id: int):
    """Resolve the X-User-Id header to a user of this company."""
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw.isdigit():
        return None, api_error(E.UNAUTHENTICATED, "X-User-Id header is required")
    try:
        return hira_store.fetch_user(company_id, int(raw)), None
    except NotFoundError:
        return None, api_error(E.UNAUTHENTICATED, "Unknown user for this company")


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ═══════════════════════════════════════════════════════════════════════════
#  ASSESSMENTS
# ═══════════════════════════════════════════════════════════════════════════


@hira_bp.route("/<int:company_id>", methods=["GET"])
def list_assessments(company_id):
    """List visible assessments. Query: status, plant_id, search, page, per_page."""
    actor, err = _actor(company_id)
    if err:
        return err
    filters = {
        "status": request.args.get("status"),
        "plant_id": request.args.get("plant_id", type=int),
        "search": request.args.get("search", "").strip(),
        "page": request.args.get("page", 1, type=int),
        "per_page": request.args.get("per_page", 20, type=int),
    }
    return jsonify(hira_service.list_assessments(company_id, actor, filters))


@hira_bp.route("/<int:company_id>", methods=["POST"])
@_write_limit
def create_assessment(company_id):
    """Body: {title, process, assessment_date?, description?, plant_id?, area_id?,
    assessor_id?, worksheet_rows?}"""
    actor, err = _actor(company_id)
    if err:
        return err
    return jsonify(hira_service.create_assessment(company_id, actor, _body())), 201


@hira_bp.route("/<int:company_id>/dashboard", methods=["GET"])
def dashboard(company_id):
    actor, err = _actor(company_id)
    if err:
        return err
    return jsonify(company_dashboard(
        company_id, actor,
        period=request.args.get("period", "month"),
        plant_id=request.args.get("plant_id", type=int),
    ))


@hira_bp.route("/<int:company_id>/<int:assessment_id>", methods=["GET"])
def get_assessment(company_id, assessment_id):
    actor, err = _actor(company_id)
    if err:
        return err
    return jsonify(hira_service.get_assessment_detail(company_id, assessment_id, actor))


@hira_bp.route("/<int:company_id>/<int:assessment_id>", methods=["PATCH"])
@_write_limit
def update_assessment(company_id, assessment_id):
    actor, err = _actor(company_id)
    if err:
        return err
    return jsonify(hira_service.update_assessment(company_id, assessment_id, actor, _body()))


@hira_bp.route("/<int:company_id>/<int:assessment_id>/history", methods=["GET"])
def get_history(company_id, assessment_id):
    actor, err = _actor(company_id)
    if err:
        return err
    return jsonify({"items": hira_service.get_assessment_history(company_id, assessment_id)})


# ═══════════════════════════════════════════════════════════════════════════
#  LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════


@hira_bp.route("/<int:company_id>/<int:assessment_id>/assign", methods=["POST"])
@_write_limit
def assign(company_id, assessment_id):
    """Body: {team_ids, due_date, priority?, comments?}"""
    actor, err = _actor(company_id)
    if err:
        return err
    data = _body()
    result = hira_lifecycle.assign(
        company_id, assessment_id, actor,
        team_ids=data.get("team_ids") or data.get("team") or [],
        due_date=data.get("due_date"),
        priority=data.get("priority"),
        comments=data.get("comments"),
    )
    return jsonify(result)


@hira_bp.route("/<int:company_id>/<int:assessment_id>/worksheet", methods=["PATCH"])
@_write_limit
def save_worksheet(company_id, assessment_id):
    """Body: {worksheet_rows}. With ?autosave=1 the save is queued and 202 returned."""
    actor, err = _actor(company_id)
    if err:
        return err
    data = _body()
    rows = data.get("worksheet_rows")
    if not isinstance(rows, list):
        return api_error(E.VALIDATION_REQUIRED, "worksheet_rows must be a list")

    if request.args.get("autosave") in ("1", "true"):
        current_app.extensions["hira_autosave"].schedule(company_id, assessment_id, actor.id, rows)
        return jsonify({"queued": True}), 202

    return jsonify(hira_service.save_worksheet(company_id, assessment_id, actor, rows))


@hira_bp.route("/<int:company_id>/<int:assessment_id>/complete", methods=["POST"])
@_write_limit
def complete(company_id, assessment_id):
    """Body: {worksheet_rows?}"""
    actor, err = _actor(company_id)
    if err:
        return err
    return jsonify(hira_lifecycle.complete(
        company_id, assessment_id, actor, rows=_body().get("worksheet_rows"),
    ))


@hira_bp.route("/<int:company_id>/<int:assessment_id>/approve", methods=["POST"])
@_write_limit
def review(company_id, assessment_id):
    """Body: {action: approve|reject, comments, rating?}"""
    actor, err = _actor(company_id)
    if err:
        return err
    data = _body()
    return jsonify(hira_lifecycle.review(
        company_id, assessment_id, actor,
        action=data.get("action", "approve"),
        comments=data.get("comments"),
        rating=data.get("rating"),
    ))


@hira_bp.route("/<int:company_id>/<int:assessment_id>/close", methods=["POST"])
@_write_limit
def close(company_id, assessment_id):
    """Body: {comments, performance_rating?, lessons_learned?}"""
    actor, err = _actor(company_id)
    if err:
        return err
    data = _body()
    return jsonify(hira_lifecycle.close(
        company_id, assessment_id, actor,
        comments=data.get("comments"),
        performance_rating=data.get("performance_rating"),
        lessons_learned=data.get("lessons_learned"),
    ))


# ═══════════════════════════════════════════════════════════════════════════
#  ACTION ITEMS
# ═══════════════════════════════════════════════════════════════════════════


@hira_bp.route("/<int:company_id>/<int:assessment_id>/assign-actions", methods=["POST"])
@_write_limit
def assign_actions(company_id, assessment_id):
    """Body: {assignments: [{index, action_owner_id, target_date, remarks?}]}"""
    actor, err = _actor(company_id)
    if err:
        return err
    return jsonify(hira_lifecycle.assign_actions(
        company_id, assessment_id, actor, _body().get("assignments") or [],
    ))


@hira_bp.route("/<int:company_id>/<int:assessment_id>/actions/bulk-assign", methods=["POST"])
@_write_limit
def bulk_assign_actions(company_id, assessment_id):
    """Body: {indices, owner_id, target_date}"""
    actor, err = _actor(company_id)
    if err:
        return err
    data = _body()
    return jsonify(hira_lifecycle.bulk_assign_actions(
        company_id, assessment_id, actor,
        indices=data.get("indices") or [],
        owner_id=data.get("owner_id"),
        target_date=data.get("target_date"),
    ))


@hira_bp.route("/<int:company_id>/<int:assessment_id>/actions/<int:index>", methods=["PATCH"])
@_write_limit
def update_action(company_id, assessment_id, index):
    """Body: any of {action_status, remarks, completion_evidence, actual_completion_date}"""
    actor, err = _actor(company_id)
    if err:
        return err
    return jsonify(hira_lifecycle.update_action(company_id, assessment_id, actor, index, _body()))


# ═══════════════════════════════════════════════════════════════════════════
#  AI SUGGESTIONS
# ═══════════════════════════════════════════════════════════════════════════


@hira_bp.route("/<int:company_id>/<int:assessment_id>/ai-suggestions", methods=["POST"])
@_ai_limit
def ai_suggestions(company_id, assessment_id):
    """Body: {task_name, activity_service?, existing_hazards?, row_index?}"""
    actor, err = _actor(company_id)
    if err:
        return err
    data = _body()
    return jsonify(request_ai_suggestions(
        company_id, assessment_id, actor,
        task_name=data.get("task_name"),
        activity_service=data.get("activity_service", ""),
        existing_hazards=data.get("existing_hazards"),
        row_index=data.get("row_index"),
    ))


@hira_bp.route("/<int:company_id>/<int:assessment_id>/ai-suggestions/<int:row_index>",
               methods=["DELETE"])
def cancel_ai_suggestions(company_id, assessment_id, row_index):
    actor, err = _actor(company_id)
    if err:
        return err
    hira_store.fetch_assessment(company_id, assessment_id)
    cancelled = get_tracker(current_app._get_current_object()).cancel(assessment_id, row_index)
    return jsonify({"cancelled": cancelled})
