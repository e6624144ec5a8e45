"""
HIRA — AI hazard suggestions

Asks the LLM gateway for additional hazards, controls and recommendations
for one worksheet task and stores the latest suggestion set on the
assessment.

A suggestion request for a row is tracked by ``SuggestionTracker``. The
ticket records the row's content fingerprint when the request was made; if
the row is edited, removed or the request is cancelled before the response
arrives, the response is stale and is discarded rather than applied.

Usage:
    from hira.ai.suggestions import request_ai_suggestions

    result = request_ai_suggestions(
        company_id=1, assessment_id=42, actor=user,
        task_name="Roof sheet replacement", activity_service="Maintenance",
        row_index=3,
    )
"""

import copy
import itertools
import json
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app

from hira.ai.gateway import get_gateway
from hira.core.exceptions import InvalidInputError
from hira.models import db
from hira.services import hira_store, worksheet
from hira.services.hira_permission import check_edit_row
from hira.utils.helpers import is_blank

logger = logging.getLogger(__name__)

SUGGESTION_KEYS = ("hazards", "description", "controls", "recommendations", "routine",
                   "likelihood", "consequence", "significant")

DEFAULT_SUGGESTIONS = {
    "hazards": ["Manual handling injuries", "Slip, trip, fall hazards"],
    "description": ["Description"],
    "controls": ["Proper PPE usage", "Safety training"],
    "recommendations": ["Conduct regular safety audits", "Implement safety procedures"],
    "routine": ["Routine"],
    "likelihood": [3],
    "consequence": [4],
    "significant": ["Not Significant"],
    "confidence": 0.8,
}

SYSTEM_PROMPT = (
    "You are an industrial safety expert performing Hazard Identification and "
    "Risk Assessment. Answer with JSON only."
)

PROMPT_TEMPLATE = """As a safety expert, provide suggestions for the following industrial task:

Task: {task_name}
Activity/Service: {activity_service}
Existing identified hazards: {existing}

Please provide:
1. Additional potential hazards that might be missed
2. Hazard Description
3. Routine/Non-Routine
4. Risk control measures
5. Likelihood of occurrence (1-5)
6. Consequence of the hazard (1-5)
7. Significant/Not Significant
8. Safety recommendations

Format the response as JSON with the following structure:
{{
  "hazards": ["hazard1", "hazard2"],
  "description": ["description"],
  "controls": ["control1", "control2"],
  "recommendations": ["recommendation1", "recommendation2"],
  "routine": ["Routine"],
  "likelihood": [3],
  "consequence": [4],
  "significant": ["Not Significant"],
  "confidence": 0.95
}}"""

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")


def build_prompt(task_name: str, activity_service: str, existing_hazards=None) -> str:
    existing = ", ".join(h for h in (existing_hazards or []) if h) or "None identified yet"
    return PROMPT_TEMPLATE.format(task_name=task_name, activity_service=activity_service or "",
                                  existing=existing)


def strip_json_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    text = (text or "").strip()
    text = _FENCE_START.sub("", text)
    return _FENCE_END.sub("", text).strip()


def _as_list(value) -> list:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def parse_suggestions(text: str) -> tuple[dict, bool]:
    """Parse model output into a suggestion set.

    Returns:
        (suggestions, used_fallback). Unparseable output yields a copy of
        DEFAULT_SUGGESTIONS.
    """
    try:
        raw = json.loads(strip_json_fences(text))
    except (json.JSONDecodeError, TypeError):
        logger.warning("AI suggestion output was not valid JSON; using defaults")
        return copy.deepcopy(DEFAULT_SUGGESTIONS), True
    if not isinstance(raw, dict):
        logger.warning("AI suggestion output was not a JSON object; using defaults")
        return copy.deepcopy(DEFAULT_SUGGESTIONS), True

    suggestions = {key: _as_list(raw.get(key)) for key in SUGGESTION_KEYS}
    try:
        suggestions["confidence"] = float(raw.get("confidence", 0.0))
    except (TypeError, ValueError):
        suggestions["confidence"] = 0.0
    return suggestions, False


# ── Stale-response tracking ──────────────────────────────────────────────────


@dataclass(frozen=True)
class SuggestionTicket:
    token: int
    assessment_id: int
    row_index: int
    row_id: int | None
    fingerprint: str


class SuggestionTracker:
    """Tracks the in-flight suggestion request per (assessment, row).

    Only the latest ticket for a row can resolve; issuing a new request or
    cancelling supersedes the previous one.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: dict[tuple[int, int], int] = {}
        self._tokens = itertools.count(1)

    def begin(self, assessment, row_index: int) -> SuggestionTicket:
        rows = assessment.worksheet_rows
        if not 0 <= row_index < len(rows):
            raise InvalidInputError(f"Row index {row_index} out of range",
                                    details={"row_index": row_index, "row_count": len(rows)})
        row = rows[row_index]
        with self._lock:
            token = next(self._tokens)
            self._latest[(assessment.id, row_index)] = token
        return SuggestionTicket(token, assessment.id, row_index, row.id,
                                worksheet.row_fingerprint(row))

    def cancel(self, assessment_id: int, row_index: int) -> bool:
        """Cancel the pending request for a row. Returns False when none was pending."""
        with self._lock:
            return self._latest.pop((assessment_id, row_index), None) is not None

    def is_current(self, ticket: SuggestionTicket, assessment) -> bool:
        with self._lock:
            if self._latest.get((ticket.assessment_id, ticket.row_index)) != ticket.token:
                return False
        rows = assessment.worksheet_rows
        if ticket.row_index >= len(rows):
            return False
        row = rows[ticket.row_index]
        return row.id == ticket.row_id and worksheet.row_fingerprint(row) == ticket.fingerprint

    def resolve(self, ticket: SuggestionTicket, assessment) -> bool:
        """Close a ticket. True when its response may still be applied to the row."""
        current = self.is_current(ticket, assessment)
        with self._lock:
            key = (ticket.assessment_id, ticket.row_index)
            if self._latest.get(key) == ticket.token:
                del self._latest[key]
        if not current:
            logger.info("Discarding stale AI suggestions for assessment=%s row=%s",
                        ticket.assessment_id, ticket.row_index)
        return current


def get_tracker(app) -> SuggestionTracker:
    tracker = app.extensions.get("hira_suggestion_tracker")
    if tracker is None:
        tracker = SuggestionTracker()
        app.extensions["hira_suggestion_tracker"] = tracker
    return tracker


# ── Request ──────────────────────────────────────────────────────────────────


def _call_model(task_name: str, activity_service: str, existing_hazards) -> tuple[dict, bool]:
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_prompt(task_name, activity_service, existing_hazards)},
    ]
    try:
        response = get_gateway(current_app._get_current_object()).chat(
            messages, purpose="hira_suggestions")
    except RuntimeError:
        logger.warning("AI suggestion call failed; using defaults", exc_info=True)
        return copy.deepcopy(DEFAULT_SUGGESTIONS), True
    return parse_suggestions(response["content"])


def request_ai_suggestions(company_id: int, assessment_id: int, actor, *, task_name: str,
                           activity_service: str = "", existing_hazards=None,
                           row_index: int | None = None) -> dict:
    """Fetch a suggestion set for one task and store it on the assessment.

    When ``row_index`` is given the request is tracked against that row. If
    the row changed, disappeared or the request was cancelled while the
    model was answering, the response is discarded: nothing is stored and
    ``suggestions`` is None.

    Returns:
        {"suggestions", "fallback", "row_index", "stale"}
    """
    if is_blank(task_name):
        raise InvalidInputError("task_name is required", details={"field": "task_name"})
    if existing_hazards is not None and not isinstance(existing_hazards, list):
        raise InvalidInputError("existing_hazards must be a list",
                                details={"field": "existing_hazards"})
    if row_index is not None and (isinstance(row_index, bool) or not isinstance(row_index, int)):
        raise InvalidInputError("row_index must be an integer", details={"field": "row_index"})

    assessment = hira_store.fetch_assessment(company_id, assessment_id)
    check_edit_row(assessment, actor)

    tracker = get_tracker(current_app._get_current_object())
    ticket = tracker.begin(assessment, row_index) if row_index is not None else None

    suggestions, fallback = _call_model(task_name, activity_service, existing_hazards)

    stale = False
    with hira_store.transaction():
        # Pick up edits committed while the model was answering
        db.session.expire_all()
        if ticket is not None:
            stale = not tracker.resolve(ticket, assessment)
        if not stale:
            assessment.ai_suggestions = {
                **suggestions,
                "generated_at": datetime.now(timezone.utc).isoformat(),
            }
        hira_store.record_audit(assessment, "ai_suggestions", actor.id, {
            "task_name": task_name, "row_index": row_index,
            "fallback": fallback, "stale": stale,
        })

    return {"suggestions": None if stale else suggestions, "fallback": fallback,
            "row_index": row_index, "stale": stale}
