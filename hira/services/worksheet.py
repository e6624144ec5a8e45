"""
HIRA — Worksheet row editing

Field coercion and in-memory row edits shared by the lifecycle service, the
persistence boundary and the AI suggestion tracker.

Edits are validated in full before any row is touched: a multi-row save
either replaces the whole row collection or changes nothing.
"""

import hashlib
import json
import logging

from hira.core.exceptions import InvalidInputError, InvalidTransitionError
from hira.models.hira import (
    ACTION_STATUSES,
    ROUTINE,
    ROUTINE_OPTIONS,
    ROW_ACTION_FIELDS,
    ROW_CONTENT_FIELDS,
    ROW_FIELDS,
    WorksheetRow,
)
from hira.services import risk_calculator
from hira.services.hira_permission import EDITABLE_STATUSES
from hira.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

_TEXT_FIELDS = frozenset({
    "task_name", "activity_service", "hazard_concern", "hazard_description",
    "existing_risk_control", "recommendation", "remarks", "completion_evidence",
})
_FACTOR_FIELDS = frozenset({"likelihood", "consequence"})
_DATE_FIELDS = frozenset({"target_date", "actual_completion_date"})

# Original spellings accepted from API clients
_ROUTINE_ALIASES = {"NonRoutine": "Non-Routine", "Non Routine": "Non-Routine"}
_SIGNIFICANCE_ALIASES = {"S": "Significant", "NS": "Not Significant",
                         "NotSignificant": "Not Significant"}
_ACTION_STATUS_ALIASES = {"InProgress": "In Progress"}


def _coerce_factor(field: str, value) -> int:
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    risk_calculator.validate_factor(field, value)
    return value


def coerce_field(field: str, value):
    """Validate and normalise a single row field value.

    Raises:
        InvalidInputError: unknown field or invalid value.
    """
    if field not in ROW_FIELDS:
        raise InvalidInputError(f"Unknown worksheet field '{field}'", details={"field": field})

    if field in _TEXT_FIELDS:
        return "" if value is None else str(value)
    if field in _FACTOR_FIELDS:
        return _coerce_factor(field, value)
    if field in _DATE_FIELDS:
        return parse_date_input(value, field)
    if field == "routine_non_routine":
        value = _ROUTINE_ALIASES.get(value, value) or ROUTINE
        if value not in ROUTINE_OPTIONS:
            raise InvalidInputError(f"routine_non_routine must be one of {ROUTINE_OPTIONS}",
                                    details={"field": field, "value": value})
        return value
    if field == "significance":
        value = _SIGNIFICANCE_ALIASES.get(value, value)
        if value not in risk_calculator.SIGNIFICANCE_OPTIONS:
            raise InvalidInputError(
                f"significance must be one of {risk_calculator.SIGNIFICANCE_OPTIONS}",
                details={"field": field, "value": value})
        return value
    if field == "action_status":
        value = _ACTION_STATUS_ALIASES.get(value, value)
        if value not in ACTION_STATUSES:
            raise InvalidInputError(f"action_status must be one of {ACTION_STATUSES}",
                                    details={"field": field, "value": value})
        return value
    if field == "action_owner_id":
        if value in (None, ""):
            return None
        if isinstance(value, bool):
            raise InvalidInputError("action_owner_id must be a user id", details={"field": field})
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError("action_owner_id must be a user id",
                                    details={"field": field, "value": value}) from exc
    return value


def clean_row_data(data: dict, fields=ROW_FIELDS) -> dict:
    """Coerce every recognised key of ``data`` restricted to ``fields``.

    Keys outside ``fields`` (ids, derived values echoed back by a client)
    are ignored.
    """
    if not isinstance(data, dict):
        raise InvalidInputError("Each worksheet row must be an object")
    return {field: coerce_field(field, data[field]) for field in fields if field in data}


def _factors_changed(baseline, cleaned: dict) -> bool:
    return any(field in cleaned and cleaned[field] != getattr(baseline, field)
               for field in _FACTOR_FIELDS)


def _apply(row, cleaned: dict, *, is_new: bool, baseline=None) -> None:
    """Write ``cleaned`` onto ``row`` and re-score when the factors moved.

    An existing row is compared with itself. A new row is compared with
    ``baseline`` (the row that held its position before a save); it keeps a
    significance sent with it unless its factors differ from that baseline.
    """
    if is_new:
        rescore = "significance" not in cleaned or (
            baseline is not None and _factors_changed(baseline, cleaned))
    else:
        rescore = _factors_changed(row, cleaned)
    for field, value in cleaned.items():
        setattr(row, field, value)
    if rescore:
        risk_calculator.apply_to_row(row)


def new_row(cleaned: dict | None = None, baseline=None) -> WorksheetRow:
    row = WorksheetRow(
        task_name="", activity_service="", routine_non_routine=ROUTINE,
        hazard_concern="", hazard_description="", likelihood=1, consequence=1,
        existing_risk_control="", significance=risk_calculator.NOT_SIGNIFICANT,
        recommendation="", action_status="Open",
    )
    _apply(row, cleaned or {}, is_new=True, baseline=baseline)
    return row


def apply_row_edit(assessment, row_index: int, field: str, value):
    """Edit one field of one row in memory and re-score as needed.

    Likelihood or consequence edits re-run the risk calculator, which may
    upgrade (never downgrade) significance. A direct significance edit is a
    reviewer decision and is kept as-is.

    Returns the assessment.
    """
    rows = assessment.worksheet_rows
    if isinstance(row_index, bool) or not isinstance(row_index, int) or not 0 <= row_index < len(rows):
        raise InvalidInputError(f"Row index {row_index} out of range",
                                details={"row_index": row_index, "row_count": len(rows)})
    if field in ROW_CONTENT_FIELDS and assessment.status not in EDITABLE_STATUSES:
        raise InvalidTransitionError(assessment.status, "edit_worksheet",
                                     "worksheet content is frozen in this status")

    cleaned = {field: coerce_field(field, value)}
    _apply(rows[row_index], cleaned, is_new=False)
    return assessment


def replace_rows(assessment, rows_data: list) -> list:
    """Replace the worksheet with ``rows_data`` as one state change.

    Rows carrying the ``id`` of an existing row update it in place; other
    entries become new rows; existing rows absent from the payload are
    removed. Positions follow payload order.

    A row sent without an ``id`` is compared with the row previously at its
    position, so a manual significance downgrade sent back by a client that
    does not track ids survives saves that leave the risk factors alone.
    """
    if not isinstance(rows_data, list):
        raise InvalidInputError("worksheet_rows must be a list")

    cleaned_rows = []
    for i, data in enumerate(rows_data):
        try:
            cleaned_rows.append((data.get("id") if isinstance(data, dict) else None,
                                 clean_row_data(data)))
        except InvalidInputError as exc:
            exc.details.setdefault("row_index", i)
            raise

    previous = list(assessment.worksheet_rows)
    existing = {row.id: row for row in previous if row.id is not None}
    new_rows = []
    for position, (row_id, cleaned) in enumerate(cleaned_rows):
        row = existing.pop(row_id, None) if row_id is not None else None
        if row is None:
            row = new_row(cleaned, previous[position] if position < len(previous) else None)
        else:
            _apply(row, cleaned, is_new=False)
        row.position = position
        new_rows.append(row)

    assessment.worksheet_rows = new_rows
    logger.debug("Worksheet replaced: assessment=%s rows=%d removed=%d",
                 assessment.id, len(new_rows), len(existing))
    return new_rows


def apply_action_fields(row, data: dict) -> dict:
    """Apply only action-tracking fields to ``row``; content stays frozen."""
    cleaned = clean_row_data(data, ROW_ACTION_FIELDS)
    for field, value in cleaned.items():
        setattr(row, field, value)
    return cleaned


def row_fingerprint(row) -> str:
    """Stable digest of a row's content, used to detect stale AI responses."""
    payload = {field: getattr(row, field, None) for field in ROW_CONTENT_FIELDS}
    return hashlib.sha1(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()
