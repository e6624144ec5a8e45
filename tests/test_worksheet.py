"""
Worksheet editing tests:
  - Field coercion (aliases, numeric strings, strict dates)
  - Re-scoring on likelihood/consequence edits, one-way significance upgrade
  - Content frozen outside the editable statuses
  - Whole-collection replacement keyed by row id
"""

from datetime import date

import pytest

from hira.core.exceptions import InvalidInputError, InvalidTransitionError
from hira.models import db
from hira.services import worksheet
from hira.services.risk_calculator import NOT_SIGNIFICANT, SIGNIFICANT


class TestCoerceField:

    def test_routine_alias(self):
        assert worksheet.coerce_field("routine_non_routine", "NonRoutine") == "Non-Routine"

    def test_routine_default(self):
        assert worksheet.coerce_field("routine_non_routine", None) == "Routine"

    def test_significance_alias(self):
        assert worksheet.coerce_field("significance", "S") == SIGNIFICANT
        assert worksheet.coerce_field("significance", "NotSignificant") == NOT_SIGNIFICANT

    def test_numeric_string_factor(self):
        assert worksheet.coerce_field("likelihood", " 4 ") == 4

    @pytest.mark.parametrize("value", ["high", 7, 0, 2.5])
    def test_bad_factor(self, value):
        with pytest.raises(InvalidInputError):
            worksheet.coerce_field("consequence", value)

    def test_dates(self):
        assert worksheet.coerce_field("target_date", "2026-05-01") == date(2026, 5, 1)
        assert worksheet.coerce_field("target_date", "01.05.2026") == date(2026, 5, 1)
        assert worksheet.coerce_field("target_date", "") is None

    def test_bad_date(self):
        with pytest.raises(InvalidInputError) as exc:
            worksheet.coerce_field("target_date", "next tuesday")
        assert exc.value.details["field"] == "target_date"

    def test_unknown_field(self):
        with pytest.raises(InvalidInputError):
            worksheet.coerce_field("risk_score", 25)

    def test_action_status_alias(self):
        assert worksheet.coerce_field("action_status", "InProgress") == "In Progress"
        with pytest.raises(InvalidInputError):
            worksheet.coerce_field("action_status", "Done")

    def test_action_owner(self):
        assert worksheet.coerce_field("action_owner_id", "12") == 12
        assert worksheet.coerce_field("action_owner_id", "") is None
        with pytest.raises(InvalidInputError):
            worksheet.coerce_field("action_owner_id", "bob")

    def test_clean_row_ignores_derived_keys(self):
        cleaned = worksheet.clean_row_data({"task_name": "X", "risk_score": 99, "id": 3})
        assert cleaned == {"task_name": "X"}


class TestApplyRowEdit:

    def test_factor_edit_rescores_and_upgrades(self, make_assessment):
        a = make_assessment("in_progress")
        worksheet.apply_row_edit(a, 0, "likelihood", 5)
        row = a.worksheet_rows[0]
        assert row.risk_score == 15
        assert row.risk_category == "High"
        assert row.significance == SIGNIFICANT

    def test_manual_downgrade_survives_unrelated_edit(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data(likelihood=4, consequence=4)])
        row = a.worksheet_rows[0]
        assert row.significance == SIGNIFICANT

        worksheet.apply_row_edit(a, 0, "significance", NOT_SIGNIFICANT)
        worksheet.apply_row_edit(a, 0, "remarks", "reviewed")
        worksheet.apply_row_edit(a, 0, "likelihood", 4)
        assert row.significance == NOT_SIGNIFICANT

    def test_factor_change_upgrades_again(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data(likelihood=4, consequence=4)])
        worksheet.apply_row_edit(a, 0, "significance", NOT_SIGNIFICANT)
        worksheet.apply_row_edit(a, 0, "consequence", 5)
        assert a.worksheet_rows[0].significance == SIGNIFICANT

    def test_lowering_factors_never_downgrades(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data(likelihood=5, consequence=5)])
        worksheet.apply_row_edit(a, 0, "likelihood", 1)
        assert a.worksheet_rows[0].significance == SIGNIFICANT

    def test_index_out_of_range(self, make_assessment):
        a = make_assessment("in_progress")
        with pytest.raises(InvalidInputError):
            worksheet.apply_row_edit(a, 5, "task_name", "X")

    def test_invalid_value_leaves_row_untouched(self, make_assessment):
        a = make_assessment("in_progress")
        with pytest.raises(InvalidInputError):
            worksheet.apply_row_edit(a, 0, "likelihood", 9)
        assert a.worksheet_rows[0].likelihood == 2

    @pytest.mark.parametrize("status", ["completed", "approved", "actions_assigned", "closed"])
    def test_content_frozen(self, make_assessment, status):
        a = make_assessment(status)
        with pytest.raises(InvalidTransitionError):
            worksheet.apply_row_edit(a, 0, "hazard_concern", "Noise")

    def test_action_fields_editable_after_approval(self, make_assessment):
        a = make_assessment("approved")
        worksheet.apply_row_edit(a, 0, "remarks", "Quote requested")
        assert a.worksheet_rows[0].remarks == "Quote requested"


class TestReplaceRows:

    def test_keeps_ids_and_reorders(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data(task_name="A"), row_data(task_name="B")])
        first, second = (row.id for row in a.worksheet_rows)

        worksheet.replace_rows(a, [
            {"id": second, "task_name": "B2"},
            row_data(task_name="C"),
        ])
        db.session.commit()

        assert [r.task_name for r in a.worksheet_rows] == ["B2", "C"]
        assert a.worksheet_rows[0].id == second
        assert [r.position for r in a.worksheet_rows] == [0, 1]
        assert first not in {r.id for r in a.worksheet_rows}

    def test_invalid_row_changes_nothing(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data(task_name="A")])
        with pytest.raises(InvalidInputError) as exc:
            worksheet.replace_rows(a, [row_data(task_name="B"), row_data(likelihood=0)])
        assert exc.value.details["row_index"] == 1
        assert [r.task_name for r in a.worksheet_rows] == ["A"]

    def test_rejects_non_list(self, make_assessment):
        a = make_assessment("in_progress")
        with pytest.raises(InvalidInputError):
            worksheet.replace_rows(a, {"task_name": "X"})

    def test_new_rows_scored(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data(likelihood=5, consequence=3)])
        row = a.worksheet_rows[0]
        assert row.risk_score == 15
        assert row.significance == SIGNIFICANT

    def test_idless_row_keeps_sent_significance(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data(likelihood=4, consequence=4)])
        worksheet.replace_rows(a, [row_data(likelihood=4, consequence=4,
                                            significance=NOT_SIGNIFICANT)])
        assert a.worksheet_rows[0].significance == NOT_SIGNIFICANT

    def test_idless_row_rescored_when_factors_move(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data(likelihood=4, consequence=4)])
        worksheet.replace_rows(a, [row_data(likelihood=5, consequence=4,
                                            significance=NOT_SIGNIFICANT)])
        assert a.worksheet_rows[0].significance == SIGNIFICANT

    def test_appended_row_without_significance_upgraded(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[row_data()])
        worksheet.replace_rows(a, [row_data(), row_data(likelihood=5, consequence=5)])
        assert a.worksheet_rows[1].significance == SIGNIFICANT


class TestFingerprint:

    def test_changes_with_content_only(self, make_assessment):
        a = make_assessment("in_progress")
        row = a.worksheet_rows[0]
        before = worksheet.row_fingerprint(row)
        row.remarks = "note"
        assert worksheet.row_fingerprint(row) == before
        row.hazard_concern = "Noise"
        assert worksheet.row_fingerprint(row) != before
