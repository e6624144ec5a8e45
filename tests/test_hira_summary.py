"""
Summary aggregator tests:
  - Risk distribution and significance counts
  - Action counts and completion rate (half-up rounding, 100 with no actions)
  - Company dashboard scoping by role
"""

from datetime import date, timedelta

import pytest

from hira.services.hira_summary import (
    all_actions_completed,
    company_dashboard,
    completion_rate,
    scoped_assessment_query,
    summarize,
)

COMPANY_ID = 1


class TestCompletionRate:

    @pytest.mark.parametrize("completed,total,expected", [
        (0, 0, 100),
        (0, 3, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (1, 2, 50),
        (4, 4, 100),
    ])
    def test_rounding(self, completed, total, expected):
        assert completion_rate(completed, total) == expected


class TestSummarize:

    def test_distribution(self, make_assessment, row_data):
        a = make_assessment("in_progress", rows=[
            row_data(likelihood=5, consequence=5),
            row_data(likelihood=3, consequence=5),
            row_data(likelihood=3, consequence=3),
            row_data(likelihood=1, consequence=2, recommendation=""),
        ])
        s = summarize(a)
        assert s["total_tasks"] == 4
        assert s["risk_category_counts"] == {
            "Very Low": 1, "Low": 0, "Moderate": 1, "High": 1, "Very High": 1,
        }
        assert s["high_risk_count"] == 2
        assert s["moderate_risk_count"] == 1
        assert s["low_risk_count"] == 1
        assert s["significant_risks"] == 2
        assert s["total_actions"] == 3

    def test_action_counts(self, make_assessment, row_data):
        past = date.today() - timedelta(days=3)
        a = make_assessment("actions_assigned", rows=[
            row_data(action_status="Completed"),
            row_data(action_status="In Progress", target_date=past.isoformat()),
            row_data(action_status="Open"),
        ])
        s = summarize(a)
        assert (s["open_actions"], s["in_progress_actions"], s["completed_actions"]) == (1, 1, 1)
        assert s["overdue_actions"] == 1
        assert s["completion_rate"] == 33
        assert all_actions_completed(s) is False

    def test_no_actions_is_complete_rate_but_not_all_completed(self, make_assessment, row_data):
        a = make_assessment("approved", rows=[row_data(recommendation="")])
        s = summarize(a)
        assert s["total_actions"] == 0
        assert s["completion_rate"] == 100
        assert all_actions_completed(s) is False

    def test_empty_worksheet(self, make_assessment):
        s = summarize(make_assessment("assigned", rows=[]))
        assert s["total_tasks"] == 0
        assert s["high_risk_count"] == 0


class TestDashboard:

    def test_scope_by_role(self, make_assessment, users):
        mine = make_assessment("in_progress", assessor=users.lead)
        other_plant = make_assessment("draft", assessor=users.owner, team=[],
                                      plant_id=99)
        make_assessment("draft", company_id=2, assessor=users.foreigner,
                        created_by=users.foreigner, team=[])

        def ids(actor):
            return {a.id for a in scoped_assessment_query(COMPANY_ID, actor).all()}

        assert ids(users.superadmin) == {mine.id, other_plant.id}
        assert ids(users.approver) == {mine.id}
        assert ids(users.member) == {mine.id}
        assert ids(users.outsider) == set()

    def test_rollup(self, make_assessment, row_data, users):
        make_assessment("in_progress", rows=[row_data(likelihood=5, consequence=5)])
        make_assessment("approved", rows=[row_data(), row_data(recommendation="")])

        d = company_dashboard(COMPANY_ID, users.superadmin, period="week")
        assert d["total_assessments"] == 2
        assert d["status_distribution"]["in_progress"] == 1
        assert d["status_distribution"]["approved"] == 1
        assert d["high_risk_items"] == 1
        assert d["actions"]["total_actions"] == 2
        assert d["actions"]["completion_rate"] == 0
        assert len(d["recent_assessments"]) == 2

    def test_unknown_period_falls_back_to_month(self, users):
        assert company_dashboard(COMPANY_ID, users.superadmin, period="decade")["period"] == "month"
