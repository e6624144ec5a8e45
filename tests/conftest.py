"""
Shared pytest fixtures for the HIRA Lifecycle Engine test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - users: one user per relevant role, all in company 1
    - make_assessment: factory for assessments in any status
    - row_data: factory for complete worksheet row payloads
"""

from datetime import date, datetime, timezone

import pytest

from hira import create_app
from hira.models import db as _db
from hira.models.auth import User
from hira.models.hira import Assessment
from hira.services import worksheet

COMPANY_ID = 1
OTHER_COMPANY_ID = 2


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        app.extensions.pop("hira_suggestion_tracker", None)
        app.extensions.pop("hira_llm_gateway", None)
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


class _Cast:
    """Named users for permission scenarios."""

    def __init__(self, **users):
        self.__dict__.update(users)


def _make_user(name, role, company_id=COMPANY_ID, plant_id=None):
    user = User(
        company_id=company_id,
        plant_id=plant_id,
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
    )
    _db.session.add(user)
    return user


@pytest.fixture()
def users():
    """owner, lead, member, outsider, approver, superadmin, action_owner, foreigner."""
    cast = _Cast(
        owner=_make_user("Olivia Owner", "company_owner", plant_id=10),
        lead=_make_user("Lee Lead", "safety_incharge", plant_id=10),
        member=_make_user("Mo Member", "worker", plant_id=10),
        outsider=_make_user("Otto Outsider", "worker", plant_id=10),
        approver=_make_user("Ada Admin", "admin", plant_id=10),
        superadmin=_make_user("Sam Super", "superadmin"),
        action_owner=_make_user("Hana Hod", "hod", plant_id=10),
        foreigner=_make_user("Fred Foreign", "company_owner", company_id=OTHER_COMPANY_ID),
    )
    _db.session.commit()
    return cast


@pytest.fixture()
def row_data():
    """Factory: a worksheet row payload with every completion field filled."""

    def _row(**overrides):
        data = {
            "task_name": "Replace roof sheets",
            "activity_service": "Maintenance",
            "routine_non_routine": "Non-Routine",
            "hazard_concern": "Fall from height",
            "hazard_description": "Worker slips off the roof edge",
            "likelihood": 2,
            "consequence": 3,
            "existing_risk_control": "Harness",
            "recommendation": "Install edge protection",
        }
        data.update(overrides)
        return data

    return _row


@pytest.fixture()
def make_assessment(users, row_data):
    """Factory: persist an assessment directly in the requested status.

    The lead is ``users.lead``, the team is ``[users.member]`` and the
    creator is ``users.owner`` unless overridden.
    """
    counter = {"n": 0}

    def _make(status="draft", rows=None, *, company_id=COMPANY_ID, team=None,
              assessor=None, created_by=None, plant_id=10, **fields):
        counter["n"] += 1
        assessment = Assessment(
            company_id=company_id,
            plant_id=plant_id,
            assessment_number=fields.pop("assessment_number", f"HIRA-TEST-{counter['n']:03d}"),
            title=fields.pop("title", f"Assessment {counter['n']}"),
            process=fields.pop("process", "Roof maintenance"),
            assessment_date=date(2026, 1, 15),
            assessor_id=(assessor or users.lead).id,
            created_by_id=(created_by or users.owner).id,
            status=status,
            **fields,
        )
        assessment.team = list(team if team is not None else [users.member])
        if status != "draft":
            assessment.assigned_at = datetime(2026, 1, 16, tzinfo=timezone.utc)
        _db.session.add(assessment)
        worksheet.replace_rows(assessment, rows if rows is not None else [row_data()])
        _db.session.commit()
        return assessment

    return _make
