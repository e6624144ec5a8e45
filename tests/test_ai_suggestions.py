"""
AI suggestion tests.

Tests cover:
  - JSON fence stripping and parse fallback to the default suggestion set
  - LLM gateway routing (local stub, fallback when a provider is missing)
  - Storing suggestions on the assessment and auditing the request
  - Gateway failure → default suggestions
  - Stale responses (row edited / request cancelled mid-flight) are discarded
  - Endpoints: request and cancel
"""

import json

import pytest

from hira.ai.gateway import LLMGateway, LLMProvider, get_gateway
from hira.ai.suggestions import (
    DEFAULT_SUGGESTIONS,
    build_prompt,
    get_tracker,
    parse_suggestions,
    request_ai_suggestions,
    strip_json_fences,
)
from hira.core.exceptions import ForbiddenError, InvalidInputError
from hira.models import db
from hira.models.audit import AuditLog
from hira.models.hira import Assessment, WorksheetRow

COMPANY_ID = 1

_ANSWER = {
    "hazards": ["Falling objects"],
    "description": ["Tools dropped from the roof"],
    "controls": ["Exclusion zone below"],
    "recommendations": ["Use tool lanyards"],
    "routine": ["Non-Routine"],
    "likelihood": [2],
    "consequence": [4],
    "significant": ["Not Significant"],
    "confidence": 0.9,
}


class _ScriptedProvider(LLMProvider):
    """Returns a fixed answer, running ``before`` first to simulate concurrent activity."""

    def __init__(self, before=None, content=None):
        self.before = before
        self.content = content or json.dumps(_ANSWER)
        self.calls = 0

    def chat(self, messages, model, **kwargs):
        self.calls += 1
        if self.before:
            self.before()
        return {"content": self.content, "prompt_tokens": 1, "completion_tokens": 1,
                "model": model}


class _FailingProvider(LLMProvider):
    def chat(self, messages, model, **kwargs):
        raise ConnectionError("upstream timeout")


def _use(app, provider):
    get_gateway(app).register_provider("local", provider)
    return provider


def _reload(assessment):
    db.session.expire_all()
    return db.session.get(Assessment, assessment.id)


# ═════════════════════════════════════════════════════════════════════════
# PARSING
# ═════════════════════════════════════════════════════════════════════════


class TestParsing:

    @pytest.mark.parametrize("text", [
        '```json\n{"a": 1}\n```',
        '```\n{"a": 1}\n```',
        '  {"a": 1}  ',
        '```JSON {"a": 1}```',
    ])
    def test_strip_fences(self, text):
        assert json.loads(strip_json_fences(text)) == {"a": 1}

    def test_parse_valid(self):
        suggestions, fallback = parse_suggestions("```json\n" + json.dumps(_ANSWER) + "\n```")
        assert fallback is False
        assert suggestions["hazards"] == ["Falling objects"]
        assert suggestions["confidence"] == 0.9

    def test_scalars_become_lists(self):
        suggestions, _ = parse_suggestions('{"hazards": "Noise", "likelihood": 3}')
        assert suggestions["hazards"] == ["Noise"]
        assert suggestions["likelihood"] == [3]
        assert suggestions["controls"] == []
        assert suggestions["confidence"] == 0.0

    @pytest.mark.parametrize("text", ["I think the hazards are...", "[1, 2]", "", None])
    def test_unparseable_falls_back(self, text):
        suggestions, fallback = parse_suggestions(text)
        assert fallback is True
        assert suggestions == DEFAULT_SUGGESTIONS
        assert suggestions is not DEFAULT_SUGGESTIONS

    def test_prompt_lists_existing_hazards(self):
        prompt = build_prompt("Welding", "Fabrication", ["Burns", "", "Fumes"])
        assert "Existing identified hazards: Burns, Fumes" in prompt
        assert "None identified yet" in build_prompt("Welding", "Fabrication")


# ═════════════════════════════════════════════════════════════════════════
# GATEWAY
# ═════════════════════════════════════════════════════════════════════════


class TestGateway:

    def test_local_stub(self, app):
        result = get_gateway(app).chat(
            [{"role": "user", "content": "Task: Work at height on the roof"}],
            purpose="test",
        )
        assert result["provider"] == "local"
        suggestions, fallback = parse_suggestions(result["content"])
        assert fallback is False
        assert suggestions["hazards"] == ["Fall from height"]
        assert suggestions["significant"] == ["Significant"]

    def test_missing_provider_falls_back_to_stub(self, app):
        gw = LLMGateway(app=app)
        result = gw.chat([{"role": "user", "content": "lift boxes"}], model="gemini-2.5-flash")
        assert result["provider"] == "local"

    def test_failure_raises_after_retries(self, app):
        gw = LLMGateway(app=app)
        gw.register_provider("local", _FailingProvider())
        with pytest.raises(RuntimeError):
            gw.chat([{"role": "user", "content": "x"}], max_retries=1)

    def test_gateway_cached_per_app(self, app):
        assert get_gateway(app) is get_gateway(app)


# ═════════════════════════════════════════════════════════════════════════
# REQUESTS
# ═════════════════════════════════════════════════════════════════════════


class TestRequestSuggestions:

    def test_stores_suggestions(self, app, make_assessment, users):
        _use(app, _ScriptedProvider())
        a = make_assessment("in_progress")
        res = request_ai_suggestions(COMPANY_ID, a.id, users.lead, task_name="Roof work",
                                     activity_service="Maintenance",
                                     existing_hazards=["Fall from height"], row_index=0)
        assert res["stale"] is False
        assert res["fallback"] is False
        assert res["suggestions"]["hazards"] == ["Falling objects"]

        a = _reload(a)
        assert a.ai_suggestions["recommendations"] == ["Use tool lanyards"]
        assert "generated_at" in a.ai_suggestions
        log = AuditLog.query.filter_by(action="hira.ai_suggestions").one()
        assert log.diff["stale"] is False

    def test_without_row_index(self, app, make_assessment, users):
        _use(app, _ScriptedProvider())
        a = make_assessment("assigned")
        res = request_ai_suggestions(COMPANY_ID, a.id, users.member, task_name="Welding")
        assert res["row_index"] is None
        assert _reload(a).ai_suggestions is not None

    def test_gateway_failure_uses_defaults(self, app, make_assessment, users):
        _use(app, _FailingProvider())
        a = make_assessment("in_progress")
        res = request_ai_suggestions(COMPANY_ID, a.id, users.lead, task_name="Roof work")
        assert res["fallback"] is True
        assert res["suggestions"]["hazards"] == DEFAULT_SUGGESTIONS["hazards"]

    def test_unparseable_answer_uses_defaults(self, app, make_assessment, users):
        _use(app, _ScriptedProvider(content="Sorry, I can't help with that."))
        a = make_assessment("in_progress")
        res = request_ai_suggestions(COMPANY_ID, a.id, users.lead, task_name="Roof work")
        assert res["fallback"] is True
        assert res["suggestions"]["likelihood"] == [3]

    def test_outsider_forbidden(self, app, make_assessment, users):
        provider = _use(app, _ScriptedProvider())
        a = make_assessment("in_progress")
        with pytest.raises(ForbiddenError):
            request_ai_suggestions(COMPANY_ID, a.id, users.outsider, task_name="Roof work")
        assert provider.calls == 0

    def test_not_while_frozen(self, app, make_assessment, users):
        a = make_assessment("approved")
        with pytest.raises(ForbiddenError):
            request_ai_suggestions(COMPANY_ID, a.id, users.lead, task_name="Roof work")

    @pytest.mark.parametrize("kwargs", [
        {"task_name": "  "},
        {"task_name": "Roof", "existing_hazards": "Falls"},
        {"task_name": "Roof", "row_index": "0"},
        {"task_name": "Roof", "row_index": 4},
    ])
    def test_invalid_input(self, app, make_assessment, users, kwargs):
        _use(app, _ScriptedProvider())
        a = make_assessment("in_progress")
        with pytest.raises(InvalidInputError):
            request_ai_suggestions(COMPANY_ID, a.id, users.lead, **kwargs)


class TestStaleResponses:

    def test_row_edited_mid_flight_is_discarded(self, app, make_assessment, users):
        a = make_assessment("in_progress")
        row_id = a.worksheet_rows[0].id

        def _edit_row():
            row = db.session.get(WorksheetRow, row_id)
            row.hazard_concern = "Noise"
            db.session.commit()

        _use(app, _ScriptedProvider(before=_edit_row))
        res = request_ai_suggestions(COMPANY_ID, a.id, users.lead, task_name="Roof work",
                                     row_index=0)
        assert res["stale"] is True
        assert res["suggestions"] is None
        a = _reload(a)
        assert a.ai_suggestions is None
        assert a.worksheet_rows[0].hazard_concern == "Noise"

    def test_row_removed_mid_flight_is_discarded(self, app, make_assessment, users, row_data):
        a = make_assessment("in_progress", rows=[row_data(task_name="A"), row_data(task_name="B")])
        row_id = a.worksheet_rows[1].id

        def _remove_row():
            db.session.delete(db.session.get(WorksheetRow, row_id))
            db.session.commit()

        _use(app, _ScriptedProvider(before=_remove_row))
        res = request_ai_suggestions(COMPANY_ID, a.id, users.lead, task_name="B", row_index=1)
        assert res["stale"] is True

    def test_cancelled_request_is_discarded(self, app, make_assessment, users):
        a = make_assessment("in_progress")
        cancelled = []
        _use(app, _ScriptedProvider(
            before=lambda: cancelled.append(get_tracker(app).cancel(a.id, 0))))

        res = request_ai_suggestions(COMPANY_ID, a.id, users.lead, task_name="Roof work",
                                     row_index=0)
        assert cancelled == [True]
        assert res["stale"] is True
        assert _reload(a).ai_suggestions is None

    def test_unrelated_action_field_edit_is_not_stale(self, app, make_assessment, users):
        a = make_assessment("in_progress")
        row_id = a.worksheet_rows[0].id

        def _edit_remarks():
            db.session.get(WorksheetRow, row_id).remarks = "checked"
            db.session.commit()

        _use(app, _ScriptedProvider(before=_edit_remarks))
        res = request_ai_suggestions(COMPANY_ID, a.id, users.lead, task_name="Roof work",
                                     row_index=0)
        assert res["stale"] is False

    def test_cancel_without_pending_request(self, app):
        assert get_tracker(app).cancel(1, 0) is False


# ═════════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═════════════════════════════════════════════════════════════════════════


def _headers(user):
    return {"X-User-Id": str(user.id)}


class TestEndpoints:

    def test_request(self, client, make_assessment, users):
        a = make_assessment("in_progress")
        res = client.post(f"/api/v1/hira/1/{a.id}/ai-suggestions", headers=_headers(users.lead),
                          json={"task_name": "Electrical panel maintenance", "row_index": 0})
        assert res.status_code == 200
        data = res.get_json()
        assert data["suggestions"]["hazards"] == ["Electric shock"]
        assert data["stale"] is False

    def test_request_forbidden(self, client, make_assessment, users):
        a = make_assessment("in_progress")
        res = client.post(f"/api/v1/hira/1/{a.id}/ai-suggestions",
                          headers=_headers(users.outsider), json={"task_name": "Roof"})
        assert res.status_code == 403

    def test_cancel(self, client, make_assessment, users):
        a = make_assessment("in_progress")
        res = client.delete(f"/api/v1/hira/1/{a.id}/ai-suggestions/0",
                            headers=_headers(users.lead))
        assert res.status_code == 200
        assert res.get_json() == {"cancelled": False}

    def test_cancel_unknown_assessment(self, client, users):
        res = client.delete("/api/v1/hira/1/9999/ai-suggestions/0",
                            headers=_headers(users.lead))
        assert res.status_code == 404
