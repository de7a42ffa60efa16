"""
Approval templates — API, persistence and approver resolution end-to-end.

Covers:
  • CRUD + activation through /api/v1/approval-templates
  • field / level replacement, scoped chains, in-flight protection
  • soft delete when requests exist
  • approver resolution against users / roles / user_roles
  • seed-approval-templates CLI
"""

import copy

import pytest

from orgadmin.core.exceptions import NotFoundError
from orgadmin.models import db
from orgadmin.models.approval import ApprovalFormField, ApprovalLevel, ApprovalLevelApprover, ApprovalTemplate
from orgadmin.models.auth import User
from orgadmin.services import approval_template_service as svc
from orgadmin.services.template_definition import LevelScope
from orgadmin.services.template_errors import TemplateInUseError
from orgadmin.services.template_store import SqlTemplateStore


API = "/api/v1/approval-templates"

LEAVE_FIELDS = [
    {"name": "Leave Type", "label": "Leave Type", "type": "select", "options": ["Annual", "Sick", "Other"]},
    {"name": "reason", "label": "Reason", "type": "textarea",
     "depends_on_field": "leave_type", "depends_on_value": "Other"},
]
SUPERVISOR_LEVEL = {"level_number": 1, "level_name": "Supervisor",
                    "approvers": [{"type": "requester_supervisor"}]}


def _post(client, url, data=None):
    return client.post(API + url, json=data if data is not None else {})


def _get(client, url=""):
    return client.get(API + url)


def _put(client, url, data=None):
    return client.put(API + url, json=data or {})


def _codes(res):
    return [e["code"] for e in res.get_json()["details"]["errors"]]


def _user(user_id):
    return db.session.get(User, user_id)


# ── fixtures ──

@pytest.fixture()
def template(client):
    res = _post(client, "", {
        "name": "Leave Request",
        "display_name": "Leave Request",
        "fields": LEAVE_FIELDS,
        "levels": [SUPERVISOR_LEVEL],
    })
    assert res.status_code == 201, res.get_json()
    return res.get_json()


@pytest.fixture()
def people(make_user):
    """boss ← alice (alice's first supervisor is boss); loner has no supervisor."""
    boss = make_user(full_name="Boss")
    alice = make_user(full_name="Alice", first_supervisor_id=boss.id)
    loner = make_user(full_name="Loner")
    return {"boss": boss.id, "alice": alice.id, "loner": loner.id}


# ═══════════════════════════════════════════════════════════════
#  Templates
# ═══════════════════════════════════════════════════════════════


class TestTemplateCRUD:
    def test_create_template(self, template):
        assert template["id"] is not None
        assert template["name"] == "leave_request"
        assert template["is_active"] is False
        assert template["color"] == "#4F46E5"
        assert template["default_sla_hours"] == 24
        assert [f["name"] for f in template["fields"]] == ["leave_type", "reason"]
        assert template["levels"][0]["approvers"] == [{"type": "requester_supervisor"}]

    def test_create_persists_child_rows(self, template):
        assert ApprovalFormField.query.filter_by(template_id=template["id"]).count() == 2
        level = ApprovalLevel.query.filter_by(template_id=template["id"]).one()
        approver = ApprovalLevelApprover.query.filter_by(level_id=level.id).one()
        assert approver.is_requester_supervisor is True

    def test_create_requires_json_object(self, client):
        res = client.post(API, data="nope", content_type="text/plain")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_invalid_returns_every_error(self, client):
        res = _post(client, "", {"name": "x y!", "display_name": "", "color": "pink"})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        assert _codes(res) == ["INVALID_INTERNAL_NAME", "EMPTY_DISPLAY_NAME", "INVALID_COLOR"]

    def test_duplicate_name_conflict(self, client, template):
        res = _post(client, "", {"name": "leave_request", "display_name": "Again"})
        assert res.status_code == 409
        assert _codes(res) == ["DUPLICATE_INTERNAL_NAME"]

    def test_list_and_get(self, client, template):
        res = _get(client)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert "fields" not in body["items"][0]

        res = _get(client, "?include_fields=true")
        assert len(res.get_json()["items"][0]["fields"]) == 2

        res = _get(client, f"/{template['id']}")
        assert res.status_code == 200
        assert res.get_json()["display_name"] == "Leave Request"

    def test_list_active_only(self, client, template):
        assert _get(client, "?active=true").get_json()["total"] == 0

    def test_get_missing(self, client):
        res = _get(client, "/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_update_metadata(self, client, template):
        res = _put(client, f"/{template['id']}", {"display_name": "Time Off", "color": "#14b8a6"})
        assert res.status_code == 200
        assert res.get_json()["display_name"] == "Time Off"
        assert res.get_json()["color"] == "#14B8A6"

    def test_update_cannot_rename(self, client, template):
        res = _put(client, f"/{template['id']}", {"name": "time_off"})
        assert res.status_code == 422
        assert _codes(res) == ["IMMUTABLE_INTERNAL_NAME"]
        assert db.session.get(ApprovalTemplate, template["id"]).name == "leave_request"


class TestActivation:
    def test_activate_and_deactivate(self, client, template):
        res = _post(client, f"/{template['id']}/activate")
        assert res.status_code == 200
        assert res.get_json()["is_active"] is True
        assert _get(client, "?active=true").get_json()["total"] == 1

        res = _post(client, f"/{template['id']}/deactivate")
        assert res.get_json()["is_active"] is False

    def test_activation_gate(self, client):
        tid = _post(client, "", {"name": "empty", "display_name": "Empty"}).get_json()["id"]
        res = _post(client, f"/{tid}/activate")
        assert res.status_code == 422
        assert _codes(res) == ["EMPTY_LEVEL_CHAIN"]

    def test_unstaffed_level_blocks_activation(self, client, template):
        _post(client, f"/{template['id']}/levels", [SUPERVISOR_LEVEL, {"level_name": "HR"}])
        res = _put(client, f"/{template['id']}", {"is_active": True})
        assert res.status_code == 422
        assert _codes(res) == ["EMPTY_APPROVER_SET"]


# ═══════════════════════════════════════════════════════════════
#  Fields & levels
# ═══════════════════════════════════════════════════════════════


class TestFields:
    def test_replace_fields(self, client, template):
        res = _post(client, f"/{template['id']}/fields", {"fields": [
            {"name": "destination", "label": "Destination"},
            {"name": "budget", "label": "Budget", "type": "number"},
        ]})
        assert res.status_code == 200
        assert [(f["name"], f["sort_order"]) for f in res.get_json()["fields"]] == [
            ("destination", 0), ("budget", 1),
        ]
        got = _get(client, f"/{template['id']}/fields").get_json()["fields"]
        assert [f["name"] for f in got] == ["destination", "budget"]

    def test_swapped_dependency_rejected(self, client, template):
        res = _post(client, f"/{template['id']}/fields", list(reversed(LEAVE_FIELDS)))
        assert res.status_code == 422
        assert _codes(res) == ["DANGLING_DEPENDENCY"]
        got = _get(client, f"/{template['id']}/fields").get_json()["fields"]
        assert [f["name"] for f in got] == ["leave_type", "reason"]

    def test_body_must_be_list(self, client, template):
        res = _post(client, f"/{template['id']}/fields", {"fields": "x"})
        assert res.status_code == 400

    def test_in_flight_requests_block_edits(self, client, template, people, make_request):
        make_request(template["id"], _user(people["alice"]))
        res = _post(client, f"/{template['id']}/fields", [])
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_finished_requests_do_not_block(self, client, template, people, make_request):
        make_request(template["id"], _user(people["alice"]), status="approved")
        res = _post(client, f"/{template['id']}/fields", [])
        assert res.status_code == 200


class TestLevels:
    def test_replace_levels_sorts_by_number(self, client, template, people):
        res = _post(client, f"/{template['id']}/levels", [
            {"level_number": 2, "level_name": "Boss", "approvers": [{"user_id": people["boss"]}]},
            {"level_number": 1, "level_name": "Supervisor", "approvers": [{"is_requester_supervisor": True}]},
        ])
        assert res.status_code == 200
        assert [lvl["level_name"] for lvl in res.get_json()["levels"]] == ["Supervisor", "Boss"]

    def test_gap_rejected(self, client, template):
        res = _post(client, f"/{template['id']}/levels", [
            {"level_number": 1, "level_name": "A"},
            {"level_number": 3, "level_name": "C"},
        ])
        assert res.status_code == 422
        assert _codes(res) == ["NON_CONTIGUOUS_LEVEL_NUMBERS"]

    def test_mixed_approvers_rejected(self, client, template, people):
        res = _post(client, f"/{template['id']}/levels", [{
            "level_name": "A",
            "approvers": [{"type": "requester_supervisor"}, {"user_id": people["boss"]}],
        }])
        assert res.status_code == 422
        assert _codes(res) == ["MIXED_APPROVER_KINDS"]

    def test_unknown_user_rejected(self, client, template):
        res = _post(client, f"/{template['id']}/levels", [
            {"level_name": "A", "approvers": [{"user_id": 4242}]},
        ])
        assert res.status_code == 422
        assert _codes(res) == ["UNKNOWN_REFERENCE"]

    def test_scoped_chain_and_fallback(self, client, template, people):
        res = _post(client, f"/{template['id']}/levels?project_id=5", [
            {"level_name": "Project Lead", "approvers": [{"user_id": people["boss"]}]},
        ])
        assert res.status_code == 200
        assert res.get_json()["scope"] == {"project_id": 5, "cohort_id": None}

        own = _get(client, f"/{template['id']}/levels?project_id=5").get_json()
        assert own["inherited"] is False
        assert own["levels"][0]["level_name"] == "Project Lead"

        other = _get(client, f"/{template['id']}/levels?project_id=6").get_json()
        assert other["inherited"] is True
        assert other["levels"][0]["level_name"] == "Supervisor"

        # the global chain is untouched by the scoped write
        assert _get(client, f"/{template['id']}/levels").get_json()["levels"][0]["level_name"] == "Supervisor"

    def test_bad_scope_param(self, client, template):
        res = _get(client, f"/{template['id']}/levels?project_id=abc")
        assert res.status_code == 400


# ═══════════════════════════════════════════════════════════════
#  Delete
# ═══════════════════════════════════════════════════════════════


class TestDelete:
    def test_hard_delete(self, client, template):
        res = client.delete(f"{API}/{template['id']}")
        assert res.status_code == 200
        assert res.get_json() == {"deleted": True, "deactivated": False}
        assert _get(client, f"/{template['id']}").status_code == 404
        assert ApprovalFormField.query.count() == 0
        assert ApprovalLevelApprover.query.count() == 0

    def test_soft_delete_when_requests_exist(self, client, template, people, make_request):
        _post(client, f"/{template['id']}/activate")
        make_request(template["id"], _user(people["alice"]), status="approved")
        res = client.delete(f"{API}/{template['id']}")
        assert res.get_json() == {"deleted": False, "deactivated": True}
        got = _get(client, f"/{template['id']}").get_json()
        assert got["is_active"] is False


# ═══════════════════════════════════════════════════════════════
#  Approver resolution
# ═══════════════════════════════════════════════════════════════


class TestResolveApprovers:
    def test_supervisor_resolution(self, client, template, people):
        res = _get(client, f"/{template['id']}/levels/1/approvers?requester_id={people['alice']}")
        assert res.status_code == 200
        body = res.get_json()
        assert body["user_ids"] == [people["boss"]]
        assert body["via_supervisor"] is True
        assert body["sla_hours"] == 24

    def test_no_supervisor(self, client, template, people):
        res = _get(client, f"/{template['id']}/levels/1/approvers?requester_id={people['loner']}")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_RESOLUTION"
        assert _codes(res) == ["NO_SUPERVISOR_AVAILABLE"]

    def test_role_members_filtered_to_approved_active(self, client, template, make_user, make_role, people):
        ok = make_user()
        pending = make_user(approval_status="PENDING")
        inactive = make_user(is_active=False)
        role = make_role("finance", members=[ok, pending, inactive])
        _post(client, f"/{template['id']}/levels", [
            SUPERVISOR_LEVEL,
            {"level_name": "Finance", "sla_hours": 8, "approvers": [{"type": "role", "role_id": role.id}]},
        ])
        res = _get(client, f"/{template['id']}/levels/2/approvers?requester_id={people['alice']}")
        assert res.status_code == 200
        assert res.get_json()["user_ids"] == [ok.id]
        assert res.get_json()["sla_hours"] == 8

    def test_empty_role_level_fails(self, client, template, make_role, people):
        role = make_role("nobody")
        _post(client, f"/{template['id']}/levels", [
            {"level_name": "Nobody", "approvers": [{"role_id": role.id}]},
        ])
        res = _get(client, f"/{template['id']}/levels/1/approvers?requester_id={people['alice']}")
        assert res.status_code == 422
        assert _codes(res) == ["ROLE_HAS_NO_MEMBERS"]

    def test_unknown_level(self, client, template, people):
        res = _get(client, f"/{template['id']}/levels/9/approvers?requester_id={people['alice']}")
        assert res.status_code == 404

    @pytest.mark.parametrize("query", ["", "?requester_id=", "?requester_id=bob"])
    def test_requester_id_required(self, client, template, query):
        res = _get(client, f"/{template['id']}/levels/1/approvers{query}")
        assert res.status_code == 400

    def test_scoped_resolution(self, client, template, people, make_user):
        lead = make_user(full_name="Cohort Lead")
        _post(client, f"/{template['id']}/levels?cohort_id=3", [
            {"level_name": "Cohort Lead", "approvers": [{"user_id": lead.id}]},
        ])
        res = _get(client, f"/{template['id']}/levels/1/approvers?requester_id={people['alice']}&cohort_id=3")
        assert res.get_json()["user_ids"] == [lead.id]


# ═══════════════════════════════════════════════════════════════
#  Store & service
# ═══════════════════════════════════════════════════════════════


class TestStoreRoundTrip:
    def test_scoped_chains_survive_reload(self, client, template, people):
        svc.replace_levels(
            template["id"],
            [{"level_name": "Lead", "sla_hours": 4, "escalate_after_hours": 2,
              "escalate_to_user_id": people["boss"], "approvers": [{"user_id": people["boss"]}]}],
            scope=LevelScope(project_id=1, cohort_id=2),
        )
        db.session.expire_all()
        loaded = SqlTemplateStore().load(template["id"])
        chain = loaded.scoped_levels[LevelScope(project_id=1, cohort_id=2)]
        assert chain[0].escalate_to_user_id == people["boss"]
        assert loaded.effective_sla_hours(chain[0]) == 4
        assert loaded.fields[1].depends_on_field == "leave_type"

    def test_replacing_fields_twice_reuses_names(self, client, template):
        svc.replace_fields(template["id"], LEAVE_FIELDS)
        svc.replace_fields(template["id"], LEAVE_FIELDS)
        assert ApprovalFormField.query.filter_by(template_id=template["id"]).count() == 2


class TestModelSerialization:
    def test_rows_serialize(self, template, people, make_role, make_request):
        row = db.session.get(ApprovalTemplate, template["id"])
        assert row.to_dict()["name"] == "leave_request"
        assert [f.to_dict()["name"] for f in row.form_fields] == ["leave_type", "reason"]
        level = row.levels[0].to_dict()
        assert level["approvers"][0]["type"] == "requester_supervisor"

        req = make_request(template["id"], _user(people["alice"])).to_dict()
        assert (req["status"], req["form_data"]) == ("pending", {})

        role = make_role("hr_admin", members=[_user(people["boss"])])
        assert role.to_dict()["display_name"] == "Hr Admin"
        assert _user(people["alice"]).to_dict()["first_supervisor_id"] == people["boss"]

class TestSeedCommand:
    def test_seed_is_idempotent(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-approval-templates"])
        assert "Seeded 1" in result.output
        result = runner.invoke(args=["seed-approval-templates"])
        assert "Seeded 0" in result.output
        assert ApprovalTemplate.query.filter_by(name="leave_request").count() == 1


class TestPagination:
    def test_limit_and_offset(self, client):
        for name in ("a", "b", "c"):
            _post(client, "", {"name": name, "display_name": name.upper()})
        body = _get(client, "?limit=2&offset=1").get_json()
        assert body["total"] == 3
        assert len(body["items"]) == 2


class TestAppFactory:
    def test_health(self, client):
        assert client.get("/api/v1/health").get_json() == {"status": "ok", "app": "orgadmin"}

    def test_unknown_api_path_is_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers


class TestMalformedPayloads:
    def test_non_list_options_is_unprocessable(self, client):
        res = _post(client, "", {"name": "x", "display_name": "X", "fields": [
            {"name": "kind", "label": "Kind", "type": "select", "options": 5},
        ]})
        assert res.status_code == 422
        assert _codes(res) == ["MISSING_OPTIONS_FOR_CHOICE_TYPE"]

    def test_non_list_levels_is_unprocessable(self, client):
        res = _post(client, "", {"name": "x", "display_name": "X", "levels": 5})
        assert res.status_code == 422
        assert _codes(res) == ["LEVEL_INVALID"]

    def test_non_list_approvers_is_unprocessable(self, client):
        res = _post(client, "", {"name": "x", "display_name": "X",
                                 "levels": [{"level_name": "L", "approvers": 7}]})
        assert res.status_code == 422
        assert _codes(res) == ["INVALID_APPROVER"]

    def test_string_flags_are_read_as_words(self, client, template):
        res = _post(client, f"/{template['id']}/fields", [
            {"name": "note", "label": "Note", "is_required": "false"},
        ])
        assert res.get_json()["fields"][0]["is_required"] is False

        _post(client, f"/{template['id']}/activate")
        res = _put(client, f"/{template['id']}", {"is_active": "false"})
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False

    def test_unreadable_flag_is_unprocessable(self, client, template):
        res = _put(client, f"/{template['id']}", {"is_active": "soon"})
        assert res.status_code == 422
        assert _codes(res) == ["INVALID_FLAG"]


class InMemoryTemplateStore:
    """Dict-backed TemplateStore; requests are (template_id, status) pairs."""

    def __init__(self):
        self.templates = {}
        self.requests = []

    def load(self, template_id):
        if template_id not in self.templates:
            raise NotFoundError("ApprovalTemplate", template_id)
        return copy.deepcopy(self.templates[template_id])

    def save(self, definition):
        if definition.id is None:
            definition.id = len(self.templates) + 1
        self.templates[definition.id] = copy.deepcopy(definition)
        return definition

    def exists_by_internal_name(self, name):
        return any(t.internal_name == name for t in self.templates.values())

    def list(self, active_only=False):
        return [copy.deepcopy(t) for t in self.templates.values() if t.is_active or not active_only]

    def count_requests(self, template_id, in_flight_only=False):
        return sum(
            1 for tid, status in self.requests
            if tid == template_id and (not in_flight_only or status in ("pending", "in_progress"))
        )

    def has_in_flight_requests(self, template_id):
        return self.count_requests(template_id, in_flight_only=True) > 0

    def delete(self, template_id):
        self.load(template_id)
        del self.templates[template_id]


class TestServiceOverStoreInterface:
    @pytest.fixture()
    def store(self, monkeypatch):
        fake = InMemoryTemplateStore()
        monkeypatch.setattr(svc, "_store", fake)
        return fake

    def test_create_list_and_delete(self, store):
        created = svc.create_template({"name": "Expense Claim", "display_name": "Expense Claim",
                                       "levels": [SUPERVISOR_LEVEL]})
        assert store.exists_by_internal_name("expense_claim")
        assert [t["name"] for t in svc.list_templates()] == ["expense_claim"]

        assert svc.delete_template(created["id"]) == {"deleted": True, "deactivated": False}
        assert store.templates == {}

    def test_in_flight_guard_and_soft_delete(self, store):
        tid = svc.create_template({"name": "trip", "display_name": "Trip"})["id"]
        store.requests.append((tid, "in_progress"))
        with pytest.raises(TemplateInUseError):
            svc.replace_fields(tid, LEAVE_FIELDS)
        assert svc.delete_template(tid) == {"deleted": False, "deactivated": True}
        assert tid in store.templates
