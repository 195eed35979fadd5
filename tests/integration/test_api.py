"""HTTP API tests."""

import pytest
from fastapi.testclient import TestClient

from reqflow.api.main import create_app
from reqflow.core.rbac import Role
from tests.factories import make_actor, requisition_payload

pytestmark = [pytest.mark.integration]


def _headers(actor):
    return {
        "X-Actor-Id": str(actor.id),
        "X-Actor-Role": actor.role.value,
        "X-Department-Id": str(actor.department_id),
    }


@pytest.fixture
def client(settings, session_factory, dispatcher):
    app = create_app(settings, session_factory=session_factory, dispatcher=dispatcher)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def rule(client, admin):
    response = client.post("/api/approval-rules", headers=_headers(admin), json={
        "name": "manager-then-finance",
        "max_amount": "1000",
        "steps": [{"role": "MANAGER"}, {"role": "FINANCE"}],
    })
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def submitted(client, rule, staff):
    created = client.post("/api/requisitions", headers=_headers(staff), json=requisition_payload())
    assert created.status_code == 201
    requisition_id = created.json()["id"]
    response = client.post(f"/api/requisitions/{requisition_id}/submit", headers=_headers(staff))
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestIdentity:
    """Actor headers are required."""

    def test_missing_headers(self, client):
        assert client.get("/api/requisitions").status_code == 401

    def test_unknown_role(self, client, staff):
        headers = {**_headers(staff), "X-Actor-Role": "intern"}
        assert client.get("/api/requisitions", headers=headers).status_code == 401


class TestRequisitionEndpoints:
    """Test the approval flow over HTTP."""

    def test_submit_creates_steps(self, submitted):
        assert submitted["status"] == "IN_APPROVAL"
        assert [(s["sequence"], s["required_role"]) for s in submitted["steps"]] == [
            (0, "MANAGER"), (1, "FINANCE"),
        ]

    def test_full_approval(self, client, submitted, manager, finance):
        url = f"/api/requisitions/{submitted['id']}"
        first, second = (s["id"] for s in submitted["steps"])

        response = client.post(f"{url}/approve", headers=_headers(manager), json={"step_id": first})
        assert response.status_code == 200
        assert response.json()["status"] == "IN_APPROVAL"

        response = client.post(f"{url}/approve", headers=_headers(finance),
                               json={"step_id": second, "comment": "ok"})
        assert response.json()["status"] == "APPROVED"

        response = client.post(f"{url}/payment", headers=_headers(finance), json={
            "actual_amount_paid": "500.00", "payment_method": "card",
        })
        assert response.json()["status"] == "PAID"

        trail = client.get(f"{url}/audit-trail", headers=_headers(finance), params={"action": "STATUS_CHANGED"})
        assert [(e["previous_value"], e["new_value"]) for e in trail.json()] == [
            ("DRAFT", "IN_APPROVAL"), ("IN_APPROVAL", "APPROVED"), ("APPROVED", "PAID"),
        ]

    def test_reject_requires_comment(self, client, submitted, manager):
        response = client.post(f"/api/requisitions/{submitted['id']}/reject", headers=_headers(manager),
                               json={"step_id": submitted["steps"][0]["id"]})
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_double_approve_conflicts(self, client, submitted, manager, admin):
        step_id = submitted["steps"][0]["id"]
        url = f"/api/requisitions/{submitted['id']}/approve"

        assert client.post(url, headers=_headers(manager), json={"step_id": step_id}).status_code == 200
        response = client.post(url, headers=_headers(admin), json={"step_id": step_id})
        assert response.status_code == 409
        assert response.json()["code"] == "not_pending"

    def test_step_id_required(self, client, submitted, manager):
        response = client.post(f"/api/requisitions/{submitted['id']}/approve", headers=_headers(manager))
        assert response.status_code == 422

    def test_repeated_admin_approve_stops_at_seen_step(self, client, submitted, admin):
        url = f"/api/requisitions/{submitted['id']}/approve"
        seen = {"step_id": submitted["steps"][0]["id"]}

        assert client.post(url, headers=_headers(admin), json=seen).status_code == 200
        assert client.post(url, headers=_headers(admin), json=seen).status_code == 409

        body = client.get(f"/api/requisitions/{submitted['id']}", headers=_headers(admin)).json()
        assert body["status"] == "IN_APPROVAL"
        assert [s["status"] for s in body["steps"]] == ["APPROVED", "PENDING"]

    def test_wrong_role_forbidden(self, client, submitted, finance):
        response = client.post(f"/api/requisitions/{submitted['id']}/approve", headers=_headers(finance),
                               json={"step_id": submitted["steps"][0]["id"]})
        assert response.status_code == 403

    def test_reject_all(self, client, submitted, admin):
        response = client.post(f"/api/requisitions/{submitted['id']}/reject-all", headers=_headers(admin),
                               json={"comment": "budget freeze"})
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "REJECTED"
        assert {s["status"] for s in body["steps"]} == {"REJECTED"}

    def test_no_matching_rule(self, client, rule, staff):
        created = client.post("/api/requisitions", headers=_headers(staff),
                              json=requisition_payload(amount="99999.00")).json()
        response = client.post(f"/api/requisitions/{created['id']}/submit", headers=_headers(staff))
        assert response.status_code == 422
        assert response.json()["code"] == "no_matching_rule"

    def test_not_found(self, client, staff):
        response = client.get(f"/api/requisitions/{make_actor().id}", headers=_headers(staff))
        assert response.status_code == 404

    def test_transitions(self, client, submitted, manager):
        response = client.get(f"/api/requisitions/{submitted['id']}/transitions", headers=_headers(manager))
        assert response.json()["transitions"] == ["advance", "reject"]

    def test_attachment_event(self, client, rule, staff):
        created = client.post("/api/requisitions", headers=_headers(staff), json=requisition_payload()).json()
        response = client.post(f"/api/requisitions/{created['id']}/attachments/events", headers=_headers(staff),
                               json={"event": "UPLOADED", "filename": "quote.pdf"})
        assert response.status_code == 202
        assert response.json()["action"] == "ATTACHMENT_UPLOADED"

    def test_listing_is_scoped(self, client, submitted, staff, manager):
        other = make_actor(Role.STAFF)
        assert client.get("/api/requisitions", headers=_headers(other)).json()["total"] == 0
        assert client.get("/api/requisitions", headers=_headers(staff)).json()["total"] == 1
        assert client.get("/api/requisitions", headers=_headers(manager)).json()["total"] == 1


class TestAdministrationEndpoints:
    """Test rule and audit endpoints."""

    def test_rules_are_admin_only(self, client, finance):
        assert client.get("/api/approval-rules", headers=_headers(finance)).status_code == 403

    def test_rule_lifecycle(self, client, rule, admin):
        url = f"/api/approval-rules/{rule['id']}"
        assert client.patch(url, headers=_headers(admin), json={"description": "two-step"}).json()[
            "description"] == "two-step"
        assert client.post(f"{url}/deactivate", headers=_headers(admin)).json()["is_active"] is False
        assert client.delete(url, headers=_headers(admin)).status_code == 204
        assert client.get(url, headers=_headers(admin)).status_code == 404

    def test_invalid_rule(self, client, admin):
        response = client.post("/api/approval-rules", headers=_headers(admin),
                               json={"name": "bad", "min_amount": "10", "max_amount": "5", "steps": [{"role": "ADMIN"}]})
        assert response.status_code == 422

    def test_global_audit_trail(self, client, submitted, staff, finance):
        assert client.get("/api/audit-trail", headers=_headers(staff)).status_code == 403

        body = client.get("/api/audit-trail", headers=_headers(finance)).json()
        assert body["total"] == len(body["items"]) == 2
        assert [e["action"] for e in body["items"]] == ["CREATED", "STATUS_CHANGED"]

    def test_audit_by_actor(self, client, submitted, staff, finance):
        entries = client.get(f"/api/audit-trail/by-actor/{staff.id}", headers=_headers(finance)).json()
        assert {e["actor_id"] for e in entries} == {str(staff.id)}
