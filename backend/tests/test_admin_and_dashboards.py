# backend/tests/test_admin_and_dashboards.py
from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from app.domain.lifecycle import Role
from app.main import create_app
from app.services.dashboards import AdminDashboard, AgentDashboard, CustomerDashboard, dashboard_for
from app.services.lifecycle_service import AppraisalLifecycle

from conftest import FakeRenderer, dev_headers, unique_email


@pytest.fixture()
def client():
    app = create_app()
    app.state.report_renderer = FakeRenderer()
    app.state.valuation_trigger = None
    return TestClient(app)


def test_dashboard_selected_by_role():
    assert isinstance(dashboard_for(Role.customer), CustomerDashboard)
    assert isinstance(dashboard_for(Role.agent), AgentDashboard)
    assert isinstance(dashboard_for(Role.admin), AdminDashboard)


def test_customer_dashboard_counts_own_appraisals(db, make_actor):
    customer, other = make_actor("customer"), make_actor("customer")
    engine = AppraisalLifecycle(db)
    a = engine.create(customer, property_address="1 Dash St")
    engine.create(customer, property_address="2 Dash St")
    engine.submit(customer, a.id)
    engine.create(other, property_address="3 Dash St")

    data = dashboard_for(Role.customer).build(db, customer.id)
    assert data["role"] == "customer"
    assert data["appraisals_by_status"]["draft"] == 1
    assert data["appraisals_by_status"]["processing"] == 1
    assert sum(data["appraisals_by_status"].values()) == 2
    assert len(data["recent_appraisals"]) == 2


def test_agent_dashboard_counts_claims(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = engine.create(customer, property_address="4 Dash St")
    engine.submit(customer, row.id)
    engine.record_valuation(admin, row.id, estimated_value_min=1, estimated_value_max=2)
    engine.publish(admin, row.id)
    engine.claim(agent, row.id)

    data = dashboard_for(Role.agent).build(db, agent.id)
    assert (data["claimed"], data["completed"]) == (1, 0)
    assert [r["id"] for r in data["recent_claims"]] == [row.id]


def test_dashboard_endpoint_uses_callers_role(client):
    r = client.get("/api/dashboard", headers=dev_headers(unique_email("dash-admin"), "admin"))
    assert r.status_code == 200
    body = r.json()
    assert body["role"] == "admin"
    assert set(body["users_by_role"]) == {"customer", "agent", "admin"}


def test_admin_routes_require_admin(client):
    customer = dev_headers(unique_email("nosy"), "customer")
    assert client.get("/api/admin/users", headers=customer).status_code == 403
    assert client.get("/api/admin/audit", headers=customer).status_code == 403


def test_admin_changes_role_and_it_is_audited(client):
    admin = dev_headers(unique_email("root"), "admin")
    user_email = unique_email("promote-me")
    me = client.get("/api/auth/me", headers=dev_headers(user_email, "customer")).json()

    r = client.patch(f"/api/admin/users/{me['user_id']}/role", json={"role": "agent"}, headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["role"] == "agent"

    # the role is re-read from the profile on the next request
    assert client.get("/api/auth/me", headers=dev_headers(user_email, "customer")).json()["role"] == "agent"

    audit = client.get(
        "/api/admin/audit",
        params={"entity_id": me["user_id"], "action": "profile_role_changed"},
        headers=admin,
    ).json()
    assert len(audit) == 1
    assert json.loads(audit[0]["before_json"]) == {"role": "customer"}
    assert json.loads(audit[0]["after_json"]) == {"role": "agent"}

    r = client.patch(f"/api/admin/users/{me['user_id']}/role", json={"role": "owner"}, headers=admin)
    assert r.status_code == 403
    r = client.patch("/api/admin/users/nobody/role", json={"role": "agent"}, headers=admin)
    assert r.status_code == 404
