"""
HTTP-level tests for the API routes.

The app is exercised without its lifespan (no sweep thread); the store
fixture has already created the tables.
"""

import json

import pytest
from fastapi.testclient import TestClient

from hostfix.api.main import app
from hostfix.fixes.schemas import FixStatus
from hostfix.projects.schemas import ProjectStatus
from hostfix.store import records

from fakes import FakePayments


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def auth(user):
    return {"X-User-Id": user["id"]}


class TestAuth:
    def test_missing_header(self, client):
        assert client.get("/v1/projects").status_code == 401

    def test_unknown_user(self, client):
        assert client.get("/v1/projects", headers={"X-User-Id": "nobody"}).status_code == 401

    def test_register_is_idempotent(self, client):
        body = {"external_auth_id": "auth|carol", "email": "carol@example.com", "full_name": "Carol"}
        first = client.post("/v1/auth/register", json=body)
        second = client.post("/v1/auth/register", json=body)

        assert first.status_code == 201
        assert second.status_code == 200
        assert first.json()["id"] == second.json()["id"]
        assert first.json()["fix_count"] == 0

    def test_register_email_taken(self, client, user):
        body = {"external_auth_id": "auth|other", "email": user["email"]}
        assert client.post("/v1/auth/register", json=body).status_code == 409

    def test_me(self, client, auth, user):
        assert client.get("/v1/auth/me", headers=auth).json()["email"] == user["email"]


class TestProjects:
    def test_create_without_repo_stays_onboarding(self, client, auth):
        resp = client.post("/v1/projects", json={"name": "Blank", "subdomain": "blank-app"}, headers=auth)
        assert resp.status_code == 201
        assert resp.json()["status"] == ProjectStatus.ONBOARDING

    def test_create_with_repo_migrates(self, client, auth, fakes):
        resp = client.post(
            "/v1/projects",
            json={"name": "Shop", "github_repo_url": "https://github.com/lowcoder/landing-page"},
            headers=auth,
        )
        assert resp.status_code == 201
        project = client.get(f"/v1/projects/{resp.json()['id']}", headers=auth).json()
        assert project["status"] == ProjectStatus.ACTIVE

    def test_subdomain_conflict(self, client, auth, project):
        resp = client.post("/v1/projects", json={"name": "Copy", "subdomain": "landing"}, headers=auth)
        assert resp.status_code == 409

    def test_invalid_subdomain_rejected(self, client, auth):
        resp = client.post("/v1/projects", json={"name": "Bad", "subdomain": "Not Valid!"}, headers=auth)
        assert resp.status_code == 422

    def test_check_subdomain(self, client, auth, project):
        taken = client.get("/v1/projects/check-subdomain/landing", headers=auth).json()
        free = client.get("/v1/projects/check-subdomain/something-new", headers=auth).json()
        invalid = client.get("/v1/projects/check-subdomain/ab", headers=auth).json()
        assert taken["available"] is False
        assert free["available"] is True
        assert invalid["reason"] == "invalid"

    def test_other_users_project_is_hidden(self, client, project, other_user):
        resp = client.get(f"/v1/projects/{project['id']}", headers={"X-User-Id": other_user["id"]})
        assert resp.status_code == 404

    def test_soft_delete(self, client, auth, project):
        assert client.delete(f"/v1/projects/{project['id']}", headers=auth).status_code == 200
        assert client.get(f"/v1/projects/{project['id']}", headers=auth).status_code == 404
        assert client.get("/v1/projects", headers=auth).json() == []
        assert records.get("projects", project["id"])["status"] == ProjectStatus.DELETED

    def test_update(self, client, auth, project):
        resp = client.put(f"/v1/projects/{project['id']}", json={"name": "Renamed"}, headers=auth)
        assert resp.json()["name"] == "Renamed"
        assert resp.json()["subdomain"] == "landing"

    def test_migrate_active_project_conflicts(self, client, auth, project):
        resp = client.post(f"/v1/projects/{project['id']}/migrate", headers=auth)
        assert resp.status_code == 409
        assert resp.json()["detail"]["current_status"] == ProjectStatus.ACTIVE

    def test_redeploy_suspended_project(self, client, auth, project):
        records.update("projects", project["id"], {"status": ProjectStatus.SUSPENDED})
        assert client.post(f"/v1/projects/{project['id']}/deployments", headers=auth).status_code == 409


class TestFixes:
    def test_fix_lifecycle(self, client, auth, project, fakes):
        resp = client.post(
            f"/v1/projects/{project['id']}/fixes",
            json={"description": "Change the hero heading to say Welcome"},
            headers=auth,
        )
        assert resp.status_code == 201
        fix_id = resp.json()["id"]

        fix = client.get(f"/v1/fixes/{fix_id}", headers=auth).json()
        assert fix["status"] == FixStatus.QUOTED
        assert fix["runs"][0]["kind"] == "triage"

        confirm = client.post(f"/v1/fixes/{fix_id}/confirm", headers=auth)
        assert confirm.status_code == 200
        assert confirm.json()["price_in_cents"] == 300
        assert confirm.json()["client_secret"] == "pi_1_secret"

        # Payment arrives through the webhook
        event = {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_1", "amount": 300, "metadata": {"type": "fix", "fix_request_id": fix_id}}},
        }
        hook = client.post(
            "/v1/webhooks/stripe",
            content=json.dumps(event),
            headers={"stripe-signature": FakePayments.WEBHOOK_SIGNATURE},
        )
        assert hook.json() == {"received": True, "handled": True}
        assert client.get(f"/v1/fixes/{fix_id}", headers=auth).json()["status"] == FixStatus.PREVIEW_READY

        approve = client.post(f"/v1/fixes/{fix_id}/approve", headers=auth)
        assert approve.status_code == 200
        assert approve.json()["status"] == FixStatus.APPROVED
        assert client.get(f"/v1/fixes/{fix_id}", headers=auth).json()["status"] == FixStatus.DEPLOYED

        stats = client.get(f"/v1/projects/{project['id']}/stats", headers=auth).json()
        assert stats["deployed_fixes"] == 1

    def test_short_description_rejected(self, client, auth, project):
        resp = client.post(f"/v1/projects/{project['id']}/fixes", json={"description": "too short"}, headers=auth)
        assert resp.status_code == 422

    def test_approve_wrong_state(self, client, auth, project, user):
        fix = records.insert("fix_requests", {
            "project_id": project["id"], "user_id": user["id"],
            "description": "Change the hero heading", "status": FixStatus.QUOTED,
        })
        resp = client.post(f"/v1/fixes/{fix['id']}/approve", headers=auth)
        assert resp.status_code == 409
        assert resp.json()["detail"]["current_status"] == FixStatus.QUOTED

    def test_start_unpaid_fix(self, client, auth, project, user):
        fix = records.insert("fix_requests", {
            "project_id": project["id"], "user_id": user["id"],
            "description": "Change the hero heading", "status": FixStatus.QUOTED,
        })
        assert client.post(f"/v1/fixes/{fix['id']}/start", headers=auth).status_code == 409

    def test_other_users_fix_is_hidden(self, client, project, user, other_user):
        fix = records.insert("fix_requests", {
            "project_id": project["id"], "user_id": user["id"],
            "description": "Change the hero heading", "status": FixStatus.QUOTED,
        })
        assert client.get(f"/v1/fixes/{fix['id']}", headers={"X-User-Id": other_user["id"]}).status_code == 404


class TestBillingAndWebhooks:
    def test_fix_price(self, client, auth):
        resp = client.get("/v1/billing/fix-price", headers=auth).json()
        assert resp == {
            "price_in_cents": 300,
            "price_formatted": "$3.00",
            "fix_count": 0,
            "is_promotional_rate": True,
        }

    def test_billing_status(self, client, auth):
        resp = client.get("/v1/billing/status", headers=auth).json()
        assert resp["has_active_subscription"] is False
        assert resp["promotional_fixes_remaining"] == 30

    def test_webhook_bad_signature(self, client, stripe_fake):
        resp = client.post("/v1/webhooks/stripe", content=b"{}", headers={"stripe-signature": "forged"})
        assert resp.status_code == 400

    def test_webhook_unhandled_type(self, client, stripe_fake):
        resp = client.post(
            "/v1/webhooks/stripe",
            content=json.dumps({"id": "evt_2", "type": "customer.created", "data": {"object": {}}}),
            headers={"stripe-signature": FakePayments.WEBHOOK_SIGNATURE},
        )
        assert resp.json() == {"received": True, "handled": False}


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "database": "ok"}


def test_run_status(client, auth, project, user, fakes):
    resp = client.post(
        f"/v1/projects/{project['id']}/fixes",
        json={"description": "Change the hero heading to say Welcome"},
        headers=auth,
    )
    fix = client.get(f"/v1/fixes/{resp.json()['id']}", headers=auth).json()
    run_id = fix["runs"][0]["id"]

    run = client.get(f"/v1/runs/{run_id}", headers=auth)
    assert run.status_code == 200
    assert run.json()["status"] == "completed"
