"""Shared fixtures.

Every test gets:
- a fresh SQLite record store in tmp_path
- in-memory fakes installed as the GitHub / Vercel / AI / Stripe singletons
- inline step dispatch: dispatch_step() runs the step synchronously, so a
  call that would start a background thread has finished when it returns
"""

import os

os.environ.setdefault("HOSTFIX_DEPLOYMENT_POLL_SECONDS", "0")

import pytest

from hostfix import dispatch
from hostfix.integrations import ai, github, payments, vercel
from hostfix.projects.schemas import ProjectStatus
from hostfix.store import db, records

from fakes import FakeAI, FakeHosting, FakePayments, FakeSourceControl

SOURCE_REPO = "lowcoder/landing-page"
MANAGED_REPO = "hostfix-managed/landing-page-hosted"
INDEX_FILE = "src/pages/Index.tsx"


@pytest.fixture(autouse=True)
def store(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DATABASE_URL", "")
    monkeypatch.setattr(db, "SQLITE_PATH", tmp_path / "hostfix-test.db")
    monkeypatch.setattr(db, "_initialized", False)
    db.init_db()
    yield db


@pytest.fixture(autouse=True)
def inline_dispatch(monkeypatch):
    monkeypatch.setattr(dispatch, "start_step_thread", lambda run_id: dispatch.execute_run(run_id))


@pytest.fixture
def source_control(monkeypatch):
    fake = FakeSourceControl()
    fake.add_repo(SOURCE_REPO, {INDEX_FILE: "export default () => <h1>Hello</h1>;\n", "package.json": "{}"})
    fake.add_repo(MANAGED_REPO, {INDEX_FILE: "export default () => <h1>Hello</h1>;\n", "package.json": "{}"})
    monkeypatch.setattr(github, "_github", fake)
    return fake


@pytest.fixture
def hosting(monkeypatch):
    fake = FakeHosting()
    monkeypatch.setattr(vercel, "_vercel", fake)
    return fake


@pytest.fixture
def ai_model(monkeypatch):
    fake = FakeAI()
    monkeypatch.setattr(ai, "_ai", fake)
    return fake


@pytest.fixture
def stripe_fake(monkeypatch):
    fake = FakePayments()
    monkeypatch.setattr(payments, "_payments", fake)
    return fake


@pytest.fixture
def fakes(source_control, hosting, ai_model, stripe_fake):
    return {"github": source_control, "vercel": hosting, "ai": ai_model, "payments": stripe_fake}


@pytest.fixture
def user():
    return records.insert("users", {
        "external_auth_id": "auth|alice",
        "email": "alice@example.com",
        "full_name": "Alice",
        "fix_count": 0,
    })


@pytest.fixture
def other_user():
    return records.insert("users", {
        "external_auth_id": "auth|bob",
        "email": "bob@example.com",
        "fix_count": 0,
    })


@pytest.fixture
def project(user):
    """A migrated, hosted project."""
    return records.insert("projects", {
        "user_id": user["id"],
        "name": "Landing page",
        "status": ProjectStatus.ACTIVE,
        "github_repo_url": f"https://github.com/{SOURCE_REPO}",
        "github_repo_full_name": MANAGED_REPO,
        "default_branch": "main",
        "vercel_project_id": "prj_existing",
        "vercel_deployment_url": "https://landing-page.vercel.app",
        "subdomain": "landing",
    })


@pytest.fixture
def onboarding_project(user):
    return records.insert("projects", {
        "user_id": user["id"],
        "name": "New app",
        "status": ProjectStatus.ONBOARDING,
        "github_repo_url": f"https://github.com/{SOURCE_REPO}.git",
        "supabase_url": "https://abc.supabase.co",
        "supabase_anon_key": "anon-key",
    })
