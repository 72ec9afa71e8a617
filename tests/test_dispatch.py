"""
Tests for the background step runner and restart recovery.

Dispatch runs inline here (see conftest), so a run has finished by the
time dispatch_step() returns.
"""

from datetime import datetime, timedelta

import pytest

from hostfix import dispatch
from hostfix.fixes.schemas import FixStatus
from hostfix.projects.schemas import ProjectStatus
from hostfix.store import records, step_runs
from hostfix.store.step_runs import StepKind, StepRunStatus


@pytest.fixture
def fix(user, project):
    return records.insert("fix_requests", {
        "project_id": project["id"],
        "user_id": user["id"],
        "description": "Change the hero heading to say Welcome",
        "status": FixStatus.SUBMITTED,
        "price_in_cents": 300,
    })


def test_dispatch_runs_step(fakes, fix):
    run_id = dispatch.dispatch_step(StepKind.TRIAGE, fix["id"])

    run = step_runs.get_run(run_id)
    assert run["status"] == StepRunStatus.COMPLETED
    assert run["completed_at"]
    assert records.get("fix_requests", fix["id"])["status"] == FixStatus.QUOTED


def test_run_that_raises_is_marked_failed(fakes):
    run_id = dispatch.dispatch_step(StepKind.TRIAGE, "no-such-fix")
    run = step_runs.get_run(run_id)
    assert run["status"] == StepRunStatus.FAILED
    assert "not found" in run["error"]


def test_finished_run_is_not_executed_again(fakes, fix):
    run_id = dispatch.dispatch_step(StepKind.TRIAGE, fix["id"])
    dispatch.execute_run(run_id)
    assert len(fakes["ai"].triage_calls) == 1
    assert step_runs.get_run(run_id)["attempts"] == 1


def test_recovery_releases_fix_and_reruns(fakes, fix):
    # Simulate a process that died mid-triage
    records.update("fix_requests", fix["id"], {"status": FixStatus.TRIAGING})
    run = step_runs.create_run(StepKind.TRIAGE, fix["id"])
    records.update("step_runs", run["id"], {"status": StepRunStatus.RUNNING, "attempts": 1})

    assert dispatch.recover_orphaned_runs() == 1

    assert records.get("fix_requests", fix["id"])["status"] == FixStatus.QUOTED
    recovered = step_runs.get_run(run["id"])
    assert recovered["status"] == StepRunStatus.COMPLETED
    assert recovered["attempts"] == 2


def test_recovery_returns_migrating_project_to_onboarding(fakes, onboarding_project):
    records.update("projects", onboarding_project["id"], {"status": ProjectStatus.MIGRATING})
    step_runs.create_run(StepKind.MIGRATE, onboarding_project["id"])

    dispatch.recover_orphaned_runs()

    assert records.get("projects", onboarding_project["id"])["status"] == ProjectStatus.ACTIVE


def test_nothing_to_recover():
    assert dispatch.recover_orphaned_runs() == 0


def test_stale_running_run_is_failed(fix):
    run = step_runs.create_run(StepKind.DEPLOY, fix["id"])
    started = (datetime.utcnow() - timedelta(hours=2)).isoformat()
    running = records.update("step_runs", run["id"], {"status": StepRunStatus.RUNNING, "started_at": started})

    stale = step_runs.check_stale_run(running)

    assert stale["status"] == StepRunStatus.FAILED
    assert "maximum runtime" in stale["error"]


def test_recent_run_is_not_stale(fix):
    run = step_runs.create_run(StepKind.DEPLOY, fix["id"])
    running = step_runs.start_run(run["id"])
    assert step_runs.check_stale_run(running) is None


def test_sweep_disabled_with_zero_interval():
    assert dispatch.start_deployment_sweep(0) is None
