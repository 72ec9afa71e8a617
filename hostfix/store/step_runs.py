"""Durable records of background step executions.

Every fire-and-forget step (triage, generation, deploy, migration, ...)
gets a step_runs row before its thread starts. If the process dies, the
row is still pending/running on the next startup and the step can be
dispatched again; steps recompute from persisted inputs so a re-run is
safe.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from hostfix.store import records

logger = logging.getLogger(__name__)

MAX_RUN_SECONDS = 60 * 60  # no single step should take an hour


class StepKind(str, Enum):
    """Background steps that can be dispatched."""
    TRIAGE = "triage"
    GENERATE = "generate"
    DEPLOY = "deploy"
    MIGRATE = "migrate"


class StepRunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def create_run(kind: str, entity_id: str) -> dict:
    """Insert a pending run and return it."""
    run = records.insert("step_runs", {
        "kind": kind,
        "entity_id": entity_id,
        "status": StepRunStatus.PENDING,
        "attempts": 0,
    })
    logger.info(f"Created step run {run['id']} ({run['kind']} for {entity_id})")
    return run


def get_run(run_id: str) -> Optional[dict]:
    return records.get("step_runs", run_id)


def start_run(run_id: str) -> Optional[dict]:
    """Claim a pending run for execution. None if someone else already has it."""
    run = records.claim(
        "step_runs", run_id, [StepRunStatus.PENDING], StepRunStatus.RUNNING,
        started_at=records.now_iso(), error=None, completed_at=None,
    )
    if run is not None:
        run = records.increment("step_runs", run_id, "attempts")
    return run


def finish_run(run_id: str, status: str, error: Optional[str] = None) -> None:
    status = StepRunStatus(status)
    records.update("step_runs", run_id, {
        "status": status,
        "error": error,
        "completed_at": records.now_iso(),
    })
    logger.info(f"Step run {run_id} status → {status.value}" + (f" (error: {error})" if error else ""))


def list_runs(entity_id: Optional[str] = None, limit: int = 20) -> list[dict]:
    if entity_id:
        return records.list_by("step_runs", entity_id=entity_id, limit=limit)
    return records.list_by("step_runs", limit=limit)


def reset_orphaned_runs() -> list[dict]:
    """Put runs that were pending/running when the process died back to pending.

    Returns the reset runs so the caller can dispatch them again.
    """
    orphaned = records.list_by(
        "step_runs", status=[StepRunStatus.PENDING, StepRunStatus.RUNNING], order_by="created_at ASC"
    )
    for run in orphaned:
        records.update("step_runs", run["id"], {
            "status": StepRunStatus.PENDING,
            "error": None,
            "started_at": None,
        })
        logger.warning(f"Recovered orphaned step run {run['id']} ({run['kind']}, was {run['status']})")
    return orphaned


def check_stale_run(run: dict) -> Optional[dict]:
    """Mark a running step as failed if it has exceeded MAX_RUN_SECONDS.

    Called from the polling endpoint. Returns the updated run if stale.
    """
    if run["status"] != StepRunStatus.RUNNING:
        return None

    started = run.get("started_at") or run.get("created_at")
    if not started:
        return None
    try:
        started_dt = datetime.fromisoformat(started)
    except (ValueError, TypeError):
        return None

    elapsed = (datetime.utcnow() - started_dt).total_seconds()
    if elapsed < MAX_RUN_SECONDS:
        return None

    finish_run(
        run["id"],
        StepRunStatus.FAILED,
        error=f"Step exceeded maximum runtime ({elapsed / 60:.0f} min). The worker thread likely died.",
    )
    return get_run(run["id"])
