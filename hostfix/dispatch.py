"""Background step runner.

HTTP handlers never run a pipeline step inline. They call dispatch_step(),
which records a durable step_runs row and hands the step to a daemon
thread, then return immediately. The step itself updates the record
store; the run row only tracks that it ran and how it ended.

On startup recover_orphaned_runs() picks up runs a dead process left
behind. Their entities are moved out of the in-flight status the dead
thread held (to failed, or onboarding for migrations) so the step's
claim succeeds again when it is re-dispatched.
"""

import logging
import os
import threading
from typing import Callable, Optional

from hostfix.deployments.poller import sweep_pending_deployments
from hostfix.fixes.pipeline import deploy_fix, generate_and_preview, triage_fix
from hostfix.fixes.schemas import FixStatus
from hostfix.projects.migration import run_migration
from hostfix.projects.schemas import ProjectStatus
from hostfix.store import records, step_runs
from hostfix.store.step_runs import StepKind, StepRunStatus

logger = logging.getLogger(__name__)

STEP_HANDLERS: dict[StepKind, Callable[[str], object]] = {
    StepKind.TRIAGE: triage_fix,
    StepKind.GENERATE: generate_and_preview,
    StepKind.DEPLOY: deploy_fix,
    StepKind.MIGRATE: run_migration,
}

# In-flight status each step holds while it runs, and where to put the
# entity if the thread died holding it.
INTERRUPTED: dict[StepKind, tuple[str, str, str]] = {
    StepKind.TRIAGE: ("fix_requests", FixStatus.TRIAGING, FixStatus.FAILED),
    StepKind.GENERATE: ("fix_requests", FixStatus.IN_PROGRESS, FixStatus.FAILED),
    StepKind.DEPLOY: ("fix_requests", FixStatus.DEPLOYING, FixStatus.FAILED),
    StepKind.MIGRATE: ("projects", ProjectStatus.MIGRATING, ProjectStatus.ONBOARDING),
}

DEPLOYMENT_POLL_SECONDS = int(os.environ.get("HOSTFIX_DEPLOYMENT_POLL_SECONDS", "30"))

# Thread-safe guard against double-execution of the same run in this process.
_active_runs: set[str] = set()
_active_runs_lock = threading.Lock()


def dispatch_step(kind: StepKind, entity_id: str) -> str:
    """Record a run for `kind` on `entity_id` and start it in the background. Returns the run id."""
    kind = StepKind(kind)
    run = step_runs.create_run(kind, entity_id)
    start_step_thread(run["id"])
    return run["id"]


def start_step_thread(run_id: str) -> threading.Thread:
    """Spawn a background thread to execute the run.

    Returns the thread (for testing). In production, the caller
    doesn't need to join; the thread updates the DB directly.
    """
    thread = threading.Thread(
        target=execute_run,
        args=(run_id,),
        name=f"step-{run_id}",
        daemon=True,
    )
    thread.start()
    logger.info(f"Started step thread for run {run_id}")
    return thread


def execute_run(run_id: str) -> None:
    """Run one recorded step. Never raises; the outcome lands on the run row."""
    with _active_runs_lock:
        if run_id in _active_runs:
            logger.warning(f"DUPLICATE EXECUTION BLOCKED: run {run_id} is already running")
            return
        _active_runs.add(run_id)

    try:
        run = step_runs.start_run(run_id)
        if run is None:
            logger.warning(f"Run {run_id} is not pending, not starting it")
            return

        kind = StepKind(run["kind"])
        logger.info(f"Run {run_id}: {kind.value} for {run['entity_id']} (attempt {run['attempts']})")
        outcome = STEP_HANDLERS[kind](run["entity_id"])

        if getattr(outcome, "success", True) is False:
            step_runs.finish_run(run_id, StepRunStatus.FAILED, error=getattr(outcome, "error", None))
        else:
            step_runs.finish_run(run_id, StepRunStatus.COMPLETED)

    except Exception as e:
        logger.error(f"Run {run_id} failed: {e}", exc_info=True)
        step_runs.finish_run(run_id, StepRunStatus.FAILED, error=str(e))

    finally:
        with _active_runs_lock:
            _active_runs.discard(run_id)


def recover_orphaned_runs() -> int:
    """Re-dispatch runs left pending/running by a previous process. Returns the count."""
    orphaned = step_runs.reset_orphaned_runs()
    for run in orphaned:
        _release_entity(StepKind(run["kind"]), run["entity_id"])
        start_step_thread(run["id"])
    if orphaned:
        logger.info(f"Recovered {len(orphaned)} orphaned step runs")
    return len(orphaned)


def _release_entity(kind: StepKind, entity_id: str) -> None:
    table, held, released = INTERRUPTED[kind]
    fields = {"status": released}
    if table == "fix_requests":
        fields["error_log"] = f"{kind.value} was interrupted by a restart and has been restarted"
    if records.update_if(table, entity_id, fields, status=held):
        logger.warning(f"Released {table} {entity_id} from interrupted {kind.value}")


# --- Deployment reconciliation sweep ---

_sweep_stop = threading.Event()


def start_deployment_sweep(interval: Optional[int] = None) -> Optional[threading.Thread]:
    """Poll non-terminal deployments every `interval` seconds in a daemon thread (0 disables)."""
    interval = DEPLOYMENT_POLL_SECONDS if interval is None else interval
    if interval <= 0:
        logger.info("Deployment sweep disabled")
        return None

    _sweep_stop.clear()

    def _loop():
        while not _sweep_stop.wait(interval):
            try:
                sweep_pending_deployments()
            except Exception as e:
                logger.error(f"Deployment sweep failed: {e}", exc_info=True)

    thread = threading.Thread(target=_loop, name="deployment-sweep", daemon=True)
    thread.start()
    logger.info(f"Started deployment sweep (every {interval}s)")
    return thread


def stop_deployment_sweep() -> None:
    _sweep_stop.set()
