"""Background step run routes.

Endpoints:
    GET /v1/runs/{run_id}    Run status (marks runs that outlived MAX_RUN_SECONDS as failed)
"""

from fastapi import APIRouter, Depends, HTTPException

from hostfix.api.deps import get_current_user
from hostfix.store import records, step_runs
from hostfix.store.step_runs import StepKind

router = APIRouter(prefix="/runs", tags=["runs"])


def _owner_id(run: dict):
    if run["kind"] == StepKind.MIGRATE:
        entity = records.get("projects", run["entity_id"])
    else:
        entity = records.get("fix_requests", run["entity_id"])
    return entity["user_id"] if entity else None


@router.get("/{run_id}")
async def get_run(run_id: str, user: dict = Depends(get_current_user)):
    run = step_runs.get_run(run_id)
    if run is None or _owner_id(run) != user["id"]:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")

    stale = step_runs.check_stale_run(run)
    return stale or run
