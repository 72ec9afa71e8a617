"""Fix request routes.

Endpoints:
    GET  /v1/fixes/{id}            Fix detail (poll this for status)
    POST /v1/fixes/{id}/triage     Re-run triage (runs automatically on submit)
    POST /v1/fixes/{id}/confirm    Accept the quote; returns the payment client secret
    POST /v1/fixes/{id}/start      Start generation (normally started by the payment webhook)
    POST /v1/fixes/{id}/approve    Approve the preview; production deploy runs in the background
    POST /v1/fixes/{id}/reject     Discard the preview and its staging branch
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from hostfix.api.deps import get_current_user, http_error
from hostfix.dispatch import dispatch_step
from hostfix.errors import HostfixError
from hostfix.fixes import pipeline
from hostfix.fixes.schemas import ConfirmFixResponse
from hostfix.store import records, step_runs
from hostfix.store.step_runs import StepKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fixes", tags=["fixes"])


def _fix_or_404(fix_id: str, user: dict) -> dict:
    fix = records.get("fix_requests", fix_id)
    if fix is None or fix["user_id"] != user["id"]:
        raise HTTPException(status_code=404, detail="Fix request not found")
    return fix


@router.get("/{fix_id}")
async def get_fix(fix_id: str, user: dict = Depends(get_current_user)):
    fix = _fix_or_404(fix_id, user)
    fix["runs"] = step_runs.list_runs(entity_id=fix_id, limit=5)
    return fix


@router.post("/{fix_id}/triage", status_code=202)
async def triage_fix(fix_id: str, user: dict = Depends(get_current_user)):
    fix = _fix_or_404(fix_id, user)
    if fix["status"] not in pipeline.TRIAGE_FROM or fix.get("paid_at"):
        raise HTTPException(
            status_code=409,
            detail={"message": "Fix cannot be triaged again", "current_status": fix["status"]},
        )
    run_id = dispatch_step(StepKind.TRIAGE, fix_id)
    return {"message": "Triage started", "fix_id": fix_id, "run_id": run_id}


@router.post("/{fix_id}/confirm", response_model=ConfirmFixResponse)
def confirm_fix(fix_id: str, user: dict = Depends(get_current_user)):
    _fix_or_404(fix_id, user)
    try:
        return pipeline.confirm_fix(fix_id)
    except HostfixError as e:
        raise http_error(e) from e


@router.post("/{fix_id}/start", status_code=202)
async def start_fix(fix_id: str, user: dict = Depends(get_current_user)):
    fix = _fix_or_404(fix_id, user)
    try:
        pipeline.check_can_generate(fix)
    except HostfixError as e:
        raise http_error(e) from e
    run_id = dispatch_step(StepKind.GENERATE, fix_id)
    return {"message": "Fix generation started", "fix_id": fix_id, "run_id": run_id}


@router.post("/{fix_id}/approve")
async def approve_fix(fix_id: str, user: dict = Depends(get_current_user)):
    _fix_or_404(fix_id, user)
    try:
        return pipeline.approve_fix(fix_id)
    except HostfixError as e:
        raise http_error(e) from e


@router.post("/{fix_id}/reject")
def reject_fix(fix_id: str, user: dict = Depends(get_current_user)):
    _fix_or_404(fix_id, user)
    try:
        return pipeline.reject_fix(fix_id)
    except HostfixError as e:
        raise http_error(e) from e
