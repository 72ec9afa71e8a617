"""Deployment routes.

Endpoints:
    GET  /v1/deployments/{id}            Deployment detail
    POST /v1/deployments/{id}/refresh    Poll the hosting provider now and reconcile
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from hostfix.api.deps import get_current_user, http_error
from hostfix.deployments.poller import poll_deployment
from hostfix.deployments.schemas import PollResult
from hostfix.errors import HostfixError
from hostfix.store import records

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deployments", tags=["deployments"])


def _deployment_or_404(deployment_id: str, user: dict) -> dict:
    deployment = records.get("deployments", deployment_id)
    project = records.get("projects", deployment["project_id"]) if deployment else None
    if project is None or project["user_id"] != user["id"]:
        raise HTTPException(status_code=404, detail="Deployment not found")
    return deployment


@router.get("/{deployment_id}")
async def get_deployment(deployment_id: str, user: dict = Depends(get_current_user)):
    return _deployment_or_404(deployment_id, user)


@router.post("/{deployment_id}/refresh", response_model=PollResult)
def refresh_deployment(deployment_id: str, user: dict = Depends(get_current_user)):
    _deployment_or_404(deployment_id, user)
    try:
        return poll_deployment(deployment_id)
    except HostfixError as e:
        raise http_error(e) from e
