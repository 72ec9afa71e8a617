"""Deployment records and status reconciliation.

This is the only module that interprets the hosting provider's
`readyState` vocabulary. Orchestrators record a Deployment row through
record_deployment(); afterwards only poll_deployment() changes it.
"""

import logging
from typing import Optional

from hostfix.deployments.schemas import (
    TERMINAL_DEPLOYMENT_STATUSES,
    DeploymentStatus,
    PollResult,
)
from hostfix.errors import CapabilityError, InvalidStateError, NotFoundError
from hostfix.integrations.vercel import DeployHandle, get_vercel_client
from hostfix.projects.schemas import ProjectStatus
from hostfix.store import records

logger = logging.getLogger(__name__)

READY_STATE_MAP = {
    "READY": DeploymentStatus.READY,
    "ERROR": DeploymentStatus.ERROR,
    "CANCELED": DeploymentStatus.CANCELLED,
    "BUILDING": DeploymentStatus.BUILDING,
    "INITIALIZING": DeploymentStatus.BUILDING,
}

# A ready production build may (re)activate a project from these states only.
PROMOTABLE_PROJECT_STATUSES = [ProjectStatus.ONBOARDING, ProjectStatus.MIGRATING, ProjectStatus.ACTIVE]


def map_ready_state(ready_state: Optional[str]) -> DeploymentStatus:
    """Map a remote readyState onto DeploymentStatus. Unknown states count as queued."""
    return READY_STATE_MAP.get((ready_state or "").upper(), DeploymentStatus.QUEUED)


def record_deployment(
    project_id: str,
    handle: Optional[DeployHandle],
    branch: str,
    commit_message: Optional[str] = None,
    commit_hash: Optional[str] = None,
) -> dict:
    """Insert the Deployment row for a triggered build (handle=None: nothing was triggered)."""
    fields = {
        "project_id": project_id,
        "branch": branch,
        "commit_message": commit_message,
        "commit_hash": commit_hash,
        "status": DeploymentStatus.QUEUED,
    }
    if handle is not None:
        fields.update({
            "vercel_deployment_id": handle.id,
            "url": handle.url,
            "status": map_ready_state(handle.ready_state),
        })
    deployment = records.insert("deployments", fields)
    logger.info(
        f"Recorded deployment {deployment['id']} for project {project_id} "
        f"({branch}, {deployment['status']})"
    )
    return deployment


def poll_deployment(deployment_id: str) -> PollResult:
    """Fetch remote readiness for one Deployment row and reconcile it.

    A ready build of the project's default branch promotes the project to
    active with the build's URL. Preview builds never touch the project.
    A failed status fetch is reported in the result and nothing is written.
    """
    deployment = records.get("deployments", deployment_id)
    if deployment is None:
        raise NotFoundError(f"Deployment not found: {deployment_id}")
    if not deployment.get("vercel_deployment_id"):
        return PollResult(
            deployment_id=deployment_id,
            status=DeploymentStatus(deployment["status"]),
            url=deployment.get("url"),
        )

    try:
        remote = get_vercel_client().get_deployment(deployment["vercel_deployment_id"])
    except CapabilityError as e:
        logger.error(f"[poll] Error polling deployment {deployment['vercel_deployment_id']}: {e}")
        return PollResult(deployment_id=deployment_id, error=str(e))

    status = map_ready_state(remote.ready_state)
    url = remote.url or deployment.get("url")
    records.update("deployments", deployment_id, {
        "status": status,
        "url": url,
        "error_message": remote.error_message if status == DeploymentStatus.ERROR else None,
    })
    if status != deployment["status"]:
        logger.info(f"Deployment {deployment_id} status → {status.value}")

    if status == DeploymentStatus.READY and url:
        _promote_project(deployment["project_id"], deployment["branch"], url)

    return PollResult(deployment_id=deployment_id, status=status, url=url)


def _promote_project(project_id: str, branch: str, url: str) -> None:
    project = records.get("projects", project_id)
    if project is None or branch != (project.get("default_branch") or "main"):
        return
    promoted = records.update_if(
        "projects", project_id,
        {"vercel_deployment_url": url, "status": ProjectStatus.ACTIVE},
        status=PROMOTABLE_PROJECT_STATUSES,
    )
    if promoted:
        logger.info(f"Project {project_id} live at {url}")


def sweep_pending_deployments(limit: int = 50) -> list[PollResult]:
    """Poll every non-terminal deployment once."""
    pending = records.list_by(
        "deployments",
        exclude={"status": list(TERMINAL_DEPLOYMENT_STATUSES)},
        order_by="created_at ASC",
        limit=limit,
    )
    results = []
    for deployment in pending:
        if not deployment.get("vercel_deployment_id"):
            continue
        results.append(poll_deployment(deployment["id"]))
    if results:
        logger.info(f"Deployment sweep polled {len(results)} builds")
    return results


def redeploy(project: dict, message: str = "Manual redeploy triggered") -> dict:
    """Trigger a production build of the project's default branch and record it."""
    if not project.get("vercel_project_id") or not project.get("github_repo_full_name"):
        raise InvalidStateError(
            "Project has no hosting registration yet", current_status=project["status"],
        )
    branch = project.get("default_branch") or "main"
    handle = get_vercel_client().trigger_deploy(
        project["vercel_project_id"], project["github_repo_full_name"], branch, message,
        production=True,
    )
    return record_deployment(project["id"], handle, branch, commit_message=message)
