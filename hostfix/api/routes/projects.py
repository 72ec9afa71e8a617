"""Project routes, with fixes and deployments nested under a project.

Endpoints:
    GET    /v1/projects                               List the caller's projects
    POST   /v1/projects                               Create (starts migration if a repo URL is given)
    GET    /v1/projects/check-subdomain/{subdomain}   Subdomain availability
    GET    /v1/projects/{id}                          Project detail
    PUT    /v1/projects/{id}                          Edit name, domains, runtime secrets
    DELETE /v1/projects/{id}                          Soft delete
    GET    /v1/projects/{id}/stats                    Fix and deployment counts
    POST   /v1/projects/{id}/migrate                  (Re)start migration
    GET    /v1/projects/{id}/fixes                    List fixes
    POST   /v1/projects/{id}/fixes                    Submit a fix (starts triage)
    GET    /v1/projects/{id}/deployments              List deployments
    POST   /v1/projects/{id}/deployments              Redeploy the default branch
"""

import logging
import re

from fastapi import APIRouter, Depends, HTTPException

from hostfix.api.deps import get_current_user, http_error
from hostfix.deployments.poller import redeploy
from hostfix.dispatch import dispatch_step
from hostfix.errors import HostfixError
from hostfix.fixes.pipeline import submit_fix
from hostfix.fixes.schemas import SubmitFixRequest
from hostfix.projects import service
from hostfix.projects.migration import check_can_migrate
from hostfix.projects.schemas import CreateProjectRequest, ProjectStatus, SUBDOMAIN_PATTERN, UpdateProjectRequest
from hostfix.store import records
from hostfix.store.step_runs import StepKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


def _project_or_404(project_id: str, user: dict) -> dict:
    try:
        return service.get_user_project(project_id, user["id"])
    except HostfixError as e:
        raise http_error(e) from e


@router.get("")
async def list_projects(user: dict = Depends(get_current_user)):
    return service.list_user_projects(user["id"])


@router.post("", status_code=201)
async def create_project(request: CreateProjectRequest, user: dict = Depends(get_current_user)):
    try:
        project = service.create_project(user["id"], request)
    except HostfixError as e:
        raise http_error(e) from e

    if project.get("github_repo_url"):
        run_id = dispatch_step(StepKind.MIGRATE, project["id"])
        logger.info(f"Migration of project {project['id']} dispatched (run {run_id})")
    return project


@router.get("/check-subdomain/{subdomain}")
async def check_subdomain(subdomain: str, user: dict = Depends(get_current_user)):
    subdomain = subdomain.lower()
    if not (3 <= len(subdomain) <= 30) or not re.match(SUBDOMAIN_PATTERN, subdomain):
        return {"available": False, "subdomain": subdomain, "reason": "invalid"}
    return {"available": service.is_subdomain_available(subdomain), "subdomain": subdomain}


@router.get("/{project_id}")
async def get_project(project_id: str, user: dict = Depends(get_current_user)):
    return _project_or_404(project_id, user)


@router.put("/{project_id}")
async def update_project(project_id: str, request: UpdateProjectRequest, user: dict = Depends(get_current_user)):
    project = _project_or_404(project_id, user)
    try:
        return service.update_project(project, request)
    except HostfixError as e:
        raise http_error(e) from e


@router.delete("/{project_id}")
async def delete_project(project_id: str, user: dict = Depends(get_current_user)):
    project = _project_or_404(project_id, user)
    return service.delete_project(project)


@router.get("/{project_id}/stats")
async def project_stats(project_id: str, user: dict = Depends(get_current_user)):
    return service.project_stats(_project_or_404(project_id, user))


@router.post("/{project_id}/migrate", status_code=202)
async def migrate_project(project_id: str, user: dict = Depends(get_current_user)):
    """Start (or retry) the migration pipeline. Poll the project for its status."""
    _project_or_404(project_id, user)
    try:
        check_can_migrate(project_id)
    except HostfixError as e:
        raise http_error(e) from e
    run_id = dispatch_step(StepKind.MIGRATE, project_id)
    return {"message": "Migration started", "project_id": project_id, "run_id": run_id}


# --- Nested: fixes ---


@router.get("/{project_id}/fixes")
async def list_fixes(project_id: str, user: dict = Depends(get_current_user)):
    _project_or_404(project_id, user)
    return records.list_by("fix_requests", project_id=project_id)


@router.post("/{project_id}/fixes", status_code=201)
async def create_fix(project_id: str, request: SubmitFixRequest, user: dict = Depends(get_current_user)):
    _project_or_404(project_id, user)
    try:
        return submit_fix(project_id, user["id"], request.description)
    except HostfixError as e:
        raise http_error(e) from e


# --- Nested: deployments ---


@router.get("/{project_id}/deployments")
async def list_deployments(project_id: str, user: dict = Depends(get_current_user)):
    _project_or_404(project_id, user)
    return records.list_by("deployments", project_id=project_id)


@router.post("/{project_id}/deployments", status_code=201)
def create_deployment(project_id: str, user: dict = Depends(get_current_user)):
    project = _project_or_404(project_id, user)
    if project["status"] == ProjectStatus.SUSPENDED:
        raise HTTPException(status_code=409, detail="Project is suspended")
    try:
        return redeploy(project)
    except HostfixError as e:
        raise http_error(e) from e
