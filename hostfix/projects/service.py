"""Project records: create, edit, soft-delete, subdomain availability, stats."""

import logging
from typing import Optional

from hostfix.errors import ConflictError, NotFoundError
from hostfix.fixes.schemas import FixStatus
from hostfix.projects.schemas import CreateProjectRequest, ProjectStatus, UpdateProjectRequest
from hostfix.store import records
from hostfix.store.db import integrity_errors

logger = logging.getLogger(__name__)


def get_user_project(project_id: str, user_id: str) -> dict:
    """The caller's non-deleted project, or NotFoundError (never reveals other users' projects)."""
    project = records.get("projects", project_id)
    if project is None or project["user_id"] != user_id or project["status"] == ProjectStatus.DELETED:
        raise NotFoundError(f"Project not found: {project_id}")
    return project


def list_user_projects(user_id: str) -> list[dict]:
    return records.list_by(
        "projects", user_id=user_id, exclude={"status": ProjectStatus.DELETED}, order_by="updated_at DESC",
    )


def is_subdomain_available(subdomain: str, exclude_project_id: Optional[str] = None) -> bool:
    taken = records.list_by(
        "projects", subdomain=subdomain.lower(), exclude={"status": ProjectStatus.DELETED}, limit=2,
    )
    return not any(p["id"] != exclude_project_id for p in taken)


def create_project(user_id: str, request: CreateProjectRequest) -> dict:
    if request.subdomain and not is_subdomain_available(request.subdomain):
        raise ConflictError("Subdomain already taken")
    try:
        project = records.insert("projects", {
            "user_id": user_id,
            "status": ProjectStatus.ONBOARDING,
            **request.model_dump(),
        })
    except integrity_errors() as e:
        # Lost a race for the subdomain against another insert.
        raise ConflictError("Subdomain already taken") from e
    logger.info(f"Project {project['id']} created ({project['name']})")
    return project


def update_project(project: dict, request: UpdateProjectRequest) -> dict:
    changes = request.model_dump(exclude_unset=True)
    subdomain = changes.get("subdomain")
    if subdomain and subdomain != project.get("subdomain") and not is_subdomain_available(subdomain, project["id"]):
        raise ConflictError("Subdomain already taken")
    try:
        updated = records.update("projects", project["id"], changes)
    except integrity_errors() as e:
        raise ConflictError("Subdomain already taken") from e
    if updated is None:
        raise NotFoundError(f"Project not found: {project['id']}")
    return updated


def delete_project(project: dict) -> dict:
    """Soft delete. The row stays (with its fixes and deployments); the subdomain is freed."""
    deleted = records.update("projects", project["id"], {"status": ProjectStatus.DELETED})
    logger.info(f"Project {project['id']} deleted")
    return deleted


def project_stats(project: dict) -> dict:
    project_id = project["id"]
    return {
        "total_fixes": records.count_by("fix_requests", project_id=project_id),
        "deployed_fixes": records.count_by("fix_requests", project_id=project_id, status=FixStatus.DEPLOYED),
        "total_deployments": records.count_by("deployments", project_id=project_id),
        "status": project["status"],
    }
