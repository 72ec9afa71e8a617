"""Migration orchestrator.

Takes a project from "repo URL supplied" to "hosted and deployed":

    claim migrating → resolve repo → fork (or reuse) → persist managed repo
    → register hosted project → trigger initial deploy → record deployment
    → active

Any failure after the claim reverts the project to onboarding and is
returned as MigrationResult(success=False); migrations are retried by
dispatching them again, and every input is re-read from the project row.
"""

import logging
import re

from hostfix.deployments.poller import record_deployment
from hostfix.errors import InvalidStateError, NotFoundError, RepositoryExistsError, ValidationError
from hostfix.integrations.github import RepoInfo, get_github_client
from hostfix.integrations.vercel import get_vercel_client
from hostfix.projects.schemas import MigrationInput, MigrationResult, ProjectStatus
from hostfix.store import records

logger = logging.getLogger(__name__)

INITIAL_COMMIT_MESSAGE = "Initial migration"
FRAMEWORK = "vite"
MAX_SLUG_LENGTH = 50


def project_slug(repo_full_name: str, project_id: str) -> str:
    """URL-safe hosting name derived from the repository name."""
    name = repo_full_name.split("/", 1)[-1]
    slug = re.sub(r"[^a-z0-9-]", "-", name, flags=re.IGNORECASE).lower()[:MAX_SLUG_LENGTH]
    return slug or f"project-{project_id[:8]}"


def runtime_env(migration: MigrationInput) -> dict[str, str]:
    """Customer-supplied secrets forwarded to the build as environment variables."""
    env = {}
    if migration.supabase_url:
        env["VITE_SUPABASE_URL"] = migration.supabase_url
    if migration.supabase_anon_key:
        env["VITE_SUPABASE_ANON_KEY"] = migration.supabase_anon_key
    return env


def migration_input(project: dict) -> MigrationInput:
    if not project.get("github_repo_url"):
        raise ValidationError(f"Project {project['id']} has no repository URL to migrate")
    return MigrationInput(
        project_id=project["id"],
        github_repo_url=project["github_repo_url"],
        supabase_url=project.get("supabase_url"),
        supabase_anon_key=project.get("supabase_anon_key"),
    )


def check_can_migrate(project_id: str) -> dict:
    """Validate before dispatching a migration. Returns the project row."""
    project = records.get("projects", project_id)
    if project is None or project["status"] == ProjectStatus.DELETED:
        raise NotFoundError(f"Project not found: {project_id}")
    if project["status"] != ProjectStatus.ONBOARDING:
        raise InvalidStateError(
            f"Cannot migrate a project in status '{project['status']}'",
            current_status=project["status"],
        )
    migration_input(project)
    return project


def run_migration(project_id: str) -> MigrationResult:
    """Run the full migration pipeline for a project.

    Validation problems (unknown project, no repo URL) raise before anything
    is written. Once the project is claimed, failures are returned, not raised.
    """
    project = records.get("projects", project_id)
    if project is None:
        raise NotFoundError(f"Project not found: {project_id}")
    migration = migration_input(project)

    # 1. Claim
    claimed = records.claim("projects", project_id, [ProjectStatus.ONBOARDING], ProjectStatus.MIGRATING)
    if claimed is None:
        current = records.get("projects", project_id)
        status = current["status"] if current else "missing"
        logger.warning(f"[migration] Project {project_id} not claimable (status: {status}), skipping")
        return MigrationResult(success=False, error=f"Project is not awaiting migration (status: {status})")
    logger.info(f"[migration] Project {project_id} status → migrating")

    try:
        return _migrate(claimed, migration)
    except Exception as e:
        logger.error(f"[migration] Migration failed for project {project_id}: {e}")
        records.update_if(
            "projects", project_id, {"status": ProjectStatus.ONBOARDING}, status=ProjectStatus.MIGRATING,
        )
        return MigrationResult(success=False, error=str(e))


def _migrate(project: dict, migration: MigrationInput) -> MigrationResult:
    github = get_github_client()
    vercel = get_vercel_client()
    project_id = project["id"]

    # 2. Resolve and validate the repository reference
    logger.info(f"[migration] Parsing GitHub URL: {migration.github_repo_url}")
    repo_ref = github.resolve_identifier(migration.github_repo_url)
    repo_info = github.get_repo_info(repo_ref)
    logger.info(f"[migration] Repo found: {repo_info.full_name} ({repo_info.language or 'unknown language'})")

    # 3. Fork into the managed account; an existing copy means a previous attempt got this far
    managed = _fork_or_reuse(repo_ref, repo_info)

    # 4. Persist the managed repo
    records.update("projects", project_id, {
        "github_repo_full_name": managed.full_name,
        "default_branch": managed.default_branch,
    })

    # 5. Register the hosted project (reused when a previous attempt registered one)
    hosting_id = project.get("vercel_project_id")
    if hosting_id:
        logger.info(f"[migration] Reusing hosted project {hosting_id}")
    else:
        slug = project_slug(managed.full_name, project_id)
        logger.info(f"[migration] Creating Vercel project: {slug}")
        hosted = vercel.register_project(slug, managed.full_name, framework=FRAMEWORK, env=runtime_env(migration))
        hosting_id = hosted.id
        records.update("projects", project_id, {"vercel_project_id": hosting_id})

    # 6. Trigger the initial deployment from the default branch
    handle = vercel.trigger_deploy(
        hosting_id, managed.full_name, managed.default_branch, INITIAL_COMMIT_MESSAGE, production=True,
    )
    logger.info(f"[migration] Deployment created: {handle.id} → {handle.url}")

    # 7. Record it
    record_deployment(project_id, handle, managed.default_branch, commit_message=INITIAL_COMMIT_MESSAGE)

    # 8. Active
    records.update("projects", project_id, {
        "status": ProjectStatus.ACTIVE,
        "vercel_project_id": hosting_id,
        "vercel_deployment_url": handle.url,
    })
    logger.info(f"[migration] Migration complete for project {project_id}")

    return MigrationResult(
        success=True,
        vercel_project_id=hosting_id,
        vercel_url=handle.url,
        github_repo_full_name=managed.full_name,
    )


def _fork_or_reuse(repo_ref: str, repo_info: RepoInfo) -> RepoInfo:
    logger.info(f"[migration] Forking {repo_ref}...")
    try:
        managed = get_github_client().fork_repo(repo_ref)
    except RepositoryExistsError as e:
        logger.info(f"[migration] Fork already exists ({e}), using original repo: {repo_ref}")
        return repo_info
    logger.info(f"[migration] Forked to: {managed.full_name}")
    return managed
