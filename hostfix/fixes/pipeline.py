"""Fix orchestrator.

Full lifecycle of a fix request:

    submitted → triaging → quoted → awaiting_payment → (paid) → in_progress
    → preview_ready → approved → deploying → deployed
                    ↘ rejected          failed / out_of_scope on the way

Every step starts by claiming the fix (a conditional status write that
only one concurrent caller can win) and re-reads all of its inputs from
the record store, so any step can be re-run against a failed fix. Failure
writes are conditional on the status the step claimed, so a step never
overwrites a state it does not own.
"""

import logging
from typing import Optional

from hostfix.billing.customers import ensure_customer
from hostfix.billing.pricing import DEFAULT_FIX_PRICE, get_fix_price
from hostfix.deployments.poller import record_deployment
from hostfix.errors import (
    BranchExistsError,
    CapabilityError,
    InvalidStateError,
    NotFoundError,
    OutOfScopeError,
    RepoFileNotFoundError,
)
from hostfix.fixes.schemas import (
    ConfirmFixResponse,
    FileAction,
    FileChange,
    FixComplexity,
    FixResult,
    FixStatus,
    SourceFile,
    TriageResult,
)
from hostfix.integrations.ai import get_ai_client
from hostfix.integrations.github import GitHubClient, get_github_client
from hostfix.integrations.payments import get_payment_client
from hostfix.integrations.vercel import get_vercel_client
from hostfix.projects.schemas import ProjectStatus
from hostfix.store import records

logger = logging.getLogger(__name__)

MAX_SOURCE_FILES = 10

TRIAGE_FROM = [FixStatus.SUBMITTED, FixStatus.QUOTED, FixStatus.FAILED]
CONFIRM_FROM = [FixStatus.SUBMITTED, FixStatus.QUOTED]
GENERATE_FROM = [FixStatus.AWAITING_PAYMENT, FixStatus.FAILED]
DEPLOY_FROM = [FixStatus.APPROVED, FixStatus.FAILED]
REJECT_FROM = [FixStatus.PREVIEW_READY, FixStatus.FAILED]


def staging_branch_name(fix_id: str) -> str:
    return f"fix/{fix_id[:8]}"


def _get_fix(fix_id: str) -> dict:
    fix = records.get("fix_requests", fix_id)
    if fix is None:
        raise NotFoundError(f"Fix request not found: {fix_id}")
    return fix


def _get_project(project_id: str) -> dict:
    project = records.get("projects", project_id)
    if project is None:
        raise NotFoundError(f"Project not found: {project_id}")
    return project


def _managed_repo(project: dict) -> str:
    if not project.get("github_repo_full_name"):
        raise InvalidStateError(
            f"Project {project['id']} has no managed repository (not migrated yet)",
            current_status=project["status"],
        )
    return project["github_repo_full_name"]


def _lost_claim(fix_id: str, action: str) -> InvalidStateError:
    current = records.get("fix_requests", fix_id)
    status = current["status"] if current else None
    return InvalidStateError(f"Cannot {action} fix {fix_id} in status '{status}'", current_status=status)


def _fail(fix_id: str, owned: FixStatus, error: str, **fields) -> None:
    """Persist failed, but only if the fix is still in the status this step claimed."""
    failed = records.update_if(
        "fix_requests", fix_id,
        {"status": FixStatus.FAILED, "error_log": error[:2000], **fields},
        status=owned,
    )
    if failed:
        logger.error(f"Fix {fix_id} status → failed ({error})")
    else:
        logger.error(f"Fix {fix_id} failed during {owned.value} but its status moved on: {error}")


def _triage_of(fix: dict) -> TriageResult:
    if not fix.get("triage_result"):
        raise InvalidStateError(f"Fix {fix['id']} has not been triaged", current_status=fix["status"])
    return TriageResult(**fix["triage_result"])


# --- Submit ---


def submit_fix(project_id: str, user_id: str, description: str) -> dict:
    """Record a new fix request and start triage in the background."""
    project = _get_project(project_id)
    if project["status"] == ProjectStatus.DELETED:
        raise NotFoundError(f"Project not found: {project_id}")
    user = records.get("users", user_id)
    if user is None:
        raise NotFoundError(f"User not found: {user_id}")

    fix = records.insert("fix_requests", {
        "project_id": project_id,
        "user_id": user_id,
        "description": description,
        "status": FixStatus.SUBMITTED,
        "price_in_cents": get_fix_price(user["fix_count"]),
    })
    logger.info(f"Fix {fix['id']} submitted for project {project_id}")

    from hostfix.dispatch import dispatch_step
    from hostfix.store.step_runs import StepKind

    dispatch_step(StepKind.TRIAGE, fix["id"])
    return fix


# --- Triage ---


def triage_fix(fix_id: str) -> TriageResult:
    """Classify the request and quote it. Leaves the fix quoted or failed."""
    _get_fix(fix_id)
    fix = records.update_if(
        "fix_requests", fix_id,
        {"status": FixStatus.TRIAGING, "error_log": None},
        status=TRIAGE_FROM, paid_at=None,
    )
    if fix is None:
        raise _lost_claim(fix_id, "triage")
    logger.info(f"Fix {fix_id} status → triaging")

    try:
        project = _get_project(fix["project_id"])
        triage = get_ai_client().triage(fix["description"], _file_listing(project))

        # Fresh quote on every triage; the count may have moved since submission.
        user = records.get("users", fix["user_id"])
        price = get_fix_price(user["fix_count"] if user else 0)
    except Exception as e:
        _fail(fix_id, FixStatus.TRIAGING, f"Triage failed: {e}")
        raise

    quoted = records.update_if("fix_requests", fix_id, {
        "status": FixStatus.QUOTED,
        "complexity": triage.complexity,
        "triage_result": triage.model_dump(mode="json"),
        "price_in_cents": price,
    }, status=FixStatus.TRIAGING)
    if quoted:
        logger.info(f"Fix {fix_id} status → quoted ({triage.complexity.value}, {price} cents)")
    return triage


def _file_listing(project: dict) -> list[str]:
    if not project.get("github_repo_full_name"):
        return []
    try:
        return get_github_client().list_files(
            project["github_repo_full_name"], project.get("default_branch") or "main",
        )
    except CapabilityError as e:
        logger.warning(f"File listing unavailable for {project['github_repo_full_name']}, triaging without it: {e}")
        return []


# --- Confirm ---


def confirm_fix(fix_id: str) -> ConfirmFixResponse:
    """Create the charge for a quoted fix and wait for the payment webhook."""
    fix = _get_fix(fix_id)
    if fix["status"] not in CONFIRM_FROM:
        raise InvalidStateError(
            f"Fix is not in a confirmable state ('{fix['status']}')", current_status=fix["status"],
        )

    if fix.get("complexity") == FixComplexity.OUT_OF_SCOPE:
        records.update_if(
            "fix_requests", fix_id, {"status": FixStatus.OUT_OF_SCOPE}, status=CONFIRM_FROM,
        )
        logger.info(f"Fix {fix_id} status → out_of_scope")
        raise OutOfScopeError("This request is out of scope for a fix and cannot be charged")

    price = fix.get("price_in_cents") or DEFAULT_FIX_PRICE
    claimed = records.claim(
        "fix_requests", fix_id, CONFIRM_FROM, FixStatus.AWAITING_PAYMENT,
        price_in_cents=price, error_log=None,
    )
    if claimed is None:
        raise _lost_claim(fix_id, "confirm")

    try:
        customer_id = ensure_customer(fix["user_id"])
        charge = get_payment_client().create_fix_charge(
            customer_id, fix_id, price, idempotency_key=f"fix-{fix_id}-{price}",
        )
    except Exception as e:
        _fail(fix_id, FixStatus.AWAITING_PAYMENT, f"Payment setup failed: {e}")
        raise

    records.update("fix_requests", fix_id, {"stripe_payment_intent_id": charge.id})
    logger.info(f"Fix {fix_id} status → awaiting_payment ({price} cents, {charge.id})")
    return ConfirmFixResponse(
        fix_id=fix_id,
        status=FixStatus.AWAITING_PAYMENT,
        price_in_cents=price,
        payment_intent_id=charge.id,
        client_secret=charge.client_secret,
    )


# --- Generate and preview ---


def check_can_generate(fix: dict) -> None:
    _triage_of(fix)
    if not fix.get("paid_at"):
        raise InvalidStateError(f"Fix {fix['id']} has not been paid for", current_status=fix["status"])
    if fix["status"] not in GENERATE_FROM:
        raise InvalidStateError(
            f"Cannot start generation for a fix in status '{fix['status']}'", current_status=fix["status"],
        )


def generate_and_preview(fix_id: str) -> FixResult:
    """Generate the edits, commit them to a staging branch and deploy a preview."""
    fix = _get_fix(fix_id)
    triage = _triage_of(fix)
    if not fix.get("paid_at"):
        raise InvalidStateError(f"Fix {fix_id} has not been paid for", current_status=fix["status"])

    fix = records.claim(
        "fix_requests", fix_id, GENERATE_FROM, FixStatus.IN_PROGRESS,
        error_log=None, staging_branch=None, preview_url=None,
    )
    if fix is None:
        raise _lost_claim(fix_id, "generate")
    logger.info(f"Fix {fix_id} status → in_progress")

    try:
        project = _get_project(fix["project_id"])
        repo = _managed_repo(project)
        base = project.get("default_branch") or "main"
        github = get_github_client()

        sources = _read_sources(github, repo, base, triage.affected_files)
        result = get_ai_client().generate(fix["description"], triage, sources)
        if not result.success:
            _fail(
                fix_id, FixStatus.IN_PROGRESS, result.error or "AI could not generate a fix",
                ai_fix=result.model_dump(mode="json"),
            )
            return result

        branch = staging_branch_name(fix_id)
        _create_staging_branch(github, repo, branch, base)
        for change in result.changes:
            _apply_change(github, repo, branch, change, fix_id)

        preview_url = _deploy_preview(project, repo, branch, fix)
    except Exception as e:
        _fail(fix_id, FixStatus.IN_PROGRESS, f"Fix generation failed: {e}")
        raise

    ready = records.update_if("fix_requests", fix_id, {
        "status": FixStatus.PREVIEW_READY,
        "ai_fix": result.model_dump(mode="json"),
        "staging_branch": branch,
        "preview_url": preview_url,
    }, status=FixStatus.IN_PROGRESS)
    if ready:
        logger.info(f"Fix {fix_id} status → preview_ready ({branch}, preview: {preview_url})")
    return result


def _read_sources(github: GitHubClient, repo: str, branch: str, paths: list[str]) -> list[SourceFile]:
    sources = []
    for path in paths[:MAX_SOURCE_FILES]:
        try:
            repo_file = github.get_file(repo, path, branch)
        except RepoFileNotFoundError:
            logger.info(f"Could not read {path} from {repo}, skipping")
            continue
        sources.append(SourceFile(path=path, content=repo_file.content))
    return sources


def _create_staging_branch(github: GitHubClient, repo: str, branch: str, base: str) -> None:
    try:
        github.create_branch(repo, branch, base)
    except BranchExistsError:
        # Left over from an interrupted earlier attempt; start from a clean base.
        logger.warning(f"Staging branch {branch} already exists on {repo}, recreating")
        github.delete_branch(repo, branch)
        github.create_branch(repo, branch, base)


def _apply_change(github: GitHubClient, repo: str, branch: str, change: FileChange, fix_id: str) -> None:
    """Read the file's current revision on the branch, then write conditionally on it."""
    message = f"Fix {fix_id[:8]}: {change.description or change.action.value + ' ' + change.file_path}"
    try:
        current_sha: Optional[str] = github.get_file(repo, change.file_path, branch).sha
    except RepoFileNotFoundError:
        current_sha = None

    if change.action == FileAction.DELETE:
        if current_sha is None:
            logger.info(f"{change.file_path} already absent on {branch}, nothing to delete")
            return
        github.delete_file(repo, change.file_path, message, branch, current_sha)
    else:
        github.put_file(repo, change.file_path, change.new_content, message, branch, expected_sha=current_sha)
    logger.info(f"Applied {change.action.value} {change.file_path} on {branch}")


def _deploy_preview(project: dict, repo: str, branch: str, fix: dict) -> Optional[str]:
    """Preview build of the staging branch. No hosting, or a failed trigger, means no preview URL."""
    if not project.get("vercel_project_id"):
        logger.info(f"Project {project['id']} has no hosting registration, skipping preview")
        return None
    message = f"Fix preview: {fix['description'][:50]}"
    try:
        handle = get_vercel_client().trigger_deploy(
            project["vercel_project_id"], repo, branch, message, production=False,
        )
    except CapabilityError as e:
        logger.warning(f"Preview deployment failed for fix {fix['id']}: {e}")
        return None
    record_deployment(project["id"], handle, branch, commit_message=message)
    return handle.url


# --- Approve / deploy ---


def approve_fix(fix_id: str) -> dict:
    """Approve a previewed fix and start the production deploy in the background."""
    _get_fix(fix_id)
    fix = records.claim("fix_requests", fix_id, [FixStatus.PREVIEW_READY], FixStatus.APPROVED)
    if fix is None:
        raise _lost_claim(fix_id, "approve")
    logger.info(f"Fix {fix_id} status → approved")

    from hostfix.dispatch import dispatch_step
    from hostfix.store.step_runs import StepKind

    dispatch_step(StepKind.DEPLOY, fix_id)
    return fix


def deploy_fix(fix_id: str) -> Optional[dict]:
    """Merge the staging branch, deploy production, clean up. Returns the Deployment row."""
    fix = _get_fix(fix_id)
    branch = fix.get("staging_branch")
    if not branch:
        raise InvalidStateError(f"Fix {fix_id} has no staging branch to deploy", current_status=fix["status"])

    fix = records.update_if(
        "fix_requests", fix_id, {"status": FixStatus.DEPLOYING, "error_log": None},
        status=DEPLOY_FROM, staging_branch=branch,
    )
    if fix is None:
        raise _lost_claim(fix_id, "deploy")
    logger.info(f"Fix {fix_id} status → deploying")

    deployment = None
    try:
        project = _get_project(fix["project_id"])
        repo = _managed_repo(project)
        base = project.get("default_branch") or "main"
        message = f"Fix: {fix['description'][:100]}"

        github = get_github_client()
        commit = github.merge_branch(repo, base, branch, message)

        if project.get("vercel_project_id"):
            handle = get_vercel_client().trigger_deploy(
                project["vercel_project_id"], repo, base, message, production=True,
            )
            deployment = record_deployment(project["id"], handle, base, commit_message=message, commit_hash=commit)
    except Exception as e:
        # Branch and preview stay so the deploy can be retried or the fix rejected.
        _fail(fix_id, FixStatus.DEPLOYING, f"Deployment failed: {e}")
        raise

    _delete_branch_quietly(repo, branch)

    deployed = records.update_if("fix_requests", fix_id, {
        "status": FixStatus.DEPLOYED,
        "staging_branch": None,
        "preview_url": None,
    }, status=FixStatus.DEPLOYING)
    if deployed:
        logger.info(f"Fix {fix_id} status → deployed")
    return deployment


# --- Reject ---


def reject_fix(fix_id: str) -> dict:
    """Discard a previewed (or failed-to-deploy) fix and its staging branch."""
    fix = _get_fix(fix_id)
    branch = fix.get("staging_branch")
    if fix["status"] not in REJECT_FROM or not branch:
        raise InvalidStateError(
            f"Fix is not in a rejectable state ('{fix['status']}')", current_status=fix["status"],
        )

    rejected = records.update_if("fix_requests", fix_id, {
        "status": FixStatus.REJECTED,
        "staging_branch": None,
        "preview_url": None,
    }, status=REJECT_FROM, staging_branch=branch)
    if rejected is None:
        raise _lost_claim(fix_id, "reject")
    logger.info(f"Fix {fix_id} status → rejected")

    project = records.get("projects", fix["project_id"])
    if project and project.get("github_repo_full_name"):
        _delete_branch_quietly(project["github_repo_full_name"], branch)
    return rejected


def _delete_branch_quietly(repo: str, branch: str) -> None:
    try:
        get_github_client().delete_branch(repo, branch)
    except CapabilityError as e:
        logger.warning(f"Could not delete staging branch {branch} on {repo}: {e}")
