"""GitHub source-control client.

Wraps the REST API calls the pipelines need: resolving and forking
repositories, branch lifecycle, and reading/writing file contents on a
branch. File writes are conditional on the blob SHA that was read, so a
concurrent change to the same file is refused (FileConflictError) rather
than overwritten.

Requires environment variables:
    GITHUB_TOKEN: token with repo + fork scope on the managed account
    GITHUB_OWNER: org/user that owns managed copies of customer repos
"""

import base64
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from hostfix.errors import (
    BranchExistsError,
    CapabilityError,
    FileConflictError,
    InvalidRepositoryError,
    RepoFileNotFoundError,
    RepositoryExistsError,
)

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
FORK_SUFFIX = os.environ.get("GITHUB_FORK_SUFFIX", "hosted")
MAX_TREE_ENTRIES = 200

_URL_PATTERNS = [
    re.compile(r"github\.com[/:]([^/\s]+/[^/\s]+?)(?:\.git)?/?$"),
    re.compile(r"github\.com[/:]([^/\s]+/[^/\s]+?)(?:\.git)?/.*$"),
]
_BARE_REF = re.compile(r"^[\w.-]+/[\w.-]+$")


@dataclass
class RepoInfo:
    """Repository metadata."""
    full_name: str
    html_url: str = ""
    clone_url: str = ""
    default_branch: str = "main"
    is_private: bool = False
    language: Optional[str] = None


@dataclass
class RepoFile:
    """File content plus the revision handle (blob SHA) it was read at."""
    path: str
    content: str
    sha: str


def parse_repo_url(url: str) -> str:
    """Normalize a GitHub URL (https, ssh, .git, /tree/...) to `owner/name`.

    Raises InvalidRepositoryError if nothing recognizable is found.
    """
    candidate = (url or "").strip()
    for pattern in _URL_PATTERNS:
        match = pattern.search(candidate)
        if match:
            ref = match.group(1)
            if ref.endswith(".git"):
                ref = ref[:-4]
            return ref

    if _BARE_REF.match(candidate):
        return candidate[:-4] if candidate.endswith(".git") else candidate

    raise InvalidRepositoryError(f"Invalid GitHub URL or repo format: {url!r}")


def _split(ref: str) -> tuple[str, str]:
    owner, _, name = ref.partition("/")
    if not owner or not name or "/" in name:
        raise InvalidRepositoryError(f"Invalid repo format (expected owner/name): {ref!r}")
    return owner, name


class GitHubClient:
    """Source-control capability backed by the GitHub REST API."""

    def __init__(
        self,
        token: Optional[str] = None,
        managed_owner: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.token = token
        self.managed_owner = managed_owner
        self.enabled = bool(token) or http_client is not None

        if http_client is not None:
            self._client = http_client
        elif token:
            self._client = httpx.Client(
                base_url=GITHUB_API_URL,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=30.0,
            )
            logger.info(f"GitHub client enabled (managed owner: {managed_owner or 'token user'})")
        else:
            self._client = None
            logger.warning("GITHUB_TOKEN not set — source-control calls will fail")

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if self._client is None:
            raise CapabilityError("GitHub is not configured (GITHUB_TOKEN missing)")
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"GitHub HTTP error on {method} {path}: {e}")
            raise CapabilityError(f"GitHub HTTP error: {e}") from e

    @staticmethod
    def _fail(resp: httpx.Response, action: str) -> None:
        body = resp.text[:500] if resp.text else "no response body"
        logger.error(f"GitHub API error during {action}: {resp.status_code} — {body}")
        raise CapabilityError(f"GitHub API error during {action}: {resp.status_code} — {body}")

    def resolve_identifier(self, url: str) -> str:
        return parse_repo_url(url)

    def get_repo_info(self, ref: str) -> RepoInfo:
        owner, name = _split(ref)
        resp = self._request("GET", f"/repos/{owner}/{name}")
        if resp.status_code == 404:
            raise RepoFileNotFoundError(f"Repository not found or not accessible: {ref}")
        if resp.is_error:
            self._fail(resp, f"get repo {ref}")
        return self._repo_info(resp.json())

    def fork_repo(self, ref: str) -> RepoInfo:
        """Duplicate a repository under the managed owner.

        Raises RepositoryExistsError if a managed copy with that name exists.
        """
        owner, name = _split(ref)
        body: dict = {"name": f"{name}-{FORK_SUFFIX}", "default_branch_only": True}
        if self.managed_owner and self.managed_owner != owner:
            body["organization"] = self.managed_owner

        resp = self._request("POST", f"/repos/{owner}/{name}/forks", json=body)
        if resp.status_code == 422:
            raise RepositoryExistsError(f"Managed copy of {ref} already exists: {resp.text[:200]}")
        if resp.is_error:
            self._fail(resp, f"fork {ref}")
        info = self._repo_info(resp.json())
        logger.info(f"Forked {ref} → {info.full_name}")
        return info

    def list_files(self, ref: str, branch: Optional[str] = None, limit: int = MAX_TREE_ENTRIES) -> list[str]:
        """Flat listing of file paths on a branch (recursive tree, capped)."""
        owner, name = _split(ref)
        tree_ref = branch or "HEAD"
        resp = self._request(
            "GET", f"/repos/{owner}/{name}/git/trees/{tree_ref}", params={"recursive": "1"},
        )
        if resp.status_code == 404:
            raise RepoFileNotFoundError(f"Tree not found: {ref}@{tree_ref}")
        if resp.is_error:
            self._fail(resp, f"list files of {ref}")
        entries = resp.json().get("tree", [])
        return [e["path"] for e in entries if e.get("type") == "blob"][:limit]

    def create_branch(self, ref: str, branch: str, from_branch: Optional[str] = None) -> str:
        """Create `branch` at the head of `from_branch` (default: main). Returns the SHA."""
        owner, name = _split(ref)
        base = from_branch or "main"

        base_resp = self._request("GET", f"/repos/{owner}/{name}/git/ref/heads/{base}")
        if base_resp.status_code == 404:
            raise RepoFileNotFoundError(f"Base branch {base!r} not found in {ref}")
        if base_resp.is_error:
            self._fail(base_resp, f"read ref {base}")
        sha = base_resp.json()["object"]["sha"]

        resp = self._request(
            "POST", f"/repos/{owner}/{name}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if resp.status_code == 422:
            raise BranchExistsError(f"Branch {branch!r} already exists in {ref}")
        if resp.is_error:
            self._fail(resp, f"create branch {branch}")
        logger.info(f"Created branch {branch} on {ref} from {base} ({sha[:8]})")
        return sha

    def delete_branch(self, ref: str, branch: str) -> None:
        owner, name = _split(ref)
        resp = self._request("DELETE", f"/repos/{owner}/{name}/git/refs/heads/{branch}")
        if resp.status_code in (404, 422):
            raise RepoFileNotFoundError(f"Branch {branch!r} not found in {ref}")
        if resp.is_error:
            self._fail(resp, f"delete branch {branch}")
        logger.info(f"Deleted branch {branch} on {ref}")

    def get_file(self, ref: str, path: str, branch: Optional[str] = None) -> RepoFile:
        owner, name = _split(ref)
        params = {"ref": branch} if branch else None
        resp = self._request("GET", f"/repos/{owner}/{name}/contents/{path}", params=params)
        if resp.status_code == 404:
            raise RepoFileNotFoundError(f"File not found: {path}")
        if resp.is_error:
            self._fail(resp, f"read {path}")

        data = resp.json()
        if isinstance(data, list) or "content" not in data:
            raise RepoFileNotFoundError(f"Path is a directory, not a file: {path}")
        content = base64.b64decode(data["content"]).decode("utf-8")
        return RepoFile(path=path, content=content, sha=data["sha"])

    def put_file(
        self,
        ref: str,
        path: str,
        content: str,
        message: str,
        branch: str,
        expected_sha: Optional[str] = None,
    ) -> str:
        """Create or update a file. Returns the commit SHA.

        expected_sha is the blob SHA the caller read; GitHub refuses the write
        if the file has changed since (raised as FileConflictError).
        """
        owner, name = _split(ref)
        body = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if expected_sha:
            body["sha"] = expected_sha

        resp = self._request("PUT", f"/repos/{owner}/{name}/contents/{path}", json=body)
        if resp.status_code in (409, 422):
            raise FileConflictError(f"Write to {path} on {branch} refused: file changed since it was read")
        if resp.is_error:
            self._fail(resp, f"write {path}")
        return resp.json()["commit"]["sha"]

    def delete_file(self, ref: str, path: str, message: str, branch: str, expected_sha: str) -> str:
        owner, name = _split(ref)
        resp = self._request(
            "DELETE", f"/repos/{owner}/{name}/contents/{path}",
            json={"message": message, "sha": expected_sha, "branch": branch},
        )
        if resp.status_code == 404:
            raise RepoFileNotFoundError(f"File not found: {path}")
        if resp.status_code in (409, 422):
            raise FileConflictError(f"Delete of {path} on {branch} refused: file changed since it was read")
        if resp.is_error:
            self._fail(resp, f"delete {path}")
        return resp.json()["commit"]["sha"]

    def merge_branch(self, ref: str, base: str, head: str, message: str) -> Optional[str]:
        """Merge `head` into `base`. Returns the merge commit SHA, None if nothing to merge."""
        owner, name = _split(ref)
        resp = self._request(
            "POST", f"/repos/{owner}/{name}/merges",
            json={"base": base, "head": head, "commit_message": message},
        )
        if resp.status_code == 204:
            logger.info(f"Nothing to merge: {head} is already in {base} on {ref}")
            return None
        if resp.status_code == 409:
            raise FileConflictError(f"Merge conflict merging {head} into {base}")
        if resp.status_code == 404:
            raise RepoFileNotFoundError(f"Branch {head!r} or {base!r} not found in {ref}")
        if resp.is_error:
            self._fail(resp, f"merge {head} into {base}")
        sha = resp.json()["sha"]
        logger.info(f"Merged {head} into {base} on {ref} ({sha[:8]})")
        return sha

    @staticmethod
    def _repo_info(data: dict) -> RepoInfo:
        return RepoInfo(
            full_name=data["full_name"],
            html_url=data.get("html_url", ""),
            clone_url=data.get("clone_url", ""),
            default_branch=data.get("default_branch") or "main",
            is_private=bool(data.get("private", False)),
            language=data.get("language"),
        )

    def close(self):
        if self._client:
            self._client.close()


# Singleton instance
_github: Optional[GitHubClient] = None


def get_github_client() -> GitHubClient:
    """Get or create the global GitHubClient instance."""
    global _github
    if _github is None:
        _github = GitHubClient(
            token=os.environ.get("GITHUB_TOKEN"),
            managed_owner=os.environ.get("GITHUB_OWNER"),
        )
    return _github
