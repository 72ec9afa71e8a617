"""Vercel hosting client.

Registers hosted projects linked to a GitHub repository, triggers
deployments from a branch, and reads deployment state. The raw
`readyState` strings are returned untouched; translating them into
DeploymentStatus happens in hostfix.deployments.poller only.

Requires environment variables:
    VERCEL_TOKEN: API token
    VERCEL_TEAM_ID: optional, scopes every call to a team
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx

from hostfix.errors import CapabilityError, DeploymentError

logger = logging.getLogger(__name__)

VERCEL_API_URL = "https://api.vercel.com"
ENV_TARGETS = ["production", "preview", "development"]


@dataclass
class HostedProject:
    id: str
    name: str


@dataclass
class DeployHandle:
    """A freshly triggered deployment."""
    id: str
    url: Optional[str]
    ready_state: str


@dataclass
class DeploymentState:
    ready_state: str
    url: Optional[str] = None
    error_message: Optional[str] = None


def _https(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return url if url.startswith("http") else f"https://{url}"


class VercelClient:
    """Deployment capability backed by the Vercel REST API."""

    def __init__(
        self,
        token: Optional[str] = None,
        team_id: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.team_id = team_id
        if http_client is not None:
            self._client = http_client
        elif token:
            self._client = httpx.Client(
                base_url=VERCEL_API_URL,
                headers={"Authorization": f"Bearer {token}"},
                timeout=30.0,
            )
        else:
            self._client = None
            logger.warning("VERCEL_TOKEN not set — hosting calls will fail")

    def _request(self, method: str, path: str, action: str, **kwargs) -> dict:
        if self._client is None:
            raise CapabilityError("Vercel is not configured (VERCEL_TOKEN missing)")
        if self.team_id:
            kwargs["params"] = {**(kwargs.get("params") or {}), "teamId": self.team_id}
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Vercel HTTP error during {action}: {e}")
            raise DeploymentError(f"Vercel HTTP error during {action}: {e}") from e

        if resp.is_error:
            message = resp.text[:500]
            try:
                message = resp.json().get("error", {}).get("message") or message
            except ValueError:
                pass
            logger.error(f"Vercel API error during {action}: {resp.status_code} — {message}")
            raise DeploymentError(f"Vercel API error during {action}: {resp.status_code} — {message}")
        return resp.json()

    def register_project(
        self,
        name: str,
        repo_full_name: str,
        framework: str = "vite",
        env: Optional[dict[str, str]] = None,
    ) -> HostedProject:
        """Create a project linked to a GitHub repo, with encrypted env vars on all targets."""
        body: dict = {
            "name": name,
            "framework": framework,
            "gitRepository": {"type": "github", "repo": repo_full_name},
        }
        if env:
            body["environmentVariables"] = [
                {"key": key, "value": value, "type": "encrypted", "target": ENV_TARGETS}
                for key, value in env.items()
            ]

        data = self._request("POST", "/v10/projects", f"register project {name}", json=body)
        logger.info(f"Registered Vercel project {data['name']} ({data['id']}) for {repo_full_name}")
        return HostedProject(id=data["id"], name=data["name"])

    def trigger_deploy(
        self,
        project_name: str,
        repo_full_name: str,
        branch: str = "main",
        message: Optional[str] = None,
        production: Optional[bool] = None,
    ) -> DeployHandle:
        """Deploy `branch` of the linked repo.

        `project_name` is the hosted project name or id. Builds of main go to
        production unless `production` says otherwise.
        """
        org, _, repo = repo_full_name.partition("/")
        if production is None:
            production = branch == "main"
        body: dict = {
            "name": project_name,
            "project": project_name,
            "gitSource": {"type": "github", "org": org, "repo": repo, "ref": branch},
        }
        if production:
            body["target"] = "production"
        if message:
            body["meta"] = {"githubCommitMessage": message}

        data = self._request("POST", "/v13/deployments", f"deploy {project_name}@{branch}", json=body)
        logger.info(
            f"Triggered deployment {data['id']} of {project_name}@{branch} "
            f"({'production' if production else 'preview'})"
        )
        return DeployHandle(
            id=data["id"],
            url=_https(data.get("url")),
            ready_state=data.get("readyState", "QUEUED"),
        )

    def get_deployment(self, deploy_id: str) -> DeploymentState:
        data = self._request("GET", f"/v13/deployments/{deploy_id}", f"get deployment {deploy_id}")
        return DeploymentState(
            ready_state=data.get("readyState", "QUEUED"),
            url=_https(data.get("url")),
            error_message=data.get("errorMessage"),
        )

    def close(self):
        if self._client:
            self._client.close()


_vercel: Optional[VercelClient] = None


def get_vercel_client() -> VercelClient:
    """Get or create the global VercelClient instance."""
    global _vercel
    if _vercel is None:
        _vercel = VercelClient(
            token=os.environ.get("VERCEL_TOKEN"),
            team_id=os.environ.get("VERCEL_TEAM_ID") or None,
        )
    return _vercel
