"""Deployment record states and poll results."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class DeploymentStatus(str, Enum):
    """Internal deployment vocabulary. Remote states are mapped onto this set."""
    QUEUED = "queued"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_DEPLOYMENT_STATUSES = frozenset({
    DeploymentStatus.READY,
    DeploymentStatus.ERROR,
    DeploymentStatus.CANCELLED,
})


class PollResult(BaseModel):
    deployment_id: str
    status: Optional[DeploymentStatus] = None
    url: Optional[str] = None
    error: Optional[str] = None
