"""Schemas for hosted projects and the migration pipeline."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

SUBDOMAIN_PATTERN = r"^[a-z0-9-]+$"
URL_PATTERN = r"^https?://\S+$"


class ProjectStatus(str, Enum):
    """Project lifecycle states."""
    ONBOARDING = "onboarding"
    MIGRATING = "migrating"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    github_repo_url: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    supabase_url: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    supabase_anon_key: Optional[str] = None
    subdomain: Optional[str] = Field(
        default=None, min_length=3, max_length=30, pattern=SUBDOMAIN_PATTERN,
    )
    custom_domain: Optional[str] = None


class UpdateProjectRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    supabase_url: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    supabase_anon_key: Optional[str] = None
    subdomain: Optional[str] = Field(
        default=None, min_length=3, max_length=30, pattern=SUBDOMAIN_PATTERN,
    )
    custom_domain: Optional[str] = None


class MigrationInput(BaseModel):
    """Inputs of one migration attempt, rebuilt from the project row each time."""

    project_id: str
    github_repo_url: str
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None


class MigrationResult(BaseModel):
    success: bool
    vercel_project_id: Optional[str] = None
    vercel_url: Optional[str] = None
    github_repo_full_name: Optional[str] = None
    error: Optional[str] = None
