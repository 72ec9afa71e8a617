"""Schemas for fix requests: lifecycle states, AI results, API payloads."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FixStatus(str, Enum):
    """Fix request lifecycle states."""
    SUBMITTED = "submitted"
    TRIAGING = "triaging"
    QUOTED = "quoted"
    AWAITING_PAYMENT = "awaiting_payment"
    IN_PROGRESS = "in_progress"
    PREVIEW_READY = "preview_ready"
    APPROVED = "approved"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    REJECTED = "rejected"
    OUT_OF_SCOPE = "out_of_scope"
    FAILED = "failed"


class FixComplexity(str, Enum):
    SIMPLE = "simple"
    COMPLEX = "complex"
    OUT_OF_SCOPE = "out_of_scope"


class FileAction(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class TriageResult(BaseModel):
    """Structured triage classification returned by the AI model."""

    complexity: FixComplexity
    summary: str = Field(description="One-line summary of what needs to change")
    affected_files: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    estimated_changes: int = Field(default=0, description="Rough number of changed lines")
    reasoning: str = ""


class FileChange(BaseModel):
    """One file edit produced by fix generation."""

    file_path: str
    action: FileAction
    new_content: str = Field(default="", description="Complete new file content (empty for delete)")
    description: str = ""


class FixResult(BaseModel):
    """Result of AI fix generation. success=False carries a reason in `error`."""

    success: bool
    changes: list[FileChange] = Field(default_factory=list)
    explanation: str = ""
    test_suggestions: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class SourceFile(BaseModel):
    path: str
    content: str


# --- API payloads ---


class SubmitFixRequest(BaseModel):
    description: str = Field(min_length=10, max_length=5000)


class ConfirmFixResponse(BaseModel):
    fix_id: str
    status: FixStatus
    price_in_cents: int
    payment_intent_id: str
    client_secret: Optional[str] = None
