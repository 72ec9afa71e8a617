"""Error taxonomy shared by the orchestrators, leaf clients and API routes.

Two families:
- Validation errors: bad input or wrong entity state. Raised before any
  record mutation and surfaced to the caller as-is.
- Capability errors: a call to an external provider (source control,
  hosting, AI, payments) failed. Orchestrator steps persist these as
  status=failed with the message in error_log, then re-raise.
"""

from typing import Optional


class HostfixError(Exception):
    """Base class for all hostfix errors."""


# --- Validation errors ---


class ValidationError(HostfixError):
    """Malformed input."""


class NotFoundError(HostfixError):
    """A record the operation needs does not exist."""


class InvalidStateError(HostfixError):
    """The record is not in a status that allows the requested transition.

    Also raised when a status claim is lost to a concurrent caller.
    """

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class InvalidRepositoryError(ValidationError):
    """A repository URL or reference could not be parsed."""


class OutOfScopeError(ValidationError):
    """The fix was triaged as out of scope and cannot be charged for."""


class ConflictError(HostfixError):
    """The change collides with an existing record (e.g. a subdomain already in use)."""


# --- Capability errors ---


class CapabilityError(HostfixError):
    """An external provider call failed."""


class AIResponseError(CapabilityError):
    """The AI model returned something that is not the structured result we asked for."""


class RepositoryExistsError(CapabilityError):
    """A managed copy of the repository already exists."""


class BranchExistsError(CapabilityError):
    """The branch being created already exists."""


class RepoFileNotFoundError(CapabilityError):
    """A file, branch or ref does not exist in the repository."""


class FileConflictError(CapabilityError):
    """The file changed since its revision was read; the write was refused."""


class DeploymentError(CapabilityError):
    """The hosting provider rejected or failed a request."""


class PaymentError(CapabilityError):
    """The payment provider rejected or failed a request."""
