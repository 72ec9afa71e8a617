"""Request dependencies shared by the routers."""

import logging
from typing import Optional

from fastapi import Header, HTTPException

from hostfix.errors import (
    CapabilityError,
    ConflictError,
    HostfixError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from hostfix.store import records

logger = logging.getLogger(__name__)


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> dict:
    """Resolve the caller from the X-User-Id header.

    Token verification happens upstream (the gateway sets this header);
    here we only check that the id belongs to a registered user.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = records.get("users", x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


def http_error(error: HostfixError) -> HTTPException:
    """Translate a domain error into the HTTPException a route should raise."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidStateError):
        detail = {"message": str(error)}
        if error.current_status:
            detail["current_status"] = error.current_status
        return HTTPException(status_code=409, detail=detail)
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, CapabilityError):
        logger.error(f"Upstream provider error: {error}")
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
