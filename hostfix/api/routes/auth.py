"""Account routes.

Endpoints:
    POST /v1/auth/register     Create the local user after sign-up (idempotent)
    GET  /v1/auth/me           Current user profile
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from hostfix.api.deps import get_current_user
from hostfix.store import records
from hostfix.store.db import integrity_errors

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    external_auth_id: str = Field(min_length=1, description="User id issued by the identity provider")
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    full_name: Optional[str] = None


def _find_user(external_auth_id: str) -> Optional[dict]:
    users = records.list_by("users", external_auth_id=external_auth_id, limit=1)
    return users[0] if users else None


@router.post("/register")
async def register(request: RegisterRequest, response: Response):
    """Create the user for an identity-provider account, or return the existing one."""
    existing = _find_user(request.external_auth_id)
    if existing:
        return existing

    try:
        user = records.insert("users", {**request.model_dump(), "fix_count": 0})
    except integrity_errors():
        # Concurrent registration of the same account, or the email is in use
        existing = _find_user(request.external_auth_id)
        if existing:
            return existing
        raise HTTPException(status_code=409, detail="Email already registered to another account")

    logger.info(f"Registered user {user['id']} ({user['email']})")
    response.status_code = 201
    return user


@router.get("/me")
async def me(user: dict = Depends(get_current_user)):
    return user
