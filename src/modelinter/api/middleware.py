"""Shared-secret guard for the /api/v1 router."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from modelinter.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def _token_matches(credentials: HTTPAuthorizationCredentials | None, api_key: str) -> bool:
    if credentials is None:
        return False
    return secrets.compare_digest(credentials.credentials.encode(), api_key.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Gate inference and status routes behind MODELINTER_API_KEY.

    An unset key leaves the service open.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None or _token_matches(credentials, settings.api_key):
        return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="A valid bearer token is required",
        headers={"WWW-Authenticate": "Bearer"},
    )
