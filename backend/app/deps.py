"""FastAPI dependency functions shared across routers.

Authentication is a single policy switched by ``REQUIRE_AUTH``:

* off (default): every route is open and the caller's user id is ``None``.
* on: routes need ``Authorization: Bearer <token>``.  The token is checked
  against the identity provider's userinfo endpoint and the caller's user id
  is the returned subject.  Anything else is a 401.
"""

import logging
from typing import Annotated

import httpx
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth.identity import get_user_info, subject_of
from app.config import settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Security(_bearer_scheme)
    ] = None,
) -> str | None:
    """Return the caller's user id, or None when auth is not required.

    Usage::

        @router.post("/text-to-image")
        async def endpoint(user_id: str | None = Depends(get_current_user)):
            ...
    """
    if not settings.require_auth:
        return None

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization header. Use: Bearer <token>",
        )

    try:
        user_info = await get_user_info(credentials.credentials)
    except httpx.HTTPError as exc:
        logger.warning("Token verification failed: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid or expired token") from exc

    user_id = subject_of(user_info)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Token has no subject")

    logger.debug("Caller authenticated", extra={"user_id": user_id})
    return user_id
