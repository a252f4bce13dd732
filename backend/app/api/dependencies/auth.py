# backend/app/api/dependencies/auth.py
"""
Authentication dependencies.

- ``get_current_user``: Bearer JWT → Profile
- ``verify_cron_secret``: shared secret for cron-triggered routes, sent as
  ``X-CRON-KEY`` or ``Authorization: Bearer``
"""

import asyncio
import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlalchemy.orm import Session

from ...auth import decode_access_token
from ...core.config import settings
from ...models.profile import Profile
from ...repositories.factory import RepositoryFactory
from .database import get_db

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Profile:
    """
    Resolve the authenticated practitioner.

    Raises:
        HTTPException: 401 when the token is missing, invalid or unknown
    """
    if not credentials or not credentials.credentials:
        raise _unauthorized("Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as e:
        logger.info(f"Rejected access token: {str(e)}")
        raise _unauthorized("Could not validate credentials")

    profile_id = payload.get("sub")
    if not isinstance(profile_id, str) or not profile_id:
        raise _unauthorized("Could not validate credentials")

    repository = RepositoryFactory.create_profile_repository(db)
    profile = await asyncio.to_thread(repository.get_by_id, profile_id, False)
    if not profile:
        raise _unauthorized("Could not validate credentials")
    return profile


def _presented_cron_secret(request: Request) -> Optional[str]:
    header_key = request.headers.get("x-cron-key")
    if header_key:
        return header_key.strip()
    authorization = request.headers.get("authorization") or ""
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


async def verify_cron_secret(request: Request) -> None:
    """
    Raises:
        HTTPException: 401 when the secret is missing or wrong, 500 when none
            is configured
    """
    expected = settings.cron_secret.get_secret_value()
    if not expected:
        logger.error("Cron endpoint called but CRON_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Cron secret not configured")
    presented = _presented_cron_secret(request)
    if not presented or not hmac.compare_digest(presented, expected):
        logger.warning("Rejected cron call with missing or invalid secret", extra={"path": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
