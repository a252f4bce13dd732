"""
Access tokens and signed OAuth state.

Tokens are HS256 JWTs whose ``sub`` claim is the practitioner's profile id.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, cast

import jwt

from .core.config import settings

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL = timedelta(minutes=15)
OAUTH_STATE_PURPOSE = "google_calendar_oauth"


def _secret_value(secret_obj: Any) -> str:
    getter = getattr(secret_obj, "get_secret_value", None)
    if callable(getter):
        return cast(str, getter())
    return cast(str, secret_obj)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode; ``sub`` must be the profile id
        expires_delta: Optional lifetime, defaults to the configured minutes

    Returns:
        str: The encoded JWT token
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, _secret_value(settings.secret_key), algorithm=settings.algorithm)
    logger.debug(f"Created access token for profile: {data.get('sub')}")
    return cast(str, encoded_jwt)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Raises:
        jwt.PyJWTError: Invalid signature, malformed or expired token
    """
    payload = jwt.decode(token, _secret_value(settings.secret_key), algorithms=[settings.algorithm])
    return cast(Dict[str, Any], payload)


def create_oauth_state(user_id: str, source: str) -> str:
    """Short-lived signed state carried through the Google consent screen."""
    return create_access_token(
        {"sub": user_id, "source": source, "purpose": OAUTH_STATE_PURPOSE},
        expires_delta=OAUTH_STATE_TTL,
    )


def decode_oauth_state(state: str) -> Dict[str, Any]:
    """
    Raises:
        jwt.PyJWTError: Tampered, expired or foreign state
    """
    payload = decode_access_token(state)
    if payload.get("purpose") != OAUTH_STATE_PURPOSE:
        raise jwt.InvalidTokenError("Not an OAuth state token")
    return payload
