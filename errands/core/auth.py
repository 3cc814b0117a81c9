"""
JWT verification for API requests.

Tokens are issued by the accounts service (login is not part of this
service); they carry the user id and the role the caller is acting in:
customer, runner or admin.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel

from errands.core.config import settings
from errands.core.logging import get_logger

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    """Contents of the JWT"""
    user_id: int
    role: str
    exp: int  # Unix timestamp, JWT standard


def create_access_token(user_id: int, role: str, expires_minutes: int | None = None) -> str:
    """Create a signed access token (used by the accounts service and in tests)"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not set, cannot create a token")
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes if expires_minutes is not None else settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {
        "user_id": user_id,
        "role": role,
        "exp": int(expire.timestamp()),
    }
    return pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify a JWT, returning None when it is invalid or expired"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty, tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (KeyError, ValueError, TypeError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
