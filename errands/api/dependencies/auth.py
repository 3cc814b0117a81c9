"""
FastAPI dependencies resolving the authenticated actor.

Usage:
    @router.get("/balance")
    async def get_balance(
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db),
    ):
        runner_id = actor.user_id
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errands.core.auth import verify_token
from errands.core.exceptions import ForbiddenError, UnauthorizedError
from errands.core.logging import get_logger
from errands.db.database import get_db
from errands.db.models.user import User
from errands.domain.actors import Actor, ActorRole

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Verify the bearer token and load the caller.

    Raises 401 when the token is missing or invalid, 403 when the account
    is banned or the token claims admin for a non-admin account.
    """
    if credentials is None:
        raise UnauthorizedError("Missing bearer token")

    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise UnauthorizedError()

    try:
        role = ActorRole(token_data.role)
    except ValueError:
        raise UnauthorizedError(f"Unknown role in token: {token_data.role}")

    result = await db.execute(select(User).where(User.id == token_data.user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise UnauthorizedError("Account no longer exists")

    if user.is_banned:
        logger.warning(
            "Banned user denied",
            extra_data={"user_id": user.id, "ban_reason": user.ban_reason},
        )
        raise ForbiddenError(
            "Your account has been banned",
            user_id=user.id,
            details={"ban_reason": user.ban_reason},
        )

    if role == ActorRole.ADMIN and not user.is_admin:
        logger.error(
            "Admin role claimed by non-admin account",
            extra_data={"user_id": user.id},
        )
        raise ForbiddenError("Admin access required", user_id=user.id)

    return Actor(user_id=user.id, role=role)


async def get_current_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Same as get_current_actor, restricted to admins"""
    actor.require_role(ActorRole.ADMIN)
    return actor
