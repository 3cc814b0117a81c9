"""
Post Service - errand lifecycle outside the payment workflow

Creating, accepting and confirming errands. The accepted -> runner_completed
step belongs to the payment approval in TransactionStateMachine.
"""
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errands.core.exceptions import (
    ForbiddenError,
    PersistenceError,
    PostNotFoundError,
    PostStatusError,
    ValidationException,
)
from errands.core.logging import get_logger
from errands.core.validation import TextSanitizer
from errands.db.models.post import Post, PostStatus
from errands.db.models.user import User
from errands.domain.actors import Actor, ActorRole

logger = get_logger(__name__)

CONTENT_MAX_LENGTH = 255
DESTINATION_MAX_LENGTH = 255


class PostService:
    """Service for errand posts"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_post(self, post_id: int, for_update: bool = False) -> Post:
        query = select(Post).where(Post.id == post_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        post = result.scalar_one_or_none()
        if not post:
            raise PostNotFoundError(post_id)
        return post

    async def create_post(self, actor: Actor, content: str, destination: str) -> Post:
        actor.require_role(ActorRole.CUSTOMER)

        clean_content = TextSanitizer.sanitize(content, CONTENT_MAX_LENGTH)
        if not clean_content:
            raise ValidationException("Content is required", field="content")
        clean_destination = TextSanitizer.sanitize(destination, DESTINATION_MAX_LENGTH)
        if not clean_destination:
            raise ValidationException("Destination is required", field="destination")

        post = Post(
            content=clean_content,
            destination=clean_destination,
            user_id=actor.user_id,
            status=PostStatus.PENDING,
        )
        self.db.add(post)
        await self._commit("create_post")
        await self.db.refresh(post)

        logger.info("Errand posted", extra_data={"post_id": post.id, "customer_id": actor.user_id})
        return post

    async def accept_post(self, post_id: int, actor: Actor) -> Post:
        """pending -> accepted by a runner other than the customer"""
        actor.require_role(ActorRole.RUNNER)

        post = await self.get_post(post_id, for_update=True)
        if post.user_id == actor.user_id:
            raise ForbiddenError("You cannot cater your own post", user_id=actor.user_id)

        if post.status != PostStatus.PENDING:
            raise PostStatusError(
                post_id=post.id,
                current_status=PostStatus(post.status).value,
                required_status=PostStatus.PENDING.value,
                message="Post is not available",
            )

        post.status = PostStatus.ACCEPTED
        post.runner_id = actor.user_id
        post.accepted_at = datetime.utcnow()
        await self._commit("accept_post")

        logger.info("Errand accepted", extra_data={"post_id": post.id, "runner_id": actor.user_id})
        return post

    async def confirm_complete(self, post_id: int, actor: Actor) -> Post:
        """
        runner_completed -> completed by the customer.

        Archives the errand and awards the runner one point.
        """
        actor.require_role(ActorRole.CUSTOMER)

        post = await self.get_post(post_id, for_update=True)
        if post.user_id != actor.user_id:
            raise ForbiddenError("Unauthorized to confirm completion for this post", user_id=actor.user_id)

        if post.status != PostStatus.RUNNER_COMPLETED:
            raise PostStatusError(
                post_id=post.id,
                current_status=PostStatus(post.status).value,
                required_status=PostStatus.RUNNER_COMPLETED.value,
                message="Post is not ready for completion confirmation",
            )

        post.status = PostStatus.COMPLETED
        post.archived = True
        post.confirmed_at = datetime.utcnow()

        if post.runner_id:
            await self.db.execute(
                update(User).where(User.id == post.runner_id).values(points=User.points + 1)
            )

        await self._commit("confirm_complete")

        logger.info(
            "Errand completion confirmed",
            extra_data={"post_id": post.id, "runner_id": post.runner_id},
        )
        return post

    async def _commit(self, operation: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Errand update failed",
                extra_data={"operation": operation, "error": str(e)},
                exc_info=True,
            )
            raise PersistenceError(operation)
