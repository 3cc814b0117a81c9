"""
Celery tasks

Each task runs its coroutine on a fresh event loop with its own database
session, since Celery workers are synchronous.
"""
import asyncio
from contextlib import contextmanager

from errands.workers.celery_app import celery_app
from errands.db.database import get_task_session
from errands.domain.services.balance_reminder_service import BalanceReminderService
from errands.core.logging import get_logger, set_correlation_id

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """New event loop per task, with the Redis singleton and pending tasks cleaned up"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # The Redis client is bound to this loop; drop it before the loop closes
            from errands.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="errands.workers.tasks.check_balance_reminders")
def check_balance_reminders():
    """
    Daily sweep over outstanding runner balances.

    Sends the day-4 reminder and day-5 due notice, flags balances overdue
    after day 5 and bans runners past day 7. Safe to re-run on the same day.
    """
    async def _process():
        async with get_task_session() as db:
            result = await BalanceReminderService(db).run()
            return result.to_dict()

    return run_async(_process())
