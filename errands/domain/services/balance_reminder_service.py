"""
Balance Reminder Service - daily sweep over outstanding runner balances

Per runner with a positive balance, at most one action per run:
- more than BALANCE_BAN_AFTER_DAYS: ban the runner
- more than BALANCE_PAYMENT_DUE_DAYS: overdue warning (once), status payment_overdue
- exactly BALANCE_PAYMENT_DUE_DAYS: payment due today
- BALANCE_REMINDER_DAYS or more: reminder (once)

Runners whose balance payment is awaiting admin review are left alone.
Notices are handed to the notification channel, which for now is the log.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errands.core.config import settings
from errands.core.exceptions import LockTimeoutError, PersistenceError
from errands.core.locks import runner_lock
from errands.core.logging import get_logger
from errands.db.models.runner_balance import RunnerBalance
from errands.db.models.user import User
from errands.domain.services.balance_service import BalanceService

logger = get_logger(__name__)


class NoticeType(str, enum.Enum):
    REMINDER = "balance_reminder"
    PAYMENT_DUE = "balance_payment_due"
    WARNING = "balance_warning"
    BANNED = "account_banned"


@dataclass(frozen=True)
class BalanceNotice:
    runner_id: int
    notice_type: NoticeType
    title: str
    message: str
    days_elapsed: int
    balance: Decimal


@dataclass
class ReminderSweepResult:
    reminders: int = 0
    payment_due: int = 0
    warnings: int = 0
    banned: int = 0
    skipped: int = 0
    notices: list[BalanceNotice] = field(default_factory=list)

    def record(self, notice: BalanceNotice) -> None:
        self.notices.append(notice)
        if notice.notice_type == NoticeType.REMINDER:
            self.reminders += 1
        elif notice.notice_type == NoticeType.PAYMENT_DUE:
            self.payment_due += 1
        elif notice.notice_type == NoticeType.WARNING:
            self.warnings += 1
        elif notice.notice_type == NoticeType.BANNED:
            self.banned += 1

    def to_dict(self) -> dict:
        return {
            "reminders": self.reminders,
            "payment_due": self.payment_due,
            "warnings": self.warnings,
            "banned": self.banned,
            "skipped": self.skipped,
        }


def select_action(balance: RunnerBalance, runner_banned: bool, now: Optional[datetime] = None) -> Optional[NoticeType]:
    """Which action the sweep takes for this balance today, if any"""
    if not balance.has_outstanding_balance or balance.balance_started_at is None:
        return None

    days = balance.days_elapsed(now)
    if days > settings.BALANCE_BAN_AFTER_DAYS:
        return None if runner_banned else NoticeType.BANNED
    if days > settings.BALANCE_PAYMENT_DUE_DAYS:
        return None if balance.warning_sent else NoticeType.WARNING
    if days == settings.BALANCE_PAYMENT_DUE_DAYS:
        return NoticeType.PAYMENT_DUE
    if days >= settings.BALANCE_REMINDER_DAYS:
        return None if balance.reminder_sent else NoticeType.REMINDER
    return None


def build_notice(notice_type: NoticeType, balance: RunnerBalance, now: Optional[datetime] = None) -> BalanceNotice:
    days = balance.days_elapsed(now)
    amount = f"₱{balance.current_balance:,.2f}"
    due_days = settings.BALANCE_PAYMENT_DUE_DAYS

    if notice_type == NoticeType.REMINDER:
        title = "Payment Reminder"
        message = (
            f"Your errands balance of {amount} will be due in {max(due_days - days, 0)} day(s). "
            "Please pay soon to avoid penalties."
        )
    elif notice_type == NoticeType.PAYMENT_DUE:
        title = f"Payment Due Today - {due_days} Days Reached"
        message = (
            f"Your errands balance of {amount} is due today ({due_days} days). "
            "Please pay immediately to avoid your account being marked as overdue."
        )
    elif notice_type == NoticeType.WARNING:
        title = "Payment Overdue - Warning"
        message = (
            f"Your errands balance of {amount} is now overdue (exceeded {due_days} days). "
            "Please pay immediately to avoid account suspension."
        )
    else:
        title = "Account Banned"
        message = (
            f"Your account has been banned due to an overdue balance payment of {amount}. "
            f"Payment was due {days} days ago."
        )

    return BalanceNotice(
        runner_id=balance.runner_id,
        notice_type=notice_type,
        title=title,
        message=message,
        days_elapsed=days,
        balance=balance.current_balance,
    )


class BalanceReminderService:
    """Reminder, overdue and ban sweep; commits once per runner"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.balance_service = BalanceService(db)

    async def _candidate_runner_ids(self) -> list[int]:
        result = await self.db.execute(
            select(RunnerBalance.runner_id)
            .where(
                RunnerBalance.current_balance > 0,
                RunnerBalance.balance_started_at.is_not(None),
            )
            .order_by(RunnerBalance.runner_id)
        )
        return list(result.scalars().all())

    async def run(self, now: Optional[datetime] = None) -> ReminderSweepResult:
        now = now or datetime.utcnow()
        result = ReminderSweepResult()

        for runner_id in await self._candidate_runner_ids():
            try:
                notice = await self._process_runner(runner_id, now)
            except LockTimeoutError:
                # Runner is mid-payment; tomorrow's run picks them up again
                result.skipped += 1
                logger.warning("Reminder sweep skipped busy runner", extra_data={"runner_id": runner_id})
                continue

            if notice is not None:
                result.record(notice)
                self._deliver(notice)

        logger.info("Balance reminder sweep finished", extra_data=result.to_dict())
        return result

    async def _process_runner(self, runner_id: int, now: datetime) -> Optional[BalanceNotice]:
        async with runner_lock(runner_id):
            try:
                notice = await self._apply(runner_id, now)
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    "Reminder sweep failed for runner",
                    extra_data={"runner_id": runner_id, "error": str(e)},
                    exc_info=True,
                )
                raise PersistenceError("check_balance_reminders")
        return notice

    async def _apply(self, runner_id: int, now: datetime) -> Optional[BalanceNotice]:
        balance = await self.balance_service.get_balance(runner_id, for_update=True)
        if balance is None:
            return None

        if await self.balance_service.has_unresolved_balance_payment(runner_id):
            await self.balance_service.refresh_status(balance, now=now)
            return None

        user_result = await self.db.execute(
            select(User).where(User.id == runner_id).with_for_update()
        )
        runner = user_result.scalar_one_or_none()
        if runner is None:
            logger.error("Balance without runner account", extra_data={"runner_id": runner_id})
            return None

        action = select_action(balance, runner.is_banned, now)
        if action == NoticeType.REMINDER:
            self.balance_service.mark_reminder_sent(balance)
        elif action == NoticeType.WARNING:
            self.balance_service.mark_warning_sent(balance)
        elif action == NoticeType.BANNED:
            days = balance.days_elapsed(now)
            runner.is_banned = True
            runner.banned_at = now
            runner.ban_reason = f"Overdue balance payment - {days} days past due"
            logger.warning(
                "Runner banned for overdue balance",
                extra_data={"runner_id": runner_id, "days_elapsed": days},
            )

        await self.balance_service.refresh_status(balance, now=now)
        return build_notice(action, balance, now) if action is not None else None

    def _deliver(self, notice: BalanceNotice) -> None:
        logger.info(
            notice.title,
            extra_data={
                "runner_id": notice.runner_id,
                "notice_type": notice.notice_type.value,
                "message": notice.message,
                "days_elapsed": notice.days_elapsed,
            },
        )
