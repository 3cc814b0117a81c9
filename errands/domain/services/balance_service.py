"""
Balance Service - Runner balance accrual

Credits approved errand payments and debits approved balance payments on
the runner's RunnerBalance. Every applied transaction is written to the
balance ledger; the unique transaction_id there makes both operations
idempotent. Nothing here commits, the caller owns the unit of work.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from errands.core.config import settings
from errands.core.exceptions import InsufficientBalanceError, ValidationException
from errands.core.logging import get_logger
from errands.core.validation import CENTS, ZERO, to_money
from errands.db.models.balance_ledger import BalanceLedgerEntry, LedgerEntryType
from errands.db.models.balance_transaction import (
    BalanceTransaction,
    TransactionStatus,
    TransactionType,
    UNRESOLVED_STATUSES,
)
from errands.db.models.runner_balance import RunnerBalance, RunnerBalanceStatus

logger = get_logger(__name__)


def calculate_service_fee(original_amount: Decimal) -> Decimal:
    """Flat fee up to the threshold, a percentage of the amount above it"""
    amount = to_money(original_amount, field="original_amount")
    if amount <= ZERO:
        return ZERO
    if amount <= to_money(settings.SERVICE_FEE_FLAT_THRESHOLD):
        return to_money(settings.SERVICE_FEE_FLAT)
    rate = Decimal(str(settings.SERVICE_FEE_RATE))
    return (amount * rate).quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_platform_commission(service_fee: Decimal) -> Decimal:
    """Platform share of the service fee"""
    rate = Decimal(str(settings.PLATFORM_COMMISSION_RATE))
    return (to_money(service_fee, field="service_fee") * rate).quantize(CENTS, rounding=ROUND_HALF_UP)


def derive_status(
    balance: RunnerBalance,
    has_unresolved_payment: bool,
    now: Optional[datetime] = None,
) -> RunnerBalanceStatus:
    """
    Status a balance should have, without touching the database.

    payment_pending wins while a balance payment awaits review; otherwise
    the balance is overdue once it has been above the threshold for longer
    than the payment window.
    """
    if has_unresolved_payment:
        return RunnerBalanceStatus.PAYMENT_PENDING

    threshold = to_money(settings.BALANCE_OVERDUE_THRESHOLD)
    if (
        balance.current_balance is not None
        and balance.current_balance > threshold
        and balance.days_elapsed(now) > settings.BALANCE_PAYMENT_DUE_DAYS
    ):
        return RunnerBalanceStatus.PAYMENT_OVERDUE

    return RunnerBalanceStatus.ACTIVE


@dataclass(frozen=True)
class PaymentStatus:
    """Urgency of a runner's outstanding balance, as shown to the runner and admins"""
    status: str
    message: str
    urgency: str
    days_elapsed: int

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "message": self.message,
            "urgency": self.urgency,
            "days_elapsed": self.days_elapsed,
        }


CLEAR_PAYMENT_STATUS = PaymentStatus("clear", "No outstanding balance", "none", 0)


def payment_status(balance: Optional[RunnerBalance], now: Optional[datetime] = None) -> PaymentStatus:
    """Project the balance age onto clear / active / reminder / due / overdue"""
    if balance is None or not balance.has_outstanding_balance:
        return CLEAR_PAYMENT_STATUS

    days = balance.days_elapsed(now)
    due_days = settings.BALANCE_PAYMENT_DUE_DAYS

    if days < settings.BALANCE_REMINDER_DAYS:
        return PaymentStatus(
            "active",
            f"Balance accumulating - payment due in {due_days - days} days",
            "low",
            days,
        )
    if days < due_days:
        return PaymentStatus(
            "reminder",
            f"Payment reminder - balance due in {due_days - days} day(s) ({due_days}-day limit)",
            "medium",
            days,
        )
    if days == due_days:
        return PaymentStatus(
            "due",
            f"Payment due TODAY ({due_days}-day limit reached)",
            "high",
            days,
        )
    return PaymentStatus(
        "overdue",
        f"Balance overdue by {days - due_days} day(s) - immediate payment required",
        "critical",
        days,
    )


class BalanceService:
    """Service for managing runner balances"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_balance(self, runner_id: int, for_update: bool = False) -> Optional[RunnerBalance]:
        query = select(RunnerBalance).where(RunnerBalance.runner_id == runner_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create_balance(self, runner_id: int, for_update: bool = False) -> RunnerBalance:
        """Get existing balance or create an empty one (flushed, not committed)"""
        balance = await self.get_balance(runner_id, for_update=for_update)

        if not balance:
            balance = RunnerBalance(
                runner_id=runner_id,
                current_balance=ZERO,
                total_earned=ZERO,
                total_paid=ZERO,
                status=RunnerBalanceStatus.ACTIVE,
                reminder_sent=False,
                warning_sent=False,
            )
            self.db.add(balance)
            await self.db.flush()
            logger.info("Runner balance created", extra_data={"runner_id": runner_id})

        return balance

    async def is_applied(self, transaction_id: int) -> bool:
        """Whether the transaction already has a ledger entry"""
        result = await self.db.execute(
            select(func.count(BalanceLedgerEntry.id))
            .where(BalanceLedgerEntry.transaction_id == transaction_id)
        )
        return result.scalar_one() > 0

    async def has_unresolved_balance_payment(self, runner_id: int) -> bool:
        result = await self.db.execute(
            select(func.count(BalanceTransaction.id))
            .where(
                BalanceTransaction.runner_id == runner_id,
                BalanceTransaction.type == TransactionType.BALANCE_PAYMENT,
                BalanceTransaction.status.in_(UNRESOLVED_STATUSES),
            )
        )
        return result.scalar_one() > 0

    async def credit(
        self,
        balance: RunnerBalance,
        transaction: BalanceTransaction,
        now: Optional[datetime] = None,
    ) -> Optional[BalanceLedgerEntry]:
        """
        Credit an approved errand payment to the runner's balance.

        Returns the ledger entry, or None when the transaction was already
        applied.
        """
        self._check_applicable(balance, transaction, TransactionType.ERRAND_PAYMENT)

        if await self.is_applied(transaction.id):
            logger.info(
                "Errand payment already credited, skipping",
                extra_data={"transaction_id": transaction.id, "runner_id": balance.runner_id},
            )
            return None

        now = now or datetime.utcnow()
        amount = transaction.runner_earnings
        previous = balance.current_balance

        balance.total_earned = balance.total_earned + amount
        balance.current_balance = balance.current_balance + amount
        if previous <= ZERO < balance.current_balance:
            balance.balance_started_at = now

        entry = BalanceLedgerEntry(
            runner_id=balance.runner_id,
            transaction_id=transaction.id,
            entry_type=LedgerEntryType.CREDIT,
            amount=amount,
            balance_after=balance.current_balance,
            description=f"Service fee for errand #{transaction.post_id}",
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(
            "Runner balance credited",
            extra_data={
                "runner_id": balance.runner_id,
                "transaction_id": transaction.id,
                "amount": str(amount),
                "balance_after": str(balance.current_balance),
            },
        )
        return entry

    async def debit(
        self,
        balance: RunnerBalance,
        transaction: BalanceTransaction,
        now: Optional[datetime] = None,
    ) -> Optional[BalanceLedgerEntry]:
        """
        Debit an approved balance payment from the runner's balance.

        A full payment restarts the reminder cycle. Returns the ledger
        entry, or None when the transaction was already applied.
        """
        self._check_applicable(balance, transaction, TransactionType.BALANCE_PAYMENT)

        if await self.is_applied(transaction.id):
            logger.info(
                "Balance payment already debited, skipping",
                extra_data={"transaction_id": transaction.id, "runner_id": balance.runner_id},
            )
            return None

        amount = transaction.total_amount
        new_balance = balance.current_balance - amount
        if new_balance < -to_money(settings.BALANCE_NEGATIVE_TOLERANCE):
            raise InsufficientBalanceError(
                runner_id=balance.runner_id,
                current_balance=float(balance.current_balance),
                requested_amount=float(amount),
            )

        balance.total_paid = balance.total_paid + amount
        balance.current_balance = new_balance
        balance.last_payment_date = now or datetime.utcnow()

        if new_balance <= ZERO:
            balance.balance_started_at = None
            balance.reminder_sent = False
            balance.warning_sent = False

        entry = BalanceLedgerEntry(
            runner_id=balance.runner_id,
            transaction_id=transaction.id,
            entry_type=LedgerEntryType.DEBIT,
            amount=-amount,
            balance_after=new_balance,
            description="Balance payment",
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(
            "Runner balance debited",
            extra_data={
                "runner_id": balance.runner_id,
                "transaction_id": transaction.id,
                "amount": str(amount),
                "balance_after": str(new_balance),
            },
        )
        return entry

    async def refresh_status(
        self,
        balance: RunnerBalance,
        now: Optional[datetime] = None,
    ) -> RunnerBalanceStatus:
        """Recompute and store the balance status"""
        has_unresolved = await self.has_unresolved_balance_payment(balance.runner_id)
        status = derive_status(balance, has_unresolved, now)
        if balance.status != status:
            logger.info(
                "Runner balance status changed",
                extra_data={
                    "runner_id": balance.runner_id,
                    "from": str(balance.status),
                    "to": status.value,
                },
            )
            balance.status = status
        return status

    @staticmethod
    def mark_reminder_sent(balance: RunnerBalance) -> None:
        balance.reminder_sent = True

    @staticmethod
    def mark_warning_sent(balance: RunnerBalance) -> None:
        balance.warning_sent = True

    @staticmethod
    def _check_applicable(
        balance: RunnerBalance,
        transaction: BalanceTransaction,
        expected_type: TransactionType,
    ) -> None:
        if transaction.id is None:
            raise ValidationException("Transaction must be persisted before it is applied", field="transaction_id")
        if transaction.type != expected_type:
            raise ValidationException(
                f"Only {expected_type.value} transactions can be applied here",
                field="type",
            )
        if transaction.status != TransactionStatus.APPROVED:
            raise ValidationException("Only approved transactions affect the balance", field="status")
        if transaction.runner_id != balance.runner_id:
            raise ValidationException("Transaction belongs to another runner", field="runner_id")
