"""
Payment Workflow Service - errand and balance payment orchestration

Every write follows the same shape:
1. Resolve the transaction or errand and the runner it belongs to
2. Take the runner's lock (Redis SET NX EX)
3. Re-read the rows with SELECT ... FOR UPDATE and re-check preconditions
4. Apply the state machine and the balance accrual
5. Commit once; any error rolls the whole unit of work back
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errands.core.exceptions import (
    AppException,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    InsufficientBalanceError,
    NoOutstandingBalanceError,
    PersistenceError,
    TransactionNotFoundError,
    TransactionTypeMismatchError,
)
from errands.core.locks import runner_lock
from errands.core.logging import get_logger, log_async_operation
from errands.core.validation import ZERO, AmountValidator
from errands.db.models.balance_transaction import (
    BalanceTransaction,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)
from errands.db.models.post import Post
from errands.db.models.runner_balance import RunnerBalance, RunnerBalanceStatus
from errands.db.models.user import User
from errands.domain.actors import Actor, ActorRole
from errands.domain.services.balance_service import BalanceService, payment_status
from errands.domain.services.post_service import PostService
from errands.domain.services.system_setting_service import SystemSettingService
from errands.domain.services.transaction_state_machine import TransactionStateMachine

logger = get_logger(__name__)

T = TypeVar("T")


class PaymentWorkflowService:
    """Entry point for every payment operation exposed over HTTP"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.state_machine = TransactionStateMachine(db)
        self.balance_service = BalanceService(db)
        self.post_service = PostService(db)
        self.setting_service = SystemSettingService(db)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    async def _locked_write(
        self,
        runner_id: int,
        operation: str,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        """Run work inside the runner's lock and commit it, or roll everything back"""
        try:
            async with runner_lock(runner_id):
                result = await work()
                await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(
                "Concurrent write rejected by constraint",
                extra_data={"operation": operation, "runner_id": runner_id, "error": str(e.orig)},
            )
            raise ConflictError(
                "The transaction was modified concurrently, please retry",
                details={"operation": operation},
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Payment workflow persistence failure",
                extra_data={"operation": operation, "runner_id": runner_id, "error": str(e)},
                exc_info=True,
            )
            raise PersistenceError(operation)
        return result

    async def get_transaction(self, transaction_id: int, for_update: bool = False) -> BalanceTransaction:
        query = select(BalanceTransaction).where(BalanceTransaction.id == transaction_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    async def _apply_approval_effects(self, transaction: BalanceTransaction, now: datetime) -> None:
        """Credit or debit the runner's balance for a freshly approved transaction"""
        if transaction.type == TransactionType.ERRAND_PAYMENT:
            balance = await self.balance_service.get_or_create_balance(transaction.runner_id, for_update=True)
            await self.balance_service.credit(balance, transaction, now=now)
            await self.balance_service.refresh_status(balance, now=now)
        elif transaction.type == TransactionType.BALANCE_PAYMENT:
            balance = await self.balance_service.get_or_create_balance(transaction.runner_id, for_update=True)
            await self.balance_service.debit(balance, transaction, now=now)
            await self.balance_service.refresh_status(balance, now=now)
        else:
            logger.info(
                "Approved transaction does not change the balance",
                extra_data={"transaction_id": transaction.id, "type": TransactionType(transaction.type).value},
            )

    async def _refresh_balance_status(self, runner_id: int, now: datetime) -> None:
        balance = await self.balance_service.get_balance(runner_id, for_update=True)
        if balance is not None:
            await self.balance_service.refresh_status(balance, now=now)

    # ------------------------------------------------------------------
    # Errand payments
    # ------------------------------------------------------------------

    @log_async_operation("submit_errand_payment")
    async def submit_errand_payment(
        self,
        post_id: int,
        actor: Actor,
        amount,
        proof: Optional[str],
        payment_method: PaymentMethod = PaymentMethod.GCASH,
        message_id: Optional[int] = None,
    ) -> BalanceTransaction:
        """Runner submits what the errand cost, with proof of purchase"""
        actor.require_role(ActorRole.RUNNER)
        post = await self.post_service.get_post(post_id)
        if post.runner_id != actor.user_id:
            raise ForbiddenError("You are not assigned to this errand", user_id=actor.user_id)

        async def work() -> BalanceTransaction:
            locked_post = await self.post_service.get_post(post_id, for_update=True)
            transaction = await self.state_machine.submit(
                locked_post,
                runner_id=actor.user_id,
                amount=amount,
                proof=proof,
                payment_method=payment_method,
                message_id=message_id,
            )
            await self.db.flush()
            return transaction

        transaction = await self._locked_write(actor.user_id, "submit_errand_payment", work)
        logger.info(
            "Errand payment submitted",
            extra_data={
                "transaction_id": transaction.id,
                "post_id": post_id,
                "runner_id": actor.user_id,
                "total_amount": str(transaction.total_amount),
            },
        )
        return transaction

    @log_async_operation("verify_errand_payment")
    async def verify_errand_payment(
        self,
        transaction_id: int,
        actor: Actor,
        verified: bool,
        payment_method: Optional[PaymentMethod] = None,
        notes: Optional[str] = None,
    ) -> BalanceTransaction:
        """
        Customer confirms or disputes the submitted amount.

        With auto-approval on, a confirmation approves the payment and
        credits the runner in the same commit.
        """
        actor.require_role(ActorRole.CUSTOMER)
        transaction = await self.get_transaction(transaction_id)
        if transaction.type != TransactionType.ERRAND_PAYMENT:
            raise TransactionTypeMismatchError(
                transaction_id=transaction.id,
                actual_type=TransactionType(transaction.type).value,
                expected_type=TransactionType.ERRAND_PAYMENT.value,
            )

        async def work() -> BalanceTransaction:
            locked = await self.get_transaction(transaction_id, for_update=True)
            post = await self.post_service.get_post(locked.post_id, for_update=True)

            if not verified:
                return self.state_machine.customer_reject(locked, post, actor.user_id, reason=notes)

            now = datetime.utcnow()
            self.state_machine.customer_verify(
                locked, post, actor.user_id, payment_method=payment_method, notes=notes, now=now
            )
            if await self.setting_service.is_auto_approve_enabled():
                self.state_machine.admin_approve(locked, admin_id=None, post=post, now=now)
                await self.db.flush()
                await self._apply_approval_effects(locked, now)
            return locked

        transaction = await self._locked_write(transaction.runner_id, "verify_errand_payment", work)
        logger.info(
            "Errand payment reviewed by customer",
            extra_data={
                "transaction_id": transaction.id,
                "customer_id": actor.user_id,
                "status": TransactionStatus(transaction.status).value,
            },
        )
        return transaction

    async def verify_post_payment(
        self,
        post_id: int,
        actor: Actor,
        verified: bool,
        payment_method: Optional[PaymentMethod] = None,
        notes: Optional[str] = None,
    ) -> BalanceTransaction:
        """verify_errand_payment for the errand's most recent payment"""
        actor.require_role(ActorRole.CUSTOMER)
        post = await self.post_service.get_post(post_id)
        if post.user_id != actor.user_id:
            raise ForbiddenError("Only the errand's customer can verify its payment", user_id=actor.user_id)

        transaction = await self.state_machine.latest_errand_payment(post_id)
        if transaction is None:
            raise TransactionNotFoundError(f"errand payment for errand {post_id}")

        return await self.verify_errand_payment(
            transaction.id, actor, verified, payment_method=payment_method, notes=notes
        )

    # ------------------------------------------------------------------
    # Balance payments
    # ------------------------------------------------------------------

    @log_async_operation("submit_balance_payment")
    async def submit_balance_payment(
        self,
        actor: Actor,
        proof: Optional[str],
        amount=None,
        payment_method: PaymentMethod = PaymentMethod.GCASH,
        notes: Optional[str] = None,
    ) -> BalanceTransaction:
        """Runner pays (part of) the outstanding balance; defaults to all of it"""
        actor.require_role(ActorRole.RUNNER)
        runner_id = actor.user_id

        async def work() -> BalanceTransaction:
            balance = await self.balance_service.get_balance(runner_id, for_update=True)
            if balance is None or balance.current_balance <= ZERO:
                raise NoOutstandingBalanceError(runner_id)

            if amount is None:
                pay_amount = balance.current_balance
            else:
                pay_amount = AmountValidator.require(amount, field="amount", min_value=Decimal("0.01"))
            if pay_amount > balance.current_balance:
                raise InsufficientBalanceError(
                    runner_id=runner_id,
                    current_balance=float(balance.current_balance),
                    requested_amount=float(pay_amount),
                )

            if await self.balance_service.has_unresolved_balance_payment(runner_id):
                raise ConflictError(
                    "A balance payment is already awaiting admin approval",
                    error_code=ErrorCode.OUTSTANDING_BALANCE_PAYMENT,
                    details={"runner_id": runner_id},
                )

            transaction = self.state_machine.open_balance_payment(
                runner_id, pay_amount, proof, payment_method=payment_method, notes=notes
            )
            await self.db.flush()
            await self.balance_service.refresh_status(balance)
            return transaction

        transaction = await self._locked_write(runner_id, "submit_balance_payment", work)
        logger.info(
            "Balance payment submitted",
            extra_data={
                "transaction_id": transaction.id,
                "runner_id": runner_id,
                "amount": str(transaction.total_amount),
            },
        )
        return transaction

    # ------------------------------------------------------------------
    # Admin review and cancellation
    # ------------------------------------------------------------------

    async def _resolve_for_review(
        self,
        transaction_id: int,
        actor: Actor,
        expected_type: Optional[TransactionType],
    ) -> BalanceTransaction:
        actor.require_role(ActorRole.ADMIN)
        transaction = await self.get_transaction(transaction_id)
        if expected_type is not None and transaction.type != expected_type:
            raise TransactionTypeMismatchError(
                transaction_id=transaction.id,
                actual_type=TransactionType(transaction.type).value,
                expected_type=TransactionType(expected_type).value,
            )
        return transaction

    @log_async_operation("approve_payment")
    async def approve_payment(
        self,
        transaction_id: int,
        actor: Actor,
        expected_type: Optional[TransactionType] = None,
        notes: Optional[str] = None,
    ) -> BalanceTransaction:
        """Admin approval: errand payments credit the runner, balance payments debit"""
        transaction = await self._resolve_for_review(transaction_id, actor, expected_type)

        async def work() -> BalanceTransaction:
            locked = await self.get_transaction(transaction_id, for_update=True)
            post = None
            if locked.type == TransactionType.ERRAND_PAYMENT and locked.post_id is not None:
                post = await self.post_service.get_post(locked.post_id, for_update=True)

            now = datetime.utcnow()
            self.state_machine.admin_approve(locked, admin_id=actor.user_id, post=post, notes=notes, now=now)
            await self.db.flush()
            await self._apply_approval_effects(locked, now)
            return locked

        transaction = await self._locked_write(transaction.runner_id, "approve_payment", work)
        logger.info(
            "Payment approved",
            extra_data={
                "transaction_id": transaction.id,
                "type": TransactionType(transaction.type).value,
                "admin_id": actor.user_id,
                "runner_id": transaction.runner_id,
            },
        )
        return transaction

    @log_async_operation("reject_payment")
    async def reject_payment(
        self,
        transaction_id: int,
        actor: Actor,
        reason: Optional[str],
        expected_type: Optional[TransactionType] = None,
    ) -> BalanceTransaction:
        """Admin rejection; the balance is untouched and its status recomputed"""
        transaction = await self._resolve_for_review(transaction_id, actor, expected_type)

        async def work() -> BalanceTransaction:
            locked = await self.get_transaction(transaction_id, for_update=True)
            self.state_machine.admin_reject(locked, admin_id=actor.user_id, reason=reason)
            await self.db.flush()
            if locked.type == TransactionType.BALANCE_PAYMENT:
                await self._refresh_balance_status(locked.runner_id, datetime.utcnow())
            return locked

        transaction = await self._locked_write(transaction.runner_id, "reject_payment", work)
        logger.info(
            "Payment rejected",
            extra_data={
                "transaction_id": transaction.id,
                "type": TransactionType(transaction.type).value,
                "admin_id": actor.user_id,
                "reason": transaction.rejection_reason,
            },
        )
        return transaction

    @log_async_operation("cancel_payment")
    async def cancel_payment(self, transaction_id: int, actor: Actor) -> BalanceTransaction:
        """Withdraw a pending submission (submitting runner or admin)"""
        transaction = await self.get_transaction(transaction_id)

        async def work() -> BalanceTransaction:
            locked = await self.get_transaction(transaction_id, for_update=True)
            self.state_machine.cancel(locked, actor)
            await self.db.flush()
            if locked.type == TransactionType.BALANCE_PAYMENT:
                await self._refresh_balance_status(locked.runner_id, datetime.utcnow())
            return locked

        transaction = await self._locked_write(transaction.runner_id, "cancel_payment", work)
        logger.info(
            "Payment cancelled",
            extra_data={"transaction_id": transaction.id, "actor_id": actor.user_id},
        )
        return transaction

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    async def get_post_transactions(self, post_id: int, actor: Actor) -> list[BalanceTransaction]:
        """Payment history of one errand, visible to its customer, its runner and admins"""
        post: Post = await self.post_service.get_post(post_id)
        if not actor.is_admin and actor.user_id not in (post.user_id, post.runner_id):
            raise ForbiddenError("Unauthorized to view transactions", user_id=actor.user_id)

        result = await self.db.execute(
            select(BalanceTransaction)
            .where(BalanceTransaction.post_id == post_id)
            .order_by(BalanceTransaction.created_at.desc(), BalanceTransaction.id.desc())
        )
        return list(result.scalars().all())

    async def get_balance_summary(self, actor: Actor, now: Optional[datetime] = None) -> dict[str, Any]:
        actor.require_role(ActorRole.RUNNER)
        balance = await self.balance_service.get_balance(actor.user_id)
        return balance_summary(balance, now=now)

    async def get_runner_transactions(
        self,
        actor: Actor,
        transaction_type: Optional[TransactionType] = None,
        limit: int = 50,
    ) -> list[BalanceTransaction]:
        actor.require_role(ActorRole.RUNNER)
        query = select(BalanceTransaction).where(BalanceTransaction.runner_id == actor.user_id)
        if transaction_type is not None:
            query = query.where(BalanceTransaction.type == transaction_type)
        result = await self.db.execute(
            query.order_by(BalanceTransaction.created_at.desc(), BalanceTransaction.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def _pending_with_runner(
        self,
        transaction_type: TransactionType,
        status: TransactionStatus,
    ) -> list[tuple[BalanceTransaction, User]]:
        result = await self.db.execute(
            select(BalanceTransaction, User)
            .join(User, User.id == BalanceTransaction.runner_id)
            .where(
                BalanceTransaction.type == transaction_type,
                BalanceTransaction.status == status,
            )
            .order_by(BalanceTransaction.created_at.desc(), BalanceTransaction.id.desc())
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_pending_balance_payments(self, actor: Actor) -> list[tuple[BalanceTransaction, User]]:
        actor.require_role(ActorRole.ADMIN)
        return await self._pending_with_runner(TransactionType.BALANCE_PAYMENT, TransactionStatus.PENDING)

    async def get_pending_errand_payments(self, actor: Actor) -> list[tuple[BalanceTransaction, User]]:
        """Errand payments verified by the customer and waiting for an admin (auto-approval off)"""
        actor.require_role(ActorRole.ADMIN)
        return await self._pending_with_runner(
            TransactionType.ERRAND_PAYMENT, TransactionStatus.CUSTOMER_VERIFIED
        )

    async def get_outstanding_balances(self, actor: Actor) -> list[tuple[RunnerBalance, User]]:
        """Runners owing a positive balance, largest first"""
        actor.require_role(ActorRole.ADMIN)
        result = await self.db.execute(
            select(RunnerBalance, User)
            .join(User, User.id == RunnerBalance.runner_id)
            .where(RunnerBalance.current_balance > 0)
            .order_by(RunnerBalance.current_balance.desc())
        )
        return [(row[0], row[1]) for row in result.all()]



def balance_summary(balance: Optional[RunnerBalance], now: Optional[datetime] = None) -> dict[str, Any]:
    """Runner-facing view of a balance; a runner without one owes nothing"""
    if balance is None:
        return {
            "balance": ZERO,
            "status": "active",
            "payment_status": payment_status(None, now).to_dict(),
            "total_earned": ZERO,
            "total_paid": ZERO,
            "balance_started_at": None,
            "last_payment_date": None,
        }
    return {
        "balance": balance.current_balance,
        "status": RunnerBalanceStatus(balance.status).value,
        "payment_status": payment_status(balance, now).to_dict(),
        "total_earned": balance.total_earned,
        "total_paid": balance.total_paid,
        "balance_started_at": balance.balance_started_at,
        "last_payment_date": balance.last_payment_date,
    }
