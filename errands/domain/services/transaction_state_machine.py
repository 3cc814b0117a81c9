"""
Transaction State Machine - lifecycle of balance transactions

errand_payment:  pending -> customer_verified -> approved
                 pending -> rejected | cancelled
                 customer_verified -> rejected
balance_payment: pending -> approved | rejected | cancelled
                 (refund and adjustment use the same graph)

approved, rejected and cancelled are terminal. The methods here mutate ORM
objects and add new rows to the session; they never flush the balance or
commit, PaymentWorkflowService owns the unit of work.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errands.core.config import settings
from errands.core.exceptions import (
    ConflictError,
    ErrorCode,
    ForbiddenError,
    InvalidStateTransitionError,
    PostStatusError,
    TransactionTypeMismatchError,
    ValidationException,
)
from errands.core.logging import get_logger
from errands.core.validation import AmountValidator, ProofValidator, TextSanitizer
from errands.db.models.balance_transaction import (
    BalanceTransaction,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
    UNRESOLVED_STATUSES,
    is_valid_transition,
)
from errands.db.models.post import Post, PostStatus
from errands.domain.actors import Actor
from errands.domain.services.balance_service import calculate_platform_commission, calculate_service_fee

logger = get_logger(__name__)

DEFAULT_CUSTOMER_REJECTION_REASON = "Customer rejected the payment amount"
NOTES_MAX_LENGTH = 500

# Runners settle their balance by transfer, never cash on delivery
BALANCE_PAYMENT_METHODS = (PaymentMethod.GCASH, PaymentMethod.BANK_TRANSFER, PaymentMethod.ONLINE)


def _transition(transaction: BalanceTransaction, target: TransactionStatus) -> None:
    current = TransactionStatus(transaction.status)
    if current == target or not is_valid_transition(transaction.type, current, target):
        raise InvalidStateTransitionError(
            current_state=current.value,
            target_state=target.value,
            transaction_id=transaction.id,
            transaction_type=TransactionType(transaction.type).value,
        )
    transaction.status = target


def _require_type(transaction: BalanceTransaction, expected: TransactionType) -> None:
    if transaction.type != expected:
        raise TransactionTypeMismatchError(
            transaction_id=transaction.id,
            actual_type=TransactionType(transaction.type).value,
            expected_type=expected.value,
        )


def _validated_proof(proof: Optional[str]) -> str:
    is_valid, error = ProofValidator.validate(proof, settings.MAX_PROOF_LENGTH)
    if not is_valid:
        raise ValidationException(error, field="proof")
    return proof.strip()


class TransactionStateMachine:
    """Guards and applies transaction status changes"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def latest_errand_payment(self, post_id: int, for_update: bool = False) -> Optional[BalanceTransaction]:
        query = (
            select(BalanceTransaction)
            .where(
                BalanceTransaction.post_id == post_id,
                BalanceTransaction.type == TransactionType.ERRAND_PAYMENT,
            )
            .order_by(BalanceTransaction.id.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _blocking_errand_payment(self, post_id: int) -> Optional[BalanceTransaction]:
        result = await self.db.execute(
            select(BalanceTransaction)
            .where(
                BalanceTransaction.post_id == post_id,
                BalanceTransaction.type == TransactionType.ERRAND_PAYMENT,
                BalanceTransaction.status.in_(UNRESOLVED_STATUSES | {TransactionStatus.APPROVED}),
            )
            .order_by(BalanceTransaction.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def submit(
        self,
        post: Post,
        runner_id: int,
        amount,
        proof: Optional[str],
        payment_method: PaymentMethod = PaymentMethod.GCASH,
        message_id: Optional[int] = None,
    ) -> BalanceTransaction:
        """
        Open a pending errand payment for an accepted errand.

        Raises:
            ForbiddenError: runner is not assigned to the errand
            PostStatusError: errand is not accepted
            ConflictError: an unresolved or approved payment exists for the errand
            ValidationException: amount out of bounds or proof missing
        """
        if post.runner_id != runner_id:
            raise ForbiddenError("You are not assigned to this errand", user_id=runner_id)

        if post.status != PostStatus.ACCEPTED:
            raise PostStatusError(
                post_id=post.id,
                current_status=PostStatus(post.status).value,
                required_status=PostStatus.ACCEPTED.value,
                message="Errand must be accepted to add payment",
            )

        original_amount = AmountValidator.require(
            amount,
            field="amount",
            min_value=settings.ERRAND_PAYMENT_MIN_AMOUNT,
            max_value=settings.ERRAND_PAYMENT_MAX_AMOUNT,
        )
        service_fee = calculate_service_fee(original_amount)
        proof_of_purchase = _validated_proof(proof)

        existing = await self._blocking_errand_payment(post.id)
        if existing is not None:
            if existing.status == TransactionStatus.APPROVED:
                raise ConflictError(
                    "Payment already processed for this errand",
                    error_code=ErrorCode.PAYMENT_ALREADY_PROCESSED,
                    details={"transaction_id": existing.id},
                )
            raise ConflictError(
                "A payment for this errand is already awaiting review",
                error_code=ErrorCode.DUPLICATE_PENDING_PAYMENT,
                details={"transaction_id": existing.id, "status": TransactionStatus(existing.status).value},
            )

        transaction = BalanceTransaction(
            type=TransactionType.ERRAND_PAYMENT,
            runner_id=runner_id,
            customer_id=post.user_id,
            post_id=post.id,
            message_id=message_id,
            original_amount=original_amount,
            service_fee=service_fee,
            platform_commission=calculate_platform_commission(service_fee),
            proof_of_purchase=proof_of_purchase,
            payment_method=payment_method,
        )
        self.db.add(transaction)
        return transaction

    def open_balance_payment(
        self,
        runner_id: int,
        amount: Decimal,
        proof: Optional[str],
        payment_method: PaymentMethod = PaymentMethod.GCASH,
        notes: Optional[str] = None,
    ) -> BalanceTransaction:
        """Open a pending balance payment; amount checks against the balance are the caller's"""
        if PaymentMethod(payment_method) not in BALANCE_PAYMENT_METHODS:
            raise ValidationException(
                "Balance payments must be made by GCash, bank transfer or online payment",
                field="payment_method",
            )

        transaction = BalanceTransaction(
            type=TransactionType.BALANCE_PAYMENT,
            runner_id=runner_id,
            original_amount=amount,
            proof_of_purchase=_validated_proof(proof),
            payment_method=payment_method,
            notes=TextSanitizer.sanitize(notes, NOTES_MAX_LENGTH) or None,
        )
        self.db.add(transaction)
        return transaction

    def customer_verify(
        self,
        transaction: BalanceTransaction,
        post: Post,
        customer_id: int,
        payment_method: Optional[PaymentMethod] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BalanceTransaction:
        """pending -> customer_verified, only by the errand's customer"""
        _require_type(transaction, TransactionType.ERRAND_PAYMENT)
        self._require_customer(transaction, post, customer_id)

        _transition(transaction, TransactionStatus.CUSTOMER_VERIFIED)
        transaction.payment_verified = True
        transaction.payment_verified_at = now or datetime.utcnow()
        if payment_method is not None:
            transaction.payment_method = payment_method
        if notes:
            transaction.notes = TextSanitizer.sanitize(notes, NOTES_MAX_LENGTH)
        return transaction

    def customer_reject(
        self,
        transaction: BalanceTransaction,
        post: Post,
        customer_id: int,
        reason: Optional[str] = None,
    ) -> BalanceTransaction:
        """pending -> rejected, the customer disputes the amount"""
        _require_type(transaction, TransactionType.ERRAND_PAYMENT)
        self._require_customer(transaction, post, customer_id)

        _transition(transaction, TransactionStatus.REJECTED)
        transaction.rejection_reason = (
            TextSanitizer.sanitize(reason, NOTES_MAX_LENGTH) or DEFAULT_CUSTOMER_REJECTION_REASON
        )
        return transaction

    def admin_approve(
        self,
        transaction: BalanceTransaction,
        admin_id: Optional[int],
        post: Optional[Post] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BalanceTransaction:
        """
        Approve the transaction; admin_id None records a system auto-approval.

        For an errand payment the errand moves accepted -> runner_completed.
        An errand in any other status keeps it.
        """
        now = now or datetime.utcnow()
        _transition(transaction, TransactionStatus.APPROVED)
        transaction.approved_at = now
        transaction.approved_by = admin_id
        if notes:
            transaction.notes = TextSanitizer.sanitize(notes, NOTES_MAX_LENGTH)

        if transaction.type == TransactionType.ERRAND_PAYMENT and post is not None:
            post.payment_verified = True
            post.payment_verified_at = transaction.payment_verified_at or now
            if post.status == PostStatus.ACCEPTED:
                post.status = PostStatus.RUNNER_COMPLETED
                if post.completed_at is None:
                    post.completed_at = now
            else:
                logger.warning(
                    "Errand payment approved for errand that is not accepted, status unchanged",
                    extra_data={
                        "transaction_id": transaction.id,
                        "post_id": post.id,
                        "post_status": PostStatus(post.status).value,
                    },
                )
        return transaction

    def admin_reject(
        self,
        transaction: BalanceTransaction,
        admin_id: int,
        reason: Optional[str],
    ) -> BalanceTransaction:
        """(pending | customer_verified) -> rejected with a mandatory reason"""
        clean_reason = TextSanitizer.sanitize(reason, NOTES_MAX_LENGTH)
        if not clean_reason:
            raise ValidationException("A rejection reason is required", field="reason")

        _transition(transaction, TransactionStatus.REJECTED)
        transaction.rejection_reason = clean_reason
        transaction.approved_by = admin_id
        return transaction

    def cancel(self, transaction: BalanceTransaction, actor: Actor) -> BalanceTransaction:
        """pending -> cancelled, by the submitting runner or an admin"""
        if not actor.is_admin and not (actor.is_runner and transaction.runner_id == actor.user_id):
            raise ForbiddenError(
                "Only the submitting runner or an admin can cancel this transaction",
                user_id=actor.user_id,
            )
        _transition(transaction, TransactionStatus.CANCELLED)
        return transaction

    @staticmethod
    def _require_customer(transaction: BalanceTransaction, post: Post, customer_id: int) -> None:
        if post.user_id != customer_id or transaction.customer_id != customer_id:
            raise ForbiddenError("Only the errand's customer can verify this payment", user_id=customer_id)
