"""
Balance Transaction Model - Errand Payments and Balance Settlements

Rows are never deleted: rejected and cancelled transactions stay as audit
records, and a re-submission always creates a new row.
"""
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, Numeric, DateTime, Boolean, Text, ForeignKey, Index, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship, validates

from errands.core.config import settings
from errands.core.exceptions import InvalidStateTransitionError, ValidationException
from errands.core.validation import ZERO, to_decimal, to_money
from errands.db.database import Base


class TransactionType(str, enum.Enum):
    ERRAND_PAYMENT = "errand_payment"
    BALANCE_PAYMENT = "balance_payment"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    CUSTOMER_VERIFIED = "customer_verified"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    GCASH = "gcash"
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"
    ONLINE = "online"


UNRESOLVED_STATUSES = frozenset({TransactionStatus.PENDING, TransactionStatus.CUSTOMER_VERIFIED})
TERMINAL_STATUSES = frozenset({
    TransactionStatus.APPROVED,
    TransactionStatus.REJECTED,
    TransactionStatus.CANCELLED,
})

# Errand payments wait for the customer before approval
ERRAND_PAYMENT_TRANSITIONS = {
    TransactionStatus.PENDING: [
        TransactionStatus.CUSTOMER_VERIFIED,
        TransactionStatus.REJECTED,
        TransactionStatus.CANCELLED,
    ],
    TransactionStatus.CUSTOMER_VERIFIED: [TransactionStatus.APPROVED, TransactionStatus.REJECTED],
    TransactionStatus.APPROVED: [],
    TransactionStatus.REJECTED: [],
    TransactionStatus.CANCELLED: [],
}

# Balance payments, refunds and adjustments go straight to an admin
SETTLEMENT_TRANSITIONS = {
    TransactionStatus.PENDING: [
        TransactionStatus.APPROVED,
        TransactionStatus.REJECTED,
        TransactionStatus.CANCELLED,
    ],
    TransactionStatus.CUSTOMER_VERIFIED: [],
    TransactionStatus.APPROVED: [],
    TransactionStatus.REJECTED: [],
    TransactionStatus.CANCELLED: [],
}

TRANSACTION_TRANSITIONS = {
    TransactionType.ERRAND_PAYMENT: ERRAND_PAYMENT_TRANSITIONS,
    TransactionType.BALANCE_PAYMENT: SETTLEMENT_TRANSITIONS,
    TransactionType.REFUND: SETTLEMENT_TRANSITIONS,
    TransactionType.ADJUSTMENT: SETTLEMENT_TRANSITIONS,
}


def is_valid_transition(
    transaction_type: TransactionType,
    current: TransactionStatus,
    target: TransactionStatus
) -> bool:
    """Check if transition from current to target status is an edge of the type's graph"""
    transitions = TRANSACTION_TRANSITIONS[TransactionType(transaction_type)]
    return TransactionStatus(target) in transitions[TransactionStatus(current)]


STATUS_DISPLAY = {
    TransactionStatus.CUSTOMER_VERIFIED: "Customer Verified - Awaiting Approval",
    TransactionStatus.APPROVED: "Approved",
    TransactionStatus.REJECTED: "Rejected",
    TransactionStatus.CANCELLED: "Cancelled",
}

PAYMENT_METHOD_DISPLAY = {
    PaymentMethod.GCASH: "GCash",
    PaymentMethod.COD: "Cash on Delivery",
    PaymentMethod.BANK_TRANSFER: "Bank Transfer",
    PaymentMethod.ONLINE: "Online Payment",
}

_AMOUNT_FIELDS = ("original_amount", "service_fee", "platform_commission", "total_amount")


def _coerce_enum(enum_cls, key: str, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationException(f"{key} must be one of: {allowed}", field=key)


class BalanceTransaction(Base):
    """Single money movement between a runner, a customer and the platform.

    total_amount = original_amount + service_fee holds from construction on,
    and the amounts cannot change once the row has been flushed. Status
    assignments are checked against TRANSACTION_TRANSITIONS.
    """

    __tablename__ = "balance_transactions"

    id = Column(Integer, primary_key=True, index=True)
    runner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    post_id = Column(Integer, ForeignKey("posts.id"), nullable=True)
    # Chat message the payment request was sent in (messaging lives elsewhere)
    message_id = Column(Integer, nullable=True)

    original_amount = Column(Numeric(10, 2), nullable=False)
    service_fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    platform_commission = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(10, 2), nullable=False)

    proof_of_purchase = Column(Text, nullable=True)

    type = Column(
        SQLEnum(TransactionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status = Column(
        SQLEnum(TransactionStatus, values_callable=lambda x: [e.value for e in x]),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    payment_method = Column(
        SQLEnum(PaymentMethod, values_callable=lambda x: [e.value for e in x]),
        default=PaymentMethod.GCASH,
        nullable=False,
    )

    payment_verified = Column(Boolean, default=False, nullable=False)
    payment_verified_at = Column(DateTime, nullable=True)

    approved_at = Column(DateTime, nullable=True)
    # Admin who reviewed the transaction; NULL on an approved row means auto-approval
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    runner = relationship("User", foreign_keys=[runner_id])
    customer = relationship("User", foreign_keys=[customer_id])
    post = relationship("Post")

    __table_args__ = (
        Index("ix_balance_transactions_status_type", "status", "type"),
        Index("ix_balance_transactions_post_type", "post_id", "type"),
        Index("ix_balance_transactions_runner_type_status", "runner_id", "type", "status"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", TransactionStatus.PENDING)
        kwargs.setdefault("payment_method", PaymentMethod.GCASH)
        kwargs.setdefault("payment_verified", False)
        kwargs.setdefault("service_fee", ZERO)
        kwargs.setdefault("platform_commission", ZERO)
        if "type" not in kwargs:
            raise ValidationException("type is required", field="type")
        raw_original = kwargs.get("original_amount")
        if raw_original is not None:
            raw_original = to_decimal(raw_original, field="original_amount")
        if kwargs.get("total_amount") is None and raw_original is not None:
            kwargs["total_amount"] = (
                to_money(kwargs["original_amount"], field="original_amount")
                + to_money(kwargs["service_fee"], field="service_fee")
            )
        super().__init__(**kwargs)
        self._check_amounts(raw_original)

    def _check_amounts(self, raw_original: Decimal | None = None) -> None:
        if self.original_amount is None:
            raise ValidationException("original_amount is required", field="original_amount")

        if self.total_amount != self.original_amount + self.service_fee:
            raise ValidationException(
                "total_amount must equal original_amount + service_fee",
                field="total_amount",
                details={
                    "original_amount": str(self.original_amount),
                    "service_fee": str(self.service_fee),
                    "total_amount": str(self.total_amount),
                },
            )

        if self.platform_commission > self.service_fee and self.type == TransactionType.ERRAND_PAYMENT:
            raise ValidationException(
                "platform_commission cannot exceed service_fee", field="platform_commission"
            )

        if self.type == TransactionType.ERRAND_PAYMENT:
            minimum = to_money(settings.ERRAND_PAYMENT_MIN_AMOUNT)
            maximum = to_money(settings.ERRAND_PAYMENT_MAX_AMOUNT)
            # Bounds apply before rounding: 0.995 is below the minimum
            original = self.original_amount if raw_original is None else raw_original
            if not minimum <= original <= maximum:
                raise ValidationException(
                    f"original_amount must be between {minimum} and {maximum}",
                    field="original_amount",
                )
        elif self.original_amount <= ZERO:
            raise ValidationException("amount must be greater than 0", field="original_amount")

    @validates(*_AMOUNT_FIELDS)
    def _validate_amount(self, key, value):
        amount = to_money(value, field=key)
        if amount < ZERO:
            raise ValidationException(f"{key} cannot be negative", field=key)

        current = getattr(self, key)
        if self.id is not None and current is not None and to_money(current) != amount:
            raise ValidationException(f"{key} cannot change once the transaction exists", field=key)
        return amount

    @validates("type")
    def _validate_type(self, key, value):
        transaction_type = _coerce_enum(TransactionType, key, value)
        if self.type is not None and self.type != transaction_type:
            raise ValidationException("type cannot change once set", field=key)
        return transaction_type

    @validates("payment_method")
    def _validate_payment_method(self, key, value):
        return _coerce_enum(PaymentMethod, key, value)

    @validates("status")
    def _validate_status(self, key, value):
        target = _coerce_enum(TransactionStatus, key, value)
        current = self.status
        if current is None or current == target:
            return target

        if self.type is None or not is_valid_transition(self.type, current, target):
            raise InvalidStateTransitionError(
                current_state=TransactionStatus(current).value,
                target_state=target.value,
                transaction_id=self.id,
                transaction_type=self.type.value if self.type is not None else None,
            )
        return target

    @property
    def is_unresolved(self) -> bool:
        return self.status in UNRESOLVED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.APPROVED

    @property
    def can_modify(self) -> bool:
        """Only pending or rejected submissions may be edited or replaced"""
        return self.status in (TransactionStatus.PENDING, TransactionStatus.REJECTED)

    @property
    def status_display(self) -> str:
        if self.status == TransactionStatus.PENDING:
            if self.type == TransactionType.ERRAND_PAYMENT:
                return "Pending Customer Verification"
            return "Pending Admin Approval"
        return STATUS_DISPLAY.get(self.status, str(self.status).replace("_", " ").title())

    @property
    def payment_method_display(self) -> str:
        return PAYMENT_METHOD_DISPLAY.get(self.payment_method, str(self.payment_method))

    @property
    def runner_earnings(self) -> Decimal:
        """Net amount credited to the runner when an errand payment is approved"""
        if self.type != TransactionType.ERRAND_PAYMENT:
            return ZERO
        return self.service_fee - self.platform_commission
