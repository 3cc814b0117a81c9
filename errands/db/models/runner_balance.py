"""
Runner Balance Model - Per-Runner Accrual Aggregate
"""
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, Numeric, DateTime, Boolean, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from errands.db.database import Base


class RunnerBalanceStatus(str, enum.Enum):
    ACTIVE = "active"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_OVERDUE = "payment_overdue"


class RunnerBalance(Base):
    """Running totals for one runner.

    current_balance = total_earned - total_paid at all times. Created lazily
    on the first credit and only ever changed through BalanceService.
    """

    __tablename__ = "runner_balances"

    id = Column(Integer, primary_key=True, index=True)
    runner_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    current_balance = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    total_earned = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    total_paid = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    last_payment_date = Column(DateTime, nullable=True)
    # When the balance last went from zero to positive; drives the reminder sweep
    balance_started_at = Column(DateTime, nullable=True)

    status = Column(
        SQLEnum(RunnerBalanceStatus, values_callable=lambda x: [e.value for e in x]),
        default=RunnerBalanceStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    reminder_sent = Column(Boolean, default=False, nullable=False)
    warning_sent = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    runner = relationship("User")

    def days_elapsed(self, now: datetime | None = None) -> int:
        """Whole days since the balance started accruing, 0 when it has not"""
        if self.balance_started_at is None:
            return 0
        return max(((now or datetime.utcnow()) - self.balance_started_at).days, 0)

    @property
    def has_outstanding_balance(self) -> bool:
        return self.current_balance is not None and self.current_balance > 0
