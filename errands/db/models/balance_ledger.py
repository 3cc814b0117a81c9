"""
Balance Ledger Model - Applied Transaction Registry
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey, String, Enum as SQLEnum, UniqueConstraint

from errands.db.database import Base


class LedgerEntryType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class BalanceLedgerEntry(Base):
    """Immutable history of balance changes preventing double-apply"""

    __tablename__ = "balance_ledger"

    id = Column(Integer, primary_key=True, index=True)
    runner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("balance_transactions.id"), nullable=False)

    entry_type = Column(
        SQLEnum(LedgerEntryType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    amount = Column(Numeric(10, 2), nullable=False)  # Positive for credit, negative for debit
    balance_after = Column(Numeric(10, 2), nullable=False)

    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # A transaction is applied to a balance at most once
    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_balance_ledger_transaction"),
    )
