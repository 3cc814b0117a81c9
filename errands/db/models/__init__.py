"""
Database Models
"""
from errands.db.models.user import User
from errands.db.models.post import Post, PostStatus
from errands.db.models.balance_transaction import (
    BalanceTransaction,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)
from errands.db.models.runner_balance import RunnerBalance, RunnerBalanceStatus
from errands.db.models.balance_ledger import BalanceLedgerEntry, LedgerEntryType
from errands.db.models.system_setting import SystemSetting, SettingType

__all__ = [
    "User",
    "Post",
    "PostStatus",
    "BalanceTransaction",
    "PaymentMethod",
    "TransactionStatus",
    "TransactionType",
    "RunnerBalance",
    "RunnerBalanceStatus",
    "BalanceLedgerEntry",
    "LedgerEntryType",
    "SystemSetting",
    "SettingType",
]
