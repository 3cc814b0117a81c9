"""
Domain Services
"""
from errands.domain.services.balance_service import BalanceService
from errands.domain.services.transaction_state_machine import TransactionStateMachine
from errands.domain.services.post_service import PostService
from errands.domain.services.system_setting_service import SystemSettingService
from errands.domain.services.payment_workflow_service import PaymentWorkflowService
from errands.domain.services.balance_reminder_service import BalanceReminderService

__all__ = [
    "BalanceService",
    "TransactionStateMachine",
    "PostService",
    "SystemSettingService",
    "PaymentWorkflowService",
    "BalanceReminderService",
]
