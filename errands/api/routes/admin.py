"""
Admin API Routes - payment review and runtime settings
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from errands.api.dependencies.auth import get_current_admin
from errands.api.schemas import (
    AdminTransactionResponse,
    ApproveRequest,
    GCashInfo,
    PaymentSettings,
    RejectRequest,
    RunnerBalanceResponse,
    TransactionResponse,
)
from errands.db.database import get_db
from errands.db.models.balance_transaction import TransactionType
from errands.domain.actors import Actor
from errands.domain.services.payment_workflow_service import PaymentWorkflowService
from errands.domain.services.system_setting_service import SystemSettingService

router = APIRouter()


# ==================== Balances ====================


@router.get(
    "/balances",
    response_model=List[RunnerBalanceResponse],
    summary="Runners with an outstanding balance",
)
async def list_outstanding_balances(
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    rows = await service.get_outstanding_balances(actor)
    return [RunnerBalanceResponse.from_row(balance, runner) for balance, runner in rows]


@router.get(
    "/balances/pending-payments",
    response_model=List[AdminTransactionResponse],
    summary="Balance payments awaiting approval",
)
async def list_pending_balance_payments(
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    rows = await service.get_pending_balance_payments(actor)
    return [AdminTransactionResponse.from_row(tx, runner) for tx, runner in rows]


@router.patch(
    "/balances/payment/{transaction_id}/approve",
    response_model=TransactionResponse,
    summary="Approve a balance payment",
    description="Deducts the paid amount from the runner's balance.",
)
async def approve_balance_payment(
    transaction_id: int,
    data: ApproveRequest = ApproveRequest(),
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.approve_payment(
        transaction_id, actor, expected_type=TransactionType.BALANCE_PAYMENT, notes=data.notes
    )


@router.patch(
    "/balances/payment/{transaction_id}/reject",
    response_model=TransactionResponse,
    summary="Reject a balance payment",
)
async def reject_balance_payment(
    transaction_id: int,
    data: RejectRequest,
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.reject_payment(
        transaction_id, actor, reason=data.reason, expected_type=TransactionType.BALANCE_PAYMENT
    )


# ==================== Errand payments ====================


@router.get(
    "/errand-payments/pending",
    response_model=List[AdminTransactionResponse],
    summary="Customer-verified errand payments awaiting approval",
)
async def list_pending_errand_payments(
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    rows = await service.get_pending_errand_payments(actor)
    return [AdminTransactionResponse.from_row(tx, runner) for tx, runner in rows]


@router.patch(
    "/errand-payments/{transaction_id}/approve",
    response_model=TransactionResponse,
    summary="Approve an errand payment",
    description="Credits the service fee, net of platform commission, to the runner's balance.",
)
async def approve_errand_payment(
    transaction_id: int,
    data: ApproveRequest = ApproveRequest(),
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.approve_payment(
        transaction_id, actor, expected_type=TransactionType.ERRAND_PAYMENT, notes=data.notes
    )


@router.patch(
    "/errand-payments/{transaction_id}/reject",
    response_model=TransactionResponse,
    summary="Reject an errand payment",
)
async def reject_errand_payment(
    transaction_id: int,
    data: RejectRequest,
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.reject_payment(
        transaction_id, actor, reason=data.reason, expected_type=TransactionType.ERRAND_PAYMENT
    )


# ==================== System settings ====================


@router.put(
    "/system/gcash-settings",
    response_model=GCashInfo,
    summary="Update the GCash account runners pay into",
)
async def update_gcash_settings(
    data: GCashInfo,
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = SystemSettingService(db)
    info = await service.set_gcash_info(data.number.strip(), data.account_name.strip())
    await service.commit("update_gcash_settings")
    return info


@router.get(
    "/system/payment-settings",
    response_model=PaymentSettings,
    summary="Errand payment approval settings",
)
async def get_payment_settings(
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = SystemSettingService(db)
    return PaymentSettings(errand_payment_auto_approve=await service.is_auto_approve_enabled())


@router.put(
    "/system/payment-settings",
    response_model=PaymentSettings,
    summary="Turn errand payment auto-approval on or off",
)
async def update_payment_settings(
    data: PaymentSettings,
    actor: Actor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    service = SystemSettingService(db)
    enabled = await service.set_auto_approve(data.errand_payment_auto_approve)
    await service.commit("update_payment_settings")
    return PaymentSettings(errand_payment_auto_approve=enabled)
