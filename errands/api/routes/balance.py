"""
Runner Balance API Routes
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from errands.api.dependencies.auth import get_current_actor
from errands.api.schemas import (
    BalancePaymentCreate,
    BalancePaymentResponse,
    BalanceResponse,
    GCashInfo,
    TransactionResponse,
)
from errands.db.database import get_db
from errands.db.models.balance_transaction import TransactionType
from errands.domain.actors import Actor
from errands.domain.services.payment_workflow_service import PaymentWorkflowService
from errands.domain.services.system_setting_service import SystemSettingService

router = APIRouter()


@router.get(
    "",
    response_model=BalanceResponse,
    summary="Current runner balance",
    description="Outstanding service fees owed to the platform and how urgent the payment is.",
)
async def get_balance(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.get_balance_summary(actor)


@router.get(
    "/transactions",
    response_model=List[TransactionResponse],
    summary="Runner transaction history",
)
async def get_transactions(
    type: Optional[TransactionType] = None,
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.get_runner_transactions(actor, transaction_type=type, limit=limit)


@router.post(
    "/pay",
    response_model=BalancePaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a balance payment",
    description="Omitting the amount pays the whole outstanding balance. An admin approves it.",
)
async def pay_balance(
    data: BalancePaymentCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    transaction = await service.submit_balance_payment(
        actor,
        proof=data.proof,
        amount=data.amount,
        payment_method=data.payment_method,
        notes=data.notes,
    )
    gcash_info = await SystemSettingService(db).get_gcash_info()
    return BalancePaymentResponse(
        transaction=TransactionResponse.model_validate(transaction),
        gcash_info=GCashInfo(**gcash_info),
    )


@router.patch(
    "/transactions/{transaction_id}/cancel",
    response_model=TransactionResponse,
    summary="Cancel a pending payment",
)
async def cancel_transaction(
    transaction_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.cancel_payment(transaction_id, actor)
