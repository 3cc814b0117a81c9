"""
Errand API Routes

Errand lifecycle plus the errand payment submitted against it.
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from errands.api.dependencies.auth import get_current_actor
from errands.api.schemas import (
    ErrandPaymentCreate,
    PostCreate,
    PostResponse,
    TransactionResponse,
    VerifyPaymentRequest,
)
from errands.db.database import get_db
from errands.domain.actors import Actor
from errands.domain.services.payment_workflow_service import PaymentWorkflowService
from errands.domain.services.post_service import PostService

router = APIRouter()


@router.post(
    "",
    response_model=PostResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Post a new errand",
)
async def create_post(
    data: PostCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PostService(db)
    return await service.create_post(actor, data.content, data.destination)


@router.patch(
    "/{post_id}/accept",
    response_model=PostResponse,
    summary="Accept an errand as its runner",
)
async def accept_post(
    post_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PostService(db)
    return await service.accept_post(post_id, actor)


@router.patch(
    "/{post_id}/confirm-complete",
    response_model=PostResponse,
    summary="Confirm the runner completed the errand",
)
async def confirm_complete(
    post_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PostService(db)
    return await service.confirm_complete(post_id, actor)


@router.post(
    "/{post_id}/payment",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit the errand payment",
    description=(
        "The assigned runner reports what the errand cost, with proof of purchase. "
        "The service fee is added on top and the customer is asked to verify the total."
    ),
)
async def submit_errand_payment(
    post_id: int,
    data: ErrandPaymentCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.submit_errand_payment(
        post_id,
        actor,
        amount=data.amount,
        proof=data.proof,
        payment_method=data.payment_method,
        message_id=data.message_id,
    )


@router.patch(
    "/{post_id}/verify-payment",
    response_model=TransactionResponse,
    summary="Customer verifies or disputes the errand payment",
)
async def verify_payment(
    post_id: int,
    data: VerifyPaymentRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Applies to the errand's most recent payment"""
    service = PaymentWorkflowService(db)
    return await service.verify_post_payment(
        post_id,
        actor,
        verified=data.verified,
        payment_method=data.payment_method,
        notes=data.notes,
    )


@router.get(
    "/{post_id}/transactions",
    response_model=List[TransactionResponse],
    summary="Payment history of an errand",
)
async def get_post_transactions(
    post_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    service = PaymentWorkflowService(db)
    return await service.get_post_transactions(post_id, actor)
