"""
Request and response schemas shared by the API routes
"""
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from errands.core.validation import sanitized_text_validator
from errands.db.models.balance_transaction import (
    BalanceTransaction,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)
from errands.db.models.post import PostStatus
from errands.db.models.runner_balance import RunnerBalance, RunnerBalanceStatus
from errands.db.models.user import User
from errands.domain.services.balance_service import payment_status


# ==================== Posts ====================


class PostCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=255)
    destination: str = Field(..., min_length=1, max_length=255)


class PostResponse(BaseModel):
    id: int
    content: str
    destination: str
    status: PostStatus
    user_id: int
    runner_id: Optional[int]
    payment_verified: bool
    payment_verified_at: Optional[datetime]
    accepted_at: Optional[datetime]
    completed_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    archived: bool
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


# ==================== Payments ====================


class ErrandPaymentCreate(BaseModel):
    """Runner's errand payment: what the errand cost plus proof of purchase"""
    amount: float = Field(..., validation_alias=AliasChoices("amount", "original_amount"))
    proof: str = Field(..., validation_alias=AliasChoices("proof", "proof_of_purchase"))
    payment_method: PaymentMethod = PaymentMethod.GCASH
    message_id: Optional[int] = None


class VerifyPaymentRequest(BaseModel):
    verified: bool
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, v: Optional[str]) -> Optional[str]:
        return sanitized_text_validator(v)


class BalancePaymentCreate(BaseModel):
    """Omitting amount pays the whole outstanding balance"""
    amount: Optional[float] = None
    proof: str = Field(..., validation_alias=AliasChoices("proof", "proof_of_payment"))
    payment_method: PaymentMethod = PaymentMethod.GCASH
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, v: Optional[str]) -> Optional[str]:
        return sanitized_text_validator(v)


class ApproveRequest(BaseModel):
    confirmed: bool = True
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("confirmed")
    @classmethod
    def must_confirm(cls, v: bool) -> bool:
        if not v:
            raise ValueError("Approval requires confirmation")
        return v

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, v: Optional[str]) -> Optional[str]:
        return sanitized_text_validator(v)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        cleaned = sanitized_text_validator(v)
        if not cleaned:
            raise ValueError("A rejection reason is required")
        return cleaned


class TransactionResponse(BaseModel):
    id: int
    type: TransactionType
    runner_id: int
    customer_id: Optional[int]
    post_id: Optional[int]
    message_id: Optional[int]
    original_amount: float
    service_fee: float
    platform_commission: float
    total_amount: float
    proof_of_purchase: Optional[str]
    status: TransactionStatus
    status_display: str
    payment_method: PaymentMethod
    payment_method_display: str
    payment_verified: bool
    payment_verified_at: Optional[datetime]
    approved_at: Optional[datetime]
    approved_by: Optional[int]
    notes: Optional[str]
    rejection_reason: Optional[str]
    can_modify: bool
    is_completed: bool
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class AdminTransactionResponse(TransactionResponse):
    """Queue entry with the runner's name for the admin review screens"""
    runner_name: str
    runner_email: str

    @classmethod
    def from_row(cls, transaction: BalanceTransaction, runner: User) -> "AdminTransactionResponse":
        base = TransactionResponse.model_validate(transaction).model_dump()
        return cls(**base, runner_name=runner.full_name, runner_email=runner.email)


# ==================== Balances ====================


class PaymentStatusResponse(BaseModel):
    status: str
    message: str
    urgency: str
    days_elapsed: int


class BalanceResponse(BaseModel):
    balance: float
    status: RunnerBalanceStatus
    payment_status: PaymentStatusResponse
    total_earned: float
    total_paid: float
    balance_started_at: Optional[datetime]
    last_payment_date: Optional[datetime]


class RunnerBalanceResponse(BaseModel):
    id: int
    runner_id: int
    runner_name: str
    runner_email: str
    current_balance: float
    total_earned: float
    total_paid: float
    status: RunnerBalanceStatus
    payment_status: PaymentStatusResponse
    balance_started_at: Optional[datetime]
    last_payment_date: Optional[datetime]

    @classmethod
    def from_row(cls, balance: RunnerBalance, runner: User) -> "RunnerBalanceResponse":
        return cls(
            id=balance.id,
            runner_id=balance.runner_id,
            runner_name=runner.full_name,
            runner_email=runner.email,
            current_balance=balance.current_balance,
            total_earned=balance.total_earned,
            total_paid=balance.total_paid,
            status=balance.status,
            payment_status=PaymentStatusResponse(**payment_status(balance).to_dict()),
            balance_started_at=balance.balance_started_at,
            last_payment_date=balance.last_payment_date,
        )


class BalancePaymentResponse(BaseModel):
    transaction: TransactionResponse
    gcash_info: "GCashInfo"


# ==================== System settings ====================


class GCashInfo(BaseModel):
    number: str = Field(..., min_length=1, max_length=50)
    account_name: str = Field(..., min_length=1, max_length=100)


class PaymentSettings(BaseModel):
    errand_payment_auto_approve: bool


BalancePaymentResponse.model_rebuild()
