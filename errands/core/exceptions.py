"""
Custom Exception Hierarchy

Domain errors raised by the payment workflow. Every subclass carries its
HTTP status so the exception handlers in errands.core.middleware can
translate it without knowing the domain.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    CONFLICT = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    LOCK_TIMEOUT = "ERR_1006"
    PERSISTENCE_ERROR = "ERR_1007"

    # Post errors (2xxx)
    POST_NOT_FOUND = "ERR_2001"
    POST_INVALID_STATUS = "ERR_2002"

    # Transaction errors (3xxx)
    TRANSACTION_NOT_FOUND = "ERR_3001"
    DUPLICATE_PENDING_PAYMENT = "ERR_3002"
    PAYMENT_ALREADY_PROCESSED = "ERR_3003"
    TRANSACTION_TYPE_MISMATCH = "ERR_3004"

    # Balance errors (4xxx)
    BALANCE_NOT_FOUND = "ERR_4001"
    INSUFFICIENT_BALANCE = "ERR_4002"
    NO_OUTSTANDING_BALANCE = "ERR_4003"
    OUTSTANDING_BALANCE_PAYMENT = "ERR_4004"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": self.message,
            "code": self.error_code.value,
            "details": self.details,
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=422,
            details=details
        )
        self.field = field
        if field:
            self.details["field"] = field

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["errors"] = {self.field or "__root__": [self.message]}
        return body


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class PostNotFoundError(NotFoundException):
    def __init__(self, post_id: int):
        super().__init__("Errand", post_id, error_code=ErrorCode.POST_NOT_FOUND)


class TransactionNotFoundError(NotFoundException):
    def __init__(self, identifier: Any):
        super().__init__("Transaction", identifier, error_code=ErrorCode.TRANSACTION_NOT_FOUND)


class UnauthorizedError(AppException):
    """Raised when the bearer token is missing, invalid or expired"""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNAUTHORIZED,
            status_code=401
        )


class ForbiddenError(AppException):
    """Raised when the actor's role or ownership does not allow the action"""

    def __init__(self, message: str, user_id: int | None = None, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details=details
        )
        if user_id is not None:
            self.details["user_id"] = user_id


class ConflictError(AppException):
    """Raised when the request collides with the current state of a resource"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFLICT,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )


class LockTimeoutError(ConflictError):
    """Raised when the per-runner write lock could not be acquired in time.

    Transient: the client may retry the same request.
    """

    def __init__(self, runner_id: int, timeout_seconds: float):
        super().__init__(
            message=f"Another payment operation for runner {runner_id} is in progress, please retry",
            error_code=ErrorCode.LOCK_TIMEOUT,
            details={
                "runner_id": runner_id,
                "timeout_seconds": timeout_seconds,
                "retryable": True,
            }
        )


class PostStatusError(AppException):
    """Raised when the errand is not in the status required for the operation"""

    def __init__(self, post_id: int, current_status: str, required_status: str, message: str | None = None):
        super().__init__(
            message=message or f"Errand {post_id} has status '{current_status}', required '{required_status}'",
            error_code=ErrorCode.POST_INVALID_STATUS,
            status_code=400,
            details={
                "post_id": post_id,
                "current_status": current_status,
                "required_status": required_status,
            }
        )


class TransactionTypeMismatchError(AppException):
    """Raised when an admin queue endpoint receives a transaction of another type"""

    def __init__(self, transaction_id: int, actual_type: str, expected_type: str):
        super().__init__(
            message=f"Transaction {transaction_id} is a {actual_type}, expected {expected_type}",
            error_code=ErrorCode.TRANSACTION_TYPE_MISMATCH,
            status_code=400,
            details={
                "transaction_id": transaction_id,
                "actual_type": actual_type,
                "expected_type": expected_type,
            }
        )


class BalanceException(AppException):
    """Base exception for runner balance errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        runner_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if runner_id:
            self.details["runner_id"] = runner_id


class InsufficientBalanceError(BalanceException):
    """Raised when a balance payment exceeds what the runner can settle"""

    def __init__(self, runner_id: int, current_balance: float, requested_amount: float):
        super().__init__(
            message=f"Payment of {requested_amount:.2f} exceeds the current balance of {current_balance:.2f}",
            error_code=ErrorCode.INSUFFICIENT_BALANCE,
            runner_id=runner_id,
            details={
                "current_balance": current_balance,
                "requested_amount": requested_amount,
            }
        )


class NoOutstandingBalanceError(BalanceException):
    """Raised when a runner tries to pay while owing nothing"""

    def __init__(self, runner_id: int):
        super().__init__(
            message="No outstanding balance to pay",
            error_code=ErrorCode.NO_OUTSTANDING_BALANCE,
            runner_id=runner_id
        )


class InvalidStateTransitionError(AppException):
    """Raised when a transaction status change is not an edge of the transition graph"""

    def __init__(
        self,
        current_state: str,
        target_state: str,
        transaction_id: int | None = None,
        transaction_type: str | None = None
    ):
        super().__init__(
            message=f"Invalid transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            details={
                "current_state": current_state,
                "target_state": target_state,
                "transaction_id": transaction_id,
                "transaction_type": transaction_type,
            }
        )


class PersistenceError(AppException):
    """Raised when the database fails underneath a workflow operation.

    The original driver error is logged, never returned to the client.
    """

    def __init__(self, operation: str):
        super().__init__(
            message="An unexpected error occurred",
            error_code=ErrorCode.PERSISTENCE_ERROR,
            status_code=500,
            details={"operation": operation}
        )
