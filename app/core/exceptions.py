from typing import Any, Dict, List, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class ValidationFailedError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=details
        )

class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )

class AuthenticationError(AppException):
    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTH_FAILED"
        )

class AccessDeniedError(AppException):
    """Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError."""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED"
        )

class InsufficientBalanceError(AppException):
    def __init__(self, requested: float, available: float, floor: float = 0.0):
        super().__init__(
            message=f"Insufficient balance. Requested: {requested}, Available: {available}",
            status_code=422,
            error_code="INSUFFICIENT_BALANCE",
            details={"requested": requested, "available": available, "floor": floor}
        )

class BlackoutViolationError(AppException):
    def __init__(self, conflicts: List[Dict[str, Any]]):
        self.conflicts = conflicts
        super().__init__(
            message="Request conflicts with blackout periods.",
            status_code=422,
            error_code="BLACKOUT_VIOLATION",
            details={"conflicts": conflicts}
        )

class InvalidChainError(AppException):
    def __init__(self, message: str = "No eligible approver found for this request"):
        super().__init__(
            message=message,
            status_code=422,
            error_code="INVALID_CHAIN"
        )

class AlreadyResolvedError(AppException):
    def __init__(self, approval_id: int):
        super().__init__(
            message=f"Approval {approval_id} has already been resolved",
            status_code=409,
            error_code="ALREADY_RESOLVED",
            details={"approval_id": approval_id}
        )

class InvalidTransitionError(AppException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=409,
            error_code="INVALID_TRANSITION"
        )

class PolicyNotFoundError(AppException):
    def __init__(self, user_id: int, leave_type_id: int, on_date: Any = None):
        super().__init__(
            message=f"No active policy for user {user_id} and leave type {leave_type_id}",
            status_code=404,
            error_code="POLICY_NOT_FOUND",
            details={"user_id": user_id, "leave_type_id": leave_type_id, "date": str(on_date) if on_date else None}
        )

class LedgerInvariantError(Exception):
    """
    Internal consistency failure (prefix-sum mismatch, illegal reservation or
    request state). Never shown to users as a validation error; the enclosing
    unit of work is rolled back and the error surfaces as a 500.
    """
