from decimal import Decimal
from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message=message, status_code=404)


class StudentNotFoundError(NotFoundError):
    """Student does not exist in the tenant."""

    def __init__(self, student_id: int):
        super().__init__("Student", student_id)
        self.details = {"field": "student_id"}


class ValidationError(AppException):
    """Validation error."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class InvalidAmountError(ValidationError):
    """Amount to allocate is zero or negative."""

    def __init__(self, amount: Decimal | None):
        super().__init__(f"Amount must be positive, got {amount}", field="amount")
        self.amount = amount


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message=message, status_code=401)


class AuthorizationError(AppException):
    """Not authorized to perform action."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message=message, status_code=403)


class DuplicateError(AppException):
    """Duplicate resource."""

    def __init__(self, resource: str, field: str, value: Any):
        message = f"{resource} with {field}={value} already exists"
        super().__init__(message=message, status_code=409, details={"field": field, "value": value})


class ConcurrentModificationError(AppException):
    """Another allocation run holds the student's balances. Nothing was applied; retry."""

    def __init__(self, message: str = "Allocation not applied, retry", key: Any = None):
        details = {"key": str(key)} if key is not None else {}
        super().__init__(message=message, status_code=409, details=details)


class AllocationConsistencyError(AppException):
    """
    An allocation plan would over-spend the payment or drive a balance negative.

    This is a bug in the allocator, never a user error; the transaction is aborted.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=500, details=details)
