from bursary.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    DuplicateError,
    StudentNotFoundError,
    InvalidAmountError,
    ConcurrentModificationError,
    AllocationConsistencyError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "DuplicateError",
    "StudentNotFoundError",
    "InvalidAmountError",
    "ConcurrentModificationError",
    "AllocationConsistencyError",
]
