"""Pydantic schemas for Payments module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from bursary.shared.schemas import BaseSchema


# --- Payment Schemas ---


class PaymentCreate(BaseSchema):
    """Schema for recording a payment."""

    student_id: int
    academic_year_id: int
    amount: Decimal = Field(gt=0, description="Payment amount (must be positive)")
    payment_date: date
    reference: str | None = Field(None, max_length=100)
    notes: str | None = None


class PaymentResponse(BaseSchema):
    """Schema for payment response."""

    id: int
    student_id: int
    academic_year_id: int
    amount: Decimal
    payment_date: date
    reference: str | None
    notes: str | None
    recorded_by_id: int | None
    created_at: datetime


# --- Allocation Schemas ---


class AllocateRequest(BaseSchema):
    """(Re-)run allocation for a payment. Defaults to everything not yet allocated."""

    amount: Decimal | None = Field(None, description="Cap on the amount to allocate in this run")


class AllocationResponse(BaseSchema):
    """One line of an allocation result."""

    id: int
    payment_id: int
    target_type: str
    target_id: int
    allocated_amount: Decimal
    allocation_order: int


class AllocationResult(BaseSchema):
    """
    Outcome of an allocation run: every allocation of the payment so far,
    in order, and what is left of the payment.
    """

    payment_id: int
    allocations: list[AllocationResponse]
    total_allocated: Decimal
    remaining_amount: Decimal
    tuition_deferred: bool = False  # leftover held back because registration was unpaid at call start


class PaymentWithAllocation(BaseSchema):
    payment: PaymentResponse
    allocation: AllocationResult
