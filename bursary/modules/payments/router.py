"""API endpoints for Payments module."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.auth.dependencies import READ_ROLES, WRITE_ROLES, require_roles
from bursary.core.auth.schemas import CurrentUser
from bursary.core.database.session import get_db
from bursary.modules.payments.schemas import (
    AllocateRequest,
    AllocationResult,
    PaymentCreate,
    PaymentResponse,
    PaymentWithAllocation,
)
from bursary.modules.payments.service import PaymentService
from bursary.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/payments", tags=["Payments"])


# --- Payment Endpoints ---


@router.post(
    "",
    response_model=ApiResponse[PaymentWithAllocation],
    status_code=status.HTTP_201_CREATED,
)
async def create_payment(
    data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
):
    """Record a payment and allocate it right away. Accountant is read-only."""
    service = PaymentService(db)
    payment = await service.record_payment(current_user.tenant_id, data, current_user.id)
    allocation = await service.allocate_payment(
        tenant_id=current_user.tenant_id,
        student_id=payment.student_id,
        academic_year_id=payment.academic_year_id,
        payment_id=payment.id,
        allocated_by_id=current_user.id,
    )
    return ApiResponse(
        data=PaymentWithAllocation(
            payment=PaymentResponse.model_validate(payment),
            allocation=allocation,
        ),
        message="Payment recorded and allocated",
    )


@router.get(
    "/{payment_id}",
    response_model=ApiResponse[PaymentResponse],
)
async def get_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    """Get payment by ID."""
    service = PaymentService(db)
    payment = await service.get_payment(current_user.tenant_id, payment_id)
    return ApiResponse(data=PaymentResponse.model_validate(payment))


# --- Allocation Endpoints ---


@router.post(
    "/{payment_id}/allocate",
    response_model=ApiResponse[AllocationResult],
)
async def allocate_payment(
    payment_id: int,
    data: AllocateRequest | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
):
    """
    Allocate whatever is still unallocated on a payment.

    Safe to repeat: a fully allocated payment is left untouched.
    """
    service = PaymentService(db)
    payment = await service.get_payment(current_user.tenant_id, payment_id)
    result = await service.allocate_payment(
        tenant_id=current_user.tenant_id,
        student_id=payment.student_id,
        academic_year_id=payment.academic_year_id,
        payment_id=payment.id,
        amount=data.amount if data else None,
        allocated_by_id=current_user.id,
    )
    return ApiResponse(data=result, message="Payment allocated")


@router.get(
    "/{payment_id}/allocations",
    response_model=ApiResponse[AllocationResult],
)
async def get_payment_allocations(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    """Allocations of a payment in the order they were made."""
    service = PaymentService(db)
    result = await service.get_allocation_result(current_user.tenant_id, payment_id)
    return ApiResponse(data=result)
