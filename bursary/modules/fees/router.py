"""API endpoints for the fee catalog and student fees."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.auth.dependencies import READ_ROLES, WRITE_ROLES, require_roles
from bursary.core.auth.schemas import CurrentUser
from bursary.core.database.session import get_db
from bursary.modules.fees.models import StudentFeeStatus
from bursary.modules.fees.schemas import (
    FeeCategoryCreate,
    FeeCategoryResponse,
    FeeDefinitionCreate,
    FeeDefinitionFilters,
    FeeDefinitionResponse,
    StudentFeeCreate,
    StudentFeeFilters,
    StudentFeeResponse,
    TuitionEligibility,
)
from bursary.modules.fees.service import FeeService
from bursary.modules.payments.schemas import AllocationResponse
from bursary.modules.payments.service import PaymentService, to_allocation_response
from bursary.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/student-fees", tags=["Student Fees"])


@router.post(
    "",
    response_model=ApiResponse[StudentFeeResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_student_fee(
    data: StudentFeeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
):
    """Assign a fee to a student. The student's regime decides the net amount."""
    service = FeeService(db)
    student_fee = await service.create_student_fee(current_user.tenant_id, data, current_user.id)
    return ApiResponse(
        data=StudentFeeResponse.model_validate(student_fee),
        message="Student fee created successfully",
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[StudentFeeResponse]],
)
async def list_student_fees(
    student_id: int | None = Query(None),
    academic_year_id: int | None = Query(None),
    status: StudentFeeStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    """List student fees with optional filters."""
    service = FeeService(db)
    filters = StudentFeeFilters(
        student_id=student_id,
        academic_year_id=academic_year_id,
        status=status,
        page=page,
        limit=limit,
    )
    student_fees, total = await service.list_student_fees(current_user.tenant_id, filters)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[StudentFeeResponse.model_validate(sf) for sf in student_fees],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/tuition-eligibility",
    response_model=ApiResponse[TuitionEligibility],
)
async def get_tuition_eligibility(
    student_id: int = Query(...),
    academic_year_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    """Can tuition receive money right now for this student and year?"""
    service = FeeService(db)
    eligibility = await service.is_tuition_payment_allowed(
        current_user.tenant_id, student_id, academic_year_id
    )
    return ApiResponse(data=eligibility)


@router.get(
    "/{student_fee_id}",
    response_model=ApiResponse[StudentFeeResponse],
)
async def get_student_fee(
    student_fee_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    service = FeeService(db)
    student_fee = await service.get_student_fee(current_user.tenant_id, student_fee_id)
    return ApiResponse(data=StudentFeeResponse.model_validate(student_fee))


@router.get(
    "/{student_fee_id}/allocations",
    response_model=ApiResponse[list[AllocationResponse]],
)
async def get_student_fee_allocations(
    student_fee_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    """Every payment allocation that went to this fee."""
    service = PaymentService(db)
    allocations = await service.get_student_fee_allocations(current_user.tenant_id, student_fee_id)
    return ApiResponse(data=[to_allocation_response(a) for a in allocations])


# --- Catalog Endpoints ---

categories_router = APIRouter(prefix="/fee-categories", tags=["Fee Catalog"])
definitions_router = APIRouter(prefix="/fee-definitions", tags=["Fee Catalog"])


@categories_router.post(
    "",
    response_model=ApiResponse[FeeCategoryResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_category(
    data: FeeCategoryCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
):
    """Create a fee category. The code (e.g. INSCRIPTION, SCOLARITE) sets its waterfall tier."""
    service = FeeService(db)
    category = await service.create_fee_category(current_user.tenant_id, data, current_user.id)
    return ApiResponse(
        data=FeeCategoryResponse.model_validate(category),
        message="Fee category created successfully",
    )


@categories_router.get(
    "",
    response_model=ApiResponse[list[FeeCategoryResponse]],
)
async def list_fee_categories(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    service = FeeService(db)
    categories = await service.list_fee_categories(current_user.tenant_id)
    return ApiResponse(data=[FeeCategoryResponse.model_validate(c) for c in categories])


@categories_router.get(
    "/{category_id}",
    response_model=ApiResponse[FeeCategoryResponse],
)
async def get_fee_category(
    category_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    service = FeeService(db)
    category = await service.get_fee_category(current_user.tenant_id, category_id)
    return ApiResponse(data=FeeCategoryResponse.model_validate(category))


@definitions_router.post(
    "",
    response_model=ApiResponse[FeeDefinitionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_definition(
    data: FeeDefinitionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
):
    """Create a gross fee for an academic year, optionally split into installments."""
    service = FeeService(db)
    definition = await service.create_fee_definition(current_user.tenant_id, data, current_user.id)
    return ApiResponse(
        data=FeeDefinitionResponse.model_validate(definition),
        message="Fee definition created successfully",
    )


@definitions_router.get(
    "",
    response_model=ApiResponse[list[FeeDefinitionResponse]],
)
async def list_fee_definitions(
    academic_year_id: int | None = Query(None),
    category_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    """List fee definitions in catalog order."""
    service = FeeService(db)
    filters = FeeDefinitionFilters(academic_year_id=academic_year_id, category_id=category_id)
    definitions = await service.list_fee_definitions(current_user.tenant_id, filters)
    return ApiResponse(data=[FeeDefinitionResponse.model_validate(d) for d in definitions])


@definitions_router.get(
    "/{fee_definition_id}",
    response_model=ApiResponse[FeeDefinitionResponse],
)
async def get_fee_definition(
    fee_definition_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    service = FeeService(db)
    definition = await service.get_fee_definition(current_user.tenant_id, fee_definition_id)
    return ApiResponse(data=FeeDefinitionResponse.model_validate(definition))
