"""API endpoints for the arrear ledger."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.auth.dependencies import READ_ROLES, WRITE_ROLES, require_roles
from bursary.core.auth.schemas import CurrentUser
from bursary.core.database.session import get_db
from bursary.modules.arrears.models import ArrearStatus
from bursary.modules.arrears.schemas import (
    ArrearFilters,
    ArrearGenerateRequest,
    ArrearGenerateResult,
    ArrearResponse,
    ArrearStatistics,
)
from bursary.modules.arrears.service import ArrearLedger
from bursary.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/arrears", tags=["Arrears"])


@router.post(
    "/generate",
    response_model=ApiResponse[ArrearGenerateResult],
    status_code=status.HTTP_201_CREATED,
)
async def generate_arrears(
    data: ArrearGenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
):
    """Carry unpaid balances of one year into the next. Re-running skips existing arrears."""
    ledger = ArrearLedger(db)
    created, skipped = await ledger.generate_for_year(
        current_user.tenant_id, data.from_year_id, data.to_year_id, current_user.id
    )
    return ApiResponse(
        data=ArrearGenerateResult(
            created=len(created),
            skipped_existing=skipped,
            arrears=[ArrearResponse.model_validate(a) for a in created],
        ),
        message=f"{len(created)} arrears generated",
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[ArrearResponse]],
)
async def list_arrears(
    student_id: int | None = Query(None),
    to_year_id: int | None = Query(None),
    status: ArrearStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    """List arrears with optional filters."""
    ledger = ArrearLedger(db)
    filters = ArrearFilters(
        student_id=student_id, to_year_id=to_year_id, status=status, page=page, limit=limit
    )
    arrears, total = await ledger.list_arrears(current_user.tenant_id, filters)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[ArrearResponse.model_validate(a) for a in arrears],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/statistics",
    response_model=ApiResponse[ArrearStatistics],
)
async def get_arrear_statistics(
    to_year_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    ledger = ArrearLedger(db)
    return ApiResponse(data=await ledger.get_statistics(current_user.tenant_id, to_year_id))


@router.get(
    "/{arrear_id}",
    response_model=ApiResponse[ArrearResponse],
)
async def get_arrear(
    arrear_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    ledger = ArrearLedger(db)
    arrear = await ledger.get_arrear(current_user.tenant_id, arrear_id)
    return ApiResponse(data=ArrearResponse.model_validate(arrear))
