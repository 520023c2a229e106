"""API endpoints for fee regimes."""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.auth.dependencies import READ_ROLES, WRITE_ROLES, require_roles
from bursary.core.auth.schemas import CurrentUser
from bursary.core.database.session import get_db
from bursary.modules.discounts.schemas import FeeRegimeCreate, FeeRegimeResponse, ResolvedAmount
from bursary.modules.discounts.service import RegimeService
from bursary.modules.fees.models import FeeCategoryKind
from bursary.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/regimes", tags=["Regimes"])


@router.post(
    "",
    response_model=ApiResponse[FeeRegimeResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_regime(
    data: FeeRegimeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
):
    """Create a regime with its per-category reductions."""
    service = RegimeService(db)
    regime = await service.create_regime(current_user.tenant_id, data, current_user.id)
    return ApiResponse(
        data=FeeRegimeResponse.model_validate(regime),
        message="Regime created successfully",
    )


@router.get(
    "",
    response_model=ApiResponse[list[FeeRegimeResponse]],
)
async def list_regimes(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    service = RegimeService(db)
    regimes = await service.list_regimes(current_user.tenant_id)
    return ApiResponse(data=[FeeRegimeResponse.model_validate(r) for r in regimes])


@router.get(
    "/resolve",
    response_model=ApiResponse[ResolvedAmount],
)
async def resolve_amount(
    category_kind: FeeCategoryKind = Query(...),
    gross_amount: Decimal = Query(..., ge=0),
    regime_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    """Preview the net amount a regime gives for a gross fee."""
    service = RegimeService(db)
    net = await service.preview(current_user.tenant_id, regime_id, category_kind, gross_amount)
    return ApiResponse(
        data=ResolvedAmount(
            regime_id=regime_id,
            category_kind=category_kind,
            gross_amount=gross_amount,
            net_amount=net,
        )
    )


@router.get(
    "/{regime_id}",
    response_model=ApiResponse[FeeRegimeResponse],
)
async def get_regime(
    regime_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*READ_ROLES)),
):
    service = RegimeService(db)
    regime = await service.get_regime(current_user.tenant_id, regime_id)
    return ApiResponse(data=FeeRegimeResponse.model_validate(regime))
