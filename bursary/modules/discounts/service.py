"""Service for discount regimes."""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bursary.core.audit import AuditAction, AuditService
from bursary.core.exceptions import DuplicateError, NotFoundError
from bursary.modules.discounts.models import FeeRegime, RegimeRule
from bursary.modules.discounts.resolver import resolve_net_amount
from bursary.modules.discounts.schemas import FeeRegimeCreate
from bursary.modules.fees.models import FeeCategoryKind
from bursary.shared.utils.money import round_money


class RegimeService:
    """Service for managing fee regimes."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def create_regime(
        self, tenant_id: int, data: FeeRegimeCreate, created_by_id: int | None = None
    ) -> FeeRegime:
        """Create a regime together with its rules."""
        existing = await self.db.execute(
            select(FeeRegime).where(FeeRegime.tenant_id == tenant_id, FeeRegime.code == data.code)
        )
        if existing.scalar_one_or_none():
            raise DuplicateError("FeeRegime", "code", data.code)

        regime = FeeRegime(
            tenant_id=tenant_id,
            code=data.code,
            name=data.name,
            kind=data.kind.value,
            rules=[
                RegimeRule(
                    category_kind=rule.category_kind.value,
                    value_type=rule.value_type.value,
                    value=round_money(rule.value),
                )
                for rule in data.rules
            ],
        )
        self.db.add(regime)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CREATE_REGIME,
            entity_type="FeeRegime",
            entity_id=regime.id,
            tenant_id=tenant_id,
            user_id=created_by_id,
            entity_identifier=regime.code,
            new_values={
                "kind": regime.kind,
                "rules": [
                    {"category_kind": r.category_kind, "value_type": r.value_type, "value": str(r.value)}
                    for r in regime.rules
                ],
            },
        )

        await self.db.commit()
        return await self.get_regime(tenant_id, regime.id)

    async def get_regime(self, tenant_id: int, regime_id: int) -> FeeRegime:
        """Get regime with rules loaded."""
        result = await self.db.execute(
            select(FeeRegime)
            .where(FeeRegime.id == regime_id, FeeRegime.tenant_id == tenant_id)
            .options(selectinload(FeeRegime.rules))
            .execution_options(populate_existing=True)
        )
        regime = result.scalar_one_or_none()
        if not regime:
            raise NotFoundError("Fee regime", regime_id)
        return regime

    async def list_regimes(self, tenant_id: int) -> list[FeeRegime]:
        result = await self.db.execute(
            select(FeeRegime)
            .where(FeeRegime.tenant_id == tenant_id)
            .options(selectinload(FeeRegime.rules))
            .order_by(FeeRegime.code)
        )
        return list(result.scalars().all())

    async def preview(
        self,
        tenant_id: int,
        regime_id: int | None,
        kind: FeeCategoryKind,
        gross_amount: Decimal,
    ) -> Decimal:
        """Net amount a student under `regime_id` would owe for a fee of `kind`."""
        regime = await self.get_regime(tenant_id, regime_id) if regime_id else None
        return round_money(resolve_net_amount(regime, kind, gross_amount))
