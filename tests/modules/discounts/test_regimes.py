"""Tests for discount regimes and the net amount resolver."""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.exceptions import DuplicateError, NotFoundError
from bursary.modules.discounts.models import DiscountValueType, FeeRegime, RegimeRule
from bursary.modules.discounts.resolver import find_rule, resolve_net_amount
from bursary.modules.discounts.schemas import FeeRegimeCreate, RegimeRuleCreate
from bursary.modules.discounts.service import RegimeService
from bursary.modules.fees.models import FeeCategoryKind

TENANT_ID = 1


def _regime(*rules: tuple[FeeCategoryKind, DiscountValueType, str]) -> FeeRegime:
    return FeeRegime(
        code="R",
        name="R",
        rules=[
            RegimeRule(category_kind=kind.value, value_type=value_type.value, value=Decimal(value))
            for kind, value_type, value in rules
        ],
    )


class TestResolver:
    """Tests for resolve_net_amount (pure)."""

    def test_no_regime_returns_gross(self):
        assert resolve_net_amount(None, FeeCategoryKind.TUITION, Decimal("1000")) == Decimal("1000")

    def test_no_matching_rule_returns_gross(self):
        regime = _regime((FeeCategoryKind.REGISTRATION, DiscountValueType.FIXED, "100"))
        assert resolve_net_amount(regime, FeeCategoryKind.TUITION, Decimal("1000")) == Decimal("1000")
        assert find_rule(regime, FeeCategoryKind.TUITION) is None

    def test_fixed(self):
        regime = _regime((FeeCategoryKind.TUITION, DiscountValueType.FIXED, "250"))
        assert resolve_net_amount(regime, FeeCategoryKind.TUITION, Decimal("1000")) == Decimal("750")

    def test_fixed_floors_at_zero(self):
        regime = _regime((FeeCategoryKind.TUITION, DiscountValueType.FIXED, "2500"))
        assert resolve_net_amount(regime, FeeCategoryKind.TUITION, Decimal("1000")) == Decimal("0")

    def test_percent(self):
        regime = _regime((FeeCategoryKind.OTHER, DiscountValueType.PERCENT, "12.5"))
        assert resolve_net_amount(regime, FeeCategoryKind.OTHER, Decimal("800")) == Decimal("700")

    def test_full_percent_is_free(self):
        regime = _regime((FeeCategoryKind.TUITION, DiscountValueType.PERCENT, "100"))
        assert resolve_net_amount(regime, FeeCategoryKind.TUITION, Decimal("800")) == Decimal("0")


class TestRegimeSchemas:
    def test_percent_over_100_rejected(self):
        with pytest.raises(PydanticValidationError):
            RegimeRuleCreate(
                category_kind=FeeCategoryKind.TUITION,
                value_type=DiscountValueType.PERCENT,
                value=Decimal("101"),
            )

    def test_duplicate_kind_rejected(self):
        rule = {"category_kind": "tuition", "value_type": "fixed", "value": "10"}
        with pytest.raises(PydanticValidationError):
            FeeRegimeCreate(code="X", name="X", rules=[rule, rule])


class TestRegimeService:
    async def test_create_and_preview(self, db_session: AsyncSession):
        service = RegimeService(db_session)
        regime = await service.create_regime(
            TENANT_ID,
            FeeRegimeCreate(
                code="STAFF",
                name="Staff children",
                kind="staff_child",
                rules=[
                    RegimeRuleCreate(
                        category_kind=FeeCategoryKind.TUITION,
                        value_type=DiscountValueType.PERCENT,
                        value=Decimal("33.33"),
                    )
                ],
            ),
        )

        assert regime.kind == "staff_child"
        assert [(r.category_kind, r.value) for r in regime.rules] == [("tuition", Decimal("33.33"))]

        net = await service.preview(TENANT_ID, regime.id, FeeCategoryKind.TUITION, Decimal("1000"))
        assert net == Decimal("666.70")
        gross = await service.preview(TENANT_ID, None, FeeCategoryKind.TUITION, Decimal("1000"))
        assert gross == Decimal("1000.00")

    async def test_duplicate_code(self, db_session: AsyncSession):
        service = RegimeService(db_session)
        await service.create_regime(TENANT_ID, FeeRegimeCreate(code="STAFF", name="Staff"))

        with pytest.raises(DuplicateError):
            await service.create_regime(TENANT_ID, FeeRegimeCreate(code="STAFF", name="Other"))

        # same code in another school is fine
        other = await service.create_regime(2, FeeRegimeCreate(code="STAFF", name="Staff"))
        assert other.tenant_id == 2

    async def test_get_unknown_regime(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await RegimeService(db_session).get_regime(TENANT_ID, 404)


class TestRegimeEndpoints:
    async def test_create_list_resolve(self, client: AsyncClient, auth_headers):
        response = await client.post(
            "/api/v1/regimes",
            json={
                "code": "BURSARY",
                "name": "Bursary",
                "kind": "custom",
                "rules": [{"category_kind": "tuition", "value_type": "fixed", "value": "1500"}],
            },
            headers=auth_headers(),
        )
        assert response.status_code == 201
        regime_id = response.json()["data"]["id"]

        response = await client.get("/api/v1/regimes", headers=auth_headers())
        assert [r["code"] for r in response.json()["data"]] == ["BURSARY"]

        response = await client.get(
            "/api/v1/regimes/resolve",
            params={"regime_id": regime_id, "category_kind": "tuition", "gross_amount": "4000"},
            headers=auth_headers(),
        )
        assert response.status_code == 200
        assert Decimal(response.json()["data"]["net_amount"]) == Decimal("2500.00")

        response = await client.post(
            "/api/v1/regimes",
            json={"code": "BURSARY", "name": "Again"},
            headers=auth_headers(),
        )
        assert response.status_code == 409
