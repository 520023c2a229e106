"""Schemas for discount regimes."""

from decimal import Decimal

from pydantic import Field, model_validator

from bursary.modules.discounts.models import DiscountValueType, RegimeKind
from bursary.modules.fees.models import FeeCategoryKind
from bursary.shared.schemas import BaseSchema


class RegimeRuleCreate(BaseSchema):
    """One reduction inside a regime."""

    category_kind: FeeCategoryKind
    value_type: DiscountValueType
    value: Decimal = Field(..., gt=0)

    @model_validator(mode="after")
    def validate_percentage(self):
        """Validate percentage is not over 100."""
        if self.value_type == DiscountValueType.PERCENT and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100%")
        return self


class FeeRegimeCreate(BaseSchema):
    """Schema for creating a regime with its rules."""

    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    kind: RegimeKind = RegimeKind.STANDARD
    rules: list[RegimeRuleCreate] = []

    @model_validator(mode="after")
    def validate_unique_kinds(self):
        kinds = [rule.category_kind for rule in self.rules]
        if len(kinds) != len(set(kinds)):
            raise ValueError("Only one rule per fee category kind is allowed")
        return self


class RegimeRuleResponse(BaseSchema):
    id: int
    category_kind: str
    value_type: str
    value: Decimal


class FeeRegimeResponse(BaseSchema):
    """Schema for regime response."""

    id: int
    code: str
    name: str
    kind: str
    rules: list[RegimeRuleResponse]


class ResolvedAmount(BaseSchema):
    """Net amount preview for a regime."""

    regime_id: int | None
    category_kind: FeeCategoryKind
    gross_amount: Decimal
    net_amount: Decimal
