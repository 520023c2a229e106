"""Pydantic schemas for the arrears module."""

from decimal import Decimal

from pydantic import Field, model_validator

from bursary.modules.arrears.models import ArrearStatus
from bursary.shared.schemas import BaseSchema


class ArrearGenerateRequest(BaseSchema):
    """Carry unpaid balances of `from_year_id` into `to_year_id`."""

    from_year_id: int
    to_year_id: int

    @model_validator(mode="after")
    def validate_distinct_years(self):
        if self.from_year_id == self.to_year_id:
            raise ValueError("from_year_id and to_year_id must differ")
        return self


class ArrearFilters(BaseSchema):
    """Filters for listing arrears."""

    student_id: int | None = None
    to_year_id: int | None = None
    status: ArrearStatus | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)


class ArrearResponse(BaseSchema):
    """Schema for arrear response."""

    id: int
    student_id: int
    from_year_id: int
    to_year_id: int
    amount_due: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    status: str


class ArrearGenerateResult(BaseSchema):
    created: int
    skipped_existing: int
    arrears: list[ArrearResponse]


class ArrearStatistics(BaseSchema):
    """Collection figures over arrears."""

    total_arrears: int
    open_arrears: int
    total_due: Decimal
    total_paid: Decimal
    balance_due: Decimal
    collection_rate: Decimal  # percent of total_due already collected
