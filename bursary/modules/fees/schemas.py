"""Pydantic schemas for the fees module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, model_validator

from bursary.modules.fees.models import FeeCategoryKind, StudentFeeStatus
from bursary.shared.schemas import BaseSchema


# --- Catalog ---


class FeeCategoryCreate(BaseSchema):
    """School-defined category. The code decides how the waterfall treats its fees."""

    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)


class FeeCategoryResponse(BaseSchema):
    id: int
    code: str
    name: str
    kind: FeeCategoryKind


class FeeInstallmentCreate(BaseSchema):
    label: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    due_date: date | None = None


class FeeDefinitionCreate(BaseSchema):
    """
    Gross fee for an academic year.

    Installments are numbered in the order given. When present they must
    add up to the fee amount.
    """

    category_id: int
    academic_year_id: int
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    installments: list[FeeInstallmentCreate] = []

    @model_validator(mode="after")
    def validate_installments_total(self):
        if self.installments:
            total = sum((inst.amount for inst in self.installments), Decimal("0"))
            if total != self.amount:
                raise ValueError(
                    f"Installments add up to {total}, fee amount is {self.amount}"
                )
        return self


class FeeDefinitionFilters(BaseSchema):
    academic_year_id: int | None = None
    category_id: int | None = None


# --- Student fees ---


class StudentFeeCreate(BaseSchema):
    """Assign a fee definition to a student; the net amount comes from the student's regime."""

    student_id: int
    fee_definition_id: int


class StudentFeeFilters(BaseSchema):
    """Filters for listing student fees."""

    student_id: int | None = None
    academic_year_id: int | None = None
    status: StudentFeeStatus | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)


class PaymentSummaryResponse(BaseSchema):
    expected_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    last_payment_date: datetime | None


class InstallmentResponse(BaseSchema):
    id: int
    label: str
    amount: Decimal
    due_date: date | None
    order_index: int


class FeeDefinitionResponse(BaseSchema):
    id: int
    category_id: int
    academic_year_id: int
    name: str
    amount: Decimal
    category: FeeCategoryResponse
    installments: list[InstallmentResponse] = []


class StudentFeeResponse(BaseSchema):
    """Schema for student fee response."""

    id: int
    student_id: int
    fee_definition_id: int
    academic_year_id: int
    total_amount: Decimal
    status: str
    payment_summary: PaymentSummaryResponse | None = None


class TuitionEligibility(BaseSchema):
    """Whether tuition can currently receive money for a student/year."""

    allowed: bool
    reason: str | None = None
    unpaid_registration_fee_ids: list[int] = []
