"""Inter-year arrear model."""

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bursary.core.database.base import BaseModel, TenantMixin


class ArrearStatus(StrEnum):
    """Arrear status. Only ever moves forward."""

    OPEN = "open"
    PARTIAL = "partial"
    PAID = "paid"


class StudentArrear(TenantMixin, BaseModel):
    """
    Unpaid balance carried from one academic year into a later one.

    Created once per (student, from_year, to_year) by the year-closing job
    and never deleted. After creation only amount_paid, balance_due and
    status change, and only through ArrearLedger.update_after_payment.
    """

    __tablename__ = "student_arrears"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    from_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False
    )
    to_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False, index=True
    )

    amount_due: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    balance_due: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ArrearStatus.OPEN.value, index=True
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    from_year: Mapped["AcademicYear"] = relationship("AcademicYear", foreign_keys=[from_year_id])
    to_year: Mapped["AcademicYear"] = relationship("AcademicYear", foreign_keys=[to_year_id])

    __table_args__ = (
        UniqueConstraint("student_id", "from_year_id", "to_year_id", name="uq_student_arrear_years"),
    )

    @property
    def is_paid(self) -> bool:
        return self.status == ArrearStatus.PAID.value


# Import at the end to avoid circular imports
from bursary.modules.students.models import Student
from bursary.modules.years.models import AcademicYear
