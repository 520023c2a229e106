"""Payment and PaymentAllocation models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bursary.core.database.base import Base, BaseModel, BigIntPK, TenantMixin


class AllocationTargetType(StrEnum):
    """What an allocation pays down."""

    ARREAR = "arrear"
    STUDENT_FEE = "student_fee"


class Payment(TenantMixin, BaseModel):
    """
    Cash received for a student in an academic year.

    Immutable once recorded; the allocation engine decides which
    obligations absorb it.
    """

    __tablename__ = "payments"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # Mobile money transaction ID, bank reference
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    recorded_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        "PaymentAllocation",
        back_populates="payment",
        order_by="PaymentAllocation.allocation_order",
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
    )


class PaymentAllocation(Base):
    """
    Part of a payment applied to one arrear or one student fee.

    Append-only audit trail. allocation_order runs 1..N per payment with
    no gaps, in the order the waterfall decided.
    """

    __tablename__ = "payment_allocations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    payment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("payments.id"), nullable=False, index=True
    )
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    student_fee_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("student_fees.id"), nullable=True, index=True
    )
    student_arrear_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("student_arrears.id"), nullable=True, index=True
    )

    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    allocation_order: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    # Relationships
    payment: Mapped["Payment"] = relationship("Payment", back_populates="allocations")
    student_fee: Mapped["StudentFee | None"] = relationship("StudentFee")
    student_arrear: Mapped["StudentArrear | None"] = relationship("StudentArrear")

    __table_args__ = (
        UniqueConstraint("payment_id", "allocation_order", name="uq_payment_allocation_order"),
        CheckConstraint("allocated_amount > 0", name="ck_payment_allocation_positive"),
        CheckConstraint(
            "(student_fee_id IS NULL) <> (student_arrear_id IS NULL)",
            name="ck_payment_allocation_single_target",
        ),
    )

    @property
    def target_id(self) -> int:
        if self.target_type == AllocationTargetType.ARREAR.value:
            return self.student_arrear_id
        return self.student_fee_id


# Import at the end to avoid circular imports
from bursary.modules.arrears.models import StudentArrear
from bursary.modules.fees.models import StudentFee
from bursary.modules.students.models import Student
