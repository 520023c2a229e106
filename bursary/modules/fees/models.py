"""Fee category, definition, student fee (obligation) and payment summary models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bursary.core.database.base import Base, BaseModel, BigIntPK, TenantMixin


class FeeCategoryKind(StrEnum):
    """Closed set of fee kinds the allocation waterfall distinguishes."""

    REGISTRATION = "registration"
    RE_REGISTRATION = "re_registration"
    TUITION = "tuition"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: str | None) -> "FeeCategoryKind":
        """Resolve a school-defined category code (French or English) to a kind."""
        return _CATEGORY_CODES.get((code or "").strip().upper(), cls.OTHER)

    @property
    def is_registration_like(self) -> bool:
        return self in (FeeCategoryKind.REGISTRATION, FeeCategoryKind.RE_REGISTRATION)


_CATEGORY_CODES = {
    "INSCRIPTION": FeeCategoryKind.REGISTRATION,
    "REGISTRATION": FeeCategoryKind.REGISTRATION,
    "REINSCRIPTION": FeeCategoryKind.RE_REGISTRATION,
    "RE_REGISTRATION": FeeCategoryKind.RE_REGISTRATION,
    "SCOLARITE": FeeCategoryKind.TUITION,
    "TUITION": FeeCategoryKind.TUITION,
}


class StudentFeeStatus(StrEnum):
    """Payment progress of one obligation. Only ever moves forward."""

    NOT_STARTED = "not_started"
    PARTIAL = "partial"
    PAID = "paid"

    @classmethod
    def for_amounts(cls, paid_amount: Decimal, balance: Decimal) -> "StudentFeeStatus":
        """A fee with nothing left to pay is PAID, even if nothing was ever paid."""
        if balance <= 0:
            return cls.PAID
        if paid_amount > 0:
            return cls.PARTIAL
        return cls.NOT_STARTED


class FeeCategory(TenantMixin, BaseModel):
    """School-defined fee category, e.g. INSCRIPTION, SCOLARITE, CANTINE."""

    __tablename__ = "fee_categories"

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_fee_category_tenant_code"),
    )

    @property
    def kind(self) -> FeeCategoryKind:
        return FeeCategoryKind.from_code(self.code)


class FeeDefinition(TenantMixin, BaseModel):
    """
    Fee charged for an academic year (gross amount, before any regime).

    Tuition definitions are usually split into installments; installments
    only hint at the order in which tuition fees are paid.
    """

    __tablename__ = "fee_definitions"

    category_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fee_categories.id"), nullable=False, index=True
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # Relationships
    category: Mapped["FeeCategory"] = relationship("FeeCategory")
    academic_year: Mapped["AcademicYear"] = relationship("AcademicYear")
    installments: Mapped[list["FeeInstallment"]] = relationship(
        "FeeInstallment",
        back_populates="fee_definition",
        cascade="all, delete-orphan",
        order_by="FeeInstallment.order_index",
    )


class FeeInstallment(Base):
    """Installment (tranche) of a fee definition."""

    __tablename__ = "fee_installments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    fee_definition_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fee_definitions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g. "Tranche 1"
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    fee_definition: Mapped["FeeDefinition"] = relationship(
        "FeeDefinition", back_populates="installments"
    )

    __table_args__ = (
        UniqueConstraint("fee_definition_id", "order_index", name="uq_fee_installment_order"),
    )


class StudentFee(TenantMixin, BaseModel):
    """
    Obligation: what one student owes for one fee definition in one year.

    total_amount is net of the student's regime and never changes after
    creation. Paid/balance figures live on the PaymentSummary.
    """

    __tablename__ = "student_fees"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    fee_definition_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fee_definitions.id"), nullable=False, index=True
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False, index=True
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StudentFeeStatus.NOT_STARTED.value, index=True
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    fee_definition: Mapped["FeeDefinition"] = relationship("FeeDefinition")
    payment_summary: Mapped["PaymentSummary | None"] = relationship(
        "PaymentSummary", back_populates="student_fee", uselist=False
    )

    __table_args__ = (
        UniqueConstraint(
            "student_id", "fee_definition_id", "academic_year_id", name="uq_student_fee_definition_year"
        ),
    )

    @property
    def is_paid(self) -> bool:
        return self.status == StudentFeeStatus.PAID.value


class PaymentSummary(TenantMixin, BaseModel):
    """Running totals of one StudentFee, recomputed on every allocation touching it."""

    __tablename__ = "payment_summaries"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False, index=True
    )
    student_fee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("student_fees.id"), nullable=False, unique=True
    )
    expected_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    balance: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    last_payment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    student_fee: Mapped["StudentFee"] = relationship("StudentFee", back_populates="payment_summary")


# Import at the end to avoid circular imports
from bursary.modules.students.models import Student
from bursary.modules.years.models import AcademicYear
