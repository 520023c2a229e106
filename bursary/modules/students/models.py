"""Student model (finance view)."""

from enum import StrEnum

from sqlalchemy import BigInteger, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bursary.core.database.base import BaseModel, TenantMixin


class StudentStatus(StrEnum):
    """Student status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class Student(TenantMixin, BaseModel):
    """Student enrolled in a school. Only the fields finance needs."""

    __tablename__ = "students"

    student_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Discount regime applied when fee obligations are created; NULL = standard price
    regime_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("fee_regimes.id"), nullable=True, index=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StudentStatus.ACTIVE.value, index=True
    )

    # Relationships
    regime: Mapped["FeeRegime | None"] = relationship("FeeRegime")

    __table_args__ = (
        UniqueConstraint("tenant_id", "student_number", name="uq_student_tenant_number"),
    )

    @property
    def full_name(self) -> str:
        """Full name of the student."""
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.status == StudentStatus.ACTIVE.value


# Import at the end to avoid circular imports
from bursary.modules.discounts.models import FeeRegime
