from datetime import date

from sqlalchemy import Boolean, Date, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bursary.core.database.base import BaseModel, TenantMixin


class AcademicYear(TenantMixin, BaseModel):
    """
    School year, e.g. "2025-2026".

    Fee obligations are owed per year. Arrears carry an unpaid balance from
    one year into a later one; "older" means an earlier start_date.
    """

    __tablename__ = "academic_years"

    name: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_academic_year_tenant_name"),
    )
