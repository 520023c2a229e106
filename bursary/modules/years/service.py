from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.exceptions import NotFoundError
from bursary.modules.years.models import AcademicYear


async def get_academic_year(db: AsyncSession, tenant_id: int, academic_year_id: int) -> AcademicYear:
    """Get an academic year of the tenant or raise NotFoundError."""
    result = await db.execute(
        select(AcademicYear).where(
            AcademicYear.id == academic_year_id,
            AcademicYear.tenant_id == tenant_id,
        )
    )
    year = result.scalar_one_or_none()
    if not year:
        raise NotFoundError("Academic year", academic_year_id)
    return year
