from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bursary.core.exceptions import StudentNotFoundError
from bursary.modules.discounts.models import FeeRegime
from bursary.modules.students.models import Student


async def get_student(
    db: AsyncSession, tenant_id: int, student_id: int, with_regime: bool = False
) -> Student:
    """Get a student of the tenant or raise StudentNotFoundError."""
    query = select(Student).where(Student.id == student_id, Student.tenant_id == tenant_id)
    if with_regime:
        query = query.options(
            selectinload(Student.regime).selectinload(FeeRegime.rules)
        ).execution_options(populate_existing=True)
    result = await db.execute(query)
    student = result.scalar_one_or_none()
    if not student:
        raise StudentNotFoundError(student_id)
    return student
