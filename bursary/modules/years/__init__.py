from bursary.modules.years.models import AcademicYear
from bursary.modules.years.service import get_academic_year

__all__ = ["AcademicYear", "get_academic_year"]
