"""Service for the fees module: student fee obligations and the obligation catalog."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bursary.core.audit import AuditAction, AuditService
from bursary.core.exceptions import DuplicateError, NotFoundError
from bursary.modules.discounts.resolver import resolve_net_amount
from bursary.modules.fees.catalog import ObligationSet, build_obligation_set
from bursary.modules.fees.models import (
    FeeCategory,
    FeeDefinition,
    FeeInstallment,
    PaymentSummary,
    StudentFee,
    StudentFeeStatus,
)
from bursary.modules.fees.schemas import (
    FeeCategoryCreate,
    FeeDefinitionCreate,
    FeeDefinitionFilters,
    StudentFeeCreate,
    StudentFeeFilters,
    TuitionEligibility,
)
from bursary.modules.students.service import get_student
from bursary.modules.years.service import get_academic_year
from bursary.shared.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


class FeeService:
    """Service for managing student fee obligations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # --- Category Methods ---

    async def create_fee_category(
        self, tenant_id: int, data: FeeCategoryCreate, created_by_id: int | None = None
    ) -> FeeCategory:
        """Create a fee category. Codes are unique per tenant."""
        code = data.code.strip().upper()
        existing = await self.db.execute(
            select(FeeCategory).where(FeeCategory.tenant_id == tenant_id, FeeCategory.code == code)
        )
        if existing.scalar_one_or_none():
            raise DuplicateError("FeeCategory", "code", code)

        category = FeeCategory(tenant_id=tenant_id, code=code, name=data.name)
        self.db.add(category)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CREATE_FEE_CATEGORY,
            entity_type="FeeCategory",
            entity_id=category.id,
            tenant_id=tenant_id,
            user_id=created_by_id,
            entity_identifier=code,
            new_values={"code": code, "name": data.name, "kind": category.kind.value},
        )

        await self.db.commit()
        return await self.get_fee_category(tenant_id, category.id)

    async def get_fee_category(self, tenant_id: int, category_id: int) -> FeeCategory:
        result = await self.db.execute(
            select(FeeCategory)
            .where(FeeCategory.id == category_id, FeeCategory.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        category = result.scalar_one_or_none()
        if not category:
            raise NotFoundError("Fee category", category_id)
        return category

    async def list_fee_categories(self, tenant_id: int) -> list[FeeCategory]:
        """List the tenant's categories in catalog (code) order."""
        result = await self.db.execute(
            select(FeeCategory)
            .where(FeeCategory.tenant_id == tenant_id)
            .order_by(FeeCategory.code)
        )
        return list(result.scalars().all())

    # --- Definition Methods ---

    async def create_fee_definition(
        self, tenant_id: int, data: FeeDefinitionCreate, created_by_id: int | None = None
    ) -> FeeDefinition:
        """Create a gross fee for a year, with its installments numbered from 1."""
        category = await self.get_fee_category(tenant_id, data.category_id)
        year = await get_academic_year(self.db, tenant_id, data.academic_year_id)

        definition = FeeDefinition(
            tenant_id=tenant_id,
            category_id=category.id,
            academic_year_id=year.id,
            name=data.name,
            amount=round_money(data.amount),
            installments=[
                FeeInstallment(
                    label=inst.label,
                    amount=round_money(inst.amount),
                    due_date=inst.due_date,
                    order_index=index,
                )
                for index, inst in enumerate(data.installments, start=1)
            ],
        )
        self.db.add(definition)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CREATE_FEE_DEFINITION,
            entity_type="FeeDefinition",
            entity_id=definition.id,
            tenant_id=tenant_id,
            user_id=created_by_id,
            entity_identifier=data.name,
            new_values={
                "category": category.code,
                "academic_year_id": year.id,
                "amount": str(definition.amount),
                "installments": [str(inst.amount) for inst in definition.installments],
            },
        )

        await self.db.commit()
        return await self.get_fee_definition(tenant_id, definition.id)

    async def get_fee_definition(self, tenant_id: int, fee_definition_id: int) -> FeeDefinition:
        """Get fee definition with category and installments loaded."""
        result = await self.db.execute(
            select(FeeDefinition)
            .where(FeeDefinition.id == fee_definition_id, FeeDefinition.tenant_id == tenant_id)
            .options(
                selectinload(FeeDefinition.category),
                selectinload(FeeDefinition.installments),
            )
            .execution_options(populate_existing=True)
        )
        definition = result.scalar_one_or_none()
        if not definition:
            raise NotFoundError("Fee definition", fee_definition_id)
        return definition

    async def list_fee_definitions(
        self, tenant_id: int, filters: FeeDefinitionFilters
    ) -> list[FeeDefinition]:
        """List definitions in catalog order (category code, then id)."""
        query = (
            select(FeeDefinition)
            .join(FeeCategory, FeeDefinition.category_id == FeeCategory.id)
            .where(FeeDefinition.tenant_id == tenant_id)
        )
        if filters.academic_year_id:
            query = query.where(FeeDefinition.academic_year_id == filters.academic_year_id)
        if filters.category_id:
            query = query.where(FeeDefinition.category_id == filters.category_id)

        result = await self.db.execute(
            query.options(
                selectinload(FeeDefinition.category),
                selectinload(FeeDefinition.installments),
            ).order_by(FeeCategory.code, FeeDefinition.id)
        )
        return list(result.scalars().all())

    # --- Student Fee Methods ---

    async def create_student_fee(
        self, tenant_id: int, data: StudentFeeCreate, created_by_id: int | None = None
    ) -> StudentFee:
        """
        Create an obligation for a student from a fee definition.

        The total is the definition's gross amount reduced by the student's
        regime, rounded once here. A zero-balance PaymentSummary is created
        alongside it.
        """
        student = await get_student(self.db, tenant_id, data.student_id, with_regime=True)
        definition = await self.get_fee_definition(tenant_id, data.fee_definition_id)

        existing = await self.db.execute(
            select(StudentFee).where(
                StudentFee.student_id == student.id,
                StudentFee.fee_definition_id == definition.id,
                StudentFee.academic_year_id == definition.academic_year_id,
            )
        )
        if existing.scalar_one_or_none():
            raise DuplicateError("StudentFee", "fee_definition_id", definition.id)

        total_amount = round_money(
            resolve_net_amount(student.regime, definition.category.kind, definition.amount)
        )

        student_fee = StudentFee(
            tenant_id=tenant_id,
            student_id=student.id,
            fee_definition_id=definition.id,
            academic_year_id=definition.academic_year_id,
            total_amount=total_amount,
            status=StudentFeeStatus.for_amounts(ZERO, total_amount).value,
        )
        self.db.add(student_fee)
        await self.db.flush()

        self.db.add(
            PaymentSummary(
                tenant_id=tenant_id,
                student_id=student.id,
                academic_year_id=definition.academic_year_id,
                student_fee_id=student_fee.id,
                expected_amount=total_amount,
                paid_amount=ZERO,
                balance=total_amount,
            )
        )
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CREATE_STUDENT_FEE,
            entity_type="StudentFee",
            entity_id=student_fee.id,
            tenant_id=tenant_id,
            user_id=created_by_id,
            new_values={
                "student_id": student.id,
                "fee_definition_id": definition.id,
                "gross_amount": str(definition.amount),
                "total_amount": str(total_amount),
                "regime_id": student.regime_id,
            },
        )

        await self.db.commit()
        return await self.get_student_fee(tenant_id, student_fee.id)

    async def get_student_fee(self, tenant_id: int, student_fee_id: int) -> StudentFee:
        """Get student fee with its payment summary loaded."""
        result = await self.db.execute(
            select(StudentFee)
            .where(StudentFee.id == student_fee_id, StudentFee.tenant_id == tenant_id)
            .options(selectinload(StudentFee.payment_summary))
            .execution_options(populate_existing=True)
        )
        student_fee = result.scalar_one_or_none()
        if not student_fee:
            raise NotFoundError("Student fee", student_fee_id)
        return student_fee

    async def list_student_fees(
        self, tenant_id: int, filters: StudentFeeFilters
    ) -> tuple[list[StudentFee], int]:
        """List student fees with filters."""
        query = select(StudentFee).where(StudentFee.tenant_id == tenant_id)

        if filters.student_id:
            query = query.where(StudentFee.student_id == filters.student_id)
        if filters.academic_year_id:
            query = query.where(StudentFee.academic_year_id == filters.academic_year_id)
        if filters.status:
            query = query.where(StudentFee.status == filters.status.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            query.options(selectinload(StudentFee.payment_summary))
            .order_by(StudentFee.student_id, StudentFee.id)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # --- Obligation catalog ---

    async def load_student_fees(
        self, tenant_id: int, student_id: int, academic_year_id: int, lock: bool = False
    ) -> list[StudentFee]:
        """
        Student's fees for a year in catalog order (category code, then id).

        With lock=True the fee and summary rows are locked FOR UPDATE until
        the surrounding transaction ends.
        """
        query = (
            select(StudentFee)
            .join(FeeDefinition, StudentFee.fee_definition_id == FeeDefinition.id)
            .join(FeeCategory, FeeDefinition.category_id == FeeCategory.id)
            .where(
                StudentFee.tenant_id == tenant_id,
                StudentFee.student_id == student_id,
                StudentFee.academic_year_id == academic_year_id,
            )
            .options(
                selectinload(StudentFee.fee_definition).selectinload(FeeDefinition.category),
                selectinload(StudentFee.fee_definition).selectinload(FeeDefinition.installments),
                selectinload(StudentFee.payment_summary),
            )
            .order_by(FeeCategory.code, StudentFee.id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update(of=StudentFee)
        result = await self.db.execute(query)
        student_fees = list(result.scalars().all())

        if lock and student_fees:
            await self.db.execute(
                select(PaymentSummary.id)
                .where(PaymentSummary.student_fee_id.in_([fee.id for fee in student_fees]))
                .with_for_update()
            )
        return student_fees

    async def load_obligation_set(
        self, tenant_id: int, student_id: int, academic_year_id: int, lock: bool = False
    ) -> ObligationSet:
        """Read model of the student's obligations for the allocation waterfall."""
        student_fees = await self.load_student_fees(tenant_id, student_id, academic_year_id, lock=lock)
        return build_obligation_set(student_fees)

    async def is_tuition_payment_allowed(
        self, tenant_id: int, student_id: int, academic_year_id: int
    ) -> TuitionEligibility:
        """Tuition only takes money once every registration-like fee is settled."""
        await get_student(self.db, tenant_id, student_id)
        obligations = await self.load_obligation_set(tenant_id, student_id, academic_year_id)
        unpaid = obligations.unpaid_registration_like()
        if unpaid:
            return TuitionEligibility(
                allowed=False,
                reason="Registration/re-registration fees must be settled before tuition",
                unpaid_registration_fee_ids=[view.student_fee_id for view in unpaid],
            )
        return TuitionEligibility(allowed=True)
