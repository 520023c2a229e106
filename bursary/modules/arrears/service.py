"""Arrear ledger: generation at year closing and the only post-creation mutator."""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from bursary.core.audit import AuditAction, AuditService
from bursary.core.exceptions import (
    AllocationConsistencyError,
    NotFoundError,
    ValidationError,
)
from bursary.modules.arrears.models import ArrearStatus, StudentArrear
from bursary.modules.arrears.schemas import ArrearFilters, ArrearStatistics
from bursary.modules.fees.models import PaymentSummary, StudentFee
from bursary.modules.years.models import AcademicYear
from bursary.modules.years.service import get_academic_year
from bursary.shared.utils.money import ZERO, clamp_non_negative, round_money, to_money

logger = logging.getLogger(__name__)


class ArrearLedger:
    """Service for the inter-year arrear ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def generate_for_year(
        self,
        tenant_id: int,
        from_year_id: int,
        to_year_id: int,
        generated_by_id: int | None = None,
    ) -> tuple[list[StudentArrear], int]:
        """
        Create one arrear per student whose `from_year` obligations are not fully paid.

        amount_due is the sum of the student's fee balances in `from_year`.
        Students that already have an arrear for this exact (from, to) pair
        are skipped, so re-running the closing job never duplicates.

        Returns:
            Tuple of (created arrears, number of students skipped as existing)
        """
        if from_year_id == to_year_id:
            raise ValidationError("from_year_id and to_year_id must differ", field="to_year_id")
        from_year = await get_academic_year(self.db, tenant_id, from_year_id)
        to_year = await get_academic_year(self.db, tenant_id, to_year_id)
        if from_year.start_date >= to_year.start_date:
            raise ValidationError("Arrears can only be carried into a later year", field="to_year_id")

        outstanding = func.sum(
            StudentFee.total_amount - func.coalesce(PaymentSummary.paid_amount, 0)
        )
        result = await self.db.execute(
            select(StudentFee.student_id, outstanding)
            .outerjoin(PaymentSummary, PaymentSummary.student_fee_id == StudentFee.id)
            .where(
                StudentFee.tenant_id == tenant_id,
                StudentFee.academic_year_id == from_year_id,
            )
            .group_by(StudentFee.student_id)
            .order_by(StudentFee.student_id)
        )
        balances = {
            student_id: round_money(to_money(total))
            for student_id, total in result.all()
            if to_money(total) > 0
        }

        existing_result = await self.db.execute(
            select(StudentArrear.student_id).where(
                StudentArrear.tenant_id == tenant_id,
                StudentArrear.from_year_id == from_year_id,
                StudentArrear.to_year_id == to_year_id,
            )
        )
        existing = set(existing_result.scalars().all())

        created: list[StudentArrear] = []
        skipped = 0
        for student_id, balance in balances.items():
            if student_id in existing:
                skipped += 1
                continue
            arrear = StudentArrear(
                tenant_id=tenant_id,
                student_id=student_id,
                from_year_id=from_year_id,
                to_year_id=to_year_id,
                amount_due=balance,
                amount_paid=ZERO,
                balance_due=balance,
                status=ArrearStatus.OPEN.value,
            )
            self.db.add(arrear)
            created.append(arrear)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.GENERATE_ARREARS,
            entity_type="AcademicYear",
            entity_id=to_year_id,
            tenant_id=tenant_id,
            user_id=generated_by_id,
            entity_identifier=f"{from_year.name} -> {to_year.name}",
            new_values={
                "created": len(created),
                "skipped_existing": skipped,
                "total_carried": str(sum((a.amount_due for a in created), ZERO)),
            },
        )
        await self.db.commit()

        logger.info(
            "Generated %d arrears %s -> %s for tenant %s (%d already existed)",
            len(created), from_year.name, to_year.name, tenant_id, skipped,
        )
        return created, skipped

    async def update_after_payment(self, arrear_id: int, amount: Decimal) -> StudentArrear:
        """
        Apply `amount` to an arrear. Does not commit.

        The amount must be positive and must not exceed the balance due;
        exceeding it means the caller computed a bad plan.
        """
        if amount <= 0:
            raise ValidationError(f"Arrear payment must be positive, got {amount}", field="amount")

        result = await self.db.execute(
            select(StudentArrear).where(StudentArrear.id == arrear_id).with_for_update()
        )
        arrear = result.scalar_one_or_none()
        if not arrear:
            raise NotFoundError("Arrear", arrear_id)

        if amount > arrear.balance_due:
            raise AllocationConsistencyError(
                f"Allocation of {amount} exceeds balance {arrear.balance_due} of arrear {arrear_id}",
                details={"arrear_id": arrear_id},
            )

        arrear.amount_paid = arrear.amount_paid + amount
        arrear.balance_due = clamp_non_negative(arrear.amount_due - arrear.amount_paid)
        arrear.status = (
            ArrearStatus.PAID.value if arrear.balance_due == 0 else ArrearStatus.PARTIAL.value
        )
        await self.db.flush()
        return arrear

    async def get_student_arrears(
        self, tenant_id: int, student_id: int, academic_year_id: int, lock: bool = False
    ) -> list[StudentArrear]:
        """
        Unpaid arrears collectable in `academic_year_id`, oldest origin year first.

        An arrear carried into an earlier year stays collectable until paid:
        closing that year only carries its own fee balances forward, never
        the arrears it inherited. Arrears carried into a later year are not
        due yet and are left out.

        With lock=True the rows stay locked FOR UPDATE until the transaction ends.
        """
        from_year = aliased(AcademicYear)
        to_year = aliased(AcademicYear)
        payment_year_start = (
            select(AcademicYear.start_date)
            .where(AcademicYear.id == academic_year_id, AcademicYear.tenant_id == tenant_id)
            .scalar_subquery()
        )
        query = (
            select(StudentArrear)
            .join(from_year, StudentArrear.from_year_id == from_year.id)
            .join(to_year, StudentArrear.to_year_id == to_year.id)
            .where(
                StudentArrear.tenant_id == tenant_id,
                StudentArrear.student_id == student_id,
                to_year.start_date <= payment_year_start,
                StudentArrear.balance_due > 0,
            )
            .order_by(from_year.start_date, StudentArrear.id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update(of=StudentArrear)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_arrear(self, tenant_id: int, arrear_id: int) -> StudentArrear:
        result = await self.db.execute(
            select(StudentArrear).where(
                StudentArrear.id == arrear_id, StudentArrear.tenant_id == tenant_id
            )
        )
        arrear = result.scalar_one_or_none()
        if not arrear:
            raise NotFoundError("Arrear", arrear_id)
        return arrear

    async def list_arrears(
        self, tenant_id: int, filters: ArrearFilters
    ) -> tuple[list[StudentArrear], int]:
        """List arrears with filters, largest balance first."""
        query = select(StudentArrear).where(StudentArrear.tenant_id == tenant_id)

        if filters.student_id:
            query = query.where(StudentArrear.student_id == filters.student_id)
        if filters.to_year_id:
            query = query.where(StudentArrear.to_year_id == filters.to_year_id)
        if filters.status:
            query = query.where(StudentArrear.status == filters.status.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            query.order_by(StudentArrear.balance_due.desc(), StudentArrear.id)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_statistics(
        self, tenant_id: int, to_year_id: int | None = None
    ) -> ArrearStatistics:
        """Totals and collection rate over the tenant's arrears."""
        conditions = [StudentArrear.tenant_id == tenant_id]
        if to_year_id:
            conditions.append(StudentArrear.to_year_id == to_year_id)

        result = await self.db.execute(
            select(
                func.count(StudentArrear.id),
                func.coalesce(func.sum(StudentArrear.amount_due), 0),
                func.coalesce(func.sum(StudentArrear.amount_paid), 0),
                func.coalesce(func.sum(StudentArrear.balance_due), 0),
            ).where(*conditions)
        )
        count, total_due, total_paid, balance_due = result.one()

        open_result = await self.db.execute(
            select(func.count(StudentArrear.id)).where(
                *conditions, StudentArrear.status != ArrearStatus.PAID.value
            )
        )

        total_due = round_money(to_money(total_due))
        total_paid = round_money(to_money(total_paid))
        rate = round_money(total_paid * 100 / total_due) if total_due > 0 else ZERO

        return ArrearStatistics(
            total_arrears=count or 0,
            open_arrears=open_result.scalar() or 0,
            total_due=total_due,
            total_paid=total_paid,
            balance_due=round_money(to_money(balance_due)),
            collection_rate=rate,
        )
