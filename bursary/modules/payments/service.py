"""Service for Payments module: recording payments and running the allocation engine."""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.audit import AuditAction, AuditService
from bursary.core.config import settings
from bursary.core.database import UnitOfWork
from bursary.core.exceptions import (
    AllocationConsistencyError,
    ConcurrentModificationError,
    InvalidAmountError,
    NotFoundError,
    ValidationError,
)
from bursary.core.locks import KeyedLock, allocation_locks
from bursary.modules.arrears.service import ArrearLedger
from bursary.modules.fees.service import FeeService
from bursary.modules.payments.aggregator import BalanceAggregator
from bursary.modules.payments.allocator import allocate, planned_total
from bursary.modules.payments.models import Payment, PaymentAllocation
from bursary.modules.payments.schemas import (
    AllocationResponse,
    AllocationResult,
    PaymentCreate,
)
from bursary.modules.students.service import get_student
from bursary.modules.years.service import get_academic_year
from bursary.shared.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


def _is_conflict(exc: DBAPIError) -> bool:
    """Lock and serialization failures only; a refused connection is not retryable here."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate in _CONFLICT_SQLSTATES
    # SQLite has no SQLSTATE: "database is locked", "database table is locked"
    return isinstance(exc, OperationalError) and "is locked" in str(orig)


def to_allocation_response(allocation: PaymentAllocation) -> AllocationResponse:
    return AllocationResponse(
        id=allocation.id,
        payment_id=allocation.payment_id,
        target_type=allocation.target_type,
        target_id=allocation.target_id,
        allocated_amount=allocation.allocated_amount,
        allocation_order=allocation.allocation_order,
    )


class PaymentService:
    """Service for recording payments and allocating them to obligations."""

    def __init__(
        self,
        db: AsyncSession,
        locks: KeyedLock | None = None,
        lock_timeout: float | None = None,
    ):
        self.db = db
        self.audit = AuditService(db)
        self.fees = FeeService(db)
        self.ledger = ArrearLedger(db)
        self.locks = locks if locks is not None else allocation_locks
        self.lock_timeout = (
            lock_timeout if lock_timeout is not None else settings.allocation_lock_timeout_seconds
        )

    # --- Payment Methods ---

    async def record_payment(
        self, tenant_id: int, data: PaymentCreate, recorded_by_id: int | None = None
    ) -> Payment:
        """Record cash received for a student. Allocation is a separate step."""
        if data.amount <= 0:
            raise InvalidAmountError(data.amount)
        await get_student(self.db, tenant_id, data.student_id)
        await get_academic_year(self.db, tenant_id, data.academic_year_id)

        payment = Payment(
            tenant_id=tenant_id,
            student_id=data.student_id,
            academic_year_id=data.academic_year_id,
            amount=round_money(data.amount),
            payment_date=data.payment_date,
            reference=data.reference,
            notes=data.notes,
            recorded_by_id=recorded_by_id,
        )
        self.db.add(payment)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.RECORD_PAYMENT,
            entity_type="Payment",
            entity_id=payment.id,
            tenant_id=tenant_id,
            user_id=recorded_by_id,
            entity_identifier=payment.reference,
            new_values={
                "student_id": data.student_id,
                "academic_year_id": data.academic_year_id,
                "amount": str(payment.amount),
            },
        )

        await self.db.commit()
        return await self.get_payment(tenant_id, payment.id)

    async def get_payment(self, tenant_id: int, payment_id: int) -> Payment:
        """Get payment by ID."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    # --- Allocation Methods ---

    async def allocate_payment(
        self,
        tenant_id: int,
        student_id: int,
        academic_year_id: int,
        payment_id: int,
        amount: Decimal | None = None,
        allocated_by_id: int | None = None,
    ) -> AllocationResult:
        """
        Distribute a payment over the student's arrears and fees.

        Runs for the same (tenant, student, year) are serialised; reads,
        decision and writes form one transaction. Only the part of the
        payment not yet allocated is distributed, so calling this again for
        a fully allocated payment changes nothing, and calling it again
        after the tuition gate held money back allocates the leftover.

        Args:
            amount: Optional cap for this run; must be positive if given

        Raises:
            InvalidAmountError: amount (or the payment itself) is not positive
            StudentNotFoundError: student not in tenant
            ConcurrentModificationError: lock timeout or DB conflict, nothing applied
        """
        if amount is not None and amount <= 0:
            raise InvalidAmountError(amount)

        key = (tenant_id, student_id, academic_year_id)
        try:
            async with self.locks.acquire(key, timeout=self.lock_timeout):
                async with UnitOfWork(self.db) as uow:
                    return await self._allocate(
                        uow, tenant_id, student_id, academic_year_id, payment_id, amount, allocated_by_id
                    )
        except DBAPIError as exc:
            if _is_conflict(exc):
                logger.warning("Allocation of payment %s hit a DB conflict: %s", payment_id, exc)
                raise ConcurrentModificationError(key=key) from exc
            raise

    async def _allocate(
        self,
        uow: UnitOfWork,
        tenant_id: int,
        student_id: int,
        academic_year_id: int,
        payment_id: int,
        amount: Decimal | None,
        allocated_by_id: int | None,
    ) -> AllocationResult:
        await get_student(self.db, tenant_id, student_id)
        payment = await self._get_payment_for_update(tenant_id, payment_id)
        if payment.student_id != student_id:
            raise ValidationError("Payment does not belong to this student", field="payment_id")
        if payment.academic_year_id != academic_year_id:
            raise ValidationError("Payment belongs to another academic year", field="academic_year_id")
        if payment.amount <= 0:
            raise InvalidAmountError(payment.amount)

        existing = await self._get_allocations(payment.id)
        already_allocated = sum((a.allocated_amount for a in existing), ZERO)
        unallocated = payment.amount - already_allocated
        if unallocated < 0:
            raise AllocationConsistencyError(
                f"Payment {payment.id} is over-allocated by {-unallocated}",
                details={"payment_id": payment.id},
            )

        to_allocate = unallocated if amount is None else min(amount, unallocated)
        if to_allocate <= 0:
            logger.info("Payment %s already fully allocated, nothing to do", payment.id)
            return self._result(payment, existing)

        arrears = await self.ledger.get_student_arrears(
            tenant_id, student_id, academic_year_id, lock=True
        )
        obligations = await self.fees.load_obligation_set(
            tenant_id, student_id, academic_year_id, lock=True
        )

        plan, remainder = allocate(to_allocate, arrears, obligations)
        tuition_deferred = remainder > 0 and bool(obligations.unpaid_registration_like()) and any(
            view.balance > 0 for view in obligations.tuition
        )

        aggregator = BalanceAggregator(uow)
        created = await aggregator.commit(
            payment, plan, already_allocated=already_allocated, order_offset=len(existing)
        )

        await self.audit.log(
            action=AuditAction.ALLOCATE_PAYMENT,
            entity_type="Payment",
            entity_id=payment.id,
            tenant_id=tenant_id,
            user_id=allocated_by_id,
            entity_identifier=payment.reference,
            new_values={
                "allocated": str(planned_total(plan)),
                "remainder": str(payment.amount - already_allocated - planned_total(plan)),
                "allocations": [
                    {
                        "order": a.allocation_order,
                        "target_type": a.target_type,
                        "target_id": a.target_id,
                        "amount": str(a.allocated_amount),
                    }
                    for a in created
                ],
            },
        )

        logger.info(
            "Allocated %s of payment %s over %d targets, remainder %s",
            planned_total(plan), payment.id, len(created), remainder,
        )
        if tuition_deferred:
            logger.info(
                "Payment %s: %s held back from tuition, registration was unpaid at call start",
                payment.id, remainder,
            )

        return self._result(payment, existing + created, tuition_deferred=tuition_deferred)

    async def get_payment_allocations(self, tenant_id: int, payment_id: int) -> list[PaymentAllocation]:
        """Allocations of a payment in allocation order."""
        payment = await self.get_payment(tenant_id, payment_id)
        return await self._get_allocations(payment.id)

    async def get_allocation_result(self, tenant_id: int, payment_id: int) -> AllocationResult:
        payment = await self.get_payment(tenant_id, payment_id)
        return self._result(payment, await self._get_allocations(payment.id))

    async def get_student_fee_allocations(
        self, tenant_id: int, student_fee_id: int
    ) -> list[PaymentAllocation]:
        """Every allocation that paid down a student fee, oldest payment first."""
        await self.fees.get_student_fee(tenant_id, student_fee_id)
        result = await self.db.execute(
            select(PaymentAllocation)
            .where(PaymentAllocation.student_fee_id == student_fee_id)
            .order_by(PaymentAllocation.payment_id, PaymentAllocation.allocation_order)
        )
        return list(result.scalars().all())

    async def get_allocated_total(self, payment_id: int) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(PaymentAllocation.allocated_amount), 0)).where(
                PaymentAllocation.payment_id == payment_id
            )
        )
        return round_money(Decimal(str(result.scalar() or 0)))

    # --- Helper Methods ---

    async def _get_payment_for_update(self, tenant_id: int, payment_id: int) -> Payment:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.tenant_id == tenant_id)
            .with_for_update()
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def _get_allocations(self, payment_id: int) -> list[PaymentAllocation]:
        result = await self.db.execute(
            select(PaymentAllocation)
            .where(PaymentAllocation.payment_id == payment_id)
            .order_by(PaymentAllocation.allocation_order)
        )
        return list(result.scalars().all())

    @staticmethod
    def _result(
        payment: Payment, allocations: list[PaymentAllocation], tuition_deferred: bool = False
    ) -> AllocationResult:
        total = sum((a.allocated_amount for a in allocations), ZERO)
        return AllocationResult(
            payment_id=payment.id,
            allocations=[to_allocation_response(a) for a in allocations],
            total_allocated=total,
            remaining_amount=payment.amount - total,
            tuition_deferred=tuition_deferred,
        )
