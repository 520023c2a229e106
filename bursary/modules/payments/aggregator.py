"""Applies an allocation plan: allocation rows, arrear balances, fee summaries and statuses."""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from bursary.core.database import UnitOfWork
from bursary.core.exceptions import AllocationConsistencyError, NotFoundError
from bursary.modules.arrears.service import ArrearLedger
from bursary.modules.fees.models import PaymentSummary, StudentFee, StudentFeeStatus
from bursary.modules.payments.allocator import (
    AllocationIntent,
    ArrearTarget,
    StudentFeeTarget,
    planned_total,
)
from bursary.modules.payments.models import Payment, PaymentAllocation
from bursary.shared.utils.money import ZERO, clamp_non_negative

logger = logging.getLogger(__name__)


class BalanceAggregator:
    """
    Writes a plan inside the caller's unit of work. Never commits: any
    exception raised here propagates and the unit of work rolls back
    everything written so far.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.ledger = ArrearLedger(uow.session)

    async def commit(
        self,
        payment: Payment,
        plan: Sequence[AllocationIntent],
        already_allocated: Decimal = ZERO,
        order_offset: int = 0,
    ) -> list[PaymentAllocation]:
        """
        Persist `plan` for `payment`.

        Args:
            payment: Payment the money comes from
            plan: Intents in decision order
            already_allocated: Sum of earlier allocations of this payment
            order_offset: Number of earlier allocations; new rows continue the sequence

        Raises:
            AllocationConsistencyError: Plan overspends the payment or a target
        """
        total = planned_total(plan)
        if already_allocated + total > payment.amount:
            raise AllocationConsistencyError(
                f"Plan allocates {already_allocated + total} of payment {payment.id} "
                f"worth {payment.amount}",
                details={"payment_id": payment.id},
            )

        allocations: list[PaymentAllocation] = []
        for order, intent in enumerate(plan, start=order_offset + 1):
            if intent.amount <= 0:
                raise AllocationConsistencyError(
                    f"Non-positive allocation {intent.amount} in plan for payment {payment.id}",
                    details={"payment_id": payment.id},
                )

            allocation = PaymentAllocation(
                payment_id=payment.id,
                target_type=intent.target.target_type.value,
                allocated_amount=intent.amount,
                allocation_order=order,
            )
            if isinstance(intent.target, ArrearTarget):
                allocation.student_arrear_id = intent.target.arrear_id
                await self.ledger.update_after_payment(intent.target.arrear_id, intent.amount)
            elif isinstance(intent.target, StudentFeeTarget):
                allocation.student_fee_id = intent.target.student_fee_id
                await self._apply_to_student_fee(intent.target.student_fee_id, intent.amount)
            else:
                raise AllocationConsistencyError(f"Unknown allocation target {intent.target!r}")

            self.uow.add(allocation)
            await self.uow.flush()
            allocations.append(allocation)

        logger.debug(
            "Applied %d allocations (%s) for payment %s", len(allocations), total, payment.id
        )
        return allocations

    async def _apply_to_student_fee(self, student_fee_id: int, amount: Decimal) -> StudentFee:
        """Upsert the fee's PaymentSummary and move its status forward."""
        result = await self.uow.session.execute(
            select(StudentFee)
            .where(StudentFee.id == student_fee_id)
            .options(selectinload(StudentFee.payment_summary))
            .with_for_update()
        )
        student_fee = result.scalar_one_or_none()
        if not student_fee:
            raise NotFoundError("Student fee", student_fee_id)

        summary = student_fee.payment_summary
        if summary is None:
            summary = PaymentSummary(
                tenant_id=student_fee.tenant_id,
                student_id=student_fee.student_id,
                academic_year_id=student_fee.academic_year_id,
                student_fee_id=student_fee.id,
                expected_amount=student_fee.total_amount,
                paid_amount=ZERO,
                balance=student_fee.total_amount,
            )
            self.uow.add(summary)
            student_fee.payment_summary = summary

        balance_before = clamp_non_negative(summary.expected_amount - summary.paid_amount)
        if amount > balance_before:
            raise AllocationConsistencyError(
                f"Allocation of {amount} exceeds balance {balance_before} of student fee {student_fee_id}",
                details={"student_fee_id": student_fee_id},
            )

        summary.paid_amount = summary.paid_amount + amount
        summary.balance = clamp_non_negative(summary.expected_amount - summary.paid_amount)
        summary.last_payment_date = datetime.now(timezone.utc)

        student_fee.status = StudentFeeStatus.for_amounts(summary.paid_amount, summary.balance).value
        await self.uow.flush()
        return student_fee
