"""
Waterfall allocator.

Pure decision function: given an amount, the student's open arrears and
their obligation set, decide which targets absorb how much and in which
order. Nothing here touches the database.

Tiers, strictly in order, each only while money remains:

1. Arrears, oldest origin year first.
2. Registration-like fees (registration, re-registration) with a balance,
   in catalog order.
3. Tuition and other fees, by earliest unpaid installment. Only reached
   when the student had no unpaid registration-like fee when the call
   started: settling registration inside this call does not open tuition
   for the same call, the leftover is returned as remainder.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from bursary.core.exceptions import InvalidAmountError
from bursary.modules.fees.catalog import ObligationSet, ObligationView
from bursary.modules.payments.models import AllocationTargetType


class ArrearBalance(Protocol):
    """What the allocator needs to know about an arrear."""

    id: int
    balance_due: Decimal


@dataclass(frozen=True)
class ArrearTarget:
    arrear_id: int

    target_type = AllocationTargetType.ARREAR

    @property
    def target_id(self) -> int:
        return self.arrear_id


@dataclass(frozen=True)
class StudentFeeTarget:
    student_fee_id: int

    target_type = AllocationTargetType.STUDENT_FEE

    @property
    def target_id(self) -> int:
        return self.student_fee_id


AllocationTarget = ArrearTarget | StudentFeeTarget


@dataclass(frozen=True)
class AllocationIntent:
    """Decision to move `amount` onto `target`. Position in the plan is its order."""

    target: AllocationTarget
    amount: Decimal


def allocate(
    amount: Decimal,
    arrears: Sequence[ArrearBalance],
    obligations: ObligationSet,
) -> tuple[list[AllocationIntent], Decimal]:
    """
    Run the waterfall.

    Args:
        amount: Money to distribute, must be positive
        arrears: Open arrears, already sorted oldest origin year first
        obligations: The student's fees for the year

    Returns:
        Tuple of (ordered intents, unallocated remainder)
    """
    if amount is None or amount <= 0:
        raise InvalidAmountError(amount)

    plan: list[AllocationIntent] = []
    remainder = amount

    # Tier 1: arrears
    for arrear in arrears:
        if remainder <= 0:
            break
        share = min(remainder, arrear.balance_due)
        if share <= 0:
            continue
        plan.append(AllocationIntent(ArrearTarget(arrear.id), share))
        remainder -= share

    if remainder <= 0:
        return plan, remainder

    # Tier 2: registration-like fees. The snapshot also gates tier 3.
    unpaid_registration = obligations.unpaid_registration_like()
    remainder = _fill(plan, unpaid_registration, remainder)

    # Tier 3: tuition, only if registration was already settled before this call
    # TODO: re-check unpaid registration after tier 2 once the product team
    # signs off on letting one payment reach tuition in the same run.
    if unpaid_registration or remainder <= 0:
        return plan, remainder

    remainder = _fill(plan, obligations.tuition_by_installment_order(), remainder)
    return plan, remainder


def _fill(
    plan: list[AllocationIntent], views: Sequence[ObligationView], remainder: Decimal
) -> Decimal:
    for view in views:
        if remainder <= 0:
            break
        share = min(remainder, view.balance)
        if share <= 0:
            continue
        plan.append(AllocationIntent(StudentFeeTarget(view.student_fee_id), share))
        remainder -= share
    return remainder


def planned_total(plan: Sequence[AllocationIntent]) -> Decimal:
    return sum((intent.amount for intent in plan), Decimal("0"))
