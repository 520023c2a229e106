"""
Obligation catalog: the read model the allocation waterfall consumes.

Built once per allocation run from StudentFee rows (with definition,
category, installments and payment summary loaded). Category codes are
resolved to FeeCategoryKind here and never re-parsed afterwards.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from bursary.core.config import settings
from bursary.modules.fees.models import FeeCategoryKind, FeeInstallment, StudentFee
from bursary.shared.utils.money import ZERO, clamp_non_negative, round_money


@dataclass(frozen=True)
class ObligationView:
    """One student fee as seen by the allocator."""

    student_fee_id: int
    category_kind: FeeCategoryKind
    total_amount: Decimal
    paid_amount: Decimal
    first_unpaid_order_index: int

    @property
    def balance(self) -> Decimal:
        return clamp_non_negative(self.total_amount - self.paid_amount)


@dataclass(frozen=True)
class ObligationSet:
    """A student's obligations for one year, split the way the waterfall needs them."""

    registration_like: tuple[ObligationView, ...] = ()
    tuition: tuple[ObligationView, ...] = ()

    @classmethod
    def from_views(cls, views: Iterable[ObligationView]) -> "ObligationSet":
        """Partition views keeping their catalog order. Everything not registration-like is tuition."""
        registration_like: list[ObligationView] = []
        tuition: list[ObligationView] = []
        for view in views:
            if view.category_kind.is_registration_like:
                registration_like.append(view)
            else:
                tuition.append(view)
        return cls(registration_like=tuple(registration_like), tuition=tuple(tuition))

    def unpaid_registration_like(self) -> list[ObligationView]:
        return [view for view in self.registration_like if view.balance > 0]

    def tuition_by_installment_order(self) -> list[ObligationView]:
        # sorted() is stable: equal order indexes keep catalog order
        return sorted(self.tuition, key=lambda view: view.first_unpaid_order_index)


def first_unpaid_order_index(
    installments: Sequence[FeeInstallment],
    paid_amount: Decimal,
    sentinel: int | None = None,
    scale: Decimal = Decimal("1"),
) -> int:
    """
    Order index of the earliest installment the paid amount does not cover yet.

    Installments are defined on the gross fee while the paid amount is net of
    the student's regime, so each installment is scaled by `scale` (net total
    over gross amount) and rounded to cents before comparing. Installments are
    consumed in order_index order. No installments, or all of them covered,
    gives the sentinel so such fees sort last.
    """
    if sentinel is None:
        sentinel = settings.tuition_order_sentinel
    remaining = paid_amount
    for installment in sorted(installments, key=lambda inst: inst.order_index):
        due = round_money(installment.amount * scale)
        if remaining >= due:
            remaining -= due
            continue
        return installment.order_index
    return sentinel


def installment_scale(student_fee: StudentFee) -> Decimal:
    """Ratio of the student's net total to the definition's gross amount."""
    gross = student_fee.fee_definition.amount
    if gross <= 0:
        return Decimal("1")
    return student_fee.total_amount / gross


def build_obligation_view(student_fee: StudentFee) -> ObligationView:
    """Snapshot a loaded StudentFee. Requires fee_definition (category, installments) and payment_summary."""
    summary = student_fee.payment_summary
    paid_amount = summary.paid_amount if summary is not None else ZERO
    definition = student_fee.fee_definition
    return ObligationView(
        student_fee_id=student_fee.id,
        category_kind=definition.category.kind,
        total_amount=student_fee.total_amount,
        paid_amount=paid_amount,
        first_unpaid_order_index=first_unpaid_order_index(
            definition.installments, paid_amount, scale=installment_scale(student_fee)
        ),
    )


def build_obligation_set(student_fees: Iterable[StudentFee]) -> ObligationSet:
    return ObligationSet.from_views(build_obligation_view(fee) for fee in student_fees)
