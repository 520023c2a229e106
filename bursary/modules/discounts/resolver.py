"""Turns a gross fee amount into the net amount owed under a discount regime."""

from decimal import Decimal

from bursary.modules.discounts.models import DiscountValueType, FeeRegime, RegimeRule
from bursary.modules.fees.models import FeeCategoryKind
from bursary.shared.utils.money import clamp_non_negative


def find_rule(regime: FeeRegime | None, kind: FeeCategoryKind) -> RegimeRule | None:
    """Rule of the regime for this fee kind, if any."""
    if regime is None:
        return None
    for rule in regime.rules:
        if rule.category_kind == kind.value:
            return rule
    return None


def resolve_net_amount(
    regime: FeeRegime | None, kind: FeeCategoryKind, gross_amount: Decimal
) -> Decimal:
    """
    Apply the regime's rule for `kind` to `gross_amount`.

    FIXED subtracts a flat value, PERCENT subtracts gross * pct / 100; the
    result never goes below zero. No regime or no matching rule returns the
    gross amount unchanged. No rounding happens here.
    """
    rule = find_rule(regime, kind)
    if rule is None:
        return gross_amount

    if rule.value_type == DiscountValueType.FIXED.value:
        return clamp_non_negative(gross_amount - rule.value)
    if rule.value_type == DiscountValueType.PERCENT.value:
        return clamp_non_negative(gross_amount - gross_amount * rule.value / Decimal("100"))
    # Unknown rule type: behave as if no rule matched
    return gross_amount
