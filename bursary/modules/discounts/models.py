"""Discount regime models."""

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bursary.core.database.base import Base, BaseModel, BigIntPK, TenantMixin


class DiscountValueType(StrEnum):
    """Discount value type."""

    FIXED = "fixed"
    PERCENT = "percent"


class RegimeKind(StrEnum):
    """Kinds of discount policy a school can define."""

    STANDARD = "standard"
    STAFF_CHILD = "staff_child"
    CUSTOM = "custom"


class FeeRegime(TenantMixin, BaseModel):
    """
    Named discount policy (standard price, staff child, ad-hoc reduction).

    Students point at a regime; its rules turn a fee definition's gross
    amount into the net amount the student actually owes.
    """

    __tablename__ = "fee_regimes"

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RegimeKind.STANDARD.value
    )

    # Relationships
    rules: Mapped[list["RegimeRule"]] = relationship(
        "RegimeRule", back_populates="regime", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_fee_regime_tenant_code"),
    )


class RegimeRule(Base):
    """Reduction a regime grants on one fee category kind."""

    __tablename__ = "regime_rules"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    regime_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fee_regimes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_kind: Mapped[str] = mapped_column(String(20), nullable=False)  # FeeCategoryKind value
    value_type: Mapped[str] = mapped_column(String(20), nullable=False)  # fixed | percent
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)  # Amount or percentage

    # Relationships
    regime: Mapped["FeeRegime"] = relationship("FeeRegime", back_populates="rules")

    __table_args__ = (
        UniqueConstraint("regime_id", "category_kind", name="uq_regime_rule_kind"),
    )
