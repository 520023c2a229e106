"""002 - Fee catalog: categories, definitions, installments, student fees, payment summaries

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""
from alembic import op
import sqlalchemy as sa


revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "fee_categories",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_fee_category_tenant_code"),
    )
    op.create_index("ix_fee_categories_tenant_id", "fee_categories", ["tenant_id"])

    op.create_table(
        "fee_definitions",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=False),
        sa.Column("category_id", sa.BigInteger(), nullable=False),
        sa.Column("academic_year_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["category_id"], ["fee_categories.id"]),
        sa.ForeignKeyConstraint(["academic_year_id"], ["academic_years.id"]),
    )
    op.create_index("ix_fee_definitions_tenant_id", "fee_definitions", ["tenant_id"])
    op.create_index("ix_fee_definitions_category_id", "fee_definitions", ["category_id"])
    op.create_index("ix_fee_definitions_academic_year_id", "fee_definitions", ["academic_year_id"])

    op.create_table(
        "fee_installments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("fee_definition_id", sa.BigInteger(), nullable=False),
        sa.Column("label", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["fee_definition_id"], ["fee_definitions.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("fee_definition_id", "order_index", name="uq_fee_installment_order"),
    )
    op.create_index("ix_fee_installments_fee_definition_id", "fee_installments", ["fee_definition_id"])

    op.create_table(
        "student_fees",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("fee_definition_id", sa.BigInteger(), nullable=False),
        sa.Column("academic_year_id", sa.BigInteger(), nullable=False),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="not_started"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["fee_definition_id"], ["fee_definitions.id"]),
        sa.ForeignKeyConstraint(["academic_year_id"], ["academic_years.id"]),
        sa.UniqueConstraint(
            "student_id", "fee_definition_id", "academic_year_id", name="uq_student_fee_definition_year"
        ),
    )
    op.create_index("ix_student_fees_tenant_id", "student_fees", ["tenant_id"])
    op.create_index("ix_student_fees_student_id", "student_fees", ["student_id"])
    op.create_index("ix_student_fees_fee_definition_id", "student_fees", ["fee_definition_id"])
    op.create_index("ix_student_fees_academic_year_id", "student_fees", ["academic_year_id"])
    op.create_index("ix_student_fees_status", "student_fees", ["status"])

    op.create_table(
        "payment_summaries",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("academic_year_id", sa.BigInteger(), nullable=False),
        sa.Column("student_fee_id", sa.BigInteger(), nullable=False),
        sa.Column("expected_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("balance", sa.Numeric(15, 2), nullable=False),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["academic_year_id"], ["academic_years.id"]),
        sa.ForeignKeyConstraint(["student_fee_id"], ["student_fees.id"]),
        sa.UniqueConstraint("student_fee_id"),
    )
    op.create_index("ix_payment_summaries_tenant_id", "payment_summaries", ["tenant_id"])
    op.create_index("ix_payment_summaries_student_id", "payment_summaries", ["student_id"])
    op.create_index("ix_payment_summaries_academic_year_id", "payment_summaries", ["academic_year_id"])


def downgrade() -> None:
    op.drop_table("payment_summaries")
    op.drop_table("student_fees")
    op.drop_table("fee_installments")
    op.drop_table("fee_definitions")
    op.drop_table("fee_categories")
