"""003 - Student arrears, payments and payment allocations

Revision ID: 003
Revises: 002
Create Date: 2026-10-13
"""
from alembic import op
import sqlalchemy as sa


revision = "003"
down_revision = "002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Arrears carried between academic years
    op.create_table(
        "student_arrears",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("from_year_id", sa.BigInteger(), nullable=False),
        sa.Column("to_year_id", sa.BigInteger(), nullable=False),
        sa.Column("amount_due", sa.Numeric(15, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("balance_due", sa.Numeric(15, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
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
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["from_year_id"], ["academic_years.id"]),
        sa.ForeignKeyConstraint(["to_year_id"], ["academic_years.id"]),
        sa.UniqueConstraint("student_id", "from_year_id", "to_year_id", name="uq_student_arrear_years"),
    )
    op.create_index("ix_student_arrears_tenant_id", "student_arrears", ["tenant_id"])
    op.create_index("ix_student_arrears_student_id", "student_arrears", ["student_id"])
    op.create_index("ix_student_arrears_to_year_id", "student_arrears", ["to_year_id"])
    op.create_index("ix_student_arrears_status", "student_arrears", ["status"])

    # Payments
    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("academic_year_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recorded_by_id", sa.BigInteger(), nullable=True),
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
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["academic_year_id"], ["academic_years.id"]),
        sa.CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
    )
    op.create_index("ix_payments_tenant_id", "payments", ["tenant_id"])
    op.create_index("ix_payments_student_id", "payments", ["student_id"])
    op.create_index("ix_payments_academic_year_id", "payments", ["academic_year_id"])

    # Payment allocations (append-only)
    op.create_table(
        "payment_allocations",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("payment_id", sa.BigInteger(), nullable=False),
        sa.Column("target_type", sa.String(20), nullable=False),
        sa.Column("student_fee_id", sa.BigInteger(), nullable=True),
        sa.Column("student_arrear_id", sa.BigInteger(), nullable=True),
        sa.Column("allocated_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("allocation_order", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["student_fee_id"], ["student_fees.id"]),
        sa.ForeignKeyConstraint(["student_arrear_id"], ["student_arrears.id"]),
        sa.UniqueConstraint("payment_id", "allocation_order", name="uq_payment_allocation_order"),
        sa.CheckConstraint("allocated_amount > 0", name="ck_payment_allocation_positive"),
        sa.CheckConstraint(
            "(student_fee_id IS NULL) <> (student_arrear_id IS NULL)",
            name="ck_payment_allocation_single_target",
        ),
    )
    op.create_index("ix_payment_allocations_payment_id", "payment_allocations", ["payment_id"])
    op.create_index("ix_payment_allocations_student_fee_id", "payment_allocations", ["student_fee_id"])
    op.create_index(
        "ix_payment_allocations_student_arrear_id", "payment_allocations", ["student_arrear_id"]
    )
    op.create_index("ix_payment_allocations_created_at", "payment_allocations", ["created_at"])


def downgrade() -> None:
    op.drop_table("payment_allocations")
    op.drop_table("payments")
    op.drop_table("student_arrears")
