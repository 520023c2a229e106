"""Tests for the payment allocation service against the database."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.audit import AuditService
from bursary.core.database import UnitOfWork
from bursary.core.exceptions import (
    AllocationConsistencyError,
    ConcurrentModificationError,
    InvalidAmountError,
    NotFoundError,
    StudentNotFoundError,
    ValidationError,
)
from bursary.core.locks import KeyedLock
from bursary.modules.arrears.models import StudentArrear
from bursary.modules.arrears.service import ArrearLedger
from bursary.modules.fees.models import PaymentSummary, StudentFee
from bursary.modules.payments.aggregator import BalanceAggregator
from bursary.modules.payments.allocator import AllocationIntent, ArrearTarget, StudentFeeTarget
from bursary.modules.payments.models import Payment, PaymentAllocation
from bursary.modules.payments.schemas import PaymentCreate
from bursary.modules.payments.service import PaymentService

TENANT_ID = 1


class _DriverError(Exception):
    """Stand-in for a driver exception carrying a SQLSTATE."""

    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


async def _fee_state(db: AsyncSession, student_fee_id: int) -> tuple[str, Decimal, Decimal]:
    result = await db.execute(
        select(StudentFee.status, PaymentSummary.paid_amount, PaymentSummary.balance)
        .join(PaymentSummary, PaymentSummary.student_fee_id == StudentFee.id)
        .where(StudentFee.id == student_fee_id)
    )
    return tuple(result.one())


async def _arrear_state(db: AsyncSession, arrear_id: int) -> tuple[str, Decimal, Decimal]:
    result = await db.execute(
        select(StudentArrear.status, StudentArrear.amount_paid, StudentArrear.balance_due).where(
            StudentArrear.id == arrear_id
        )
    )
    return tuple(result.one())


async def _allocation_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(PaymentAllocation.id)))).scalar()


def _lines(result) -> list[tuple[str, int, Decimal, int]]:
    return [
        (a.target_type, a.target_id, a.allocated_amount, a.allocation_order)
        for a in result.allocations
    ]


class TestAllocatePayment:
    """End-to-end allocation runs."""

    async def _setup_test_data(self, finance) -> dict:
        """Two consecutive years and one student."""
        previous = await finance.year("2024-2025", date(2024, 9, 1))
        current = await finance.year("2025-2026", date(2025, 9, 1))
        student = await finance.student()
        return {"previous": previous, "current": current, "student": student}

    async def test_arrear_then_tuition(self, db_session: AsyncSession, finance):
        """Arrear 5,000, tuition 10,000, no registration fee, payment 12,000."""
        data = await self._setup_test_data(finance)
        arrear = await finance.arrear(data["student"], data["previous"], data["current"], Decimal("5000.00"))
        tuition = await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("10000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("12000.00"))

        service = PaymentService(db_session)
        result = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert _lines(result) == [
            ("arrear", arrear, Decimal("5000.00"), 1),
            ("student_fee", tuition, Decimal("7000.00"), 2),
        ]
        assert result.remaining_amount == Decimal("0.00")
        assert result.total_allocated == Decimal("12000.00")
        assert await _arrear_state(db_session, arrear) == ("paid", Decimal("5000.00"), Decimal("0.00"))
        assert await _fee_state(db_session, tuition) == ("partial", Decimal("7000.00"), Decimal("3000.00"))

    async def test_registration_paid_exactly(self, db_session: AsyncSession, finance):
        """Registration 3,000 and tuition 10,000, payment 3,000."""
        data = await self._setup_test_data(finance)
        registration = await finance.fee(data["student"], data["current"], "INSCRIPTION", Decimal("3000.00"))
        tuition = await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("10000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("3000.00"))

        service = PaymentService(db_session)
        result = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert _lines(result) == [("student_fee", registration, Decimal("3000.00"), 1)]
        assert result.remaining_amount == Decimal("0.00")
        assert result.tuition_deferred is False
        assert await _fee_state(db_session, tuition) == ("not_started", Decimal("0.00"), Decimal("10000.00"))

    async def test_tuition_gated_when_registration_was_unpaid(
        self, db_session: AsyncSession, finance
    ):
        """Registration 3,000 and tuition 10,000, payment 5,000: 2,000 left over."""
        data = await self._setup_test_data(finance)
        registration = await finance.fee(data["student"], data["current"], "INSCRIPTION", Decimal("3000.00"))
        tuition = await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("10000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("5000.00"))

        service = PaymentService(db_session)
        result = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert _lines(result) == [("student_fee", registration, Decimal("3000.00"), 1)]
        assert result.remaining_amount == Decimal("2000.00")
        assert result.tuition_deferred is True
        assert (await _fee_state(db_session, registration))[0] == "paid"
        assert (await _fee_state(db_session, tuition))[0] == "not_started"

    async def test_rerun_after_gate_reaches_tuition(
        self, db_session: AsyncSession, finance
    ):
        data = await self._setup_test_data(finance)
        registration = await finance.fee(data["student"], data["current"], "INSCRIPTION", Decimal("3000.00"))
        tuition = await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("10000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("5000.00"))

        service = PaymentService(db_session)
        await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)
        result = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert _lines(result) == [
            ("student_fee", registration, Decimal("3000.00"), 1),
            ("student_fee", tuition, Decimal("2000.00"), 2),
        ]
        assert result.remaining_amount == Decimal("0.00")
        assert await _fee_state(db_session, tuition) == ("partial", Decimal("2000.00"), Decimal("8000.00"))

    async def test_tuition_by_installment_order(self, db_session: AsyncSession, finance):
        """Tuition A (earliest unpaid index 1) and B (index 2), 5,000 each, payment 7,000."""
        data = await self._setup_test_data(finance)
        fee_b = await finance.fee(
            data["student"], data["current"], "SCOLARITE", Decimal("5000.00"),
            paid=Decimal("0.00"), installments=[Decimal("0.00"), Decimal("5000.00")],
        )
        fee_a = await finance.fee(
            data["student"], data["current"], "SCOLARITE", Decimal("5000.00"),
            installments=[Decimal("2500.00"), Decimal("2500.00")],
        )
        payment = await finance.payment(data["student"], data["current"], Decimal("7000.00"))

        service = PaymentService(db_session)
        result = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert _lines(result) == [
            ("student_fee", fee_a, Decimal("5000.00"), 1),
            ("student_fee", fee_b, Decimal("2000.00"), 2),
        ]
        assert result.remaining_amount == Decimal("0.00")
        assert (await _fee_state(db_session, fee_a))[0] == "paid"
        assert (await _fee_state(db_session, fee_b))[0] == "partial"

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10.00")])
    async def test_invalid_amount(self, db_session: AsyncSession, finance, amount):
        data = await self._setup_test_data(finance)
        await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("10000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("100.00"))

        service = PaymentService(db_session)
        with pytest.raises(InvalidAmountError):
            await service.allocate_payment(
                TENANT_ID, data["student"], data["current"], payment, amount=amount
            )

        assert await _allocation_count(db_session) == 0

    async def test_zero_payment_is_rejected(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)
        await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("10000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("0.00"))

        service = PaymentService(db_session)
        with pytest.raises(InvalidAmountError):
            await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert await _allocation_count(db_session) == 0

    async def test_fully_allocated_payment_is_noop(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)
        tuition = await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("10000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("4000.00"))

        service = PaymentService(db_session)
        first = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)
        second = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert _lines(second) == _lines(first)
        assert await _allocation_count(db_session) == 1
        assert await _fee_state(db_session, tuition) == ("partial", Decimal("4000.00"), Decimal("6000.00"))

    async def test_amount_caps_the_run(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)
        tuition = await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("10000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("4000.00"))

        service = PaymentService(db_session)
        result = await service.allocate_payment(
            TENANT_ID, data["student"], data["current"], payment, amount=Decimal("1500.00")
        )

        assert _lines(result) == [("student_fee", tuition, Decimal("1500.00"), 1)]
        assert result.remaining_amount == Decimal("2500.00")

    async def test_nothing_owed_leaves_remainder(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)
        payment = await finance.payment(data["student"], data["current"], Decimal("800.00"))

        service = PaymentService(db_session)
        result = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert result.allocations == []
        assert result.remaining_amount == Decimal("800.00")

    async def test_arrears_oldest_origin_first_across_years(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)
        older = await finance.year("2023-2024", date(2023, 9, 1))
        following = await finance.year("2026-2027", date(2026, 9, 1))
        # carried into the previous year and never paid there
        inherited = await finance.arrear(data["student"], older, data["previous"], Decimal("100.00"))
        newer_arrear = await finance.arrear(data["student"], data["previous"], data["current"], Decimal("100.00"))
        # carried into a later year, not due yet
        future = await finance.arrear(data["student"], data["current"], following, Decimal("999.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("150.00"))

        service = PaymentService(db_session)
        result = await service.allocate_payment(TENANT_ID, data["student"], data["current"], payment)

        assert _lines(result) == [
            ("arrear", inherited, Decimal("100.00"), 1),
            ("arrear", newer_arrear, Decimal("50.00"), 2),
        ]
        assert (await _arrear_state(db_session, inherited))[0] == "paid"
        assert (await _arrear_state(db_session, newer_arrear))[0] == "partial"
        assert (await _arrear_state(db_session, future))[0] == "open"

    async def test_arrear_survives_two_year_closings(self, db_session: AsyncSession, finance):
        """Unpaid year-1 fee, closed into year 2 then year 3, is collected by a year-3 payment."""
        data = await self._setup_test_data(finance)
        third = await finance.year("2026-2027", date(2026, 9, 1))
        await finance.fee(data["student"], data["previous"], "SCOLARITE", Decimal("1000.00"))
        await db_session.commit()

        ledger = ArrearLedger(db_session)
        first_closing, _ = await ledger.generate_for_year(TENANT_ID, data["previous"], data["current"])
        second_closing, _ = await ledger.generate_for_year(TENANT_ID, data["current"], third)
        assert len(first_closing) == 1
        assert second_closing == []
        arrear = first_closing[0].id

        payment = await finance.payment(data["student"], third, Decimal("1000.00"))
        service = PaymentService(db_session)
        result = await service.allocate_payment(TENANT_ID, data["student"], third, payment)

        assert _lines(result) == [("arrear", arrear, Decimal("1000.00"), 1)]
        assert result.remaining_amount == Decimal("0.00")
        assert await _arrear_state(db_session, arrear) == ("paid", Decimal("1000.00"), Decimal("0.00"))

    async def test_audit_entry_written(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)
        await finance.fee(data["student"], data["current"], "SCOLARITE", Decimal("1000.00"))
        payment = await finance.payment(data["student"], data["current"], Decimal("600.00"))

        service = PaymentService(db_session)
        await service.allocate_payment(
            TENANT_ID, data["student"], data["current"], payment, allocated_by_id=42
        )

        entries = await AuditService(db_session).list_for_entity("Payment", payment)
        assert [e.action for e in entries] == ["payment.allocate"]
        assert entries[0].user_id == 42
        assert entries[0].new_values["allocated"] == "600.00"


class TestAllocationErrors:
    """Rejections and rollback."""

    async def _setup_test_data(self, finance) -> dict:
        year = await finance.year("2025-2026", date(2025, 9, 1))
        student = await finance.student()
        tuition = await finance.fee(student, year, "SCOLARITE", Decimal("1000.00"))
        payment = await finance.payment(student, year, Decimal("500.00"))
        return {"year": year, "student": student, "tuition": tuition, "payment": payment}

    async def test_unknown_student(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)

        service = PaymentService(db_session)
        with pytest.raises(StudentNotFoundError):
            await service.allocate_payment(TENANT_ID, 99999, data["year"], data["payment"])

    async def test_student_of_other_tenant(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)

        service = PaymentService(db_session)
        with pytest.raises(StudentNotFoundError):
            await service.allocate_payment(TENANT_ID + 1, data["student"], data["year"], data["payment"])

    async def test_unknown_payment(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)

        service = PaymentService(db_session)
        with pytest.raises(NotFoundError):
            await service.allocate_payment(TENANT_ID, data["student"], data["year"], 99999)

    async def test_payment_of_other_student(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)
        other_student = await finance.student()

        service = PaymentService(db_session)
        with pytest.raises(ValidationError):
            await service.allocate_payment(TENANT_ID, other_student, data["year"], data["payment"])

    async def test_lock_timeout_applies_nothing(self, db_session: AsyncSession, finance):
        data = await self._setup_test_data(finance)
        await db_session.commit()

        locks = KeyedLock()
        service = PaymentService(db_session, locks=locks, lock_timeout=0.01)
        async with locks.acquire((TENANT_ID, data["student"], data["year"])):
            with pytest.raises(ConcurrentModificationError):
                await service.allocate_payment(TENANT_ID, data["student"], data["year"], data["payment"])

        assert await _allocation_count(db_session) == 0
        assert await _fee_state(db_session, data["tuition"]) == (
            "not_started", Decimal("0.00"), Decimal("1000.00"),
        )

    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("SELECT", {}, _DriverError("deadlock detected", "40P01")),
            DBAPIError("UPDATE", {}, _DriverError("could not serialize access", "40001")),
            OperationalError("SELECT", {}, _DriverError("could not obtain lock", "55P03")),
            OperationalError("UPDATE", {}, _DriverError("database is locked")),
        ],
    )
    async def test_lock_conflict_is_retryable(self, db_session: AsyncSession, finance, monkeypatch, error):
        data = await self._setup_test_data(finance)
        service = PaymentService(db_session)

        async def conflicting_run(*args):
            raise error

        monkeypatch.setattr(service, "_allocate", conflicting_run)
        with pytest.raises(ConcurrentModificationError):
            await service.allocate_payment(TENANT_ID, data["student"], data["year"], data["payment"])

    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("connect", {}, _DriverError("connection refused")),
            OperationalError("connect", {}, _DriverError("connection failure", "08006")),
            DBAPIError("INSERT", {}, _DriverError("check constraint violated", "23514")),
        ],
    )
    async def test_other_db_errors_propagate(self, db_session: AsyncSession, finance, monkeypatch, error):
        data = await self._setup_test_data(finance)
        service = PaymentService(db_session)

        async def failing_run(*args):
            raise error

        monkeypatch.setattr(service, "_allocate", failing_run)
        with pytest.raises(DBAPIError) as exc_info:
            await service.allocate_payment(TENANT_ID, data["student"], data["year"], data["payment"])
        assert exc_info.value is error

    async def test_concurrent_runs_do_not_double_allocate(
        self, db_session: AsyncSession, finance
    ):
        data = await self._setup_test_data(finance)
        await db_session.commit()

        locks = KeyedLock()
        service = PaymentService(db_session, locks=locks)
        results = await asyncio.gather(
            service.allocate_payment(TENANT_ID, data["student"], data["year"], data["payment"]),
            service.allocate_payment(TENANT_ID, data["student"], data["year"], data["payment"]),
        )

        assert results[0].total_allocated == Decimal("500.00")
        assert results[1].total_allocated == Decimal("500.00")
        assert await _allocation_count(db_session) == 1
        assert await _fee_state(db_session, data["tuition"]) == (
            "partial", Decimal("500.00"), Decimal("500.00"),
        )

    async def test_failed_plan_rolls_back_everything(
        self, db_session: AsyncSession, finance
    ):
        data = await self._setup_test_data(finance)
        await db_session.commit()
        payment = await db_session.get(Payment, data["payment"])

        plan = [
            AllocationIntent(StudentFeeTarget(data["tuition"]), Decimal("300.00")),
            AllocationIntent(ArrearTarget(424242), Decimal("100.00")),
        ]
        with pytest.raises(NotFoundError):
            async with UnitOfWork(db_session) as uow:
                await BalanceAggregator(uow).commit(payment, plan)

        assert await _allocation_count(db_session) == 0
        assert await _fee_state(db_session, data["tuition"]) == (
            "not_started", Decimal("0.00"), Decimal("1000.00"),
        )

    async def test_overspending_plan_is_a_consistency_error(
        self, db_session: AsyncSession, finance
    ):
        data = await self._setup_test_data(finance)
        await db_session.commit()
        payment = await db_session.get(Payment, data["payment"])

        plan = [AllocationIntent(StudentFeeTarget(data["tuition"]), Decimal("600.00"))]
        with pytest.raises(AllocationConsistencyError):
            async with UnitOfWork(db_session) as uow:
                await BalanceAggregator(uow).commit(payment, plan)

        assert await _allocation_count(db_session) == 0

    async def test_intent_above_balance_is_a_consistency_error(
        self, db_session: AsyncSession, finance
    ):
        year = await finance.year("2025-2026", date(2025, 9, 1))
        student = await finance.student()
        tuition = await finance.fee(student, year, "SCOLARITE", Decimal("100.00"))
        payment_id = await finance.payment(student, year, Decimal("500.00"))
        await db_session.commit()
        payment = await db_session.get(Payment, payment_id)

        plan = [AllocationIntent(StudentFeeTarget(tuition), Decimal("150.00"))]
        with pytest.raises(AllocationConsistencyError):
            async with UnitOfWork(db_session) as uow:
                await BalanceAggregator(uow).commit(payment, plan)

        assert await _fee_state(db_session, tuition) == ("not_started", Decimal("0.00"), Decimal("100.00"))


class TestPaymentQueries:
    async def test_record_payment_and_read_allocations(
        self, db_session: AsyncSession, finance
    ):
        year = await finance.year("2025-2026", date(2025, 9, 1))
        student = await finance.student()
        tuition = await finance.fee(student, year, "SCOLARITE", Decimal("1000.00"))
        await db_session.commit()

        service = PaymentService(db_session)
        payment = await service.record_payment(
            TENANT_ID,
            PaymentCreate(
                student_id=student,
                academic_year_id=year,
                amount=Decimal("250.00"),
                payment_date=date(2025, 10, 1),
                reference="MPESA-1",
            ),
            recorded_by_id=1,
        )
        payment_id = payment.id
        await service.allocate_payment(TENANT_ID, student, year, payment_id)

        allocations = await service.get_payment_allocations(TENANT_ID, payment_id)
        assert [(a.student_fee_id, a.allocated_amount) for a in allocations] == [
            (tuition, Decimal("250.00"))
        ]
        by_fee = await service.get_student_fee_allocations(TENANT_ID, tuition)
        assert [a.payment_id for a in by_fee] == [payment_id]
        assert await service.get_allocated_total(payment_id) == Decimal("250.00")

    async def test_record_payment_unknown_student(self, db_session: AsyncSession, finance):
        year = await finance.year("2025-2026", date(2025, 9, 1))

        service = PaymentService(db_session)
        with pytest.raises(StudentNotFoundError):
            await service.record_payment(
                TENANT_ID,
                PaymentCreate(
                    student_id=12345,
                    academic_year_id=year,
                    amount=Decimal("10.00"),
                    payment_date=date(2025, 10, 1),
                ),
            )
