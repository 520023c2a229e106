from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bursary.core.auth.jwt import create_access_token
from bursary.core.auth.schemas import UserRole
from bursary.core.database.base import Base
from bursary.core.database import get_db
from bursary.main import app
from bursary.modules.arrears.models import ArrearStatus, StudentArrear
from bursary.modules.discounts.models import DiscountValueType, FeeRegime, RegimeKind, RegimeRule
from bursary.modules.fees.models import (
    FeeCategory,
    FeeDefinition,
    FeeInstallment,
    PaymentSummary,
    StudentFee,
    StudentFeeStatus,
)
from bursary.modules.payments.models import Payment
from bursary.modules.students.models import Student, StudentStatus
from bursary.modules.years.models import AcademicYear

# Test database URL (in-memory SQLite for speed, or use test PostgreSQL)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = 1
OTHER_TENANT_ID = 2

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_async_session = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with test_async_session() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user of the given role and tenant."""

    def _headers(
        role: UserRole = UserRole.SUPER_ADMIN, tenant_id: int = TENANT_ID, user_id: int = 1
    ) -> dict[str, str]:
        token = create_access_token(user_id=user_id, tenant_id=tenant_id, role=role.value)
        return {"Authorization": f"Bearer {token}"}

    return _headers


class FinanceFactory:
    """
    Inserts finance rows directly and returns plain ids.

    Ids survive a rollback, ORM instances do not (they get expired).
    """

    def __init__(self, db: AsyncSession, tenant_id: int = TENANT_ID):
        self.db = db
        self.tenant_id = tenant_id
        self._counter = 0
        self._categories: dict[str, int] = {}

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def _save(self, row) -> int:
        self.db.add(row)
        await self.db.flush()
        return row.id

    async def year(self, name: str, start: date, end: date | None = None) -> int:
        return await self._save(
            AcademicYear(
                tenant_id=self.tenant_id,
                name=name,
                start_date=start,
                end_date=end or date(start.year + 1, start.month, 28),
                is_current=False,
            )
        )

    async def regime(
        self,
        code: str,
        rules: list[tuple[str, DiscountValueType, Decimal]] = (),
        kind: RegimeKind = RegimeKind.CUSTOM,
    ) -> int:
        return await self._save(
            FeeRegime(
                tenant_id=self.tenant_id,
                code=code,
                name=code.title(),
                kind=kind.value,
                rules=[
                    RegimeRule(category_kind=category_kind, value_type=value_type.value, value=value)
                    for category_kind, value_type, value in rules
                ],
            )
        )

    async def student(self, regime_id: int | None = None) -> int:
        n = self._next()
        return await self._save(
            Student(
                tenant_id=self.tenant_id,
                student_number=f"STU-{n:06d}",
                first_name="Test",
                last_name=f"Student{n}",
                regime_id=regime_id,
                status=StudentStatus.ACTIVE.value,
            )
        )

    async def category(self, code: str) -> int:
        return await self._save(FeeCategory(tenant_id=self.tenant_id, code=code, name=code.title()))

    async def definition(
        self,
        category_id: int,
        year_id: int,
        amount: Decimal,
        installments: list[Decimal] = (),
    ) -> int:
        definition = FeeDefinition(
            tenant_id=self.tenant_id,
            category_id=category_id,
            academic_year_id=year_id,
            name=f"Fee {self._next()}",
            amount=amount,
            installments=[
                FeeInstallment(label=f"Tranche {i}", amount=value, order_index=i)
                for i, value in enumerate(installments, start=1)
            ],
        )
        return await self._save(definition)

    async def student_fee(
        self,
        student_id: int,
        definition_id: int,
        year_id: int,
        total: Decimal,
        paid: Decimal = Decimal("0.00"),
    ) -> int:
        if paid >= total:
            status = StudentFeeStatus.PAID
        elif paid > 0:
            status = StudentFeeStatus.PARTIAL
        else:
            status = StudentFeeStatus.NOT_STARTED
        fee_id = await self._save(
            StudentFee(
                tenant_id=self.tenant_id,
                student_id=student_id,
                fee_definition_id=definition_id,
                academic_year_id=year_id,
                total_amount=total,
                status=status.value,
            )
        )
        await self._save(
            PaymentSummary(
                tenant_id=self.tenant_id,
                student_id=student_id,
                academic_year_id=year_id,
                student_fee_id=fee_id,
                expected_amount=total,
                paid_amount=paid,
                balance=max(total - paid, Decimal("0.00")),
            )
        )
        return fee_id

    async def fee(
        self,
        student_id: int,
        year_id: int,
        code: str,
        total: Decimal,
        paid: Decimal = Decimal("0.00"),
        installments: list[Decimal] = (),
    ) -> int:
        """Category + definition + student fee in one go."""
        category_id = self._categories.get(code)
        if category_id is None:
            category_id = await self.category(code)
            self._categories[code] = category_id
        definition_id = await self.definition(category_id, year_id, total, installments)
        return await self.student_fee(student_id, definition_id, year_id, total, paid)

    async def arrear(
        self,
        student_id: int,
        from_year_id: int,
        to_year_id: int,
        amount_due: Decimal,
        amount_paid: Decimal = Decimal("0.00"),
    ) -> int:
        balance = amount_due - amount_paid
        if balance <= 0:
            status = ArrearStatus.PAID
        elif amount_paid > 0:
            status = ArrearStatus.PARTIAL
        else:
            status = ArrearStatus.OPEN
        return await self._save(
            StudentArrear(
                tenant_id=self.tenant_id,
                student_id=student_id,
                from_year_id=from_year_id,
                to_year_id=to_year_id,
                amount_due=amount_due,
                amount_paid=amount_paid,
                balance_due=max(balance, Decimal("0.00")),
                status=status.value,
            )
        )

    async def payment(self, student_id: int, year_id: int, amount: Decimal) -> int:
        return await self._save(
            Payment(
                tenant_id=self.tenant_id,
                student_id=student_id,
                academic_year_id=year_id,
                amount=amount,
                payment_date=date(2026, 10, 1),
                reference=f"REF-{self._next()}",
            )
        )


@pytest.fixture
def finance(db_session: AsyncSession) -> FinanceFactory:
    return FinanceFactory(db_session)
