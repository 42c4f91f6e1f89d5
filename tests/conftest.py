"""
DigiComply - Test Configuration

Pytest fixtures and configuration.

Every test gets its own SQLite file database, so engine runs that open
their own sessions see the same data as the test.
"""

from datetime import date
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.database import Base, get_async_session, get_session_factory
from app.models.compliance_filing import ComplianceFiling, FilingStatus, PublicHoliday
from app.models.compliance_rule import ComplianceDomain, ComplianceRule, RuleFrequency
from app.models.entity import BusinessEntity
from main import app


# Scenario dates: the September 2026 GST return is due on 2026-10-20
SEPTEMBER_2026 = date(2026, 9, 1)
GST_DUE_DATE = date(2026, 10, 20)


def gst_rule_values(**overrides: Any) -> Dict[str, Any]:
    """Monthly GST return: due 20 days after period end, 50/day late fee capped at 5000."""
    values: Dict[str, Any] = dict(
        rule_code="GSTR3B",
        version=1,
        name="GSTR-3B Monthly Return",
        domain=ComplianceDomain.TAX_GST,
        applicable_entity_types=["pvt_ltd"],
        turnover_min=Decimal("2000000"),
        frequency=RuleFrequency.MONTHLY,
        due_date_formula={"base": "PERIOD_END", "offset_days": 20},
        grace_days=0,
        penalty_spec={"type": "per_day", "daily_amount": "50", "max_penalty": "5000"},
        criticality_score=8,
        amber_threshold_days=5,
        red_threshold_days=0,
        is_active=True,
        effective_from=SEPTEMBER_2026,
    )
    values.update(overrides)
    return values


# ===========================================
# DATABASE FIXTURES
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory bound to a fresh SQLite database."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'digicomply_test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    yield factory

    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database overrides."""

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest.fixture
def create_entity(session_factory: async_sessionmaker) -> Callable[..., Awaitable[BusinessEntity]]:
    """Factory creating business entities (pvt_ltd, turnover 5,000,000 by default)."""

    async def _create(**overrides: Any) -> BusinessEntity:
        values: Dict[str, Any] = dict(
            id=uuid4(),
            name="Acme Technologies Pvt Ltd",
            entity_type="Private Limited",
            state="KA",
            annual_turnover=Decimal("5000000"),
            employee_count=25,
            is_gst_registered=True,
            is_pf_registered=True,
            is_esi_registered=False,
            incorporation_date=date(2020, 4, 1),
            event_dates={},
            is_active=True,
        )
        values.update(overrides)
        async with session_factory() as session:
            entity = BusinessEntity(**values)
            session.add(entity)
            await session.commit()
            await session.refresh(entity)
            return entity

    return _create


@pytest.fixture
def create_rule(session_factory: async_sessionmaker) -> Callable[..., Awaitable[ComplianceRule]]:
    """Factory creating compliance rule rows (the GST return by default)."""

    async def _create(**overrides: Any) -> ComplianceRule:
        async with session_factory() as session:
            rule = ComplianceRule(id=uuid4(), **gst_rule_values(**overrides))
            session.add(rule)
            await session.commit()
            await session.refresh(rule)
            return rule

    return _create


@pytest.fixture
def create_filing(session_factory: async_sessionmaker) -> Callable[..., Awaitable[ComplianceFiling]]:
    """Factory recording filing signals directly."""

    async def _create(entity_id, rule_code: str, status: FilingStatus, **values: Any) -> ComplianceFiling:
        async with session_factory() as session:
            filing = ComplianceFiling(
                id=uuid4(),
                entity_id=entity_id,
                rule_code=rule_code,
                status=status,
                **values,
            )
            session.add(filing)
            await session.commit()
            await session.refresh(filing)
            return filing

    return _create


@pytest.fixture
def create_holiday(session_factory: async_sessionmaker) -> Callable[..., Awaitable[PublicHoliday]]:

    async def _create(holiday_date: date, jurisdiction: str = "NATIONAL", name: str = "Holiday") -> PublicHoliday:
        async with session_factory() as session:
            holiday = PublicHoliday(id=uuid4(), jurisdiction=jurisdiction, holiday_date=holiday_date, name=name)
            session.add(holiday)
            await session.commit()
            return holiday

    return _create
