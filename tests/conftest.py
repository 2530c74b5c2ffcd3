"""Shared fixtures: an in-memory database with one building and its flats."""

import os

# Point the module-level engine at memory BEFORE importing building_finance
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)
os.environ.setdefault("LOCALE", "en_GB")

from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402

from building_finance.models import Base, Building, BuildingFinancialSettings, Flat  # noqa: E402
from building_finance.services import create_engine_for, create_session_factory  # noqa: E402
from building_finance.services.building_service import FinancialSettings  # noqa: E402
from building_finance.services.notification_service import NotificationService  # noqa: E402

# Reference date used across tests: mid-May 2024, inside Q1 FY24/25 for an April 1 anchor
AS_OF = date(2024, 5, 15)


@pytest.fixture
async def engine():
    """Create async engine on a fresh in-memory database."""
    engine = create_engine_for("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_db_session(engine):
    """Create async test database session."""
    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def building(async_db_session):
    """Create a building without financial settings."""
    building = Building(name="Harbour View")
    async_db_session.add(building)
    await async_db_session.commit()
    return building


@pytest.fixture
async def financial_settings(async_db_session, building):
    """Rate 2.50 per area unit, due 14 days before quarter start, April 1 fiscal year."""
    record = BuildingFinancialSettings(
        building_id=building.id,
        rate_per_area_unit=Decimal("2.50"),
        due_lead_days=14,
        fiscal_year_start_month=4,
        fiscal_year_start_day=1,
        reserve_fund_percentage=Decimal("10"),
    )
    async_db_session.add(record)
    await async_db_session.commit()
    return FinancialSettings.from_record(record)


@pytest.fixture
async def flats(async_db_session, building):
    """Create flats covering every eligibility case.

    1A: area 1000 with ground rent 300
    1B: area 800, no ground rent
    G1: no area, ground rent 150 (ground rent only)
    S1: zero area, no ground rent (never billed)
    """
    specs = [
        ("1A", Decimal("1000"), Decimal("300"), 5001),
        ("1B", Decimal("800"), None, 5002),
        ("G1", None, Decimal("150"), None),
        ("S1", Decimal("0"), None, None),
    ]
    created = {}
    for flat_number, area, ground_rent, telegram_id in specs:
        flat = Flat(
            building_id=building.id,
            flat_number=flat_number,
            area_units=area,
            ground_rent=ground_rent,
            contact_telegram_id=telegram_id,
        )
        async_db_session.add(flat)
        created[flat_number] = flat
    await async_db_session.commit()
    return created


@pytest.fixture
def notifier():
    """Notification sink double recording every call."""
    return AsyncMock(spec=NotificationService)
