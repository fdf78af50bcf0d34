"""Pytest configuration and fixtures for Equity Ledger tests"""
from datetime import date
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from equity_ledger.constants import EntryType, ShareholderType
from equity_ledger.models import Base
from equity_ledger.services.ownership import LedgerEntry, ShareClassTerms

# In-memory SQLite; StaticPool keeps one connection so every session sees the same database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ORG_ID = 1
OTHER_ORG_ID = 2


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database and session for each test.

    Services only flush, so tests see their own writes without committing.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


def make_entry(
    shareholder_id: str,
    shares: int,
    share_class: str = "common",
    shareholder_type: str = ShareholderType.FOUNDER.value,
    entry_type: str = EntryType.ISSUANCE.value,
    effective_date: date = date(2024, 1, 1),
    price_per_share: float = None,
    name: str = None,
) -> LedgerEntry:
    """Build a ledger entry with sensible defaults"""
    return LedgerEntry(
        shareholder_id=shareholder_id,
        shareholder_name=name or shareholder_id.title(),
        shareholder_type=shareholder_type,
        share_class=share_class,
        entry_type=entry_type,
        shares=shares,
        effective_date=effective_date,
        price_per_share=price_per_share,
    )


@pytest.fixture
def common_class():
    return ShareClassTerms(share_class="common", name="Common Stock", authorized_shares=10_000_000)


@pytest.fixture
def series_a_class():
    return ShareClassTerms(
        share_class="series_a",
        name="Series A Preferred",
        authorized_shares=5_000_000,
        seniority=1,
        liquidation_preference=1.0,
    )


@pytest.fixture
def entry():
    """Factory fixture for ledger entries"""
    return make_entry
