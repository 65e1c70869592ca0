"""Pytest configuration: in-memory database and engine fixtures."""

import os
from datetime import datetime, timedelta, timezone

# Set test database URL BEFORE any imports from src
# This keeps the module-level engine in src.services off the real database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from src.models import MemberAmount, RosterMember  # noqa: E402
from src.services import create_engine_for_url, create_session_factory, init_models  # noqa: E402
from src.services.dues_engine import DuesEngine  # noqa: E402
from src.services.snapshot_repository import SnapshotRepository, SqlSnapshotStore  # noqa: E402

CLUB = "TNN01"


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock fixed at 2025-01-15 09:00 UTC."""
    return FixedClock(datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
async def db_engine():
    """Create in-memory database with all tables."""
    engine = create_engine_for_url("sqlite+aiosqlite:///:memory:")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    return create_session_factory(db_engine)


@pytest.fixture
def repository(session_factory):
    """Snapshot repository over the in-memory database."""
    return SnapshotRepository(SqlSnapshotStore(session_factory))


@pytest.fixture
def engine(session_factory, clock):
    """All services wired together over the in-memory database."""
    return DuesEngine.build(session_factory, clock=clock)


@pytest.fixture
def roster():
    """Club roster with admin ranks."""
    return [
        RosterMember(name="홍길동", phone="010-1111-2222", admin_rank=1),
        RosterMember(name="김철수", phone="010-3333-4444"),
        RosterMember(name="이영희", phone=None, admin_rank=2),
    ]


@pytest.fixture
def members():
    """Resolved member amounts for a 30,000원 period."""
    return [
        MemberAmount(player_name="홍길동", amount=30000),
        MemberAmount(player_name="김철수", amount=30000),
    ]
