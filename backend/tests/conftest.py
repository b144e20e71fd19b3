from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import AsyncIterator, Callable, Generator, Optional
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from worktimer.config import Settings
from worktimer.database import create_engine, create_session_factory, init_models
from worktimer.main import create_app
from worktimer.repositories import CustomerRepository, EntryStore, ProjectRepository, TimeEntryRepository
from worktimer.schemas import CustomerCreateRequest, CustomerRecord, ProjectCreateRequest, ProjectRecord
from worktimer.services import TimerSessionService

UTC_ZONE = ZoneInfo("UTC")


class FakeClock:
    """Manually driven time source."""

    def __init__(self, start: dt.datetime):
        self.current = start

    def now(self) -> dt.datetime:
        return self.current

    def advance(self, **kwargs: float) -> dt.datetime:
        self.current = self.current + dt.timedelta(**kwargs)
        return self.current

    def set(self, value: dt.datetime) -> None:
        self.current = value


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(dt.datetime(2024, 3, 4, 8, 5, tzinfo=dt.timezone.utc))


@pytest.fixture
def zone() -> ZoneInfo:
    return UTC_ZONE


@pytest.fixture
async def session_factory(anyio_backend) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_engine("sqlite+aiosqlite://")
    await init_models(engine)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def customers(session_factory) -> CustomerRepository:
    return CustomerRepository(session_factory)


@pytest.fixture
def projects(session_factory) -> ProjectRepository:
    return ProjectRepository(session_factory)


@pytest.fixture
def entries(session_factory, zone) -> TimeEntryRepository:
    return TimeEntryRepository(session_factory, zone)


@pytest.fixture
async def customer(customers: CustomerRepository, anyio_backend) -> CustomerRecord:
    return await customers.create(CustomerCreateRequest(name="Acme"))


@pytest.fixture
async def project(projects: ProjectRepository, customer: CustomerRecord, anyio_backend) -> ProjectRecord:
    return await projects.create(ProjectCreateRequest(customer_id=customer.id, name="Website"))


@pytest.fixture
async def other_project(projects: ProjectRepository, customer: CustomerRecord, anyio_backend) -> ProjectRecord:
    return await projects.create(ProjectCreateRequest(customer_id=customer.id, name="Support"))


@pytest.fixture
def make_service(entries, projects, customers, clock, zone) -> Callable[..., TimerSessionService]:
    def factory(entry_store: Optional[EntryStore] = None) -> TimerSessionService:
        return TimerSessionService(entry_store or entries, projects, customers, clock=clock, zone=zone)

    return factory


@pytest.fixture
def service(make_service) -> TimerSessionService:
    return make_service()


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "worktimer-test.db"


@pytest.fixture
def client(temp_db_path: Path, clock: FakeClock) -> Generator[TestClient, None, None]:
    app_settings = Settings(
        database_url=f"sqlite+aiosqlite:///{temp_db_path}",
        timezone="UTC",
        log_level="WARNING",
    )
    with TestClient(create_app(app_settings, clock=clock)) as test_client:
        yield test_client
