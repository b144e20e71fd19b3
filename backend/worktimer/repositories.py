from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .database import db_session
from .models import Customer, Project, TimeEntry, utcnow
from .schemas import (
    CustomerCreateRequest,
    CustomerRecord,
    ProjectCreateRequest,
    ProjectRecord,
    ProjectUpdateRequest,
    TimeEntryCreate,
    TimeEntryRecord,
    TimeEntryUpdate,
)
from .utils import day_bounds, ensure_utc, from_db_datetime, local_wall_clock

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
MAX_TAG_LENGTH = 50


class EntryStore(Protocol):
    async def get_active(self) -> Optional[TimeEntryRecord]: ...

    async def get_by_id(self, entry_id: uuid.UUID) -> Optional[TimeEntryRecord]: ...

    async def get_by_local_date(self, local_date: dt.date) -> List[TimeEntryRecord]: ...

    async def get_most_recent(self) -> Optional[TimeEntryRecord]: ...

    async def create(self, fields: TimeEntryCreate) -> TimeEntryRecord: ...

    async def update(self, entry_id: uuid.UUID, changes: TimeEntryUpdate) -> Optional[TimeEntryRecord]: ...

    async def delete(self, entry_id: uuid.UUID) -> bool: ...


class ProjectLookup(Protocol):
    async def get_by_id(self, project_id: uuid.UUID) -> Optional[ProjectRecord]: ...


class CustomerLookup(Protocol):
    async def get_by_id(self, customer_id: uuid.UUID) -> Optional[CustomerRecord]: ...


def _sanitize_notes(value: Optional[str]) -> str:
    return (value or "").strip()


def _sanitize_tag(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()[:MAX_TAG_LENGTH]


def _normalize_name(value: Optional[str], label: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValueError(f"{label} name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"{label} name cannot exceed {MAX_NAME_LENGTH} characters")
    return name


class TimeEntryRepository:
    """Entry store backed by the ``time_entries`` table.

    Local timestamps are persisted as naive wall-clock values of ``zone`` and
    come back as aware datetimes in that zone; absolute timestamps are kept
    in UTC.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], zone: dt.tzinfo):
        if session_factory is None:
            raise ValueError("session_factory is required")
        if zone is None:
            raise ValueError("zone is required")
        self._session_factory = session_factory
        self._zone = zone

    def _to_record(self, entry: TimeEntry) -> TimeEntryRecord:
        return TimeEntryRecord(
            id=entry.id,
            customer_id=entry.customer_id,
            project_id=entry.project_id,
            start_local=entry.start_local.replace(tzinfo=self._zone),
            start_utc=from_db_datetime(entry.start_utc),
            end_local=entry.end_local.replace(tzinfo=self._zone) if entry.end_local else None,
            end_utc=from_db_datetime(entry.end_utc),
            notes=entry.notes or "",
            billable=entry.billable,
            tag=entry.tag or "",
            server_id=entry.server_id,
            pending_sync=entry.pending_sync,
            is_deleted=entry.is_deleted,
            last_modified_utc=from_db_datetime(entry.last_modified_utc),
        )

    def _local(self, value: dt.datetime) -> dt.datetime:
        return local_wall_clock(value, self._zone)

    async def get_by_id(self, entry_id: uuid.UUID) -> Optional[TimeEntryRecord]:
        async with self._session_factory() as session:
            entry = await session.get(TimeEntry, entry_id)
            return self._to_record(entry) if entry else None

    async def get_active(self) -> Optional[TimeEntryRecord]:
        stmt = (
            select(TimeEntry)
            .where(TimeEntry.end_utc.is_(None), TimeEntry.is_deleted.is_(False))
            .order_by(TimeEntry.start_utc.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            entry = (await session.execute(stmt)).scalar_one_or_none()
            return self._to_record(entry) if entry else None

    async def get_by_local_date(self, local_date: dt.date) -> List[TimeEntryRecord]:
        start, end = day_bounds(local_date)
        stmt = (
            select(TimeEntry)
            .where(
                TimeEntry.is_deleted.is_(False),
                TimeEntry.start_local >= start,
                TimeEntry.start_local < end,
            )
            .order_by(TimeEntry.start_local.asc())
        )
        async with self._session_factory() as session:
            entries = (await session.execute(stmt)).scalars().all()
            return [self._to_record(entry) for entry in entries]

    async def get_most_recent(self) -> Optional[TimeEntryRecord]:
        stmt = (
            select(TimeEntry)
            .where(TimeEntry.is_deleted.is_(False))
            .order_by(TimeEntry.start_utc.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            entry = (await session.execute(stmt)).scalar_one_or_none()
            return self._to_record(entry) if entry else None

    async def create(self, fields: TimeEntryCreate) -> TimeEntryRecord:
        entry = TimeEntry(
            id=uuid.uuid4(),
            customer_id=fields.customer_id,
            project_id=fields.project_id,
            start_local=self._local(fields.start_local),
            start_utc=ensure_utc(fields.start_utc, self._zone),
            notes=_sanitize_notes(fields.notes),
            billable=fields.billable,
            tag=_sanitize_tag(fields.tag),
            pending_sync=True,
            is_deleted=False,
            last_modified_utc=utcnow(),
        )
        async with db_session(self._session_factory) as session:
            session.add(entry)
            await session.flush()
            record = self._to_record(entry)
        logger.debug("Time entry created", extra={"entry_id": str(record.id)})
        return record

    async def update(self, entry_id: uuid.UUID, changes: TimeEntryUpdate) -> Optional[TimeEntryRecord]:
        async with db_session(self._session_factory) as session:
            entry = await session.get(TimeEntry, entry_id)
            if entry is None:
                return None

            if changes.start_local is not None and changes.start_utc is not None:
                entry.start_local = self._local(changes.start_local)
                entry.start_utc = ensure_utc(changes.start_utc, self._zone)
            if changes.end_local is not None and changes.end_utc is not None:
                entry.end_local = self._local(changes.end_local)
                entry.end_utc = ensure_utc(changes.end_utc, self._zone)
            if entry.end_local is not None and entry.end_local < entry.start_local:
                raise ValueError("Stop time cannot be earlier than the start time")
            if changes.notes is not None:
                entry.notes = _sanitize_notes(changes.notes)
            if changes.billable is not None:
                entry.billable = changes.billable
            if changes.tag is not None:
                entry.tag = _sanitize_tag(changes.tag)
            if changes.is_deleted is not None:
                entry.is_deleted = changes.is_deleted
            if changes.pending_sync is not None:
                entry.pending_sync = changes.pending_sync
                if not changes.pending_sync and changes.server_id and changes.server_id.strip():
                    entry.server_id = changes.server_id.strip()
            elif changes.server_id is not None:
                if changes.server_id.strip():
                    entry.server_id = changes.server_id.strip()
                entry.pending_sync = False

            entry.touch()
            await session.flush()
            return self._to_record(entry)

    async def mark_synced(self, entry_id: uuid.UUID, server_id: Optional[str] = None) -> Optional[TimeEntryRecord]:
        return await self.update(entry_id, TimeEntryUpdate(pending_sync=False, server_id=server_id))

    async def delete(self, entry_id: uuid.UUID) -> bool:
        async with db_session(self._session_factory) as session:
            entry = await session.get(TimeEntry, entry_id)
            if entry is None:
                return False
            await session.delete(entry)
        logger.debug("Time entry deleted", extra={"entry_id": str(entry_id)})
        return True


class ProjectRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        if session_factory is None:
            raise ValueError("session_factory is required")
        self._session_factory = session_factory

    @staticmethod
    def _to_record(project: Project) -> ProjectRecord:
        return ProjectRecord(
            id=project.id,
            customer_id=project.customer_id,
            name=project.name,
            is_active=project.is_active,
            created_utc=from_db_datetime(project.created_utc),
            last_modified_utc=from_db_datetime(project.last_modified_utc),
        )

    async def get_by_id(self, project_id: uuid.UUID) -> Optional[ProjectRecord]:
        async with self._session_factory() as session:
            project = await session.get(Project, project_id)
            return self._to_record(project) if project else None

    async def get_by_customer(self, customer_id: uuid.UUID, include_inactive: bool = False) -> List[ProjectRecord]:
        stmt = select(Project).where(Project.customer_id == customer_id)
        if not include_inactive:
            stmt = stmt.where(Project.is_active.is_(True))
        stmt = stmt.order_by(Project.name.asc())
        async with self._session_factory() as session:
            projects = (await session.execute(stmt)).scalars().all()
            return [self._to_record(project) for project in projects]

    async def create(self, payload: ProjectCreateRequest) -> ProjectRecord:
        project = Project(
            id=uuid.uuid4(),
            customer_id=payload.customer_id,
            name=_normalize_name(payload.name, "Project"),
            is_active=payload.is_active,
        )
        async with db_session(self._session_factory) as session:
            session.add(project)
            await session.flush()
            return self._to_record(project)

    async def update(self, project_id: uuid.UUID, payload: ProjectUpdateRequest) -> Optional[ProjectRecord]:
        async with db_session(self._session_factory) as session:
            project = await session.get(Project, project_id)
            if project is None:
                return None
            if project.customer_id != payload.customer_id:
                customer = await session.get(Customer, payload.customer_id)
                if customer is None:
                    return None
                project.customer_id = customer.id
            project.name = _normalize_name(payload.name, "Project")
            project.is_active = payload.is_active
            await session.flush()
            return self._to_record(project)

    async def delete(self, project_id: uuid.UUID) -> bool:
        async with db_session(self._session_factory) as session:
            project = await session.get(Project, project_id)
            if project is None:
                return False
            await session.delete(project)
        return True


class CustomerRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        if session_factory is None:
            raise ValueError("session_factory is required")
        self._session_factory = session_factory

    @staticmethod
    def _to_record(customer: Customer) -> CustomerRecord:
        return CustomerRecord(
            id=customer.id,
            name=customer.name,
            is_archived=customer.is_archived,
            created_utc=from_db_datetime(customer.created_utc),
            last_modified_utc=from_db_datetime(customer.last_modified_utc),
        )

    async def get_by_id(self, customer_id: uuid.UUID) -> Optional[CustomerRecord]:
        async with self._session_factory() as session:
            customer = await session.get(Customer, customer_id)
            return self._to_record(customer) if customer else None

    async def get_all(self) -> List[CustomerRecord]:
        stmt = select(Customer).order_by(Customer.name.asc())
        async with self._session_factory() as session:
            customers = (await session.execute(stmt)).scalars().all()
            return [self._to_record(customer) for customer in customers]

    async def create(self, payload: CustomerCreateRequest) -> CustomerRecord:
        customer = Customer(id=uuid.uuid4(), name=_normalize_name(payload.name, "Customer"))
        async with db_session(self._session_factory) as session:
            session.add(customer)
            await session.flush()
            return self._to_record(customer)

