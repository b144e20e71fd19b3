from __future__ import annotations

import datetime as dt
import enum
import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionStatus(str, enum.Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    PAUSED = "Paused"


class CommandStatus(str, enum.Enum):
    SUCCESS = "Success"
    VALIDATION_FAILED = "ValidationFailed"
    CONFLICT = "Conflict"
    NOT_FOUND = "NotFound"
    FAILURE = "Failure"


# ---------------------------------------------------------------------------
# Storage records
# ---------------------------------------------------------------------------


class CustomerRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)
    id: uuid.UUID
    name: str
    is_archived: bool = False
    created_utc: dt.datetime
    last_modified_utc: dt.datetime


class ProjectRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)
    id: uuid.UUID
    customer_id: uuid.UUID
    name: str
    is_active: bool = True
    created_utc: dt.datetime
    last_modified_utc: dt.datetime


class TimeEntryRecord(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: uuid.UUID
    customer_id: uuid.UUID
    project_id: uuid.UUID
    start_local: dt.datetime
    start_utc: dt.datetime
    end_local: Optional[dt.datetime] = None
    end_utc: Optional[dt.datetime] = None
    notes: str = ""
    billable: bool = True
    tag: str = ""
    server_id: Optional[str] = None
    pending_sync: bool = True
    is_deleted: bool = False
    last_modified_utc: dt.datetime

    @property
    def is_open(self) -> bool:
        return self.end_local is None


class TimeEntryCreate(BaseModel):
    customer_id: uuid.UUID
    project_id: uuid.UUID
    start_local: dt.datetime
    start_utc: dt.datetime
    notes: str = ""
    billable: bool = True
    tag: Optional[str] = None


class TimeEntryUpdate(BaseModel):
    """Partial update; ``None`` leaves a field unchanged."""

    start_local: Optional[dt.datetime] = None
    start_utc: Optional[dt.datetime] = None
    end_local: Optional[dt.datetime] = None
    end_utc: Optional[dt.datetime] = None
    notes: Optional[str] = None
    billable: Optional[bool] = None
    tag: Optional[str] = None
    pending_sync: Optional[bool] = None
    is_deleted: Optional[bool] = None
    server_id: Optional[str] = None


class CustomerCreateRequest(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()


class ProjectCreateRequest(BaseModel):
    customer_id: uuid.UUID
    name: str
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()


class ProjectUpdateRequest(BaseModel):
    customer_id: uuid.UUID
    name: str
    is_active: bool = True


class ProjectListItem(BaseModel):
    project_id: uuid.UUID
    customer_id: uuid.UUID
    customer_name: str
    project_name: str
    is_active: bool


# ---------------------------------------------------------------------------
# Timer commands
# ---------------------------------------------------------------------------


class TimerStartRequest(BaseModel):
    project_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    billable: bool = True
    tag: Optional[str] = None
    start_override: Optional[dt.datetime] = None
    force_restart: bool = False


class TimerStopRequest(BaseModel):
    notes: Optional[str] = None
    billable: Optional[bool] = None
    tag: Optional[str] = None
    stop_override: Optional[dt.datetime] = None


class NotesUpdateRequest(BaseModel):
    notes: Optional[str] = None


class EntryAdjustRequest(BaseModel):
    start_local: Optional[dt.datetime] = None
    end_local: Optional[dt.datetime] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


class ActiveSessionView(BaseModel):
    time_entry_id: Optional[uuid.UUID]
    customer_id: uuid.UUID
    project_id: uuid.UUID
    customer_name: str
    project_name: str
    start_local: Optional[dt.datetime]
    start_utc: Optional[dt.datetime]
    last_interaction_utc: Optional[dt.datetime]
    accumulated_duration: dt.timedelta
    rounded_duration: dt.timedelta
    is_paused: bool
    notes: str = ""
    billable: bool = True
    tag: str = ""


class HistoryEntry(BaseModel):
    """One row of a day's history.

    The running entry has no ``end_local``; its duration is measured up to
    ``provisional_end_local``.
    """

    time_entry_id: uuid.UUID
    customer_id: uuid.UUID
    customer_name: str
    project_id: uuid.UUID
    project_name: str
    start_local: dt.datetime
    end_local: Optional[dt.datetime]
    provisional_end_local: Optional[dt.datetime] = None
    duration: dt.timedelta
    rounded_duration: dt.timedelta
    billable: bool = True
    notes: str = ""
    tag: str = ""
    is_running: bool = False


class TimerSnapshot(BaseModel):
    status: SessionStatus
    active_session: Optional[ActiveSessionView] = None
    local_date: dt.date
    entries: List[HistoryEntry] = Field(default_factory=list)


class DailySummary(BaseModel):
    local_date: dt.date
    total_duration: dt.timedelta
    total_rounded_duration: dt.timedelta
    entries: List[HistoryEntry] = Field(default_factory=list)


class CommandResult(BaseModel):
    status: CommandStatus
    snapshot: TimerSnapshot
    message: str

    @property
    def succeeded(self) -> bool:
        return self.status is CommandStatus.SUCCESS
