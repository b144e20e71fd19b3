from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from .schemas import TimeEntryRecord
from .utils import ZERO


class SessionState(BaseModel):
    """In-memory record of the current pause/resume chain.

    Instances are frozen; every transition builds a new record through
    :meth:`evolve` so a reader never sees a half-updated state.
    """

    model_config = ConfigDict(frozen=True)

    project_id: uuid.UUID
    customer_id: uuid.UUID
    notes: str = ""
    billable: bool = True
    tag: str = ""
    accumulated_duration: dt.timedelta = ZERO
    rounded_duration: dt.timedelta = ZERO
    last_interaction_utc: Optional[dt.datetime] = None
    last_entry_id: Optional[uuid.UUID] = None
    last_start_local: Optional[dt.datetime] = None
    last_start_utc: Optional[dt.datetime] = None
    last_end_local: Optional[dt.datetime] = None
    last_end_utc: Optional[dt.datetime] = None
    is_paused: bool = False

    @classmethod
    def started(cls, entry: TimeEntryRecord) -> "SessionState":
        return cls(
            project_id=entry.project_id,
            customer_id=entry.customer_id,
            notes=entry.notes,
            billable=entry.billable,
            tag=entry.tag,
            last_interaction_utc=entry.last_modified_utc,
            last_entry_id=entry.id,
            last_start_local=entry.start_local,
            last_start_utc=entry.start_utc,
        )

    def evolve(self, **changes: Any) -> "SessionState":
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown session state fields: {', '.join(sorted(unknown))}")
        return self.model_copy(update=changes)

    def tracks(self, entry_id: uuid.UUID) -> bool:
        return self.last_entry_id is not None and self.last_entry_id == entry_id
