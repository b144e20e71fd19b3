from __future__ import annotations

import asyncio
import datetime as dt
import logging
import uuid
from collections import defaultdict
from typing import Dict, List, Optional

from .repositories import CustomerLookup, CustomerRepository, EntryStore, ProjectLookup, ProjectRepository
from .rounding import round_quarter_hour
from .schemas import (
    ActiveSessionView,
    CommandResult,
    CommandStatus,
    CustomerRecord,
    DailySummary,
    EntryAdjustRequest,
    HistoryEntry,
    ProjectListItem,
    ProjectRecord,
    SessionStatus,
    TimeEntryCreate,
    TimeEntryRecord,
    TimeEntryUpdate,
    TimerSnapshot,
    TimerStartRequest,
    TimerStopRequest,
)
from .state import SessionState
from .utils import ZERO, SystemClock, TimeSource, elapsed, ensure_utc, resolve_timezone, to_local

logger = logging.getLogger(__name__)

UNASSIGNED_CUSTOMER = "Unassigned"
UNTITLED_PROJECT = "Untitled Project"


class _NameCache:
    """Per-call project/customer lookups, one repository round-trip per id."""

    def __init__(self, projects: ProjectLookup, customers: CustomerLookup):
        self._projects = projects
        self._customers = customers
        self._project_cache: Dict[uuid.UUID, Optional[ProjectRecord]] = {}
        self._customer_cache: Dict[uuid.UUID, Optional[CustomerRecord]] = {}

    async def project_name(self, project_id: uuid.UUID) -> str:
        if project_id not in self._project_cache:
            self._project_cache[project_id] = await self._projects.get_by_id(project_id)
        project = self._project_cache[project_id]
        return project.name if project else UNTITLED_PROJECT

    async def customer_name(self, customer_id: uuid.UUID) -> str:
        if customer_id not in self._customer_cache:
            self._customer_cache[customer_id] = await self._customers.get_by_id(customer_id)
        customer = self._customer_cache[customer_id]
        return customer.name if customer else UNASSIGNED_CUSTOMER


class TimerSessionService:
    """Session state machine and duration accounting for a single user.

    Every public coroutine runs under one ``asyncio.Lock`` so commands and
    queries are fully serialized. The paused-session record lives only in
    memory; a restart breaks the pause/resume chain and leaves the stored
    entries as independent segments.
    """

    def __init__(
        self,
        entries: EntryStore,
        projects: ProjectLookup,
        customers: CustomerLookup,
        clock: Optional[TimeSource] = None,
        zone: Optional[dt.tzinfo] = None,
    ):
        if entries is None:
            raise ValueError("entries store is required")
        if projects is None:
            raise ValueError("project lookup is required")
        if customers is None:
            raise ValueError("customer lookup is required")
        self._entries = entries
        self._projects = projects
        self._customers = customers
        self._clock = clock or SystemClock()
        self._zone = zone or resolve_timezone()
        self._gate = asyncio.Lock()
        self._state: Optional[SessionState] = None

    @property
    def session_state(self) -> Optional[SessionState]:
        return self._state

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def get_snapshot(self, local_date: Optional[dt.date] = None) -> TimerSnapshot:
        async with self._gate:
            return await self._build_snapshot(local_date)

    async def get_history(self, local_date: dt.date) -> List[HistoryEntry]:
        async with self._gate:
            names = _NameCache(self._projects, self._customers)
            history: List[HistoryEntry] = []
            for entry in await self._entries.get_by_local_date(local_date):
                row = await self._history_row(entry, names)
                if row is not None:
                    history.append(row)
            return history

    async def get_daily_summary(self, start_date: dt.date, end_date: dt.date) -> List[DailySummary]:
        if end_date < start_date:
            raise ValueError("End date must be greater than or equal to start date")

        async with self._gate:
            names = _NameCache(self._projects, self._customers)
            active = await self._entries.get_active()
            summaries: List[DailySummary] = []
            current = start_date
            while current <= end_date:
                rows: List[HistoryEntry] = []
                for entry in await self._entries.get_by_local_date(current):
                    row = await self._history_row(entry, names)
                    if row is not None:
                        rows.append(row)
                if active is not None and active.start_local.date() == current:
                    rows.insert(0, await self._running_row(active, names))

                if rows:
                    summaries.append(self._summarize(current, rows))
                current += dt.timedelta(days=1)
            return summaries

    @staticmethod
    def _summarize(local_date: dt.date, rows: List[HistoryEntry]) -> DailySummary:
        per_project: Dict[uuid.UUID, dt.timedelta] = defaultdict(lambda: ZERO)
        total = ZERO
        for row in rows:
            total += row.duration
            if row.duration > ZERO:
                per_project[row.project_id] += row.duration
        # Billing total is the sum of per-project rounded totals.
        rounded_total = sum(
            (round_quarter_hour(duration, allow_zero=True) for duration in per_project.values()),
            ZERO,
        )
        return DailySummary(
            local_date=local_date,
            total_duration=total,
            total_rounded_duration=rounded_total,
            entries=rows,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def start(self, options: TimerStartRequest) -> CommandResult:
        if options is None:
            raise ValueError("start options are required")

        async with self._gate:
            if options.project_id is None:
                return await self._failure(CommandStatus.VALIDATION_FAILED, "Project is required.")

            project = await self._projects.get_by_id(options.project_id)
            if project is None:
                return await self._failure(CommandStatus.NOT_FOUND, "Project not found.")
            if not project.is_active:
                return await self._failure(CommandStatus.VALIDATION_FAILED, "Project is archived.")
            if options.customer_id is not None and options.customer_id != project.customer_id:
                return await self._failure(
                    CommandStatus.VALIDATION_FAILED,
                    "Project does not belong to the specified customer.",
                )

            start_local = to_local(options.start_override or self._clock.now(), self._zone)

            active = await self._entries.get_active()
            if active is not None:
                if not options.force_restart:
                    return await self._failure(
                        CommandStatus.CONFLICT,
                        "A session is already running. Use force_restart to override.",
                    )
                stopped = await self._close_entry(active, start_local)
                if stopped is None:
                    return await self._failure(CommandStatus.FAILURE, "Failed to stop the running session.")
                self._state = None
                logger.info("Running session replaced by forced restart", extra={"entry_id": str(active.id)})

            created = await self._entries.create(
                TimeEntryCreate(
                    customer_id=project.customer_id,
                    project_id=project.id,
                    start_local=start_local,
                    start_utc=ensure_utc(start_local, self._zone),
                    notes=options.notes or "",
                    billable=options.billable,
                    tag=options.tag,
                )
            )
            self._state = SessionState.started(created)
            logger.info(
                "Timer started",
                extra={"entry_id": str(created.id), "project_id": str(project.id)},
            )
            return await self._success(f"Timer started for {project.name}.")

    async def pause(self) -> CommandResult:
        async with self._gate:
            return await self._pause_locked()

    async def _pause_locked(self) -> CommandResult:
        active = await self._entries.get_active()
        if active is None:
            return await self._failure(CommandStatus.NOT_FOUND, "No active session to pause.")

        stop_local = self._clamp_to_start(active, self._now_local())
        updated = await self._close_entry(active, stop_local)
        if updated is None:
            return await self._failure(CommandStatus.FAILURE, "Failed to pause the active session.")

        segment = elapsed(active.start_local, stop_local)
        previous = self._state.accumulated_duration if self._state is not None else ZERO
        accumulated = previous + segment
        changes = dict(
            notes=updated.notes,
            billable=updated.billable,
            tag=updated.tag,
            accumulated_duration=accumulated,
            rounded_duration=round_quarter_hour(accumulated, allow_zero=True),
            last_interaction_utc=updated.last_modified_utc,
            last_entry_id=updated.id,
            last_start_local=updated.start_local,
            last_start_utc=updated.start_utc,
            last_end_local=updated.end_local,
            last_end_utc=updated.end_utc,
            is_paused=True,
        )
        if self._state is None:
            self._state = SessionState(project_id=updated.project_id, customer_id=updated.customer_id, **changes)
        else:
            self._state = self._state.evolve(**changes)
        logger.info(
            "Timer paused",
            extra={"entry_id": str(updated.id), "accumulated_seconds": accumulated.total_seconds()},
        )
        return await self._success("Timer paused.")

    async def resume(self) -> CommandResult:
        async with self._gate:
            return await self._resume_locked()

    async def _resume_locked(self) -> CommandResult:
        if await self._entries.get_active() is not None:
            return await self._failure(CommandStatus.CONFLICT, "A session is already running.")

        state = self._state
        if state is None or not state.is_paused:
            return await self._failure(CommandStatus.NOT_FOUND, "No paused session to resume.")

        project = await self._projects.get_by_id(state.project_id)
        if project is None:
            self._state = None
            logger.warning("Paused session dropped, project is gone", extra={"project_id": str(state.project_id)})
            return await self._failure(CommandStatus.NOT_FOUND, "Project no longer exists.")

        start_local = self._now_local()
        if state.last_end_local is not None:
            last_end_local = to_local(state.last_end_local, self._zone)
            if start_local < last_end_local:
                start_local = last_end_local

        created = await self._entries.create(
            TimeEntryCreate(
                customer_id=state.customer_id,
                project_id=project.id,
                start_local=start_local,
                start_utc=ensure_utc(start_local, self._zone),
                notes=state.notes,
                billable=state.billable,
                tag=state.tag,
            )
        )
        self._state = state.evolve(
            last_interaction_utc=created.last_modified_utc,
            last_entry_id=created.id,
            last_start_local=created.start_local,
            last_start_utc=created.start_utc,
            last_end_local=None,
            last_end_utc=None,
            is_paused=False,
        )
        logger.info("Timer resumed", extra={"entry_id": str(created.id), "project_id": str(project.id)})
        return await self._success(f"Timer resumed for {project.name}.")

    async def toggle(self) -> CommandResult:
        """Pause a running session or resume a paused one."""
        async with self._gate:
            if await self._entries.get_active() is not None:
                return await self._pause_locked()
            if self._state is not None and self._state.is_paused:
                return await self._resume_locked()
            return await self._failure(CommandStatus.NOT_FOUND, "Nothing to toggle. Start a project first.")

    async def stop(self, options: Optional[TimerStopRequest] = None) -> CommandResult:
        options = options or TimerStopRequest()
        async with self._gate:
            active = await self._entries.get_active()
            if active is None:
                return await self._failure(CommandStatus.NOT_FOUND, "No active session to stop.")

            candidate = to_local(options.stop_override, self._zone) if options.stop_override else self._now_local()
            stop_local = self._clamp_to_start(active, candidate)
            updated = await self._close_entry(
                active,
                stop_local,
                notes=options.notes,
                billable=options.billable,
                tag=options.tag,
            )
            if updated is None:
                return await self._failure(CommandStatus.FAILURE, "Failed to stop the active session.")

            self._state = None
            logger.info("Timer stopped", extra={"entry_id": str(updated.id)})
            return await self._success("Timer stopped.")

    async def cancel(self) -> CommandResult:
        async with self._gate:
            active = await self._entries.get_active()
            if active is None:
                return await self._failure(CommandStatus.NOT_FOUND, "No active session to cancel.")

            deleted = await self._entries.delete(active.id)
            if not deleted:
                logger.warning("Cancelling the active session failed", extra={"entry_id": str(active.id)})
                return await self._failure(CommandStatus.FAILURE, "Failed to cancel the active session.")

            self._state = None
            logger.info("Timer cancelled", extra={"entry_id": str(active.id)})
            return await self._success("Active session cancelled.")

    async def update_notes(self, notes: Optional[str]) -> CommandResult:
        note_value = notes or ""
        async with self._gate:
            active = await self._entries.get_active()
            if active is not None:
                updated = await self._entries.update(active.id, TimeEntryUpdate(notes=note_value))
                if updated is None:
                    return await self._failure(CommandStatus.FAILURE, "Failed to update notes for the active session.")
                if self._state is not None:
                    self._state = self._state.evolve(
                        notes=updated.notes,
                        last_interaction_utc=updated.last_modified_utc,
                    )
                return await self._success("Notes updated for the active session.")

            state = self._state
            if state is not None and state.is_paused:
                if state.last_entry_id is not None:
                    updated = await self._entries.update(state.last_entry_id, TimeEntryUpdate(notes=note_value))
                    if updated is None:
                        return await self._failure(
                            CommandStatus.FAILURE,
                            "Failed to update notes for the paused session.",
                        )
                    self._state = state.evolve(notes=updated.notes, last_interaction_utc=updated.last_modified_utc)
                else:
                    self._state = state.evolve(notes=note_value.strip())
                return await self._success("Notes updated for the paused session.")

            return await self._failure(CommandStatus.NOT_FOUND, "No active or paused session to update notes for.")

    async def adjust_entry(self, entry_id: uuid.UUID, options: EntryAdjustRequest) -> CommandResult:
        if entry_id is None:
            raise ValueError("entry_id is required")
        if options is None:
            raise ValueError("adjustment options are required")

        async with self._gate:
            entry = await self._entries.get_by_id(entry_id)
            if entry is None or entry.is_deleted:
                return await self._failure(CommandStatus.NOT_FOUND, "Time entry not found.")

            original_date = entry.start_local.date()
            if entry.is_open:
                return await self._failure(
                    CommandStatus.VALIDATION_FAILED,
                    "Stop the active session before editing it.",
                    original_date,
                )

            target_start = to_local(options.start_local, self._zone) if options.start_local else entry.start_local
            target_end = to_local(options.end_local, self._zone) if options.end_local else entry.end_local
            if target_end <= target_start:
                return await self._failure(
                    CommandStatus.VALIDATION_FAILED,
                    "End time must be later than the start time.",
                    original_date,
                )

            start_changed = options.start_local is not None and target_start != entry.start_local
            end_changed = options.end_local is not None and target_end != entry.end_local
            notes_changed = options.notes is not None and options.notes.strip() != entry.notes
            if not (start_changed or end_changed or notes_changed):
                return await self._failure(CommandStatus.VALIDATION_FAILED, "No changes detected.", original_date)

            changes = TimeEntryUpdate()
            if start_changed:
                changes.start_local = target_start
                changes.start_utc = ensure_utc(target_start, self._zone)
            if end_changed:
                changes.end_local = target_end
                changes.end_utc = ensure_utc(target_end, self._zone)
            if notes_changed:
                changes.notes = options.notes

            updated = await self._entries.update(entry.id, changes)
            if updated is None:
                return await self._failure(
                    CommandStatus.FAILURE,
                    "Failed to update the selected time entry.",
                    original_date,
                )
            logger.info("Time entry adjusted", extra={"entry_id": str(entry.id)})
            return await self._success("Time entry updated.", original_date)

    async def delete_entry(self, entry_id: uuid.UUID) -> CommandResult:
        if entry_id is None:
            raise ValueError("entry_id is required")

        async with self._gate:
            entry = await self._entries.get_by_id(entry_id)
            if entry is None or entry.is_deleted:
                return await self._failure(CommandStatus.NOT_FOUND, "Time entry not found.")

            snapshot_date = entry.start_local.date()
            if entry.is_open:
                return await self._failure(
                    CommandStatus.VALIDATION_FAILED,
                    "Stop the active session before deleting it.",
                    snapshot_date,
                )

            if not await self._entries.delete(entry.id):
                return await self._failure(
                    CommandStatus.FAILURE,
                    "Failed to delete the selected time entry.",
                    snapshot_date,
                )

            if self._state is not None and self._state.tracks(entry.id):
                self._state = None
                logger.info("Session chain broken by entry deletion", extra={"entry_id": str(entry.id)})
            return await self._success("Time entry deleted.", snapshot_date)

    # ------------------------------------------------------------------
    # Internals (caller holds the gate)
    # ------------------------------------------------------------------
    def _now_local(self) -> dt.datetime:
        return to_local(self._clock.now(), self._zone)

    def _clamp_to_start(self, entry: TimeEntryRecord, stop_local: dt.datetime) -> dt.datetime:
        start_local = to_local(entry.start_local, self._zone)
        return start_local if stop_local < start_local else stop_local

    async def _close_entry(
        self,
        entry: TimeEntryRecord,
        stop_local: dt.datetime,
        notes: Optional[str] = None,
        billable: Optional[bool] = None,
        tag: Optional[str] = None,
    ) -> Optional[TimeEntryRecord]:
        stop_local = self._clamp_to_start(entry, stop_local)
        return await self._entries.update(
            entry.id,
            TimeEntryUpdate(
                end_local=stop_local,
                end_utc=ensure_utc(stop_local, self._zone),
                notes=notes,
                billable=billable,
                tag=tag,
            ),
        )

    async def _success(self, message: str, snapshot_date: Optional[dt.date] = None) -> CommandResult:
        snapshot = await self._build_snapshot(snapshot_date)
        return CommandResult(status=CommandStatus.SUCCESS, snapshot=snapshot, message=message)

    async def _failure(
        self,
        status: CommandStatus,
        message: str,
        snapshot_date: Optional[dt.date] = None,
    ) -> CommandResult:
        snapshot = await self._build_snapshot(snapshot_date)
        return CommandResult(status=status, snapshot=snapshot, message=message)

    async def _history_row(self, entry: TimeEntryRecord, names: _NameCache) -> Optional[HistoryEntry]:
        if entry.is_open or entry.is_deleted:
            return None
        duration = elapsed(entry.start_local, entry.end_local)
        return HistoryEntry(
            time_entry_id=entry.id,
            customer_id=entry.customer_id,
            customer_name=await names.customer_name(entry.customer_id),
            project_id=entry.project_id,
            project_name=await names.project_name(entry.project_id),
            start_local=entry.start_local,
            end_local=entry.end_local,
            duration=duration,
            rounded_duration=round_quarter_hour(duration, allow_zero=True),
            billable=entry.billable,
            notes=entry.notes,
            tag=entry.tag,
        )

    async def _running_row(self, entry: TimeEntryRecord, names: _NameCache) -> HistoryEntry:
        now_local = self._now_local()
        duration = elapsed(entry.start_local, now_local)
        return HistoryEntry(
            time_entry_id=entry.id,
            customer_id=entry.customer_id,
            customer_name=await names.customer_name(entry.customer_id),
            project_id=entry.project_id,
            project_name=await names.project_name(entry.project_id),
            start_local=entry.start_local,
            end_local=None,
            provisional_end_local=now_local,
            duration=duration,
            rounded_duration=round_quarter_hour(duration, allow_zero=True),
            billable=entry.billable,
            notes=entry.notes,
            tag=entry.tag,
            is_running=True,
        )

    async def _build_snapshot(self, local_date: Optional[dt.date]) -> TimerSnapshot:
        target_date = local_date or self._now_local().date()
        active = await self._entries.get_active()
        entries = await self._entries.get_by_local_date(target_date)
        names = _NameCache(self._projects, self._customers)

        status = SessionStatus.IDLE
        active_view: Optional[ActiveSessionView] = None
        state = self._state

        if active is not None:
            accumulated = state.accumulated_duration if state is not None else ZERO
            total = accumulated + elapsed(active.start_local, self._now_local())
            active_view = ActiveSessionView(
                time_entry_id=active.id,
                customer_id=active.customer_id,
                project_id=active.project_id,
                customer_name=await names.customer_name(active.customer_id),
                project_name=await names.project_name(active.project_id),
                start_local=active.start_local,
                start_utc=active.start_utc,
                last_interaction_utc=active.last_modified_utc,
                accumulated_duration=total,
                rounded_duration=round_quarter_hour(total, allow_zero=False),
                is_paused=False,
                notes=active.notes,
                billable=active.billable,
                tag=active.tag,
            )
            status = SessionStatus.RUNNING
        elif state is not None and state.is_paused:
            active_view = ActiveSessionView(
                time_entry_id=state.last_entry_id,
                customer_id=state.customer_id,
                project_id=state.project_id,
                customer_name=await names.customer_name(state.customer_id),
                project_name=await names.project_name(state.project_id),
                start_local=state.last_start_local,
                start_utc=state.last_start_utc,
                last_interaction_utc=state.last_interaction_utc,
                accumulated_duration=state.accumulated_duration,
                rounded_duration=state.rounded_duration,
                is_paused=True,
                notes=state.notes,
                billable=state.billable,
                tag=state.tag,
            )
            status = SessionStatus.PAUSED

        history: List[HistoryEntry] = []
        for entry in entries:
            row = await self._history_row(entry, names)
            if row is not None:
                history.append(row)

        if active is not None and active.start_local.date() == target_date:
            history.insert(0, await self._running_row(active, names))

        return TimerSnapshot(status=status, active_session=active_view, local_date=target_date, entries=history)


class ProjectService:
    """Read-side helpers over projects and customers."""

    def __init__(self, projects: ProjectRepository, customers: CustomerRepository):
        if projects is None or customers is None:
            raise ValueError("project and customer repositories are required")
        self._projects = projects
        self._customers = customers

    async def list_projects(self, include_inactive: bool = False) -> List[ProjectListItem]:
        results: List[ProjectListItem] = []
        for customer in await self._customers.get_all():
            for project in await self._projects.get_by_customer(customer.id, include_inactive):
                results.append(
                    ProjectListItem(
                        project_id=project.id,
                        customer_id=customer.id,
                        customer_name=customer.name or UNASSIGNED_CUSTOMER,
                        project_name=project.name,
                        is_active=project.is_active,
                    )
                )
        return results
