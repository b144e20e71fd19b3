from __future__ import annotations

import datetime as dt
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from .config import Settings, settings as default_settings
from .database import create_engine, create_session_factory, init_models
from .logging_setup import configure_logging
from .middleware import ErrorLoggingMiddleware
from .repositories import CustomerRepository, ProjectRepository, TimeEntryRepository
from .schemas import (
    CommandResult,
    CommandStatus,
    CustomerCreateRequest,
    CustomerRecord,
    DailySummary,
    EntryAdjustRequest,
    HistoryEntry,
    NotesUpdateRequest,
    ProjectCreateRequest,
    ProjectListItem,
    ProjectRecord,
    ProjectUpdateRequest,
    SessionStatus,
    TimerSnapshot,
    TimerStartRequest,
    TimerStopRequest,
)
from .services import ProjectService, TimerSessionService
from .utils import TimeSource, resolve_timezone

logger = logging.getLogger(__name__)

STATUS_CODES = {
    CommandStatus.SUCCESS: 200,
    CommandStatus.VALIDATION_FAILED: 422,
    CommandStatus.CONFLICT: 409,
    CommandStatus.NOT_FOUND: 404,
    CommandStatus.FAILURE: 500,
}


def _command_response(result: CommandResult) -> JSONResponse:
    if not result.succeeded:
        logger.info("Timer command rejected", extra={"status": result.status.value, "detail": result.message})
    return JSONResponse(status_code=STATUS_CODES[result.status], content=result.model_dump(mode="json"))


def _parse_date(value: Optional[str], field: str) -> Optional[dt.date]:
    if value is None or not value.strip():
        return None
    try:
        return dt.date.fromisoformat(value.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field} date: {value}")


def get_timer(request: Request) -> TimerSessionService:
    return request.app.state.timer_service


def get_project_repository(request: Request) -> ProjectRepository:
    return request.app.state.project_repository


def get_customer_repository(request: Request) -> CustomerRepository:
    return request.app.state.customer_repository


def get_project_service(request: Request) -> ProjectService:
    return request.app.state.project_service


def create_app(app_settings: Optional[Settings] = None, clock: Optional[TimeSource] = None) -> FastAPI:
    config = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(config.log_level)
        engine = create_engine(config.resolved_database_url)
        await init_models(engine)
        session_factory = create_session_factory(engine)
        zone = resolve_timezone(config.timezone)

        customers = CustomerRepository(session_factory)
        projects = ProjectRepository(session_factory)
        entries = TimeEntryRepository(session_factory, zone)
        app.state.customer_repository = customers
        app.state.project_repository = projects
        app.state.project_service = ProjectService(projects, customers)
        app.state.timer_service = TimerSessionService(entries, projects, customers, clock=clock, zone=zone)
        logger.info("WorkTimer ready", extra={"database_url": config.resolved_database_url, "zone": str(zone)})
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    app.add_middleware(ErrorLoggingMiddleware)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Timer queries
    # ------------------------------------------------------------------
    @app.get("/timer/snapshot", response_model=TimerSnapshot)
    async def timer_snapshot(
        date: Optional[str] = None,
        timer: TimerSessionService = Depends(get_timer),
    ) -> TimerSnapshot:
        return await timer.get_snapshot(_parse_date(date, "snapshot"))

    @app.get("/timer/history", response_model=List[HistoryEntry])
    async def timer_history(date: str, timer: TimerSessionService = Depends(get_timer)) -> List[HistoryEntry]:
        local_date = _parse_date(date, "history")
        if local_date is None:
            raise HTTPException(status_code=400, detail="A date is required")
        return await timer.get_history(local_date)

    @app.get("/timer/daily-summary", response_model=List[DailySummary])
    async def timer_daily_summary(
        start: str,
        end: str,
        timer: TimerSessionService = Depends(get_timer),
    ) -> List[DailySummary]:
        start_date = _parse_date(start, "start")
        end_date = _parse_date(end, "end")
        if start_date is None or end_date is None:
            raise HTTPException(status_code=400, detail="Both start and end dates are required")
        try:
            return await timer.get_daily_summary(start_date, end_date)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    # ------------------------------------------------------------------
    # Timer commands
    # ------------------------------------------------------------------
    @app.post("/timer/start")
    async def timer_start(payload: TimerStartRequest, timer: TimerSessionService = Depends(get_timer)) -> JSONResponse:
        return _command_response(await timer.start(payload))

    @app.post("/timer/pause")
    async def timer_pause(timer: TimerSessionService = Depends(get_timer)) -> JSONResponse:
        return _command_response(await timer.pause())

    @app.post("/timer/resume")
    async def timer_resume(timer: TimerSessionService = Depends(get_timer)) -> JSONResponse:
        return _command_response(await timer.resume())

    @app.post("/timer/toggle")
    async def timer_toggle(timer: TimerSessionService = Depends(get_timer)) -> JSONResponse:
        return _command_response(await timer.toggle())

    @app.post("/timer/stop")
    async def timer_stop(
        payload: Optional[TimerStopRequest] = None,
        timer: TimerSessionService = Depends(get_timer),
    ) -> JSONResponse:
        return _command_response(await timer.stop(payload))

    @app.post("/timer/cancel")
    async def timer_cancel(timer: TimerSessionService = Depends(get_timer)) -> JSONResponse:
        return _command_response(await timer.cancel())

    @app.put("/timer/notes")
    async def timer_notes(payload: NotesUpdateRequest, timer: TimerSessionService = Depends(get_timer)) -> JSONResponse:
        return _command_response(await timer.update_notes(payload.notes))

    @app.put("/timer/entries/{entry_id}")
    async def adjust_entry(
        entry_id: uuid.UUID,
        payload: EntryAdjustRequest,
        timer: TimerSessionService = Depends(get_timer),
    ) -> JSONResponse:
        return _command_response(await timer.adjust_entry(entry_id, payload))

    @app.delete("/timer/entries/{entry_id}")
    async def delete_entry(entry_id: uuid.UUID, timer: TimerSessionService = Depends(get_timer)) -> JSONResponse:
        return _command_response(await timer.delete_entry(entry_id))

    # ------------------------------------------------------------------
    # Customers and projects
    # ------------------------------------------------------------------
    @app.get("/customers", response_model=List[CustomerRecord])
    async def list_customers(customers: CustomerRepository = Depends(get_customer_repository)) -> List[CustomerRecord]:
        return await customers.get_all()

    @app.post("/customers", response_model=CustomerRecord, status_code=status.HTTP_201_CREATED)
    async def create_customer(
        payload: CustomerCreateRequest,
        customers: CustomerRepository = Depends(get_customer_repository),
    ) -> CustomerRecord:
        try:
            return await customers.create(payload)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))

    @app.get("/projects", response_model=List[ProjectListItem])
    async def list_projects(
        include_inactive: bool = False,
        service: ProjectService = Depends(get_project_service),
    ) -> List[ProjectListItem]:
        return await service.list_projects(include_inactive)

    @app.post("/projects", response_model=ProjectRecord, status_code=status.HTTP_201_CREATED)
    async def create_project(
        payload: ProjectCreateRequest,
        projects: ProjectRepository = Depends(get_project_repository),
        customers: CustomerRepository = Depends(get_customer_repository),
    ) -> ProjectRecord:
        if await customers.get_by_id(payload.customer_id) is None:
            raise HTTPException(status_code=404, detail="Customer not found")
        try:
            return await projects.create(payload)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))

    @app.put("/projects/{project_id}", response_model=ProjectRecord)
    async def update_project(
        project_id: uuid.UUID,
        payload: ProjectUpdateRequest,
        projects: ProjectRepository = Depends(get_project_repository),
    ) -> ProjectRecord:
        try:
            project = await projects.update(project_id, payload)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        if project is None:
            raise HTTPException(status_code=404, detail="Project or customer not found")
        return project

    @app.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_project(
        project_id: uuid.UUID,
        projects: ProjectRepository = Depends(get_project_repository),
        timer: TimerSessionService = Depends(get_timer),
    ) -> Response:
        snapshot = await timer.get_snapshot()
        if snapshot.status is SessionStatus.RUNNING and snapshot.active_session.project_id == project_id:
            raise HTTPException(status_code=409, detail="Stop the running session before deleting its project")
        if not await projects.delete(project_id):
            raise HTTPException(status_code=404, detail="Project not found")
        logger.info("Project deleted", extra={"project_id": str(project_id)})
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


app = create_app()
