"""
api.py

REST API layer for the Engineering Project Scheduler & Tolerance Analyzer.

Framework : FastAPI (every route is also exposed as an MCP tool at /mcp)

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /projects                                   project CRUD
  │   ├── /{project_id}/calendar                  working calendar & date arithmetic
  │   ├── /{project_id}/resources                 resources
  │   │   └── /calendars                          resource-specific calendars
  │   ├── /{project_id}/tasks                     tasks, progress, workflow transitions
  │   │   └── /{task_id}/dependencies             dependency wiring
  │   ├── /{project_id}/milestones                milestones
  │   ├── /{project_id}/schedule                  critical-path schedule
  │   ├── /{project_id}/baselines                 baselines & variance reports
  │   └── /{project_id}/earned-value              earned-value metrics
  ├── /features                                   toleranced features
  ├── /stackups                                   stackups, analysis, sensitivity
  └── /capability                                 process capability of a sample

Error handling
--------------
  NotFoundError / ReferenceNotFoundError          → 404
  CircularDependencyError / InvalidTransitionError → 409
  other DomainError, ApplicationError, ValueError → 422
  Unhandled                                       → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>", "kind": "<error kind>" }

Running
-------
  uvicorn api:app --reload
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, EmailStr, Field, field_validator

from application import (
    # Exceptions
    ApplicationError,
    NotFoundError,
    # Use-case commands
    AddDependencyCommand,
    AddMilestoneCommand,
    AddResourceCommand,
    AddTaskCommand,
    AnalyzeStackupCommand,
    CapabilityCommand,
    ComputeScheduleCommand,
    CreateBaselineCommand,
    CreateFeatureCommand,
    CreateProjectCommand,
    CreateStackupCommand,
    RemoveDependencyCommand,
    TransitionTaskCommand,
    RegisterResourceCalendarCommand,
    UpdateProjectCalendarCommand,
    UpdateTaskProgressCommand,
    # Use-case classes
    AbstractUnitOfWork,
    CreateProjectUseCase,
)
from errors import BudgetExceededError, CircularDependencyError, DomainError, ErrorKind
from infrastructure import InMemoryUnitOfWork
from model import (
    AnalysisMethod,
    BaselineType,
    DependencyType,
    Distribution,
    MonteCarloSettings,
    ResourceAssignment,
    SchedulingConfig,
    SpecLimits,
    StackupContribution,
    TaskDependency,
    TaskStatus,
    TaskType,
)
from work_calendar import CalendarException, ExceptionType, Holiday

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Engineering Project Scheduler & Tolerance Analyzer API",
    version="1.0.0",
    description=(
        "REST API for engineering project scheduling (critical path, calendars, "
        "resource utilization, workflow, baselines and earned value) and "
        "dimensional tolerance analysis (worst case, RSS, Monte Carlo, "
        "sensitivity and process capability)."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CIRCULAR_DEPENDENCY: 409,
    ErrorKind.INVALID_TRANSITION: 409,
}


@app.exception_handler(DomainError)
async def domain_error_handler(request, exc: DomainError):
    content: Dict[str, Any] = {"detail": str(exc), "kind": exc.kind.value}
    if isinstance(exc, CircularDependencyError):
        content["cycle"] = [str(n) for n in exc.cycle]
    elif isinstance(exc, BudgetExceededError):
        content["diagnostic"] = exc.diagnostic
    status_code = _STATUS_BY_KIND.get(exc.kind, 422)
    logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind.value, exc)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc), "kind": ErrorKind.NOT_FOUND.value})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    """Returns the in-memory Unit of Work (no database required)."""
    return InMemoryUnitOfWork()


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


def _one_of(enum_cls, value: str, label: str) -> str:
    valid = {e.value for e in enum_cls}
    if value not in valid:
        raise ValueError(f"{label} must be one of: {sorted(valid)}")
    return value


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

# ---------------------------------------------------------------------------
# Project & calendar schemas
# ---------------------------------------------------------------------------

class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    start_date: Optional[date] = None


class HolidayRequest(BaseModel):
    date: date
    name: str = Field(default="")
    recurring: bool = False


class CalendarExceptionRequest(BaseModel):
    date: date
    exception_type: str = Field(..., description="One of: working, non_working, half_day")
    note: str = Field(default="")

    @field_validator("exception_type")
    @classmethod
    def validate_exception_type(cls, v: str) -> str:
        return _one_of(ExceptionType, v, "exception_type")


class UpdateCalendarRequest(BaseModel):
    name: str = Field(default="Standard", min_length=1, max_length=200)
    working_weekdays: List[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4],
        min_length=1,
        description="ISO weekday numbers counted from 0 (Monday) to 6 (Sunday).",
    )
    start_hour: int = Field(default=9, ge=0, le=23)
    end_hour: int = Field(default=17, ge=0, le=23)
    daily_hours: float = Field(default=8.0, gt=0.0, le=24.0)
    holidays: List[HolidayRequest] = Field(default_factory=list)
    exceptions: List[CalendarExceptionRequest] = Field(default_factory=list)

    @field_validator("working_weekdays")
    @classmethod
    def validate_weekdays(cls, v: List[int]) -> List[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("working_weekdays entries must be between 0 and 6")
        return v

    def to_fields(self) -> Dict[str, Any]:
        return dict(
            name=self.name,
            working_weekdays=self.working_weekdays,
            start_hour=self.start_hour,
            end_hour=self.end_hour,
            daily_hours=self.daily_hours,
            holidays=[Holiday(h.date, h.name, h.recurring) for h in self.holidays],
            exceptions=[
                CalendarException(e.date, ExceptionType(e.exception_type), e.note)
                for e in self.exceptions
            ],
        )


# ---------------------------------------------------------------------------
# Resource & task schemas
# ---------------------------------------------------------------------------

class CreateResourceRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    role: str = Field(default="")
    hourly_rate: float = Field(..., ge=0.0)
    daily_hours: float = Field(default=8.0, gt=0.0, le=24.0)
    availability_pct: float = Field(default=100.0, ge=0.0, le=100.0)
    calendar_id: Optional[uuid.UUID] = Field(
        default=None, description="Id returned by POST /resources/calendars; defaults to the project calendar."
    )


class AssignmentRequest(BaseModel):
    resource_id: uuid.UUID
    allocation_pct: float = Field(default=100.0, ge=0.0, le=100.0)
    assigned_hours: Optional[float] = Field(default=None, ge=0.0)
    full_time: bool = False
    rate_override: Optional[float] = Field(default=None, ge=0.0)
    role_in_task: str = Field(default="")


class CreateTaskRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    task_type: str = Field(
        default=TaskType.EFFORT_DRIVEN.value,
        description="One of: effort_driven, fixed_duration, fixed_work, milestone",
    )
    estimated_hours: float = Field(default=0.0, ge=0.0)
    duration_days: Optional[float] = Field(default=None, ge=0.0)
    work_units: Optional[float] = Field(default=None, ge=0.0)
    assignments: List[AssignmentRequest] = Field(default_factory=list)
    start_date: Optional[date] = None
    due_date: Optional[date] = None

    @field_validator("task_type")
    @classmethod
    def validate_task_type(cls, v: str) -> str:
        return _one_of(TaskType, v, "task_type")


class UpdateProgressRequest(BaseModel):
    progress_pct: float = Field(..., ge=0.0, le=100.0)
    actual_hours: Optional[float] = Field(default=None, ge=0.0)
    actual_cost: Optional[float] = Field(default=None, ge=0.0)


class TransitionRequest(BaseModel):
    from_status: str = Field(..., description="Current status of the task.")
    to_status: str = Field(..., description="Requested status.")

    @field_validator("from_status", "to_status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return _one_of(TaskStatus, v, "status")


class DependencyRequest(BaseModel):
    predecessor_id: uuid.UUID
    dependency_type: str = Field(
        default=DependencyType.FINISH_TO_START.value,
        description="One of: finish_to_start, start_to_start, finish_to_finish, start_to_finish",
    )
    lag_days: float = Field(default=0.0, description="Positive = lag, negative = lead.")

    @field_validator("dependency_type")
    @classmethod
    def validate_dependency_type(cls, v: str) -> str:
        return _one_of(DependencyType, v, "dependency_type")


class CreateMilestoneRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    target_date: date
    dependencies: List[DependencyRequest] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Scheduling & baseline schemas
# ---------------------------------------------------------------------------

class SchedulingConfigRequest(BaseModel):
    working_hours_per_day: float = Field(default=8.0, gt=0.0, le=24.0)
    working_days_per_week: int = Field(default=5, ge=1, le=7)
    buffer_percentage: float = Field(default=0.10, ge=0.0, le=1.0)

    def to_config(self) -> SchedulingConfig:
        return SchedulingConfig(
            working_hours_per_day=self.working_hours_per_day,
            working_days_per_week=self.working_days_per_week,
            buffer_percentage=self.buffer_percentage,
        )


class ComputeScheduleRequest(SchedulingConfigRequest):
    apply_dates: bool = Field(
        default=False, description="Write the computed windows back to the tasks."
    )
    as_of: Optional[date] = Field(
        default=None, description="Date used to evaluate milestone status (default today)."
    )


class CreateBaselineRequest(SchedulingConfigRequest):
    name: str = Field(..., min_length=1, max_length=200)
    author: str = Field(..., min_length=1, max_length=200)
    baseline_type: str = Field(
        default=BaselineType.INITIAL.value,
        description="One of: initial, approved, working, archived",
    )
    description: str = Field(default="")

    @field_validator("baseline_type")
    @classmethod
    def validate_baseline_type(cls, v: str) -> str:
        return _one_of(BaselineType, v, "baseline_type")


# ---------------------------------------------------------------------------
# Tolerance schemas
# ---------------------------------------------------------------------------

class CreateFeatureRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    nominal: float
    plus_tolerance: float = Field(..., ge=0.0)
    minus_tolerance: float = Field(..., ge=0.0)
    distribution: str = Field(
        default=Distribution.NORMAL.value,
        description="One of: normal, uniform, triangular, log_normal",
    )
    component_id: Optional[uuid.UUID] = None
    description: str = Field(default="")

    @field_validator("distribution")
    @classmethod
    def validate_distribution(cls, v: str) -> str:
        return _one_of(Distribution, v, "distribution")


class ContributionRequest(BaseModel):
    feature_id: uuid.UUID
    component_id: Optional[uuid.UUID] = None
    direction: float = Field(default=1.0)
    half_count: bool = False


class SpecLimitsRequest(BaseModel):
    lsl: Optional[float] = None
    usl: Optional[float] = None
    target: Optional[float] = None

    def to_limits(self) -> SpecLimits:
        return SpecLimits(lsl=self.lsl, usl=self.usl, target=self.target)


def _validate_methods(v: Optional[List[str]]) -> Optional[List[str]]:
    if v is not None:
        for method in v:
            _one_of(AnalysisMethod, method, "methods")
    return v


class CreateStackupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    contributions: List[ContributionRequest] = Field(..., min_length=1)
    spec_limits: SpecLimitsRequest = Field(default_factory=SpecLimitsRequest)
    sample_count: int = Field(default=10000, gt=0)
    seed: Optional[int] = None
    methods: List[str] = Field(
        default_factory=lambda: [m.value for m in AnalysisMethod],
        description="Subset of: worst_case, rss, monte_carlo",
    )

    @field_validator("methods")
    @classmethod
    def validate_methods(cls, v: List[str]) -> List[str]:
        return _validate_methods(v)


class AnalyzeStackupRequest(BaseModel):
    methods: Optional[List[str]] = None
    sample_count: Optional[int] = Field(default=None, gt=0)
    seed: Optional[int] = None

    @field_validator("methods")
    @classmethod
    def validate_methods(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _validate_methods(v)


class CapabilityRequest(SpecLimitsRequest):
    samples: List[float] = Field(..., min_length=2)


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a new project",
)
def create_project(
    body: CreateProjectRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Creates the project with the standard calendar (Mon–Fri, 8 h days,
    recurring New Year's Day, Independence Day and Christmas Day).
    """
    cmd = CreateProjectCommand(
        name=body.name,
        description=body.description,
        start_date=body.start_date,
    )
    result = CreateProjectUseCase().execute(cmd, uow)
    return _ok(result)


@project_router.get(
    "",
    summary="List all projects",
)
def list_projects(
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListProjectsUseCase
    result = ListProjectsUseCase().execute(uow)
    return _ok(result)


@project_router.get(
    "/{project_id}",
    summary="Get a project by ID",
)
def get_project(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetProjectUseCase
    result = GetProjectUseCase().execute(project_id, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

calendar_router = APIRouter(prefix="/projects/{project_id}/calendar", tags=["Calendar"])


@calendar_router.put(
    "",
    summary="Replace the project's working calendar",
)
def update_calendar(
    body: UpdateCalendarRequest,
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateProjectCalendarUseCase
    cmd = UpdateProjectCalendarCommand(project_id=project_id, **body.to_fields())
    result = UpdateProjectCalendarUseCase().execute(cmd, uow)
    return _ok(result)


@calendar_router.get(
    "/working-days",
    summary="Count working days in an inclusive date range",
)
def count_working_days(
    project_id: uuid.UUID = Path(...),
    start: date = Query(...),
    end: date = Query(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """Half days count as 0.5; an inverted range counts 0."""
    from application import CountWorkingDaysUseCase
    result = CountWorkingDaysUseCase().execute(project_id, start, end, uow)
    return _ok(result)


@calendar_router.get(
    "/advance",
    summary="Move a date by a number of working days",
)
def advance_working_days(
    project_id: uuid.UUID = Path(...),
    start: date = Query(...),
    days: float = Query(..., description="Negative values step backwards."),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import AdvanceWorkingDaysUseCase
    result = AdvanceWorkingDaysUseCase().execute(project_id, start, days, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

resource_router = APIRouter(prefix="/projects/{project_id}/resources", tags=["Resources"])


@resource_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Add a resource to a project",
)
def add_resource(
    body: CreateResourceRequest,
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import AddResourceUseCase
    cmd = AddResourceCommand(
        project_id=project_id,
        name=body.name,
        hourly_rate=body.hourly_rate,
        email=str(body.email) if body.email else None,
        role=body.role,
        daily_hours=body.daily_hours,
        availability_pct=body.availability_pct,
        calendar_id=body.calendar_id,
    )
    result = AddResourceUseCase().execute(cmd, uow)
    return _ok(result)


@resource_router.get(
    "",
    summary="List a project's resources",
)
def list_resources(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListResourcesUseCase
    result = ListResourcesUseCase().execute(project_id, uow)
    return _ok(result)


@resource_router.post(
    "/calendars",
    status_code=status.HTTP_201_CREATED,
    summary="Register a calendar resources can bind to",
)
def register_resource_calendar(
    body: UpdateCalendarRequest,
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import RegisterResourceCalendarUseCase
    cmd = RegisterResourceCalendarCommand(project_id=project_id, **body.to_fields())
    result = RegisterResourceCalendarUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

task_router = APIRouter(prefix="/projects/{project_id}/tasks", tags=["Tasks"])


@task_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Add a task to a project",
)
def add_task(
    body: CreateTaskRequest,
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import AddTaskUseCase
    cmd = AddTaskCommand(
        project_id=project_id,
        name=body.name,
        description=body.description,
        task_type=TaskType(body.task_type),
        estimated_hours=body.estimated_hours,
        duration_days=body.duration_days,
        work_units=body.work_units,
        assignments=[
            ResourceAssignment(
                resource_id=a.resource_id,
                allocation_pct=a.allocation_pct,
                assigned_hours=a.assigned_hours,
                full_time=a.full_time,
                rate_override=a.rate_override,
                role_in_task=a.role_in_task,
            )
            for a in body.assignments
        ],
        start_date=body.start_date,
        due_date=body.due_date,
    )
    result = AddTaskUseCase().execute(cmd, uow)
    return _ok(result)


@task_router.get(
    "",
    summary="List a project's tasks",
)
def list_tasks(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListTasksUseCase
    result = ListTasksUseCase().execute(project_id, uow)
    return _ok(result)


@task_router.get(
    "/{task_id}",
    summary="Get a task by ID",
)
def get_task(
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetTaskUseCase
    result = GetTaskUseCase().execute(project_id, task_id, uow)
    return _ok(result)


@task_router.patch(
    "/{task_id}/progress",
    summary="Record progress and actuals for a task",
)
def update_progress(
    body: UpdateProgressRequest,
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateTaskProgressUseCase
    cmd = UpdateTaskProgressCommand(
        project_id=project_id,
        task_id=task_id,
        progress_pct=body.progress_pct,
        actual_hours=body.actual_hours,
        actual_cost=body.actual_cost,
    )
    result = UpdateTaskProgressUseCase().execute(cmd, uow)
    return _ok(result)


@task_router.post(
    "/{task_id}/transition",
    summary="Move a task to a new workflow status",
)
def transition_task(
    body: TransitionRequest,
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Applies the transition if `from_status` matches the task's current status
    and the move is allowed, then runs the automatic actions (actual start /
    completion stamps, progress resets, dependent-task notices).
    """
    from application import TransitionTaskUseCase
    cmd = TransitionTaskCommand(
        project_id=project_id,
        task_id=task_id,
        from_status=TaskStatus(body.from_status),
        to_status=TaskStatus(body.to_status),
    )
    result = TransitionTaskUseCase().execute(cmd, uow)
    return _ok(result)


@task_router.get(
    "/{task_id}/earliest-start",
    summary="Earliest start implied by the task's dependencies (working-day lags)",
)
def earliest_start(
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetEarliestStartUseCase
    result = GetEarliestStartUseCase().execute(project_id, task_id, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

dependency_router = APIRouter(
    prefix="/projects/{project_id}/tasks/{task_id}/dependencies",
    tags=["Dependencies"],
)


@dependency_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Add a predecessor to a task",
)
def add_dependency(
    body: DependencyRequest,
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """Rejects self-dependencies, duplicates and links that would close a cycle."""
    from application import AddDependencyUseCase
    cmd = AddDependencyCommand(
        project_id=project_id,
        task_id=task_id,
        predecessor_id=body.predecessor_id,
        dependency_type=DependencyType(body.dependency_type),
        lag_days=body.lag_days,
    )
    result = AddDependencyUseCase().execute(cmd, uow)
    return _ok(result)


@dependency_router.delete(
    "/{predecessor_id}",
    summary="Remove a predecessor from a task",
)
def remove_dependency(
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    predecessor_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import RemoveDependencyUseCase
    cmd = RemoveDependencyCommand(
        project_id=project_id,
        task_id=task_id,
        predecessor_id=predecessor_id,
    )
    result = RemoveDependencyUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------

milestone_router = APIRouter(prefix="/projects/{project_id}/milestones", tags=["Milestones"])


@milestone_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Add a milestone to a project",
)
def add_milestone(
    body: CreateMilestoneRequest,
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import AddMilestoneUseCase
    cmd = AddMilestoneCommand(
        project_id=project_id,
        name=body.name,
        description=body.description,
        target_date=body.target_date,
        dependencies=[
            TaskDependency(
                predecessor_id=d.predecessor_id,
                dependency_type=DependencyType(d.dependency_type),
                lag_days=d.lag_days,
            )
            for d in body.dependencies
        ],
    )
    result = AddMilestoneUseCase().execute(cmd, uow)
    return _ok(result)


@milestone_router.get(
    "",
    summary="List a project's milestones",
)
def list_milestones(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListMilestonesUseCase
    result = ListMilestonesUseCase().execute(project_id, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------

schedule_router = APIRouter(prefix="/projects/{project_id}/schedule", tags=["Schedule"])


@schedule_router.post(
    "",
    summary="Compute the critical-path schedule",
)
def compute_schedule(
    body: ComputeScheduleRequest,
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ComputeScheduleUseCase
    cmd = ComputeScheduleCommand(
        project_id=project_id,
        config=body.to_config(),
        apply_dates=body.apply_dates,
        as_of=body.as_of,
    )
    result = ComputeScheduleUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Baselines & earned value
# ---------------------------------------------------------------------------

baseline_router = APIRouter(prefix="/projects/{project_id}", tags=["Baselines"])


@baseline_router.post(
    "/baselines",
    status_code=status.HTTP_201_CREATED,
    summary="Capture a baseline of the current plan",
)
def create_baseline(
    body: CreateBaselineRequest,
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Schedules the project and snapshots every task, milestone and resource.
    Initial, approved and working baselines become current and archive the
    previous current baseline.
    """
    from application import CreateBaselineUseCase
    cmd = CreateBaselineCommand(
        project_id=project_id,
        name=body.name,
        author=body.author,
        baseline_type=BaselineType(body.baseline_type),
        description=body.description,
        config=body.to_config(),
    )
    result = CreateBaselineUseCase().execute(cmd, uow)
    return _ok(result)


@baseline_router.get(
    "/baselines",
    summary="List a project's baselines, newest first",
)
def list_baselines(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListBaselinesUseCase
    result = ListBaselinesUseCase().execute(project_id, uow)
    return _ok(result)


@baseline_router.get(
    "/baselines/compare",
    summary="Variance report between two baselines",
)
def compare_baselines(
    project_id: uuid.UUID = Path(...),
    newer: uuid.UUID = Query(...),
    older: uuid.UUID = Query(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CompareBaselinesUseCase
    result = CompareBaselinesUseCase().execute(project_id, newer, older, uow)
    return _ok(result)


@baseline_router.get(
    "/baselines/{baseline_id}",
    summary="Get a baseline by ID",
)
def get_baseline(
    project_id: uuid.UUID = Path(...),
    baseline_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetBaselineUseCase
    result = GetBaselineUseCase().execute(project_id, baseline_id, uow)
    return _ok(result)


@baseline_router.get(
    "/earned-value",
    summary="Earned-value metrics at a status date",
)
def earned_value(
    project_id: uuid.UUID = Path(...),
    status_date: date = Query(...),
    baseline_id: Optional[uuid.UUID] = Query(default=None, description="Defaults to the current baseline."),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import EarnedValueUseCase
    result = EarnedValueUseCase().execute(project_id, status_date, uow, baseline_id=baseline_id)
    return _ok(result)


# ---------------------------------------------------------------------------
# Features
# ---------------------------------------------------------------------------

feature_router = APIRouter(prefix="/features", tags=["Tolerance Analysis"])


@feature_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Register a toleranced feature",
)
def create_feature(
    body: CreateFeatureRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateFeatureUseCase
    cmd = CreateFeatureCommand(
        name=body.name,
        nominal=body.nominal,
        plus_tolerance=body.plus_tolerance,
        minus_tolerance=body.minus_tolerance,
        distribution=Distribution(body.distribution),
        component_id=body.component_id,
        description=body.description,
    )
    result = CreateFeatureUseCase().execute(cmd, uow)
    return _ok(result)


@feature_router.get(
    "",
    summary="List all features",
)
def list_features(
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListFeaturesUseCase
    result = ListFeaturesUseCase().execute(uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Stackups
# ---------------------------------------------------------------------------

stackup_router = APIRouter(prefix="/stackups", tags=["Tolerance Analysis"])


@stackup_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Define a stackup",
)
def create_stackup(
    body: CreateStackupRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateStackupUseCase
    cmd = CreateStackupCommand(
        name=body.name,
        description=body.description,
        contributions=[
            StackupContribution(
                feature_id=c.feature_id,
                component_id=c.component_id,
                direction=c.direction,
                half_count=c.half_count,
            )
            for c in body.contributions
        ],
        spec_limits=body.spec_limits.to_limits(),
        mc_settings=MonteCarloSettings(sample_count=body.sample_count, seed=body.seed),
        methods=[AnalysisMethod(m) for m in body.methods],
    )
    result = CreateStackupUseCase().execute(cmd, uow)
    return _ok(result)


@stackup_router.get(
    "",
    summary="List all stackups",
)
def list_stackups(
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListStackupsUseCase
    result = ListStackupsUseCase().execute(uow)
    return _ok(result)


@stackup_router.post(
    "/{stackup_id}/analyze",
    summary="Run worst-case, RSS and/or Monte Carlo analysis",
)
def analyze_stackup(
    body: AnalyzeStackupRequest,
    stackup_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Methods, sample count and seed default to the stackup's own settings.
    When Monte Carlo runs and spec limits are set, the samples are also
    evaluated for process capability.
    """
    from application import AnalyzeStackupUseCase
    cmd = AnalyzeStackupCommand(
        stackup_id=stackup_id,
        methods=[AnalysisMethod(m) for m in body.methods] if body.methods else None,
        sample_count=body.sample_count,
        seed=body.seed,
    )
    result = AnalyzeStackupUseCase().execute(cmd, uow)
    return _ok(result)


@stackup_router.get(
    "/{stackup_id}/sensitivity",
    summary="Analytic variance contribution of each term",
)
def stackup_sensitivity(
    stackup_id: uuid.UUID = Path(...),
    target_reduction: float = Query(default=0.2, gt=0.0, lt=1.0),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import StackupSensitivityUseCase
    result = StackupSensitivityUseCase().execute(stackup_id, uow, target_reduction=target_reduction)
    return _ok(result)


# ---------------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------------

capability_router = APIRouter(prefix="/capability", tags=["Tolerance Analysis"])


@capability_router.post(
    "",
    summary="Process capability of a sample against spec limits",
)
def capability(body: CapabilityRequest):
    """Indices that are infinite (zero sample spread) are returned as null."""
    from application import CapabilityUseCase
    cmd = CapabilityCommand(samples=body.samples, spec_limits=body.to_limits())
    result = CapabilityUseCase().execute(cmd)
    return _ok(result)


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(project_router)
api_v1.include_router(calendar_router)
api_v1.include_router(resource_router)
api_v1.include_router(task_router)
api_v1.include_router(dependency_router)
api_v1.include_router(milestone_router)
api_v1.include_router(schedule_router)
api_v1.include_router(baseline_router)
api_v1.include_router(feature_router)
api_v1.include_router(stackup_router)
api_v1.include_router(capability_router)

app.include_router(api_v1)

# ---------------------------------------------------------------------------
# MCP Server: exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ===========================================================================
# OPENAPI CUSTOMISATION: tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Projects",
        "description": "Top-level scheduled projects; each owns its calendar, resources, tasks and baselines.",
    },
    {
        "name": "Calendar",
        "description": (
            "Working-time calendar: working weekdays, holidays (one-time or recurring), "
            "working / non-working / half-day exceptions and working-day arithmetic."
        ),
    },
    {
        "name": "Resources",
        "description": "People or equipment with an hourly rate, daily hours and availability.",
    },
    {
        "name": "Tasks",
        "description": (
            "Effort-driven, fixed-duration, fixed-work or milestone tasks with resource "
            "assignments, progress and a workflow state machine."
        ),
    },
    {
        "name": "Dependencies",
        "description": (
            "Finish-to-start, start-to-start, finish-to-finish and start-to-finish links "
            "with lag or lead.  The system prevents circular chains."
        ),
    },
    {
        "name": "Milestones",
        "description": "Zero-duration checkpoints with a target date.",
    },
    {
        "name": "Schedule",
        "description": (
            "Critical-path computation: early and late windows, total and free float, "
            "the critical set and per-resource utilization."
        ),
    },
    {
        "name": "Baselines",
        "description": (
            "Immutable plan snapshots, variance reports between baselines and "
            "earned-value metrics against a baseline."
        ),
    },
    {
        "name": "Tolerance Analysis",
        "description": (
            "Toleranced features, stackups, worst-case / RSS / Monte Carlo evaluation, "
            "sensitivity and process capability."
        ),
    },
]

app.openapi_tags = tags_metadata
