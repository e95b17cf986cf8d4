"""
application.py

Application layer for the Engineering Project Scheduler & Tolerance Analyzer.

Overview
--------
The application layer sits between the presentation layer (API / MCP) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data the
     presentation layer needs; no raw domain objects are leaked upward.
  2. Declaring abstract Repository interfaces so that the application layer
     remains fully persistence-agnostic (implementations live in
     infrastructure.py).
  3. Declaring the UnitOfWork abstraction so that multiple repository mutations
     inside a single use case are wrapped in one atomic transaction.
  4. Implementing Use Case handlers, one class per user-facing operation,
     that load aggregates, call the services and persist the results.

Structure
---------
DTOs
    ProjectDTO, CalendarDTO, ResourceDTO, TaskDTO, MilestoneDTO
    ScheduleDTO (TaskScheduleDTO, MilestoneScheduleDTO, ResourceUtilizationDTO)
    BaselineDTO, VarianceReportDTO, EarnedValueDTO
    FeatureDTO, StackupDTO, StackupResultDTO, SensitivityDTO, CapabilityDTO

Repository interfaces
    AbstractProjectRepository
    AbstractResourceRepository
    AbstractTaskRepository
    AbstractMilestoneRepository
    AbstractBaselineRepository
    AbstractFeatureRepository
    AbstractStackupRepository

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Projects & calendars ---
    CreateProjectUseCase, GetProjectUseCase, ListProjectsUseCase
    UpdateProjectCalendarUseCase, CountWorkingDaysUseCase, AdvanceWorkingDaysUseCase

    --- Resources ---
    AddResourceUseCase, ListResourcesUseCase, RegisterResourceCalendarUseCase

    --- Tasks & workflow ---
    AddTaskUseCase, ListTasksUseCase, GetTaskUseCase
    UpdateTaskProgressUseCase, TransitionTaskUseCase, GetEarliestStartUseCase
    AddDependencyUseCase, RemoveDependencyUseCase

    --- Milestones ---
    AddMilestoneUseCase, ListMilestonesUseCase

    --- Scheduling ---
    ComputeScheduleUseCase

    --- Baselines & earned value ---
    CreateBaselineUseCase, ListBaselinesUseCase, GetBaselineUseCase
    CompareBaselinesUseCase, EarnedValueUseCase

    --- Tolerance analysis ---
    CreateFeatureUseCase, ListFeaturesUseCase
    CreateStackupUseCase, ListStackupsUseCase
    AnalyzeStackupUseCase, StackupSensitivityUseCase, CapabilityUseCase

Design notes
------------
- Use cases receive commands and return DTOs only; no domain objects cross
  the application boundary.
- Each use case accepts a UnitOfWork as its sole dependency.  The UoW
  exposes all repositories and handles commit/rollback.
- Dates and timestamps flowing out are ISO-8601 strings (timestamps in UTC).
- Missing aggregates raise NotFoundError; domain rule violations propagate
  as the DomainError subclasses of errors.py.
- Non-finite capability indices are reported as None.
"""

from __future__ import annotations

import abc
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from errors import ValidationError
from model import (
    AnalysisMethod,
    Baseline,
    BaselineType,
    DependencyType,
    Distribution,
    EarnedValueMetrics,
    Feature,
    Milestone,
    MonteCarloSettings,
    Project,
    ProjectSchedule,
    Resource,
    ResourceAssignment,
    SchedulingConfig,
    SpecLimits,
    Stackup,
    StackupContribution,
    Task,
    TaskDependency,
    TaskProgress,
    TaskStatus,
    TaskType,
    VarianceReport,
)
from service import (
    BaselineService,
    EarnedValueService,
    MilestoneService,
    PlanningService,
    SchedulerService,
    WorkflowService,
)
from tolerance import (
    CapabilityAnalyzer,
    CapabilityReport,
    DistributionEngine,
    MonteCarloResult,
    SensitivityAnalyzer,
    SensitivityReport,
    StackupEvaluator,
    StackupResult,
    render_capability_report,
    render_sensitivity_report,
)
from work_calendar import Calendar, CalendarException, Holiday, WorkingHours

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _id(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value else None


def _finite(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return value


def _percentile_key(pct: float) -> str:
    return f"p{pct:g}"


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

# ---------------------------------------------------------------------------
# Project & calendar DTOs
# ---------------------------------------------------------------------------

@dataclass
class HolidayDTO:
    date: str
    name: str
    recurring: bool


@dataclass
class CalendarExceptionDTO:
    date: str
    exception_type: str
    note: str


@dataclass
class CalendarDTO:
    name: str
    working_weekdays: List[int]
    start_hour: int
    end_hour: int
    daily_hours: float
    holidays: List[HolidayDTO]
    exceptions: List[CalendarExceptionDTO]


@dataclass
class ProjectDTO:
    id: str
    name: str
    description: str
    start_date: str
    calendar: CalendarDTO
    resource_calendar_ids: List[str]
    current_baseline_id: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class WorkingDaysDTO:
    start: str
    end: str
    working_days: float


@dataclass
class AdvanceDTO:
    start: str
    working_days: float
    result: str


@dataclass
class ResourceCalendarDTO:
    id: str
    project_id: str
    calendar: CalendarDTO


# ---------------------------------------------------------------------------
# Resource & task DTOs
# ---------------------------------------------------------------------------

@dataclass
class ResourceDTO:
    id: str
    project_id: str
    name: str
    email: Optional[str]
    role: str
    hourly_rate: float
    daily_hours: float
    availability_pct: float
    calendar_id: Optional[str]
    created_at: str


@dataclass
class DependencyDTO:
    predecessor_id: str
    dependency_type: str
    lag_days: float
    description: str


@dataclass
class AssignmentDTO:
    resource_id: str
    allocation_pct: float
    assigned_hours: Optional[float]
    full_time: bool
    rate_override: Optional[float]
    role_in_task: str


@dataclass
class TaskDTO:
    id: str
    project_id: str
    name: str
    description: str
    task_type: str
    estimated_hours: float
    actual_hours: float
    duration_days: Optional[float]
    work_units: Optional[float]
    dependencies: List[DependencyDTO]
    assignments: List[AssignmentDTO]
    start_date: Optional[str]
    due_date: Optional[str]
    status: str
    progress_pct: float
    actual_cost: float
    actual_start: Optional[str]
    actual_completion: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class TransitionResultDTO:
    task: TaskDTO
    actions: List[str]


@dataclass
class EarliestStartDTO:
    task_id: str
    earliest_start: Optional[str]


@dataclass
class MilestoneDTO:
    id: str
    project_id: str
    name: str
    description: str
    target_date: str
    actual_date: Optional[str]
    status: str
    dependencies: List[DependencyDTO]
    created_at: str


# ---------------------------------------------------------------------------
# Schedule DTOs
# ---------------------------------------------------------------------------

@dataclass
class TaskScheduleDTO:
    task_id: str
    name: str
    duration_days: int
    earliest_start: str
    earliest_finish: str
    finish_date: str
    latest_start: str
    latest_finish: str
    total_float_days: int
    free_float_days: int
    is_critical: bool


@dataclass
class MilestoneScheduleDTO:
    milestone_id: str
    name: str
    earliest_date: str
    latest_date: str
    target_date: str
    slack_days: int
    is_critical: bool
    status: str


@dataclass
class ResourceUtilizationDTO:
    resource_id: str
    name: str
    total_hours: float
    average_daily_hours: float
    peak_allocation_pct: float
    utilization_pct: float
    over_allocated_days: List[str]
    task_ids: List[str]


@dataclass
class ScheduleDTO:
    project_id: str
    project_start: str
    project_end: str
    total_duration_days: int
    critical_path: List[str]
    tasks: List[TaskScheduleDTO]
    milestones: List[MilestoneScheduleDTO]
    resources: List[ResourceUtilizationDTO]
    warnings: List[str]
    generated_at: str


# ---------------------------------------------------------------------------
# Baseline & earned value DTOs
# ---------------------------------------------------------------------------

@dataclass
class TaskSnapshotDTO:
    task_id: str
    name: str
    task_type: str
    start_date: str
    end_date: str
    duration_days: int
    effort_hours: float
    cost: float
    assigned_resources: List[str]
    dependencies: List[str]


@dataclass
class MilestoneSnapshotDTO:
    milestone_id: str
    name: str
    target_date: str
    dependencies: List[str]


@dataclass
class ResourceSnapshotDTO:
    resource_id: str
    name: str
    hourly_rate: float
    total_allocated_hours: float
    total_cost: float


@dataclass
class BaselineDTO:
    id: str
    project_id: str
    name: str
    description: str
    baseline_type: str
    author: str
    is_current: bool
    project_start: str
    project_end: str
    total_cost: float
    total_effort_hours: float
    tasks: List[TaskSnapshotDTO]
    milestones: List[MilestoneSnapshotDTO]
    resources: List[ResourceSnapshotDTO]
    created_at: str


@dataclass
class TaskVarianceDTO:
    task_id: str
    name: str
    variance_type: str
    schedule_variance_days: int
    start_variance_days: int
    duration_variance_days: int
    cost_variance: float
    effort_variance: float


@dataclass
class MilestoneVarianceDTO:
    milestone_id: str
    name: str
    slip_days: int
    status: str


@dataclass
class VarianceSummaryDTO:
    tasks_changed: int
    tasks_added: int
    tasks_removed: int
    milestones_at_risk: int
    total_cost_variance: float
    total_effort_variance: float
    project_schedule_variance_days: int
    health: str


@dataclass
class VarianceReportDTO:
    newer_baseline_id: str
    older_baseline_id: str
    task_variances: List[TaskVarianceDTO]
    milestone_variances: List[MilestoneVarianceDTO]
    summary: VarianceSummaryDTO


@dataclass
class EarnedValueDTO:
    baseline_id: str
    status_date: str
    planned_value: float
    earned_value: float
    actual_cost: float
    budget_at_completion: float
    schedule_variance: float
    cost_variance: float
    schedule_performance_index: float
    cost_performance_index: float
    estimate_at_completion: float
    estimate_to_complete: float
    variance_at_completion: float
    percent_complete: float
    percent_spent: float
    schedule_health: str
    cost_health: str
    overall_health: str


# ---------------------------------------------------------------------------
# Tolerance DTOs
# ---------------------------------------------------------------------------

@dataclass
class FeatureDTO:
    id: str
    name: str
    component_id: Optional[str]
    nominal: float
    plus_tolerance: float
    minus_tolerance: float
    lower_limit: float
    upper_limit: float
    distribution: str
    description: str


@dataclass
class ContributionDTO:
    feature_id: str
    component_id: Optional[str]
    direction: float
    half_count: bool


@dataclass
class SpecLimitsDTO:
    lsl: Optional[float]
    usl: Optional[float]
    target: Optional[float]


@dataclass
class StackupDTO:
    id: str
    name: str
    description: str
    contributions: List[ContributionDTO]
    spec_limits: SpecLimitsDTO
    sample_count: int
    seed: Optional[int]
    methods: List[str]
    created_at: str


@dataclass
class WorstCaseDTO:
    nominal: float
    plus_tolerance: float
    minus_tolerance: float
    upper_limit: float
    lower_limit: float


@dataclass
class RSSDTO:
    nominal: float
    tolerance: float
    std_dev: float
    upper_limit: float
    lower_limit: float


@dataclass
class MonteCarloDTO:
    mean: float
    std_dev: float
    variance: float
    min: float
    max: float
    range: float
    sample_size: int
    seed: Optional[int]
    percentiles: Dict[str, float]


@dataclass
class CapabilityDTO:
    sample_size: int
    mean: float
    std_dev: float
    cp: Optional[float]
    cpk: Optional[float]
    cpu: Optional[float]
    cpl: Optional[float]
    pp: Optional[float]
    ppk: Optional[float]
    cpm: Optional[float]
    yield_fraction: float
    defect_rate: float
    ppm_defects: float
    ppm_above_usl: float
    ppm_below_lsl: float
    sigma_level: int
    cp_rating: Optional[str]
    cpk_rating: Optional[str]
    overall_rating: str
    recommendations: List[str]
    report: str


@dataclass
class StackupResultDTO:
    stackup_id: str
    nominal: float
    worst_case: Optional[WorstCaseDTO]
    rss: Optional[RSSDTO]
    monte_carlo: Optional[MonteCarloDTO]
    capability: Optional[CapabilityDTO]


@dataclass
class ContributionSensitivityDTO:
    feature_id: str
    feature_name: str
    component_id: Optional[str]
    multiplier: float
    variance: float
    std_dev: float
    percentage: float
    cumulative_percentage: float
    rank: int
    impact: str


@dataclass
class ImprovementDTO:
    feature_id: str
    feature_name: str
    current_percentage: float
    scale_factor: float
    expected_variance: float


@dataclass
class SensitivityDTO:
    stackup_id: str
    total_variance: float
    total_std_dev: float
    contributions: List[ContributionSensitivityDTO]
    improvements: List[ImprovementDTO]
    report: str


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def calendar(c: Calendar) -> CalendarDTO:
        return CalendarDTO(
            name=c.name,
            working_weekdays=sorted(c.working_weekdays),
            start_hour=c.working_hours.start_hour,
            end_hour=c.working_hours.end_hour,
            daily_hours=c.working_hours.daily_hours,
            holidays=[HolidayDTO(_fmt_date(h.date), h.name, h.recurring) for h in c.holidays],
            exceptions=[
                CalendarExceptionDTO(_fmt_date(e.date), e.exception_type.value, e.note)
                for e in sorted(c.exceptions.values(), key=lambda e: e.date)
            ],
        )

    @staticmethod
    def project(p: Project) -> ProjectDTO:
        return ProjectDTO(
            id=str(p.id),
            name=p.name,
            description=p.description,
            start_date=_fmt_date(p.start_date),
            calendar=_Assembler.calendar(p.calendar),
            resource_calendar_ids=sorted(str(k) for k in p.resource_calendars),
            current_baseline_id=_id(p.current_baseline_id),
            created_at=_fmt(p.created_at),
            updated_at=_fmt(p.updated_at),
        )

    @staticmethod
    def resource(r: Resource) -> ResourceDTO:
        return ResourceDTO(
            id=str(r.id),
            project_id=str(r.project_id),
            name=r.name,
            email=r.email,
            role=r.role,
            hourly_rate=r.hourly_rate,
            daily_hours=r.daily_hours,
            availability_pct=r.availability_pct,
            calendar_id=_id(r.calendar_id),
            created_at=_fmt(r.created_at),
        )

    @staticmethod
    def dependency(d: TaskDependency) -> DependencyDTO:
        return DependencyDTO(
            predecessor_id=str(d.predecessor_id),
            dependency_type=d.dependency_type.value,
            lag_days=d.lag_days,
            description=d.description,
        )

    @staticmethod
    def task(t: Task) -> TaskDTO:
        return TaskDTO(
            id=str(t.id),
            project_id=str(t.project_id),
            name=t.name,
            description=t.description,
            task_type=t.task_type.value,
            estimated_hours=t.estimated_hours,
            actual_hours=t.actual_hours,
            duration_days=t.duration_days,
            work_units=t.work_units,
            dependencies=[_Assembler.dependency(d) for d in t.dependencies],
            assignments=[
                AssignmentDTO(
                    resource_id=str(a.resource_id),
                    allocation_pct=a.allocation_pct,
                    assigned_hours=a.assigned_hours,
                    full_time=a.full_time,
                    rate_override=a.rate_override,
                    role_in_task=a.role_in_task,
                )
                for a in t.assignments
            ],
            start_date=_fmt_date(t.start_date),
            due_date=_fmt_date(t.due_date),
            status=t.status.value,
            progress_pct=round(t.progress_pct, 2),
            actual_cost=t.actual_cost,
            actual_start=_fmt(t.actual_start),
            actual_completion=_fmt(t.actual_completion),
            created_at=_fmt(t.created_at),
            updated_at=_fmt(t.updated_at),
        )

    @staticmethod
    def milestone(m: Milestone) -> MilestoneDTO:
        return MilestoneDTO(
            id=str(m.id),
            project_id=str(m.project_id),
            name=m.name,
            description=m.description,
            target_date=_fmt_date(m.target_date),
            actual_date=_fmt_date(m.actual_date),
            status=m.status.value,
            dependencies=[_Assembler.dependency(d) for d in m.dependencies],
            created_at=_fmt(m.created_at),
        )

    @staticmethod
    def schedule(
        project_id: uuid.UUID,
        s: ProjectSchedule,
        tasks: Sequence[Task],
        milestones: Sequence[Milestone],
    ) -> ScheduleDTO:
        task_names = {t.id: t.name for t in tasks}
        by_milestone = {m.id: m for m in milestones}
        return ScheduleDTO(
            project_id=str(project_id),
            project_start=_fmt_date(s.project_start),
            project_end=_fmt_date(s.project_end),
            total_duration_days=s.total_duration_days,
            critical_path=[str(n) for n in s.critical_path],
            tasks=[
                TaskScheduleDTO(
                    task_id=str(i.task_id),
                    name=task_names.get(i.task_id, ""),
                    duration_days=i.duration_days,
                    earliest_start=_fmt_date(i.earliest_start),
                    earliest_finish=_fmt_date(i.earliest_finish),
                    finish_date=_fmt_date(i.finish_date),
                    latest_start=_fmt_date(i.latest_start),
                    latest_finish=_fmt_date(i.latest_finish),
                    total_float_days=i.total_float_days,
                    free_float_days=i.free_float_days,
                    is_critical=i.is_critical,
                )
                for i in s.task_schedule.values()
            ],
            milestones=[
                MilestoneScheduleDTO(
                    milestone_id=str(i.milestone_id),
                    name=by_milestone[i.milestone_id].name,
                    earliest_date=_fmt_date(i.earliest_date),
                    latest_date=_fmt_date(i.latest_date),
                    target_date=_fmt_date(i.target_date),
                    slack_days=i.slack_days,
                    is_critical=i.is_critical,
                    status=by_milestone[i.milestone_id].status.value,
                )
                for i in s.milestone_schedule.values()
            ],
            resources=[
                ResourceUtilizationDTO(
                    resource_id=str(u.resource_id),
                    name=u.name,
                    total_hours=round(u.total_hours, 4),
                    average_daily_hours=round(u.average_daily_hours, 4),
                    peak_allocation_pct=round(u.peak_allocation_pct, 2),
                    utilization_pct=round(u.utilization_pct, 2),
                    over_allocated_days=[_fmt_date(d) for d in u.over_allocated_days],
                    task_ids=[str(t) for t in u.task_ids],
                )
                for u in s.resource_utilization.values()
            ],
            warnings=list(s.warnings),
            generated_at=_fmt(s.generated_at),
        )

    @staticmethod
    def baseline(b: Baseline) -> BaselineDTO:
        return BaselineDTO(
            id=str(b.id),
            project_id=str(b.project_id),
            name=b.name,
            description=b.description,
            baseline_type=b.baseline_type.value,
            author=b.author,
            is_current=b.is_current,
            project_start=_fmt_date(b.project_start),
            project_end=_fmt_date(b.project_end),
            total_cost=b.total_cost,
            total_effort_hours=b.total_effort_hours,
            tasks=[
                TaskSnapshotDTO(
                    task_id=str(t.task_id),
                    name=t.name,
                    task_type=t.task_type.value,
                    start_date=_fmt_date(t.start_date),
                    end_date=_fmt_date(t.end_date),
                    duration_days=t.duration_days,
                    effort_hours=t.effort_hours,
                    cost=t.cost,
                    assigned_resources=[str(r) for r in t.assigned_resources],
                    dependencies=[str(d) for d in t.dependencies],
                )
                for t in b.tasks
            ],
            milestones=[
                MilestoneSnapshotDTO(
                    milestone_id=str(m.milestone_id),
                    name=m.name,
                    target_date=_fmt_date(m.target_date),
                    dependencies=[str(d) for d in m.dependencies],
                )
                for m in b.milestones
            ],
            resources=[
                ResourceSnapshotDTO(
                    resource_id=str(r.resource_id),
                    name=r.name,
                    hourly_rate=r.hourly_rate,
                    total_allocated_hours=r.total_allocated_hours,
                    total_cost=r.total_cost,
                )
                for r in b.resources
            ],
            created_at=_fmt(b.created_at),
        )

    @staticmethod
    def variance_report(r: VarianceReport) -> VarianceReportDTO:
        return VarianceReportDTO(
            newer_baseline_id=str(r.newer_baseline_id),
            older_baseline_id=str(r.older_baseline_id),
            task_variances=[
                TaskVarianceDTO(
                    task_id=str(v.task_id),
                    name=v.name,
                    variance_type=v.variance_type.value,
                    schedule_variance_days=v.schedule_variance_days,
                    start_variance_days=v.start_variance_days,
                    duration_variance_days=v.duration_variance_days,
                    cost_variance=round(v.cost_variance, 6),
                    effort_variance=round(v.effort_variance, 6),
                )
                for v in r.task_variances
            ],
            milestone_variances=[
                MilestoneVarianceDTO(str(m.milestone_id), m.name, m.slip_days, m.status.value)
                for m in r.milestone_variances
            ],
            summary=VarianceSummaryDTO(
                tasks_changed=r.summary.tasks_changed,
                tasks_added=r.summary.tasks_added,
                tasks_removed=r.summary.tasks_removed,
                milestones_at_risk=r.summary.milestones_at_risk,
                total_cost_variance=round(r.summary.total_cost_variance, 6),
                total_effort_variance=round(r.summary.total_effort_variance, 6),
                project_schedule_variance_days=r.summary.project_schedule_variance_days,
                health=r.summary.health.value,
            ),
        )

    @staticmethod
    def earned_value(baseline_id: uuid.UUID, m: EarnedValueMetrics) -> EarnedValueDTO:
        return EarnedValueDTO(
            baseline_id=str(baseline_id),
            status_date=_fmt_date(m.status_date),
            planned_value=round(m.planned_value, 6),
            earned_value=round(m.earned_value, 6),
            actual_cost=round(m.actual_cost, 6),
            budget_at_completion=round(m.budget_at_completion, 6),
            schedule_variance=round(m.schedule_variance, 6),
            cost_variance=round(m.cost_variance, 6),
            schedule_performance_index=round(m.schedule_performance_index, 6),
            cost_performance_index=round(m.cost_performance_index, 6),
            estimate_at_completion=round(m.estimate_at_completion, 6),
            estimate_to_complete=round(m.estimate_to_complete, 6),
            variance_at_completion=round(m.variance_at_completion, 6),
            percent_complete=round(m.percent_complete, 4),
            percent_spent=round(m.percent_spent, 4),
            schedule_health=m.schedule_health.value,
            cost_health=m.cost_health.value,
            overall_health=m.overall_health.value,
        )

    @staticmethod
    def feature(f: Feature) -> FeatureDTO:
        return FeatureDTO(
            id=str(f.id),
            name=f.name,
            component_id=_id(f.component_id),
            nominal=f.nominal,
            plus_tolerance=f.plus_tolerance,
            minus_tolerance=f.minus_tolerance,
            lower_limit=f.lower_limit,
            upper_limit=f.upper_limit,
            distribution=f.distribution.value,
            description=f.description,
        )

    @staticmethod
    def stackup(s: Stackup) -> StackupDTO:
        return StackupDTO(
            id=str(s.id),
            name=s.name,
            description=s.description,
            contributions=[
                ContributionDTO(str(c.feature_id), _id(c.component_id), c.direction, c.half_count)
                for c in s.contributions
            ],
            spec_limits=SpecLimitsDTO(s.spec_limits.lsl, s.spec_limits.usl, s.spec_limits.target),
            sample_count=s.mc_settings.sample_count,
            seed=s.mc_settings.seed,
            methods=[m.value for m in s.methods],
            created_at=_fmt(s.created_at),
        )

    @staticmethod
    def monte_carlo(r: MonteCarloResult) -> MonteCarloDTO:
        return MonteCarloDTO(
            mean=r.mean,
            std_dev=r.std_dev,
            variance=r.variance,
            min=r.min,
            max=r.max,
            range=r.range,
            sample_size=r.sample_size,
            seed=r.seed,
            percentiles={_percentile_key(p): v for p, v in r.percentiles.items()},
        )

    @staticmethod
    def capability(r: CapabilityReport) -> CapabilityDTO:
        return CapabilityDTO(
            sample_size=r.sample_size,
            mean=r.mean,
            std_dev=r.std_dev,
            cp=_finite(r.cp),
            cpk=_finite(r.cpk),
            cpu=_finite(r.cpu),
            cpl=_finite(r.cpl),
            pp=_finite(r.pp),
            ppk=_finite(r.ppk),
            cpm=_finite(r.cpm),
            yield_fraction=r.yield_fraction,
            defect_rate=r.defect_rate,
            ppm_defects=r.ppm_defects,
            ppm_above_usl=r.ppm_above_usl,
            ppm_below_lsl=r.ppm_below_lsl,
            sigma_level=r.sigma_level,
            cp_rating=r.cp_rating.value if r.cp_rating else None,
            cpk_rating=r.cpk_rating.value if r.cpk_rating else None,
            overall_rating=r.overall_rating.value,
            recommendations=list(r.recommendations),
            report=render_capability_report(r),
        )

    @staticmethod
    def stackup_result(r: StackupResult) -> StackupResultDTO:
        worst = rss = None
        if r.worst_case is not None:
            w = r.worst_case
            worst = WorstCaseDTO(w.nominal, w.plus_tolerance, w.minus_tolerance, w.upper_limit, w.lower_limit)
        if r.rss is not None:
            rss = RSSDTO(r.rss.nominal, r.rss.tolerance, r.rss.std_dev, r.rss.upper_limit, r.rss.lower_limit)
        return StackupResultDTO(
            stackup_id=str(r.stackup_id),
            nominal=r.nominal,
            worst_case=worst,
            rss=rss,
            monte_carlo=_Assembler.monte_carlo(r.monte_carlo) if r.monte_carlo else None,
            capability=_Assembler.capability(r.capability) if r.capability else None,
        )

    @staticmethod
    def sensitivity(r: SensitivityReport, improvements, cumulative) -> SensitivityDTO:
        running = dict(cumulative)
        return SensitivityDTO(
            stackup_id=str(r.stackup_id),
            total_variance=r.total_variance,
            total_std_dev=r.total_std_dev,
            contributions=[
                ContributionSensitivityDTO(
                    feature_id=str(c.feature_id),
                    feature_name=c.feature_name,
                    component_id=_id(c.component_id),
                    multiplier=c.multiplier,
                    variance=c.variance,
                    std_dev=c.std_dev,
                    percentage=round(c.percentage, 6),
                    cumulative_percentage=round(running[c.feature_id], 6),
                    rank=c.rank,
                    impact=c.impact.value,
                )
                for c in r.contributions
            ],
            improvements=[
                ImprovementDTO(
                    feature_id=str(i.feature_id),
                    feature_name=i.feature_name,
                    current_percentage=round(i.current_percentage, 6),
                    scale_factor=i.scale_factor,
                    expected_variance=i.expected_variance,
                )
                for i in improvements
            ],
            report=render_sensitivity_report(r),
        )


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractProjectRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, project_id: uuid.UUID) -> Optional[Project]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Project]: ...
    @abc.abstractmethod
    def save(self, project: Project) -> None: ...


class AbstractResourceRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, resource_id: uuid.UUID) -> Optional[Resource]: ...
    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID) -> List[Resource]: ...
    @abc.abstractmethod
    def save(self, resource: Resource) -> None: ...


class AbstractTaskRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, task_id: uuid.UUID) -> Optional[Task]: ...
    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID) -> List[Task]: ...
    @abc.abstractmethod
    def save(self, task: Task) -> None: ...


class AbstractMilestoneRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, milestone_id: uuid.UUID) -> Optional[Milestone]: ...
    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID) -> List[Milestone]: ...
    @abc.abstractmethod
    def save(self, milestone: Milestone) -> None: ...


class AbstractBaselineRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, baseline_id: uuid.UUID) -> Optional[Baseline]: ...
    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID) -> List[Baseline]: ...
    @abc.abstractmethod
    def save(self, baseline: Baseline) -> None: ...


class AbstractFeatureRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, feature_id: uuid.UUID) -> Optional[Feature]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Feature]: ...
    @abc.abstractmethod
    def save(self, feature: Feature) -> None: ...


class AbstractStackupRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, stackup_id: uuid.UUID) -> Optional[Stackup]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Stackup]: ...
    @abc.abstractmethod
    def save(self, stackup: Stackup) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.projects.save(project)
            uow.commit()
    """
    projects: AbstractProjectRepository
    resources: AbstractResourceRepository
    tasks: AbstractTaskRepository
    milestones: AbstractMilestoneRepository
    baselines: AbstractBaselineRepository
    features: AbstractFeatureRepository
    stackups: AbstractStackupRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_planning_svc = PlanningService()
_workflow_svc = WorkflowService()
_baseline_svc = BaselineService()
_ev_svc = EarnedValueService()
_milestone_svc = MilestoneService()
_stackup_eval = StackupEvaluator()
_sensitivity = SensitivityAnalyzer()
_capability = CapabilityAnalyzer()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_project_or_raise(uow: AbstractUnitOfWork, project_id: uuid.UUID) -> Project:
    project = uow.projects.get(project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found.")
    return project


def _get_task_or_raise(
    uow: AbstractUnitOfWork, project_id: uuid.UUID, task_id: uuid.UUID
) -> Task:
    task = uow.tasks.get(task_id)
    if task is None or task.project_id != project_id:
        raise NotFoundError(f"Task {task_id} not found.")
    return task


def _get_baseline_or_raise(
    uow: AbstractUnitOfWork, project_id: uuid.UUID, baseline_id: uuid.UUID
) -> Baseline:
    baseline = uow.baselines.get(baseline_id)
    if baseline is None or baseline.project_id != project_id:
        raise NotFoundError(f"Baseline {baseline_id} not found.")
    return baseline


def _get_stackup_or_raise(uow: AbstractUnitOfWork, stackup_id: uuid.UUID) -> Stackup:
    stackup = uow.stackups.get(stackup_id)
    if stackup is None:
        raise NotFoundError(f"Stackup {stackup_id} not found.")
    return stackup


def _stackup_features(uow: AbstractUnitOfWork, stackup: Stackup) -> Dict[uuid.UUID, Feature]:
    features: Dict[uuid.UUID, Feature] = {}
    for c in stackup.contributions:
        feature = uow.features.get(c.feature_id)
        if feature is None:
            raise NotFoundError(f"Feature {c.feature_id} not found.")
        features[feature.id] = feature
    return features


def _schedule_project(
    uow: AbstractUnitOfWork, project: Project, config: SchedulingConfig
) -> Tuple[ProjectSchedule, List[Task], List[Milestone], List[Resource]]:
    tasks = uow.tasks.list_for_project(project.id)
    milestones = uow.milestones.list_for_project(project.id)
    resources = uow.resources.list_for_project(project.id)
    schedule = SchedulerService(config).compute_schedule(
        tasks,
        milestones,
        resources,
        project.start_date,
        calendar=project.calendar,
        resource_calendars=project.resource_calendars,
    )
    return schedule, tasks, milestones, resources


# ===========================================================================
# USE CASES: PROJECTS & CALENDARS
# ===========================================================================

@dataclass
class CreateProjectCommand:
    name: str
    description: str = ""
    start_date: Optional[date] = None


class CreateProjectUseCase:
    def execute(self, cmd: CreateProjectCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            project = _planning_svc.create_project(
                name=cmd.name,
                description=cmd.description,
                start_date=cmd.start_date,
            )
            uow.projects.save(project)
            uow.commit()
            logger.info("Created project '%s' (%s)", project.name, project.id)
            return _Assembler.project(project)


class GetProjectUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            return _Assembler.project(_get_project_or_raise(uow, project_id))


class ListProjectsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[ProjectDTO]:
        with uow:
            return [_Assembler.project(p) for p in uow.projects.list_all()]


@dataclass
class UpdateProjectCalendarCommand:
    project_id: uuid.UUID
    name: str = "Standard"
    working_weekdays: List[int] = field(default_factory=lambda: [0, 1, 2, 3, 4])
    start_hour: int = 9
    end_hour: int = 17
    daily_hours: float = 8.0
    holidays: List[Holiday] = field(default_factory=list)
    exceptions: List[CalendarException] = field(default_factory=list)


def _build_calendar(cmd: UpdateProjectCalendarCommand) -> Calendar:
    calendar = Calendar(
        name=cmd.name,
        working_weekdays=frozenset(cmd.working_weekdays),
        working_hours=WorkingHours(cmd.start_hour, cmd.end_hour, cmd.daily_hours),
    )
    for holiday in cmd.holidays:
        calendar.add_holiday(holiday)
    for exception in cmd.exceptions:
        calendar.add_exception(exception)
    return calendar


class UpdateProjectCalendarUseCase:
    def execute(self, cmd: UpdateProjectCalendarCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            project = _planning_svc.replace_calendar(project, _build_calendar(cmd))
            uow.projects.save(project)
            uow.commit()
            return _Assembler.project(project)


@dataclass
class RegisterResourceCalendarCommand(UpdateProjectCalendarCommand):
    pass


class RegisterResourceCalendarUseCase:
    """Store a calendar on the project that its resources can bind to by id."""

    def execute(
        self, cmd: RegisterResourceCalendarCommand, uow: AbstractUnitOfWork
    ) -> ResourceCalendarDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            calendar = _build_calendar(cmd)
            calendar_id = _planning_svc.add_resource_calendar(project, calendar)
            uow.projects.save(project)
            uow.commit()
            return ResourceCalendarDTO(
                id=str(calendar_id),
                project_id=str(project.id),
                calendar=_Assembler.calendar(calendar),
            )


class CountWorkingDaysUseCase:
    def execute(
        self, project_id: uuid.UUID, start: date, end: date, uow: AbstractUnitOfWork
    ) -> WorkingDaysDTO:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            days = project.calendar.working_days_between(start, end)
            return WorkingDaysDTO(_fmt_date(start), _fmt_date(end), days)


class AdvanceWorkingDaysUseCase:
    def execute(
        self, project_id: uuid.UUID, start: date, working_days: float, uow: AbstractUnitOfWork
    ) -> AdvanceDTO:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            if working_days >= 0:
                result = project.calendar.advance(start, working_days)
            else:
                result = project.calendar.retreat(start, -working_days)
            return AdvanceDTO(_fmt_date(start), working_days, _fmt_date(result))


# ===========================================================================
# USE CASES: RESOURCES
# ===========================================================================

@dataclass
class AddResourceCommand:
    project_id: uuid.UUID
    name: str
    hourly_rate: float
    email: Optional[str] = None
    role: str = ""
    daily_hours: float = 8.0
    availability_pct: float = 100.0
    calendar_id: Optional[uuid.UUID] = None


class AddResourceUseCase:
    def execute(self, cmd: AddResourceCommand, uow: AbstractUnitOfWork) -> ResourceDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            if cmd.calendar_id is not None and cmd.calendar_id not in project.resource_calendars:
                raise NotFoundError(f"Resource calendar {cmd.calendar_id} not found.")
            resource = _planning_svc.add_resource(
                project_id=cmd.project_id,
                name=cmd.name,
                hourly_rate=cmd.hourly_rate,
                email=cmd.email,
                role=cmd.role,
                daily_hours=cmd.daily_hours,
                availability_pct=cmd.availability_pct,
                calendar_id=cmd.calendar_id,
            )
            uow.resources.save(resource)
            uow.commit()
            return _Assembler.resource(resource)


class ListResourcesUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[ResourceDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
            return [_Assembler.resource(r) for r in uow.resources.list_for_project(project_id)]


# ===========================================================================
# USE CASES: TASKS & WORKFLOW
# ===========================================================================

@dataclass
class AddTaskCommand:
    project_id: uuid.UUID
    name: str
    task_type: TaskType = TaskType.EFFORT_DRIVEN
    description: str = ""
    estimated_hours: float = 0.0
    duration_days: Optional[float] = None
    work_units: Optional[float] = None
    assignments: List[ResourceAssignment] = field(default_factory=list)
    start_date: Optional[date] = None
    due_date: Optional[date] = None


class AddTaskUseCase:
    def execute(self, cmd: AddTaskCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            _get_project_or_raise(uow, cmd.project_id)
            for assignment in cmd.assignments:
                resource = uow.resources.get(assignment.resource_id)
                if resource is None or resource.project_id != cmd.project_id:
                    raise NotFoundError(f"Resource {assignment.resource_id} not found.")
            task = _planning_svc.add_task(
                project_id=cmd.project_id,
                name=cmd.name,
                task_type=cmd.task_type,
                estimated_hours=cmd.estimated_hours,
                duration_days=cmd.duration_days,
                work_units=cmd.work_units,
                assignments=cmd.assignments,
                description=cmd.description,
                start_date=cmd.start_date,
                due_date=cmd.due_date,
            )
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


class ListTasksUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[TaskDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
            return [_Assembler.task(t) for t in uow.tasks.list_for_project(project_id)]


class GetTaskUseCase:
    def execute(self, project_id: uuid.UUID, task_id: uuid.UUID, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            return _Assembler.task(_get_task_or_raise(uow, project_id, task_id))


@dataclass
class UpdateTaskProgressCommand:
    project_id: uuid.UUID
    task_id: uuid.UUID
    progress_pct: float
    actual_hours: Optional[float] = None
    actual_cost: Optional[float] = None


class UpdateTaskProgressUseCase:
    def execute(self, cmd: UpdateTaskProgressCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.project_id, cmd.task_id)
            task = _planning_svc.update_progress(
                task,
                progress_pct=cmd.progress_pct,
                actual_hours=cmd.actual_hours,
                actual_cost=cmd.actual_cost,
            )
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


@dataclass
class TransitionTaskCommand:
    project_id: uuid.UUID
    task_id: uuid.UUID
    from_status: TaskStatus
    to_status: TaskStatus


class TransitionTaskUseCase:
    def execute(self, cmd: TransitionTaskCommand, uow: AbstractUnitOfWork) -> TransitionResultDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.project_id, cmd.task_id)
            tasks = uow.tasks.list_for_project(cmd.project_id)
            task, actions = _workflow_svc.transition(task, cmd.from_status, cmd.to_status, tasks)
            uow.tasks.save(task)
            uow.commit()
            logger.info(
                "Task '%s' moved %s → %s", task.name, cmd.from_status.value, cmd.to_status.value
            )
            return TransitionResultDTO(task=_Assembler.task(task), actions=actions)


class GetEarliestStartUseCase:
    def execute(
        self, project_id: uuid.UUID, task_id: uuid.UUID, uow: AbstractUnitOfWork
    ) -> EarliestStartDTO:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            task = _get_task_or_raise(uow, project_id, task_id)
            tasks = uow.tasks.list_for_project(project_id)
            earliest = _workflow_svc.earliest_start(task, tasks, project.calendar)
            return EarliestStartDTO(task_id=str(task.id), earliest_start=_fmt_date(earliest))


@dataclass
class AddDependencyCommand:
    project_id: uuid.UUID
    task_id: uuid.UUID
    predecessor_id: uuid.UUID
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    lag_days: float = 0.0


class AddDependencyUseCase:
    def execute(self, cmd: AddDependencyCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.project_id, cmd.task_id)
            tasks = uow.tasks.list_for_project(cmd.project_id)
            task = _workflow_svc.add_dependency(
                task, cmd.predecessor_id, cmd.dependency_type, cmd.lag_days, tasks
            )
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


@dataclass
class RemoveDependencyCommand:
    project_id: uuid.UUID
    task_id: uuid.UUID
    predecessor_id: uuid.UUID


class RemoveDependencyUseCase:
    def execute(self, cmd: RemoveDependencyCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.project_id, cmd.task_id)
            task = _workflow_svc.remove_dependency(task, cmd.predecessor_id)
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


# ===========================================================================
# USE CASES: MILESTONES
# ===========================================================================

@dataclass
class AddMilestoneCommand:
    project_id: uuid.UUID
    name: str
    target_date: date
    description: str = ""
    dependencies: List[TaskDependency] = field(default_factory=list)


class AddMilestoneUseCase:
    def execute(self, cmd: AddMilestoneCommand, uow: AbstractUnitOfWork) -> MilestoneDTO:
        with uow:
            _get_project_or_raise(uow, cmd.project_id)
            known = {t.id for t in uow.tasks.list_for_project(cmd.project_id)}
            known |= {m.id for m in uow.milestones.list_for_project(cmd.project_id)}
            for dep in cmd.dependencies:
                if dep.predecessor_id not in known:
                    raise NotFoundError(f"Predecessor {dep.predecessor_id} not found.")
            milestone = _planning_svc.add_milestone(
                project_id=cmd.project_id,
                name=cmd.name,
                target_date=cmd.target_date,
                dependencies=cmd.dependencies,
                description=cmd.description,
            )
            uow.milestones.save(milestone)
            uow.commit()
            return _Assembler.milestone(milestone)


class ListMilestonesUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[MilestoneDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
            return [_Assembler.milestone(m) for m in uow.milestones.list_for_project(project_id)]


# ===========================================================================
# USE CASES: SCHEDULING
# ===========================================================================

@dataclass
class ComputeScheduleCommand:
    project_id: uuid.UUID
    config: SchedulingConfig = field(default_factory=SchedulingConfig)
    apply_dates: bool = False
    as_of: Optional[date] = None


class ComputeScheduleUseCase:
    """
    Compute the critical-path schedule and refresh milestone statuses.

    With `apply_dates` the computed windows are written back to the tasks as
    their planned start and due dates.
    """

    def execute(self, cmd: ComputeScheduleCommand, uow: AbstractUnitOfWork) -> ScheduleDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            schedule, tasks, milestones, _ = _schedule_project(uow, project, cmd.config.validate())

            for milestone in _milestone_svc.refresh_statuses(
                milestones, schedule, cmd.as_of or date.today()
            ):
                uow.milestones.save(milestone)
            if cmd.apply_dates:
                for task in tasks:
                    info = schedule.task_schedule[task.id]
                    task.start_date = info.earliest_start
                    task.due_date = info.finish_date
                    uow.tasks.save(task)
            uow.commit()
            return _Assembler.schedule(project.id, schedule, tasks, milestones)


# ===========================================================================
# USE CASES: BASELINES & EARNED VALUE
# ===========================================================================

@dataclass
class CreateBaselineCommand:
    project_id: uuid.UUID
    name: str
    author: str
    baseline_type: BaselineType = BaselineType.INITIAL
    description: str = ""
    config: SchedulingConfig = field(default_factory=SchedulingConfig)


class CreateBaselineUseCase:
    def execute(self, cmd: CreateBaselineCommand, uow: AbstractUnitOfWork) -> BaselineDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            schedule, tasks, milestones, resources = _schedule_project(
                uow, project, cmd.config.validate()
            )
            baseline, archived = _baseline_svc.create_baseline(
                project=project,
                schedule=schedule,
                tasks=tasks,
                milestones=milestones,
                resources=resources,
                baseline_type=cmd.baseline_type,
                name=cmd.name,
                author=cmd.author,
                description=cmd.description,
                existing_baselines=uow.baselines.list_for_project(project.id),
            )
            for previous in archived:
                uow.baselines.save(previous)
            uow.baselines.save(baseline)
            uow.projects.save(project)
            uow.commit()
            logger.info(
                "Captured %s baseline '%s' for project %s (archived %d)",
                baseline.baseline_type.value, baseline.name, project.id, len(archived),
            )
            return _Assembler.baseline(baseline)


class ListBaselinesUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[BaselineDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
            baselines = _baseline_svc.history(uow.baselines.list_for_project(project_id))
            return [_Assembler.baseline(b) for b in baselines]


class GetBaselineUseCase:
    def execute(
        self, project_id: uuid.UUID, baseline_id: uuid.UUID, uow: AbstractUnitOfWork
    ) -> BaselineDTO:
        with uow:
            return _Assembler.baseline(_get_baseline_or_raise(uow, project_id, baseline_id))


class CompareBaselinesUseCase:
    def execute(
        self,
        project_id: uuid.UUID,
        newer_id: uuid.UUID,
        older_id: uuid.UUID,
        uow: AbstractUnitOfWork,
    ) -> VarianceReportDTO:
        with uow:
            newer = _get_baseline_or_raise(uow, project_id, newer_id)
            older = _get_baseline_or_raise(uow, project_id, older_id)
            return _Assembler.variance_report(_baseline_svc.compare(newer, older))


class EarnedValueUseCase:
    """
    Earned value of the project's recorded progress against a baseline
    (the current baseline when none is named).
    """

    def execute(
        self,
        project_id: uuid.UUID,
        status_date: date,
        uow: AbstractUnitOfWork,
        baseline_id: Optional[uuid.UUID] = None,
    ) -> EarnedValueDTO:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            baseline_id = baseline_id or project.current_baseline_id
            if baseline_id is None:
                raise ApplicationError("Project has no current baseline.")
            baseline = _get_baseline_or_raise(uow, project_id, baseline_id)
            progress = [
                TaskProgress(
                    task_id=t.id,
                    percent_complete=t.progress_pct,
                    actual_cost=t.actual_cost,
                    actual_hours=t.actual_hours,
                )
                for t in uow.tasks.list_for_project(project_id)
            ]
            metrics = _ev_svc.earned_value(baseline, progress, status_date)
            return _Assembler.earned_value(baseline.id, metrics)


# ===========================================================================
# USE CASES: TOLERANCE ANALYSIS
# ===========================================================================

@dataclass
class CreateFeatureCommand:
    name: str
    nominal: float
    plus_tolerance: float
    minus_tolerance: float
    distribution: Distribution = Distribution.NORMAL
    component_id: Optional[uuid.UUID] = None
    description: str = ""


class CreateFeatureUseCase:
    def execute(self, cmd: CreateFeatureCommand, uow: AbstractUnitOfWork) -> FeatureDTO:
        with uow:
            if not cmd.name.strip():
                raise ValidationError("Feature name must not be empty.")
            feature = DistributionEngine.validate_feature(
                Feature(
                    name=cmd.name.strip(),
                    component_id=cmd.component_id,
                    nominal=cmd.nominal,
                    plus_tolerance=cmd.plus_tolerance,
                    minus_tolerance=cmd.minus_tolerance,
                    distribution=cmd.distribution,
                    description=cmd.description,
                )
            )
            uow.features.save(feature)
            uow.commit()
            return _Assembler.feature(feature)


class ListFeaturesUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[FeatureDTO]:
        with uow:
            return [_Assembler.feature(f) for f in uow.features.list_all()]


@dataclass
class CreateStackupCommand:
    name: str
    contributions: List[StackupContribution]
    description: str = ""
    spec_limits: SpecLimits = field(default_factory=SpecLimits)
    mc_settings: MonteCarloSettings = field(default_factory=MonteCarloSettings)
    methods: List[AnalysisMethod] = field(
        default_factory=lambda: [
            AnalysisMethod.WORST_CASE,
            AnalysisMethod.RSS,
            AnalysisMethod.MONTE_CARLO,
        ]
    )


class CreateStackupUseCase:
    def execute(self, cmd: CreateStackupCommand, uow: AbstractUnitOfWork) -> StackupDTO:
        with uow:
            if not cmd.name.strip():
                raise ValidationError("Stackup name must not be empty.")
            if not cmd.contributions:
                raise ValidationError("A stackup needs at least one contribution.")
            stackup = Stackup(
                name=cmd.name.strip(),
                description=cmd.description,
                contributions=list(cmd.contributions),
                spec_limits=cmd.spec_limits.validate(),
                mc_settings=cmd.mc_settings.validate(),
                methods=list(cmd.methods),
            )
            _stackup_features(uow, stackup)
            uow.stackups.save(stackup)
            uow.commit()
            return _Assembler.stackup(stackup)


class ListStackupsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[StackupDTO]:
        with uow:
            return [_Assembler.stackup(s) for s in uow.stackups.list_all()]


@dataclass
class AnalyzeStackupCommand:
    stackup_id: uuid.UUID
    methods: Optional[List[AnalysisMethod]] = None
    sample_count: Optional[int] = None
    seed: Optional[int] = None


class AnalyzeStackupUseCase:
    def execute(self, cmd: AnalyzeStackupCommand, uow: AbstractUnitOfWork) -> StackupResultDTO:
        with uow:
            stackup = _get_stackup_or_raise(uow, cmd.stackup_id)
            features = _stackup_features(uow, stackup)
            settings = MonteCarloSettings(
                sample_count=(
                    cmd.sample_count if cmd.sample_count is not None else stackup.mc_settings.sample_count
                ),
                seed=cmd.seed if cmd.seed is not None else stackup.mc_settings.seed,
            )
            result = _stackup_eval.analyze(
                stackup, features, methods=cmd.methods, settings=settings
            )
            return _Assembler.stackup_result(result)


class StackupSensitivityUseCase:
    def execute(
        self, stackup_id: uuid.UUID, uow: AbstractUnitOfWork, target_reduction: float = 0.2
    ) -> SensitivityDTO:
        with uow:
            stackup = _get_stackup_or_raise(uow, stackup_id)
            report = _sensitivity.analyze(stackup, _stackup_features(uow, stackup))
            return _Assembler.sensitivity(
                report,
                _sensitivity.suggest_improvements(report, target_reduction),
                _sensitivity.cumulative_percentages(report),
            )


@dataclass
class CapabilityCommand:
    samples: List[float]
    spec_limits: SpecLimits


class CapabilityUseCase:
    def execute(self, cmd: CapabilityCommand) -> CapabilityDTO:
        return _Assembler.capability(_capability.analyze(cmd.samples, cmd.spec_limits))
