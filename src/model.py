"""
model.py

Domain models for the Engineering Project Scheduler & Tolerance Analyzer.

Entities
--------
Scheduling
- Project
- Resource
- ResourceAssignment
- Task
- TaskDependency
- Milestone
- TaskScheduleInfo / MilestoneScheduleInfo / ResourceUtilization
- ProjectSchedule

Baselines & earned value
- Baseline (with TaskSnapshot, MilestoneSnapshot, ResourceSnapshot)
- TaskVariance / MilestoneVariance / VarianceReport
- TaskProgress / EarnedValueMetrics

Tolerance analysis
- Feature
- StackupContribution
- Stackup (with SpecLimits and MonteCarloSettings)

All models use Python dataclasses for clean, framework-agnostic definitions.
UUID primary keys are used throughout; dependency lists hold predecessor ids,
never object references. Schedule arithmetic works on civil dates; audit
timestamps are always stored in UTC.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from errors import ConfigurationError, ValidationError
from work_calendar import Calendar


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TaskType(str, Enum):
    """
    How a task's duration is derived.

    EFFORT_DRIVEN   – effort hours are the independent variable.
    FIXED_DURATION  – duration_days is fixed regardless of resourcing.
    FIXED_WORK      – work_units are fixed; duration follows allocation.
    MILESTONE       – zero duration marker.
    """
    EFFORT_DRIVEN = "effort_driven"
    FIXED_DURATION = "fixed_duration"
    FIXED_WORK = "fixed_work"
    MILESTONE = "milestone"


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DependencyType(str, Enum):
    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"
    START_TO_FINISH = "start_to_finish"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    AT_RISK = "at_risk"
    ACHIEVED = "achieved"
    MISSED = "missed"


class BaselineType(str, Enum):
    """
    INITIAL   – first plan captured at kickoff.
    APPROVED  – plan re-baselined after an approved change.
    WORKING   – informal working copy.
    ARCHIVED  – superseded; never current.
    """
    INITIAL = "initial"
    APPROVED = "approved"
    WORKING = "working"
    ARCHIVED = "archived"


class VarianceType(str, Enum):
    NO_CHANGE = "no_change"
    SCHEDULE_VARIANCE = "schedule_variance"
    COST_VARIANCE = "cost_variance"
    SCOPE_CHANGE = "scope_change"
    TASK_ADDED = "task_added"
    TASK_REMOVED = "task_removed"


class MilestoneVarianceStatus(str, Enum):
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"     # slipped 1..5 days
    DELAYED = "delayed"     # slipped more than 5 days


class HealthStatus(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class Distribution(str, Enum):
    """Probability law used to sample a feature inside its tolerance band."""
    NORMAL = "normal"
    UNIFORM = "uniform"
    TRIANGULAR = "triangular"
    LOG_NORMAL = "log_normal"


class AnalysisMethod(str, Enum):
    WORST_CASE = "worst_case"
    RSS = "rss"
    MONTE_CARLO = "monte_carlo"


class QualityRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ADEQUATE = "adequate"
    MARGINAL = "marginal"
    POOR = "poor"


class ImpactLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class SchedulingConfig:
    working_hours_per_day: float = 8.0
    working_days_per_week: int = 5
    buffer_percentage: float = 0.10     # 0.0 – 1.0

    def validate(self) -> "SchedulingConfig":
        if not (0.0 < self.working_hours_per_day <= 24.0):
            raise ConfigurationError("working_hours_per_day must be in (0, 24].")
        if not (1 <= self.working_days_per_week <= 7):
            raise ConfigurationError("working_days_per_week must be between 1 and 7.")
        if not (0.0 <= self.buffer_percentage <= 1.0):
            raise ConfigurationError("buffer_percentage must be between 0 and 1.")
        return self


@dataclass
class MonteCarloSettings:
    sample_count: int = 10000
    seed: Optional[int] = None

    def validate(self) -> "MonteCarloSettings":
        if self.sample_count <= 0:
            raise ConfigurationError("Monte Carlo sample_count must be positive.")
        return self


@dataclass
class SpecLimits:
    """Engineering specification limits for a stackup; each bound is optional."""
    lsl: Optional[float] = None
    usl: Optional[float] = None
    target: Optional[float] = None

    def validate(self) -> "SpecLimits":
        if self.lsl is not None and self.usl is not None and self.lsl >= self.usl:
            raise ConfigurationError(
                f"Lower spec limit {self.lsl} must be below upper spec limit {self.usl}."
            )
        return self

    @property
    def is_two_sided(self) -> bool:
        return self.lsl is not None and self.usl is not None


# ---------------------------------------------------------------------------
# Core Project Entities
# ---------------------------------------------------------------------------


@dataclass
class Project:
    """
    Top-level container for a scheduled engineering project.

    A project exclusively owns its tasks, milestones, resources, resource
    calendars and baselines. `calendar` is the project working-time calendar
    shared read-only by every task during a schedule computation.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    description: str = ""
    start_date: date = field(default_factory=date.today)
    calendar: Calendar = field(default_factory=Calendar.standard)

    # Calendars that resources may bind to via Resource.calendar_id
    resource_calendars: Dict[uuid.UUID, Calendar] = field(default_factory=dict)

    # Current baseline reference (FK to Baseline.id); None until the first capture
    current_baseline_id: Optional[uuid.UUID] = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class Resource:
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    project_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → Project.id
    name: str = ""
    email: Optional[str] = None
    role: str = ""
    hourly_rate: float = 0.0
    daily_hours: float = 8.0            # standard working hours per day
    availability_pct: float = 100.0     # 0.0 – 100.0
    calendar_id: Optional[uuid.UUID] = None     # key into Project.resource_calendars
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def capacity_hours_per_day(self) -> float:
        return self.daily_hours * self.availability_pct / 100.0


@dataclass
class ResourceAssignment:
    """
    Allocation of a resource to a task.

    `allocation_pct` is the share of the resource's day spent on the task;
    `full_time` forces it to 100. `assigned_hours` overrides the hours derived
    from the task's effort, `rate_override` the resource's hourly rate.
    """
    resource_id: uuid.UUID
    allocation_pct: float = 100.0
    assigned_hours: Optional[float] = None
    full_time: bool = False
    rate_override: Optional[float] = None
    role_in_task: str = ""

    @property
    def effective_allocation_pct(self) -> float:
        return 100.0 if self.full_time else self.allocation_pct


@dataclass
class TaskDependency:
    """
    Predecessor link stored on the successor.

    `lag_days` is signed: positive = lag, negative = lead. At most one
    dependency exists per (successor, predecessor) pair.
    """
    predecessor_id: uuid.UUID
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    lag_days: float = 0.0
    description: str = ""


@dataclass
class Task:
    """
    A unit of schedulable work.

    Planned dates (`start_date` / `due_date`) are optional; the scheduler
    derives windows itself and may write them back on request. Actual
    timestamps are stamped by workflow transitions.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    project_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → Project.id
    name: str = ""
    description: str = ""
    task_type: TaskType = TaskType.EFFORT_DRIVEN

    estimated_hours: float = 0.0
    actual_hours: float = 0.0
    duration_days: Optional[float] = None   # FIXED_DURATION
    work_units: Optional[float] = None      # FIXED_WORK

    dependencies: List[TaskDependency] = field(default_factory=list)
    assignments: List[ResourceAssignment] = field(default_factory=list)

    # Planned window (inclusive)
    start_date: Optional[date] = None
    due_date: Optional[date] = None

    # Progress & status
    status: TaskStatus = TaskStatus.NOT_STARTED
    progress_pct: float = 0.0           # 0.0 – 100.0
    actual_cost: float = 0.0
    actual_start: Optional[datetime] = None
    actual_completion: Optional[datetime] = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class Milestone:
    """A zero-duration checkpoint with a mandatory target date."""
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    project_id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    description: str = ""
    target_date: date = field(default_factory=date.today)
    actual_date: Optional[date] = None
    status: MilestoneStatus = MilestoneStatus.PENDING
    dependencies: List[TaskDependency] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Schedule Results (derived values; never stored on the inputs)
# ---------------------------------------------------------------------------


@dataclass
class TaskScheduleInfo:
    """
    Scheduled window of one task.

    Finishes are exclusive day boundaries: earliest_finish − earliest_start
    equals the duration in days. `finish_date` is the last calendar day the
    task occupies.
    """
    task_id: uuid.UUID
    duration_days: int
    earliest_start: date
    earliest_finish: date
    latest_start: date
    latest_finish: date
    total_float_days: int = 0
    free_float_days: int = 0
    is_critical: bool = False

    @property
    def finish_date(self) -> date:
        if self.duration_days <= 0:
            return self.earliest_start
        return self.earliest_finish - timedelta(days=1)


@dataclass
class MilestoneScheduleInfo:
    milestone_id: uuid.UUID
    earliest_date: date
    latest_date: date
    target_date: date
    slack_days: int = 0
    is_critical: bool = False


@dataclass
class ResourceUtilization:
    resource_id: uuid.UUID
    name: str
    total_hours: float = 0.0
    average_daily_hours: float = 0.0
    peak_allocation_pct: float = 0.0
    utilization_pct: float = 0.0            # capped at 100 for display
    over_allocated_days: List[date] = field(default_factory=list)
    task_ids: List[uuid.UUID] = field(default_factory=list)


@dataclass
class ProjectSchedule:
    project_start: date
    project_end: date
    total_duration_days: int
    critical_path: List[uuid.UUID] = field(default_factory=list)
    task_schedule: Dict[uuid.UUID, TaskScheduleInfo] = field(default_factory=dict)
    milestone_schedule: Dict[uuid.UUID, MilestoneScheduleInfo] = field(default_factory=dict)
    resource_utilization: Dict[uuid.UUID, ResourceUtilization] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=_utcnow, compare=False)


# ---------------------------------------------------------------------------
# Baseline Entities
# ---------------------------------------------------------------------------


class _WriteOnce:
    """Rejects attribute assignment once __post_init__ has sealed the instance."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "_sealed", True)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False):
            raise ValidationError(
                f"{type(self).__name__} is immutable; cannot set '{name}'."
            )
        object.__setattr__(self, name, value)

    def __delattr__(self, name: str) -> None:
        raise ValidationError(f"{type(self).__name__} is immutable; cannot delete '{name}'.")


@dataclass(eq=True)
class TaskSnapshot(_WriteOnce):
    task_id: uuid.UUID
    name: str
    task_type: TaskType
    start_date: date
    end_date: date                  # inclusive
    duration_days: int
    effort_hours: float
    cost: float
    assigned_resources: Tuple[uuid.UUID, ...] = ()
    dependencies: Tuple[uuid.UUID, ...] = ()


@dataclass(eq=True)
class MilestoneSnapshot(_WriteOnce):
    milestone_id: uuid.UUID
    name: str
    target_date: date
    dependencies: Tuple[uuid.UUID, ...] = ()


@dataclass(eq=True)
class ResourceSnapshot(_WriteOnce):
    resource_id: uuid.UUID
    name: str
    hourly_rate: float
    total_allocated_hours: float
    total_cost: float


@dataclass(eq=True)
class Baseline(_WriteOnce):
    """
    Immutable snapshot of a project plan.

    Any attribute assignment after construction raises ValidationError.
    Archiving a baseline produces a replacement record (dataclasses.replace)
    with a new type and is_current flag; the snapshot content is shared
    unchanged.
    """
    project_id: uuid.UUID
    name: str
    baseline_type: BaselineType
    author: str
    project_start: date
    project_end: date
    total_cost: float
    total_effort_hours: float
    tasks: Tuple[TaskSnapshot, ...] = ()
    milestones: Tuple[MilestoneSnapshot, ...] = ()
    resources: Tuple[ResourceSnapshot, ...] = ()
    description: str = ""
    is_current: bool = False
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=_utcnow)

    def task(self, task_id: uuid.UUID) -> Optional[TaskSnapshot]:
        return next((t for t in self.tasks if t.task_id == task_id), None)

    def milestone(self, milestone_id: uuid.UUID) -> Optional[MilestoneSnapshot]:
        return next((m for m in self.milestones if m.milestone_id == milestone_id), None)


@dataclass
class TaskVariance:
    task_id: uuid.UUID
    name: str
    variance_type: VarianceType
    schedule_variance_days: int = 0     # positive = later than baseline
    start_variance_days: int = 0
    duration_variance_days: int = 0
    cost_variance: float = 0.0
    effort_variance: float = 0.0


@dataclass
class MilestoneVariance:
    milestone_id: uuid.UUID
    name: str
    slip_days: int                      # positive = later than baseline
    status: MilestoneVarianceStatus


@dataclass
class VarianceSummary:
    tasks_changed: int = 0
    tasks_added: int = 0
    tasks_removed: int = 0
    milestones_at_risk: int = 0
    total_cost_variance: float = 0.0
    total_effort_variance: float = 0.0
    project_schedule_variance_days: int = 0
    health: HealthStatus = HealthStatus.GREEN


@dataclass
class VarianceReport:
    newer_baseline_id: uuid.UUID
    older_baseline_id: uuid.UUID
    task_variances: List[TaskVariance] = field(default_factory=list)
    milestone_variances: List[MilestoneVariance] = field(default_factory=list)
    summary: VarianceSummary = field(default_factory=VarianceSummary)


# ---------------------------------------------------------------------------
# Earned Value
# ---------------------------------------------------------------------------


@dataclass
class TaskProgress:
    task_id: uuid.UUID
    percent_complete: float = 0.0   # 0.0 – 100.0
    actual_cost: float = 0.0
    actual_hours: float = 0.0


@dataclass
class EarnedValueMetrics:
    status_date: date
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
    schedule_health: HealthStatus
    cost_health: HealthStatus
    overall_health: HealthStatus


# ---------------------------------------------------------------------------
# Tolerance Entities
# ---------------------------------------------------------------------------


@dataclass
class Feature:
    """
    A toleranced dimension.

    The tolerance band is [nominal − minus_tolerance, nominal + plus_tolerance];
    both tolerances are stored as non-negative magnitudes.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    component_id: Optional[uuid.UUID] = None
    nominal: float = 0.0
    plus_tolerance: float = 0.0
    minus_tolerance: float = 0.0
    distribution: Distribution = Distribution.NORMAL
    description: str = ""

    @property
    def lower_limit(self) -> float:
        return self.nominal - self.minus_tolerance

    @property
    def upper_limit(self) -> float:
        return self.nominal + self.plus_tolerance


@dataclass
class StackupContribution:
    """
    One signed term of a stackup.

    `direction` is typically ±1; `half_count` halves the term for features
    shared between both sides of the accumulation.
    """
    feature_id: uuid.UUID
    component_id: Optional[uuid.UUID] = None
    direction: float = 1.0
    half_count: bool = False

    @property
    def multiplier(self) -> float:
        return self.direction * (0.5 if self.half_count else 1.0)


@dataclass
class Stackup:
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    description: str = ""
    contributions: List[StackupContribution] = field(default_factory=list)
    spec_limits: SpecLimits = field(default_factory=SpecLimits)
    mc_settings: MonteCarloSettings = field(default_factory=MonteCarloSettings)
    methods: List[AnalysisMethod] = field(
        default_factory=lambda: [
            AnalysisMethod.WORST_CASE,
            AnalysisMethod.RSS,
            AnalysisMethod.MONTE_CARLO,
        ]
    )
    created_at: datetime = field(default_factory=_utcnow)
