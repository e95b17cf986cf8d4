"""
service.py

Service layer for the Engineering Project Scheduler.

Responsibilities
----------------
Each service class encapsulates the business logic for its domain.
Services receive and return domain model instances (from model.py).
No persistence is handled here; callers store and retrieve models
through the repositories of the application layer.

Services
--------
- PlanningService             – Creation and validation of projects, resources, tasks, milestones
- DurationService             – Task duration derivation (effort / fixed / work / milestone)
- SchedulerService            – Critical-path computation: graph, passes, floats, critical set
- ResourceUtilizationService  – Assigned hours, peak allocation and over-allocation detection
- WorkflowService             – Dependency editing, task state machine, calendar-aware earliest start
- BaselineService             – Baseline capture, archiving and variance reporting
- EarnedValueService          – PV / EV / AC and derived indices against a baseline
- MilestoneService            – Milestone status evaluation

Design notes
------------
- Schedule computations are pure: inputs are never mutated and results are
  fresh ProjectSchedule values. Iteration order is the topological order with
  ties broken on id, so identical inputs give identical outputs.
- Scheduler lag is in calendar days (fractional lags round up); the workflow
  layer translates lag in working days through the Calendar.
- Business rule violations raise the DomainError subclasses from errors.py.
- Methods that mutate a model return it so the caller can hand it to a
  repository.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from errors import (
    BudgetExceededError,
    CircularDependencyError,
    EmptyProjectError,
    InvalidTransitionError,
    ReferenceNotFoundError,
    ValidationError,
)
from model import (
    Baseline,
    BaselineType,
    DependencyType,
    EarnedValueMetrics,
    HealthStatus,
    Milestone,
    MilestoneScheduleInfo,
    MilestoneSnapshot,
    MilestoneStatus,
    MilestoneVariance,
    MilestoneVarianceStatus,
    Project,
    ProjectSchedule,
    Resource,
    ResourceAssignment,
    ResourceSnapshot,
    ResourceUtilization,
    SchedulingConfig,
    Task,
    TaskDependency,
    TaskProgress,
    TaskScheduleInfo,
    TaskSnapshot,
    TaskStatus,
    TaskType,
    TaskVariance,
    VarianceReport,
    VarianceSummary,
    VarianceType,
)
from work_calendar import Calendar

logger = logging.getLogger(__name__)

_Node = Union[Task, Milestone]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _days(n: int) -> timedelta:
    return timedelta(days=n)


def _lag(dependency: TaskDependency) -> timedelta:
    """Scheduler lag in whole calendar days; fractional values round up."""
    return _days(math.ceil(dependency.lag_days))


def _ceil(value: float) -> int:
    # Rounding first keeps 10 * 1.1 from ceiling to 12.
    return int(math.ceil(round(value, 9)))


def _require_non_negative(value: Optional[float], label: str) -> None:
    if value is not None and value < 0:
        raise ValidationError(f"{label} must not be negative.")


def _require_percentage(value: float, label: str) -> None:
    if not (0.0 <= value <= 100.0):
        raise ValidationError(f"{label} must be between 0 and 100.")


def _require_name(name: str, entity: str) -> None:
    if not name or not name.strip():
        raise ValidationError(f"{entity} name must not be empty.")


# ---------------------------------------------------------------------------
# PlanningService
# ---------------------------------------------------------------------------

class PlanningService:
    """
    Creates and edits the planning entities (projects, resources, tasks,
    milestones), enforcing their invariants.
    """

    def create_project(
        self,
        name: str,
        description: str = "",
        start_date: Optional[date] = None,
        calendar: Optional[Calendar] = None,
    ) -> Project:
        _require_name(name, "Project")
        return Project(
            name=name.strip(),
            description=description,
            start_date=start_date or date.today(),
            calendar=calendar or Calendar.standard(),
        )

    @staticmethod
    def _check_calendar(calendar: Calendar) -> Calendar:
        calendar.working_hours.validate()
        if not calendar.working_weekdays:
            raise ValidationError("A calendar needs at least one working weekday.")
        if any(not (0 <= d <= 6) for d in calendar.working_weekdays):
            raise ValidationError("Working weekdays must be 0 (Monday) to 6 (Sunday).")
        return calendar

    def replace_calendar(self, project: Project, calendar: Calendar) -> Project:
        project.calendar = self._check_calendar(calendar)
        project.updated_at = _utcnow()
        return project

    def add_resource_calendar(self, project: Project, calendar: Calendar) -> uuid.UUID:
        """Register a calendar resources of this project can bind to; returns its id."""
        calendar_id = uuid.uuid4()
        project.resource_calendars[calendar_id] = self._check_calendar(calendar)
        project.updated_at = _utcnow()
        return calendar_id

    def add_resource(
        self,
        project_id: uuid.UUID,
        name: str,
        hourly_rate: float,
        email: Optional[str] = None,
        role: str = "",
        daily_hours: float = 8.0,
        availability_pct: float = 100.0,
        calendar_id: Optional[uuid.UUID] = None,
    ) -> Resource:
        _require_name(name, "Resource")
        _require_non_negative(hourly_rate, "Hourly rate")
        if not (0.0 < daily_hours <= 24.0):
            raise ValidationError("Daily hours must be in (0, 24].")
        _require_percentage(availability_pct, "Availability")
        return Resource(
            project_id=project_id,
            name=name.strip(),
            email=email,
            role=role,
            hourly_rate=hourly_rate,
            daily_hours=daily_hours,
            availability_pct=availability_pct,
            calendar_id=calendar_id,
        )

    def add_task(
        self,
        project_id: uuid.UUID,
        name: str,
        task_type: TaskType = TaskType.EFFORT_DRIVEN,
        estimated_hours: float = 0.0,
        duration_days: Optional[float] = None,
        work_units: Optional[float] = None,
        assignments: Sequence[ResourceAssignment] = (),
        description: str = "",
        start_date: Optional[date] = None,
        due_date: Optional[date] = None,
    ) -> Task:
        _require_name(name, "Task")
        _require_non_negative(estimated_hours, "Estimated hours")
        _require_non_negative(duration_days, "Duration")
        _require_non_negative(work_units, "Work units")
        if task_type == TaskType.FIXED_DURATION and duration_days is None:
            raise ValidationError("Fixed-duration tasks need duration_days.")
        if task_type == TaskType.FIXED_WORK and work_units is None:
            raise ValidationError("Fixed-work tasks need work_units.")
        if start_date and due_date and due_date < start_date:
            raise ValidationError("Due date must not precede start date.")
        for assignment in assignments:
            _require_percentage(assignment.allocation_pct, "Allocation")
            _require_non_negative(assignment.assigned_hours, "Assigned hours")
            _require_non_negative(assignment.rate_override, "Rate override")
        return Task(
            project_id=project_id,
            name=name.strip(),
            description=description,
            task_type=task_type,
            estimated_hours=estimated_hours,
            duration_days=duration_days,
            work_units=work_units,
            assignments=list(assignments),
            start_date=start_date,
            due_date=due_date,
        )

    def add_milestone(
        self,
        project_id: uuid.UUID,
        name: str,
        target_date: date,
        dependencies: Sequence[TaskDependency] = (),
        description: str = "",
    ) -> Milestone:
        _require_name(name, "Milestone")
        seen = set()
        for dep in dependencies:
            if dep.predecessor_id in seen:
                raise ValidationError("Duplicate milestone dependency.")
            seen.add(dep.predecessor_id)
        return Milestone(
            project_id=project_id,
            name=name.strip(),
            description=description,
            target_date=target_date,
            dependencies=list(dependencies),
        )

    def update_progress(
        self,
        task: Task,
        progress_pct: float,
        actual_hours: Optional[float] = None,
        actual_cost: Optional[float] = None,
    ) -> Task:
        _require_percentage(progress_pct, "Progress")
        _require_non_negative(actual_hours, "Actual hours")
        _require_non_negative(actual_cost, "Actual cost")
        task.progress_pct = progress_pct
        if actual_hours is not None:
            task.actual_hours = actual_hours
        if actual_cost is not None:
            task.actual_cost = actual_cost
        task.updated_at = _utcnow()
        return task


# ---------------------------------------------------------------------------
# DurationService
# ---------------------------------------------------------------------------

class DurationService:
    """
    Derives whole-day task durations from task type, effort and allocation.
    """

    MAX_CONSTRAINED_WORKING_DAYS = 1000

    def __init__(self, config: Optional[SchedulingConfig] = None):
        self.config = (config or SchedulingConfig()).validate()

    def allocation_factor(self, task: Task) -> float:
        """Σ allocation / 100 over the task's assignments; 1 when there are none."""
        total = sum(a.effective_allocation_pct for a in task.assignments) / 100.0
        return total if total > 0 else 1.0

    def base_duration_days(self, task: Task) -> float:
        """Duration before the buffer is applied."""
        hours_per_day = self.config.working_hours_per_day
        if task.task_type == TaskType.MILESTONE:
            return 0.0
        if task.task_type == TaskType.FIXED_DURATION:
            return task.duration_days if task.duration_days is not None else 1.0
        if task.task_type == TaskType.FIXED_WORK:
            work = task.work_units if task.work_units is not None else task.estimated_hours
            return float(_ceil(work / (self.allocation_factor(task) * hours_per_day)))
        duration_hours = task.estimated_hours / self.allocation_factor(task)
        return float(_ceil(duration_hours / hours_per_day))

    def duration_days(self, task: Task) -> int:
        if task.task_type == TaskType.MILESTONE:
            return 0
        buffered = self.base_duration_days(task) * (1.0 + self.config.buffer_percentage)
        return max(0, _ceil(buffered))

    def resource_constrained_duration(
        self,
        task: Task,
        resources: Dict[uuid.UUID, Resource],
        calendar: Calendar,
        start: date,
    ) -> Tuple[int, date]:
        """
        Simulate day-by-day burn-down of the task's effort against the daily
        capacity of its assigned resources.

        Returns (working days used, exclusive finish date). Raises
        BudgetExceededError, with the partial state as diagnostic, when the
        work cannot be completed inside the iteration budget.
        """
        if not task.assignments:
            days = self.duration_days(task)
            return days, start + _days(days)

        daily_capacity = 0.0
        for assignment in task.assignments:
            resource = resources.get(assignment.resource_id)
            if resource is None:
                raise ReferenceNotFoundError(
                    f"Resource {assignment.resource_id} assigned to '{task.name}' not found."
                )
            daily_capacity += (
                resource.capacity_hours_per_day * assignment.effective_allocation_pct / 100.0
            )

        remaining = task.estimated_hours
        working_days = 0
        calendar_days = 0
        max_calendar_days = self.MAX_CONSTRAINED_WORKING_DAYS * 10 + 365
        current = start
        while remaining > 0.01:
            if (
                working_days >= self.MAX_CONSTRAINED_WORKING_DAYS
                or calendar_days >= max_calendar_days
            ):
                raise BudgetExceededError(
                    f"Resource-constrained duration of '{task.name}' exceeded the iteration budget.",
                    diagnostic={
                        "task_id": str(task.id),
                        "hours_remaining": round(remaining, 4),
                        "working_days_simulated": working_days,
                        "calendar_days_simulated": calendar_days,
                        "daily_capacity_hours": daily_capacity,
                    },
                )
            hours = calendar.working_hours_on(current)
            if hours > 0 and daily_capacity > 0:
                remaining -= min(daily_capacity * hours / calendar.hours_per_day, remaining)
                working_days += 1
            current += _days(1)
            calendar_days += 1
        return working_days, current


# ---------------------------------------------------------------------------
# ResourceUtilizationService
# ---------------------------------------------------------------------------

class ResourceUtilizationService:
    """
    Per-resource load derived from a computed schedule.

    Over-allocation is detected, never resolved: no task is moved.
    """

    def __init__(self, config: Optional[SchedulingConfig] = None):
        self._durations = DurationService(config)

    @property
    def config(self) -> SchedulingConfig:
        return self._durations.config

    def task_hours(self, task: Task, duration_days: int) -> float:
        """Effective working hours of a task."""
        if task.task_type == TaskType.MILESTONE:
            return 0.0
        if task.task_type == TaskType.FIXED_WORK and task.work_units is not None:
            return task.work_units
        if task.estimated_hours > 0:
            return task.estimated_hours
        return (
            duration_days
            * self.config.working_hours_per_day
            * self._durations.allocation_factor(task)
        )

    def assignment_hours(
        self, task: Task, assignment: ResourceAssignment, duration_days: int
    ) -> float:
        """Hours of `task` attributed to one assignment, split by allocation share."""
        if assignment.assigned_hours is not None:
            return assignment.assigned_hours
        total_pct = sum(a.effective_allocation_pct for a in task.assignments)
        if total_pct > 0:
            share = assignment.effective_allocation_pct / total_pct
        else:
            share = 1.0 / len(task.assignments)
        return self.task_hours(task, duration_days) * share

    def compute(
        self,
        tasks: Sequence[Task],
        resources: Sequence[Resource],
        task_schedule: Dict[uuid.UUID, TaskScheduleInfo],
        project_start: date,
        project_end: date,
        calendar: Calendar,
        resource_calendars: Optional[Dict[uuid.UUID, Calendar]] = None,
    ) -> Dict[uuid.UUID, ResourceUtilization]:
        resource_calendars = resource_calendars or {}
        ordered_tasks = sorted(tasks, key=lambda t: t.id)
        result: Dict[uuid.UUID, ResourceUtilization] = {}

        for resource in sorted(resources, key=lambda r: r.id):
            cal = resource_calendars.get(resource.calendar_id, calendar) if resource.calendar_id else calendar
            span_days = cal.working_days_between(project_start, project_end)
            utilization = ResourceUtilization(resource_id=resource.id, name=resource.name)
            daily_pct: Dict[date, float] = {}

            for task in ordered_tasks:
                info = task_schedule.get(task.id)
                if info is None:
                    continue
                for assignment in task.assignments:
                    if assignment.resource_id != resource.id:
                        continue
                    utilization.total_hours += self.assignment_hours(task, assignment, info.duration_days)
                    if task.id not in utilization.task_ids:
                        utilization.task_ids.append(task.id)
                    day = info.earliest_start
                    while day < info.earliest_finish:
                        if cal.is_working_day(day):
                            daily_pct[day] = daily_pct.get(day, 0.0) + assignment.effective_allocation_pct
                        day += _days(1)

            capacity = span_days * resource.capacity_hours_per_day
            utilization.total_hours = round(utilization.total_hours, 6)
            utilization.average_daily_hours = utilization.total_hours / span_days if span_days > 0 else 0.0
            utilization.peak_allocation_pct = max(daily_pct.values(), default=0.0)
            utilization.utilization_pct = (
                min(100.0, utilization.total_hours / capacity * 100.0) if capacity > 0 else 0.0
            )
            utilization.over_allocated_days = sorted(
                d for d, pct in daily_pct.items() if pct > resource.availability_pct + 1e-9
            )
            if utilization.over_allocated_days:
                logger.warning(
                    "Resource '%s' is over-allocated on %d day(s), peak %.1f%%",
                    resource.name,
                    len(utilization.over_allocated_days),
                    utilization.peak_allocation_pct,
                )
            result[resource.id] = utilization
        return result


# ---------------------------------------------------------------------------
# SchedulerService
# ---------------------------------------------------------------------------

class SchedulerService:
    """
    Critical-path engine.

    compute_schedule() builds the dependency graph over tasks and milestones,
    orders it topologically, runs the forward and backward passes, derives
    total and free float and reports the set of zero-float nodes.
    """

    def __init__(self, config: Optional[SchedulingConfig] = None):
        self.config = (config or SchedulingConfig()).validate()
        self._durations = DurationService(self.config)
        self._utilization = ResourceUtilizationService(self.config)

    def compute_schedule(
        self,
        tasks: Sequence[Task],
        milestones: Sequence[Milestone],
        resources: Sequence[Resource],
        project_start: date,
        calendar: Optional[Calendar] = None,
        resource_calendars: Optional[Dict[uuid.UUID, Calendar]] = None,
    ) -> ProjectSchedule:
        if not tasks:
            raise EmptyProjectError("Cannot schedule a project with no tasks.")
        calendar = calendar or Calendar.standard()

        nodes: Dict[uuid.UUID, _Node] = {t.id: t for t in tasks}
        nodes.update({m.id: m for m in milestones})
        milestone_ids = {m.id for m in milestones}

        warnings: List[str] = []
        predecessors = self._resolve_predecessors(nodes, warnings)
        order = self.topological_order(nodes, predecessors)
        successors = self._invert(order, predecessors)

        durations: Dict[uuid.UUID, int] = {
            node_id: 0 if node_id in milestone_ids else self._durations.duration_days(nodes[node_id])
            for node_id in order
        }

        # --- Forward pass ---------------------------------------------------
        es: Dict[uuid.UUID, date] = {}
        ef: Dict[uuid.UUID, date] = {}
        for node_id in order:
            dur = durations[node_id]
            start = project_start
            for dep in predecessors[node_id]:
                start = max(start, self._forward_constraint(dep, es, ef, dur))
            es[node_id] = start
            ef[node_id] = start + _days(dur)

        # --- Backward pass --------------------------------------------------
        # Milestone targets widen the horizon but never bound a predecessor's
        # latest finish; a late milestone shows up as negative slack instead.
        horizon = max(list(ef.values()) + [m.target_date for m in milestones])
        ls: Dict[uuid.UUID, date] = {}
        lf: Dict[uuid.UUID, date] = {}
        for node_id in reversed(order):
            dur = durations[node_id]
            finish = horizon
            for succ_id, dep in successors[node_id]:
                finish = min(finish, self._backward_constraint(dep, ls[succ_id], lf[succ_id], dur))
            lf[node_id] = finish
            ls[node_id] = finish - _days(dur)

        # --- Floats and critical set ---------------------------------------
        task_schedule: Dict[uuid.UUID, TaskScheduleInfo] = {}
        milestone_schedule: Dict[uuid.UUID, MilestoneScheduleInfo] = {}
        critical_path: List[uuid.UUID] = []
        for node_id in order:
            if node_id in milestone_ids:
                target = nodes[node_id].target_date
                slack = (target - es[node_id]).days
                milestone_schedule[node_id] = MilestoneScheduleInfo(
                    milestone_id=node_id,
                    earliest_date=es[node_id],
                    latest_date=target,
                    target_date=target,
                    slack_days=slack,
                    is_critical=slack <= 0,
                )
                if slack <= 0:
                    critical_path.append(node_id)
                continue

            dur = durations[node_id]
            total_float = (ls[node_id] - es[node_id]).days
            free_float = 0
            if successors[node_id]:
                limit = min(
                    self._free_float_limit(dep, es[succ_id], ef[succ_id], dur)
                    for succ_id, dep in successors[node_id]
                )
                free_float = (limit - ef[node_id]).days
            task_schedule[node_id] = TaskScheduleInfo(
                task_id=node_id,
                duration_days=dur,
                earliest_start=es[node_id],
                earliest_finish=ef[node_id],
                latest_start=ls[node_id],
                latest_finish=lf[node_id],
                total_float_days=total_float,
                free_float_days=free_float,
                is_critical=total_float <= 0,
            )
            if total_float <= 0:
                critical_path.append(node_id)

        project_end = max(
            [info.finish_date for info in task_schedule.values()]
            + [m.target_date for m in milestones]
        )
        utilization = self._utilization.compute(
            tasks,
            resources,
            task_schedule,
            project_start,
            project_end,
            calendar,
            resource_calendars,
        )
        logger.debug(
            "Scheduled %d task(s) and %d milestone(s): %s → %s, %d critical node(s)",
            len(task_schedule), len(milestone_schedule),
            project_start, project_end, len(critical_path),
        )
        return ProjectSchedule(
            project_start=project_start,
            project_end=project_end,
            total_duration_days=(project_end - project_start).days,
            critical_path=critical_path,
            task_schedule=task_schedule,
            milestone_schedule=milestone_schedule,
            resource_utilization=utilization,
            warnings=warnings,
        )

    # --- Graph --------------------------------------------------------------

    def _resolve_predecessors(
        self, nodes: Dict[uuid.UUID, _Node], warnings: List[str]
    ) -> Dict[uuid.UUID, List[TaskDependency]]:
        """Keep dependencies whose predecessor is known; warn about the rest."""
        predecessors: Dict[uuid.UUID, List[TaskDependency]] = {}
        for node_id in sorted(nodes):
            node = nodes[node_id]
            kept: List[TaskDependency] = []
            for dep in node.dependencies:
                if dep.predecessor_id not in nodes:
                    message = (
                        f"'{node.name}' depends on unknown predecessor "
                        f"{dep.predecessor_id}; dependency ignored."
                    )
                    logger.warning(message)
                    warnings.append(message)
                    continue
                kept.append(dep)
            predecessors[node_id] = kept
        return predecessors

    def topological_order(
        self,
        nodes: Dict[uuid.UUID, _Node],
        predecessors: Dict[uuid.UUID, List[TaskDependency]],
    ) -> List[uuid.UUID]:
        """
        Depth-first topological sort with deterministic tie-breaking on id.

        Predecessors always precede their successors in the result. A cycle
        raises CircularDependencyError listing its members in flow order.
        """
        in_progress, done = 1, 2
        state: Dict[uuid.UUID, int] = {}
        order: List[uuid.UUID] = []

        def _preds(node_id: uuid.UUID):
            return iter(sorted({d.predecessor_id for d in predecessors[node_id]}))

        for root in sorted(nodes):
            if root in state:
                continue
            state[root] = in_progress
            path = [root]
            stack = [(root, _preds(root))]
            while stack:
                node_id, pending = stack[-1]
                nxt = next(pending, None)
                if nxt is None:
                    stack.pop()
                    path.pop()
                    state[node_id] = done
                    order.append(node_id)
                elif nxt not in state:
                    state[nxt] = in_progress
                    path.append(nxt)
                    stack.append((nxt, _preds(nxt)))
                elif state[nxt] == in_progress:
                    cycle = list(reversed(path[path.index(nxt):] + [nxt]))
                    names = " → ".join(nodes[n].name or str(n) for n in cycle)
                    raise CircularDependencyError(f"Circular dependency detected: {names}", cycle)
        return order

    @staticmethod
    def _invert(
        order: List[uuid.UUID],
        predecessors: Dict[uuid.UUID, List[TaskDependency]],
    ) -> Dict[uuid.UUID, List[Tuple[uuid.UUID, TaskDependency]]]:
        successors: Dict[uuid.UUID, List[Tuple[uuid.UUID, TaskDependency]]] = {n: [] for n in order}
        for node_id in order:
            for dep in predecessors[node_id]:
                successors[dep.predecessor_id].append((node_id, dep))
        return successors

    # --- Dependency rules ---------------------------------------------------

    @staticmethod
    def _forward_constraint(
        dep: TaskDependency,
        es: Dict[uuid.UUID, date],
        ef: Dict[uuid.UUID, date],
        duration: int,
    ) -> date:
        """Earliest start the successor may take given one predecessor edge."""
        pred = dep.predecessor_id
        lag = _lag(dep)
        if dep.dependency_type == DependencyType.FINISH_TO_START:
            return ef[pred] + lag
        if dep.dependency_type == DependencyType.START_TO_START:
            return es[pred] + lag
        if dep.dependency_type == DependencyType.FINISH_TO_FINISH:
            return ef[pred] + lag - _days(duration)
        return es[pred] + lag - _days(duration)

    @staticmethod
    def _backward_constraint(
        dep: TaskDependency, succ_ls: date, succ_lf: date, duration: int
    ) -> date:
        """Latest finish the predecessor may take without moving the successor's late window."""
        lag = _lag(dep)
        if dep.dependency_type == DependencyType.FINISH_TO_START:
            return succ_ls - lag
        if dep.dependency_type == DependencyType.START_TO_START:
            return succ_ls - lag + _days(duration)
        if dep.dependency_type == DependencyType.FINISH_TO_FINISH:
            return succ_lf - lag
        return succ_lf - lag + _days(duration)

    @staticmethod
    def _free_float_limit(
        dep: TaskDependency, succ_es: date, succ_ef: date, duration: int
    ) -> date:
        """Latest finish the predecessor may take without moving the successor's early start."""
        lag = _lag(dep)
        if dep.dependency_type == DependencyType.FINISH_TO_START:
            return succ_es - lag
        if dep.dependency_type == DependencyType.START_TO_START:
            return succ_es - lag + _days(duration)
        if dep.dependency_type == DependencyType.FINISH_TO_FINISH:
            return succ_ef - lag
        return succ_ef - lag + _days(duration)


# ---------------------------------------------------------------------------
# WorkflowService
# ---------------------------------------------------------------------------

ALLOWED_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.NOT_STARTED: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.ON_HOLD, TaskStatus.CANCELLED}
    ),
    TaskStatus.IN_PROGRESS: frozenset(
        {TaskStatus.ON_HOLD, TaskStatus.COMPLETED, TaskStatus.CANCELLED}
    ),
    TaskStatus.ON_HOLD: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.CANCELLED: frozenset({TaskStatus.NOT_STARTED}),
    TaskStatus.COMPLETED: frozenset(),
}


class WorkflowService:
    """
    Task state machine and dependency editing.

    Dependencies are validated against the whole task graph before they are
    added, so the graph handed to the scheduler stays acyclic.
    """

    # --- Dependencies -------------------------------------------------------

    def add_dependency(
        self,
        successor: Task,
        predecessor_id: uuid.UUID,
        dependency_type: DependencyType,
        lag_days: float,
        tasks: Sequence[Task],
    ) -> Task:
        """
        Add a predecessor link to `successor`.

        Raises:
        - ValidationError for a self-dependency or a duplicate pair.
        - ReferenceNotFoundError if the predecessor is not among `tasks`.
        - CircularDependencyError if the link would close a cycle.
        """
        if predecessor_id == successor.id:
            raise ValidationError("A task cannot depend on itself.")
        if not any(t.id == predecessor_id for t in tasks):
            raise ReferenceNotFoundError(f"Predecessor task {predecessor_id} not found.")
        if any(d.predecessor_id == predecessor_id for d in successor.dependencies):
            raise ValidationError("This dependency already exists.")
        if self._would_create_cycle(predecessor_id, successor.id, tasks):
            raise CircularDependencyError(
                "Adding this dependency would create a circular dependency chain.",
                [predecessor_id, successor.id, predecessor_id],
            )

        successor.dependencies.append(
            TaskDependency(
                predecessor_id=predecessor_id,
                dependency_type=dependency_type,
                lag_days=lag_days,
            )
        )
        successor.updated_at = _utcnow()
        return successor

    def remove_dependency(self, successor: Task, predecessor_id: uuid.UUID) -> Task:
        remaining = [d for d in successor.dependencies if d.predecessor_id != predecessor_id]
        if len(remaining) == len(successor.dependencies):
            raise ReferenceNotFoundError(
                f"Task '{successor.name}' has no dependency on {predecessor_id}."
            )
        successor.dependencies = remaining
        successor.updated_at = _utcnow()
        return successor

    def dependents_of(self, task_id: uuid.UUID, tasks: Iterable[Task]) -> List[uuid.UUID]:
        """Ids of tasks that list `task_id` as a predecessor, sorted."""
        return sorted(
            t.id for t in tasks if any(d.predecessor_id == task_id for d in t.dependencies)
        )

    def _would_create_cycle(
        self,
        new_predecessor_id: uuid.UUID,
        new_successor_id: uuid.UUID,
        tasks: Sequence[Task],
    ) -> bool:
        """
        Detect cycles using DFS from new_successor_id.
        If we can reach new_predecessor_id by following successors, adding the
        new dependency would create a cycle.
        """
        adjacency: Dict[uuid.UUID, List[uuid.UUID]] = {}
        for task in tasks:
            for dep in task.dependencies:
                adjacency.setdefault(dep.predecessor_id, []).append(task.id)

        visited: set = set()
        stack = [new_successor_id]
        while stack:
            node = stack.pop()
            if node == new_predecessor_id:
                return True
            if node in visited:
                continue
            visited.add(node)
            stack.extend(adjacency.get(node, []))
        return False

    # --- Calendar-aware earliest start ---------------------------------------

    def earliest_start(
        self, task: Task, tasks: Sequence[Task], calendar: Calendar
    ) -> Optional[date]:
        """
        Latest date implied by the task's dependencies, with lag counted in
        working days. FS/FF edges measure from the predecessor's due date,
        SS/SF from its start date. Predecessors without the relevant planned
        date impose nothing; None means no constraint at all.
        """
        by_id = {t.id: t for t in tasks}
        latest: Optional[date] = None
        for dep in task.dependencies:
            pred = by_id.get(dep.predecessor_id)
            if pred is None:
                raise ReferenceNotFoundError(f"Predecessor task {dep.predecessor_id} not found.")
            if dep.dependency_type in (DependencyType.FINISH_TO_START, DependencyType.FINISH_TO_FINISH):
                base = pred.due_date
            else:
                base = pred.start_date
            if base is None:
                continue
            if dep.lag_days > 0:
                candidate = calendar.advance(base, dep.lag_days)
            elif dep.lag_days < 0:
                candidate = calendar.retreat(base, -dep.lag_days)
            else:
                candidate = base
            if latest is None or candidate > latest:
                latest = candidate
        return latest

    # --- State machine --------------------------------------------------------

    def transition(
        self,
        task: Task,
        from_status: TaskStatus,
        to_status: TaskStatus,
        tasks: Sequence[Task] = (),
        now: Optional[datetime] = None,
    ) -> Tuple[Task, List[str]]:
        """
        Move `task` from `from_status` to `to_status` and run the automatic
        actions for the new state. The task is left untouched on failure.
        """
        if task.status != from_status:
            raise InvalidTransitionError(
                f"Task '{task.name}' is {task.status.value}, not {from_status.value}."
            )
        if to_status not in ALLOWED_TRANSITIONS[from_status]:
            raise InvalidTransitionError(
                f"Transition from {from_status.value} to {to_status.value} is not allowed."
            )
        dependent_ids = self.dependents_of(task.id, tasks)
        task.status = to_status
        actions = self.execute_on_transition(task, to_status, dependent_ids, now=now)
        return task, actions

    def execute_on_transition(
        self,
        task: Task,
        new_status: TaskStatus,
        dependent_ids: Sequence[uuid.UUID] = (),
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Apply the automatic actions for entering `new_status`; return their descriptions."""
        now = now or _utcnow()
        actions: List[str] = []
        if new_status == TaskStatus.IN_PROGRESS and task.actual_start is None:
            task.actual_start = now
            actions.append(f"Set actual start to {now.isoformat()}")
        elif new_status == TaskStatus.COMPLETED:
            if task.actual_start is None:
                task.actual_start = now
                actions.append(f"Set actual start to {now.isoformat()}")
            task.actual_completion = now
            task.progress_pct = 100.0
            actions.append(f"Set completion to {now.isoformat()}")
            actions.append("Updated progress to 100.0%")
        elif new_status == TaskStatus.NOT_STARTED:
            task.progress_pct = 0.0
            task.actual_start = None
            task.actual_completion = None
            actions.append("Reset progress to 0.0%")

        for dependent_id in list(dependent_ids):
            actions.append(f"Flagged dependent task {dependent_id} for rescheduling")
        task.updated_at = now
        return actions


# ---------------------------------------------------------------------------
# BaselineService
# ---------------------------------------------------------------------------

class BaselineService:
    """
    Captures immutable plan snapshots and compares them.

    Creating an INITIAL, APPROVED or WORKING baseline makes it Current and
    archives the previous Current baseline; ARCHIVED captures never become
    Current.
    """

    CURRENT_TYPES = frozenset({BaselineType.INITIAL, BaselineType.APPROVED, BaselineType.WORKING})

    def __init__(self, config: Optional[SchedulingConfig] = None):
        self._utilization = ResourceUtilizationService(config)

    def create_baseline(
        self,
        project: Project,
        schedule: ProjectSchedule,
        tasks: Sequence[Task],
        milestones: Sequence[Milestone],
        resources: Sequence[Resource],
        baseline_type: BaselineType,
        name: str,
        author: str,
        description: str = "",
        existing_baselines: Sequence[Baseline] = (),
    ) -> Tuple[Baseline, List[Baseline]]:
        """
        Snapshot the plan. Returns the new baseline and the archived
        replacements of any baselines it supersedes.
        """
        if not name.strip():
            raise ValidationError("Baseline name must not be empty.")
        resources_by_id = {r.id: r for r in resources}

        task_snapshots: List[TaskSnapshot] = []
        hours_by_resource: Dict[uuid.UUID, float] = {}
        cost_by_resource: Dict[uuid.UUID, float] = {}
        for task in sorted(tasks, key=lambda t: t.id):
            info = schedule.task_schedule.get(task.id)
            if info is None:
                raise ReferenceNotFoundError(f"Task '{task.name}' is missing from the schedule.")
            cost = 0.0
            for assignment in task.assignments:
                hours = self._utilization.assignment_hours(task, assignment, info.duration_days)
                resource = resources_by_id.get(assignment.resource_id)
                rate = assignment.rate_override
                if rate is None:
                    rate = resource.hourly_rate if resource is not None else 0.0
                cost += hours * rate
                hours_by_resource[assignment.resource_id] = hours_by_resource.get(assignment.resource_id, 0.0) + hours
                cost_by_resource[assignment.resource_id] = cost_by_resource.get(assignment.resource_id, 0.0) + hours * rate
            task_snapshots.append(
                TaskSnapshot(
                    task_id=task.id,
                    name=task.name,
                    task_type=task.task_type,
                    start_date=info.earliest_start,
                    end_date=info.finish_date,
                    duration_days=info.duration_days,
                    effort_hours=self._utilization.task_hours(task, info.duration_days),
                    cost=round(cost, 6),
                    assigned_resources=tuple(a.resource_id for a in task.assignments),
                    dependencies=tuple(d.predecessor_id for d in task.dependencies),
                )
            )

        milestone_snapshots = tuple(
            MilestoneSnapshot(
                milestone_id=m.id,
                name=m.name,
                target_date=m.target_date,
                dependencies=tuple(d.predecessor_id for d in m.dependencies),
            )
            for m in sorted(milestones, key=lambda m: m.id)
        )
        resource_snapshots = tuple(
            ResourceSnapshot(
                resource_id=r.id,
                name=r.name,
                hourly_rate=r.hourly_rate,
                total_allocated_hours=round(hours_by_resource.get(r.id, 0.0), 6),
                total_cost=round(cost_by_resource.get(r.id, 0.0), 6),
            )
            for r in sorted(resources, key=lambda r: r.id)
        )

        is_current = baseline_type in self.CURRENT_TYPES
        archived: List[Baseline] = []
        if is_current:
            for previous in existing_baselines:
                if previous.is_current:
                    archived.append(
                        dataclasses.replace(
                            previous, baseline_type=BaselineType.ARCHIVED, is_current=False
                        )
                    )

        baseline = Baseline(
            project_id=project.id,
            name=name,
            baseline_type=baseline_type,
            author=author,
            description=description,
            project_start=schedule.project_start,
            project_end=schedule.project_end,
            total_cost=round(sum(t.cost for t in task_snapshots), 6),
            total_effort_hours=round(sum(t.effort_hours for t in task_snapshots), 6),
            tasks=tuple(task_snapshots),
            milestones=milestone_snapshots,
            resources=resource_snapshots,
            is_current=is_current,
        )
        if is_current:
            project.current_baseline_id = baseline.id
            project.updated_at = _utcnow()
        return baseline, archived

    def history(self, baselines: Iterable[Baseline]) -> List[Baseline]:
        """Baselines newest first."""
        return sorted(baselines, key=lambda b: b.created_at, reverse=True)

    def compare(self, newer: Baseline, older: Baseline) -> VarianceReport:
        """Variance of `newer` relative to `older`; positive slips are later."""
        report = VarianceReport(newer_baseline_id=newer.id, older_baseline_id=older.id)
        new_tasks = {t.task_id: t for t in newer.tasks}
        old_tasks = {t.task_id: t for t in older.tasks}

        for task_id in sorted(set(new_tasks) | set(old_tasks)):
            new, old = new_tasks.get(task_id), old_tasks.get(task_id)
            if old is None:
                report.task_variances.append(
                    TaskVariance(
                        task_id=task_id,
                        name=new.name,
                        variance_type=VarianceType.TASK_ADDED,
                        cost_variance=new.cost,
                        effort_variance=new.effort_hours,
                    )
                )
                continue
            if new is None:
                report.task_variances.append(
                    TaskVariance(
                        task_id=task_id,
                        name=old.name,
                        variance_type=VarianceType.TASK_REMOVED,
                        cost_variance=-old.cost,
                        effort_variance=-old.effort_hours,
                    )
                )
                continue
            report.task_variances.append(self._task_variance(new, old))

        new_milestones = {m.milestone_id: m for m in newer.milestones}
        for milestone in sorted(older.milestones, key=lambda m: m.milestone_id):
            current = new_milestones.get(milestone.milestone_id)
            if current is None:
                continue
            slip = (current.target_date - milestone.target_date).days
            report.milestone_variances.append(
                MilestoneVariance(
                    milestone_id=milestone.milestone_id,
                    name=current.name,
                    slip_days=slip,
                    status=self._milestone_bucket(slip),
                )
            )

        report.summary = self._summarize(report, newer, older)
        return report

    @staticmethod
    def _task_variance(new: TaskSnapshot, old: TaskSnapshot) -> TaskVariance:
        schedule = (new.end_date - old.end_date).days
        start = (new.start_date - old.start_date).days
        duration = new.duration_days - old.duration_days
        cost = new.cost - old.cost
        effort = new.effort_hours - old.effort_hours
        if schedule or start or duration:
            kind = VarianceType.SCHEDULE_VARIANCE
        elif abs(cost) > 0.01:
            kind = VarianceType.COST_VARIANCE
        elif abs(effort) > 0.01:
            kind = VarianceType.SCOPE_CHANGE
        else:
            kind = VarianceType.NO_CHANGE
        return TaskVariance(
            task_id=new.task_id,
            name=new.name,
            variance_type=kind,
            schedule_variance_days=schedule,
            start_variance_days=start,
            duration_variance_days=duration,
            cost_variance=cost,
            effort_variance=effort,
        )

    @staticmethod
    def _milestone_bucket(slip_days: int) -> MilestoneVarianceStatus:
        if slip_days > 5:
            return MilestoneVarianceStatus.DELAYED
        if slip_days >= 1:
            return MilestoneVarianceStatus.AT_RISK
        return MilestoneVarianceStatus.ON_TRACK

    @staticmethod
    def _summarize(report: VarianceReport, newer: Baseline, older: Baseline) -> VarianceSummary:
        variances = report.task_variances
        summary = VarianceSummary(
            tasks_changed=sum(1 for v in variances if v.variance_type != VarianceType.NO_CHANGE),
            tasks_added=sum(1 for v in variances if v.variance_type == VarianceType.TASK_ADDED),
            tasks_removed=sum(1 for v in variances if v.variance_type == VarianceType.TASK_REMOVED),
            milestones_at_risk=sum(
                1 for m in report.milestone_variances if m.status != MilestoneVarianceStatus.ON_TRACK
            ),
            total_cost_variance=sum(v.cost_variance for v in variances),
            total_effort_variance=sum(v.effort_variance for v in variances),
            project_schedule_variance_days=(newer.project_end - older.project_end).days,
        )
        if (
            any(v.schedule_variance_days > 5 or abs(v.cost_variance) > 1000 for v in variances)
            or any(m.status == MilestoneVarianceStatus.DELAYED for m in report.milestone_variances)
        ):
            summary.health = HealthStatus.RED
        elif summary.tasks_changed > 3 or summary.milestones_at_risk > 1:
            summary.health = HealthStatus.YELLOW
        else:
            summary.health = HealthStatus.GREEN
        return summary


# ---------------------------------------------------------------------------
# EarnedValueService
# ---------------------------------------------------------------------------

def _health_band(index: float) -> HealthStatus:
    if index >= 0.95:
        return HealthStatus.GREEN
    if index >= 0.85:
        return HealthStatus.YELLOW
    return HealthStatus.RED


class EarnedValueService:
    """
    Earned-value metrics at a status date against a baseline.

    Baseline windows are inclusive, so a task planned Mon–Fri is 3/5 planned
    on Wednesday.
    """

    def planned_fraction(self, snapshot: TaskSnapshot, status_date: date) -> float:
        if snapshot.start_date > status_date:
            return 0.0
        if snapshot.end_date <= status_date:
            return 1.0
        elapsed = (status_date - snapshot.start_date).days + 1
        window = (snapshot.end_date - snapshot.start_date).days + 1
        return min(1.0, max(0.0, elapsed / window))

    def earned_value(
        self,
        baseline: Baseline,
        progress: Iterable[TaskProgress],
        status_date: date,
    ) -> EarnedValueMetrics:
        by_task: Dict[uuid.UUID, TaskProgress] = {}
        for entry in progress:
            if not (0.0 <= entry.percent_complete <= 100.0):
                raise ValidationError("percent_complete must be between 0 and 100.")
            if entry.actual_cost < 0:
                raise ValidationError("actual_cost must not be negative.")
            by_task[entry.task_id] = entry

        bac = sum(t.cost for t in baseline.tasks)
        pv = sum(t.cost * self.planned_fraction(t, status_date) for t in baseline.tasks)
        ev = sum(
            t.cost * by_task[t.task_id].percent_complete / 100.0
            for t in baseline.tasks
            if t.task_id in by_task
        )
        ac = sum(entry.actual_cost for entry in by_task.values())

        spi = ev / pv if pv > 0 else 1.0
        cpi = ev / ac if ac > 0 else 1.0
        eac = bac / cpi if cpi > 0 else bac

        if spi >= 0.95 and cpi >= 0.95:
            overall = HealthStatus.GREEN
        elif spi >= 0.85 and cpi >= 0.85:
            overall = HealthStatus.YELLOW
        else:
            overall = HealthStatus.RED

        return EarnedValueMetrics(
            status_date=status_date,
            planned_value=pv,
            earned_value=ev,
            actual_cost=ac,
            budget_at_completion=bac,
            schedule_variance=ev - pv,
            cost_variance=ev - ac,
            schedule_performance_index=spi,
            cost_performance_index=cpi,
            estimate_at_completion=eac,
            estimate_to_complete=eac - ac,
            variance_at_completion=bac - eac,
            percent_complete=ev / bac * 100.0 if bac > 0 else 0.0,
            percent_spent=ac / bac * 100.0 if bac > 0 else 0.0,
            schedule_health=_health_band(spi),
            cost_health=_health_band(cpi),
            overall_health=overall,
        )


# ---------------------------------------------------------------------------
# MilestoneService
# ---------------------------------------------------------------------------

class MilestoneService:

    def evaluate_status(
        self,
        milestone: Milestone,
        info: Optional[MilestoneScheduleInfo],
        as_of: date,
    ) -> MilestoneStatus:
        if milestone.actual_date is not None:
            return MilestoneStatus.ACHIEVED
        if as_of > milestone.target_date:
            return MilestoneStatus.MISSED
        if info is not None and info.earliest_date > milestone.target_date:
            return MilestoneStatus.AT_RISK
        return MilestoneStatus.PENDING

    def refresh_statuses(
        self,
        milestones: Sequence[Milestone],
        schedule: ProjectSchedule,
        as_of: date,
    ) -> List[Milestone]:
        for milestone in milestones:
            milestone.status = self.evaluate_status(
                milestone, schedule.milestone_schedule.get(milestone.id), as_of
            )
        return list(milestones)
