"""
Tests for the critical-path scheduler, duration rules and resource utilization.
"""
import logging
import uuid
from datetime import date

import pytest

from errors import BudgetExceededError, CircularDependencyError, EmptyProjectError, ReferenceNotFoundError
from model import (
    DependencyType,
    Milestone,
    Resource,
    ResourceAssignment,
    SchedulingConfig,
    TaskDependency,
    TaskType,
)
from service import DurationService, SchedulerService
from work_calendar import Calendar


def _d(day: int) -> date:
    return date(2024, 1, day)


class TestChainScenarios:
    """Worked examples on a Mon 2024-01-01 start."""

    def test_three_task_chain(self, make_task, no_buffer, plain_calendar, project_start):
        a = make_task("A")
        b = make_task("B", depends_on=[a])
        c = make_task("C", depends_on=[b])

        schedule = SchedulerService(no_buffer).compute_schedule(
            [a, b, c], [], [], project_start, plain_calendar
        )

        windows = {t.name: schedule.task_schedule[t.id] for t in (a, b, c)}
        assert (windows["A"].earliest_start, windows["A"].finish_date) == (_d(1), _d(1))
        assert (windows["B"].earliest_start, windows["B"].finish_date) == (_d(2), _d(2))
        assert (windows["C"].earliest_start, windows["C"].finish_date) == (_d(3), _d(3))
        assert all(w.is_critical for w in windows.values())
        assert schedule.critical_path == [a.id, b.id, c.id]
        assert schedule.project_end == _d(3)
        assert schedule.total_duration_days == 2

    def test_parallel_branches_with_slack(self, make_task, no_buffer, plain_calendar, project_start):
        a = make_task("A", hours=8)
        b = make_task("B", hours=24, depends_on=[a])
        c = make_task("C", hours=8, depends_on=[a])
        d = make_task("D", hours=8, depends_on=[b, c])

        schedule = SchedulerService(no_buffer).compute_schedule(
            [a, b, c, d], [], [], project_start, plain_calendar
        )

        assert set(schedule.critical_path) == {a.id, b.id, d.id}
        info_c = schedule.task_schedule[c.id]
        assert not info_c.is_critical
        assert info_c.total_float_days == 2
        assert info_c.free_float_days == 2

    def test_lag_and_lead(self, make_task, no_buffer, plain_calendar, project_start):
        a = make_task("A")
        lagged = make_task("B", depends_on=[TaskDependency(a.id, DependencyType.FINISH_TO_START, 2)])
        schedule = SchedulerService(no_buffer).compute_schedule(
            [a, lagged], [], [], project_start, plain_calendar
        )
        assert schedule.task_schedule[lagged.id].earliest_start == _d(4)      # Thu

        led = make_task("B", depends_on=[TaskDependency(a.id, DependencyType.FINISH_TO_START, -1)])
        schedule = SchedulerService(no_buffer).compute_schedule(
            [a, led], [], [], project_start, plain_calendar
        )
        assert schedule.task_schedule[led.id].earliest_start == _d(1)         # Mon

    def test_lead_is_clamped_to_project_start(self, make_task, no_buffer, project_start):
        a = make_task("A")
        b = make_task("B", depends_on=[TaskDependency(a.id, DependencyType.START_TO_START, -3)])
        schedule = SchedulerService(no_buffer).compute_schedule([a, b], [], [], project_start)
        assert schedule.task_schedule[b.id].earliest_start == project_start


class TestDependencyTypes:

    @pytest.mark.parametrize(
        "dep_type, expected_start",
        [
            (DependencyType.FINISH_TO_START, _d(3)),    # A.EF = Wed
            (DependencyType.START_TO_START, _d(1)),     # A.ES = Mon
            (DependencyType.FINISH_TO_FINISH, _d(2)),   # Wed − 1 day
            (DependencyType.START_TO_FINISH, _d(1)),    # Mon − 1 day, clamped
        ],
    )
    def test_forward_rules(self, make_task, no_buffer, project_start, dep_type, expected_start):
        a = make_task("A", hours=16)
        b = make_task("B", hours=8, depends_on=[TaskDependency(a.id, dep_type)])
        schedule = SchedulerService(no_buffer).compute_schedule([a, b], [], [], project_start)
        assert schedule.task_schedule[b.id].earliest_start == expected_start

    def test_finish_to_finish_leaves_float_on_short_predecessor(self, make_task, no_buffer, project_start):
        a = make_task("A", hours=8)
        b = make_task("B", hours=32, depends_on=[TaskDependency(a.id, DependencyType.FINISH_TO_FINISH)])
        schedule = SchedulerService(no_buffer).compute_schedule([a, b], [], [], project_start)
        info_a = schedule.task_schedule[a.id]
        assert info_a.total_float_days == 3
        assert info_a.free_float_days == 3
        assert schedule.critical_path == [b.id]

    def test_start_to_start_drives_predecessor(self, make_task, no_buffer, project_start):
        a = make_task("A", hours=8)
        b = make_task("B", hours=32, depends_on=[TaskDependency(a.id, DependencyType.START_TO_START)])
        schedule = SchedulerService(no_buffer).compute_schedule([a, b], [], [], project_start)
        assert schedule.task_schedule[a.id].total_float_days == 0
        assert schedule.critical_path == [a.id, b.id]


class TestInvariants:

    def _graph(self, make_task):
        a = make_task("A", hours=16)
        b = make_task("B", hours=8, depends_on=[a])
        c = make_task("C", hours=40, depends_on=[TaskDependency(a.id, DependencyType.START_TO_START, 1)])
        d = make_task("D", hours=8, depends_on=[b, TaskDependency(c.id, DependencyType.FINISH_TO_FINISH)])
        e = make_task("E", hours=24)
        return [a, b, c, d, e]

    def test_windows_are_consistent(self, make_task, no_buffer, project_start):
        tasks = self._graph(make_task)
        schedule = SchedulerService(no_buffer).compute_schedule(tasks, [], [], project_start)
        for info in schedule.task_schedule.values():
            assert info.earliest_start >= project_start
            assert (info.earliest_finish - info.earliest_start).days == info.duration_days
            assert (info.latest_finish - info.latest_start).days == info.duration_days
            assert info.latest_start >= info.earliest_start
            assert info.total_float_days >= 0
            assert 0 <= info.free_float_days <= info.total_float_days
            assert info.is_critical == (info.total_float_days <= 0)

    def test_critical_path_is_non_empty(self, make_task, no_buffer, project_start):
        schedule = SchedulerService(no_buffer).compute_schedule(
            self._graph(make_task), [], [], project_start
        )
        assert schedule.critical_path

    def test_same_input_same_schedule(self, make_task, no_buffer, project_start):
        tasks = self._graph(make_task)
        first = SchedulerService(no_buffer).compute_schedule(tasks, [], [], project_start)
        second = SchedulerService(no_buffer).compute_schedule(list(reversed(tasks)), [], [], project_start)
        assert first.critical_path == second.critical_path
        assert first.task_schedule == second.task_schedule
        assert first.project_end == second.project_end

    def test_topological_order_puts_predecessors_first(self, make_task, no_buffer):
        tasks = self._graph(make_task)
        svc = SchedulerService(no_buffer)
        nodes = {t.id: t for t in tasks}
        predecessors = {t.id: list(t.dependencies) for t in tasks}
        order = svc.topological_order(nodes, predecessors)
        position = {node_id: i for i, node_id in enumerate(order)}
        for task in tasks:
            for dep in task.dependencies:
                assert position[dep.predecessor_id] < position[task.id]


class TestGraphErrors:

    def test_cycle_is_rejected_with_members(self, make_task, no_buffer, project_start):
        a = make_task("A")
        b = make_task("B", depends_on=[a])
        a.dependencies.append(TaskDependency(b.id))

        with pytest.raises(CircularDependencyError) as exc_info:
            SchedulerService(no_buffer).compute_schedule([a, b], [], [], project_start)
        cycle = exc_info.value.cycle
        assert set(cycle) == {a.id, b.id}
        assert cycle[0] == cycle[-1]

    def test_self_loop_is_a_cycle(self, make_task, no_buffer, project_start):
        a = make_task("A")
        a.dependencies.append(TaskDependency(a.id))
        with pytest.raises(CircularDependencyError) as exc_info:
            SchedulerService(no_buffer).compute_schedule([a], [], [], project_start)
        assert exc_info.value.cycle == [a.id, a.id]

    def test_unknown_predecessor_is_ignored_with_warning(
        self, make_task, no_buffer, project_start, caplog
    ):
        a = make_task("A", depends_on=[TaskDependency(uuid.uuid4())])
        with caplog.at_level(logging.WARNING):
            schedule = SchedulerService(no_buffer).compute_schedule([a], [], [], project_start)
        assert schedule.task_schedule[a.id].earliest_start == project_start
        assert len(schedule.warnings) == 1
        assert "unknown predecessor" in caplog.text

    def test_empty_project(self, no_buffer, project_start):
        with pytest.raises(EmptyProjectError):
            SchedulerService(no_buffer).compute_schedule([], [], [], project_start)


class TestMilestones:

    def test_milestone_with_slack(self, make_task, no_buffer, project_start):
        a = make_task("A")
        m = Milestone(name="Design review", target_date=_d(3), dependencies=[TaskDependency(a.id)])
        schedule = SchedulerService(no_buffer).compute_schedule([a], [m], [], project_start)

        info = schedule.milestone_schedule[m.id]
        assert info.earliest_date == _d(2)
        assert info.slack_days == 1
        assert not info.is_critical
        assert schedule.task_schedule[a.id].total_float_days == 1
        assert schedule.project_end == _d(3)

    def test_milestone_behind_target_is_critical(self, make_task, no_buffer, project_start):
        a = make_task("A", hours=16)
        m = Milestone(name="Gate", target_date=_d(2), dependencies=[TaskDependency(a.id)])
        schedule = SchedulerService(no_buffer).compute_schedule([a], [m], [], project_start)

        assert schedule.milestone_schedule[m.id].slack_days == -1
        assert m.id in schedule.critical_path
        info = schedule.task_schedule[a.id]
        assert info.latest_start == info.earliest_start == _d(1)
        assert info.total_float_days == 0
        assert info.is_critical

    def test_late_milestone_keeps_task_windows_consistent(self, make_task, no_buffer, project_start):
        a = make_task("A", hours=16)
        m = Milestone(name="Gate", target_date=_d(2), dependencies=[TaskDependency(a.id)])
        b = make_task("B", depends_on=[TaskDependency(m.id)])
        c = make_task("C", hours=8)
        schedule = SchedulerService(no_buffer).compute_schedule([a, b, c], [m], [], project_start)

        for info in schedule.task_schedule.values():
            assert info.earliest_start <= info.latest_start
            assert info.total_float_days >= 0
            assert info.is_critical == (info.total_float_days == 0)
        assert schedule.task_schedule[a.id].is_critical
        assert schedule.task_schedule[b.id].earliest_start == _d(3)
        assert schedule.task_schedule[c.id].total_float_days == 2
        assert schedule.milestone_schedule[m.id].slack_days == -1

    def test_task_may_depend_on_milestone(self, make_task, no_buffer, project_start):
        m = Milestone(name="Kickoff", target_date=_d(3))
        a = make_task("A", depends_on=[TaskDependency(m.id)])
        schedule = SchedulerService(no_buffer).compute_schedule([a], [m], [], project_start)
        assert schedule.task_schedule[a.id].earliest_start == project_start


class TestDurations:

    @pytest.mark.parametrize(
        "kwargs, buffer, expected",
        [
            (dict(task_type=TaskType.EFFORT_DRIVEN, hours=10), 0.1, 3),
            (dict(task_type=TaskType.EFFORT_DRIVEN, hours=0), 0.1, 0),
            (dict(task_type=TaskType.FIXED_DURATION, duration_days=5), 0.1, 6),
            (dict(task_type=TaskType.FIXED_DURATION, duration_days=10), 0.1, 11),
            (dict(task_type=TaskType.FIXED_DURATION), 0.0, 1),
            (dict(task_type=TaskType.FIXED_WORK, work_units=40), 0.0, 5),
            (dict(task_type=TaskType.MILESTONE, hours=80), 0.5, 0),
        ],
    )
    def test_duration_rules(self, make_task, kwargs, buffer, expected):
        task = make_task("T", **kwargs)
        svc = DurationService(SchedulingConfig(buffer_percentage=buffer))
        assert svc.duration_days(task) == expected

    def test_allocation_shortens_effort_driven_tasks(self, make_task):
        r1, r2 = uuid.uuid4(), uuid.uuid4()
        task = make_task(
            "T", hours=16,
            assignments=[ResourceAssignment(r1, 100.0), ResourceAssignment(r2, 100.0)],
        )
        svc = DurationService(SchedulingConfig(buffer_percentage=0.0))
        assert svc.allocation_factor(task) == 2.0
        assert svc.duration_days(task) == 1

    def test_partial_allocation_lengthens_fixed_work(self, make_task):
        task = make_task(
            "T", task_type=TaskType.FIXED_WORK, work_units=16,
            assignments=[ResourceAssignment(uuid.uuid4(), 50.0)],
        )
        svc = DurationService(SchedulingConfig(buffer_percentage=0.0))
        assert svc.duration_days(task) == 4


class TestResourceConstrainedDuration:

    def test_burns_down_over_working_days(self, make_task, plain_calendar):
        resource = Resource(name="Welder", hourly_rate=50.0)
        task = make_task("Weld", hours=20, assignments=[ResourceAssignment(resource.id)])
        days, finish = DurationService().resource_constrained_duration(
            task, {resource.id: resource}, plain_calendar, _d(5)
        )
        assert days == 3
        assert finish == _d(10)

    def test_zero_capacity_exceeds_budget(self, make_task, plain_calendar):
        resource = Resource(name="Idle", hourly_rate=50.0, availability_pct=0.0)
        task = make_task("Weld", hours=20, assignments=[ResourceAssignment(resource.id)])
        with pytest.raises(BudgetExceededError) as exc_info:
            DurationService().resource_constrained_duration(
                task, {resource.id: resource}, plain_calendar, _d(1)
            )
        assert exc_info.value.diagnostic["task_id"] == str(task.id)
        assert exc_info.value.diagnostic["hours_remaining"] == 20

    def test_unknown_resource(self, make_task, plain_calendar):
        task = make_task("Weld", hours=20, assignments=[ResourceAssignment(uuid.uuid4())])
        with pytest.raises(ReferenceNotFoundError):
            DurationService().resource_constrained_duration(task, {}, plain_calendar, _d(1))


class TestResourceUtilization:

    def test_over_allocation_is_reported(self, make_task, no_buffer, plain_calendar, project_start):
        welder = Resource(name="Welder", hourly_rate=50.0)
        long_task = make_task("Long", hours=16, assignments=[ResourceAssignment(welder.id)])
        short_task = make_task("Short", hours=8, assignments=[ResourceAssignment(welder.id)])

        schedule = SchedulerService(no_buffer).compute_schedule(
            [long_task, short_task], [], [welder], project_start, plain_calendar
        )
        usage = schedule.resource_utilization[welder.id]
        assert usage.total_hours == 24.0
        assert usage.peak_allocation_pct == 200.0
        assert usage.over_allocated_days == [_d(1)]
        assert usage.utilization_pct == 100.0
        assert set(usage.task_ids) == {long_task.id, short_task.id}

    def test_assigned_hours_override(self, make_task, no_buffer, plain_calendar, project_start):
        fitter = Resource(name="Fitter", hourly_rate=40.0)
        task = make_task(
            "Fit", hours=40,
            assignments=[ResourceAssignment(fitter.id, allocation_pct=50.0, assigned_hours=12.0)],
        )
        schedule = SchedulerService(no_buffer).compute_schedule(
            [task], [], [fitter], project_start, plain_calendar
        )
        usage = schedule.resource_utilization[fitter.id]
        assert usage.total_hours == 12.0
        assert usage.over_allocated_days == []
        assert usage.peak_allocation_pct == 50.0

    def test_resource_calendar_narrows_capacity(self, make_task, no_buffer, plain_calendar, project_start):
        four_day = Calendar(name="Mon-Thu", working_weekdays=frozenset({0, 1, 2, 3}))
        four_day_id = uuid.uuid4()
        regular = Resource(name="Regular", hourly_rate=40.0)
        compressed = Resource(name="Compressed", hourly_rate=40.0, calendar_id=four_day_id)
        tasks = [
            make_task("Weld", hours=40, assignments=[ResourceAssignment(regular.id)]),
            make_task("Grind", hours=40, assignments=[ResourceAssignment(compressed.id)]),
        ]

        schedule = SchedulerService(no_buffer).compute_schedule(
            tasks, [], [regular, compressed], project_start, plain_calendar,
            resource_calendars={four_day_id: four_day},
        )
        assert schedule.project_end == _d(5)
        assert schedule.resource_utilization[regular.id].average_daily_hours == 8.0
        assert schedule.resource_utilization[compressed.id].average_daily_hours == 10.0

    def test_unassigned_resource_is_idle(self, make_task, no_buffer, project_start):
        idle = Resource(name="Idle", hourly_rate=10.0)
        schedule = SchedulerService(no_buffer).compute_schedule(
            [make_task("A")], [], [idle], project_start
        )
        usage = schedule.resource_utilization[idle.id]
        assert usage.total_hours == 0.0
        assert usage.utilization_pct == 0.0
