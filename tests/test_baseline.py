"""
Tests for baselines, variance reports, earned value and milestone status.
"""
import uuid
from datetime import date, datetime, timezone

import pytest

from errors import ValidationError
from model import (
    Baseline,
    BaselineType,
    HealthStatus,
    Milestone,
    MilestoneScheduleInfo,
    MilestoneSnapshot,
    MilestoneStatus,
    MilestoneVarianceStatus,
    ResourceAssignment,
    TaskDependency,
    TaskProgress,
    TaskSnapshot,
    TaskType,
    VarianceType,
)
from service import (
    BaselineService,
    EarnedValueService,
    MilestoneService,
    PlanningService,
    SchedulerService,
)


def _snapshot(task_id=None, start=date(2024, 1, 1), end=date(2024, 1, 5), cost=100.0, effort=8.0, name="Task"):
    return TaskSnapshot(
        task_id=task_id or uuid.uuid4(),
        name=name,
        task_type=TaskType.EFFORT_DRIVEN,
        start_date=start,
        end_date=end,
        duration_days=(end - start).days + 1,
        effort_hours=effort,
        cost=cost,
    )


def _baseline(tasks=(), milestones=(), project_id=None, end=date(2024, 1, 5), **kwargs):
    return Baseline(
        project_id=project_id or uuid.uuid4(),
        name=kwargs.pop("name", "Plan"),
        baseline_type=kwargs.pop("baseline_type", BaselineType.INITIAL),
        author="planner",
        project_start=date(2024, 1, 1),
        project_end=end,
        total_cost=sum(t.cost for t in tasks),
        total_effort_hours=sum(t.effort_hours for t in tasks),
        tasks=tuple(tasks),
        milestones=tuple(milestones),
        **kwargs,
    )


@pytest.fixture
def planned_project(no_buffer, project_start):
    """One resource at 50/h on a 16 h task followed by an 8 h task."""
    planning = PlanningService()
    project = planning.create_project("Hull block 12", start_date=project_start)
    welder = planning.add_resource(project.id, "Welder", hourly_rate=50.0)
    cut = planning.add_task(
        project.id, "Cut", estimated_hours=16.0, assignments=[ResourceAssignment(welder.id)]
    )
    weld = planning.add_task(
        project.id, "Weld", estimated_hours=8.0, assignments=[ResourceAssignment(welder.id)]
    )
    weld.dependencies.append(TaskDependency(predecessor_id=cut.id))
    milestone = planning.add_milestone(project.id, "Block complete", date(2024, 1, 5))
    schedule = SchedulerService(no_buffer).compute_schedule(
        [cut, weld], [milestone], [welder], project.start_date, project.calendar
    )
    return project, schedule, [cut, weld], [milestone], [welder]


class TestCreateBaseline:

    def test_snapshot_totals(self, planned_project, no_buffer):
        project, schedule, tasks, milestones, resources = planned_project
        baseline, archived = BaselineService(no_buffer).create_baseline(
            project, schedule, tasks, milestones, resources,
            BaselineType.INITIAL, "Kickoff", "planner",
        )
        assert archived == []
        assert baseline.is_current
        assert project.current_baseline_id == baseline.id
        assert baseline.total_cost == 1200.0
        assert baseline.total_effort_hours == 24.0
        assert baseline.project_end == schedule.project_end
        cut = baseline.task(tasks[0].id)
        assert (cut.start_date, cut.end_date) == (date(2024, 1, 1), date(2024, 1, 2))
        assert cut.cost == 800.0
        assert baseline.resources[0].total_allocated_hours == 24.0
        assert baseline.milestone(milestones[0].id).target_date == date(2024, 1, 5)

    def test_new_current_baseline_archives_previous(self, planned_project, no_buffer):
        project, schedule, tasks, milestones, resources = planned_project
        svc = BaselineService(no_buffer)
        first, _ = svc.create_baseline(
            project, schedule, tasks, milestones, resources, BaselineType.INITIAL, "Kickoff", "planner"
        )
        second, archived = svc.create_baseline(
            project, schedule, tasks, milestones, resources, BaselineType.APPROVED, "Rev A", "planner",
            existing_baselines=[first],
        )
        assert second.is_current
        assert project.current_baseline_id == second.id
        assert len(archived) == 1
        assert archived[0].id == first.id
        assert archived[0].baseline_type == BaselineType.ARCHIVED
        assert not archived[0].is_current
        assert archived[0].tasks == first.tasks
        # the original record itself never changes
        assert first.is_current and first.baseline_type == BaselineType.INITIAL

    def test_archived_capture_never_becomes_current(self, planned_project, no_buffer):
        project, schedule, tasks, milestones, resources = planned_project
        svc = BaselineService(no_buffer)
        first, _ = svc.create_baseline(
            project, schedule, tasks, milestones, resources, BaselineType.INITIAL, "Kickoff", "planner"
        )
        extra, archived = svc.create_baseline(
            project, schedule, tasks, milestones, resources, BaselineType.ARCHIVED, "Old copy", "planner",
            existing_baselines=[first],
        )
        assert not extra.is_current
        assert archived == []
        assert project.current_baseline_id == first.id

    def test_blank_name_is_rejected(self, planned_project, no_buffer):
        project, schedule, tasks, milestones, resources = planned_project
        with pytest.raises(ValidationError):
            BaselineService(no_buffer).create_baseline(
                project, schedule, tasks, milestones, resources, BaselineType.INITIAL, "  ", "planner"
            )


class TestImmutability:

    def test_baseline_fields_cannot_be_reassigned(self):
        baseline = _baseline([_snapshot()])
        with pytest.raises(ValidationError):
            baseline.name = "Changed"
        with pytest.raises(ValidationError):
            del baseline.author

    def test_snapshots_cannot_be_reassigned(self):
        baseline = _baseline([_snapshot()])
        with pytest.raises(ValidationError):
            baseline.tasks[0].cost = 1.0
        assert isinstance(baseline.tasks, tuple)


class TestCompare:

    def test_self_compare_has_no_variance(self):
        baseline = _baseline(
            [_snapshot(), _snapshot(start=date(2024, 1, 8), end=date(2024, 1, 9))],
            [MilestoneSnapshot(uuid.uuid4(), "Gate", date(2024, 1, 10))],
        )
        report = BaselineService().compare(baseline, baseline)
        assert all(v.variance_type == VarianceType.NO_CHANGE for v in report.task_variances)
        assert all(m.slip_days == 0 for m in report.milestone_variances)
        assert report.summary.tasks_changed == 0
        assert report.summary.total_cost_variance == 0.0
        assert report.summary.health == HealthStatus.GREEN

    def test_classification_priority(self):
        slipped, costly, rescoped = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        older = _baseline([_snapshot(slipped), _snapshot(costly), _snapshot(rescoped)])
        newer = _baseline([
            _snapshot(slipped, end=date(2024, 1, 7), cost=300.0),
            _snapshot(costly, cost=150.0),
            _snapshot(rescoped, effort=12.0),
        ])
        kinds = {v.task_id: v for v in BaselineService().compare(newer, older).task_variances}
        assert kinds[slipped].variance_type == VarianceType.SCHEDULE_VARIANCE
        assert kinds[slipped].schedule_variance_days == 2
        assert kinds[slipped].duration_variance_days == 2
        assert kinds[costly].variance_type == VarianceType.COST_VARIANCE
        assert kinds[costly].cost_variance == 50.0
        assert kinds[rescoped].variance_type == VarianceType.SCOPE_CHANGE

    def test_added_and_removed_tasks(self):
        kept, dropped, added = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        older = _baseline([_snapshot(kept), _snapshot(dropped, cost=40.0)])
        newer = _baseline([_snapshot(kept), _snapshot(added, cost=70.0)])
        report = BaselineService().compare(newer, older)
        kinds = {v.task_id: v.variance_type for v in report.task_variances}
        assert kinds[added] == VarianceType.TASK_ADDED
        assert kinds[dropped] == VarianceType.TASK_REMOVED
        assert report.summary.tasks_added == 1
        assert report.summary.tasks_removed == 1
        assert report.summary.total_cost_variance == 30.0

    @pytest.mark.parametrize(
        "slip, expected",
        [
            (-2, MilestoneVarianceStatus.ON_TRACK),
            (0, MilestoneVarianceStatus.ON_TRACK),
            (1, MilestoneVarianceStatus.AT_RISK),
            (5, MilestoneVarianceStatus.AT_RISK),
            (6, MilestoneVarianceStatus.DELAYED),
        ],
    )
    def test_milestone_slip_buckets(self, slip, expected):
        mid = uuid.uuid4()
        target = date(2024, 1, 10)
        older = _baseline(milestones=[MilestoneSnapshot(mid, "Gate", target)])
        newer = _baseline(
            milestones=[MilestoneSnapshot(mid, "Gate", date.fromordinal(target.toordinal() + slip))]
        )
        variance = BaselineService().compare(newer, older).milestone_variances[0]
        assert variance.slip_days == slip
        assert variance.status == expected

    def test_large_slip_is_red(self):
        tid = uuid.uuid4()
        older = _baseline([_snapshot(tid)])
        newer = _baseline([_snapshot(tid, end=date(2024, 1, 11))], end=date(2024, 1, 11))
        summary = BaselineService().compare(newer, older).summary
        assert summary.health == HealthStatus.RED
        assert summary.project_schedule_variance_days == 6

    def test_many_small_changes_are_yellow(self):
        ids = [uuid.uuid4() for _ in range(4)]
        older = _baseline([_snapshot(i) for i in ids])
        newer = _baseline([_snapshot(i, cost=110.0) for i in ids])
        summary = BaselineService().compare(newer, older).summary
        assert summary.tasks_changed == 4
        assert summary.health == HealthStatus.YELLOW

    def test_history_is_newest_first(self):
        older = _baseline(name="First", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer = _baseline(name="Second", created_at=datetime(2024, 2, 1, tzinfo=timezone.utc))
        assert [b.name for b in BaselineService().history([older, newer])] == ["Second", "First"]


class TestEarnedValue:

    def test_status_midweek(self):
        tid = uuid.uuid4()
        baseline = _baseline([_snapshot(tid, cost=100.0)])
        metrics = EarnedValueService().earned_value(
            baseline, [TaskProgress(tid, percent_complete=40.0, actual_cost=50.0)], date(2024, 1, 3)
        )
        assert metrics.planned_value == pytest.approx(60.0)
        assert metrics.earned_value == pytest.approx(40.0)
        assert metrics.actual_cost == pytest.approx(50.0)
        assert metrics.schedule_variance == pytest.approx(-20.0)
        assert metrics.cost_variance == pytest.approx(-10.0)
        assert metrics.schedule_performance_index == pytest.approx(0.667, abs=1e-3)
        assert metrics.cost_performance_index == pytest.approx(0.8)
        assert metrics.estimate_at_completion == pytest.approx(125.0)
        assert metrics.overall_health == HealthStatus.RED

    def test_on_plan_is_green(self):
        tid = uuid.uuid4()
        baseline = _baseline([_snapshot(tid, cost=100.0)])
        metrics = EarnedValueService().earned_value(
            baseline, [TaskProgress(tid, percent_complete=100.0, actual_cost=100.0)], date(2024, 1, 5)
        )
        assert metrics.schedule_performance_index == pytest.approx(1.0)
        assert metrics.cost_performance_index == pytest.approx(1.0)
        assert metrics.overall_health == HealthStatus.GREEN

    def test_before_any_work_indices_default_to_one(self):
        baseline = _baseline([_snapshot(cost=100.0)])
        metrics = EarnedValueService().earned_value(baseline, [], date(2023, 12, 1))
        assert metrics.planned_value == 0.0
        assert metrics.schedule_performance_index == 1.0
        assert metrics.cost_performance_index == 1.0
        assert metrics.estimate_at_completion == 100.0

    def test_progress_out_of_range(self):
        tid = uuid.uuid4()
        baseline = _baseline([_snapshot(tid)])
        with pytest.raises(ValidationError):
            EarnedValueService().earned_value(
                baseline, [TaskProgress(tid, percent_complete=120.0)], date(2024, 1, 3)
            )

    def test_planned_fraction_bounds(self):
        snap = _snapshot()
        svc = EarnedValueService()
        assert svc.planned_fraction(snap, date(2023, 12, 31)) == 0.0
        assert svc.planned_fraction(snap, date(2024, 1, 1)) == pytest.approx(0.2)
        assert svc.planned_fraction(snap, date(2024, 1, 5)) == 1.0


class TestMilestoneStatus:

    def test_status_rules(self):
        svc = MilestoneService()
        target = date(2024, 1, 10)
        info_late = MilestoneScheduleInfo(uuid.uuid4(), date(2024, 1, 12), target, target, -2, True)
        info_ok = MilestoneScheduleInfo(uuid.uuid4(), date(2024, 1, 8), target, target, 2, False)

        achieved = Milestone(name="A", target_date=target, actual_date=date(2024, 1, 9))
        assert svc.evaluate_status(achieved, info_ok, date(2024, 1, 20)) == MilestoneStatus.ACHIEVED
        pending = Milestone(name="P", target_date=target)
        assert svc.evaluate_status(pending, info_ok, date(2024, 1, 5)) == MilestoneStatus.PENDING
        assert svc.evaluate_status(pending, info_late, date(2024, 1, 5)) == MilestoneStatus.AT_RISK
        assert svc.evaluate_status(pending, info_ok, date(2024, 1, 11)) == MilestoneStatus.MISSED
