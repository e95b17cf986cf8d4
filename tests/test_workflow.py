"""
Tests for the task state machine and dependency editing.
"""
import uuid
from datetime import date, datetime, timezone

import pytest

from errors import (
    CircularDependencyError,
    InvalidTransitionError,
    ReferenceNotFoundError,
    ValidationError,
)
from model import DependencyType, TaskDependency, TaskStatus
from service import ALLOWED_TRANSITIONS, WorkflowService

NOW = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def workflow():
    return WorkflowService()


class TestTransitions:

    def test_start_stamps_actual_start(self, workflow, make_task):
        task = make_task("Cut plates")
        task, actions = workflow.transition(
            task, TaskStatus.NOT_STARTED, TaskStatus.IN_PROGRESS, now=NOW
        )
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.actual_start == NOW
        assert actions == [f"Set actual start to {NOW.isoformat()}"]

    def test_restart_keeps_first_actual_start(self, workflow, make_task):
        task = make_task("Cut plates", status=TaskStatus.ON_HOLD, actual_start=NOW)
        later = datetime(2024, 1, 9, tzinfo=timezone.utc)
        task, actions = workflow.transition(task, TaskStatus.ON_HOLD, TaskStatus.IN_PROGRESS, now=later)
        assert task.actual_start == NOW
        assert actions == []

    def test_complete_sets_progress_and_completion(self, workflow, make_task):
        task = make_task("Cut plates", status=TaskStatus.IN_PROGRESS, progress_pct=60.0)
        task, actions = workflow.transition(
            task, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, now=NOW
        )
        assert task.progress_pct == 100.0
        assert task.actual_completion == NOW
        assert task.actual_start == NOW
        assert "Updated progress to 100.0%" in actions

    def test_reopen_cancelled_task_resets_it(self, workflow, make_task):
        task = make_task(
            "Cut plates",
            status=TaskStatus.CANCELLED,
            progress_pct=30.0,
            actual_start=NOW,
        )
        task, actions = workflow.transition(task, TaskStatus.CANCELLED, TaskStatus.NOT_STARTED)
        assert task.status == TaskStatus.NOT_STARTED
        assert task.progress_pct == 0.0
        assert task.actual_start is None
        assert task.actual_completion is None
        assert actions == ["Reset progress to 0.0%"]

    def test_disallowed_transition_leaves_task_untouched(self, workflow, make_task):
        task = make_task("Cut plates")
        with pytest.raises(InvalidTransitionError):
            workflow.transition(task, TaskStatus.NOT_STARTED, TaskStatus.COMPLETED)
        assert task.status == TaskStatus.NOT_STARTED
        assert task.progress_pct == 0.0

    def test_stale_from_status_is_rejected(self, workflow, make_task):
        task = make_task("Cut plates", status=TaskStatus.IN_PROGRESS)
        with pytest.raises(InvalidTransitionError):
            workflow.transition(task, TaskStatus.NOT_STARTED, TaskStatus.IN_PROGRESS)

    def test_completed_is_terminal(self):
        assert ALLOWED_TRANSITIONS[TaskStatus.COMPLETED] == frozenset()
        assert all(isinstance(v, frozenset) for v in ALLOWED_TRANSITIONS.values())
        assert set(ALLOWED_TRANSITIONS) == set(TaskStatus)

    def test_dependents_are_flagged(self, workflow, make_task):
        a = make_task("A")
        b = make_task("B", depends_on=[a])
        c = make_task("C", depends_on=[a])
        unrelated = make_task("D")
        _, actions = workflow.transition(
            a, TaskStatus.NOT_STARTED, TaskStatus.IN_PROGRESS, [a, b, c, unrelated], now=NOW
        )
        flagged = [x for x in actions if x.startswith("Flagged")]
        assert flagged == [
            f"Flagged dependent task {task_id} for rescheduling" for task_id in sorted([b.id, c.id])
        ]


class TestDependencyEditing:

    def test_add_dependency(self, workflow, make_task):
        a, b = make_task("A"), make_task("B")
        workflow.add_dependency(b, a.id, DependencyType.START_TO_START, 2.0, [a, b])
        assert b.dependencies == [TaskDependency(a.id, DependencyType.START_TO_START, 2.0)]

    def test_self_dependency_is_rejected(self, workflow, make_task):
        a = make_task("A")
        with pytest.raises(ValidationError):
            workflow.add_dependency(a, a.id, DependencyType.FINISH_TO_START, 0.0, [a])

    def test_unknown_predecessor_is_rejected(self, workflow, make_task):
        a = make_task("A")
        with pytest.raises(ReferenceNotFoundError):
            workflow.add_dependency(a, uuid.uuid4(), DependencyType.FINISH_TO_START, 0.0, [a])

    def test_duplicate_pair_is_rejected(self, workflow, make_task):
        a = make_task("A")
        b = make_task("B", depends_on=[a])
        with pytest.raises(ValidationError):
            workflow.add_dependency(b, a.id, DependencyType.FINISH_TO_FINISH, 0.0, [a, b])

    def test_closing_a_cycle_is_rejected(self, workflow, make_task):
        a = make_task("A")
        b = make_task("B", depends_on=[a])
        c = make_task("C", depends_on=[b])
        with pytest.raises(CircularDependencyError):
            workflow.add_dependency(a, c.id, DependencyType.FINISH_TO_START, 0.0, [a, b, c])
        assert a.dependencies == []

    def test_remove_dependency(self, workflow, make_task):
        a = make_task("A")
        b = make_task("B", depends_on=[a])
        workflow.remove_dependency(b, a.id)
        assert b.dependencies == []
        with pytest.raises(ReferenceNotFoundError):
            workflow.remove_dependency(b, a.id)


class TestEarliestStart:

    def test_finish_to_start_lag_counts_working_days(self, workflow, make_task, plain_calendar):
        a = make_task("A", due_date=date(2024, 1, 5))                     # Fri
        b = make_task("B", depends_on=[TaskDependency(a.id, DependencyType.FINISH_TO_START, 1)])
        assert workflow.earliest_start(b, [a, b], plain_calendar) == date(2024, 1, 8)

    def test_start_to_start_lead_retreats(self, workflow, make_task, plain_calendar):
        a = make_task("A", start_date=date(2024, 1, 8))                   # Mon
        b = make_task("B", depends_on=[TaskDependency(a.id, DependencyType.START_TO_START, -1)])
        assert workflow.earliest_start(b, [a, b], plain_calendar) == date(2024, 1, 5)

    def test_latest_constraint_wins(self, workflow, make_task, plain_calendar):
        a = make_task("A", due_date=date(2024, 1, 3))
        c = make_task("C", due_date=date(2024, 1, 10))
        b = make_task("B", depends_on=[a, c])
        assert workflow.earliest_start(b, [a, b, c], plain_calendar) == date(2024, 1, 10)

    def test_no_planned_dates_means_no_constraint(self, workflow, make_task, plain_calendar):
        a = make_task("A")
        b = make_task("B", depends_on=[a])
        assert workflow.earliest_start(b, [a, b], plain_calendar) is None

    def test_unknown_predecessor(self, workflow, make_task, plain_calendar):
        b = make_task("B", depends_on=[TaskDependency(uuid.uuid4())])
        with pytest.raises(ReferenceNotFoundError):
            workflow.earliest_start(b, [b], plain_calendar)
