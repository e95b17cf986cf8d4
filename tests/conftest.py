"""
Shared fixtures for the scheduler and tolerance test-suite.
"""
import uuid
from datetime import date

import pytest
from fastapi.testclient import TestClient

from api import app, get_uow
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork
from model import SchedulingConfig, Task, TaskDependency, TaskType
from work_calendar import Calendar

MONDAY = date(2024, 1, 1)


@pytest.fixture
def project_start() -> date:
    """Mon 2024-01-01."""
    return MONDAY


@pytest.fixture
def no_buffer() -> SchedulingConfig:
    return SchedulingConfig(working_hours_per_day=8.0, buffer_percentage=0.0)


@pytest.fixture
def plain_calendar() -> Calendar:
    """Mon–Fri, 8 h days, no holidays."""
    return Calendar(name="Plain")


@pytest.fixture
def make_task():
    """Factory for effort-driven tasks with optional predecessors."""
    project_id = uuid.uuid4()

    def _make(name, hours=8.0, depends_on=(), task_type=TaskType.EFFORT_DRIVEN, **kwargs):
        dependencies = [
            dep if isinstance(dep, TaskDependency) else TaskDependency(predecessor_id=dep.id)
            for dep in depends_on
        ]
        return Task(
            project_id=project_id,
            name=name,
            task_type=task_type,
            estimated_hours=hours,
            dependencies=dependencies,
            **kwargs,
        )

    return _make


@pytest.fixture
def client():
    """TestClient bound to a fresh in-memory database per test."""
    db = InMemoryDatabase()
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db=db)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
