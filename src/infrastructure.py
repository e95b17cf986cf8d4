"""
infrastructure.py

Repository and Unit of Work implementations.

The in-memory backend stores everything in plain Python dicts keyed by UUID.
It suits local development, demos and integration testing without a real
database.  Baselines can alternatively be written to disk, one
self-contained JSON document per baseline:

    <directory>/<baseline id>.json

main.py switches to the file store when BASELINE_DIR is set, by overriding
get_uow() in api.py:

    baselines = JsonFileBaselineRepository(os.environ["BASELINE_DIR"])
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(baselines=baselines)

Any other backend implements the same Abstract* interfaces from
application.py and is wired the same way.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from application import (
    AbstractBaselineRepository,
    AbstractFeatureRepository,
    AbstractMilestoneRepository,
    AbstractProjectRepository,
    AbstractResourceRepository,
    AbstractStackupRepository,
    AbstractTaskRepository,
    AbstractUnitOfWork,
)
from model import (
    Baseline,
    BaselineType,
    MilestoneSnapshot,
    ResourceSnapshot,
    TaskSnapshot,
    TaskType,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A plain dict with typed get/save/delete helpers."""

    def fetch(self, key: uuid.UUID):
        return self.get(key)

    def put(self, obj) -> None:
        self[obj.id] = obj

    def remove(self, key: uuid.UUID) -> None:
        self.pop(key, None)

    def all(self) -> list:
        return list(self.values())


# ---------------------------------------------------------------------------
# Shared in-memory database (module-level singleton)
# Persists for the lifetime of the process; restarting uvicorn resets it.
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    def __init__(self):
        self.projects:   _Store = _Store()
        self.resources:  _Store = _Store()
        self.tasks:      _Store = _Store()
        self.milestones: _Store = _Store()
        self.baselines:  _Store = _Store()
        self.features:   _Store = _Store()
        self.stackups:   _Store = _Store()


_db = InMemoryDatabase()


# ---------------------------------------------------------------------------
# In-memory repositories
# ---------------------------------------------------------------------------

class InMemoryProjectRepository(AbstractProjectRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, project_id):        return self._s.fetch(project_id)
    def list_all(self):
        return sorted(self._s.all(), key=lambda p: p.created_at)
    def save(self, project):          self._s.put(project)


class InMemoryResourceRepository(AbstractResourceRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, resource_id):       return self._s.fetch(resource_id)
    def list_for_project(self, project_id):
        return [r for r in self._s.all() if r.project_id == project_id]
    def save(self, resource):         self._s.put(resource)


class InMemoryTaskRepository(AbstractTaskRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, task_id):           return self._s.fetch(task_id)
    def list_for_project(self, project_id):
        return [t for t in self._s.all() if t.project_id == project_id]
    def save(self, task):             self._s.put(task)


class InMemoryMilestoneRepository(AbstractMilestoneRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, milestone_id):      return self._s.fetch(milestone_id)
    def list_for_project(self, project_id):
        return [m for m in self._s.all() if m.project_id == project_id]
    def save(self, milestone):        self._s.put(milestone)


class InMemoryBaselineRepository(AbstractBaselineRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, baseline_id):       return self._s.fetch(baseline_id)
    def list_for_project(self, project_id):
        return [b for b in self._s.all() if b.project_id == project_id]
    def save(self, baseline):         self._s.put(baseline)


class InMemoryFeatureRepository(AbstractFeatureRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, feature_id):        return self._s.fetch(feature_id)
    def list_all(self):               return self._s.all()
    def save(self, feature):          self._s.put(feature)


class InMemoryStackupRepository(AbstractStackupRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, stackup_id):        return self._s.fetch(stackup_id)
    def list_all(self):               return self._s.all()
    def save(self, stackup):          self._s.put(stackup)


# ---------------------------------------------------------------------------
# JSON file baseline repository
# ---------------------------------------------------------------------------

def _uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    return uuid.UUID(value) if value else None


def baseline_to_dict(b: Baseline) -> Dict[str, Any]:
    return {
        "id": str(b.id),
        "project_id": str(b.project_id),
        "name": b.name,
        "description": b.description,
        "baseline_type": b.baseline_type.value,
        "author": b.author,
        "is_current": b.is_current,
        "project_start": b.project_start.isoformat(),
        "project_end": b.project_end.isoformat(),
        "total_cost": b.total_cost,
        "total_effort_hours": b.total_effort_hours,
        "created_at": b.created_at.isoformat(),
        "tasks": [
            {
                "task_id": str(t.task_id),
                "name": t.name,
                "task_type": t.task_type.value,
                "start_date": t.start_date.isoformat(),
                "end_date": t.end_date.isoformat(),
                "duration_days": t.duration_days,
                "effort_hours": t.effort_hours,
                "cost": t.cost,
                "assigned_resources": [str(r) for r in t.assigned_resources],
                "dependencies": [str(d) for d in t.dependencies],
            }
            for t in b.tasks
        ],
        "milestones": [
            {
                "milestone_id": str(m.milestone_id),
                "name": m.name,
                "target_date": m.target_date.isoformat(),
                "dependencies": [str(d) for d in m.dependencies],
            }
            for m in b.milestones
        ],
        "resources": [
            {
                "resource_id": str(r.resource_id),
                "name": r.name,
                "hourly_rate": r.hourly_rate,
                "total_allocated_hours": r.total_allocated_hours,
                "total_cost": r.total_cost,
            }
            for r in b.resources
        ],
    }


def baseline_from_dict(data: Dict[str, Any]) -> Baseline:
    return Baseline(
        id=uuid.UUID(data["id"]),
        project_id=uuid.UUID(data["project_id"]),
        name=data["name"],
        description=data.get("description", ""),
        baseline_type=BaselineType(data["baseline_type"]),
        author=data["author"],
        is_current=data["is_current"],
        project_start=date.fromisoformat(data["project_start"]),
        project_end=date.fromisoformat(data["project_end"]),
        total_cost=data["total_cost"],
        total_effort_hours=data["total_effort_hours"],
        created_at=datetime.fromisoformat(data["created_at"]),
        tasks=tuple(
            TaskSnapshot(
                task_id=uuid.UUID(t["task_id"]),
                name=t["name"],
                task_type=TaskType(t["task_type"]),
                start_date=date.fromisoformat(t["start_date"]),
                end_date=date.fromisoformat(t["end_date"]),
                duration_days=t["duration_days"],
                effort_hours=t["effort_hours"],
                cost=t["cost"],
                assigned_resources=tuple(_uuid(r) for r in t["assigned_resources"]),
                dependencies=tuple(_uuid(d) for d in t["dependencies"]),
            )
            for t in data["tasks"]
        ),
        milestones=tuple(
            MilestoneSnapshot(
                milestone_id=uuid.UUID(m["milestone_id"]),
                name=m["name"],
                target_date=date.fromisoformat(m["target_date"]),
                dependencies=tuple(_uuid(d) for d in m["dependencies"]),
            )
            for m in data["milestones"]
        ),
        resources=tuple(
            ResourceSnapshot(
                resource_id=uuid.UUID(r["resource_id"]),
                name=r["name"],
                hourly_rate=r["hourly_rate"],
                total_allocated_hours=r["total_allocated_hours"],
                total_cost=r["total_cost"],
            )
            for r in data["resources"]
        ),
    )


class JsonFileBaselineRepository(AbstractBaselineRepository):
    """
    Stores each baseline as `<id>.json` under `directory`.

    Files are written to a temporary sibling and renamed into place, so a
    reader never sees a half-written baseline.
    """

    def __init__(self, directory: Union[str, Path]):
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, baseline_id: uuid.UUID) -> Path:
        return self._dir / f"{baseline_id}.json"

    def get(self, baseline_id: uuid.UUID) -> Optional[Baseline]:
        path = self._path(baseline_id)
        if not path.exists():
            return None
        return baseline_from_dict(json.loads(path.read_text(encoding="utf-8")))

    def list_for_project(self, project_id: uuid.UUID) -> List[Baseline]:
        baselines = []
        for path in self._dir.glob("*.json"):
            baseline = baseline_from_dict(json.loads(path.read_text(encoding="utf-8")))
            if baseline.project_id == project_id:
                baselines.append(baseline)
        return sorted(baselines, key=lambda b: b.created_at, reverse=True)

    def save(self, baseline: Baseline) -> None:
        path = self._path(baseline.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(baseline_to_dict(baseline), indent=2), encoding="utf-8")
        os.replace(tmp, path)
        logger.debug("Wrote baseline %s to %s", baseline.id, path)


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all in-memory repositories.  commit() and rollback() are no-ops
    because dict mutations are immediate; there is no transaction to manage.
    A custom baseline repository (e.g. JsonFileBaselineRepository) may be
    passed in to persist baselines elsewhere.
    """

    def __init__(
        self,
        db: InMemoryDatabase = _db,
        baselines: Optional[AbstractBaselineRepository] = None,
    ):
        self.projects   = InMemoryProjectRepository(db.projects)
        self.resources  = InMemoryResourceRepository(db.resources)
        self.tasks      = InMemoryTaskRepository(db.tasks)
        self.milestones = InMemoryMilestoneRepository(db.milestones)
        self.baselines  = baselines or InMemoryBaselineRepository(db.baselines)
        self.features   = InMemoryFeatureRepository(db.features)
        self.stackups   = InMemoryStackupRepository(db.stackups)

    def commit(self)   -> None: pass   # no-op for in-memory
    def rollback(self) -> None: pass   # no-op for in-memory
