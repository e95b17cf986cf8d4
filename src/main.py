"""
main.py

Entry point for the Engineering Project Scheduler & Tolerance Analyzer API.

Wires the infrastructure into the FastAPI app, configures logging and starts
uvicorn.

Usage
-----
    # Option 1: run directly
    python main.py

    # Option 2: run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Environment
-----------
    HOST           bind address                        (default 127.0.0.1)
    PORT           bind port                           (default 8000)
    LOG_LEVEL      root logging level                  (default INFO)
    BASELINE_DIR   store baselines as JSON files here  (default: in memory)

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  POST  /api/v1/projects                                   create a project
2.  PUT   /api/v1/projects/{id}/calendar                     optional: holidays, exceptions
3.  POST  /api/v1/projects/{id}/resources                    add people or equipment
4.  POST  /api/v1/projects/{id}/tasks                        add tasks with assignments
5.  POST  /api/v1/projects/{id}/tasks/{tid}/dependencies     wire predecessors
6.  POST  /api/v1/projects/{id}/milestones                   add checkpoints
7.  POST  /api/v1/projects/{id}/schedule                     compute the critical path
8.  POST  /api/v1/projects/{id}/baselines                    capture the plan
9.  PATCH /api/v1/projects/{id}/tasks/{tid}/progress         record actuals
10. GET   /api/v1/projects/{id}/earned-value?status_date=... earned-value health

Tolerance analysis
    POST  /api/v1/features                  register toleranced features
    POST  /api/v1/stackups                  combine them into a stackup
    POST  /api/v1/stackups/{sid}/analyze    worst case, RSS, Monte Carlo
    GET   /api/v1/stackups/{sid}/sensitivity
"""

import logging
import os

import uvicorn

from api import app, get_uow
from infrastructure import InMemoryUnitOfWork, JsonFileBaselineRepository

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To swap databases, replace InMemoryUnitOfWork with your SQL implementation.
# ---------------------------------------------------------------------------

_baseline_dir = os.environ.get("BASELINE_DIR")

if _baseline_dir:
    _baseline_repo = JsonFileBaselineRepository(_baseline_dir)
    logger.info("Baselines are stored under %s", _baseline_dir)
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(baselines=_baseline_repo)
else:
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
        reload=True,          # auto-reload on file changes during development
        log_level=os.environ.get("LOG_LEVEL", "info").lower(),
    )
