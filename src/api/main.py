"""Tento Jobs API - durable multi-step job orchestration.

This API creates and controls long-running agent jobs:
- Quiz generation jobs (source URL -> summary -> questions -> ready quiz)
- Job lifecycle control (start, pause, resume, delete)
- Quiz and summary document reads

The background worker runs inside this process when WORKER_ENABLED is set.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import jobs, quizzes
from src.jobs.db import init_db
from src.jobs.orchestrator import get_orchestrator
from src.jobs.schemas import JobStatus
from src.jobs.step_executor import build_quiz_executor
from src.jobs.worker import JobWorker

WORKER_ENABLED = os.environ.get("WORKER_ENABLED", "true").lower() in ("1", "true", "yes")
WORKER_SHUTDOWN_GRACE = float(os.environ.get("WORKER_SHUTDOWN_GRACE", "10"))

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: schema, lease hygiene, worker
    logger.info("Initializing job database...")
    init_db()

    orchestrator = get_orchestrator()
    recovered = orchestrator.recover_expired_leases()
    running = orchestrator.list_jobs(status=JobStatus.RUNNING)
    logger.info(f"{len(running)} running job(s) in store, {recovered} expired lease(s) recovered")

    worker = None
    handle = None
    if WORKER_ENABLED:
        worker = JobWorker(orchestrator, build_quiz_executor())
        handle = worker.start()
    else:
        logger.info("Background worker disabled (WORKER_ENABLED=false)")
    app.state.worker = worker

    logger.info("Tento Jobs API ready")
    yield
    # Shutdown
    logger.info("Shutting down Tento Jobs API")
    if worker is not None and handle is not None:
        await worker.stop(handle, grace_seconds=WORKER_SHUTDOWN_GRACE)


# Create FastAPI app
app = FastAPI(
    title="Tento Jobs API",
    description="""
## Durable Job Orchestration

Multi-step agent jobs whose state lives in the database, driven forward by a
background worker with retries, backoff, and leases.

### Key Endpoints

- `POST /v1/jobs/quiz` - Create a quiz draft and start generating it
- `GET /v1/jobs/{job_id}` - Poll job state
- `POST /v1/jobs/{job_id}/pause` / `resume` - Control a running job
- `GET /v1/quizzes/{quiz_id}` - Read the generated quiz
""",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /v1 prefix
app.include_router(jobs.router, prefix="/v1")
app.include_router(quizzes.router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Tento Jobs API",
        "version": "0.1.0",
        "description": "Durable multi-step job orchestration",
        "docs": "/docs",
        "endpoints": {
            "jobs": "/v1/jobs",
            "quizzes": "/v1/quizzes",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    counts = {
        status.value: len(get_orchestrator().list_jobs(status=status))
        for status in JobStatus
    }
    worker = getattr(app.state, "worker", None)
    return {
        "status": "healthy",
        "worker_enabled": worker is not None,
        "worker_id": worker.worker_id if worker else None,
        "jobs_in_flight": len(worker.in_flight) if worker else 0,
        "jobs_by_status": counts,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=False,
    )
