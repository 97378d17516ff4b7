"""Job API routes: create quiz generation jobs, poll, and control them.

Endpoints:
    POST   /v1/jobs/quiz               Create a quiz draft plus its generation job
    GET    /v1/jobs                    List jobs (optional status filter)
    GET    /v1/jobs/{job_id}           Full job state
    POST   /v1/jobs/{job_id}/start     Start a pending job
    POST   /v1/jobs/{job_id}/pause     Pause a running job
    POST   /v1/jobs/{job_id}/resume    Resume a paused job
    DELETE /v1/jobs/{job_id}           Delete a job
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from src.content.quiz_store import create_quiz_draft, delete_quiz
from src.content.schemas import QuizDraftRequest
from src.jobs.errors import (
    ConcurrentModificationError,
    InvalidStateTransition,
    JobNotFoundError,
    LeaseConflictError,
    OrchestratorError,
    StoreError,
)
from src.jobs.orchestrator import get_orchestrator
from src.jobs.quiz_handlers import QUIZ_ID_KEY
from src.jobs.quiz_steps import create_quiz_generation_steps
from src.jobs.schemas import AgentJob, JobStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


class CreateQuizJobRequest(QuizDraftRequest):
    start: bool = True


class JobSummary(BaseModel):
    job_id: str
    status: JobStatus
    current_step_index: int
    total_steps: int
    current_step: Optional[str] = None
    error_message: Optional[str] = None
    last_step_error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: AgentJob) -> "JobSummary":
        step = job.current_step()
        return cls(
            job_id=job.job_id,
            status=job.status,
            current_step_index=job.current_step_index,
            total_steps=len(job.steps),
            current_step=step.name if step else None,
            error_message=job.error_message,
            last_step_error=job.last_step_error,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )


def _to_http_error(e: OrchestratorError) -> HTTPException:
    if isinstance(e, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidStateTransition, LeaseConflictError, ConcurrentModificationError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StoreError):
        logger.error(f"Store error: {e}")
        return HTTPException(status_code=503, detail="Job store unavailable, retry the request")
    return HTTPException(status_code=500, detail=str(e))


def _discard(orchestrator, quiz_id: str, job_id: Optional[str]) -> None:
    """Remove the draft (and half-built job) of a quiz job that could not be set up."""
    if job_id is not None:
        try:
            orchestrator.delete_job(job_id)
        except OrchestratorError as e:
            logger.error(f"Job {job_id} left without quiz context: {e}")
    try:
        delete_quiz(quiz_id)
    except StoreError as e:
        logger.error(f"Quiz draft {quiz_id} left without a job: {e}")


@router.post("/quiz", status_code=201)
async def create_quiz_job(request: CreateQuizJobRequest):
    """Create a quiz draft and the job that generates its content.

    The draft's id is seeded into the job's results as `quiz_id` before the
    job starts, so every step can find the quiz it is building.
    """
    orchestrator = get_orchestrator()
    try:
        quiz = create_quiz_draft(QuizDraftRequest(**request.model_dump(exclude={"start"})))
    except StoreError as e:
        raise _to_http_error(e) from e

    job = None
    try:
        job = orchestrator.create_job(create_quiz_generation_steps())
        job = orchestrator.set_job_metadata(job.job_id, QUIZ_ID_KEY, quiz.id)
    except OrchestratorError as e:
        _discard(orchestrator, quiz.id, job.job_id if job is not None else None)
        raise _to_http_error(e) from e

    # On a failed start the Pending job and its draft are kept
    if request.start:
        try:
            job = orchestrator.start_job(job.job_id)
        except OrchestratorError as e:
            raise _to_http_error(e) from e

    logger.info(f"Created quiz job {job.job_id} for quiz {quiz.id} ({request.url})")
    return {
        "job_id": job.job_id,
        "quiz_id": quiz.id,
        "status": job.status,
        "message": f"Poll GET /v1/jobs/{job.job_id} for progress.",
    }


@router.get("")
async def list_all_jobs(status: Optional[JobStatus] = None, limit: int = 50):
    """List jobs, oldest first."""
    try:
        jobs = get_orchestrator().list_jobs(status=status, limit=limit)
    except OrchestratorError as e:
        raise _to_http_error(e) from e
    return {"jobs": [JobSummary.from_job(j) for j in jobs], "count": len(jobs)}


@router.get("/{job_id}", response_model=AgentJob)
async def get_job(job_id: str):
    try:
        return get_orchestrator().get_job(job_id)
    except OrchestratorError as e:
        raise _to_http_error(e) from e


@router.post("/{job_id}/start", response_model=JobSummary)
async def start_job(job_id: str):
    try:
        return JobSummary.from_job(get_orchestrator().start_job(job_id))
    except OrchestratorError as e:
        raise _to_http_error(e) from e


@router.post("/{job_id}/pause", response_model=JobSummary)
async def pause_job(job_id: str):
    """Pause a running job. A step already in flight finishes but its result is discarded."""
    try:
        return JobSummary.from_job(get_orchestrator().pause_job(job_id))
    except OrchestratorError as e:
        raise _to_http_error(e) from e


@router.post("/{job_id}/resume", response_model=JobSummary)
async def resume_job(job_id: str):
    try:
        return JobSummary.from_job(get_orchestrator().resume_job(job_id))
    except OrchestratorError as e:
        raise _to_http_error(e) from e


@router.delete("/{job_id}")
async def remove_job(job_id: str):
    try:
        get_orchestrator().delete_job(job_id)
    except OrchestratorError as e:
        raise _to_http_error(e) from e
    return {"job_id": job_id, "deleted": True}
