"""Job lifecycle management for multi-step agent jobs.

Handles:
- Job creation and persistence
- Lifecycle transitions (start, complete step, fail, pause, resume)
- Retry bookkeeping for failed steps
- Worker leases for multi-instance safety
- Job queries and deletion

The store is the single source of truth. There is no in-memory job
object shared between callers. Every mutating operation re-reads the job,
checks its precondition against that fresh copy, and writes the new state
back with compare-and-swap on the job's version. A caller racing another
writer either observes the expected state and proceeds, or gets an
explicit InvalidStateTransition.

State machine:

    pending ──start──▶ running ──complete last step──▶ completed
                        │  ▲
                  pause │  │ resume
                        ▼  │
                       paused
    running ──fail / retries exhausted──▶ failed
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Optional

from pydantic import BaseModel

from src.jobs.errors import (
    ConcurrentModificationError,
    InvalidStateTransition,
    JobNotFoundError,
    LeaseConflictError,
)
from src.jobs.job_store import JobStore, SqlJobStore
from src.jobs.schemas import TERMINAL_STATUSES, AgentJob, JobStatus, JobStep, utcnow

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5


def _is_empty_result(value: Any) -> bool:
    return value is None or (isinstance(value, (dict, list, str)) and len(value) == 0)


def _require_status(job: AgentJob, expected: JobStatus, operation: str) -> None:
    if job.status != expected:
        raise InvalidStateTransition(job.job_id, job.status.value, operation)


def _require_claimable(job: AgentJob, owner: str) -> None:
    """A lease can be taken when it is free, expired, or already ours."""
    if job.lease_is_active() and job.lease_owner != owner:
        raise LeaseConflictError(job.job_id, job.lease_owner, owner)


def _require_lease(job: AgentJob, owner: Optional[str]) -> None:
    """Only the current lease holder may report a step outcome.

    An owner whose lease was cleared or taken over is refused even when no
    other lease is live. Callers without an owner are refused only while
    someone holds a live lease.
    """
    if owner is None:
        if job.lease_is_active():
            raise LeaseConflictError(job.job_id, job.lease_owner, owner)
        return
    if job.lease_owner != owner:
        raise LeaseConflictError(job.job_id, job.lease_owner, owner)


def _require_step(job: AgentJob, step_index: Optional[int], operation: str) -> None:
    if step_index is not None and job.current_step_index != step_index:
        raise InvalidStateTransition(
            job.job_id, job.status.value, operation,
            f"step {step_index} is no longer current (cursor at {job.current_step_index})",
        )


def _clear_lease(job: AgentJob) -> None:
    job.lease_owner = None
    job.lease_expires_at = None


class Orchestrator:
    """Owns every state transition of an AgentJob."""

    def __init__(self, store: JobStore, max_cas_attempts: int = MAX_CAS_ATTEMPTS):
        self._store = store
        self._max_cas_attempts = max_cas_attempts

    @property
    def store(self) -> JobStore:
        return self._store

    # --- Internals ---

    def _load(self, job_id: str) -> AgentJob:
        job = self._store.fetch(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _transition(
        self,
        job_id: str,
        mutate: Callable[[AgentJob], Optional[AgentJob]],
    ) -> AgentJob:
        """Atomic read-modify-write of one job.

        `mutate` receives a private copy of the freshly loaded job, raises if
        the precondition does not hold, and returns the job to persist (or
        None to leave the stored job untouched).
        """
        for attempt in range(1, self._max_cas_attempts + 1):
            current = self._load(job_id)
            expected_version = current.version
            updated = mutate(current.model_copy(deep=True))
            if updated is None:
                return current

            updated.version = expected_version + 1
            updated.updated_at = utcnow()
            if self._store.compare_and_swap(updated, expected_version):
                return updated

            logger.debug(
                f"Job {job_id} changed during update (attempt {attempt}/"
                f"{self._max_cas_attempts}), re-reading"
            )

        raise ConcurrentModificationError(job_id, self._max_cas_attempts)

    # --- Creation and queries ---

    def create_job(self, steps: list[JobStep]) -> AgentJob:
        """Persist a new Pending job built from an ordered list of steps.

        Unknown step names are rejected here, before anything is stored.
        """
        job = AgentJob.new(steps)
        self._store.insert(job)
        logger.info(
            f"Created job {job.job_id} with {len(job.steps)} steps: "
            f"{[s.name for s in job.steps]}"
        )
        return job

    def get_job(self, job_id: str) -> AgentJob:
        return self._load(job_id)

    def get_status(self, job_id: str) -> JobStatus:
        return self._load(job_id).status

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: Optional[int] = None,
    ) -> list[AgentJob]:
        """List jobs, optionally filtered by status."""
        return self._store.list_jobs(status=status, limit=limit)

    def delete_job(self, job_id: str) -> None:
        if not self._store.delete(job_id):
            raise JobNotFoundError(job_id)
        logger.info(f"Deleted job {job_id}")

    def set_job_metadata(self, job_id: str, key: str, value: Any) -> AgentJob:
        """Seed a context value (e.g. the quiz_id a workflow builds on).

        Context entries share the append-only results map with step
        results, so a key can be written once and never collide with a
        step id.
        """

        def mutate(job: AgentJob) -> Optional[AgentJob]:
            if job.status in TERMINAL_STATUSES:
                raise InvalidStateTransition(job.job_id, job.status.value, "set metadata on")
            if any(step.id == key for step in job.steps):
                raise InvalidStateTransition(
                    job.job_id, job.status.value, "set metadata on",
                    f"key {key!r} collides with a step id",
                )
            if key in job.results:
                if job.results[key] == value:
                    return None
                raise InvalidStateTransition(
                    job.job_id, job.status.value, "set metadata on",
                    f"key {key!r} is already set",
                )
            job.results[key] = value
            return job

        job = self._transition(job_id, mutate)
        logger.info(f"Job {job_id} metadata {key} set")
        return job

    # --- Lifecycle transitions ---

    def start_job(self, job_id: str) -> AgentJob:
        def mutate(job: AgentJob) -> AgentJob:
            _require_status(job, JobStatus.PENDING, "start")
            job.status = JobStatus.RUNNING
            job.started_at = utcnow()
            return job

        job = self._transition(job_id, mutate)
        logger.info(f"Job {job_id} status → running")
        return job

    def complete_step(
        self,
        job_id: str,
        result: Any = None,
        owner: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> AgentJob:
        """Record the current step's result and advance the cursor by one.

        `step_index` is the step the caller executed; the write is refused
        if the cursor has moved since.
        """
        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")

        def mutate(job: AgentJob) -> AgentJob:
            _require_status(job, JobStatus.RUNNING, "complete step of")
            _require_lease(job, owner)
            _require_step(job, step_index, "complete step of")
            step = job.current_step()
            if step is None:
                raise InvalidStateTransition(
                    job.job_id, job.status.value, "complete step of", "no remaining steps"
                )

            if not _is_empty_result(result) and step.id not in job.results:
                job.results[step.id] = result

            job.current_step_index += 1
            job.last_step_error = None
            job.next_attempt_at = None
            _clear_lease(job)

            if job.is_complete():
                job.status = JobStatus.COMPLETED
                job.completed_at = utcnow()
            return job

        job = self._transition(job_id, mutate)
        if job.status == JobStatus.COMPLETED:
            logger.info(f"Job {job_id} status → completed ({len(job.steps)} steps)")
        else:
            logger.info(
                f"Job {job_id} advanced to step {job.current_step_index + 1}/{len(job.steps)}"
            )
        return job

    def fail_step(
        self,
        job_id: str,
        error: str,
        owner: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> AgentJob:
        """Terminally fail the job at its current step."""

        def mutate(job: AgentJob) -> AgentJob:
            _require_status(job, JobStatus.RUNNING, "fail step of")
            _require_lease(job, owner)
            _require_step(job, step_index, "fail step of")
            self._mark_failed(job, error)
            return job

        job = self._transition(job_id, mutate)
        logger.error(f"Job {job_id} status → failed (error: {error})")
        return job

    def record_step_failure(
        self,
        job_id: str,
        error: str,
        owner: Optional[str] = None,
        retry_delay: Optional[float] = None,
        step_index: Optional[int] = None,
    ) -> AgentJob:
        """Consume one retry of the current step, or fail the job when none remain.

        With max_retries = N, the first N failures leave the job Running
        with retry_count == N; failure N+1 transitions it to Failed.
        """

        def mutate(job: AgentJob) -> AgentJob:
            _require_status(job, JobStatus.RUNNING, "record failure of")
            _require_lease(job, owner)
            _require_step(job, step_index, "record failure of")
            step = job.current_step()
            if step is None or step.retry_count >= step.max_retries:
                self._mark_failed(job, error)
                return job

            job.steps[job.current_step_index] = step.model_copy(
                update={"retry_count": step.retry_count + 1}
            )
            job.last_step_error = error
            job.next_attempt_at = (
                utcnow() + timedelta(seconds=retry_delay) if retry_delay else None
            )
            _clear_lease(job)
            return job

        job = self._transition(job_id, mutate)
        if job.status == JobStatus.FAILED:
            logger.error(f"Job {job_id} status → failed, retries exhausted (error: {error})")
        else:
            step = job.current_step()
            logger.warning(
                f"Job {job_id} step {step.name} failed "
                f"(retry {step.retry_count}/{step.max_retries}): {error}"
            )
        return job

    def pause_job(self, job_id: str) -> AgentJob:
        """Pause a Running job.

        A lease held by a worker mid-step survives the pause, so no other
        worker can start the same step until the holder releases it or the
        lease expires.
        """

        def mutate(job: AgentJob) -> AgentJob:
            _require_status(job, JobStatus.RUNNING, "pause")
            job.status = JobStatus.PAUSED
            return job

        job = self._transition(job_id, mutate)
        logger.info(f"Job {job_id} status → paused")
        return job

    def resume_job(self, job_id: str) -> AgentJob:
        def mutate(job: AgentJob) -> AgentJob:
            _require_status(job, JobStatus.PAUSED, "resume")
            job.status = JobStatus.RUNNING
            return job

        job = self._transition(job_id, mutate)
        logger.info(f"Job {job_id} status → running (resumed)")
        return job

    def reconcile_completed(self, job_id: str) -> AgentJob:
        """Complete a Running job whose cursor already sits past its last step."""

        def mutate(job: AgentJob) -> AgentJob:
            _require_status(job, JobStatus.RUNNING, "reconcile")
            if not job.is_complete():
                raise InvalidStateTransition(
                    job.job_id, job.status.value, "reconcile", "steps remain"
                )
            job.status = JobStatus.COMPLETED
            job.completed_at = utcnow()
            _clear_lease(job)
            return job

        job = self._transition(job_id, mutate)
        logger.info(f"Job {job_id} status → completed (no remaining steps)")
        return job

    @staticmethod
    def _mark_failed(job: AgentJob, error: str) -> None:
        job.status = JobStatus.FAILED
        job.error_message = error
        job.completed_at = utcnow()
        job.next_attempt_at = None
        _clear_lease(job)

    # --- Leases ---

    def claim_job(self, job_id: str, owner: str, ttl_seconds: float) -> AgentJob:
        """Take (or renew) the execution lease on a Running, due job."""

        def mutate(job: AgentJob) -> AgentJob:
            _require_status(job, JobStatus.RUNNING, "claim")
            if not job.is_due():
                raise InvalidStateTransition(
                    job.job_id, job.status.value, "claim",
                    f"next attempt at {job.next_attempt_at.isoformat()}",
                )
            _require_claimable(job, owner)
            job.lease_owner = owner
            job.lease_expires_at = utcnow() + timedelta(seconds=ttl_seconds)
            return job

        job = self._transition(job_id, mutate)
        logger.debug(f"Job {job_id} leased by {owner} until {job.lease_expires_at.isoformat()}")
        return job

    def release_lease(self, job_id: str, owner: str) -> AgentJob:
        """Drop `owner`'s lease; a no-op if someone else (or no one) holds it."""

        def mutate(job: AgentJob) -> Optional[AgentJob]:
            if job.lease_owner != owner:
                return None
            _clear_lease(job)
            return job

        return self._transition(job_id, mutate)

    def recover_expired_leases(self) -> int:
        """Clear leases left behind by workers that died. Returns the count."""
        recovered = 0
        for job in self._store.list_jobs():
            if not job.lease_owner or job.lease_is_active():
                continue

            cleared = False

            def mutate(fresh: AgentJob) -> Optional[AgentJob]:
                nonlocal cleared
                cleared = False
                if not fresh.lease_owner or fresh.lease_is_active():
                    return None
                _clear_lease(fresh)
                cleared = True
                return fresh

            try:
                self._transition(job.job_id, mutate)
            except JobNotFoundError:
                continue
            if not cleared:
                continue
            recovered += 1
            logger.warning(f"Recovered expired lease on job {job.job_id} (was {job.lease_owner})")

        if recovered:
            logger.info(f"Lease recovery: {recovered} job(s) released")
        return recovered


# Global orchestrator instance
_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    """Get the global orchestrator, backed by the configured SQL store."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator(SqlJobStore())
    return _orchestrator


def reset_orchestrator() -> None:
    """Drop the global instance so the next call rebuilds it (tests, config reloads)."""
    global _orchestrator
    _orchestrator = None
