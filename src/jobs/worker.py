"""Background worker that drives Running jobs forward, one step at a time.

Each poll lists Running jobs, skips those that are backing off, leased by
another worker, or already in flight here, and spawns one task per
remaining job (bounded by a semaphore). A job task claims the lease,
executes the current step, and reports the outcome through the
orchestrator; on success it keeps going with the next step while the job
stays Running.

The worker holds no job state of its own. Stopping it cancels in-flight
steps without touching persisted status, so a job left Running is simply
picked up again by the next worker that polls.
"""

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from src.jobs.errors import (
    ConcurrentModificationError,
    InvalidStateTransition,
    JobNotFoundError,
    LeaseConflictError,
    OrchestratorError,
    StoreError,
)
from src.jobs.orchestrator import Orchestrator
from src.jobs.schemas import AgentJob, JobStatus, JobStep, utcnow
from src.jobs.step_executor import StepExecutor

logger = logging.getLogger(__name__)

POLL_INTERVAL = float(os.environ.get("WORKER_POLL_INTERVAL", "5"))
MAX_CONCURRENCY = int(os.environ.get("WORKER_MAX_CONCURRENCY", "4"))
LEASE_TTL = float(os.environ.get("WORKER_LEASE_TTL", "300"))

# Backoff between attempts of the same step, indexed by retries consumed
RETRY_DELAYS = [5, 15, 30, 60, 120]  # seconds

# Lease must outlive the step it covers
LEASE_MARGIN = 30  # seconds

# Another writer got there first; our view of the job is stale
_STALE_VIEW_ERRORS = (
    InvalidStateTransition,
    LeaseConflictError,
    JobNotFoundError,
    ConcurrentModificationError,
)


def retry_delay_for(step: JobStep) -> float:
    """Backoff before the next attempt of `step`, capped by its timeout."""
    delay = RETRY_DELAYS[min(step.retry_count, len(RETRY_DELAYS) - 1)]
    if step.timeout_seconds:
        delay = min(delay, step.timeout_seconds)
    return delay


@dataclass
class WorkerHandle:
    """Returned by JobWorker.start(); pass it to JobWorker.stop()."""

    worker_id: str
    task: asyncio.Task


class JobWorker:
    def __init__(
        self,
        orchestrator: Orchestrator,
        executor: StepExecutor,
        *,
        poll_interval: float = POLL_INTERVAL,
        max_concurrency: int = MAX_CONCURRENCY,
        lease_ttl: float = LEASE_TTL,
        worker_id: Optional[str] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.orchestrator = orchestrator
        self.executor = executor
        self.poll_interval = poll_interval
        self.max_concurrency = max_concurrency
        self.lease_ttl = lease_ttl
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> set[str]:
        return set(self._in_flight)

    # --- Lifecycle ---

    def start(self) -> WorkerHandle:
        """Launch the poll loop on the running event loop."""
        task = asyncio.create_task(self._run(), name=f"job-worker-{self.worker_id}")
        return WorkerHandle(worker_id=self.worker_id, task=task)

    async def stop(self, handle: WorkerHandle, grace_seconds: float = 10.0) -> None:
        """Cancel the poll loop and in-flight steps, waiting up to `grace_seconds`."""
        handle.task.cancel()
        done, _ = await asyncio.wait({handle.task}, timeout=grace_seconds)
        if not done:
            logger.warning(
                f"Worker {handle.worker_id} still shutting down after {grace_seconds:g}s"
            )
            return
        if not handle.task.cancelled() and handle.task.exception() is not None:
            logger.error(f"Worker {handle.worker_id} exited with error: {handle.task.exception()}")
        logger.info(f"Worker {handle.worker_id} stopped")

    async def run_once(self) -> int:
        """Poll once and wait for every job dispatched by that poll to settle.

        Returns the number of jobs dispatched.
        """
        dispatched = await self._poll()
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks)
        return dispatched

    async def _run(self) -> None:
        logger.info(
            f"Worker {self.worker_id} started (poll={self.poll_interval:g}s, "
            f"concurrency={self.max_concurrency}, lease={self.lease_ttl:g}s)"
        )
        try:
            while True:
                try:
                    await self._poll()
                except Exception:
                    logger.exception(f"Worker {self.worker_id} poll failed")
                await asyncio.sleep(self.poll_interval)
        finally:
            await self._cancel_in_flight()

    async def _cancel_in_flight(self) -> None:
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Worker {self.worker_id} cancelling {len(tasks)} in-flight job(s)")
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- Polling ---

    async def _poll(self) -> int:
        try:
            jobs = await asyncio.to_thread(self.orchestrator.list_jobs, JobStatus.RUNNING)
        except StoreError as e:
            logger.error(f"Worker {self.worker_id} could not list running jobs: {e}")
            return 0

        now = utcnow()
        dispatched = 0
        for job in jobs:
            if job.job_id in self._in_flight or not job.is_due(now):
                continue
            if job.lease_is_active(now) and job.lease_owner != self.worker_id:
                continue
            task = asyncio.create_task(self._process(job), name=f"job-{job.job_id}")
            self._in_flight[job.job_id] = task
            task.add_done_callback(lambda _t, job_id=job.job_id: self._in_flight.pop(job_id, None))
            dispatched += 1

        if dispatched:
            logger.debug(f"Worker {self.worker_id} dispatched {dispatched} job(s)")
        return dispatched

    def _lease_ttl_for(self, job: AgentJob, step_index: int) -> float:
        step = job.steps[step_index] if step_index < len(job.steps) else None
        if step is not None and step.timeout_seconds:
            return max(self.lease_ttl, step.timeout_seconds + LEASE_MARGIN)
        return self.lease_ttl

    # --- Per-job processing ---

    async def _process(self, listed: AgentJob) -> None:
        job_id = listed.job_id
        async with self._semaphore:
            step_index = listed.current_step_index
            while True:
                ttl = self._lease_ttl_for(listed, step_index)
                try:
                    job = await asyncio.to_thread(
                        self.orchestrator.claim_job, job_id, self.worker_id, ttl
                    )
                except _STALE_VIEW_ERRORS as e:
                    logger.debug(f"Worker {self.worker_id} not claiming job {job_id}: {e}")
                    return
                except StoreError as e:
                    logger.error(f"Worker {self.worker_id} failed to claim job {job_id}: {e}")
                    return

                try:
                    keep_going = await self._advance(job)
                except asyncio.CancelledError:
                    await self._release(job_id)
                    raise
                except Exception:
                    logger.exception(f"Worker {self.worker_id} failed while processing job {job_id}")
                    await self._release(job_id)
                    return
                if not keep_going:
                    return
                step_index = job.current_step_index + 1

    async def _advance(self, job: AgentJob) -> bool:
        """Run the job's current step and record the outcome.

        Returns True when the step succeeded and the job is still Running.
        Every report names the step index that was claimed, so a result
        arriving after the cursor moved is refused. When a report is refused
        the lease is handed back.
        """
        step = job.current_step()
        step_index = job.current_step_index
        if step is None:
            if await self._apply(self.orchestrator.reconcile_completed, job.job_id) is None:
                await self._release(job.job_id)
            return False

        outcome = await self.executor.execute(step, job)
        if outcome.ok:
            updated = await self._apply(
                self.orchestrator.complete_step, job.job_id, outcome.value, self.worker_id, step_index
            )
        elif not outcome.retryable:
            updated = await self._apply(
                self.orchestrator.fail_step, job.job_id, outcome.error, self.worker_id, step_index
            )
        else:
            updated = await self._apply(
                self.orchestrator.record_step_failure,
                job.job_id,
                outcome.error,
                self.worker_id,
                retry_delay_for(step),
                step_index,
            )

        if updated is None:
            await self._release(job.job_id)
            return False
        return outcome.ok and updated.status == JobStatus.RUNNING

    async def _apply(self, operation: Callable[..., AgentJob], job_id: str, *args: Any) -> Optional[AgentJob]:
        """Run an orchestrator write in a thread; log (not raise) stale-view and store errors."""
        try:
            return await asyncio.to_thread(operation, job_id, *args)
        except _STALE_VIEW_ERRORS as e:
            logger.warning(f"Worker {self.worker_id} dropped {operation.__name__} for job {job_id}: {e}")
        except StoreError as e:
            logger.error(
                f"Worker {self.worker_id} {operation.__name__} failed for job {job_id}, "
                f"job keeps its last persisted state: {e}"
            )
        return None

    async def _release(self, job_id: str) -> None:
        try:
            await asyncio.to_thread(self.orchestrator.release_lease, job_id, self.worker_id)
            logger.info(f"Worker {self.worker_id} released lease on job {job_id}")
        except OrchestratorError as e:
            logger.warning(f"Worker {self.worker_id} could not release lease on job {job_id}: {e}")
