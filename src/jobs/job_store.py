"""Durable job store.

The orchestrator only ever talks to a JobStore: a keyed document store with
insert / fetch / compare-and-swap / list / delete. SqlJobStore is the
production implementation on top of src.jobs.db (Postgres or SQLite).

Compare-and-swap is what makes every orchestrator operation a single atomic
read-modify-write: the write only lands if the row's version still matches
the version that was read, so two callers can never both apply a
transition computed from the same stale state.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

from src.jobs.db import driver_errors, execute, init_db, json_dumps, json_loads
from src.jobs.errors import StoreError
from src.jobs.schemas import AgentJob, JobStatus

logger = logging.getLogger(__name__)


@runtime_checkable
class JobStore(Protocol):
    """Persistence contract for agent jobs."""

    def insert(self, job: AgentJob) -> None: ...

    def fetch(self, job_id: str) -> Optional[AgentJob]: ...

    def compare_and_swap(self, job: AgentJob, expected_version: int) -> bool:
        """Persist `job` only if the stored version equals `expected_version`."""
        ...

    def list_jobs(self, status: Optional[JobStatus] = None, limit: Optional[int] = None) -> list[AgentJob]: ...

    def delete(self, job_id: str) -> bool: ...


_COLUMNS = (
    "job_id, status, steps, current_step_index, results, error_message, "
    "last_step_error, lease_owner, lease_expires_at, next_attempt_at, version, "
    "created_at, started_at, completed_at, updated_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value) -> Optional[datetime]:
    """Normalize a stored timestamp to an aware UTC datetime.

    SQLite gives back ISO strings; Postgres returns naive datetimes for
    TIMESTAMP columns.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _row_to_job(row: dict) -> AgentJob:
    return AgentJob(
        job_id=row["job_id"],
        status=JobStatus(row["status"]),
        steps=json_loads(row["steps"]) or [],
        current_step_index=row["current_step_index"],
        results=json_loads(row["results"]),
        error_message=row.get("error_message"),
        last_step_error=row.get("last_step_error"),
        lease_owner=row.get("lease_owner"),
        lease_expires_at=_parse_ts(row.get("lease_expires_at")),
        next_attempt_at=_parse_ts(row.get("next_attempt_at")),
        version=row.get("version") or 0,
        created_at=_parse_ts(row.get("created_at")),
        started_at=_parse_ts(row.get("started_at")),
        completed_at=_parse_ts(row.get("completed_at")),
        updated_at=_parse_ts(row.get("updated_at")),
    )


def _job_params(job: AgentJob) -> tuple:
    return (
        job.status.value,
        json_dumps([s.model_dump(mode="json") for s in job.steps]),
        job.current_step_index,
        json_dumps(job.results),
        job.error_message,
        job.last_step_error,
        job.lease_owner,
        _ts(job.lease_expires_at),
        _ts(job.next_attempt_at),
        job.version,
        _ts(job.created_at),
        _ts(job.started_at),
        _ts(job.completed_at),
        _ts(job.updated_at),
    )


class SqlJobStore:
    """JobStore backed by the agent_jobs table."""

    def __init__(self):
        init_db()

    def insert(self, job: AgentJob) -> None:
        try:
            execute(
                f"""INSERT INTO agent_jobs ({_COLUMNS})
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
                (job.job_id,) + _job_params(job),
            )
        except driver_errors() as e:
            raise StoreError(f"Failed to create job {job.job_id}: {e}") from e

    def fetch(self, job_id: str) -> Optional[AgentJob]:
        try:
            row = execute(
                f"SELECT {_COLUMNS} FROM agent_jobs WHERE job_id = %s",
                (job_id,),
                fetch="one",
            )
        except driver_errors() as e:
            raise StoreError(f"Failed to fetch job {job_id}: {e}") from e
        return _row_to_job(row) if row else None

    def compare_and_swap(self, job: AgentJob, expected_version: int) -> bool:
        try:
            updated = execute(
                """UPDATE agent_jobs
                   SET status = %s, steps = %s, current_step_index = %s,
                       results = %s, error_message = %s, last_step_error = %s,
                       lease_owner = %s, lease_expires_at = %s, next_attempt_at = %s,
                       version = %s, created_at = %s, started_at = %s,
                       completed_at = %s, updated_at = %s
                   WHERE job_id = %s AND version = %s""",
                _job_params(job) + (job.job_id, expected_version),
                fetch="rowcount",
            )
        except driver_errors() as e:
            raise StoreError(f"Failed to update job {job.job_id}: {e}") from e
        return updated == 1

    def list_jobs(self, status: Optional[JobStatus] = None, limit: Optional[int] = None) -> list[AgentJob]:
        sql = f"SELECT {_COLUMNS} FROM agent_jobs"
        params: tuple = ()
        if status is not None:
            sql += " WHERE status = %s"
            params += (status.value,)
        sql += " ORDER BY created_at ASC"
        if limit is not None:
            sql += " LIMIT %s"
            params += (limit,)
        try:
            rows = execute(sql, params, fetch="all")
        except driver_errors() as e:
            raise StoreError(f"Failed to list jobs: {e}") from e
        return [_row_to_job(row) for row in rows]

    def delete(self, job_id: str) -> bool:
        try:
            deleted = execute(
                "DELETE FROM agent_jobs WHERE job_id = %s",
                (job_id,),
                fetch="rowcount",
            )
        except driver_errors() as e:
            raise StoreError(f"Failed to delete job {job_id}: {e}") from e
        return deleted > 0
