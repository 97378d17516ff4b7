"""Error taxonomy for the job orchestrator.

Orchestrator operations raise these instead of returning sentinel values,
so callers (API routes, the background worker) decide how to react:
the API maps them to HTTP status codes, the worker decides between
retrying and failing the job.
"""

from typing import Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class JobNotFoundError(OrchestratorError):
    """The referenced job does not exist in the store."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class InvalidStateTransition(OrchestratorError):
    """An operation's precondition on the job status was not met."""

    def __init__(self, job_id: str, status: str, operation: str, detail: str = ""):
        self.job_id = job_id
        self.status = status
        self.operation = operation
        message = f"Cannot {operation} job {job_id}: status is {status}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class LeaseConflictError(OrchestratorError):
    """Another worker holds a live lease on the job."""

    def __init__(self, job_id: str, owner: Optional[str], requested_by: Optional[str]):
        self.job_id = job_id
        self.owner = owner
        self.requested_by = requested_by
        super().__init__(
            f"Job {job_id} is leased by {owner}, not {requested_by or 'an unleased caller'}"
        )


class ConcurrentModificationError(OrchestratorError):
    """Compare-and-swap kept losing to concurrent writers."""

    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(f"Job {job_id} changed concurrently {attempts} times; giving up")


class StoreError(OrchestratorError):
    """A persistence read/write failed. The job keeps its last persisted state."""


class UnknownStepKindError(ValueError):
    """A step name does not resolve to any known step kind."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown step type: {name}")


class StepExecutionError(Exception):
    """A step handler's external call failed.

    `retryable=False` marks failures that another attempt cannot fix
    (e.g. a prerequisite missing from the job's results).
    """

    def __init__(self, step_name: str, cause: str, retryable: bool = True):
        self.step_name = step_name
        self.cause = cause
        self.retryable = retryable
        super().__init__(f"Step {step_name} failed: {cause}")


class StepTimeoutError(StepExecutionError):
    """A step handler exceeded its declared timeout."""

    def __init__(self, step_name: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(step_name, f"timed out after {timeout_seconds:g}s")


class SchemaValidationError(Exception):
    """Generated content failed structural validation."""

    def __init__(self, schema_name: str, detail: str):
        self.schema_name = schema_name
        self.detail = detail
        super().__init__(f"Generated content does not match {schema_name}: {detail}")


class GenerationTransportError(Exception):
    """The language model call itself failed (network, auth, quota)."""
