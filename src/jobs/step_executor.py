"""Step executor: dispatches a step to its handler under the step's timeout.

The dispatch table is closed over StepKind and checked for completeness
at construction, so an unhandled kind fails at startup rather than
mid-job. execute() never raises for handler failures; it returns a
StepOutcome that the worker turns into complete_step / record_step_failure
/ fail_step calls. Cancellation is the one thing that propagates.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from src.jobs.errors import (
    SchemaValidationError,
    StepExecutionError,
    StepTimeoutError,
    UnknownStepKindError,
)
from src.jobs.quiz_handlers import QuizStepDependencies, QuizStepHandlers
from src.jobs.schemas import AgentJob, JobStep, StepKind

logger = logging.getLogger(__name__)

StepHandler = Callable[[JobStep, AgentJob], Awaitable[Any]]


@dataclass
class StepOutcome:
    """Result of one step attempt."""

    value: Any = None
    error: Optional[str] = None
    retryable: bool = True

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any) -> "StepOutcome":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str, retryable: bool = True) -> "StepOutcome":
        return cls(error=error, retryable=retryable)


class StepExecutor:
    """Runs one step attempt for a job."""

    def __init__(self, handlers: Mapping[StepKind, StepHandler]):
        missing = [k.value for k in StepKind if k not in handlers]
        if missing:
            raise ValueError(f"No handler registered for step kinds: {', '.join(missing)}")
        self._handlers = dict(handlers)

    async def execute(self, step: JobStep, job: AgentJob) -> StepOutcome:
        try:
            kind = StepKind.from_step_name(step.name)
        except UnknownStepKindError as e:
            logger.error(f"[{job.job_id}] {e}")
            return StepOutcome.failure(str(e), retryable=False)

        handler = self._handlers[kind]
        logger.info(
            f"[{job.job_id}] Executing step {step.name} "
            f"(attempt {step.retry_count + 1}/{step.max_retries + 1})"
        )

        try:
            value = await _invoke(handler, step, job)
        except SchemaValidationError as e:
            logger.warning(f"[{job.job_id}] Step {step.name} produced invalid content: {e}")
            return StepOutcome.failure(f"Step {step.name} failed: {e}")
        except StepExecutionError as e:
            logger.warning(f"[{job.job_id}] {e}")
            return StepOutcome.failure(str(e), retryable=e.retryable)
        except Exception as e:
            logger.exception(f"[{job.job_id}] Unexpected error in step {step.name}")
            err = StepExecutionError(step.name, f"{type(e).__name__}: {e}")
            return StepOutcome.failure(str(err))

        logger.info(f"[{job.job_id}] Step {step.name} succeeded")
        return StepOutcome.success(value)


async def _invoke(handler: StepHandler, step: JobStep, job: AgentJob) -> Any:
    """Await the handler, bounded by the step's timeout when it declares one.

    A TimeoutError from a step without a timeout is an ordinary handler
    failure, not a step timeout.
    """
    if not step.timeout_seconds:
        return await handler(step, job)
    try:
        return await asyncio.wait_for(handler(step, job), timeout=step.timeout_seconds)
    except asyncio.TimeoutError:
        raise StepTimeoutError(step.name, step.timeout_seconds) from None


def build_quiz_executor(deps: Optional[QuizStepDependencies] = None) -> StepExecutor:
    """Executor wired to the quiz workflow handlers."""
    return StepExecutor(QuizStepHandlers(deps).as_mapping())
