"""
Tests for src.jobs.step_executor

Dispatch, timeouts, and how handler exceptions become StepOutcomes.
"""

import asyncio

import pytest

from src.jobs.errors import SchemaValidationError, StepExecutionError
from src.jobs.schemas import AgentJob, JobStep, StepKind
from src.jobs.step_executor import StepExecutor, build_quiz_executor


def _handlers(**overrides):
    async def ok(step, job):
        return {"handled": step.name}

    handlers = {kind: ok for kind in StepKind}
    handlers.update({StepKind(k): v for k, v in overrides.items()})
    return handlers


def _job_with(step: JobStep) -> AgentJob:
    return AgentJob.new([step])


class TestStepExecutor:
    def test_requires_handler_for_every_kind(self):
        handlers = _handlers()
        del handlers[StepKind.FINALIZE_QUIZ]
        with pytest.raises(ValueError, match="finalize_quiz"):
            StepExecutor(handlers)

    def test_quiz_executor_covers_all_kinds(self):
        assert isinstance(build_quiz_executor(), StepExecutor)

    @pytest.mark.asyncio
    async def test_success_returns_handler_value(self):
        executor = StepExecutor(_handlers())
        step = JobStep.new(StepKind.CREATE_QUIZ_DRAFT)

        outcome = await executor.execute(step, _job_with(step))

        assert outcome.ok
        assert outcome.value == {"handled": "create_quiz_draft"}

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_failure(self):
        cancelled = asyncio.Event()

        async def slow(step, job):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        executor = StepExecutor(_handlers(create_summary_document=slow))
        step = JobStep.new(StepKind.CREATE_SUMMARY_DOCUMENT).with_timeout(0.05)

        outcome = await executor.execute(step, _job_with(step))

        assert not outcome.ok
        assert outcome.retryable
        assert "timed out after 0.05s" in outcome.error
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_handler_timeout_without_step_timeout(self):
        async def socket_timeout(step, job):
            raise TimeoutError("socket read timed out")

        executor = StepExecutor(_handlers(create_summary_document=socket_timeout))
        step = JobStep.new(StepKind.CREATE_SUMMARY_DOCUMENT)
        assert step.timeout_seconds is None

        outcome = await executor.execute(step, _job_with(step))

        assert not outcome.ok
        assert outcome.retryable
        assert outcome.error == (
            "Step create_summary_document failed: TimeoutError: socket read timed out"
        )

    @pytest.mark.asyncio
    async def test_schema_validation_failure_is_retryable(self):
        async def malformed(step, job):
            raise SchemaValidationError("QuizContent", "questions: field required")

        executor = StepExecutor(_handlers(create_quiz_questions=malformed))
        step = JobStep.new(StepKind.CREATE_QUIZ_QUESTIONS)

        outcome = await executor.execute(step, _job_with(step))

        assert outcome.retryable
        assert outcome.error.startswith("Step create_quiz_questions failed:")
        assert "questions: field required" in outcome.error

    @pytest.mark.asyncio
    async def test_non_retryable_step_error(self):
        async def missing(step, job):
            raise StepExecutionError(step.name, "Invalid or missing quiz_id in job results", retryable=False)

        executor = StepExecutor(_handlers(create_quiz_draft=missing))
        step = JobStep.new(StepKind.CREATE_QUIZ_DRAFT)

        outcome = await executor.execute(step, _job_with(step))

        assert not outcome.retryable
        assert outcome.error == "Step create_quiz_draft failed: Invalid or missing quiz_id in job results"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self):
        async def broken(step, job):
            raise KeyError("quiz")

        executor = StepExecutor(_handlers(finalize_quiz=broken))
        step = JobStep.new(StepKind.FINALIZE_QUIZ)

        outcome = await executor.execute(step, _job_with(step))

        assert outcome.retryable
        assert outcome.error.startswith("Step finalize_quiz failed: KeyError")

    @pytest.mark.asyncio
    async def test_tampered_step_name_is_not_retryable(self):
        executor = StepExecutor(_handlers())
        good = JobStep.new(StepKind.CREATE_QUIZ_DRAFT)
        job = _job_with(good)
        tampered = good.model_copy(update={"name": "fetch_summary"})

        outcome = await executor.execute(tampered, job)

        assert not outcome.retryable
        assert outcome.error == "Unknown step type: fetch_summary"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        started = asyncio.Event()

        async def blocking(step, job):
            started.set()
            await asyncio.sleep(10)

        executor = StepExecutor(_handlers(create_quiz_draft=blocking))
        step = JobStep.new(StepKind.CREATE_QUIZ_DRAFT)
        task = asyncio.create_task(executor.execute(step, _job_with(step)))
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
