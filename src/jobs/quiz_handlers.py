"""Step handlers for the quiz generation workflow.

Each handler takes (step, job), reads whatever prerequisites it needs
from job.results, performs its side effect, and returns a typed result
model. Handlers never touch the job store; the worker persists the
returned result through the orchestrator.

Collaborators are injected through QuizStepDependencies so tests can
swap in fakes without patching module globals.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from src.content import quiz_store, summary_store
from src.content.schemas import Quiz, QuizContent, QuizStatus, SummaryDocument
from src.jobs.errors import SchemaValidationError, StepExecutionError
from src.jobs.schemas import (
    AgentJob,
    DraftStepResult,
    FinalizeStepResult,
    JobStep,
    QuestionsStepResult,
    StepKind,
    SummaryStepResult,
)
from src.llm import generator, summarizer
from src.llm.prompts import QUIZ_SYSTEM_PROMPT, build_quiz_context

logger = logging.getLogger(__name__)

QUIZ_ID_KEY = "quiz_id"


@dataclass
class QuizStepDependencies:
    get_quiz: Callable[[str], Optional[Quiz]] = quiz_store.get_quiz
    update_quiz: Callable[[Quiz], bool] = quiz_store.update_quiz
    create_summary_document: Callable[[SummaryDocument], str] = summary_store.create_summary_document
    get_summary_document: Callable[[str], Optional[SummaryDocument]] = summary_store.get_summary_document
    summarize: Callable[[str], Awaitable[str]] = summarizer.summarize
    generate: Callable[..., Awaitable[Any]] = generator.generate


class QuizStepHandlers:
    """The four quiz workflow handlers bound to one set of collaborators."""

    def __init__(self, deps: Optional[QuizStepDependencies] = None):
        self.deps = deps or QuizStepDependencies()

    def as_mapping(self) -> dict[StepKind, Callable[[JobStep, AgentJob], Awaitable[Any]]]:
        return {
            StepKind.CREATE_QUIZ_DRAFT: self.create_quiz_draft,
            StepKind.CREATE_SUMMARY_DOCUMENT: self.create_summary_document,
            StepKind.CREATE_QUIZ_QUESTIONS: self.create_quiz_questions,
            StepKind.FINALIZE_QUIZ: self.finalize_quiz,
        }

    # --- Prerequisites ---

    def _require_quiz_id(self, step: JobStep, job: AgentJob) -> str:
        quiz_id = job.context_value(QUIZ_ID_KEY)
        if not quiz_id:
            draft = job.step_result(StepKind.CREATE_QUIZ_DRAFT)
            quiz_id = draft.quiz_id if draft is not None else None
        if not isinstance(quiz_id, str) or not quiz_id:
            raise StepExecutionError(
                step.name, "Invalid or missing quiz_id in job results", retryable=False
            )
        return quiz_id

    async def _load_quiz(self, step: JobStep, quiz_id: str) -> Quiz:
        try:
            quiz = await asyncio.to_thread(self.deps.get_quiz, quiz_id)
        except Exception as e:
            raise StepExecutionError(step.name, f"Failed to fetch quiz: {e}") from e
        if quiz is None:
            raise StepExecutionError(
                step.name, f"Failed to fetch quiz: {quiz_id} not found", retryable=False
            )
        return quiz

    # --- Handlers ---

    async def create_quiz_draft(self, step: JobStep, job: AgentJob) -> DraftStepResult:
        """The draft row is written by the caller before the job exists;
        this step only records its id as a step result."""
        quiz_id = self._require_quiz_id(step, job)
        return DraftStepResult(quiz_id=quiz_id)

    async def create_summary_document(self, step: JobStep, job: AgentJob) -> SummaryStepResult:
        quiz_id = self._require_quiz_id(step, job)
        quiz = await self._load_quiz(step, quiz_id)

        try:
            content = await self.deps.summarize(quiz.url)
        except Exception as e:
            raise StepExecutionError(step.name, f"Failed to create summary: {e}") from e

        doc = SummaryDocument(quiz_id=quiz.id, url=quiz.url, content=content)
        try:
            summary_id = await asyncio.to_thread(self.deps.create_summary_document, doc)
        except Exception as e:
            raise StepExecutionError(step.name, f"Failed to save summary document: {e}") from e

        logger.info(f"[{job.job_id}] Summary {summary_id} created for quiz {quiz.id}")
        return SummaryStepResult(summary_id=summary_id)

    async def create_quiz_questions(self, step: JobStep, job: AgentJob) -> QuestionsStepResult:
        quiz_id = self._require_quiz_id(step, job)
        summary_result = job.step_result(StepKind.CREATE_SUMMARY_DOCUMENT)
        if summary_result is None:
            raise StepExecutionError(
                step.name, "Invalid or missing summary_id in job results", retryable=False
            )

        quiz = await self._load_quiz(step, quiz_id)
        try:
            summary = await asyncio.to_thread(
                self.deps.get_summary_document, summary_result.summary_id
            )
        except Exception as e:
            raise StepExecutionError(step.name, f"Failed to fetch summary document: {e}") from e
        if summary is None:
            raise StepExecutionError(
                step.name,
                f"Failed to fetch summary document: {summary_result.summary_id} not found",
                retryable=False,
            )

        context = build_quiz_context(
            summary.content,
            question_count=quiz.question_count,
            quiz_name=quiz.name,
            url=quiz.url,
        )
        try:
            content = await self.deps.generate(
                QuizContent, context, system_prompt=QUIZ_SYSTEM_PROMPT
            )
        except SchemaValidationError:
            raise
        except Exception as e:
            raise StepExecutionError(step.name, f"Failed to generate quiz questions: {e}") from e

        if len(content.questions) < quiz.question_count:
            raise SchemaValidationError(
                QuizContent.__name__,
                f"expected {quiz.question_count} questions, got {len(content.questions)}",
            )
        if len(content.questions) > quiz.question_count:
            content = content.model_copy(
                update={"questions": content.questions[: quiz.question_count]}
            )

        logger.info(
            f"[{job.job_id}] Generated {len(content.questions)} questions for quiz {quiz.id}"
        )
        return QuestionsStepResult(quiz_id=quiz.id, content=content)

    async def finalize_quiz(self, step: JobStep, job: AgentJob) -> FinalizeStepResult:
        quiz_id = self._require_quiz_id(step, job)
        generated = job.step_result(StepKind.CREATE_QUIZ_QUESTIONS)
        if generated is None:
            raise StepExecutionError(
                step.name, "Missing generated quiz content in job results", retryable=False
            )

        quiz = await self._load_quiz(step, quiz_id)
        content = generated.content
        quiz = quiz.model_copy(update={
            "title": content.title,
            "description": content.description,
            "topic": content.topic,
            "questions": content.to_quiz_questions(),
            "question_count": len(content.questions),
            "status": QuizStatus.READY,
        })

        try:
            updated = await asyncio.to_thread(self.deps.update_quiz, quiz)
        except Exception as e:
            raise StepExecutionError(step.name, f"Failed to update quiz: {e}") from e
        if not updated:
            raise StepExecutionError(
                step.name, f"Failed to update quiz: {quiz_id} not found", retryable=False
            )

        logger.info(f"[{job.job_id}] Quiz {quiz_id} finalized and marked ready")
        return FinalizeStepResult(quiz_id=quiz_id, quiz_status=QuizStatus.READY)
