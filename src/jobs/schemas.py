"""Schemas for durable agent jobs: steps, jobs, and typed step results.

An AgentJob is the only unit of durable state. It carries an ordered list
of JobSteps fixed at creation, a cursor into that list, and an append-only
results map keyed by step id. Everything else the worker needs (leases,
backoff gates) lives on the same document so that a single row write is
always enough to move a job forward.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from src.content.schemas import QuizContent, QuizStatus
from src.jobs.errors import UnknownStepKindError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


class StepKind(str, Enum):
    """Closed set of step kinds the executor knows how to run."""
    CREATE_QUIZ_DRAFT = "create_quiz_draft"
    CREATE_SUMMARY_DOCUMENT = "create_summary_document"
    CREATE_QUIZ_QUESTIONS = "create_quiz_questions"
    FINALIZE_QUIZ = "finalize_quiz"

    @classmethod
    def from_step_name(cls, name: str) -> "StepKind":
        try:
            return cls(name)
        except ValueError:
            raise UnknownStepKindError(name) from None


class JobStep(BaseModel):
    """A single step definition within a job."""

    id: str = Field(default_factory=lambda: f"step-{uuid.uuid4().hex[:12]}")
    name: str = Field(..., description="Step kind used for dispatch")
    description: Optional[str] = None
    max_retries: int = Field(default=3, ge=0)
    retry_count: int = Field(default=0, ge=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @classmethod
    def new(cls, kind: "StepKind | str") -> "JobStep":
        """Create a step for a kind, rejecting unknown names immediately."""
        name = kind.value if isinstance(kind, StepKind) else StepKind.from_step_name(kind).value
        return cls(name=name)

    def with_description(self, description: str) -> "JobStep":
        return self.model_copy(update={"description": description})

    def with_max_retries(self, max_retries: int) -> "JobStep":
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        return self.model_copy(update={"max_retries": max_retries})

    def with_timeout(self, seconds: float) -> "JobStep":
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        return self.model_copy(update={"timeout_seconds": seconds})

    @property
    def kind(self) -> StepKind:
        return StepKind.from_step_name(self.name)

    @property
    def retries_remaining(self) -> int:
        return max(self.max_retries - self.retry_count, 0)


# --- Typed step results ---
#
# Stored as plain JSON under results[step.id]; re-parsed into these models
# when a later step consumes them (see AgentJob.step_result).


class DraftStepResult(BaseModel):
    status: str = "quiz_draft_created"
    quiz_id: str


class SummaryStepResult(BaseModel):
    status: str = "summary_document_created"
    summary_id: str


class QuestionsStepResult(BaseModel):
    status: str = "quiz_fields_generated"
    quiz_id: str
    content: QuizContent


class FinalizeStepResult(BaseModel):
    status: str = "quiz_finalized"
    quiz_id: str
    quiz_status: QuizStatus = QuizStatus.READY


STEP_RESULT_MODELS: dict[StepKind, type[BaseModel]] = {
    StepKind.CREATE_QUIZ_DRAFT: DraftStepResult,
    StepKind.CREATE_SUMMARY_DOCUMENT: SummaryStepResult,
    StepKind.CREATE_QUIZ_QUESTIONS: QuestionsStepResult,
    StepKind.FINALIZE_QUIZ: FinalizeStepResult,
}


class AgentJob(BaseModel):
    """Full persisted state of a multi-step job."""

    job_id: str = Field(default_factory=lambda: f"job-{uuid.uuid4().hex[:12]}")
    status: JobStatus = JobStatus.PENDING
    steps: list[JobStep]
    current_step_index: int = Field(default=0, ge=0)
    results: dict[str, Any] = Field(
        default_factory=dict,
        description="Step id (or caller-seeded context key) -> result value",
    )
    error_message: Optional[str] = Field(
        default=None,
        description="Set only on terminal failure",
    )
    last_step_error: Optional[str] = Field(
        default=None,
        description="Most recent retryable step failure",
    )

    # Multi-worker claim and retry gating
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    version: int = 0

    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_cursor(self) -> "AgentJob":
        if self.current_step_index > len(self.steps):
            raise ValueError(
                f"current_step_index {self.current_step_index} exceeds "
                f"{len(self.steps)} steps"
            )
        return self

    @classmethod
    def new(cls, steps: list[JobStep]) -> "AgentJob":
        """Build a fresh Pending job, resolving every step kind up front."""
        if not steps:
            raise ValueError("A job needs at least one step")
        for step in steps:
            StepKind.from_step_name(step.name)
        ids = [s.id for s in steps]
        if len(set(ids)) != len(ids):
            raise ValueError("Step ids must be unique within a job")
        return cls(steps=[s.model_copy() for s in steps])

    def current_step(self) -> Optional[JobStep]:
        if self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    def is_complete(self) -> bool:
        return self.current_step_index >= len(self.steps)

    def lease_is_active(self, now: Optional[datetime] = None) -> bool:
        if not self.lease_owner or self.lease_expires_at is None:
            return False
        return self.lease_expires_at > (now or utcnow())

    def is_due(self, now: Optional[datetime] = None) -> bool:
        return self.next_attempt_at is None or self.next_attempt_at <= (now or utcnow())

    def context_value(self, key: str) -> Any:
        """Caller-seeded context value (e.g. quiz_id), or None."""
        return self.results.get(key)

    def step_result(self, kind: StepKind) -> Optional[BaseModel]:
        """Typed output of the most recent completed step of `kind`.

        Returns None when no such step has completed yet or the stored
        value does not match the kind's result model.
        """
        model = STEP_RESULT_MODELS[kind]
        for step in reversed(self.steps[: self.current_step_index]):
            if step.name != kind.value or step.id not in self.results:
                continue
            try:
                return model.model_validate(self.results[step.id])
            except ValidationError:
                return None
        return None
