"""Schemas for the quiz entities a generation job builds.

A quiz starts life as a draft (name, owner, source URL, sizing knobs) and
is filled in by the generation workflow: a summary document is derived
from the URL, the language model produces QuizContent, and finalization
copies that content onto the quiz and flips it to READY.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuizStatus(str, Enum):
    """Quiz lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    READY = "ready"
    COMPLETE = "complete"


class QuizQuestionType(str, Enum):
    SINGLE = "single"  # Only one correct option
    MULTI = "multi"    # Multiple correct options
    BOOL = "bool"      # True/False question


class QuizQuestionOption(BaseModel):
    id: str = Field(default_factory=lambda: f"opt-{uuid.uuid4().hex[:12]}")
    text: str
    correct: bool
    explanation: str = Field(
        default="",
        description="Why this option is correct or incorrect",
    )


class QuizQuestion(BaseModel):
    id: str = Field(default_factory=lambda: f"qq-{uuid.uuid4().hex[:12]}")
    title: str
    description: str = ""
    question_type: QuizQuestionType
    options: list[QuizQuestionOption]
    option_count: int = 4
    order: int = 0
    attempt_limit: int = 1
    topic: str = ""


class Quiz(BaseModel):
    """A quiz record. Drafts carry only the creation fields."""

    id: str = Field(default_factory=lambda: f"quiz-{uuid.uuid4().hex[:12]}")
    name: str
    created_by_user_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    question_count: int = 5
    required_score: int = 70
    attempt_limit: int = 3
    topic: Optional[str] = None
    status: QuizStatus = QuizStatus.DRAFT
    questions: Optional[list[QuizQuestion]] = None
    url: str
    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)


class QuizDraftRequest(BaseModel):
    """Fields a caller supplies to start a quiz generation."""

    name: str = Field(..., min_length=1)
    created_by_user_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    question_count: int = Field(default=5, ge=1, le=50)
    required_score: int = Field(default=70, ge=0, le=100)
    attempt_limit: int = Field(default=3, ge=1)


class SummaryDocument(BaseModel):
    """Summary of a quiz's source URL, produced by the summarization step."""

    id: str = Field(default_factory=lambda: f"sum-{uuid.uuid4().hex[:12]}")
    quiz_id: str
    url: str
    content: str
    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)


# --- Generation schema ---
#
# This is the fixed schema the structured content generator must satisfy.
# Validation failures surface as SchemaValidationError, never as a partially
# accepted quiz.


class GeneratedOption(BaseModel):
    text: str = Field(..., min_length=1)
    correct: bool
    explanation: str = ""


class GeneratedQuestion(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    question_type: QuizQuestionType = QuizQuestionType.SINGLE
    options: list[GeneratedOption] = Field(..., min_length=2, max_length=6)

    @model_validator(mode="after")
    def validate_correct_options(self) -> "GeneratedQuestion":
        """Ensure the set of correct options matches the question type."""
        correct = sum(1 for o in self.options if o.correct)
        if correct == 0:
            raise ValueError(f"Question '{self.title}' has no correct option")
        if self.question_type in (QuizQuestionType.SINGLE, QuizQuestionType.BOOL) and correct != 1:
            raise ValueError(
                f"Question '{self.title}' is {self.question_type.value} "
                f"but has {correct} correct options"
            )
        if self.question_type == QuizQuestionType.BOOL and len(self.options) != 2:
            raise ValueError(f"Question '{self.title}' is bool but has {len(self.options)} options")
        return self


class QuizContent(BaseModel):
    """Structured quiz content produced by the language model."""

    title: str = Field(..., min_length=1)
    description: str = ""
    topic: str = ""
    questions: list[GeneratedQuestion] = Field(..., min_length=1)

    def to_quiz_questions(self, attempt_limit: int = 1) -> list[QuizQuestion]:
        """Materialize generated questions as stored quiz questions."""
        return [
            QuizQuestion(
                title=q.title,
                description=q.description,
                question_type=q.question_type,
                options=[
                    QuizQuestionOption(text=o.text, correct=o.correct, explanation=o.explanation)
                    for o in q.options
                ],
                option_count=len(q.options),
                order=i,
                attempt_limit=attempt_limit,
                topic=self.topic,
            )
            for i, q in enumerate(self.questions)
        ]
