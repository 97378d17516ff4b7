"""Step definitions for the quiz generation workflow.

create draft -> summarize source URL -> generate questions -> finalize
"""

from src.jobs.schemas import JobStep, StepKind

DRAFT_CREATION_TIMEOUT = 10
SUMMARY_FETCH_TIMEOUT = 60
QUIZ_GENERATION_TIMEOUT = 120
FINALIZATION_TIMEOUT = 15

DEFAULT_RETRIES = 3
FINALIZATION_RETRIES = 2


def create_quiz_generation_steps() -> list[JobStep]:
    """The four steps of a quiz generation job, in execution order."""
    return [
        create_draft_step(),
        create_summary_document_step(),
        create_quiz_questions_step(),
        finalize_quiz_step(),
    ]


def create_draft_step() -> JobStep:
    return (
        JobStep.new(StepKind.CREATE_QUIZ_DRAFT)
        .with_description("Confirm the quiz draft this job builds on is recorded")
        .with_max_retries(DEFAULT_RETRIES)
        .with_timeout(DRAFT_CREATION_TIMEOUT)
    )


def create_summary_document_step() -> JobStep:
    return (
        JobStep.new(StepKind.CREATE_SUMMARY_DOCUMENT)
        .with_description("Create summary document from the quiz URL via the summarization service")
        .with_max_retries(DEFAULT_RETRIES)
        .with_timeout(SUMMARY_FETCH_TIMEOUT)
    )


def create_quiz_questions_step() -> JobStep:
    return (
        JobStep.new(StepKind.CREATE_QUIZ_QUESTIONS)
        .with_description("Generate quiz questions and fields via the structured content generator")
        .with_max_retries(DEFAULT_RETRIES)
        .with_timeout(QUIZ_GENERATION_TIMEOUT)
    )


def finalize_quiz_step() -> JobStep:
    return (
        JobStep.new(StepKind.FINALIZE_QUIZ)
        .with_description("Apply generated content to the quiz and mark it ready")
        .with_max_retries(FINALIZATION_RETRIES)
        .with_timeout(FINALIZATION_TIMEOUT)
    )
