"""Store and retrieve quizzes.

The quiz is the entity a generation job builds. Key fields are stored as
columns for filtering; the full record lives in the `data` JSON column so
generated questions round-trip without a separate table.

Driver errors surface as StoreError, the same as for the job store.
"""

import logging
from typing import Optional

from src.content.schemas import Quiz, QuizDraftRequest, QuizStatus
from src.jobs.db import driver_errors, execute, init_db, json_dumps, json_loads
from src.jobs.errors import StoreError
from src.jobs.schemas import utcnow

logger = logging.getLogger(__name__)


def _row_to_quiz(row: dict) -> Quiz:
    return Quiz.model_validate(json_loads(row["data"]))


def create_quiz_draft(request: QuizDraftRequest) -> Quiz:
    """Create a quiz in DRAFT status. Returns the stored quiz."""
    init_db()
    quiz = Quiz(
        name=request.name,
        created_by_user_id=request.created_by_user_id,
        question_count=request.question_count,
        required_score=request.required_score,
        attempt_limit=request.attempt_limit,
        url=request.url,
        status=QuizStatus.DRAFT,
    )

    try:
        execute(
            """INSERT INTO quizzes
               (id, name, created_by_user_id, status, url, data, created_at, modified_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                quiz.id, quiz.name, quiz.created_by_user_id, quiz.status.value, quiz.url,
                json_dumps(quiz.model_dump(mode="json")),
                quiz.created_at.isoformat(), quiz.modified_at.isoformat(),
            ),
        )
    except driver_errors() as e:
        raise StoreError(f"Failed to create quiz draft '{quiz.name}': {e}") from e

    logger.info(f"Created quiz draft {quiz.id}: '{quiz.name}' from {quiz.url}")
    return quiz


def get_quiz(quiz_id: str) -> Optional[Quiz]:
    """Retrieve a quiz by ID."""
    init_db()
    try:
        row = execute(
            "SELECT data FROM quizzes WHERE id = %s",
            (quiz_id,),
            fetch="one",
        )
    except driver_errors() as e:
        raise StoreError(f"Failed to fetch quiz {quiz_id}: {e}") from e
    return _row_to_quiz(row) if row else None


def update_quiz(quiz: Quiz) -> bool:
    """Replace a stored quiz. Returns False if it does not exist."""
    init_db()
    quiz.modified_at = utcnow()
    try:
        updated = execute(
            """UPDATE quizzes
               SET name = %s, status = %s, url = %s, data = %s, modified_at = %s
               WHERE id = %s""",
            (
                quiz.name, quiz.status.value, quiz.url,
                json_dumps(quiz.model_dump(mode="json")),
                quiz.modified_at.isoformat(), quiz.id,
            ),
            fetch="rowcount",
        )
    except driver_errors() as e:
        raise StoreError(f"Failed to update quiz {quiz.id}: {e}") from e
    if updated:
        logger.info(f"Updated quiz {quiz.id} (status={quiz.status.value})")
    return updated > 0


def delete_quiz(quiz_id: str) -> bool:
    """Delete a quiz. Returns False if it does not exist."""
    init_db()
    try:
        deleted = execute(
            "DELETE FROM quizzes WHERE id = %s",
            (quiz_id,),
            fetch="rowcount",
        )
    except driver_errors() as e:
        raise StoreError(f"Failed to delete quiz {quiz_id}: {e}") from e
    if deleted:
        logger.info(f"Deleted quiz {quiz_id}")
    return deleted > 0


def list_quizzes(created_by_user_id: Optional[str] = None) -> list[Quiz]:
    """List quizzes, optionally only those created by one user."""
    init_db()
    try:
        if created_by_user_id:
            rows = execute(
                """SELECT data FROM quizzes WHERE created_by_user_id = %s
                   ORDER BY created_at DESC""",
                (created_by_user_id,),
                fetch="all",
            )
        else:
            rows = execute(
                "SELECT data FROM quizzes ORDER BY created_at DESC",
                fetch="all",
            )
    except driver_errors() as e:
        raise StoreError(f"Failed to list quizzes: {e}") from e
    return [_row_to_quiz(row) for row in rows]
