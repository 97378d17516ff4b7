"""Store and retrieve summary documents derived from a quiz's source URL."""

import logging
from typing import Optional

from src.content.schemas import SummaryDocument
from src.jobs.db import driver_errors, execute, init_db
from src.jobs.errors import StoreError

logger = logging.getLogger(__name__)


def create_summary_document(document: SummaryDocument) -> str:
    """Store a summary document. Returns its id."""
    init_db()
    try:
        execute(
            """INSERT INTO summary_documents
               (id, quiz_id, url, content, created_at, modified_at)
               VALUES (%s, %s, %s, %s, %s, %s)""",
            (
                document.id, document.quiz_id, document.url, document.content,
                document.created_at.isoformat(), document.modified_at.isoformat(),
            ),
        )
    except driver_errors() as e:
        raise StoreError(f"Failed to store summary for quiz {document.quiz_id}: {e}") from e
    logger.info(
        f"Stored summary {document.id} for quiz {document.quiz_id}: "
        f"{len(document.content):,} chars from {document.url}"
    )
    return document.id


def get_summary_document(summary_id: str) -> Optional[SummaryDocument]:
    """Retrieve a summary document by ID."""
    init_db()
    try:
        row = execute(
            """SELECT id, quiz_id, url, content, created_at, modified_at
               FROM summary_documents WHERE id = %s""",
            (summary_id,),
            fetch="one",
        )
    except driver_errors() as e:
        raise StoreError(f"Failed to fetch summary {summary_id}: {e}") from e
    return SummaryDocument.model_validate(row) if row else None


def list_summaries_for_quiz(quiz_id: str) -> list[SummaryDocument]:
    init_db()
    try:
        rows = execute(
            """SELECT id, quiz_id, url, content, created_at, modified_at
               FROM summary_documents WHERE quiz_id = %s
               ORDER BY created_at DESC""",
            (quiz_id,),
            fetch="all",
        )
    except driver_errors() as e:
        raise StoreError(f"Failed to list summaries for quiz {quiz_id}: {e}") from e
    return [SummaryDocument.model_validate(row) for row in rows]
