"""Quiz API routes: read the quizzes that generation jobs build.

Endpoints:
    GET /v1/quizzes                 List quizzes (optional owner filter)
    GET /v1/quizzes/{quiz_id}       Quiz with its summary documents
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

from src.content.quiz_store import get_quiz, list_quizzes
from src.content.summary_store import list_summaries_for_quiz
from src.jobs.errors import StoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


def _unavailable(e: StoreError) -> HTTPException:
    logger.error(f"Store error: {e}")
    return HTTPException(status_code=503, detail="Quiz store unavailable, retry the request")


@router.get("")
async def list_all_quizzes(created_by_user_id: Optional[str] = None):
    try:
        quizzes = list_quizzes(created_by_user_id=created_by_user_id)
    except StoreError as e:
        raise _unavailable(e) from e
    return {"quizzes": quizzes, "count": len(quizzes)}


@router.get("/{quiz_id}")
async def get_quiz_by_id(quiz_id: str):
    try:
        quiz = get_quiz(quiz_id)
        summaries = list_summaries_for_quiz(quiz_id) if quiz is not None else []
    except StoreError as e:
        raise _unavailable(e) from e
    if quiz is None:
        raise HTTPException(status_code=404, detail=f"Quiz not found: {quiz_id}")
    return {"quiz": quiz, "summaries": summaries}
