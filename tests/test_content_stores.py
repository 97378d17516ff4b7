"""
Tests for src.content.quiz_store and src.content.summary_store
"""

import sqlite3

import pytest

from src.content import quiz_store, summary_store
from src.content.quiz_store import create_quiz_draft, delete_quiz, get_quiz, list_quizzes, update_quiz
from src.content.schemas import QuizContent, QuizDraftRequest, QuizStatus, SummaryDocument
from src.content.summary_store import (
    create_summary_document,
    get_summary_document,
    list_summaries_for_quiz,
)
from src.jobs.errors import StoreError


def _draft(**overrides) -> QuizDraftRequest:
    fields = {"name": "Tides", "created_by_user_id": "user-1", "url": "https://example.com/tides"}
    fields.update(overrides)
    return QuizDraftRequest(**fields)


class TestQuizStore:
    def test_create_and_get(self):
        quiz = create_quiz_draft(_draft(question_count=3))

        stored = get_quiz(quiz.id)

        assert stored.status == QuizStatus.DRAFT
        assert stored.question_count == 3
        assert stored.questions is None

    def test_get_missing(self):
        assert get_quiz("quiz-missing") is None

    def test_update_round_trips_questions(self):
        quiz = create_quiz_draft(_draft())
        content = QuizContent.model_validate({
            "title": "Tides",
            "questions": [{
                "title": "Tides are caused by?",
                "question_type": "bool",
                "options": [
                    {"text": "The Moon", "correct": True},
                    {"text": "Wind", "correct": False},
                ],
            }],
        })
        ready = quiz.model_copy(update={
            "questions": content.to_quiz_questions(),
            "status": QuizStatus.READY,
        })

        assert update_quiz(ready)

        stored = get_quiz(quiz.id)
        assert stored.status == QuizStatus.READY
        assert stored.questions[0].options[0].text == "The Moon"
        assert stored.modified_at >= quiz.modified_at

    def test_update_missing(self):
        quiz = create_quiz_draft(_draft())
        ghost = quiz.model_copy(update={"id": "quiz-ghost"})
        assert not update_quiz(ghost)

    def test_list_filters_by_owner(self):
        mine = create_quiz_draft(_draft())
        create_quiz_draft(_draft(created_by_user_id="user-2"))

        assert len(list_quizzes()) == 2
        assert [q.id for q in list_quizzes(created_by_user_id="user-1")] == [mine.id]

    def test_delete(self):
        quiz = create_quiz_draft(_draft())

        assert delete_quiz(quiz.id)
        assert get_quiz(quiz.id) is None
        assert not delete_quiz(quiz.id)

    def test_driver_error_becomes_store_error(self, monkeypatch):
        def broken(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(quiz_store, "execute", broken)

        with pytest.raises(StoreError, match="database is locked"):
            create_quiz_draft(_draft())
        with pytest.raises(StoreError):
            get_quiz("quiz-1")
        with pytest.raises(StoreError):
            list_quizzes()


class TestSummaryStore:
    def test_create_and_get(self):
        doc = SummaryDocument(quiz_id="quiz-1", url="https://example.com", content="Summary text")

        summary_id = create_summary_document(doc)

        stored = get_summary_document(summary_id)
        assert stored.content == "Summary text"
        assert stored.quiz_id == "quiz-1"

    def test_get_missing(self):
        assert get_summary_document("sum-missing") is None

    def test_list_for_quiz(self):
        create_summary_document(SummaryDocument(quiz_id="quiz-1", url="u", content="a"))
        create_summary_document(SummaryDocument(quiz_id="quiz-2", url="u", content="b"))

        summaries = list_summaries_for_quiz("quiz-1")

        assert [s.content for s in summaries] == ["a"]

    def test_driver_error_becomes_store_error(self, monkeypatch):
        def broken(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(summary_store, "execute", broken)

        with pytest.raises(StoreError, match="disk I/O error"):
            create_summary_document(SummaryDocument(quiz_id="quiz-1", url="u", content="a"))
        with pytest.raises(StoreError):
            list_summaries_for_quiz("quiz-1")

