"""Shared fixtures: every test gets its own SQLite database."""

import pytest

from src.jobs import db
from src.jobs.job_store import SqlJobStore
from src.jobs.orchestrator import Orchestrator, reset_orchestrator
from src.jobs.schemas import JobStep, StepKind


@pytest.fixture(autouse=True)
def jobs_db(tmp_path, monkeypatch):
    """Point the database layer at a fresh SQLite file."""
    path = tmp_path / "jobs.db"
    monkeypatch.setattr(db, "DATABASE_URL", "")
    monkeypatch.setattr(db, "SQLITE_PATH", path)
    monkeypatch.setattr(db, "_initialized", False)
    reset_orchestrator()
    yield path
    reset_orchestrator()


@pytest.fixture
def store():
    return SqlJobStore()


@pytest.fixture
def orchestrator(store):
    return Orchestrator(store)


def make_steps(count: int, max_retries: int = 3) -> list[JobStep]:
    """`count` generic steps; the kind is irrelevant to orchestration."""
    return [
        JobStep.new(StepKind.CREATE_QUIZ_DRAFT).with_max_retries(max_retries)
        for _ in range(count)
    ]
