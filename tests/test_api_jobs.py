"""
Tests for the job and quiz API routes.

The TestClient is used without its context manager so the lifespan (and
the background worker) does not run; jobs only move when a test moves them.
"""

from unittest.mock import patch

from fastapi.testclient import TestClient

from src.api import main
from src.api.main import app
from src.content.quiz_store import list_quizzes
from src.jobs.errors import StoreError
from src.jobs.orchestrator import Orchestrator, get_orchestrator
from src.jobs.schemas import JobStatus

client = TestClient(app)

QUIZ_REQUEST = {
    "name": "Tides",
    "created_by_user_id": "user-1",
    "url": "https://example.com/tides",
    "question_count": 3,
}


def _create(start: bool = True) -> dict:
    response = client.post("/v1/jobs/quiz", json={**QUIZ_REQUEST, "start": start})
    assert response.status_code == 201
    return response.json()


class TestCreateQuizJob:
    def test_creates_draft_and_running_job(self):
        data = _create()

        assert data["status"] == "running"
        job = get_orchestrator().get_job(data["job_id"])
        assert job.context_value("quiz_id") == data["quiz_id"]
        assert [s.name for s in job.steps] == [
            "create_quiz_draft",
            "create_summary_document",
            "create_quiz_questions",
            "finalize_quiz",
        ]

        quiz = client.get(f"/v1/quizzes/{data['quiz_id']}").json()
        assert quiz["quiz"]["status"] == "draft"
        assert quiz["quiz"]["question_count"] == 3
        assert quiz["summaries"] == []

    def test_create_without_start(self):
        data = _create(start=False)
        assert data["status"] == "pending"

    def test_validation_error(self):
        response = client.post("/v1/jobs/quiz", json={**QUIZ_REQUEST, "question_count": 0})
        assert response.status_code == 422

    def test_quiz_store_failure_is_503(self):
        with patch("src.api.routes.jobs.create_quiz_draft", side_effect=StoreError("database is locked")):
            response = client.post("/v1/jobs/quiz", json=QUIZ_REQUEST)

        assert response.status_code == 503
        assert get_orchestrator().list_jobs() == []

    def test_job_store_failure_discards_draft(self):
        with patch.object(Orchestrator, "create_job", side_effect=StoreError("disk full")):
            response = client.post("/v1/jobs/quiz", json=QUIZ_REQUEST)

        assert response.status_code == 503
        assert list_quizzes() == []

    def test_metadata_failure_discards_job_and_draft(self):
        with patch.object(Orchestrator, "set_job_metadata", side_effect=StoreError("disk full")):
            response = client.post("/v1/jobs/quiz", json=QUIZ_REQUEST)

        assert response.status_code == 503
        assert get_orchestrator().list_jobs() == []
        assert list_quizzes() == []


class TestJobControl:
    def test_get_job(self):
        data = _create()

        response = client.get(f"/v1/jobs/{data['job_id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["job_id"] == data["job_id"]
        assert body["current_step_index"] == 0
        assert len(body["steps"]) == 4

    def test_missing_job_is_404(self):
        assert client.get("/v1/jobs/job-missing").status_code == 404
        assert client.post("/v1/jobs/job-missing/pause").status_code == 404
        assert client.delete("/v1/jobs/job-missing").status_code == 404

    def test_start_pending_job(self):
        data = _create(start=False)

        response = client.post(f"/v1/jobs/{data['job_id']}/start")

        assert response.status_code == 200
        assert response.json()["status"] == "running"
        assert response.json()["current_step"] == "create_quiz_draft"

    def test_start_twice_is_conflict(self):
        data = _create()

        response = client.post(f"/v1/jobs/{data['job_id']}/start")

        assert response.status_code == 409
        assert "status is running" in response.json()["detail"]

    def test_pause_and_resume(self):
        data = _create()

        paused = client.post(f"/v1/jobs/{data['job_id']}/pause")
        assert paused.status_code == 200
        assert paused.json()["status"] == "paused"
        assert client.post(f"/v1/jobs/{data['job_id']}/pause").status_code == 409

        resumed = client.post(f"/v1/jobs/{data['job_id']}/resume")
        assert resumed.json()["status"] == "running"

    def test_list_jobs(self):
        running = _create()
        pending = _create(start=False)

        everything = client.get("/v1/jobs").json()
        only_pending = client.get("/v1/jobs", params={"status": "pending"}).json()

        assert everything["count"] == 2
        assert [j["job_id"] for j in only_pending["jobs"]] == [pending["job_id"]]
        assert running["job_id"] in {j["job_id"] for j in everything["jobs"]}

    def test_delete_job(self):
        data = _create()

        response = client.delete(f"/v1/jobs/{data['job_id']}")

        assert response.status_code == 200
        assert client.get(f"/v1/jobs/{data['job_id']}").status_code == 404


class TestQuizRoutes:
    def test_missing_quiz_is_404(self):
        assert client.get("/v1/quizzes/quiz-missing").status_code == 404

    def test_store_failure_is_503(self):
        with patch("src.api.routes.quizzes.get_quiz", side_effect=StoreError("database is locked")):
            assert client.get("/v1/quizzes/quiz-1").status_code == 503

    def test_list_quizzes_by_owner(self):
        _create()

        mine = client.get("/v1/quizzes", params={"created_by_user_id": "user-1"}).json()
        theirs = client.get("/v1/quizzes", params={"created_by_user_id": "user-2"}).json()

        assert mine["count"] == 1
        assert theirs["count"] == 0


class TestAppLifecycle:
    def test_root(self):
        assert client.get("/").json()["endpoints"]["jobs"] == "/v1/jobs"

    def test_health_without_worker(self, monkeypatch):
        monkeypatch.setattr(main, "WORKER_ENABLED", False)
        with TestClient(app) as lifespan_client:
            body = lifespan_client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["worker_enabled"] is False
        assert set(body["jobs_by_status"]) == {s.value for s in JobStatus}

    def test_lifespan_starts_and_stops_worker(self, monkeypatch):
        monkeypatch.setattr(main, "WORKER_ENABLED", True)
        with TestClient(app) as lifespan_client:
            body = lifespan_client.get("/health").json()
            assert body["worker_enabled"] is True
            assert body["worker_id"].startswith("worker-")
