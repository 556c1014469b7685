"""Tests for the FastAPI application."""

import time
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from ebook_publisher.api.main import RunHandle, app
from ebook_publisher.cancellation import CancellationToken
from ebook_publisher.models import ProgressState, PublishStep
from ebook_publisher.storage import save_progress
from fixtures.sample_outline import get_sample_outline


@pytest.fixture
def client():
    app.state.runs = {}
    with TestClient(app) as test_client:
        yield test_client
    app.state.runs = {}


def publish_body(**extra):
    return {"outline": get_sample_outline().model_dump(mode="json", by_alias=True), **extra}


def wait_until_finished(client, run_id, attempts=100):
    """Poll the status endpoint while the background task runs."""
    for _ in range(attempts):
        status = client.get(f"/api/publish/{run_id}").json()
        if status["finished"]:
            return status
        time.sleep(0.01)
    return status


class TestPublishApi:
    """Test the publish endpoints."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["active_runs"] == 0

    def test_start_publish(self, client):
        """A run is started in the background and registered."""
        with patch(
            "ebook_publisher.api.main.run_publish_async",
            new=AsyncMock(return_value={"success": True}),
        ):
            response = client.post("/api/publish", json=publish_body(run_id="run-api"))

        assert response.status_code == 202
        assert response.json() == {"run_id": "run-api", "status": "started"}
        assert "run-api" in app.state.runs

    def test_run_failing_before_publish_finishes(self, client):
        """Errors raised around the publisher still finish the run with a hint."""
        with patch(
            "ebook_publisher.runner.ensure_directories",
            side_effect=NotADirectoryError("runs is not a directory"),
        ):
            client.post("/api/publish", json=publish_body(run_id="run-broken"))
            status = wait_until_finished(client, "run-broken")

        assert status["finished"] is True
        assert status["result"]["success"] is False
        assert status["result"]["error"] == "runs is not a directory"
        assert "Unexpected" in status["result"]["hint"]
        assert status["progress"]["step"] == "error"
        assert client.get("/api/health").json()["active_runs"] == 0

    def test_invalid_library_key(self, client):
        response = client.post("/api/publish", json=publish_body(libraries={"chapter": "vs_1"}))

        assert response.status_code == 422

    def test_run_in_progress_conflict(self, client):
        app.state.runs["run-busy"] = RunHandle(token=CancellationToken())

        response = client.post("/api/publish", json=publish_body(run_id="run-busy"))

        assert response.status_code == 409

    def test_status_of_live_run(self, client):
        handle = RunHandle(
            token=CancellationToken(),
            progress=ProgressState(step=PublishStep.LESSONS, progress=40),
        )
        app.state.runs["run-live"] = handle

        response = client.get("/api/publish/run-live")

        assert response.status_code == 200
        assert response.json()["progress"]["progress"] == 40
        assert response.json()["finished"] is False

    def test_status_from_saved_progress(self, client):
        """Runs not held in memory are served from their saved progress."""
        save_progress("run-old", ProgressState(step=PublishStep.COMPLETE, progress=100))

        response = client.get("/api/publish/run-old")

        assert response.status_code == 200
        assert response.json()["finished"] is True
        assert response.json()["progress"]["step"] == "complete"

    def test_status_unknown_run(self, client):
        assert client.get("/api/publish/nope").status_code == 404

    def test_cancel(self, client):
        handle = RunHandle(token=CancellationToken())
        app.state.runs["run-live"] = handle

        response = client.post("/api/publish/run-live/cancel")

        assert response.json() == {"status": "cancelling"}
        assert handle.token.cancelled is True

    def test_cancel_finished_run(self, client):
        app.state.runs["run-done"] = RunHandle(token=CancellationToken(), result={"success": True})

        response = client.post("/api/publish/run-done/cancel")

        assert response.json() == {"status": "finished"}

    def test_cancel_unknown_run(self, client):
        assert client.post("/api/publish/nope/cancel").status_code == 404


class TestResearchApi:
    """Test the research brief and section context endpoints."""

    def test_research_brief(self, client):
        result = {"success": True, "provider": "perplexity", "research_brief": "brief"}

        with patch(
            "ebook_publisher.api.main.run_research_brief_async", new=AsyncMock(return_value=result)
        ) as run:
            response = client.post(
                "/api/research-brief", json={"niche": "Remote teams", "provider": "perplexity"}
            )

        assert response.status_code == 200
        assert response.json()["research_brief"] == "brief"
        assert run.await_args.args == ("Remote teams", "", None)
        assert run.await_args.kwargs["provider"] == "perplexity"

    def test_research_brief_failure(self, client):
        """A brief no key could produce is reported as a gateway error."""
        result = {"success": False, "error": "rate limited", "hint": "Check the keys"}

        with patch(
            "ebook_publisher.api.main.run_research_brief_async", new=AsyncMock(return_value=result)
        ):
            response = client.post("/api/research-brief", json={"niche": "Remote teams"})

        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "rate limited"

    def test_unknown_provider(self, client):
        response = client.post("/api/research-brief", json={"niche": "x", "provider": "bing"})

        assert response.status_code == 422

    def test_section_context(self, client):
        result = {"success": True, "source": "primary", "context": "Web Research Context"}

        with patch(
            "ebook_publisher.api.main.run_section_context_async", new=AsyncMock(return_value=result)
        ) as run:
            response = client.post(
                "/api/section-context",
                json={
                    "book_title": "Remote Leadership",
                    "section_title": "Standups",
                    "search_options": {"search_recency_filter": "week"},
                },
            )

        assert response.status_code == 200
        assert response.json()["context"] == "Web Research Context"
        assert run.await_args.kwargs["search_options"].search_recency_filter == "week"
