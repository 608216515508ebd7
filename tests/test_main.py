"""Unit tests for the application shell: request budget and health checks."""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from lensmatch import main
from lensmatch.domain import JobStatus
from lensmatch.main import RequestBudgetMiddleware


def _queue(counts):
    queue = MagicMock()
    queue.count_by_status = AsyncMock(return_value=counts)
    return queue


@pytest.fixture
def slow_app():
    app = FastAPI()
    app.add_middleware(RequestBudgetMiddleware, timeout_seconds=0.05, batch_timeout_seconds=5.0)

    @app.get("/api/v1/sessions/slow")
    async def slow():
        await asyncio.sleep(0.5)
        return {"ok": True}

    @app.post("/api/v1/admin/embeddings/batch")
    async def batch():
        await asyncio.sleep(0.2)
        return {"status": "completed"}

    return TestClient(app)


class TestRequestBudget:

    def test_slow_request_times_out(self, slow_app):
        resp = slow_app.get("/api/v1/sessions/slow")
        assert resp.status_code == 504
        assert resp.json() == {"detail": "Request timed out"}

    def test_batch_path_gets_longer_budget(self, slow_app):
        resp = slow_app.post("/api/v1/admin/embeddings/batch")
        assert resp.status_code == 200

    def test_budget_for(self):
        middleware = RequestBudgetMiddleware(MagicMock(), timeout_seconds=70.0, batch_timeout_seconds=330.0)
        assert middleware.budget_for("/api/v1/admin/embeddings/batch") == 330.0
        assert middleware.budget_for("/api/v1/matching/calculate") == 70.0


class TestHealth:

    @pytest.fixture
    def client(self):
        # Lifespan is not entered: no database, Redis or workers.
        return TestClient(main.app)

    def test_liveness(self, client):
        assert client.get("/health").json() == {"status": "healthy", "embedding_workers": 0}

    def test_deep_reports_queue_backlog(self, client):
        queue = _queue({JobStatus.PENDING: 1, JobStatus.PROCESSING: 0})
        redis = MagicMock(ping=AsyncMock(return_value=True))

        with patch("lensmatch.main.get_job_queue", return_value=queue), \
             patch("lensmatch.main.get_redis", return_value=redis):
            body = client.get("/health/deep").json()

        assert body["status"] == "healthy"
        assert body["embedding_jobs"]["pending"] == 1

    def test_deep_degraded_on_outages(self, client):
        queue = MagicMock()
        queue.count_by_status = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        redis = MagicMock(ping=AsyncMock(side_effect=RedisConnectionError("refused")))

        with patch("lensmatch.main.get_job_queue", return_value=queue), \
             patch("lensmatch.main.get_redis", return_value=redis):
            body = client.get("/health/deep").json()

        assert body["status"] == "degraded"
        assert body["database"].startswith("error:")
        assert body["redis"] == "error: refused"

    def test_deep_without_redis(self, client):
        queue = _queue({})
        with patch("lensmatch.main.get_job_queue", return_value=queue), \
             patch("lensmatch.main.get_redis", return_value=None):
            body = client.get("/health/deep").json()
        assert body["status"] == "degraded"
        assert body["redis"] == "not connected"
