"""Tests for Celery worker tasks."""

from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, patch
import pytest

from mockup_queue.core.timezone import utcnow
from mockup_queue.models import JobStatus
from mockup_queue.workers.celery_app import celery_app
from mockup_queue.workers.tasks import (
    _dispatch_async,
    _sweep_stale_async,
    dispatch_ready_jobs,
    dispatch_user_jobs,
    sweep_stale_jobs,
)
from tests.utils import QueueTestUtils


@pytest.fixture
def worker_env(db_session, test_settings, lifecycle):
    """Run task bodies against the test session and provider double."""
    @asynccontextmanager
    async def _db_context():
        yield db_session

    with patch("mockup_queue.workers.tasks.get_db_context", _db_context), \
         patch("mockup_queue.workers.tasks.reset_db_connections", AsyncMock()) as mock_reset, \
         patch("mockup_queue.workers.tasks.get_settings", return_value=test_settings), \
         patch("mockup_queue.workers.tasks.GenerationLifecycle", return_value=lifecycle):
        yield mock_reset


class TestDispatchAsync:
    """Dispatch task implementation."""

    async def test_dispatches_user_jobs(self, worker_env, lifecycle, fund_account):
        await fund_account("user-1", 10)
        job_ids = await QueueTestUtils.admit(lifecycle.queue, "user-1", count=2)

        result = await _dispatch_async("user-1")

        assert result["status"] == "success"
        assert sorted(result["dispatched"]) == sorted(str(job_id) for job_id in job_ids)
        worker_env.assert_awaited_once()
        for job_id in job_ids:
            assert (await lifecycle.queue.get_job(job_id)).status == JobStatus.PROCESSING

    async def test_global_sweep_covers_all_users(self, worker_env, lifecycle, fund_account):
        await fund_account("user-1", 10)
        await fund_account("user-2", 10)
        await QueueTestUtils.admit(lifecycle.queue, "user-1")
        await QueueTestUtils.admit(lifecycle.queue, "user-2")

        result = await _dispatch_async(None)

        assert len(result["dispatched"]) == 2

    async def test_nothing_to_dispatch(self, worker_env):
        assert await _dispatch_async("user-1") == {"status": "success", "dispatched": []}


class TestSweepStaleAsync:

    async def test_expires_silent_jobs(self, worker_env, lifecycle, fund_account):
        await fund_account("user-1", 10)
        job = await QueueTestUtils.processing_job(lifecycle, "user-1")

        assert await _sweep_stale_async() == {"status": "success", "expired": 0}

        with patch.object(
            lifecycle.queue, "stale_jobs", AsyncMock(return_value=[job])
        ):
            result = await _sweep_stale_async()

        assert result == {"status": "success", "expired": 1}
        assert await lifecycle.ledger.get_balance("user-1") == 10

    async def test_uses_configured_timeout(self, worker_env, lifecycle, fund_account, test_settings):
        await fund_account("user-1", 10)
        await QueueTestUtils.processing_job(lifecycle, "user-1")

        stale = await lifecycle.queue.stale_jobs(utcnow() + timedelta(seconds=test_settings.stale_job_timeout + 1))

        assert len(stale) == 1


class TestTaskEntryPoints:
    """Synchronous Celery entry points."""

    def test_dispatch_user_jobs(self):
        with patch(
            "mockup_queue.workers.tasks._dispatch_async",
            AsyncMock(return_value={"status": "success", "dispatched": ["job-1"]})
        ) as mock_dispatch:
            result = dispatch_user_jobs("user-1")

        assert result["dispatched"] == ["job-1"]
        mock_dispatch.assert_awaited_once_with("user-1")

    def test_dispatch_ready_jobs(self):
        with patch(
            "mockup_queue.workers.tasks._dispatch_async",
            AsyncMock(return_value={"status": "success", "dispatched": []})
        ) as mock_dispatch:
            dispatch_ready_jobs()

        mock_dispatch.assert_awaited_once_with(None)

    def test_sweep_stale_jobs(self):
        with patch(
            "mockup_queue.workers.tasks._sweep_stale_async",
            AsyncMock(return_value={"status": "success", "expired": 2})
        ):
            assert sweep_stale_jobs()["expired"] == 2


class TestCeleryConfiguration:

    def test_beat_schedule(self):
        schedule = celery_app.conf.beat_schedule
        assert schedule["dispatch-ready-jobs"]["task"] == dispatch_ready_jobs.name
        assert schedule["sweep-stale-jobs"]["task"] == sweep_stale_jobs.name

    def test_task_routes(self):
        routes = celery_app.conf.task_routes
        assert routes[dispatch_user_jobs.name] == {"queue": "dispatch"}
        assert routes[sweep_stale_jobs.name] == {"queue": "maintenance"}

    def test_dispatch_retries_on_broker_errors(self):
        assert ConnectionError in dispatch_user_jobs.autoretry_for
