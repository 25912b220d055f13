"""Celery tasks that drive dispatch and stale-job expiry."""

import asyncio
from typing import Dict, Any, Optional
from celery import Task
from mockup_queue.workers.celery_app import celery_app
from mockup_queue.core.config import get_settings
from mockup_queue.core.logging import bind_log_context, clear_log_context, get_logger
from mockup_queue.db.database import get_db_context, reset_db_connections
from mockup_queue.services.lifecycle import GenerationLifecycle

logger = get_logger(__name__)


class CallbackTask(Task):
    """Base task with callbacks for better error handling."""

    def __call__(self, *args, **kwargs):
        clear_log_context()
        bind_log_context(task=self.name, task_id=self.request.id)
        return super().__call__(*args, **kwargs)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Called on task failure."""
        logger.error(
            "Task failed",
            task=self.name,
            task_id=task_id,
            args=args,
            error=str(exc),
            traceback=str(einfo)
        )

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        """Called on task retry."""
        logger.warning(
            "Task retrying",
            task=self.name,
            task_id=task_id,
            args=args,
            error=str(exc),
            retry_count=self.request.retries
        )

    def on_success(self, retval, task_id, args, kwargs):
        """Called on task success."""
        logger.info(
            "Task completed successfully",
            task=self.name,
            task_id=task_id,
            result=retval
        )


@celery_app.task(
    base=CallbackTask,
    bind=True,
    name="mockup_queue.workers.tasks.dispatch_user_jobs",
    autoretry_for=(ConnectionError, OSError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_jitter=True
)
def dispatch_user_jobs(self, user_id: str) -> Dict[str, Any]:
    """Dispatch a user's queued jobs after admission.

    Args:
        user_id: Owner of the newly admitted jobs

    Returns:
        Dict with the dispatched job ids
    """
    return asyncio.run(_dispatch_async(user_id))


@celery_app.task(base=CallbackTask, name="mockup_queue.workers.tasks.dispatch_ready_jobs")
def dispatch_ready_jobs() -> Dict[str, Any]:
    """Periodic dispatch of queued jobs, including retries whose backoff elapsed."""
    return asyncio.run(_dispatch_async(None))


@celery_app.task(base=CallbackTask, name="mockup_queue.workers.tasks.sweep_stale_jobs")
def sweep_stale_jobs() -> Dict[str, Any]:
    """Periodic task force-failing jobs the provider stopped reporting on."""
    return asyncio.run(_sweep_stale_async())


async def _dispatch_async(user_id: Optional[str]) -> Dict[str, Any]:
    """Dispatch until capacity or eligible jobs run out."""
    settings = get_settings()

    # Each asyncio.run gets a fresh loop; engines cannot be shared across loops
    await reset_db_connections()

    async with get_db_context() as db:
        lifecycle = GenerationLifecycle(db, settings)
        jobs = await lifecycle.dispatch_available(user_id)
        job_ids = [str(job.id) for job in jobs]

    if job_ids:
        logger.info("Dispatched jobs", user_id=user_id, job_ids=job_ids)
    return {"status": "success", "dispatched": job_ids}


async def _sweep_stale_async() -> Dict[str, Any]:
    settings = get_settings()
    await reset_db_connections()

    async with get_db_context() as db:
        expired = await GenerationLifecycle(db, settings).expire_stale()

    return {"status": "success", "expired": expired}
