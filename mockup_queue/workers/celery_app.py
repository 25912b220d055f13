"""Celery application configuration."""

from celery import Celery
from mockup_queue.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "mockup_queue_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["mockup_queue.workers.tasks"]
)

celery_app.conf.update(
    # Task configuration
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_time_limit=settings.replicate_timeout * 4 + 60,
    task_soft_time_limit=settings.replicate_timeout * 4,

    # Worker configuration
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,
    worker_hijack_root_logger=False,

    # Result backend
    result_expires=3600,  # 1 hour
    result_persistent=True,

    # Lost dispatch tasks are recovered by the periodic sweep
    task_default_retry_delay=30,
    task_max_retries=3,

    # Beat schedule
    beat_schedule={
        "dispatch-ready-jobs": {
            "task": "mockup_queue.workers.tasks.dispatch_ready_jobs",
            "schedule": settings.dispatch_sweep_interval,
        },
        "sweep-stale-jobs": {
            "task": "mockup_queue.workers.tasks.sweep_stale_jobs",
            "schedule": settings.stale_sweep_interval,
        },
    },
)

# Task routing
celery_app.conf.task_routes = {
    "mockup_queue.workers.tasks.dispatch_user_jobs": {"queue": "dispatch"},
    "mockup_queue.workers.tasks.dispatch_ready_jobs": {"queue": "dispatch"},
    "mockup_queue.workers.tasks.sweep_stale_jobs": {"queue": "maintenance"},
}

# Queue configuration
celery_app.conf.task_queues = {
    "dispatch": {
        "exchange": "dispatch",
        "exchange_type": "direct",
        "routing_key": "dispatch",
    },
    "maintenance": {
        "exchange": "maintenance",
        "exchange_type": "direct",
        "routing_key": "maintenance",
    },
}
