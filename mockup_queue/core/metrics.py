"""Prometheus metrics for the generation queue."""

from prometheus_client import Counter, Histogram

JOBS_ADMITTED = Counter(
    "mockup_jobs_admitted_total",
    "Jobs admitted to the queue",
    ["tier", "job_type"],
)

ADMISSIONS_REJECTED = Counter(
    "mockup_admissions_rejected_total",
    "Batch submissions rejected at admission",
    ["reason"],
)

JOB_TRANSITIONS = Counter(
    "mockup_job_transitions_total",
    "Lifecycle transitions applied",
    ["event", "status"],
)

WEBHOOK_EVENTS = Counter(
    "mockup_webhook_events_total",
    "Provider webhook deliveries by outcome",
    ["outcome"],
)

JOB_PROCESSING_SECONDS = Histogram(
    "mockup_job_processing_seconds",
    "Time from dispatch to terminal status",
    buckets=(5, 15, 30, 60, 120, 300, 600, 1800),
)
