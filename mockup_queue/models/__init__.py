"""Database models package."""

from mockup_queue.models.job import ErrorCategory, Job, JobStatus, JobType
from mockup_queue.models.artifact import Artifact
from mockup_queue.models.credit import (
    CreditAccount,
    CreditLedgerEntry,
    CreditReservation,
    LedgerEntryKind,
    ReservationStatus,
)
from mockup_queue.models.webhook_event import WebhookEvent

__all__ = [
    "Artifact",
    "CreditAccount",
    "CreditLedgerEntry",
    "CreditReservation",
    "ErrorCategory",
    "Job",
    "JobStatus",
    "JobType",
    "LedgerEntryKind",
    "ReservationStatus",
    "WebhookEvent",
]
