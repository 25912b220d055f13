"""API schemas package."""

from mockup_queue.schemas.job import (
    ArtifactInfo,
    BatchSubmitRequest,
    BatchSubmitResponse,
    JobListResponse,
    JobSpecIn,
    JobView,
)
from mockup_queue.schemas.credit import (
    CreditAdjustmentRequest,
    CreditAdjustmentResponse,
    CreditBalanceResponse,
    LedgerEntryView,
)
from mockup_queue.schemas.queue import QueueStatsView
from mockup_queue.schemas.webhook import ReplicateWebhook, WebhookAck
from mockup_queue.schemas.common import HealthResponse, ErrorResponse, PaginationParams

__all__ = [
    "ArtifactInfo",
    "BatchSubmitRequest",
    "BatchSubmitResponse",
    "CreditAdjustmentRequest",
    "CreditAdjustmentResponse",
    "CreditBalanceResponse",
    "ErrorResponse",
    "HealthResponse",
    "JobListResponse",
    "JobSpecIn",
    "JobView",
    "LedgerEntryView",
    "PaginationParams",
    "QueueStatsView",
    "ReplicateWebhook",
    "WebhookAck",
]
