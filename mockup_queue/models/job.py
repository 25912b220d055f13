"""Generation job model and its status vocabulary."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel, JSON, Column

from mockup_queue.core.timezone import UTCDateTime, utcnow


class JobStatus(str, Enum):
    """Job status enumeration."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})


class JobType(str, Enum):
    """Kind of generation work."""
    GENERATION = "generation"
    VARIATION = "variation"
    UPSCALE = "upscale"
    BATCH = "batch"


class ErrorCategory(str, Enum):
    """Failure categories understood by the retry policy."""
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    TIMEOUT = "timeout"
    EXTERNAL_SERVICE = "external_service"
    RATE_LIMIT = "rate_limit"
    INTERNAL = "internal"


class Job(SQLModel, table=True):
    """A unit of generation work tracked through the lifecycle state machine."""

    __tablename__ = "generation_jobs"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique job identifier"
    )

    # Ownership
    user_id: str = Field(index=True, max_length=255, description="Owning user")
    tier: str = Field(max_length=50, description="Subscription tier at admission")

    # Job configuration
    job_type: JobType = Field(default=JobType.GENERATION, description="Kind of generation")
    status: JobStatus = Field(
        default=JobStatus.QUEUED,
        index=True,
        description="Current job status"
    )
    priority: int = Field(default=0, index=True, description="Priority score at admission")

    # Execution tracking
    attempt: int = Field(default=1, description="Current attempt number (1-based)")
    max_attempts: int = Field(default=3, description="Maximum attempts allowed")
    next_retry_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(UTCDateTime, nullable=True, index=True),
        description="Earliest time a re-queued job may be dispatched"
    )

    # Credits
    estimated_credits: int = Field(description="Credits reserved at admission")
    actual_credits: Optional[int] = Field(default=None, description="Credits settled at completion")
    reservation_id: UUID = Field(
        foreign_key="credit_reservations.id",
        description="Credit reservation backing this job"
    )

    # Render provider correlation
    provider_job_id: Optional[str] = Field(
        default=None,
        unique=True,
        index=True,
        max_length=255,
        description="Render provider prediction id"
    )

    # Error tracking
    error_category: Optional[ErrorCategory] = Field(default=None, description="Last error category")
    error_message: Optional[str] = Field(default=None, description="Last error message")

    # Opaque bag passed to the provider and echoed back
    job_metadata: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
        description="Prompt, quality, batch index and provider progress"
    )

    # Timestamps
    queued_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(UTCDateTime, nullable=False, index=True),
        description="Admission time"
    )
    started_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(UTCDateTime, nullable=True),
        description="Dispatch time"
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(UTCDateTime, nullable=True),
        description="Terminal transition time"
    )
    last_event_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(UTCDateTime, nullable=True),
        description="Last dispatch or provider status update"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(UTCDateTime, nullable=False),
        description="Last update timestamp"
    )

    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate processing duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Queued or processing jobs count against the concurrency ceiling."""
        return self.status in ACTIVE_STATUSES

    @property
    def can_retry(self) -> bool:
        """Whether another attempt is still within budget."""
        return not self.is_terminal and self.attempt < self.max_attempts
