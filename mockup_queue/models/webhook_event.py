"""Record of processed provider notifications, keyed for duplicate suppression."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
from sqlmodel import Column, Field, SQLModel

from mockup_queue.core.timezone import UTCDateTime, utcnow


class WebhookEvent(SQLModel, table=True):
    """One physical webhook delivery that has been applied."""

    __tablename__ = "webhook_events"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    idempotency_key: str = Field(unique=True, index=True, max_length=255)
    provider_job_id: str = Field(index=True, max_length=255)
    status: str = Field(max_length=50)
    job_id: Optional[UUID] = Field(default=None)
    received_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
