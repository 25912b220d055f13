"""Artifact model for generated outputs persisted on job completion."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
from sqlmodel import Column, Field, SQLModel

from mockup_queue.core.timezone import UTCDateTime, utcnow


class Artifact(SQLModel, table=True):
    """Stored copy of one provider output."""

    __tablename__ = "artifacts"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique artifact identifier"
    )
    job_id: UUID = Field(
        foreign_key="generation_jobs.id",
        index=True,
        description="Job that produced this artifact"
    )
    output_index: int = Field(default=0, description="Position in the provider output list")
    source_url: str = Field(description="Provider output URL")

    # Storage location
    storage_path: str = Field(description="Storage path or S3 key", index=True)
    storage_url: Optional[str] = Field(default=None, description="Public URL for the artifact")
    storage_provider: str = Field(default="s3", description="Storage provider (s3, local)")
    bucket_name: Optional[str] = Field(default=None, description="S3 bucket name")

    # File information
    mime_type: Optional[str] = Field(default=None, description="MIME type")
    file_size_bytes: Optional[int] = Field(default=None, description="File size in bytes")
    width: Optional[int] = Field(default=None, description="Width in pixels")
    height: Optional[int] = Field(default=None, description="Height in pixels")

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(UTCDateTime, nullable=False),
        description="Artifact creation timestamp"
    )
