"""Job-related Pydantic schemas."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID
from pydantic import BaseModel, Field, field_validator, ConfigDict
from mockup_queue.models.job import ErrorCategory, JobStatus, JobType


class JobSpecIn(BaseModel):
    """One job in a batch submission."""

    model_config = ConfigDict(extra="forbid")

    job_type: JobType = Field(default=JobType.GENERATION, description="Kind of generation")
    quality: str = Field(default="standard", description="Generation quality (draft, standard, premium, ultra)")
    prompt: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Scene description for the mockup"
    )
    negative_prompt: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Features to avoid"
    )
    product_image: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="URL of the uploaded product image"
    )
    options: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extra metadata stored with the job"
    )

    @field_validator("prompt", "negative_prompt")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        """Blank strings count as absent."""
        if v is None:
            return v
        v = v.strip()
        return v or None

    @field_validator("product_image")
    @classmethod
    def validate_image_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate product image URL format."""
        if v and not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("Product image must be an http:// or https:// URL")
        return v


class BatchSubmitRequest(BaseModel):
    """Request schema for submitting a batch of jobs."""

    jobs: List[JobSpecIn] = Field(..., min_length=1, description="Jobs to admit together")


class BatchSubmitResponse(BaseModel):
    """Response schema for an admitted batch."""

    job_ids: List[UUID] = Field(..., description="Admitted job identifiers")
    estimated_credits_total: int = Field(..., description="Credits reserved for the batch")
    estimated_wait_seconds: float = Field(..., description="Estimated wait before processing starts")


class ArtifactInfo(BaseModel):
    """Generated artifact information in job response."""

    id: UUID = Field(..., description="Artifact identifier")
    url: Optional[str] = Field(None, description="Artifact access URL")
    output_index: int = Field(..., description="Position in the provider output list")
    mime_type: Optional[str] = Field(None, description="MIME type")
    file_size_bytes: Optional[int] = Field(None, description="File size in bytes")
    width: Optional[int] = Field(None, description="Width in pixels")
    height: Optional[int] = Field(None, description="Height in pixels")

    model_config = ConfigDict(from_attributes=True)


class JobView(BaseModel):
    """Response schema for job status check."""

    id: UUID = Field(..., description="Job identifier")
    status: JobStatus = Field(..., description="Current job status")
    job_type: JobType = Field(..., description="Kind of generation")
    tier: str = Field(..., description="Subscription tier at admission")
    priority: int = Field(..., description="Priority score at admission")
    attempt: int = Field(..., description="Current attempt number")
    max_attempts: int = Field(..., description="Maximum attempts")
    estimated_credits: int = Field(..., description="Credits reserved")
    actual_credits: Optional[int] = Field(None, description="Credits charged")
    queued_at: datetime = Field(..., description="Admission timestamp")
    started_at: Optional[datetime] = Field(None, description="Dispatch timestamp")
    completed_at: Optional[datetime] = Field(None, description="Terminal timestamp")
    next_retry_at: Optional[datetime] = Field(None, description="Earliest retry time")
    duration_seconds: Optional[float] = Field(None, description="Processing duration")
    queue_position: Optional[int] = Field(None, description="Position in the queue while queued")
    error_category: Optional[ErrorCategory] = Field(None, description="Failure category")
    error_message: Optional[str] = Field(None, description="Error message if failed")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Job metadata")
    artifacts: Optional[List[ArtifactInfo]] = Field(
        default=None,
        description="Generated artifacts"
    )


class JobListResponse(BaseModel):
    """Response schema for listing jobs."""

    jobs: List[JobView] = Field(..., description="List of jobs")
    total: int = Field(..., description="Total number of jobs")
    page: int = Field(..., description="Current page number")
    per_page: int = Field(..., description="Items per page")
    has_next: bool = Field(..., description="Whether there are more pages")
    has_prev: bool = Field(..., description="Whether there are previous pages")
