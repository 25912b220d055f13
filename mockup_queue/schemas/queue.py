"""Queue statistics schema."""

from datetime import datetime
from typing import Dict
from pydantic import BaseModel, Field


class QueueStatsView(BaseModel):
    """Derived queue statistics."""

    counts: Dict[str, int] = Field(..., description="Jobs per status")
    queued: int = Field(..., description="Jobs waiting for dispatch")
    processing: int = Field(..., description="Jobs at the render provider")
    average_wait_seconds: float = Field(..., description="Mean time from admission to dispatch")
    average_processing_seconds: float = Field(..., description="Mean time from dispatch to completion")
    slots_in_use: int = Field(..., description="Dispatch slots in use")
    slots_available: int = Field(..., description="Dispatch slots free")
    estimated_wait_seconds: float = Field(..., description="Estimated wait for a new job")
    generated_at: datetime = Field(..., description="Snapshot time")
