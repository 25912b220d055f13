"""Schemas shared across endpoints."""

from typing import Optional, Dict, Any, Literal
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Service and dependency status."""

    status: Literal["healthy", "degraded"]
    version: str
    environment: str
    services: Dict[str, bool] = Field(..., description="Reachability per dependency")
    provider_mode: Literal["live", "mock"] = Field(
        ..., description="Whether predictions go to Replicate or to the local mock"
    )
    dispatch_capacity: int = Field(..., description="Jobs that may be processing at once")
    timestamp: str


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: str = Field(..., description="Human readable message")
    error_code: str = Field(..., description="Stable machine readable code")
    details: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None
    timestamp: str


class PaginationParams(BaseModel):
    """Page-based listing parameters."""

    page: int = Field(1, ge=1, description="Page number")
    per_page: int = Field(20, ge=1, le=100, description="Items per page")

    def page_count(self, total: int) -> int:
        return (total + self.per_page - 1) // self.per_page
