"""Replicate webhook payload schema."""

from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

ProviderStatus = Literal["starting", "processing", "succeeded", "failed", "canceled"]


class PredictionMetrics(BaseModel):
    """Timing reported by Replicate."""

    model_config = ConfigDict(extra="allow")

    predict_time: Optional[float] = Field(None, ge=0, description="Seconds spent predicting")


class ReplicateWebhook(BaseModel):
    """Prediction object Replicate posts to the webhook URL."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, max_length=255, description="Prediction id")
    status: ProviderStatus = Field(..., description="Prediction status")
    output: Optional[Any] = Field(None, description="Output URL or list of URLs")
    error: Optional[Any] = Field(None, description="Error reported by the model")
    logs: Optional[str] = Field(None, description="Prediction logs so far")
    started_at: Optional[str] = Field(None, description="Prediction start time")
    completed_at: Optional[str] = Field(None, description="Prediction completion time")
    metrics: Optional[PredictionMetrics] = Field(None, description="Prediction metrics")

    @property
    def error_message(self) -> str:
        if self.error is None:
            return "Prediction failed"
        return str(self.error)

    def metrics_dict(self) -> Dict[str, Any]:
        return self.metrics.model_dump(exclude_none=True) if self.metrics else {}


class WebhookAck(BaseModel):
    """Webhook acknowledgement."""

    status: Literal["processed", "duplicate"] = Field(..., description="Delivery outcome")
    job_id: Optional[str] = Field(None, description="Job the delivery applied to")
    job_status: Optional[str] = Field(None, description="Job status after the delivery")
