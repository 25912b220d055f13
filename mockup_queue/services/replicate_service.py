"""Replicate API integration service."""

from typing import Dict, Any, Optional
from uuid import uuid4
import httpx
from mockup_queue.core.config import Settings
from mockup_queue.core.exceptions import ProviderDispatchFailure
from mockup_queue.core.logging import get_logger
from mockup_queue.services.retry_policy import classify_http_error

logger = get_logger(__name__)

WEBHOOK_EVENTS_FILTER = ["start", "output", "logs", "completed"]


class ReplicateService:
    """Service for submitting and cancelling Replicate predictions.

    Results arrive asynchronously on the webhook endpoint; this client never
    polls.
    """

    def __init__(self, settings: Settings):
        """Initialize Replicate service."""
        self.settings = settings
        self.api_token = settings.replicate_api_token
        self.model = settings.replicate_model
        self.timeout = settings.replicate_timeout
        self.base_url = "https://api.replicate.com/v1"

    @property
    def is_mock(self) -> bool:
        """Development without a token never reaches Replicate."""
        return self.settings.is_development and not self.api_token

    async def create_prediction(
        self,
        input_data: Dict[str, Any],
        webhook_url: Optional[str] = None,
    ) -> str:
        """Submit a prediction.

        Args:
            input_data: Model input (prompt, image, quality...)
            webhook_url: Callback URL for status notifications

        Returns:
            Provider prediction id

        Raises:
            ProviderDispatchFailure: If Replicate rejects or cannot be reached
        """
        if self.is_mock:
            prediction_id = f"mock-{uuid4().hex}"
            logger.warning(
                "Using mock Replicate service in development",
                prediction_id=prediction_id
            )
            return prediction_id

        headers = {
            "Authorization": f"Token {self.api_token}",
            "Content-Type": "application/json"
        }

        # owner/name:version uses the models endpoint
        if "/" in self.model and ":" in self.model:
            model_name, version = self.model.split(":", 1)
            url = f"{self.base_url}/models/{model_name}/predictions"
        else:
            version = self.model.split(":")[-1]
            url = f"{self.base_url}/predictions"

        payload: Dict[str, Any] = {"version": version, "input": input_data}
        if webhook_url:
            payload["webhook"] = webhook_url
            payload["webhook_events_filter"] = WEBHOOK_EVENTS_FILTER

        try:
            async with httpx.AsyncClient(timeout=float(self.timeout)) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            category = classify_http_error(e)
            logger.error(
                "Failed to create Replicate prediction",
                model=self.model,
                category=category.value,
                error=str(e)
            )
            raise ProviderDispatchFailure(
                f"Replicate prediction request failed: {e}",
                category=category,
            ) from e

        prediction_id = data.get("id")
        if not prediction_id:
            raise ProviderDispatchFailure("Replicate response missing prediction id")

        logger.info(
            "Created Replicate prediction",
            prediction_id=prediction_id,
            model=self.model,
            webhook=bool(webhook_url)
        )
        return prediction_id

    async def cancel_prediction(self, prediction_id: str) -> bool:
        """Cancel a running prediction.

        Args:
            prediction_id: ID of the prediction to cancel

        Returns:
            True if cancelled successfully
        """
        if self.is_mock:
            return True

        headers = {
            "Authorization": f"Token {self.api_token}"
        }

        url = f"{self.base_url}/predictions/{prediction_id}/cancel"

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(url, headers=headers)
                response.raise_for_status()

                logger.info("Cancelled prediction", prediction_id=prediction_id)
                return True

        except httpx.HTTPError as e:
            logger.error(
                "Failed to cancel prediction",
                prediction_id=prediction_id,
                error=str(e)
            )
            return False
