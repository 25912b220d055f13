"""Test utilities and helper functions."""

import base64
import io
import json
import time
from typing import Any, Dict, List, Optional
from uuid import UUID
from PIL import Image

from mockup_queue.models import Job
from mockup_queue.services.lifecycle import GenerationLifecycle
from mockup_queue.services.queue_manager import JobQueueManager, JobSpec
from mockup_queue.services.webhook_signature import compute_signature


class ImageTestUtils:
    """Utilities for working with test images."""

    @staticmethod
    def create_test_image(
        width: int = 100,
        height: int = 100,
        color: str = "red",
        format: str = "PNG"
    ) -> bytes:
        """Create a test image as bytes."""
        image = Image.new("RGB", (width, height), color)
        buffer = io.BytesIO()
        image.save(buffer, format=format)
        return buffer.getvalue()

    @staticmethod
    def create_data_url(
        width: int = 100,
        height: int = 100,
        color: str = "blue",
        format: str = "PNG"
    ) -> str:
        """Create a data URL with test image."""
        image_data = ImageTestUtils.create_test_image(width, height, color, format)
        base64_data = base64.b64encode(image_data).decode()
        mime_type = f"image/{format.lower()}"
        return f"data:{mime_type};base64,{base64_data}"


class WebhookTestUtils:
    """Build Replicate webhook deliveries."""

    SECRET = "whsec_" + base64.b64encode(b"test-webhook-signing-key").decode()

    @staticmethod
    def prediction(
        prediction_id: str,
        status: str = "succeeded",
        output: Optional[Any] = None,
        error: Optional[str] = None,
        logs: Optional[str] = None,
        predict_time: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Create a prediction payload as Replicate posts it."""
        payload: Dict[str, Any] = {"id": prediction_id, "status": status}
        if output is not None:
            payload["output"] = output
        if error is not None:
            payload["error"] = error
        if logs is not None:
            payload["logs"] = logs
        if predict_time is not None:
            payload["metrics"] = {"predict_time": predict_time}
        return payload

    @staticmethod
    def encode(payload: Dict[str, Any]) -> bytes:
        return json.dumps(payload).encode("utf-8")

    @staticmethod
    def signed_headers(
        body: bytes,
        webhook_id: str = "msg_test",
        secret: Optional[str] = None,
        timestamp: Optional[int] = None,
    ) -> Dict[str, str]:
        """Standard Webhooks headers for a body."""
        ts = str(timestamp if timestamp is not None else int(time.time()))
        signature = compute_signature(secret or WebhookTestUtils.SECRET, webhook_id, ts, body)
        return {
            "webhook-id": webhook_id,
            "webhook-timestamp": ts,
            "webhook-signature": f"v1,{signature}",
        }


class QueueTestUtils:
    """Drive jobs into a given state through the public services."""

    @staticmethod
    async def admit(
        manager: JobQueueManager,
        user_id: str,
        tier: str = "pro",
        count: int = 1,
        **spec_fields: Any
    ) -> List[UUID]:
        """Admit ``count`` identical jobs and return their ids."""
        specs = [JobSpec(prompt="Mug on a wooden desk", **spec_fields) for _ in range(count)]
        result = await manager.admit(user_id, tier, specs)
        return result.job_ids

    @staticmethod
    async def processing_job(
        lifecycle: GenerationLifecycle,
        user_id: str,
        tier: str = "pro",
    ) -> Job:
        """Admit one job and dispatch it to the provider."""
        await QueueTestUtils.admit(lifecycle.queue, user_id, tier)
        job = await lifecycle.dispatch_next(user_id)
        assert job is not None
        return job


class APITestUtils:
    """Utilities for API testing."""

    @staticmethod
    def auth_headers(user_id: str = "user-1") -> Dict[str, str]:
        """Development identities use the bearer token as user id."""
        return {"Authorization": f"Bearer {user_id}"}

    @staticmethod
    def assert_error_response(response_json: Dict[str, Any], error_code: str) -> None:
        """Assert a domain error body."""
        assert response_json["error_code"] == error_code, response_json
        assert response_json["error"]
        assert "timestamp" in response_json

    @staticmethod
    def assert_pagination_structure(response_data: Dict[str, Any]):
        """Assert that pagination response has correct structure."""
        required_fields = ["total", "page", "per_page", "has_next", "has_prev"]
        for field in required_fields:
            assert field in response_data, f"Missing field: {field}"

        assert isinstance(response_data["total"], int)
        assert isinstance(response_data["has_next"], bool)
        assert isinstance(response_data["has_prev"], bool)
