"""Webhook ingress: turn Replicate deliveries into lifecycle events."""

import json
from dataclasses import dataclass
from typing import Mapping, Optional
from uuid import UUID
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.core.config import Settings
from mockup_queue.core.exceptions import (
    InvalidTransition,
    InvalidWebhookSignature,
    MalformedWebhook,
    ProviderProcessingFailure,
    UnknownCorrelationId,
)
from mockup_queue.core.logging import get_logger
from mockup_queue.core.metrics import WEBHOOK_EVENTS
from mockup_queue.models import Job, WebhookEvent
from mockup_queue.schemas.webhook import ReplicateWebhook
from mockup_queue.services.lifecycle import GenerationLifecycle
from mockup_queue.services.retry_policy import classify_error
from mockup_queue.services.webhook_signature import verify_signature

logger = get_logger(__name__)


@dataclass
class WebhookOutcome:
    status: str
    job_id: Optional[str] = None
    job_status: Optional[str] = None


class WebhookIngress:
    """Validate, authenticate and de-duplicate provider notifications.

    Each physical delivery reaches the state machine at most once; the
    idempotency key is the ``webhook-id`` header, or ``"{id}:{status}"`` when
    the provider sends none.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        lifecycle: Optional[GenerationLifecycle] = None,
    ):
        self.db = db
        self.settings = settings
        self.lifecycle = lifecycle or GenerationLifecycle(db, settings)

    async def handle(self, body: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        """Process one webhook delivery.

        Args:
            body: Raw request body
            headers: Request headers (case-insensitive mapping)

        Returns:
            Outcome with the affected job

        Raises:
            InvalidWebhookSignature: If verification is enabled and fails
            MalformedWebhook: If the payload is not a valid prediction
            UnknownCorrelationId: If no job owns the prediction id
            InvalidTransition: If the event is illegal for the job's status
        """
        if self.settings.replicate_webhook_secret:
            try:
                verify_signature(
                    self.settings.replicate_webhook_secret,
                    body,
                    headers.get("webhook-id"),
                    headers.get("webhook-timestamp"),
                    headers.get("webhook-signature"),
                    tolerance=self.settings.webhook_signature_tolerance,
                )
            except InvalidWebhookSignature as e:
                WEBHOOK_EVENTS.labels(outcome="invalid_signature").inc()
                logger.warning("Rejected webhook signature", reason=e.message)
                raise

        payload = self.parse(body)
        idempotency_key = headers.get("webhook-id") or f"{payload.id}:{payload.status}"

        job = await self._find_job(payload.id)
        if job is None:
            WEBHOOK_EVENTS.labels(outcome="unknown").inc()
            logger.warning(
                "Webhook for unknown prediction",
                prediction_id=payload.id,
                status=payload.status
            )
            raise UnknownCorrelationId(
                f"No job for prediction {payload.id}",
                {"provider_job_id": payload.id},
            )

        job_id = str(job.id)
        if not await self._record(idempotency_key, payload, job):
            WEBHOOK_EVENTS.labels(outcome="duplicate").inc()
            logger.info(
                "Duplicate webhook ignored",
                idempotency_key=idempotency_key,
                job_id=job_id
            )
            return WebhookOutcome(status="duplicate", job_id=job_id)

        try:
            job = await self._apply(job, payload)
        except InvalidTransition:
            await self.db.rollback()
            WEBHOOK_EVENTS.labels(outcome="conflict").inc()
            logger.warning(
                "Webhook rejected by state machine",
                job_id=job_id,
                prediction_id=payload.id,
                status=payload.status
            )
            raise

        job_status = getattr(job.status, "value", job.status)

        # The fail-safe path rolls back before force-failing the job
        await self._ensure_recorded(idempotency_key, payload, job_id)

        WEBHOOK_EVENTS.labels(outcome="processed").inc()
        logger.info(
            "Webhook processed",
            job_id=job_id,
            prediction_id=payload.id,
            provider_status=payload.status,
            job_status=job_status
        )
        return WebhookOutcome(status="processed", job_id=job_id, job_status=job_status)

    @staticmethod
    def parse(body: bytes) -> ReplicateWebhook:
        """Validate a raw payload.

        Raises:
            MalformedWebhook: On invalid JSON or schema
        """
        try:
            return ReplicateWebhook.model_validate(json.loads(body))
        except (ValueError, ValidationError) as e:
            WEBHOOK_EVENTS.labels(outcome="malformed").inc()
            raise MalformedWebhook(f"Malformed webhook payload: {e}") from e

    async def _apply(self, job: Job, payload: ReplicateWebhook) -> Job:
        if payload.status in ("starting", "processing"):
            return await self.lifecycle.progress(job.id, payload.status, payload.logs)
        if payload.status == "succeeded":
            return await self.lifecycle.succeed(job.id, payload.output, payload.metrics_dict())
        if payload.status == "failed":
            failure = ProviderProcessingFailure(
                payload.error_message, category=classify_error(payload.error_message)
            )
            return await self.lifecycle.fail(job.id, failure.category, failure.message)
        return await self.lifecycle.cancel(job.id, "Cancelled by provider")

    async def _find_job(self, provider_job_id: str) -> Optional[Job]:
        result = await self.db.execute(
            select(Job).where(Job.provider_job_id == provider_job_id)
        )
        return result.scalar_one_or_none()

    async def _seen(self, idempotency_key: str) -> bool:
        result = await self.db.execute(
            select(WebhookEvent.id).where(WebhookEvent.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none() is not None

    async def _record(self, idempotency_key: str, payload: ReplicateWebhook, job: Job) -> bool:
        """Insert the delivery record; False if the key was already used."""
        if await self._seen(idempotency_key):
            return False
        self.db.add(
            WebhookEvent(
                idempotency_key=idempotency_key,
                provider_job_id=payload.id,
                status=payload.status,
                job_id=job.id,
            )
        )
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            return False
        return True

    async def _ensure_recorded(
        self,
        idempotency_key: str,
        payload: ReplicateWebhook,
        job_id: str,
    ) -> None:
        if await self._seen(idempotency_key):
            await self.db.commit()
            return
        self.db.add(
            WebhookEvent(
                idempotency_key=idempotency_key,
                provider_job_id=payload.id,
                status=payload.status,
                job_id=UUID(job_id),
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
