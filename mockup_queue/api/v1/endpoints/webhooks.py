"""Replicate webhook receiver."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.api.dependencies import get_lifecycle
from mockup_queue.core.config import get_settings, Settings
from mockup_queue.db.database import get_session
from mockup_queue.schemas.webhook import WebhookAck
from mockup_queue.services.lifecycle import GenerationLifecycle
from mockup_queue.services.webhook_ingress import WebhookIngress

router = APIRouter()


@router.post("/replicate", response_model=WebhookAck)
async def replicate_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    lifecycle: GenerationLifecycle = Depends(get_lifecycle)
) -> WebhookAck:
    """Receive a Replicate prediction update.

    The raw body is read before parsing so the signature covers the exact
    bytes received. Duplicate deliveries are acknowledged without effect.
    """
    body = await request.body()
    outcome = await WebhookIngress(db, settings, lifecycle).handle(body, request.headers)
    return WebhookAck(
        status=outcome.status,
        job_id=outcome.job_id,
        job_status=outcome.job_status
    )
