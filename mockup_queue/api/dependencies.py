"""FastAPI dependencies shared by the v1 endpoints."""

import hmac
from typing import Optional
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.core.config import Settings, get_settings
from mockup_queue.core.exceptions import MembershipError
from mockup_queue.db.database import get_session
from mockup_queue.services.lifecycle import GenerationLifecycle
from mockup_queue.services.membership_service import Member, MembershipService
from mockup_queue.services.replicate_service import ReplicateService
from mockup_queue.services.storage_service import StorageService


async def get_current_member(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Member:
    """Authenticate the caller from the ``Authorization: Bearer`` header.

    Raises:
        MembershipError: 401 if the header is missing or the token is rejected
    """
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise MembershipError("Missing bearer token")
    return await MembershipService(settings).authenticate(token.strip())


async def require_admin(
    x_admin_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard credit adjustment endpoints with the admin API key."""
    if not settings.admin_api_key or not x_admin_key:
        raise MembershipError("Admin key required")
    if not hmac.compare_digest(x_admin_key, settings.admin_api_key):
        raise MembershipError("Invalid admin key")


def get_replicate_service(settings: Settings = Depends(get_settings)) -> ReplicateService:
    return ReplicateService(settings)


def get_storage_service(settings: Settings = Depends(get_settings)) -> StorageService:
    return StorageService(settings)


def get_lifecycle(
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    provider: ReplicateService = Depends(get_replicate_service),
    storage: StorageService = Depends(get_storage_service),
) -> GenerationLifecycle:
    return GenerationLifecycle(db, settings, provider=provider, storage=storage)
