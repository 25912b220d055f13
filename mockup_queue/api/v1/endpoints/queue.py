"""Queue statistics endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.api.dependencies import get_current_member
from mockup_queue.core.config import get_settings, Settings
from mockup_queue.db.database import get_session
from mockup_queue.schemas.queue import QueueStatsView
from mockup_queue.services.membership_service import Member
from mockup_queue.services.queue_manager import JobQueueManager

router = APIRouter()


@router.get("/stats", response_model=QueueStatsView)
async def get_queue_stats(
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings)
) -> QueueStatsView:
    """Derived queue statistics, recomputed on every request."""
    stats = await JobQueueManager(db, settings).get_queue_stats()
    return QueueStatsView(
        counts=stats.counts,
        queued=stats.queued,
        processing=stats.processing,
        average_wait_seconds=round(stats.average_wait_seconds, 3),
        average_processing_seconds=round(stats.average_processing_seconds, 3),
        slots_in_use=stats.slots_in_use,
        slots_available=stats.slots_available,
        estimated_wait_seconds=stats.estimated_wait_seconds,
        generated_at=stats.generated_at
    )
