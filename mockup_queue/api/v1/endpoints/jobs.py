"""Job endpoints: batch submission, status, listing and cancellation."""

from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.api.dependencies import get_current_member, get_lifecycle
from mockup_queue.core.config import get_settings, Settings
from mockup_queue.core.exceptions import JobNotFound
from mockup_queue.core.logging import get_logger
from mockup_queue.db.database import get_session
from mockup_queue.models import Artifact, Job
from mockup_queue.models.job import JobStatus
from mockup_queue.schemas.common import PaginationParams
from mockup_queue.schemas.job import (
    ArtifactInfo,
    BatchSubmitRequest,
    BatchSubmitResponse,
    JobListResponse,
    JobView,
)
from mockup_queue.services.lifecycle import GenerationLifecycle
from mockup_queue.services.membership_service import Member
from mockup_queue.services.queue_manager import JobQueueManager, JobSpec
from mockup_queue.workers.tasks import dispatch_user_jobs

router = APIRouter()
logger = get_logger(__name__)


def _job_view(
    job: Job,
    artifacts: Optional[List[Artifact]] = None,
    queue_position: Optional[int] = None,
) -> JobView:
    return JobView(
        id=job.id,
        status=job.status,
        job_type=job.job_type,
        tier=job.tier,
        priority=job.priority,
        attempt=job.attempt,
        max_attempts=job.max_attempts,
        estimated_credits=job.estimated_credits,
        actual_credits=job.actual_credits,
        queued_at=job.queued_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        next_retry_at=job.next_retry_at,
        duration_seconds=job.duration_seconds,
        queue_position=queue_position,
        error_category=job.error_category,
        error_message=job.error_message,
        metadata=job.job_metadata or {},
        artifacts=[
            ArtifactInfo(
                id=artifact.id,
                url=artifact.storage_url or artifact.storage_path,
                output_index=artifact.output_index,
                mime_type=artifact.mime_type,
                file_size_bytes=artifact.file_size_bytes,
                width=artifact.width,
                height=artifact.height
            )
            for artifact in artifacts
        ] if artifacts else None
    )


async def _get_owned_job(manager: JobQueueManager, job_id: UUID, member: Member) -> Job:
    job = await manager.get_job(job_id)
    if not job or job.user_id != member.user_id:
        raise JobNotFound("Job not found", {"job_id": str(job_id)})
    return job


@router.post("/batch", response_model=BatchSubmitResponse, status_code=201)
async def submit_batch(
    batch: BatchSubmitRequest,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings)
) -> BatchSubmitResponse:
    """Admit a batch of generation jobs.

    Credits for the whole batch are reserved up front; the batch is rejected
    as a whole when credits or the tier's concurrency ceiling do not allow it.
    """
    manager = JobQueueManager(db, settings)

    specs = [
        JobSpec(
            job_type=spec.job_type.value,
            quality=spec.quality,
            prompt=spec.prompt,
            negative_prompt=spec.negative_prompt,
            product_image=spec.product_image,
            extra=spec.options
        )
        for spec in batch.jobs
    ]
    result = await manager.admit(member.user_id, member.tier, specs)
    stats = await manager.get_queue_stats()

    # Dispatch asynchronously; the periodic sweep picks the jobs up otherwise
    try:
        dispatch_user_jobs.delay(member.user_id)
    except Exception as e:
        logger.warning(
            "Failed to enqueue dispatch task",
            user_id=member.user_id,
            error=str(e)
        )

    return BatchSubmitResponse(
        job_ids=result.job_ids,
        estimated_credits_total=result.estimated_credits_total,
        estimated_wait_seconds=stats.estimated_wait_seconds
    )


@router.get("/status/{job_id}", response_model=JobView)
async def get_job_status(
    job_id: UUID,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings)
) -> JobView:
    """Get the status of one of the caller's jobs."""
    manager = JobQueueManager(db, settings)
    job = await _get_owned_job(manager, job_id, member)

    result = await db.execute(
        select(Artifact).where(Artifact.job_id == job.id).order_by(Artifact.output_index)
    )
    artifacts = list(result.scalars().all())
    position = await manager.queue_position(job) if job.status == JobStatus.QUEUED else None

    return _job_view(job, artifacts, position)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    pagination: PaginationParams = Depends(),
    status: Optional[JobStatus] = Query(None, description="Filter by status"),
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings)
) -> JobListResponse:
    """List the caller's jobs with pagination and optional status filter."""
    manager = JobQueueManager(db, settings)
    jobs, total = await manager.list_user_jobs(
        member.user_id,
        status=status,
        page=pagination.page,
        per_page=pagination.per_page
    )

    total_pages = pagination.page_count(total)
    return JobListResponse(
        jobs=[_job_view(job) for job in jobs],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        has_next=pagination.page < total_pages,
        has_prev=pagination.page > 1
    )


@router.delete("/{job_id}", status_code=204)
async def cancel_job(
    job_id: UUID,
    member: Member = Depends(get_current_member),
    lifecycle: GenerationLifecycle = Depends(get_lifecycle)
) -> None:
    """Cancel a queued or processing job and release its credits.

    Only jobs that are not in a terminal state can be cancelled.
    """
    job = await _get_owned_job(lifecycle.queue, job_id, member)

    if job.is_terminal:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot cancel job in {job.status.value} state"
        )

    await lifecycle.cancel(job.id, "Cancelled by user")
