"""Job queue manager: admission control, selection and queue statistics."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID, uuid4
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.core.config import Settings
from mockup_queue.core.exceptions import (
    AdmissionError,
    ConcurrencyLimitExceeded,
    InsufficientCredits,
    JobValidationError,
)
from mockup_queue.core.logging import get_logger
from mockup_queue.core.metrics import ADMISSIONS_REJECTED, JOBS_ADMITTED
from mockup_queue.core.timezone import utcnow
from mockup_queue.models import Job, JobStatus, JobType
from mockup_queue.models.job import ACTIVE_STATUSES
from mockup_queue.services.credit_ledger import CreditLedger
from mockup_queue.services.priority import (
    PriorityConfig,
    calculate_priority,
    effective_priority,
)

logger = get_logger(__name__)

# Upper bound on queued rows scored per dequeue
DEQUEUE_CANDIDATE_LIMIT = 200

# Recent samples used for average wait / processing times
STATS_SAMPLE_SIZE = 100


@dataclass
class JobSpec:
    """One requested unit of generation work."""

    job_type: str = JobType.GENERATION.value
    quality: str = "standard"
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    product_image: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_metadata(self, batch_index: int) -> Dict[str, Any]:
        metadata = dict(self.extra)
        metadata.update({
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
            "product_image": self.product_image,
            "quality": self.quality,
            "batch_index": batch_index,
        })
        return metadata


@dataclass
class AdmissionResult:
    job_ids: List[UUID]
    estimated_credits_total: int


@dataclass
class QueueStats:
    """Snapshot of queue state, derived from persisted jobs."""

    counts: Dict[str, int]
    average_wait_seconds: float
    average_processing_seconds: float
    slots_in_use: int
    slots_available: int
    estimated_wait_seconds: float
    generated_at: datetime

    @property
    def queued(self) -> int:
        return self.counts.get(JobStatus.QUEUED.value, 0)

    @property
    def processing(self) -> int:
        return self.counts.get(JobStatus.PROCESSING.value, 0)


def estimate_wait(
    queue_position: int,
    avg_processing_time: float,
    available_slots: int,
) -> float:
    """Estimated seconds until a job at ``queue_position`` starts.

    Args:
        queue_position: Jobs ahead of (and including) the new one
        avg_processing_time: Mean seconds per job
        available_slots: Jobs that can run at once

    Returns:
        ``ceil(position / slots) * avg``; 0 when nothing is queued
    """
    if queue_position <= 0:
        return 0.0
    return math.ceil(queue_position / max(1, available_slots)) * avg_processing_time


_JOB_TYPES = frozenset(job_type.value for job_type in JobType)


def _enum_value(value: Any) -> str:
    return getattr(value, "value", value)


class JobQueueManager:
    """Admit, select and report on generation jobs."""

    def __init__(self, db: AsyncSession, settings: Settings):
        """Initialize queue manager with database session and settings."""
        self.db = db
        self.settings = settings
        self.ledger = CreditLedger(db, initial_grant=settings.initial_credit_grant)
        self.priority_config = PriorityConfig.from_settings(settings)

    def concurrency_limit(self, tier: str) -> int:
        """Maximum queued+processing jobs for a tier.

        Raises:
            JobValidationError: If the tier is unknown
        """
        try:
            return self.settings.tier_concurrency_limits[tier]
        except KeyError:
            raise JobValidationError(f"Unknown tier: {tier}", {"tier": tier}) from None

    def estimate_credits(self, spec: JobSpec) -> int:
        """Credit cost of one job: type cost scaled by quality, rounded up."""
        cost = self.settings.job_credit_costs[_enum_value(spec.job_type)]
        multiplier = self.settings.quality_credit_multipliers[spec.quality]
        return math.ceil(cost * multiplier)

    def validate_specs(self, tier: str, specs: List[JobSpec]) -> None:
        """Reject a batch before any state is touched.

        Raises:
            JobValidationError: On empty or oversized batches or unknown values
        """
        if not specs:
            raise JobValidationError("At least one job is required")
        if len(specs) > self.settings.max_batch_size:
            raise JobValidationError(
                f"Batch size must be between 1 and {self.settings.max_batch_size}",
                {"batch_size": len(specs), "max_batch_size": self.settings.max_batch_size},
            )
        if tier not in self.settings.tier_concurrency_limits or tier not in self.priority_config.tier_base:
            raise JobValidationError(f"Unknown tier: {tier}", {"tier": tier})

        for index, spec in enumerate(specs):
            job_type = _enum_value(spec.job_type)
            if job_type not in self.settings.job_credit_costs or job_type not in _JOB_TYPES:
                raise JobValidationError(
                    f"Unknown job type: {job_type}",
                    {"batch_index": index, "job_type": job_type},
                )
            if spec.quality not in self.settings.quality_credit_multipliers:
                raise JobValidationError(
                    f"Unknown quality: {spec.quality}",
                    {"batch_index": index, "quality": spec.quality},
                )

    async def admit(self, user_id: str, tier: str, specs: List[JobSpec]) -> AdmissionResult:
        """Admit a batch of jobs all-or-nothing.

        Credits for every job are reserved and every job is created in one
        transaction while the user's account is locked. Any failure rolls the
        whole batch back, so no job exists without a reservation and no
        reservation without a job.

        Args:
            user_id: Submitting user
            tier: Caller's subscription tier
            specs: Requested jobs

        Returns:
            Admitted job ids and the total credits reserved

        Raises:
            JobValidationError: If the batch is invalid
            InsufficientCredits: If the balance does not cover the batch
            ConcurrencyLimitExceeded: If the batch would exceed the tier ceiling
        """
        try:
            self.validate_specs(tier, specs)
        except JobValidationError:
            ADMISSIONS_REJECTED.labels(reason="validation").inc()
            raise

        costs = [self.estimate_credits(spec) for spec in specs]
        total = sum(costs)
        limit = self.concurrency_limit(tier)

        try:
            account = await self.ledger.lock_account(user_id)

            if account.balance < total:
                raise InsufficientCredits(
                    "Insufficient credits",
                    {"credits_needed": total, "credits_available": account.balance},
                )

            active = await self.active_job_count(user_id)
            if active + len(specs) > limit:
                raise ConcurrencyLimitExceeded(
                    f"Concurrency limit reached for tier {tier}",
                    {"active_jobs": active, "requested": len(specs), "limit": limit},
                )

            now = utcnow()
            job_ids: List[UUID] = []
            for index, (spec, cost) in enumerate(zip(specs, costs)):
                job_id = uuid4()
                reservation = await self.ledger.reserve(
                    user_id, cost, f"Reserved for {_enum_value(spec.job_type)} job", job_id=job_id
                )
                job = Job(
                    id=job_id,
                    user_id=user_id,
                    tier=tier,
                    job_type=JobType(_enum_value(spec.job_type)),
                    status=JobStatus.QUEUED,
                    priority=calculate_priority(tier, spec.job_type, now, now, self.priority_config),
                    attempt=1,
                    max_attempts=self.settings.job_max_attempts,
                    estimated_credits=cost,
                    reservation_id=reservation.id,
                    job_metadata=spec.to_metadata(index),
                    queued_at=now,
                    updated_at=now,
                )
                self.db.add(job)
                job_ids.append(job_id)

            await self.db.flush()
            await self.db.commit()

        except AdmissionError as e:
            await self.db.rollback()
            ADMISSIONS_REJECTED.labels(reason=e.error_code.lower()).inc()
            logger.info(
                "Admission rejected",
                user_id=user_id,
                tier=tier,
                batch_size=len(specs),
                reason=e.error_code,
                details=e.details
            )
            raise
        except Exception as e:
            # Rolling back discards every job and reservation of this batch
            await self.db.rollback()
            ADMISSIONS_REJECTED.labels(reason="internal").inc()
            logger.error(
                "Admission failed, batch rolled back",
                user_id=user_id,
                tier=tier,
                batch_size=len(specs),
                error=str(e)
            )
            raise

        for spec in specs:
            JOBS_ADMITTED.labels(tier=tier, job_type=_enum_value(spec.job_type)).inc()

        logger.info(
            "Jobs admitted",
            user_id=user_id,
            tier=tier,
            job_ids=[str(job_id) for job_id in job_ids],
            estimated_credits_total=total
        )
        return AdmissionResult(job_ids=job_ids, estimated_credits_total=total)

    async def dequeue_next(
        self,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
        exclude_user_ids: Optional[Set[str]] = None,
    ) -> Optional[Job]:
        """Select the next job to dispatch without changing it.

        Eligible jobs are queued with no pending backoff. The highest
        effective priority (stored priority plus wait boost) wins; ties go to
        the earliest ``queued_at``.
        """
        now = now or utcnow()
        stmt = (
            select(Job)
            .where(
                Job.status == JobStatus.QUEUED,
                or_(Job.next_retry_at.is_(None), Job.next_retry_at <= now),
            )
            .order_by(Job.priority.desc(), Job.queued_at.asc())
            .limit(DEQUEUE_CANDIDATE_LIMIT)
        )
        if user_id is not None:
            stmt = stmt.where(Job.user_id == user_id)
        if exclude_user_ids:
            stmt = stmt.where(Job.user_id.not_in(list(exclude_user_ids)))

        result = await self.db.execute(stmt)
        candidates = list(result.scalars().all())
        if not candidates:
            return None

        return min(candidates, key=lambda job: self._dispatch_key(job.priority, job.queued_at, now))

    def _dispatch_key(self, priority: int, queued_at: datetime, now: datetime) -> Tuple[int, datetime]:
        """Sort key shared by dequeue and queue position; smaller goes first."""
        return -effective_priority(priority, queued_at, now, self.priority_config), queued_at

    async def active_job_count(self, user_id: str) -> int:
        """Queued plus processing jobs for a user."""
        result = await self.db.execute(
            select(func.count(Job.id)).where(
                Job.user_id == user_id,
                Job.status.in_(list(ACTIVE_STATUSES)),
            )
        )
        return int(result.scalar_one())

    async def processing_count(self, user_id: Optional[str] = None) -> int:
        """Jobs currently at the provider, optionally for one user."""
        stmt = select(func.count(Job.id)).where(Job.status == JobStatus.PROCESSING)
        if user_id is not None:
            stmt = stmt.where(Job.user_id == user_id)
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def queue_position(self, job: Job, now: Optional[datetime] = None) -> int:
        """1-based position of a queued job in dispatch order, 0 otherwise.

        Only jobs ``dequeue_next`` could pick right now are counted ahead;
        jobs waiting out a retry backoff are not.
        """
        if job.status != JobStatus.QUEUED:
            return 0
        now = now or utcnow()
        result = await self.db.execute(
            select(Job.id, Job.priority, Job.queued_at).where(
                Job.status == JobStatus.QUEUED,
                Job.id != job.id,
                or_(Job.next_retry_at.is_(None), Job.next_retry_at <= now),
            )
        )
        own_key = self._dispatch_key(job.priority, job.queued_at, now)
        ahead = sum(
            1 for _, priority, queued_at in result.all()
            if self._dispatch_key(priority, queued_at, now) < own_key
        )
        return ahead + 1

    async def get_queue_stats(self, now: Optional[datetime] = None) -> QueueStats:
        """Derive queue statistics from current job rows."""
        now = now or utcnow()

        result = await self.db.execute(
            select(Job.status, func.count(Job.id)).group_by(Job.status)
        )
        counts = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            counts[_enum_value(status)] = count

        avg_wait, avg_processing = await self._average_times()

        processing = counts[JobStatus.PROCESSING.value]
        capacity = self.settings.dispatch_capacity
        slots_available = max(0, capacity - processing)
        queued = counts[JobStatus.QUEUED.value]

        return QueueStats(
            counts=counts,
            average_wait_seconds=avg_wait,
            average_processing_seconds=avg_processing,
            slots_in_use=processing,
            slots_available=slots_available,
            estimated_wait_seconds=estimate_wait(queued, avg_processing, slots_available),
            generated_at=now,
        )

    async def _average_times(self) -> Tuple[float, float]:
        """Mean wait and processing seconds over recent samples."""
        result = await self.db.execute(
            select(Job.queued_at, Job.started_at)
            .where(Job.started_at.is_not(None))
            .order_by(Job.started_at.desc())
            .limit(STATS_SAMPLE_SIZE)
        )
        waits = [(started - queued).total_seconds() for queued, started in result.all()]

        result = await self.db.execute(
            select(Job.started_at, Job.completed_at)
            .where(
                Job.status == JobStatus.COMPLETED,
                Job.started_at.is_not(None),
                Job.completed_at.is_not(None),
            )
            .order_by(Job.completed_at.desc())
            .limit(STATS_SAMPLE_SIZE)
        )
        durations = [(completed - started).total_seconds() for started, completed in result.all()]

        avg_wait = sum(waits) / len(waits) if waits else 0.0
        avg_processing = (
            sum(durations) / len(durations) if durations else self.settings.default_processing_time
        )
        return max(0.0, avg_wait), max(0.0, avg_processing)

    async def get_job(self, job_id: UUID) -> Optional[Job]:
        """Get a job by ID, bypassing any stale identity-map copy."""
        return await self.db.get(Job, job_id, populate_existing=True)

    async def list_user_jobs(
        self,
        user_id: str,
        status: Optional[JobStatus] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Job], int]:
        """Paginated jobs of one user, newest first.

        Returns:
            Tuple of (jobs, total)
        """
        filters = [Job.user_id == user_id]
        if status is not None:
            filters.append(Job.status == status)

        total_result = await self.db.execute(select(func.count(Job.id)).where(*filters))
        total = int(total_result.scalar_one())

        result = await self.db.execute(
            select(Job)
            .where(*filters)
            .order_by(Job.queued_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def stale_jobs(self, now: Optional[datetime] = None) -> List[Job]:
        """Processing jobs with no status update within the stale timeout."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.stale_job_timeout)
        result = await self.db.execute(
            select(Job).where(
                Job.status == JobStatus.PROCESSING,
                or_(
                    Job.last_event_at < cutoff,
                    Job.last_event_at.is_(None) & (Job.started_at < cutoff),
                ),
            )
        )
        return list(result.scalars().all())

