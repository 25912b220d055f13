"""Generation lifecycle state machine.

    queued --dispatch--> processing --succeed--> completed
                         processing --progress--> processing
                         processing --fail_retry--> queued
                         processing --fail_terminal--> failed
    queued|processing --cancel--> cancelled

Handlers reload the job first and do nothing once it is terminal. Status
writes are compare-and-set on the expected current status, so of two racing
handlers only one applies its transition and its credit side effect.

Every transaction that writes a user's rows takes them in one order: the
credit account (``lock_account``), then the job, then its reservation.
Dispatches additionally hold a transaction-scoped advisory lock on PostgreSQL
while they check and claim global capacity, taken right after the account.
"""

from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from uuid import UUID
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.core.config import Settings
from mockup_queue.core.exceptions import (
    InternalTransitionError,
    InvalidTransition,
    JobNotFound,
    ProviderDispatchFailure,
)
from mockup_queue.core.logging import get_logger
from mockup_queue.core.metrics import JOB_PROCESSING_SECONDS, JOB_TRANSITIONS
from mockup_queue.core.timezone import utcnow
from mockup_queue.models import Artifact, ErrorCategory, Job, JobStatus
from mockup_queue.services.queue_manager import JobQueueManager
from mockup_queue.services.replicate_service import ReplicateService
from mockup_queue.services.retry_policy import backoff_delay, should_retry
from mockup_queue.services.storage_service import StorageService

logger = get_logger(__name__)

_DISPATCH_LOCK_KEY = 7_300_421


class LifecycleEvent(str, Enum):
    """Events that drive job status changes."""
    DISPATCH = "dispatch"
    PROGRESS = "progress"
    SUCCEED = "succeed"
    FAIL_RETRY = "fail_retry"
    FAIL_TERMINAL = "fail_terminal"
    CANCEL = "cancel"


TRANSITIONS = {
    (JobStatus.QUEUED, LifecycleEvent.DISPATCH): JobStatus.PROCESSING,
    (JobStatus.PROCESSING, LifecycleEvent.PROGRESS): JobStatus.PROCESSING,
    (JobStatus.PROCESSING, LifecycleEvent.SUCCEED): JobStatus.COMPLETED,
    (JobStatus.PROCESSING, LifecycleEvent.FAIL_RETRY): JobStatus.QUEUED,
    (JobStatus.PROCESSING, LifecycleEvent.FAIL_TERMINAL): JobStatus.FAILED,
    (JobStatus.QUEUED, LifecycleEvent.CANCEL): JobStatus.CANCELLED,
    (JobStatus.PROCESSING, LifecycleEvent.CANCEL): JobStatus.CANCELLED,
}


def next_status(current: JobStatus, event: LifecycleEvent) -> JobStatus:
    """Look up the target status of a transition.

    Raises:
        InvalidTransition: If the event is not allowed from ``current``
    """
    try:
        return TRANSITIONS[(JobStatus(current), LifecycleEvent(event))]
    except KeyError:
        raise InvalidTransition(
            f"Cannot apply {LifecycleEvent(event).value} to a {JobStatus(current).value} job",
            {"status": JobStatus(current).value, "event": LifecycleEvent(event).value},
        ) from None


class GenerationLifecycle:
    """Apply lifecycle events to jobs with their credit side effects.

    Unlike the credit ledger, the lifecycle owns its transactions: each
    handler commits the status change together with the ledger entries it
    caused.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        provider: Optional[ReplicateService] = None,
        storage: Optional[StorageService] = None,
        rng: Optional[Callable[[float, float], float]] = None,
        auto_dispatch: bool = True,
    ):
        self.db = db
        self.settings = settings
        self.queue = JobQueueManager(db, settings)
        self.ledger = self.queue.ledger
        self.provider = provider or ReplicateService(settings)
        self._storage = storage
        self.rng = rng
        self.auto_dispatch = auto_dispatch

    @property
    def storage(self) -> StorageService:
        if self._storage is None:
            self._storage = StorageService(self.settings)
        return self._storage

    # Dispatch

    async def dispatch_next(self, user_id: Optional[str] = None) -> Optional[Job]:
        """Claim the next eligible job and submit it to the render provider.

        The dequeue, the concurrency re-check and the claim happen inside the
        owner's critical section; the provider call happens after the claim
        is committed. A synchronous provider failure is handled like a
        processing failure and consumes an attempt.

        Args:
            user_id: Restrict selection to one user's jobs

        Returns:
            The dispatched job, or None if nothing could be dispatched
        """
        now = utcnow()

        if await self.queue.processing_count() >= self.settings.dispatch_capacity:
            return None

        if user_id is None:
            user_id = await self._next_dispatchable_user(now)
            if user_id is None:
                return None

        await self.ledger.lock_account(user_id)
        await self._lock_dispatch()

        job = await self.queue.dequeue_next(user_id, now)
        if job is None or not await self._has_capacity(job):
            # Ends the critical section without expiring loaded jobs
            await self.db.commit()
            return None

        claimed = await self._compare_and_set(
            job,
            JobStatus.QUEUED,
            LifecycleEvent.DISPATCH,
            started_at=now,
            last_event_at=now,
            next_retry_at=None,
        )
        await self.db.commit()
        if not claimed:
            return None

        logger.info(
            "Job dispatched",
            job_id=str(job.id),
            user_id=job.user_id,
            attempt=job.attempt,
            priority=job.priority
        )
        return await self._submit(job)

    async def dispatch_available(
        self,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Job]:
        """Dispatch jobs until capacity, eligibility or ``limit`` runs out.

        Returns only the jobs that reached the provider. A job whose dispatch
        failed has already been re-queued with backoff or failed, and the loop
        moves on to the next candidate.
        """
        dispatched: List[Job] = []
        while limit is None or len(dispatched) < limit:
            job = await self.dispatch_next(user_id)
            if job is None:
                break
            if job.status == JobStatus.PROCESSING:
                dispatched.append(job)
        return dispatched

    async def _next_dispatchable_user(self, now) -> Optional[str]:
        """Owner of the best eligible job among users below their limit."""
        blocked = set()
        while True:
            candidate = await self.queue.dequeue_next(None, now, exclude_user_ids=blocked)
            if candidate is None:
                return None
            if await self._has_capacity(candidate):
                return candidate.user_id
            blocked.add(candidate.user_id)

    async def _lock_dispatch(self) -> None:
        """Serialize global capacity checks across users until commit.

        SQLite admits one writer at a time, so only PostgreSQL needs the lock.
        """
        if self.db.get_bind().dialect.name == "postgresql":
            await self.db.execute(select(func.pg_advisory_xact_lock(_DISPATCH_LOCK_KEY)))

    async def _has_capacity(self, job: Job) -> bool:
        user_limit = self.settings.tier_concurrency_limits.get(job.tier, 1)
        if await self.queue.processing_count(job.user_id) >= user_limit:
            return False
        return await self.queue.processing_count() < self.settings.dispatch_capacity

    async def _submit(self, job: Job) -> Job:
        try:
            prediction_id = await self.provider.create_prediction(
                self._provider_input(job),
                webhook_url=self.settings.webhook_url,
            )
        except ProviderDispatchFailure as e:
            logger.warning(
                "Provider dispatch failed",
                job_id=str(job.id),
                category=e.category.value,
                error=e.message
            )
            return await self.fail(job.id, e.category, e.message, follow_up=False)
        except Exception as e:
            logger.error("Unexpected dispatch error", job_id=str(job.id), error=str(e))
            return await self._fail_terminal(
                job.id, ErrorCategory.INTERNAL, f"Dispatch error: {e}", follow_up=False
            )

        result = await self.db.execute(
            update(Job)
            .where(
                Job.id == job.id,
                Job.status == JobStatus.PROCESSING,
                Job.provider_job_id.is_(None),
            )
            .values(provider_job_id=prediction_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(job)

        if result.rowcount != 1:
            logger.warning(
                "Job changed before prediction id was recorded",
                job_id=str(job.id),
                prediction_id=prediction_id,
                status=job.status
            )
            if job.status == JobStatus.CANCELLED:
                await self.provider.cancel_prediction(prediction_id)
        else:
            logger.info("Prediction recorded", job_id=str(job.id), prediction_id=prediction_id)
        return job

    @staticmethod
    def _provider_input(job: Job) -> Dict[str, Any]:
        metadata = job.job_metadata or {}
        input_data = {
            "prompt": metadata.get("prompt"),
            "negative_prompt": metadata.get("negative_prompt"),
            "image": metadata.get("product_image"),
            "quality": metadata.get("quality"),
        }
        return {key: value for key, value in input_data.items() if value is not None}

    # Provider notifications

    async def progress(
        self,
        job_id: UUID,
        provider_status: Optional[str] = None,
        logs: Optional[str] = None,
    ) -> Job:
        """Record an intermediate provider update; status does not change."""
        job = await self._load(job_id)
        if job.is_terminal:
            return self._ignore(job, LifecycleEvent.PROGRESS)
        next_status(job.status, LifecycleEvent.PROGRESS)

        now = utcnow()
        metadata = dict(job.job_metadata or {})
        if provider_status:
            metadata["provider_status"] = provider_status
        if logs:
            metadata["logs"] = logs[-4000:]
        metadata["last_progress_at"] = now.isoformat()

        await self._compare_and_set(
            job,
            JobStatus.PROCESSING,
            LifecycleEvent.PROGRESS,
            job_metadata=metadata,
            last_event_at=now,
        )
        await self.db.commit()
        return job

    async def succeed(
        self,
        job_id: UUID,
        outputs: Union[str, Sequence[str], None],
        metrics: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """Persist outputs, settle credits and complete the job.

        Any unexpected error rolls the attempt back and force-fails the job
        with a full refund instead of propagating to the caller.
        """
        job = await self._load(job_id)
        if job.is_terminal:
            return self._ignore(job, LifecycleEvent.SUCCEED)
        next_status(job.status, LifecycleEvent.SUCCEED)

        user_id = job.user_id
        uploaded: List[str] = []
        try:
            await self._persist_outputs(job, outputs, uploaded)

            now = utcnow()
            metadata = dict(job.job_metadata or {})
            metadata["provider_status"] = "succeeded"
            if metrics and metrics.get("predict_time") is not None:
                metadata["predict_time"] = metrics["predict_time"]

            actual = job.estimated_credits
            await self.ledger.lock_account(user_id)
            reservation = await self.ledger.get_reservation(job.reservation_id)
            completed = await self._compare_and_set(
                job,
                JobStatus.PROCESSING,
                LifecycleEvent.SUCCEED,
                actual_credits=actual,
                completed_at=now,
                last_event_at=now,
                job_metadata=metadata,
            )
            if not completed:
                await self.db.rollback()
                await self._discard_uploads(uploaded)
                return await self._load(job_id)

            await self.ledger.settle(reservation, actual)
            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            await self._discard_uploads(uploaded)
            error = InternalTransitionError(f"Failed to complete job: {e}")
            logger.error(
                "Completion failed, force-failing job",
                job_id=str(job_id),
                error_code=error.error_code,
                error=str(e)
            )
            return await self._fail_terminal(job_id, ErrorCategory.INTERNAL, error.message)

        self._observe_terminal(job)
        logger.info(
            "Job completed",
            job_id=str(job.id),
            user_id=user_id,
            actual_credits=actual,
            outputs=len(uploaded),
            duration=job.duration_seconds
        )
        await self._follow_up(user_id)
        return job

    async def _persist_outputs(
        self,
        job: Job,
        outputs: Union[str, Sequence[str], None],
        uploaded: List[str],
    ) -> List[Artifact]:
        urls = [outputs] if isinstance(outputs, str) else list(outputs or [])
        if not urls:
            raise ValueError("Provider reported success without output")

        artifacts = []
        for index, url in enumerate(urls):
            content, content_type = await self.storage.download_output(str(url))
            stored = await self.storage.store_output(job.id, index, content, content_type)
            uploaded.append(stored.storage_path)

            artifact = Artifact(
                job_id=job.id,
                output_index=index,
                source_url=str(url) if not str(url).startswith("data:") else "data:",
                storage_path=stored.storage_path,
                storage_url=stored.public_url,
                storage_provider=self.storage.storage_type,
                bucket_name=self.storage.bucket_name,
                mime_type=stored.mime_type,
                file_size_bytes=stored.size_bytes,
                width=stored.width,
                height=stored.height,
            )
            self.db.add(artifact)
            artifacts.append(artifact)
        return artifacts

    async def _discard_uploads(self, uploaded: List[str]) -> None:
        for path in uploaded:
            await self.storage.delete_file(path)

    async def fail(
        self,
        job_id: UUID,
        category: ErrorCategory,
        message: str,
        follow_up: bool = True,
    ) -> Job:
        """Handle a failed attempt: re-queue with backoff or fail for good.

        A retry keeps the reservation and clears the provider correlation id;
        a terminal failure releases the reservation.
        """
        job = await self._load(job_id)
        if job.is_terminal:
            return self._ignore(job, LifecycleEvent.FAIL_RETRY)
        next_status(job.status, LifecycleEvent.FAIL_RETRY)

        category = ErrorCategory(category)
        if not should_retry(category, job.attempt, job.max_attempts):
            return await self._fail_terminal(job_id, category, message, follow_up=follow_up)

        now = utcnow()
        delay = backoff_delay(
            job.attempt,
            base=self.settings.retry_backoff_base,
            maximum=self.settings.retry_backoff_max,
            multiplier=self.settings.retry_backoff_multiplier,
            jitter_ratio=self.settings.retry_jitter_ratio,
            rng=self.rng,
        )
        metadata = dict(job.job_metadata or {})
        if job.provider_job_id:
            metadata["previous_provider_job_ids"] = (
                list(metadata.get("previous_provider_job_ids", [])) + [job.provider_job_id]
            )
        failed_attempt = job.attempt

        requeued = await self._compare_and_set(
            job,
            JobStatus.PROCESSING,
            LifecycleEvent.FAIL_RETRY,
            attempt=failed_attempt + 1,
            next_retry_at=now + timedelta(seconds=delay),
            provider_job_id=None,
            started_at=None,
            error_category=category,
            error_message=message[:2000],
            job_metadata=metadata,
            last_event_at=now,
        )
        await self.db.commit()
        if not requeued:
            return await self._load(job_id)

        logger.info(
            "Job re-queued for retry",
            job_id=str(job.id),
            failed_attempt=failed_attempt,
            max_attempts=job.max_attempts,
            category=category.value,
            retry_in=round(delay, 2)
        )
        if follow_up:
            await self._follow_up(job.user_id)
        return job

    async def _fail_terminal(
        self,
        job_id: UUID,
        category: ErrorCategory,
        message: str,
        follow_up: bool = True,
    ) -> Job:
        job = await self._load(job_id)
        if job.is_terminal:
            return self._ignore(job, LifecycleEvent.FAIL_TERMINAL)
        next_status(job.status, LifecycleEvent.FAIL_TERMINAL)

        now = utcnow()
        await self.ledger.lock_account(job.user_id)
        failed = await self._compare_and_set(
            job,
            JobStatus.PROCESSING,
            LifecycleEvent.FAIL_TERMINAL,
            error_category=ErrorCategory(category),
            error_message=message[:2000] or "Generation failed",
            completed_at=now,
            last_event_at=now,
        )
        if not failed:
            await self.db.rollback()
            return await self._load(job_id)

        reservation = await self.ledger.get_reservation(job.reservation_id)
        await self.ledger.release(reservation, f"Refund for failed job: {message[:200]}")
        await self.db.commit()

        self._observe_terminal(job)
        logger.warning(
            "Job failed",
            job_id=str(job.id),
            user_id=job.user_id,
            attempt=job.attempt,
            category=ErrorCategory(category).value,
            error=message
        )
        if follow_up:
            await self._follow_up(job.user_id)
        return job

    async def cancel(self, job_id: UUID, reason: str = "Cancelled by user") -> Job:
        """Cancel a queued or processing job and release its credits."""
        job = await self._load(job_id)
        if job.is_terminal:
            return self._ignore(job, LifecycleEvent.CANCEL)
        current = JobStatus(job.status)
        next_status(current, LifecycleEvent.CANCEL)
        prediction_id = job.provider_job_id

        now = utcnow()
        await self.ledger.lock_account(job.user_id)
        cancelled = await self._compare_and_set(
            job,
            current,
            LifecycleEvent.CANCEL,
            error_message=reason,
            completed_at=now,
            last_event_at=now,
        )
        if not cancelled:
            await self.db.rollback()
            return await self._load(job_id)

        reservation = await self.ledger.get_reservation(job.reservation_id)
        await self.ledger.release(reservation, f"Refund for cancelled job: {reason}")
        await self.db.commit()

        logger.info("Job cancelled", job_id=str(job.id), user_id=job.user_id, reason=reason)

        if prediction_id:
            await self.provider.cancel_prediction(prediction_id)
        if current == JobStatus.PROCESSING:
            self._observe_terminal(job)
        await self._follow_up(job.user_id)
        return job

    async def expire_stale(self, now=None) -> int:
        """Force-fail processing jobs that stopped receiving updates.

        Returns:
            Number of jobs failed
        """
        expired = 0
        for job in await self.queue.stale_jobs(now):
            prediction_id = job.provider_job_id
            result = await self._fail_terminal(
                job.id,
                ErrorCategory.TIMEOUT,
                f"No status update from provider within {self.settings.stale_job_timeout} seconds",
            )
            if result.status == JobStatus.FAILED and result.error_category == ErrorCategory.TIMEOUT:
                expired += 1
                if prediction_id:
                    await self.provider.cancel_prediction(prediction_id)

        if expired:
            logger.warning("Expired stale jobs", count=expired)
        return expired

    # Helpers

    async def _load(self, job_id: UUID) -> Job:
        job = await self.queue.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found", {"job_id": str(job_id)})
        return job

    async def _compare_and_set(
        self,
        job: Job,
        expected: JobStatus,
        event: LifecycleEvent,
        **values: Any,
    ) -> bool:
        """Apply a transition only if the job still has ``expected`` status."""
        target = next_status(expected, event)
        result = await self.db.execute(
            update(Job)
            .where(Job.id == job.id, Job.status == expected)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(job)

        if result.rowcount != 1:
            logger.info(
                "Transition lost to a concurrent update",
                job_id=str(job.id),
                transition=event.value,
                expected=expected.value,
                status=job.status
            )
            return False

        JOB_TRANSITIONS.labels(event=event.value, status=target.value).inc()
        return True

    def _ignore(self, job: Job, event: LifecycleEvent) -> Job:
        logger.info(
            "Ignoring event for terminal job",
            job_id=str(job.id),
            transition=event.value,
            status=job.status
        )
        return job

    @staticmethod
    def _observe_terminal(job: Job) -> None:
        if job.duration_seconds is not None:
            JOB_PROCESSING_SECONDS.observe(job.duration_seconds)

    async def _follow_up(self, user_id: str) -> None:
        """Start the user's next queued job once a processing slot frees up."""
        if not self.auto_dispatch:
            return
        try:
            await self.dispatch_available(user_id)
        except Exception as e:
            await self.db.rollback()
            logger.error("Follow-up dispatch failed", user_id=user_id, error=str(e))
