"""Priority scoring for queued generation jobs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict

from mockup_queue.core.config import Settings
from mockup_queue.core.exceptions import JobValidationError


@dataclass(frozen=True)
class PriorityConfig:
    """Tunable inputs to the priority score."""

    tier_base: Dict[str, int] = field(
        default_factory=lambda: {"starter": 100, "growth": 200, "pro": 300, "enterprise": 400}
    )
    type_adjustment: Dict[str, int] = field(
        default_factory=lambda: {"generation": 0, "variation": 10, "upscale": 10, "batch": 0}
    )
    wait_interval: int = 300
    wait_step: int = 1
    wait_boost_max: int = 5
    ceiling: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriorityConfig":
        return cls(
            tier_base=dict(settings.tier_base_priority),
            type_adjustment=dict(settings.job_type_priority_adjustment),
            wait_interval=settings.priority_wait_interval,
            wait_step=settings.priority_wait_step,
            wait_boost_max=settings.priority_wait_boost_max,
            ceiling=settings.priority_ceiling,
        )


def base_priority(tier: str, job_type: str, config: PriorityConfig) -> int:
    """Tier base plus job type adjustment, before any wait boost.

    Raises:
        JobValidationError: If the tier is unknown
    """
    if tier not in config.tier_base:
        raise JobValidationError(f"Unknown tier: {tier}", {"tier": tier})
    job_type = getattr(job_type, "value", job_type)
    return config.tier_base[tier] + config.type_adjustment.get(job_type, 0)


def wait_boost(queued_at: datetime, now: datetime, config: PriorityConfig) -> int:
    """Priority earned by waiting, capped at the configured maximum."""
    if config.wait_interval <= 0:
        return 0
    waited = max(0.0, (now - queued_at).total_seconds())
    return min(int(waited // config.wait_interval) * config.wait_step, config.wait_boost_max)


def calculate_priority(
    tier: str,
    job_type: str,
    queued_at: datetime,
    now: datetime,
    config: PriorityConfig,
) -> int:
    """Compute a job's priority score.

    Args:
        tier: Subscription tier
        job_type: Kind of generation
        queued_at: Admission time
        now: Evaluation time
        config: Priority configuration

    Returns:
        Integer score; higher is dispatched first
    """
    score = base_priority(tier, job_type, config) + wait_boost(queued_at, now, config)
    return min(score, config.ceiling)


def effective_priority(
    stored: int,
    queued_at: datetime,
    now: datetime,
    config: PriorityConfig,
) -> int:
    """Stored admission priority plus the wait boost, clamped to the ceiling."""
    return min(stored + wait_boost(queued_at, now, config), config.ceiling)
