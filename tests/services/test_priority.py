"""Tests for priority scoring."""

from datetime import datetime, timedelta, timezone
import pytest

from mockup_queue.core.exceptions import JobValidationError
from mockup_queue.services.priority import (
    PriorityConfig,
    base_priority,
    calculate_priority,
    effective_priority,
    wait_boost,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def config() -> PriorityConfig:
    return PriorityConfig()


class TestBasePriority:
    """Tier base plus job type adjustment."""

    def test_tiers_strictly_ordered(self, config):
        """Test each tier scores above the one below it."""
        scores = [base_priority(tier, "generation", config) for tier in ("starter", "growth", "pro", "enterprise")]
        assert scores == sorted(scores)
        assert len(set(scores)) == 4

    def test_job_type_adjustment(self, config):
        """Test job types shift the base score."""
        assert base_priority("pro", "variation", config) == base_priority("pro", "generation", config) + 10

    def test_unknown_job_type_gets_no_adjustment(self, config):
        """Test an unknown job type scores as the tier base."""
        assert base_priority("pro", "mystery", config) == 300

    def test_unknown_tier(self, config):
        """Test an unknown tier is rejected."""
        with pytest.raises(JobValidationError):
            base_priority("platinum", "generation", config)


class TestWaitBoost:
    """Starvation protection."""

    def test_no_boost_before_first_interval(self, config):
        """Test no boost before one interval has passed."""
        assert wait_boost(NOW - timedelta(seconds=299), NOW, config) == 0

    def test_one_step_per_full_interval(self, config):
        """Test the boost grows one step per full interval."""
        assert wait_boost(NOW - timedelta(seconds=300), NOW, config) == 1
        assert wait_boost(NOW - timedelta(minutes=16), NOW, config) == 3

    def test_boost_is_capped(self, config):
        """Test the boost stops at its cap."""
        assert wait_boost(NOW - timedelta(days=2), NOW, config) == config.wait_boost_max

    def test_future_queued_at_gets_no_boost(self, config):
        """Test a queue time in the future earns no boost."""
        assert wait_boost(NOW + timedelta(minutes=10), NOW, config) == 0

    def test_disabled_interval(self):
        """Test a zero interval disables the boost."""
        assert wait_boost(NOW - timedelta(days=1), NOW, PriorityConfig(wait_interval=0)) == 0


class TestCalculatePriority:
    """Full score."""

    def test_fresh_job(self, config):
        """Test a fresh job scores its base priority."""
        assert calculate_priority("growth", "upscale", NOW, NOW, config) == 210

    def test_old_low_tier_job_cannot_pass_fresh_higher_tier(self, config):
        """Test waiting never lifts a tier above the next one."""
        starved = calculate_priority("starter", "generation", NOW - timedelta(days=1), NOW, config)
        fresh = calculate_priority("growth", "generation", NOW, NOW, config)
        assert starved < fresh

    def test_ceiling(self):
        """Test scores never exceed the ceiling."""
        config = PriorityConfig(ceiling=402)
        old = NOW - timedelta(hours=1)
        assert calculate_priority("enterprise", "variation", old, NOW, config) == 402

    def test_effective_priority_adds_boost(self, config):
        """Test effective priority adds the current boost."""
        queued_at = NOW - timedelta(minutes=10)
        assert effective_priority(100, queued_at, NOW, config) == 102
        assert effective_priority(499, queued_at, NOW, config) == config.ceiling
