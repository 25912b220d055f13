"""Tests for retry decisions and failure classification."""

import httpx
import pytest

from mockup_queue.models import ErrorCategory
from mockup_queue.services.retry_policy import (
    RETRYABLE_CATEGORIES,
    backoff_delay,
    classify_error,
    classify_http_error,
    should_retry,
)


class TestShouldRetry:
    """Retry decision."""

    @pytest.mark.parametrize("category", sorted(RETRYABLE_CATEGORIES, key=lambda c: c.value))
    def test_transient_categories_retry_within_budget(self, category):
        """Test transient errors retry while attempts remain."""
        assert should_retry(category, attempt=1, max_attempts=3)
        assert should_retry(category, attempt=2, max_attempts=3)
        assert not should_retry(category, attempt=3, max_attempts=3)

    @pytest.mark.parametrize("category", [
        ErrorCategory.VALIDATION,
        ErrorCategory.AUTHORIZATION,
        ErrorCategory.CONFIGURATION,
        ErrorCategory.INTERNAL,
    ])
    def test_permanent_categories_never_retry(self, category):
        """Test permanent errors never retry."""
        assert not should_retry(category, attempt=1, max_attempts=3)


class TestBackoffDelay:
    """Exponential backoff with bounded jitter."""

    def test_exponential_growth_without_jitter(self):
        """Test the delay doubles per attempt."""
        delays = [backoff_delay(n, base=30, maximum=10_000, jitter_ratio=0) for n in (1, 2, 3)]
        assert delays == [30, 60, 120]

    def test_capped_at_maximum(self):
        """Test the delay stops at the maximum."""
        assert backoff_delay(10, base=30, maximum=600, jitter_ratio=0) == 600

    def test_jitter_bounds(self):
        """Test jitter stays within its fraction of the delay."""
        low = backoff_delay(2, base=30, maximum=600, jitter_ratio=0.2, rng=lambda a, b: a)
        high = backoff_delay(2, base=30, maximum=600, jitter_ratio=0.2, rng=lambda a, b: b)
        assert low == pytest.approx(48.0)
        assert high == pytest.approx(72.0)

    def test_random_jitter_stays_in_range(self):
        """Test random jitter stays in range."""
        for _ in range(50):
            delay = backoff_delay(1, base=10, maximum=600, jitter_ratio=0.3)
            assert 7.0 <= delay <= 13.0

    def test_never_negative(self):
        """Test the delay is never negative."""
        assert backoff_delay(1, base=0, maximum=600) == 0.0


class TestClassifyError:
    """Keyword classification of provider failure text."""

    @pytest.mark.parametrize("message,expected", [
        ("Prediction timed out after 300s", ErrorCategory.TIMEOUT),
        ("Request timeout", ErrorCategory.TIMEOUT),
        ("429 Too Many Requests", ErrorCategory.RATE_LIMIT),
        ("rate limit exceeded", ErrorCategory.RATE_LIMIT),
        ("503 Service Unavailable", ErrorCategory.EXTERNAL_SERVICE),
        ("401 Unauthorized", ErrorCategory.AUTHORIZATION),
        ("NSFW content detected", ErrorCategory.VALIDATION),
        ("Invalid input: image must be square", ErrorCategory.VALIDATION),
        ("Connection reset by peer", ErrorCategory.NETWORK),
        ("CUDA out of memory", ErrorCategory.EXTERNAL_SERVICE),
    ])
    def test_keywords(self, message, expected):
        """Test error messages classify by keyword."""
        assert classify_error(message) == expected

    @pytest.mark.parametrize("message", [
        "Invalid input: width must be at most 1500",
        "Validation failed: seed 4035 out of range",
        "NSFW content detected (code 503)",
    ])
    def test_validation_wins_over_embedded_numbers(self, message):
        """Test numbers inside validation messages do not look like HTTP statuses."""
        assert classify_error(message) == ErrorCategory.VALIDATION

    @pytest.mark.parametrize("message,expected", [
        ("Model produced 1500 tokens then stopped", ErrorCategory.EXTERNAL_SERVICE),
        ("Worker 4013 lost connection", ErrorCategory.NETWORK),
        ("upstream returned 502", ErrorCategory.EXTERNAL_SERVICE),
        ("HTTP 403 from weights host", ErrorCategory.AUTHORIZATION),
    ])
    def test_status_codes_match_whole_numbers(self, message, expected):
        """Test status codes are recognised only as standalone numbers."""
        assert classify_error(message) == expected

    def test_missing_message(self):
        """Test an empty message classifies as an external error."""
        assert classify_error(None) == ErrorCategory.EXTERNAL_SERVICE
        assert classify_error("") == ErrorCategory.EXTERNAL_SERVICE


class TestClassifyHttpError:
    """Classification of httpx failures."""

    @staticmethod
    def _status_error(status: int) -> httpx.HTTPStatusError:
        request = httpx.Request("POST", "https://api.replicate.com/v1/predictions")
        response = httpx.Response(status, request=request)
        return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)

    @pytest.mark.parametrize("status,expected", [
        (429, ErrorCategory.RATE_LIMIT),
        (401, ErrorCategory.AUTHORIZATION),
        (403, ErrorCategory.AUTHORIZATION),
        (422, ErrorCategory.VALIDATION),
        (500, ErrorCategory.EXTERNAL_SERVICE),
        (503, ErrorCategory.EXTERNAL_SERVICE),
    ])
    def test_status_codes(self, status, expected):
        """Test HTTP status codes map to categories."""
        assert classify_http_error(self._status_error(status)) == expected

    def test_timeout(self):
        """Test timeouts classify as timeout."""
        assert classify_http_error(httpx.ReadTimeout("slow")) == ErrorCategory.TIMEOUT

    def test_transport_error(self):
        """Test transport errors classify as network."""
        assert classify_http_error(httpx.ConnectError("refused")) == ErrorCategory.NETWORK
