"""Retry decisions, backoff and failure classification.

Failures are sorted into categories; only transient categories are retried:

- network, timeout, external_service, rate_limit: retry while attempts remain
- validation, authorization, configuration, internal: fail immediately
"""

import random
import re
from typing import Callable, Optional

import httpx

from mockup_queue.models.job import ErrorCategory

RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.TIMEOUT,
    ErrorCategory.EXTERNAL_SERVICE,
    ErrorCategory.RATE_LIMIT,
})

_VALIDATION_KEYWORDS = ("content policy", "nsfw", "safety", "invalid input", "validation")

# Status codes only count as standalone numbers, never inside "1500" or "4035"
_RATE_LIMIT_STATUS = re.compile(r"\b429\b")
_SERVER_STATUS = re.compile(r"\b50[0234]\b")
_AUTH_STATUS = re.compile(r"\b40[13]\b")
_VALIDATION_STATUS = re.compile(r"\b422\b")


def should_retry(category: ErrorCategory, attempt: int, max_attempts: int) -> bool:
    """Whether a failed attempt should be re-queued.

    Args:
        category: Failure category
        attempt: The attempt that just failed (1-based)
        max_attempts: Attempt budget for the job

    Returns:
        True if the category is transient and budget remains
    """
    return category in RETRYABLE_CATEGORIES and attempt < max_attempts


def backoff_delay(
    attempt: int,
    base: float,
    maximum: float,
    multiplier: float = 2.0,
    jitter_ratio: float = 0.2,
    rng: Optional[Callable[[float, float], float]] = None,
) -> float:
    """Seconds to wait before the next attempt.

    The raw delay grows geometrically from ``base`` and is perturbed by up to
    ``jitter_ratio`` of itself in either direction, then capped at ``maximum``.

    Args:
        attempt: The attempt that just failed (1-based)
        base: Delay after the first failure
        maximum: Upper bound on the delay
        multiplier: Growth factor per attempt
        jitter_ratio: Fraction of the raw delay used as jitter bound
        rng: ``uniform(a, b)`` source, injectable for deterministic tests

    Returns:
        Delay in seconds, never negative
    """
    uniform = rng or random.uniform
    raw = base * (multiplier ** max(0, attempt - 1))
    jitter = raw * uniform(-jitter_ratio, jitter_ratio) if jitter_ratio > 0 else 0.0
    return max(0.0, min(raw + jitter, maximum))


def classify_error(message: Optional[str]) -> ErrorCategory:
    """Categorize provider failure text.

    Args:
        message: Error reported by the provider

    Returns:
        Error category; unrecognized failures count as external service errors
    """
    if not message:
        return ErrorCategory.EXTERNAL_SERVICE

    text = message.lower()

    if any(keyword in text for keyword in _VALIDATION_KEYWORDS) or _VALIDATION_STATUS.search(text):
        return ErrorCategory.VALIDATION

    if "timeout" in text or "timed out" in text:
        return ErrorCategory.TIMEOUT

    if _RATE_LIMIT_STATUS.search(text) or "rate limit" in text or "too many requests" in text:
        return ErrorCategory.RATE_LIMIT

    if _SERVER_STATUS.search(text) or "unavailable" in text:
        return ErrorCategory.EXTERNAL_SERVICE

    if _AUTH_STATUS.search(text) or "unauthorized" in text or "forbidden" in text:
        return ErrorCategory.AUTHORIZATION

    if "connection" in text or "network" in text or "dns" in text:
        return ErrorCategory.NETWORK

    return ErrorCategory.EXTERNAL_SERVICE


def classify_http_error(exc: Exception) -> ErrorCategory:
    """Categorize an httpx failure from a provider call."""
    if isinstance(exc, httpx.TimeoutException):
        return ErrorCategory.TIMEOUT

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ErrorCategory.RATE_LIMIT
        if status in (401, 403):
            return ErrorCategory.AUTHORIZATION
        if status in (400, 404, 422):
            return ErrorCategory.VALIDATION
        return ErrorCategory.EXTERNAL_SERVICE

    if isinstance(exc, httpx.TransportError):
        return ErrorCategory.NETWORK

    return classify_error(str(exc))
