"""Domain error hierarchy for the generation queue.

- QueueError: base for every error the queue raises on purpose
- Admission errors are returned synchronously and never create jobs or reservations
- Provider errors carry an ErrorCategory consumed by the retry policy
- Webhook errors are rejected at the ingress boundary without touching any job
"""

from typing import Any, Dict, Optional

from mockup_queue.models.job import ErrorCategory


class QueueError(Exception):
    """Base exception for queue errors."""

    error_code: str = "QUEUE_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


# Admission errors
class AdmissionError(QueueError):
    """Job admission rejected."""

    status_code = 400


class InsufficientCredits(AdmissionError):
    """Balance does not cover the requested amount."""

    error_code = "INSUFFICIENT_CREDITS"
    status_code = 402


class ConcurrencyLimitExceeded(AdmissionError):
    """Admission would exceed the tier's queued+processing ceiling."""

    error_code = "CONCURRENCY_LIMIT_EXCEEDED"
    status_code = 429


class JobValidationError(AdmissionError):
    """Job specs are invalid."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


# Provider errors
class ProviderError(QueueError):
    """Render provider failure with a retry category."""

    error_code = "PROVIDER_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.EXTERNAL_SERVICE,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.category = category


class ProviderDispatchFailure(ProviderError):
    """Synchronous failure while submitting a prediction."""

    error_code = "PROVIDER_DISPATCH_FAILURE"


class ProviderProcessingFailure(ProviderError):
    """Provider reported an asynchronous processing failure."""

    error_code = "PROVIDER_PROCESSING_FAILURE"


# Webhook errors
class WebhookError(QueueError):
    """Inbound notification rejected."""

    status_code = 400


class UnknownCorrelationId(WebhookError):
    """No job is associated with the provider job id."""

    error_code = "UNKNOWN_CORRELATION_ID"
    status_code = 404


class MalformedWebhook(WebhookError):
    """Payload failed validation."""

    error_code = "MALFORMED_WEBHOOK"
    status_code = 400


class InvalidWebhookSignature(WebhookError):
    """Signature missing, stale or incorrect."""

    error_code = "INVALID_SIGNATURE"
    status_code = 401


# Lifecycle errors
class InvalidTransition(QueueError):
    """Event is not allowed from the job's current status."""

    error_code = "INVALID_TRANSITION"
    status_code = 409


class InternalTransitionError(QueueError):
    """A transition handler failed; the job is force-failed with a refund."""

    error_code = "INTERNAL_TRANSITION_ERROR"
    status_code = 500


class JobNotFound(QueueError):
    """Job does not exist or is not visible to the caller."""

    error_code = "JOB_NOT_FOUND"
    status_code = 404


class AccountNotFound(QueueError):
    """Credit account does not exist."""

    error_code = "ACCOUNT_NOT_FOUND"
    status_code = 404


# Membership errors
class MembershipError(QueueError):
    """Caller could not be authenticated."""

    error_code = "UNAUTHORIZED"
    status_code = 401
