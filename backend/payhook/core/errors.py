"""Error taxonomy for webhook processing

Only failures worth a redelivery surface as 5xx. Authentication and payload
problems are the caller's fault and are answered with 400 without retrying.
"""
from typing import Optional


class WebhookError(Exception):
    """Base class for every error raised by the webhook pipeline"""

    status_code: int = 500
    retryable: bool = True
    reason: str = "processing_error"

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class NonRetryableError(WebhookError):
    """Raised for failures that a retry inside the same request cannot fix"""

    retryable = False


class AuthenticationError(NonRetryableError):
    """Missing, invalid or stale webhook signature"""

    status_code = 400
    reason = "invalid_signature"


class MalformedPayloadError(NonRetryableError):
    """Body is not a well-formed provider event"""

    status_code = 400
    reason = "malformed_payload"


class ConfigurationError(NonRetryableError):
    """Server-side configuration is missing (e.g. webhook secret)"""

    status_code = 500
    reason = "configuration"


class DomainNotFoundError(NonRetryableError):
    """The domain record an event refers to does not exist"""

    reason = "domain_not_found"


class OperationTimeoutError(WebhookError, TimeoutError):
    """An operation exceeded its time budget"""

    reason = "timeout"

    def __init__(self, operation: str, duration_ms: int):
        super().__init__(
            f"{operation} timed out after {duration_ms}ms",
            detail={"operation": operation, "timeout_ms": duration_ms},
        )
        self.operation = operation
        self.duration_ms = duration_ms


def is_retryable(error: BaseException) -> bool:
    """Whether an error may be retried by the retry orchestrator"""
    if isinstance(error, WebhookError):
        return error.retryable
    return True


def failure_reason(error: BaseException) -> str:
    """Short label used for metrics and log detail"""
    if isinstance(error, WebhookError):
        return error.reason
    if isinstance(error, TimeoutError):
        return "timeout"
    return "unexpected"
