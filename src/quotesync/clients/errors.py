"""Error taxonomy shared by the simPRO and monday.com clients and the sync layer.

Transport-level failures, credential failures, rate limiting and logical
remote failures are distinct types so retry policies can select on them:

- TransportError: network/timeout failure, retryable by caller policy.
- AuthError: credential invalid or expired, never retried.
- RateLimitError: retryable once after ``retry_after`` seconds.
- RemoteError: the remote system answered with a logical failure.
- FieldValidationError: bad local input, never sent upstream.
"""

from __future__ import annotations


class IntegrationError(Exception):
    """Base class for every error raised while talking to a remote system."""

    def __init__(self, message: str, *, system: str = "") -> None:
        super().__init__(message)
        self.system = system


class TransportError(IntegrationError):
    """Network-level failure (connection refused, DNS, timeout)."""


class AuthError(IntegrationError):
    """The configured credential was rejected."""


class RateLimitError(IntegrationError):
    """The remote system throttled the request.

    Args:
        message: Human-readable description (usually the remote error text).
        retry_after: Seconds to wait before the next attempt.
    """

    def __init__(self, message: str, *, retry_after: float, system: str = "") -> None:
        super().__init__(message, system=system)
        self.retry_after = retry_after


class RemoteError(IntegrationError):
    """The remote system processed the request and reported a failure."""

    def __init__(self, message: str, *, status_code: int | None = None, system: str = "") -> None:
        super().__init__(message, system=system)
        self.status_code = status_code


class FieldValidationError(ValueError):
    """A field value failed local validation and must be omitted."""

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(f"invalid {field} {value!r}: {reason}")
        self.field = field
        self.value = value
        self.reason = reason


class InvalidWebhookPayload(ValueError):
    """An inbound webhook body is missing required references."""
