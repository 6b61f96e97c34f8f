"""Canonical error taxonomy for the insight pipeline.

Every provider adapter translates its SDK/transport exceptions into one of
these classes, so the orchestrator and the presentation layer only ever deal
with four error kinds:

- ``network``            transient, retried
- ``rate_limited``       transient, retried after the provider-dictated delay
- ``provider``           retried for 5xx responses, terminal otherwise
- ``malformed_response`` terminal, nothing could be extracted from the payload
"""

from __future__ import annotations

from typing import Any, Optional


class InsightError(Exception):
    """Base class for all pipeline errors."""

    kind: str = "internal"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error for JSON transport."""
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class NetworkError(InsightError):
    """The provider could not be reached (connection refused, timeout, …)."""

    kind = "network"
    retryable = True

    def __init__(self, message: str = "Provider unreachable") -> None:
        super().__init__(message)


class RateLimited(InsightError):
    """The provider rejected the call because of rate limiting."""

    kind = "rate_limited"
    retryable = True

    def __init__(self, retry_after: Optional[float] = None) -> None:
        message = "Provider rate limit exceeded"
        if retry_after is not None:
            message += f", retry after {retry_after:g}s"
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class ProviderError(InsightError):
    """The provider answered with an error status."""

    kind = "provider"

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(
            f"Provider returned status {status_code}",
            details={"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return 500 <= self.status_code < 600


class MalformedResponseError(InsightError):
    """No insight could be extracted from the provider payload."""

    kind = "malformed_response"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Malformed provider response: {reason}", details={"reason": reason})
        self.reason = reason


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds.

    HTTP-date values and garbage yield ``None`` so the caller falls back to
    its own backoff.
    """
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
