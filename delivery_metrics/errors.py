"""Exception taxonomy and credential redaction helpers shared across the pipeline."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

REDACTED = "[REDACTED]"

SENSITIVE_PATTERNS = [
    re.compile(r"gh[pousr]_[A-Za-z0-9]{36}"),
    re.compile(r"github_pat_[A-Za-z0-9_]{82}"),
    re.compile(r"Bearer\s+[A-Za-z0-9_\-.]+", re.IGNORECASE),
    re.compile(r"Authorization:\s*\S+", re.IGNORECASE),
    re.compile(r'"token":\s*"[^"]+"', re.IGNORECASE),
    re.compile(r'"password":\s*"[^"]+"', re.IGNORECASE),
    re.compile(r'"secret":\s*"[^"]+"', re.IGNORECASE),
    re.compile(
        r"-----BEGIN\s+(?:RSA\s+)?PRIVATE\s+KEY-----[\s\S]*?-----END\s+(?:RSA\s+)?PRIVATE\s+KEY-----",
        re.IGNORECASE,
    ),
]

SAFE_ERROR_MESSAGES: Dict[int, str] = {
    400: "Bad Request - Invalid parameters",
    401: "Unauthorized - Authentication failed",
    403: "Forbidden - Access denied or rate limit exceeded",
    404: "Not Found - Resource does not exist",
    422: "Unprocessable Entity - Validation failed",
    429: "Rate Limit Exceeded - Too many requests",
    500: "Internal Server Error - GitHub API error",
    502: "Bad Gateway - GitHub API temporarily unavailable",
    503: "Service Unavailable - GitHub API temporarily unavailable",
    504: "Gateway Timeout - GitHub API request timed out",
}


def sanitize_sensitive_data(content: str) -> str:
    """Replace tokens, auth headers, secret JSON fields and private keys with a marker."""
    sanitized = content
    for pattern in SENSITIVE_PATTERNS:
        sanitized = pattern.sub(REDACTED, sanitized)
    return sanitized


def sanitize_github_error(status: int, body: Any = None) -> str:
    """Return a safe message for an HTTP error, appending GitHub's message when it is clean."""
    base = SAFE_ERROR_MESSAGES.get(status, f"HTTP {status} - Request failed")
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message:
            cleaned = sanitize_sensitive_data(message)
            if REDACTED not in cleaned:
                return f"{base}: {cleaned}"
    return base


class PipelineError(Exception):
    """Base class for every error raised by the delivery metrics pipeline."""


class TransientNetworkError(PipelineError):
    """Timeouts, connection failures, 429 and 5xx responses; retried with backoff."""

    def __init__(self, message: str, *, status: Optional[int] = None, attempts: int = 1) -> None:
        super().__init__(sanitize_sensitive_data(message))
        self.status = status
        self.attempts = attempts


class RequestTimeoutError(TransientNetworkError):
    """A transport timeout, carrying how long the attempt ran before giving up."""

    def __init__(self, url: str, elapsed: float, *, attempts: int = 1) -> None:
        super().__init__(f"request to {url} timed out after {elapsed:.1f}s", attempts=attempts)
        self.url = url
        self.elapsed = elapsed


class PermanentRequestError(PipelineError):
    """A non-retryable 4xx response with a sanitized body."""

    def __init__(self, status: int, body: str, url: Optional[str] = None) -> None:
        self.status = status
        self.body = sanitize_sensitive_data(body)
        self.url = url
        target = f" for {url}" if url else ""
        super().__init__(f"HTTP {status}{target}: {self.body}")


class GraphQLQueryError(PermanentRequestError):
    """GraphQL returned errors and no data."""

    def __init__(self, messages: str, *, error_type: Optional[str] = None) -> None:
        super().__init__(200, messages, url=None)
        self.error_type = error_type


class PartialPaginationFailure(PipelineError):
    """A page after the first one failed; earlier pages are still usable."""

    def __init__(self, page: int, cause: BaseException) -> None:
        super().__init__(f"page {page} failed: {sanitize_sensitive_data(str(cause))}")
        self.page = page
        self.cause = cause


class NormalizationError(PipelineError, ValueError):
    """An upstream payload is missing a field the internal model requires."""


class ConfigurationError(PipelineError, ValueError):
    """Pipeline settings could not be resolved into a usable configuration."""


class ReportSinkError(PipelineError):
    """The report sink rejected a write it cannot recover from."""


__all__ = [
    "REDACTED",
    "SENSITIVE_PATTERNS",
    "SAFE_ERROR_MESSAGES",
    "sanitize_sensitive_data",
    "sanitize_github_error",
    "PipelineError",
    "TransientNetworkError",
    "RequestTimeoutError",
    "PermanentRequestError",
    "GraphQLQueryError",
    "PartialPaginationFailure",
    "NormalizationError",
    "ConfigurationError",
    "ReportSinkError",
]
