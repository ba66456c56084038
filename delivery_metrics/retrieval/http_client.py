"""HTTP and GraphQL client with bounded retry/backoff for GitHub retrieval."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import requests

from delivery_metrics.errors import (
    ConfigurationError,
    GraphQLQueryError,
    PermanentRequestError,
    RequestTimeoutError,
    TransientNetworkError,
    sanitize_github_error,
    sanitize_sensitive_data,
)

from .auth import default_credentials
from .config import GRAPHQL_URL, INITIAL_BACKOFF_MS, MAX_RETRIES, REQUEST_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/vnd.github+json",
    "User-Agent": USER_AGENT,
}


@dataclass(frozen=True)
class FetchRequest:
    """One logical API call; retries reuse the same request."""

    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    json: Optional[Dict[str, Any]] = None


def pause(seconds: float) -> None:
    """Block the run for a backoff interval."""
    time.sleep(max(0.0, seconds))


def compute_backoff_ms(attempt: int, initial_backoff_ms: int = INITIAL_BACKOFF_MS) -> int:
    """Exponential backoff for a zero-based attempt index."""
    return int(initial_backoff_ms * (2 ** attempt))


def retry_after_ms(headers: Optional[Mapping[str, Any]]) -> Optional[int]:
    """Return the Retry-After header converted to milliseconds, if it is usable."""
    raw = (headers or {}).get("Retry-After")
    if raw is None:
        return None
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        return None
    return max(0, int(seconds * 1000))


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status <= 599


def require_https(url: str) -> None:
    if urlparse(url).scheme != "https":
        raise ConfigurationError(f"refusing to call non-https URL: {url}")


def _json_or_none(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class FetchClient:
    """Authenticated GitHub client; 429/5xx/timeouts are retried, other 4xx are terminal."""

    def __init__(
        self,
        credentials=None,
        *,
        session: Optional[requests.Session] = None,
        max_retries: int = MAX_RETRIES,
        initial_backoff_ms: int = INITIAL_BACKOFF_MS,
        timeout: float = REQUEST_TIMEOUT,
        graphql_url: str = GRAPHQL_URL,
    ) -> None:
        self.credentials = credentials or default_credentials()
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self.max_retries = max_retries
        self.initial_backoff_ms = initial_backoff_ms
        self.timeout = timeout
        self.graphql_url = graphql_url
        self.requests_issued = 0

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.credentials.get().token}"}

    def _backoff(self, attempt: int, wait_ms: int, reason: str) -> None:
        logger.warning(
            "[retry %d/%d] %s -> sleep %dms", attempt + 1, self.max_retries, reason, wait_ms
        )
        pause(wait_ms / 1000.0)

    def fetch(self, request: FetchRequest) -> requests.Response:
        """Issue a request, retrying transient failures up to max_retries times."""

        require_https(request.url)
        for attempt in range(self.max_retries + 1):
            final = attempt >= self.max_retries
            started = time.monotonic()
            self.requests_issued += 1
            try:
                resp = self.session.request(
                    request.method,
                    request.url,
                    params=request.params,
                    json=request.json,
                    headers=self._auth_headers(),
                    timeout=self.timeout,
                )
            except requests.Timeout as exc:
                error = RequestTimeoutError(
                    request.url, time.monotonic() - started, attempts=attempt + 1
                )
                if final:
                    raise error from exc
                self._backoff(attempt, compute_backoff_ms(attempt, self.initial_backoff_ms), str(error))
                continue
            except requests.RequestException as exc:
                error = TransientNetworkError(
                    f"{type(exc).__name__} for {request.url}: {exc}", attempts=attempt + 1
                )
                if final:
                    raise error from exc
                self._backoff(attempt, compute_backoff_ms(attempt, self.initial_backoff_ms), str(error))
                continue

            status = resp.status_code
            if 200 <= status < 300:
                return resp

            if is_retryable_status(status):
                if final:
                    raise TransientNetworkError(
                        f"HTTP {status} for {request.url} after {attempt + 1} attempts",
                        status=status,
                        attempts=attempt + 1,
                    )
                wait_ms = retry_after_ms(resp.headers)
                if wait_ms is None:
                    wait_ms = compute_backoff_ms(attempt, self.initial_backoff_ms)
                self._backoff(attempt, wait_ms, f"HTTP {status} for {request.url}")
                continue

            if status == 401:
                self.credentials.invalidate()
            message = sanitize_github_error(status, _json_or_none(resp))
            logger.error("[error] HTTP %d for %s -> %s", status, request.url, message)
            raise PermanentRequestError(status, message, request.url)

        raise RuntimeError("Request failed after retries.")

    def get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self.fetch(FetchRequest("GET", url, params=params))

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.get(url, params=params).json()

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a GraphQL query; partial errors with data are logged and tolerated."""

        payload = {"query": query, "variables": variables or {}}
        for attempt in range(self.max_retries + 1):
            resp = self.fetch(FetchRequest("POST", self.graphql_url, json=payload))
            body = _json_or_none(resp) or {}
            errors = [err for err in body.get("errors") or [] if isinstance(err, dict)]
            if not errors:
                return body.get("data") or {}

            if any(err.get("type") == "RATE_LIMITED" for err in errors):
                if attempt >= self.max_retries:
                    raise TransientNetworkError(
                        "GraphQL rate limit persisted after retries",
                        status=resp.status_code,
                        attempts=attempt + 1,
                    )
                wait_ms = retry_after_ms(resp.headers)
                if wait_ms is None:
                    wait_ms = compute_backoff_ms(attempt, self.initial_backoff_ms)
                self._backoff(attempt, wait_ms, "GraphQL RATE_LIMITED")
                continue

            messages = ", ".join(str(err.get("message")) for err in errors)
            data = body.get("data")
            if data:
                logger.warning("[graphql] partial response: %s", sanitize_sensitive_data(messages))
                return data
            error_type = next((err.get("type") for err in errors if err.get("type")), None)
            raise GraphQLQueryError(messages, error_type=error_type)

        raise RuntimeError("GraphQL request failed after retries.")


__all__ = [
    "DEFAULT_HEADERS",
    "FetchRequest",
    "FetchClient",
    "pause",
    "compute_backoff_ms",
    "retry_after_ms",
    "is_retryable_status",
    "require_https",
]
