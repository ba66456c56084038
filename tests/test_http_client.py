"""Unit tests for delivery_metrics.retrieval.http_client covering retries, backoff and GraphQL errors.

Execute with coverage to validate networking helpers:
    pytest tests/test_http_client.py --maxfail=1 -v --cov=delivery_metrics.retrieval.http_client --cov-report=term-missing
"""

import logging
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import requests

from delivery_metrics.errors import (
    ConfigurationError,
    GraphQLQueryError,
    PermanentRequestError,
    RequestTimeoutError,
    TransientNetworkError,
)
from delivery_metrics.retrieval import http_client
from delivery_metrics.retrieval.auth import Credential, StaticCredentialProvider

URL = "https://api.github.com/repos/octo/app/pulls"


def _make_resp(status: int = 200, payload: Any = None, headers: Optional[Dict[str, str]] = None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    if payload is None:
        payload = {}
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


@pytest.fixture
def waits(monkeypatch) -> List[float]:
    recorded: List[float] = []
    monkeypatch.setattr(http_client, "pause", recorded.append)
    return recorded


def _client(session, **kwargs) -> http_client.FetchClient:
    return http_client.FetchClient(StaticCredentialProvider("tok-123"), session=session, **kwargs)


def test_compute_backoff_doubles_per_attempt():
    assert http_client.compute_backoff_ms(0, 1000) == 1000
    assert http_client.compute_backoff_ms(1, 1000) == 2000
    assert http_client.compute_backoff_ms(3, 500) == 4000


def test_retry_after_ms_parses_seconds():
    assert http_client.retry_after_ms({"Retry-After": "3"}) == 3000
    assert http_client.retry_after_ms({"Retry-After": "soon"}) is None
    assert http_client.retry_after_ms({}) is None
    assert http_client.retry_after_ms(None) is None


def test_success_sends_bearer_token(waits):
    session = MagicMock()
    session.request.return_value = _make_resp(200, [{"number": 1}])
    client = _client(session)

    resp = client.get(URL, {"page": 1})

    assert resp.json() == [{"number": 1}]
    kwargs = session.request.call_args.kwargs
    assert kwargs["headers"]["Authorization"] == "Bearer tok-123"
    assert kwargs["params"] == {"page": 1}
    assert client.requests_issued == 1
    assert waits == []


@pytest.mark.parametrize("status", [429, 500, 502, 503, 599])
def test_retryable_status_exhausts_bounded_retries(status, waits):
    session = MagicMock()
    session.request.return_value = _make_resp(status)
    client = _client(session, max_retries=3, initial_backoff_ms=1000)

    with pytest.raises(TransientNetworkError) as excinfo:
        client.get(URL)

    assert session.request.call_count == 4
    assert excinfo.value.status == status
    assert excinfo.value.attempts == 4
    assert waits == [1.0, 2.0, 4.0]


def test_waits_at_least_computed_backoff_before_retrying(waits):
    session = MagicMock()
    session.request.side_effect = [_make_resp(502), _make_resp(503), _make_resp(200, {"ok": True})]
    client = _client(session, initial_backoff_ms=250)

    resp = client.get(URL)

    assert resp.status_code == 200
    assert len(waits) == 2
    for attempt, waited in enumerate(waits):
        assert waited * 1000 >= http_client.compute_backoff_ms(attempt, 250)


def test_retry_after_header_overrides_backoff(waits):
    session = MagicMock()
    session.request.side_effect = [
        _make_resp(429, headers={"Retry-After": "7"}),
        _make_resp(200, {"ok": True}),
    ]
    client = _client(session)

    client.get(URL)

    assert waits == [7.0]


@pytest.mark.parametrize("status", [400, 403, 404, 422])
def test_permanent_errors_are_not_retried(status, waits):
    session = MagicMock()
    session.request.return_value = _make_resp(status, {"message": "nope"})
    client = _client(session)

    with pytest.raises(PermanentRequestError) as excinfo:
        client.get(URL)

    assert session.request.call_count == 1
    assert excinfo.value.status == status
    assert waits == []


def test_unauthorized_invalidates_credentials(waits):
    session = MagicMock()
    session.request.return_value = _make_resp(401, {"message": "Bad credentials"})
    credentials = MagicMock()
    credentials.get.return_value = Credential(token="tok-123")
    client = http_client.FetchClient(credentials, session=session)

    with pytest.raises(PermanentRequestError):
        client.get(URL)

    credentials.invalidate.assert_called_once_with()
    assert session.request.call_count == 1


def test_timeout_raises_request_timeout_with_elapsed(waits):
    session = MagicMock()
    session.request.side_effect = requests.Timeout("slow")
    client = _client(session, max_retries=2)

    with pytest.raises(RequestTimeoutError) as excinfo:
        client.get(URL)

    assert session.request.call_count == 3
    assert excinfo.value.elapsed >= 0
    assert excinfo.value.attempts == 3
    assert len(waits) == 2


def test_connection_error_then_success(waits):
    session = MagicMock()
    session.request.side_effect = [requests.ConnectionError("reset"), _make_resp(200, [])]
    client = _client(session)

    assert client.get(URL).status_code == 200
    assert client.requests_issued == 2
    assert waits == [1.0]


def test_non_https_url_is_refused(waits):
    session = MagicMock()
    client = _client(session)

    with pytest.raises(ConfigurationError):
        client.get("http://api.github.com/repos/octo/app")

    session.request.assert_not_called()


def test_retry_log_line_format(waits, caplog):
    session = MagicMock()
    session.request.side_effect = [_make_resp(500), _make_resp(200, {})]
    client = _client(session, initial_backoff_ms=100)

    with caplog.at_level(logging.WARNING, logger="delivery_metrics.retrieval.http_client"):
        client.get(URL)

    assert "[retry 1/3]" in caplog.text
    assert "sleep 100ms" in caplog.text


def test_graphql_returns_data():
    session = MagicMock()
    session.request.return_value = _make_resp(200, {"data": {"repository": {"id": "R1"}}})
    client = _client(session)

    data = client.graphql("query { x }", {"owner": "octo"})

    assert data == {"repository": {"id": "R1"}}
    kwargs = session.request.call_args.kwargs
    assert kwargs["json"] == {"query": "query { x }", "variables": {"owner": "octo"}}


def test_graphql_partial_errors_keep_data(caplog):
    session = MagicMock()
    session.request.return_value = _make_resp(
        200, {"data": {"repository": {"id": "R1"}}, "errors": [{"message": "field hidden"}]}
    )
    client = _client(session)

    with caplog.at_level(logging.WARNING):
        data = client.graphql("query { x }")

    assert data["repository"]["id"] == "R1"
    assert "partial response" in caplog.text


def test_graphql_errors_without_data_raise():
    session = MagicMock()
    session.request.return_value = _make_resp(
        200, {"data": None, "errors": [{"message": "Could not resolve", "type": "NOT_FOUND"}]}
    )
    client = _client(session)

    with pytest.raises(GraphQLQueryError) as excinfo:
        client.graphql("query { x }")

    assert excinfo.value.error_type == "NOT_FOUND"


def test_graphql_rate_limited_is_retried(waits):
    session = MagicMock()
    session.request.side_effect = [
        _make_resp(200, {"errors": [{"type": "RATE_LIMITED", "message": "slow down"}]}),
        _make_resp(200, {"data": {"ok": 1}}),
    ]
    client = _client(session)

    assert client.graphql("query { x }") == {"ok": 1}
    assert waits == [1.0]
