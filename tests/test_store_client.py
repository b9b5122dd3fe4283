"""
Store client: retries, error classification, truncation and health tracking.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import aiohttp
import pytest
from influxdb_client.rest import ApiException

from conftest import RecordingHealth, run
from trackview.core.errors import (
    AuthenticationFailedError,
    ConnectionUnavailableError,
    ErrorKind,
    QuerySyntaxError,
    QueryTimeoutError,
    ResourceNotFoundError,
    UnknownQueryError,
)
from trackview.storage import store_client as store_client_module
from trackview.storage.store_client import StoreClient, classify_store_error


def test_execute_returns_rows_and_marks_connected(store, query_api, health):
    """Successful queries return rows and mark the store connected."""
    query_api.add([{"_value": "a"}, {"_value": "b"}])

    rows = run(store.execute("from(bucket: \"fleet\")"))

    assert rows == [{"_value": "a"}, {"_value": "b"}]
    assert health.snapshot().connected is True
    assert health.events == ["connected"]


def test_timeout_retried_three_times_then_fails(store, query_api, health, sleeps):
    """Timeouts are retried three times with linear backoff."""
    query_api.add(*[asyncio.TimeoutError() for _ in range(4)])

    with pytest.raises(QueryTimeoutError) as exc_info:
        run(store.execute("query"))

    assert len(query_api.queries) == 4
    assert sleeps == [2.0, 4.0, 6.0]
    assert health.events == ["disconnected"] * 4
    assert health.snapshot().connected is False
    assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)
    assert exc_info.value.kind == ErrorKind.TIMEOUT


def test_connection_error_retried_then_fails(store, query_api, sleeps):
    """Connection failures follow the same retry schedule."""
    query_api.add(*[ConnectionRefusedError("ECONNREFUSED") for _ in range(4)])

    with pytest.raises(ConnectionUnavailableError):
        run(store.execute("query"))

    assert sleeps == [2.0, 4.0, 6.0]


def test_recovers_after_transient_timeout(store, query_api, health, sleeps):
    """A transient timeout recovers on retry."""
    query_api.add(asyncio.TimeoutError(), [{"_value": 1}])

    rows = run(store.execute("query"))

    assert rows == [{"_value": 1}]
    assert sleeps == [2.0]
    assert health.events == ["disconnected", "connected"]


@pytest.mark.parametrize(
    "error,expected",
    [
        (ApiException(status=401, reason="Unauthorized"), AuthenticationFailedError),
        (ApiException(status=404, reason="Not Found"), ResourceNotFoundError),
        (ApiException(status=400, reason="Bad Request"), QuerySyntaxError),
        (RuntimeError("compilation failed: syntax error at 3:5"), QuerySyntaxError),
        (RuntimeError("something odd"), UnknownQueryError),
    ],
)
def test_non_retryable_errors_fail_immediately(store, query_api, sleeps, health, error, expected):
    """Auth, not-found, syntax and unknown errors are not retried."""
    query_api.add(error)

    with pytest.raises(expected):
        run(store.execute("query"))

    assert len(query_api.queries) == 1
    assert sleeps == []
    assert health.snapshot().connected is False


@pytest.mark.parametrize(
    "error,kind",
    [
        (asyncio.TimeoutError(), ErrorKind.TIMEOUT),
        (RuntimeError("request timeout"), ErrorKind.TIMEOUT),
        (aiohttp.ClientConnectionError("refused"), ErrorKind.CONNECTION_UNAVAILABLE),
        (RuntimeError("getaddrinfo ENOTFOUND influx"), ErrorKind.CONNECTION_UNAVAILABLE),
        (RuntimeError("unauthorized access"), ErrorKind.AUTHENTICATION_FAILED),
        (RuntimeError("bucket not found"), ErrorKind.RESOURCE_NOT_FOUND),
        (RuntimeError("invalid query"), ErrorKind.QUERY_SYNTAX_INVALID),
        (ValueError("boom"), ErrorKind.UNKNOWN),
    ],
)
def test_classify_store_error(error, kind):
    """Failures are classified by type, status and message."""
    assert classify_store_error(error) == kind


def test_truncates_without_failing(store, query_api):
    """Oversized results are truncated, not failed."""
    store.max_rows = 3
    query_api.add([{"_value": i} for i in range(10)])

    rows = run(store.execute("query"))

    assert len(rows) == 3


def test_test_connection_never_raises(store, query_api, health):
    """Connection tests report failure instead of raising."""
    query_api.add(ApiException(status=401, reason="Unauthorized"))

    assert run(store.test_connection()) is False
    assert health.snapshot().connected is False

    query_api.add([{"_value": 1}])
    assert run(store.test_connection()) is True
    assert "range(start: -72h)" in query_api.queries[-1]


def test_connection_status_reprobes_when_stale(store, query_api):
    """Stale status triggers a fresh connection test."""
    now = [datetime(2024, 1, 10, tzinfo=timezone.utc)]
    store.health = RecordingHealth(clock=lambda: now[0])

    status = run(store.get_connection_status())
    assert status.connected is False
    assert query_api.queries == []

    now[0] += timedelta(minutes=3)
    query_api.add([{"_value": 1}])
    status = run(store.get_connection_status())

    assert status.connected is True
    assert status.last_tested_at == now[0]
    assert status.bucket == "fleet"
    assert len(query_api.queries) == 1


def test_missing_configuration_raises_query_error(queries, monkeypatch):
    """Incomplete store configuration fails as a typed error and marks health down."""

    async def unconfigured():
        raise RuntimeError("InfluxDB configuration is incomplete. Missing: INFLUX_TOKEN")

    monkeypatch.setattr(store_client_module, "get_influx_client", unconfigured)
    health = RecordingHealth()
    client = StoreClient(health=health, queries=queries)

    with pytest.raises(UnknownQueryError) as exc_info:
        run(client.execute("query"))

    assert "INFLUX_TOKEN" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert health.events == ["disconnected"]
