import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from trackview.core.connection_health import ConnectionHealth
from trackview.core.retry import RetryPolicy
from trackview.main import app
from trackview.services.discovery_service import DiscoveryService
from trackview.services.range_service import RangeService
from trackview.services.telemetry_service import TelemetryService, get_telemetry_service
from trackview.storage.flux_queries import FluxQueryBuilder
from trackview.storage.store_client import StoreClient, get_store_client

T0 = datetime(2024, 1, 10, tzinfo=timezone.utc)


class FakeRecord:
    def __init__(self, values: dict):
        self.values = values


class FakeQueryApi:
    """Replays one scripted response per query: a list of rows or an exception."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.queries: list[str] = []

    def add(self, *responses):
        self.responses.extend(responses)

    async def query_stream(self, query: str):
        self.queries.append(query)
        response = self.responses.pop(0) if self.responses else []
        if isinstance(response, BaseException):
            raise response
        return self._stream(response)

    async def _stream(self, rows):
        for row in rows:
            yield FakeRecord(row)


class RecordingHealth(ConnectionHealth):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.events: list[str] = []

    def mark_connected(self) -> bool:
        self.events.append("connected")
        return super().mark_connected()

    def mark_disconnected(self) -> None:
        self.events.append("disconnected")
        super().mark_disconnected()


def run(coro):
    return asyncio.run(coro)


def row(offset_minutes: float, field: str, value) -> dict:
    return {
        "_time": T0 + timedelta(minutes=offset_minutes),
        "_field": field,
        "_value": value,
    }


@pytest.fixture
def query_api():
    return FakeQueryApi()


@pytest.fixture
def health():
    return RecordingHealth()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def queries():
    return FluxQueryBuilder(bucket="fleet", measurement="telemetry", identifier_tag="imei")


@pytest.fixture
def store(query_api, health, sleeps, queries):
    async def record_sleep(delay: float):
        sleeps.append(delay)

    return StoreClient(
        query_api=query_api,
        health=health,
        policy=RetryPolicy(max_retries=3, backoff_ms=2000),
        queries=queries,
        sleep=record_sleep,
    )


@pytest.fixture
def service(store):
    return TelemetryService(
        store=store,
        discovery=DiscoveryService(store),
        ranges=RangeService(store),
    )


@pytest.fixture
def client(service, store):
    app.dependency_overrides[get_telemetry_service] = lambda: service
    app.dependency_overrides[get_store_client] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
