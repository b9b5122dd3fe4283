import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable

import aiohttp

from trackview.config.settings import get_settings
from trackview.core.connection_health import ConnectionHealth, get_connection_health
from trackview.core.errors import ErrorKind, UnknownQueryError
from trackview.core.influx_client import get_influx_client
from trackview.core.retry import RetryPolicy, retry_async
from trackview.models.telemetry import ConnectionStatus
from trackview.storage.flux_queries import FluxQueryBuilder

logger = logging.getLogger(__name__)

_TIMEOUT_MARKERS = ("timeout", "timed out")
_AUTH_MARKERS = ("unauthorized", "401")
_NOT_FOUND_MARKERS = ("not found", "404")
_CONNECTION_MARKERS = ("connection", "enotfound", "econnrefused")
_SYNTAX_MARKERS = ("invalid query", "syntax error")


def classify_store_error(error: BaseException) -> ErrorKind:
    """Sort a store failure into the error taxonomy.

    Exception types and HTTP status codes are checked first; the message text
    is the last resort for errors the client library wraps generically.
    """
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT

    status = getattr(error, "status", None)
    if status in (401, 403):
        return ErrorKind.AUTHENTICATION_FAILED
    if status == 404:
        return ErrorKind.RESOURCE_NOT_FOUND
    if status == 400:
        return ErrorKind.QUERY_SYNTAX_INVALID
    if status == 504:
        return ErrorKind.TIMEOUT
    if status in (502, 503):
        return ErrorKind.CONNECTION_UNAVAILABLE

    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError)):
        return ErrorKind.CONNECTION_UNAVAILABLE

    message = str(error).lower()
    if any(marker in message for marker in _TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    if any(marker in message for marker in _AUTH_MARKERS):
        return ErrorKind.AUTHENTICATION_FAILED
    if any(marker in message for marker in _NOT_FOUND_MARKERS):
        return ErrorKind.RESOURCE_NOT_FOUND
    if any(marker in message for marker in _CONNECTION_MARKERS):
        return ErrorKind.CONNECTION_UNAVAILABLE
    if any(marker in message for marker in _SYNTAX_MARKERS):
        return ErrorKind.QUERY_SYNTAX_INVALID
    return ErrorKind.UNKNOWN


class StoreClient:
    def __init__(
        self,
        query_api: Any = None,
        health: ConnectionHealth = None,
        policy: RetryPolicy = None,
        queries: FluxQueryBuilder = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = get_settings()
        self.query_api = query_api
        self.health = health or get_connection_health()
        self.policy = policy or RetryPolicy.from_settings()
        self.queries = queries or FluxQueryBuilder()
        self.sleep = sleep
        self.max_rows = self.settings.store_max_rows

    async def initialize(self):
        if self.query_api is None:
            client = await get_influx_client()
            self.query_api = client.query_api()

    async def _collect(self, query: str) -> list[dict]:
        rows: list[dict] = []
        records = await self.query_api.query_stream(query)
        try:
            async for record in records:
                if len(rows) >= self.max_rows:
                    logger.warning(
                        f"Query returned more than {self.max_rows} rows, truncating results"
                    )
                    break
                rows.append(record.values)
        finally:
            aclose = getattr(records, "aclose", None)
            if aclose is not None:
                await aclose()
        return rows

    async def execute(self, query: str) -> list[dict]:
        try:
            await self.initialize()
        except RuntimeError as e:
            logger.error(f"Store client unavailable: {e}")
            self.health.mark_disconnected()
            raise UnknownQueryError(f"Store client is not configured: {e}") from e

        started = time.monotonic()
        attempt = 0

        async def run_once() -> list[dict]:
            nonlocal attempt
            attempt += 1
            logger.debug(f"Executing query (attempt {attempt}): {query[:200]}...")
            return await self._collect(query)

        def on_failure(error: BaseException, kind: ErrorKind):
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                f"Store query failed after {elapsed_ms}ms (attempt {attempt}, {kind.value}): {error}"
            )
            self.health.mark_disconnected()

        rows = await retry_async(
            run_once,
            classify_store_error,
            self.policy,
            on_failure=on_failure,
            sleep=self.sleep,
        )

        if self.health.mark_connected():
            logger.info("Store connection restored")

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug(f"Query executed successfully in {elapsed_ms}ms, returned {len(rows)} rows")
        return rows

    async def test_connection(self) -> bool:
        started = time.monotonic()
        try:
            await self.initialize()
            rows = await self._collect(self.queries.health_probe())
        except Exception as e:
            logger.error(f"Store connection test failed: {e}")
            self.health.mark_disconnected()
            return False

        self.health.mark_connected()
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug(f"Store connection test successful in {elapsed_ms}ms ({len(rows)} rows)")
        return True

    async def get_connection_status(self) -> ConnectionStatus:
        stale_after = timedelta(seconds=self.settings.health_stale_seconds)
        if self.health.is_stale(stale_after):
            await self.test_connection()

        snapshot = self.health.snapshot()
        return ConnectionStatus(
            connected=snapshot.connected,
            last_tested_at=snapshot.last_tested_at,
            bucket=self.queries.bucket,
            org=self.settings.influx_org,
            measurement=self.queries.measurement,
            url=self.settings.influx_url,
        )


_store_client = StoreClient()


def get_store_client() -> StoreClient:
    return _store_client
