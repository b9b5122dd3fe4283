import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from trackview.config.settings import get_settings
from trackview.core.errors import RETRYABLE_KINDS, ErrorKind, query_error_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_ms: int = 2000

    def delay_seconds(self, retry_number: int) -> float:
        return self.backoff_ms * retry_number / 1000

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        settings = get_settings()
        return cls(
            max_retries=settings.query_max_retries,
            backoff_ms=settings.query_retry_backoff_ms,
        )


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    classify: Callable[[BaseException], ErrorKind],
    policy: RetryPolicy,
    on_failure: Optional[Callable[[BaseException, ErrorKind], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Run ``operation`` until it succeeds or fails with a non-retryable cause.

    Timeouts and connection failures are retried ``policy.max_retries`` times,
    sleeping ``backoff_ms * retry_number`` between attempts. Every other cause
    is raised at once. The raised error is always a ``QueryError`` chained to
    the last underlying exception.
    """
    retry_number = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            kind = classify(e)
            if on_failure:
                on_failure(e, kind)

            if kind in RETRYABLE_KINDS and retry_number < policy.max_retries:
                retry_number += 1
                delay = policy.delay_seconds(retry_number)
                logger.warning(
                    f"{kind.value} on attempt {retry_number}, retrying in {delay:.1f}s "
                    f"({retry_number}/{policy.max_retries})"
                )
                await sleep(delay)
                continue

            raise query_error_for(kind, e, attempts=retry_number + 1) from e
