import logging
from datetime import datetime, timedelta
from typing import Optional

from trackview.config.settings import get_settings
from trackview.models.telemetry import RecommendedRange
from trackview.services.result_transformer import parse_time
from trackview.storage.store_client import StoreClient, get_store_client

logger = logging.getLogger(__name__)

RECENT_WINDOWS = (timedelta(hours=12), timedelta(hours=24))
FALLBACK_SAMPLES = 1000


def recommend_range(times: list[datetime]) -> Optional[RecommendedRange]:
    """Propose a window ending at the latest sample.

    The narrowest recent window (12h, then 24h) holding samples besides the
    latest one wins. Without such a burst the window starts at the earliest
    of the last 1000 samples.
    """
    if not times:
        return None

    times = sorted(times)
    latest = times[-1]

    for span in RECENT_WINDOWS:
        window_start = latest - span
        recent = [t for t in times if t >= window_start]
        if len(recent) > 1:
            return RecommendedRange(start=recent[0], end=latest, sample_count=len(recent))

    tail = times[-FALLBACK_SAMPLES:]
    return RecommendedRange(start=tail[0], end=latest, sample_count=len(tail))


class RangeService:
    def __init__(self, store: StoreClient = None):
        self.store = store or get_store_client()
        self.settings = get_settings()

    async def get_recommended_range(self, identifier: str) -> Optional[RecommendedRange]:
        query = self.store.queries.recent_timestamps(
            identifier, self.settings.recent_timestamps_rows
        )
        rows = await self.store.execute(query)

        times = [t for t in (parse_time(row.get("_time")) for row in rows) if t is not None]
        recommendation = recommend_range(times)

        if recommendation is None:
            logger.warning(f"No recent data found for {identifier}")
        else:
            logger.info(
                f"Recommended range for {identifier}: {recommendation.start.isoformat()} - "
                f"{recommendation.end.isoformat()} ({recommendation.sample_count} samples)"
            )
        return recommendation


_service = RangeService()


def get_range_service() -> RangeService:
    return _service
