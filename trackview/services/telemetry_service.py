import logging
from datetime import datetime, timedelta
from typing import Optional

from trackview.config.settings import get_settings
from trackview.core.errors import InvalidRangeError, ResourceNotFoundError
from trackview.models.fields import BASE_FIELDS
from trackview.models.telemetry import (
    DataAvailability,
    RecommendedRange,
    TelemetryResponse,
    TimeRange,
)
from trackview.services.discovery_service import DiscoveryService, get_discovery_service
from trackview.services.range_service import RangeService, get_range_service
from trackview.services.result_transformer import (
    ResultTransformer,
    empty_response,
    parse_time,
)
from trackview.storage.flux_queries import as_utc, select_aggregation_window
from trackview.storage.store_client import StoreClient, get_store_client

logger = logging.getLogger(__name__)


def estimate_points(
    times: list[datetime],
    probe_limit: int,
    start: datetime,
    end: datetime,
    cap: int,
) -> int:
    """Rough row count for a window, from an availability probe.

    An untruncated probe saw every row. A truncated one is extrapolated from
    its density over the whole requested span, so the estimate grows with the
    probed density. It is an estimate, not a guarantee.
    """
    if len(times) < probe_limit:
        return min(len(times), cap)

    covered = (times[-1] - times[0]).total_seconds()
    if covered <= 0:
        return min(len(times), cap)

    density = len(times) / covered
    requested = (end - start).total_seconds()
    return min(max(int(density * requested), len(times)), cap)


class TelemetryService:
    def __init__(
        self,
        store: StoreClient = None,
        discovery: DiscoveryService = None,
        ranges: RangeService = None,
    ):
        self.settings = get_settings()
        self.store = store or get_store_client()
        self.discovery = discovery or get_discovery_service()
        self.ranges = ranges or get_range_service()
        self.queries = self.store.queries

    @staticmethod
    def _require_identifier(identifier: Optional[str]) -> str:
        if not identifier or not identifier.strip():
            raise ValueError("Device identifier is required")
        return identifier.strip()

    def validate_range(self, start: datetime, end: datetime, limit_span: bool = True):
        if start >= end:
            raise InvalidRangeError("Start date must be before end date")

        max_span = timedelta(days=self.settings.max_range_days)
        if limit_span and end - start > max_span:
            raise InvalidRangeError(
                f"Maximum time range is {self.settings.max_range_days} days. "
                "Please use a smaller range."
            )

    async def list_identifiers(self) -> list[str]:
        identifiers = await self.discovery.list_identifiers()
        if not identifiers:
            raise ResourceNotFoundError("No device identifiers found")
        return identifiers

    async def list_fields(self, identifier: str) -> list[str]:
        return await self.discovery.list_fields(self._require_identifier(identifier))

    async def list_fuel_channels(self, identifier: str) -> list[str]:
        return await self.discovery.list_fuel_channels(self._require_identifier(identifier))

    async def get_recommended_range(self, identifier: str) -> Optional[RecommendedRange]:
        return await self.ranges.get_recommended_range(self._require_identifier(identifier))

    async def check_availability(
        self, identifier: str, start: datetime, end: datetime
    ) -> DataAvailability:
        identifier = self._require_identifier(identifier)
        start, end = as_utc(start), as_utc(end)
        self.validate_range(start, end, limit_span=False)

        exists = await self.store.execute(self.queries.identifier_exists(identifier))
        if not exists:
            logger.warning(f"Device {identifier} not found in the store")
            return DataAvailability(has_data=False)

        probe_limit = self.settings.availability_probe_rows
        rows = await self.store.execute(
            self.queries.availability_probe(identifier, start, end, probe_limit)
        )

        times = sorted(
            t for t in (parse_time(row.get("_time")) for row in rows) if t is not None
        )
        if not times:
            return DataAvailability(has_data=False)

        fields = sorted(
            {row["_field"] for row in rows if isinstance(row.get("_field"), str)}
        )
        return DataAvailability(
            has_data=True,
            data_range=TimeRange(start=times[0], end=times[-1]),
            available_fields=fields,
            estimated_points=estimate_points(
                times, probe_limit, start, end, self.settings.estimated_points_cap
            ),
        )

    async def get_telemetry(
        self, identifier: str, start: datetime, end: datetime
    ) -> TelemetryResponse:
        identifier = self._require_identifier(identifier)
        start, end = as_utc(start), as_utc(end)
        self.validate_range(start, end)

        availability = await self.check_availability(identifier, start, end)
        if not availability.has_data:
            logger.warning(f"No data found for {identifier} in the requested time range")
            return empty_response(start, end, [])

        if availability.estimated_points > self.settings.large_dataset_warning_points:
            logger.warning(
                f"Large data set estimated: {availability.estimated_points} points for {identifier}"
            )

        fuel_channels = await self.discovery.list_fuel_channels(identifier)
        window = select_aggregation_window(start, end)
        query = self.queries.telemetry(
            identifier,
            start,
            end,
            BASE_FIELDS + fuel_channels,
            window,
            self.settings.telemetry_max_rows,
        )

        logger.info(
            f"Fetching telemetry for {identifier} from {start.isoformat()} to {end.isoformat()} "
            f"(aggregation: {window.every or 'none'})"
        )
        rows = await self.store.execute(query)

        if not rows:
            logger.warning(f"No data returned from query for {identifier}")
            return empty_response(start, end, fuel_channels)

        return ResultTransformer().transform(
            rows, start, end, fuel_channels, window.aggregated
        )


_service = TelemetryService()


def get_telemetry_service() -> TelemetryService:
    return _service
