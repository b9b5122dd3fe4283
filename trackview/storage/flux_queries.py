"""
Flux query construction.

Every query the service sends to the store is built here. The builder is
bound to one bucket, one measurement and the tag column that carries the
device identifier; all of it comes from settings.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from trackview.config.settings import get_settings
from trackview.models.fields import FUEL_CHANNEL_FLUX_REGEX

IDENTIFIER_LOOKBACK = "-90d"
FALLBACK_LOOKBACK = "-30d"
RECENT_LOOKBACK = "-30d"
HEALTH_PROBE_LOOKBACK = "-72h"

IDENTIFIER_LIMIT = 500
FIELD_LIMIT = 200


@dataclass(frozen=True)
class AggregationWindow:
    every: Optional[str] = None

    @property
    def aggregated(self) -> bool:
        return self.every is not None

    def flux(self) -> str:
        if not self.every:
            return ""
        return f"|> aggregateWindow(every: {self.every}, fn: mean, createEmpty: false)"


RAW = AggregationWindow()


def select_aggregation_window(start: datetime, end: datetime) -> AggregationWindow:
    """Pick the averaging bucket from the requested span alone.

    > 7 days: 1h, > 1 day: 15m, > 6 hours: 3m, otherwise raw samples.
    """
    hours = (end - start).total_seconds() / 3600

    if hours > 168:
        return AggregationWindow("1h")
    if hours > 24:
        return AggregationWindow("15m")
    if hours > 6:
        return AggregationWindow("3m")
    return RAW


def escape_flux_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_flux_time(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


class FluxQueryBuilder:
    def __init__(
        self,
        bucket: str = None,
        measurement: str = None,
        identifier_tag: str = None,
    ):
        settings = get_settings()
        self.bucket = bucket or settings.influx_bucket
        self.measurement = measurement or settings.influx_measurement
        self.identifier_tag = identifier_tag or settings.influx_identifier_tag

    def _source(self, start: str, stop: Optional[str] = None) -> str:
        if stop:
            time_range = f"range(start: {start}, stop: {stop})"
        else:
            time_range = f"range(start: {start})"

        return (
            f'from(bucket: "{escape_flux_string(self.bucket)}")\n'
            f"  |> {time_range}\n"
            f'  |> filter(fn: (r) => r["_measurement"] == "{escape_flux_string(self.measurement)}")'
        )

    def _identifier_filter(self, identifier: str) -> str:
        tag = escape_flux_string(self.identifier_tag)
        return f'  |> filter(fn: (r) => r["{tag}"] == "{escape_flux_string(identifier)}")'

    def _window(self, start: datetime, end: datetime) -> str:
        return self._source(
            f'time(v: "{to_flux_time(start)}")', f'time(v: "{to_flux_time(end)}")'
        )

    def identifiers(self) -> str:
        tag = escape_flux_string(self.identifier_tag)
        return "\n".join(
            [
                self._source(IDENTIFIER_LOOKBACK),
                f'  |> keep(columns: ["{tag}"])',
                "  |> group()",
                f'  |> distinct(column: "{tag}")',
                '  |> sort(columns: ["_value"])',
                f"  |> limit(n: {IDENTIFIER_LIMIT})",
            ]
        )

    def identifiers_fallback(self) -> str:
        tag = escape_flux_string(self.identifier_tag)
        return "\n".join(
            [
                self._source(FALLBACK_LOOKBACK),
                f'  |> group(columns: ["{tag}"])',
                "  |> first()",
                f'  |> keep(columns: ["{tag}"])',
            ]
        )

    def fields(self, identifier: str) -> str:
        return "\n".join(
            [
                self._source(IDENTIFIER_LOOKBACK),
                self._identifier_filter(identifier),
                '  |> keep(columns: ["_field"])',
                "  |> group()",
                '  |> distinct(column: "_field")',
                '  |> sort(columns: ["_value"])',
                f"  |> limit(n: {FIELD_LIMIT})",
            ]
        )

    def fields_fallback(self, identifier: str) -> str:
        return "\n".join(
            [
                self._source(FALLBACK_LOOKBACK),
                self._identifier_filter(identifier),
                '  |> group(columns: ["_field"])',
                "  |> first()",
                '  |> keep(columns: ["_field"])',
            ]
        )

    def fuel_channels(self, identifier: str) -> str:
        return "\n".join(
            [
                self._source(IDENTIFIER_LOOKBACK),
                self._identifier_filter(identifier),
                f'  |> filter(fn: (r) => r["_field"] =~ {FUEL_CHANNEL_FLUX_REGEX})',
                '  |> keep(columns: ["_field"])',
                "  |> group()",
                '  |> distinct(column: "_field")',
                '  |> sort(columns: ["_value"])',
            ]
        )

    def fuel_channels_fallback(self, identifier: str) -> str:
        return "\n".join(
            [
                self._source(FALLBACK_LOOKBACK),
                self._identifier_filter(identifier),
                f'  |> filter(fn: (r) => r["_field"] =~ {FUEL_CHANNEL_FLUX_REGEX})',
                '  |> group(columns: ["_field"])',
                "  |> first()",
                '  |> keep(columns: ["_field"])',
            ]
        )

    def identifier_exists(self, identifier: str) -> str:
        return "\n".join(
            [
                self._source(IDENTIFIER_LOOKBACK),
                self._identifier_filter(identifier),
                "  |> limit(n: 1)",
            ]
        )

    def availability_probe(
        self, identifier: str, start: datetime, end: datetime, limit: int
    ) -> str:
        return "\n".join(
            [
                self._window(start, end),
                self._identifier_filter(identifier),
                '  |> keep(columns: ["_time", "_field"])',
                "  |> group()",
                '  |> sort(columns: ["_time"])',
                f"  |> limit(n: {limit})",
            ]
        )

    def recent_timestamps(self, identifier: str, limit: int) -> str:
        return "\n".join(
            [
                self._source(RECENT_LOOKBACK),
                self._identifier_filter(identifier),
                '  |> keep(columns: ["_time"])',
                "  |> group()",
                '  |> sort(columns: ["_time"], desc: true)',
                f"  |> limit(n: {limit})",
            ]
        )

    def telemetry(
        self,
        identifier: str,
        start: datetime,
        end: datetime,
        fields: list[str],
        window: AggregationWindow,
        limit: int,
    ) -> str:
        if not fields:
            raise ValueError("At least one field is required")

        fields_filter = " or ".join(
            f'r["_field"] == "{escape_flux_string(field)}"' for field in fields
        )
        lines = [
            self._window(start, end),
            self._identifier_filter(identifier),
            f"  |> filter(fn: (r) => {fields_filter})",
        ]
        if window.aggregated:
            lines.append(f"  {window.flux()}")
        lines.extend(
            [
                '  |> keep(columns: ["_time", "_field", "_value"])',
                "  |> group()",
                '  |> sort(columns: ["_time"])',
                f"  |> limit(n: {limit})",
            ]
        )
        return "\n".join(lines)

    def health_probe(self) -> str:
        return "\n".join([self._source(HEALTH_PROBE_LOOKBACK), "  |> limit(n: 1)"])
