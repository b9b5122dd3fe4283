"""
Reshapes the flat row stream of the main telemetry query into typed series.

Rows arrive as ``{"_time", "_field", "_value"}`` dicts already sorted by time.
Each field name is classified once into a ``FieldKind``; unit conversion and
validity checks then branch on the kind, never on the raw name.
"""

import logging
import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Optional

from trackview.config.settings import get_settings
from trackview.models.fields import FieldKind, classify_field
from trackview.models.telemetry import (
    DataInfo,
    FuelSensorData,
    TelemetryResponse,
    TelemetrySeries,
    TimeRange,
    TimeValue,
    TrackPoint,
)

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")
# wide enough for the largest finite float plus two decimals
_ROUNDING_CONTEXT = Context(prec=400)


def round2(value: float) -> float:
    """Round half away from zero to two decimals (12.345 -> 12.35)."""
    rounded = Decimal(repr(value)).quantize(
        _CENTS, rounding=ROUND_HALF_UP, context=_ROUNDING_CONTEXT
    )
    return float(rounded)


def parse_value(raw) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_time(raw) -> Optional[datetime]:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str):
        try:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def valid_latitude(value: Optional[float]) -> bool:
    return value is not None and value != 0 and -90 <= value <= 90


def valid_longitude(value: Optional[float]) -> bool:
    return value is not None and value != 0 and -180 <= value <= 180


def fuel_sensor_key(channel: int) -> str:
    return f"level_{channel}"


def empty_response(
    start: datetime, end: datetime, available_sensors: list[str]
) -> TelemetryResponse:
    return TelemetryResponse(
        series=TelemetrySeries(),
        fuel_sensors={},
        track=[],
        data_info=DataInfo(
            total_points=0,
            time_range=TimeRange(start=start, end=end),
            available_sensors=list(available_sensors),
            aggregation_used=False,
        ),
    )


class ResultTransformer:
    def __init__(self, max_rows: int = None):
        self.max_rows = max_rows or get_settings().telemetry_max_rows
        self.skipped = 0
        self.unrecognized = 0

        self._speed: list[TimeValue] = []
        self._voltage: list[TimeValue] = []
        self._fuel: dict[int, list[TimeValue]] = {}
        self._coordinates: dict[datetime, dict[str, float]] = {}

    def _consume(self, row: dict):
        time = parse_time(row.get("_time"))
        value = parse_value(row.get("_value"))
        if time is None or value is None:
            self.skipped += 1
            return

        tag = classify_field(row.get("_field"))
        if tag is None:
            self.unrecognized += 1
            return

        if tag.kind == FieldKind.VOLTAGE:
            self._voltage.append(TimeValue(time=time, value=round2(value / 1000)))
        elif tag.kind == FieldKind.SPEED:
            self._speed.append(TimeValue(time=time, value=max(0.0, round2(value))))
        elif tag.kind == FieldKind.LATITUDE:
            if valid_latitude(value):
                self._coordinates.setdefault(time, {})["lat"] = value
        elif tag.kind == FieldKind.LONGITUDE:
            if valid_longitude(value):
                self._coordinates.setdefault(time, {})["lon"] = value
        elif tag.kind == FieldKind.FUEL_LEVEL:
            self._fuel.setdefault(tag.channel, []).append(
                TimeValue(time=time, value=round2(value))
            )

    def _track(self) -> list[TrackPoint]:
        track = [
            TrackPoint(
                time=time,
                lat=coordinate["lat"],
                lon=coordinate["lon"],
                event_time=math.floor(time.timestamp()),
            )
            for time, coordinate in self._coordinates.items()
            if valid_latitude(coordinate.get("lat"))
            and valid_longitude(coordinate.get("lon"))
        ]
        track.sort(key=lambda point: point.time)
        return track

    def transform(
        self,
        rows: list[dict],
        start: datetime,
        end: datetime,
        available_sensors: list[str],
        aggregation_used: bool,
    ) -> TelemetryResponse:
        if len(rows) > self.max_rows:
            logger.warning(
                f"Received {len(rows)} rows, only the first {self.max_rows} are processed"
            )
            rows = rows[: self.max_rows]

        for row in rows:
            self._consume(row)

        track = self._track()
        fuel_sensors = {
            fuel_sensor_key(channel): FuelSensorData(
                data=points, sensor_id=str(channel), unit="units"
            )
            for channel, points in sorted(self._fuel.items())
            if points
        }

        total_points = (
            len(self._speed)
            + len(self._voltage)
            + sum(len(sensor.data) for sensor in fuel_sensors.values())
            + len(track)
        )

        logger.info(f"Processed {len(rows)} raw records into {total_points} structured points")
        logger.info(
            f"Series: speed={len(self._speed)}, voltage={len(self._voltage)}, "
            f"fuel sensors={', '.join(f'{k}={len(v.data)}' for k, v in fuel_sensors.items()) or 'none'}"
        )
        logger.info(
            f"Track points: {len(track)}, skipped rows: {self.skipped}, "
            f"unrecognized fields: {self.unrecognized}"
        )

        return TelemetryResponse(
            series=TelemetrySeries(speed=self._speed, main_power_voltage=self._voltage),
            fuel_sensors=fuel_sensors,
            track=track,
            data_info=DataInfo(
                total_points=total_points,
                time_range=TimeRange(start=start, end=end),
                available_sensors=list(available_sensors),
                aggregation_used=aggregation_used,
            ),
        )
