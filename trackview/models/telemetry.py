from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TimeValue(BaseModel):
    time: datetime
    value: float


class TrackPoint(BaseModel):
    time: datetime
    lat: float
    lon: float
    event_time: int


class FuelSensorData(BaseModel):
    data: list[TimeValue]
    sensor_id: str
    unit: str = "units"


class TimeRange(BaseModel):
    start: datetime
    end: datetime


class DataInfo(BaseModel):
    total_points: int
    time_range: TimeRange
    available_sensors: list[str] = Field(default_factory=list)
    aggregation_used: bool = False


class TelemetrySeries(BaseModel):
    speed: list[TimeValue] = Field(default_factory=list)
    main_power_voltage: list[TimeValue] = Field(default_factory=list)


class TelemetryResponse(BaseModel):
    series: TelemetrySeries
    fuel_sensors: dict[str, FuelSensorData] = Field(default_factory=dict)
    track: list[TrackPoint] = Field(default_factory=list)
    data_info: DataInfo


class DataAvailability(BaseModel):
    has_data: bool
    data_range: Optional[TimeRange] = None
    available_fields: list[str] = Field(default_factory=list)
    estimated_points: int = 0


class RecommendedRange(BaseModel):
    start: datetime
    end: datetime
    sample_count: int


class ConnectionStatus(BaseModel):
    connected: bool
    last_tested_at: datetime
    bucket: str
    org: str
    measurement: str
    url: str
