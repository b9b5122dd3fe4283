from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from trackview.models.telemetry import DataAvailability, RecommendedRange, TelemetryResponse
from trackview.services.telemetry_service import TelemetryService, get_telemetry_service

router = APIRouter()


@router.get("", response_model=list[str])
async def list_devices(service: TelemetryService = Depends(get_telemetry_service)):
    return await service.list_identifiers()


@router.get("/{device_id}/fields", response_model=list[str])
async def list_fields(
    device_id: str, service: TelemetryService = Depends(get_telemetry_service)
):
    fields = await service.list_fields(device_id)
    if not fields:
        raise HTTPException(status_code=404, detail=f"No fields found for {device_id}")
    return fields


@router.get("/{device_id}/fuel-sensors", response_model=list[str])
async def list_fuel_sensors(
    device_id: str, service: TelemetryService = Depends(get_telemetry_service)
):
    return await service.list_fuel_channels(device_id)


@router.get("/{device_id}/availability", response_model=DataAvailability)
async def check_availability(
    device_id: str,
    start: datetime,
    end: datetime,
    service: TelemetryService = Depends(get_telemetry_service),
):
    return await service.check_availability(device_id, start, end)


@router.get("/{device_id}/recommended-range", response_model=RecommendedRange)
async def get_recommended_range(
    device_id: str, service: TelemetryService = Depends(get_telemetry_service)
):
    recommendation = await service.get_recommended_range(device_id)
    if not recommendation:
        raise HTTPException(status_code=404, detail=f"No recent data for {device_id}")
    return recommendation


@router.get("/{device_id}/telemetry", response_model=TelemetryResponse)
async def get_telemetry(
    device_id: str,
    start: datetime,
    end: datetime,
    service: TelemetryService = Depends(get_telemetry_service),
):
    return await service.get_telemetry(device_id, start, end)
