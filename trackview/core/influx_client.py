import logging
from typing import Optional

from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync

from trackview.config.settings import get_settings

logger = logging.getLogger(__name__)

_influx_client: Optional[InfluxDBClientAsync] = None


async def get_influx_client() -> InfluxDBClientAsync:
    global _influx_client

    if _influx_client is None:
        settings = get_settings()
        missing = settings.missing_influx_settings()
        if missing:
            raise RuntimeError(
                f"InfluxDB configuration is incomplete. Missing: {', '.join(missing)}"
            )

        _influx_client = InfluxDBClientAsync(
            url=settings.influx_url,
            token=settings.influx_token,
            org=settings.influx_org,
            timeout=settings.influx_timeout_ms,
        )
        logger.info("InfluxDB client initialized")
        logger.debug(
            f"Configuration: URL={settings.influx_url}, ORG={settings.influx_org}, "
            f"BUCKET={settings.influx_bucket}, MEASUREMENT={settings.influx_measurement}"
        )

    return _influx_client


async def close_influx_client():
    global _influx_client
    if _influx_client:
        await _influx_client.close()
        _influx_client = None
