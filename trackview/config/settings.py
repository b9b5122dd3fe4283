from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    influx_url: str = "http://localhost:8086"
    influx_token: str = ""
    influx_org: str = ""
    influx_bucket: str = ""
    influx_measurement: str = "telemetry"
    influx_identifier_tag: str = "imei"
    influx_timeout_ms: int = 90000

    query_max_retries: int = 3
    query_retry_backoff_ms: int = 2000

    store_max_rows: int = 150000
    telemetry_max_rows: int = 80000
    availability_probe_rows: int = 5000
    recent_timestamps_rows: int = 15000
    estimated_points_cap: int = 75000
    large_dataset_warning_points: int = 50000

    max_range_days: int = 60
    health_stale_seconds: int = 120

    class Config:
        env_file = ".env"

    def missing_influx_settings(self) -> list[str]:
        required = {
            "INFLUX_URL": self.influx_url,
            "INFLUX_TOKEN": self.influx_token,
            "INFLUX_ORG": self.influx_org,
            "INFLUX_BUCKET": self.influx_bucket,
        }
        return [name for name, value in required.items() if not value]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
