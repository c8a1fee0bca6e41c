"""Configuration for the universal gRPC gun."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class GunConfig(BaseSettings):
    """Gun settings loaded from environment variables (``GUN_*``)."""

    # Target endpoint, "host:port". Bind fails without it.
    target: str

    # Channel settings
    user_agent: str = "pandora load test"
    connect_timeout: float = 10.0
    max_message_size: int = 16 * 1024 * 1024
    keepalive_time_ms: int = 10000
    keepalive_timeout_ms: int = 5000

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Observability
    enable_metrics: bool = False
    metrics_port: int = 8080

    class Config:
        env_prefix = "GUN_"
        case_sensitive = False

    @field_validator("target")
    @classmethod
    def _target_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("target must not be empty")
        return value


@lru_cache()
def get_settings() -> GunConfig:
    """Get cached settings instance."""
    return GunConfig()
