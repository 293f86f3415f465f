from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the Origin telescope client."""

    model_config = SettingsConfigDict(env_prefix="ORIGIN_ALPACA_", env_file=".env", extra="allow")

    origin_host: str = "192.168.1.1"
    origin_port: int = 80
    origin_ws_path: str = "/SmartScope-1.0/mountControlEndpoint"
    origin_image_path: str = "/SmartScope-1.0/dev2/"

    connect_timeout_seconds: float = 10.0
    ws_ping_interval_seconds: float = 15.0
    status_poll_interval_seconds: float = 5.0
    http_timeout_seconds: float = 30.0

    command_source: str = "AlpacaServer"
    sequence_id_base: int = 2000
    pending_command_limit: int = 256

    site_latitude_degrees: float = 52.2
    site_longitude_degrees: float = 0.0
    site_timezone: str = "UTC"

    default_exposure_seconds: float = 0.1
    default_iso: int = 200
    single_shot_settle_seconds: float = 0.5
    single_shot_timeout_margin_seconds: float = 30.0


def load_settings(config_path: Optional[str]) -> Settings:
    """Load settings optionally layering a YAML profile file."""
    settings = Settings()
    if config_path:
        from .yaml_loader import load_yaml_settings

        return load_yaml_settings(settings, config_path)
    return settings
