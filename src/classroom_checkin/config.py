"""Application configuration."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    checkin_api_url: str = "http://localhost:8000"
    geolocation_api_url: str = "https://www.googleapis.com/geolocation"
    geolocation_api_key: str | None = None
    max_radius_meters: float = Field(default=50.0, gt=0)
    min_session_minutes: int = Field(default=1, ge=1)
    max_session_minutes: int = Field(default=480, ge=1)
    default_session_minutes: int = 30
    max_extension_minutes: int = Field(default=60, ge=1)
    location_timeout_seconds: float = Field(default=10.0, gt=0)
    location_max_staleness_seconds: float = Field(default=60.0, ge=0)
    retry_cooldown_seconds: float = Field(default=2.0, ge=0)
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
