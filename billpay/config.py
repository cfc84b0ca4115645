from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_host: str = "0.0.0.0"
    app_port: int = 8000
    env: str = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./billpay.db"

    # customer-facing base url, used to build the post-payment redirect
    public_app_url: str = "http://localhost:3000"

    beam_sandbox_api_base: str = "https://playground.api.beamcheckout.com"
    beam_production_api_base: str = "https://api.beamcheckout.com"
    gateway_timeout_seconds: float = 30.0

    service_api_key: str = ""


_cached_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _cached_settings
    if _cached_settings is None:
        _cached_settings = Settings()
    return _cached_settings
