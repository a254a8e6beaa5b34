"""Configuration management for the chama contributions service."""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chama.services.daraja import DarajaConfig


class Settings(BaseSettings):
    app_name: str = Field(default="Chama Contributions Service")
    version: str = Field(default="0.1.0")
    docs_url: str | None = Field(default="/docs")
    redoc_url: str | None = Field(default="/redoc")
    openapi_url: str = Field(default="/openapi.json")

    database_url: str = Field(default="postgresql+psycopg://chama:chama@db:5432/chama")

    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=True)
    otel_exporter_endpoint: str | None = Field(default=None)

    jwt_algorithm: str = Field(default="HS256")
    jwt_secret_key: str = Field(default="dev-only-change-me")
    access_token_expire_minutes: int = Field(default=15)
    refresh_token_expire_days: int = Field(default=7)
    elevated_roles: tuple[str, ...] = Field(default=("SECRETARY", "CHAIRPERSON"))

    daraja_base_url: str = Field(default="https://sandbox.safaricom.co.ke")
    daraja_consumer_key: str = Field(default="")
    daraja_consumer_secret: str = Field(default="")
    daraja_shortcode: str = Field(default="174379")
    daraja_passkey: str = Field(default="")
    daraja_callback_url: str = Field(default="https://example.com/api/transactions/daraja-callback")
    daraja_timeout_seconds: float = Field(default=10.0)
    daraja_utc_offset_hours: int = Field(default=3)
    daraja_credential_margin_seconds: int = Field(default=60)

    reconciliation_max_attempts: int = Field(default=3, ge=1)

    # None disables expiry of pending push requests.
    pending_request_retention_hours: int | None = Field(default=None)
    balance_repair_interval_seconds: int = Field(default=300)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    def daraja_config(self) -> DarajaConfig:
        """Build the explicit gateway configuration handed to :class:`DarajaClient`."""

        return DarajaConfig(
            base_url=self.daraja_base_url,
            consumer_key=self.daraja_consumer_key,
            consumer_secret=self.daraja_consumer_secret,
            shortcode=self.daraja_shortcode,
            passkey=self.daraja_passkey,
            callback_url=self.daraja_callback_url,
            timeout_seconds=self.daraja_timeout_seconds,
            utc_offset_hours=self.daraja_utc_offset_hours,
            credential_margin_seconds=self.daraja_credential_margin_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


__all__ = ["Settings", "get_settings"]
