from __future__ import annotations

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from marketgate.adapters.http_backend import HttpReliabilityConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend_url: str = Field(default="http://localhost:5000", alias="MARKETGATE_BACKEND_URL")
    api_token: SecretStr | None = Field(default=None, alias="MARKETGATE_API_TOKEN")

    connect_timeout_seconds: float = Field(default=5.0, alias="MARKETGATE_CONNECT_TIMEOUT_SECONDS")
    read_timeout_seconds: float = Field(default=10.0, alias="MARKETGATE_READ_TIMEOUT_SECONDS")
    retry_base_delay_seconds: float = Field(
        default=0.3, alias="MARKETGATE_RETRY_BASE_DELAY_SECONDS"
    )
    retry_max_delay_seconds: float = Field(default=3.0, alias="MARKETGATE_RETRY_MAX_DELAY_SECONDS")
    idempotent_retry_attempts: int = Field(default=1, alias="MARKETGATE_IDEMPOTENT_RETRY_ATTEMPTS")
    cart_removal_attempts: int = Field(default=3, alias="MARKETGATE_CART_REMOVAL_ATTEMPTS")

    route_table_path: str | None = Field(default=None, alias="MARKETGATE_ROUTE_TABLE_PATH")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("backend_url")
    def validate_backend_url(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("MARKETGATE_BACKEND_URL must start with http:// or https://")
        return cleaned

    @field_validator("connect_timeout_seconds", "read_timeout_seconds")
    def validate_timeouts(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be > 0")
        return value

    @field_validator("retry_base_delay_seconds", "retry_max_delay_seconds")
    def validate_delays(cls, value: float) -> float:
        if value < 0:
            raise ValueError("retry delays must be >= 0")
        return value

    @field_validator("idempotent_retry_attempts")
    def validate_idempotent_retry_attempts(cls, value: int) -> int:
        if value < 0:
            raise ValueError("MARKETGATE_IDEMPOTENT_RETRY_ATTEMPTS must be >= 0")
        return value

    @field_validator("cart_removal_attempts")
    def validate_cart_removal_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("MARKETGATE_CART_REMOVAL_ATTEMPTS must be >= 1")
        return value

    @field_validator("route_table_path")
    def validate_route_table_path(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    def reliability(self) -> HttpReliabilityConfig:
        return HttpReliabilityConfig(
            connect_timeout_seconds=self.connect_timeout_seconds,
            read_timeout_seconds=self.read_timeout_seconds,
            idempotent_retry_attempts=self.idempotent_retry_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
        )

    def api_token_value(self) -> str | None:
        if self.api_token is None:
            return None
        return self.api_token.get_secret_value() or None
