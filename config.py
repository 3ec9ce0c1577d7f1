"""
Runtime configuration for the hiking events service.

Everything is read from environment variables (a local `.env` file is
loaded first when present) so the API, the notification worker and the
daily sweep share one source of truth.
"""
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        frozen=True,
        env_ignore_empty=True,
    )

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "trailhead"

    jwt_key: str = Field(default="", validation_alias=AliasChoices("AUTH_JWT_KEY", "jwt_key"))
    jwt_algorithms: str = Field(
        default="HS256",
        validation_alias=AliasChoices("AUTH_JWT_ALGORITHMS", "jwt_algorithms"),
        description="Comma-separated list of accepted signing algorithms",
    )
    jwt_audience: Optional[str] = Field(default=None, validation_alias=AliasChoices("AUTH_AUDIENCE", "jwt_audience"))
    jwt_issuer: Optional[str] = Field(default=None, validation_alias=AliasChoices("AUTH_ISSUER", "jwt_issuer"))
    groups_claim: str = Field(
        default="cognito:groups", validation_alias=AliasChoices("AUTH_GROUPS_CLAIM", "groups_claim")
    )
    admin_group: str = Field(default="Admin", validation_alias=AliasChoices("AUTH_ADMIN_GROUP", "admin_group"))

    smtp_server: str = "localhost"
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    from_email: str = "no-reply@trailhead.local"
    send_emails: bool = True

    events_page_size: int = Field(default=20, ge=1)
    sweep_page_size: int = Field(default=100, ge=1)
    sweep_max_workers: int = Field(default=8, ge=1)
    notify_max_workers: int = Field(default=8, ge=1)
    worker_batch_size: int = Field(default=10, ge=1)
    worker_poll_interval: int = Field(default=5, ge=1)

    log_level: str = "INFO"
    port: int = 8000
    cors_origins: str = Field(default="*", description="Comma-separated list of allowed origins")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def jwt_algorithm_list(self) -> List[str]:
        return _split(self.jwt_algorithms)

    @property
    def cors_origin_list(self) -> List[str]:
        return _split(self.cors_origins)
