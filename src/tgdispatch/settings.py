from __future__ import annotations

import ipaddress

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

from .webhook import WebhookErrorPolicy

__all__ = ["DispatchSettings", "PollingSettings", "WebhookSettings"]


class PollingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    limit: int = Field(default=100, ge=1, le=100)
    timeout_s: int = Field(default=50, ge=0)
    allowed_updates: list[str] | None = None
    backoff_initial_s: float = Field(default=1.0, ge=0)
    backoff_max_s: float = Field(default=30.0, ge=0)
    backoff_jitter: float = Field(default=0.1, ge=0, le=1)
    handler_timeout_s: float | None = Field(default=None, gt=0)
    drop_pending_updates: bool = False

    @model_validator(mode="after")
    def _check_backoff(self) -> PollingSettings:
        if self.backoff_max_s < self.backoff_initial_s:
            raise ValueError("backoff_max_s must be >= backoff_initial_s")
        return self


class WebhookSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    path: str = "/webhook"
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    secret_token: SecretStr | None = None
    drop_pending_updates: bool = False
    error_policy: WebhookErrorPolicy = WebhookErrorPolicy.ACKNOWLEDGE
    background: bool = False
    allowed_updates: list[str] | None = None
    max_connections: int | None = Field(default=None, ge=1, le=100)
    ip_address: str | None = None
    security_subnets: list[str] | None = None
    handler_timeout_s: float | None = Field(default=None, gt=0)

    @field_validator("security_subnets")
    @classmethod
    def _check_subnets(cls, value: list[str] | None) -> list[str] | None:
        if value is not None:
            for item in value:
                ipaddress.ip_network(item, strict=False)
        return value

    @model_validator(mode="after")
    def _check_policy(self) -> WebhookSettings:
        if self.background and self.error_policy is WebhookErrorPolicy.REDELIVER:
            raise ValueError("error_policy 'redeliver' cannot be used with background")
        return self


class DispatchSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bot_token: SecretStr | None = None
    api_base_url: str = "https://api.telegram.org"
    polling: PollingSettings = Field(default_factory=PollingSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
