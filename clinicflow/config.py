from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotifierBackend(Enum):
    LOG = "log"
    WEBHOOK = "webhook"


class WebhookConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CLINICFLOW_WEBHOOK_", env_file=".env", extra="ignore"
    )

    url: str = ""
    token: str = ""
    timeout_seconds: float = 10.0


class NegotiationConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CLINICFLOW_", env_file=".env", extra="ignore")

    clinic_timezone: str = "UTC"
    notifier: NotifierBackend = NotifierBackend.LOG
    conflict_retries: int = Field(default=2, ge=0)
    reject_past_requests: bool = False


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    negotiation: NegotiationConfig = Field(default_factory=lambda: NegotiationConfig())
    webhook: WebhookConfig = Field(default_factory=lambda: WebhookConfig())
