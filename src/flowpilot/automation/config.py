"""Configuration for the automation core.

Loaded from environment variables and a local `.env` file (if present). Every
setting is optional; with no webhook configured, messages go to the mock
sender.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class AutomationSettings(BaseSettings):
    """Settings for the execution engine and its collaborators.

    Notes:
        Tests can override the env file via ``AutomationSettings(_env_file=path)``.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    message_webhook_url: str = Field(
        default="",
        validation_alias="FLOWPILOT_MESSAGE_WEBHOOK_URL",
        description="HTTP endpoint that delivers ACTION messages. Empty means mock sender.",
    )
    message_webhook_token: str = Field(
        default="",
        validation_alias="FLOWPILOT_MESSAGE_WEBHOOK_TOKEN",
        description="Optional bearer token sent to the webhook",
    )
    message_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias="FLOWPILOT_MESSAGE_TIMEOUT_SECONDS",
    )
    message_channel: str = Field(
        default="whatsapp",
        validation_alias="FLOWPILOT_MESSAGE_CHANNEL",
        description="Channel name recorded in run logs and sent to the webhook",
    )
    mock_send_delay_ms: int = Field(
        default=100,
        ge=0,
        validation_alias="FLOWPILOT_MOCK_SEND_DELAY_MS",
        description="Simulated latency of the mock sender",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.upper() not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}")
        return value.upper()
