from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import DotEnvSettingsSource, PydanticBaseSettingsSource


class Settings(BaseSettings):
    """
    Global settings for the tracesensor agent.

    Values are loaded from environment variables. The sensor only consumes
    them; which endpoint and which identity strategy get picked is decided by
    the collector and identity modules.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Customize settings source precedence to include a user-level env file.

        Precedence (highest to lowest):
        - init_settings (explicit kwargs)
        - env_settings (process environment)
        - dotenv_settings (project .env)
        - user_dotenv_settings (~/.tracesensor/.env)
        - file_secret_settings
        """

        user_env_path = Path.home() / ".tracesensor" / ".env"
        user_dotenv_settings = DotEnvSettingsSource(
            settings_cls,
            env_file=user_env_path,
            env_file_encoding="utf-8",
        )

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            user_dotenv_settings,
            file_secret_settings,
        )

    agent_key: str | None = Field(
        default=None,
        description="Key sent with every request to the collector",
        validation_alias="TRACESENSOR_AGENT_KEY",
    )

    endpoint_url: str | None = Field(
        default=None,
        description="Serverless ingestion URL, takes priority over the local agent",
        validation_alias="TRACESENSOR_ENDPOINT_URL",
    )

    agent_host: str = Field(
        default="localhost",
        description="Host of the local agent daemon",
        validation_alias="TRACESENSOR_AGENT_HOST",
    )

    agent_port: int = Field(
        default=42699,
        description="Port of the local agent daemon",
        validation_alias="TRACESENSOR_AGENT_PORT",
    )

    aws_execution_env: str | None = Field(
        default=None,
        description="Execution environment marker set by the AWS runtime",
        validation_alias="AWS_EXECUTION_ENV",
    )

    ecs_metadata_uri: str | None = Field(
        default=None,
        description="ECS container metadata endpoint (v3/v4)",
        validation_alias="ECS_CONTAINER_METADATA_URI",
    )

    service_name: str | None = Field(
        default=None,
        description="Service name reported on every span",
        validation_alias="TRACESENSOR_SERVICE_NAME",
    )

    telemetry_enabled: bool = Field(
        default=True,
        description="Enable delivery of spans and metrics",
        validation_alias="TRACESENSOR_TELEMETRY_ENABLED",
    )

    queue_size: int = Field(
        default=1000,
        description="Maximum number of records buffered for delivery",
        validation_alias="TRACESENSOR_QUEUE_SIZE",
    )

    max_batch_size: int = Field(
        default=500,
        description="Maximum number of records per request",
        validation_alias="TRACESENSOR_MAX_BATCH_SIZE",
    )

    flush_interval: float = Field(
        default=1.0,
        description="Seconds between queue drains",
        validation_alias="TRACESENSOR_FLUSH_INTERVAL",
    )

    metrics_interval: float = Field(
        default=1.0,
        description="Seconds between metric snapshots",
        validation_alias="TRACESENSOR_METRICS_INTERVAL",
    )

    max_attempts: int = Field(
        default=3,
        description="Delivery attempts per batch before it is dropped",
        validation_alias="TRACESENSOR_MAX_ATTEMPTS",
    )

    retry_delay: float = Field(
        default=0.5,
        description="Base delay for exponential backoff between attempts",
        validation_alias="TRACESENSOR_RETRY_DELAY",
    )

    max_retry_delay: float = Field(
        default=5.0,
        description="Upper bound for a single backoff delay",
        validation_alias="TRACESENSOR_MAX_RETRY_DELAY",
    )

    batch_timeout: float = Field(
        default=10.0,
        description="Overall timeout for delivering one batch, retries included",
        validation_alias="TRACESENSOR_BATCH_TIMEOUT",
    )

    metadata_timeout: float = Field(
        default=2.0,
        description="Timeout for container metadata requests",
        validation_alias="TRACESENSOR_METADATA_TIMEOUT",
    )


# Create a singleton instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings
