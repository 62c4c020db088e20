"""Notification orchestrator configuration settings - main aggregator."""

from pydantic_settings import BaseSettings, SettingsConfigDict

# Integration settings
from infrastructure.configuration.integrations import (
    NotifySettings,
    SlackSettings,
    WebPushSettings,
    WhatsAppSettings,
)

# Feature settings
from infrastructure.configuration.features import NotificationPipelineSettings

# Infrastructure settings
from infrastructure.configuration.infrastructure import (
    DedupSettings,
    JobQueueSettings,
    RedisSettings,
    ServerSettings,
)


class Settings(BaseSettings):
    """Notification orchestrator configuration settings - main aggregator.

    Aggregates all domain-specific settings into a single configuration object.
    Settings are organized by concern:

    - **Integrations**: Provider configurations (GC Notify, Slack, Meta, Web Push)
    - **Features**: The notification pipeline (retries, digests, sweeps)
    - **Infrastructure**: Job queue, dedup index, Redis and the HTTP server

    Environment Variables:
        PREFIX: Environment prefix for non-production deployments
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        GIT_SHA: Git commit SHA for deployment tracking
        ENVIRONMENT: Deployment environment name reported by /version

    Example:
        ```python
        from infrastructure.configuration import settings

        # Access integration settings
        token = settings.whatsapp.WHATSAPP_ACCESS_TOKEN

        # Access feature settings
        max_attempts = settings.notifications.max_attempts

        # Check environment
        if settings.is_production:
            # Production-specific logic...
        ```
    """

    # Application-level settings
    PREFIX: str = ""
    LOG_LEVEL: str = "INFO"
    GIT_SHA: str = "Unknown"
    ENVIRONMENT: str = "development"

    # Integration settings
    notify: NotifySettings
    slack: SlackSettings
    whatsapp: WhatsAppSettings
    web_push: WebPushSettings

    # Feature settings
    notifications: NotificationPipelineSettings

    # Infrastructure settings
    server: ServerSettings
    job_queue: JobQueueSettings
    dedup: DedupSettings
    redis: RedisSettings

    @property
    def is_production(self) -> bool:
        """Check if the application is running in production.

        Returns:
            True if PREFIX is empty (production), False otherwise.
        """
        return not bool(self.PREFIX)

    def __init__(self, **kwargs):
        """Initialize Settings with automatic subsettings instantiation.

        Args:
            **kwargs: Optional overrides for specific settings sections.
        """
        settings_map = {
            # Integrations
            "notify": NotifySettings,
            "slack": SlackSettings,
            "whatsapp": WhatsAppSettings,
            "web_push": WebPushSettings,
            # Features
            "notifications": NotificationPipelineSettings,
            # Infrastructure
            "server": ServerSettings,
            "job_queue": JobQueueSettings,
            "dedup": DedupSettings,
            "redis": RedisSettings,
        }

        for setting_name, setting_class in settings_map.items():
            if setting_name not in kwargs:
                kwargs[setting_name] = setting_class()

        super().__init__(**kwargs)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


# Create the singleton settings instance
settings = Settings()
