"""Infrastructure configuration module - public API.

This module provides centralized configuration management for the
notification orchestrator using Pydantic BaseSettings with domain-based
organization.

Exports:
    settings: Singleton Settings instance (main configuration object)
    Settings: Main settings class (for testing/overrides)
    NotificationPipelineSettings: Pipeline settings class (for testing)

Example:
    ```python
    from infrastructure.services import get_settings

    settings = get_settings()

    max_attempts = settings.notifications.max_attempts
    api_url = settings.notify.NOTIFY_API_URL
    ```
"""

from infrastructure.configuration.settings import Settings, settings
from infrastructure.configuration.features import NotificationPipelineSettings

__all__ = ["Settings", "settings", "NotificationPipelineSettings"]
