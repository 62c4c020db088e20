"""
Dependency injection services.

Provides type aliases and provider functions for FastAPI dependency injection.
"""

from infrastructure.services.dependencies import (
    SettingsDep,
    EventBusDep,
    JobQueueDep,
    NotificationServiceDep,
)
from infrastructure.services.providers import (
    get_settings,
    get_event_bus,
    get_job_queue,
    get_dedup_index,
    get_notification_service,
    get_job_worker,
)

__all__ = [
    "SettingsDep",
    "EventBusDep",
    "JobQueueDep",
    "NotificationServiceDep",
    "get_settings",
    "get_event_bus",
    "get_job_queue",
    "get_dedup_index",
    "get_notification_service",
    "get_job_worker",
]
