"""
Type aliases for FastAPI dependency injection.

Provides annotated type hints for common infrastructure dependencies.
"""

from typing import Annotated
from fastapi import Depends
from infrastructure.configuration import Settings
from infrastructure.events import EventBus
from infrastructure.queue import JobQueue
from infrastructure.services.providers import (
    get_settings,
    get_event_bus,
    get_job_queue,
    get_notification_service,
)
from modules.notify.service import NotificationService

# Settings dependency
SettingsDep = Annotated[Settings, Depends(get_settings)]

# Event bus dependency
EventBusDep = Annotated[EventBus, Depends(get_event_bus)]

# Job queue dependency - webhook routes enqueue process-callback jobs here
JobQueueDep = Annotated[JobQueue, Depends(get_job_queue)]

# Notification pipeline dependency
NotificationServiceDep = Annotated[
    NotificationService, Depends(get_notification_service)
]

__all__ = [
    "SettingsDep",
    "EventBusDep",
    "JobQueueDep",
    "NotificationServiceDep",
]
