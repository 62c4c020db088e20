"""
Factory functions for dependency injection.

Provides application-scoped singleton providers for core infrastructure services.
"""

from functools import lru_cache

from infrastructure.configuration import Settings
from infrastructure.events import EventBus
from infrastructure.idempotency import DedupIndex, create_dedup_index
from infrastructure.queue import InMemoryJobQueue, JobQueue, JobWorker, QueueConfig
from modules.notify.service import NotificationService


@lru_cache
def get_settings() -> Settings:
    """
    Get application-scoped settings singleton.

    This is the single source of truth for settings across the entire application.
    The @lru_cache decorator ensures only ONE instance is created per process,
    even if called from multiple packages.

    Application code should use the DI type alias for testability:
        from infrastructure.services import SettingsDep
        @router.get("/config")
        def get_config(settings: SettingsDep):
            return settings.model_dump()

    Returns:
        Settings: Cached settings instance loaded from environment.
    """
    return Settings()


@lru_cache
def get_event_bus() -> EventBus:
    """Get the application-scoped event bus."""
    return EventBus()


@lru_cache
def get_job_queue() -> JobQueue:
    """Get the application-scoped job queue."""
    return InMemoryJobQueue()


@lru_cache
def get_dedup_index() -> DedupIndex:
    """Get the dedup index selected by DEDUP_BACKEND."""
    return create_dedup_index(get_settings())


@lru_cache
def get_notification_service() -> NotificationService:
    """
    Get the application-scoped notification pipeline.

    The service is subscribed to the event bus on creation so domain events
    published anywhere in the process reach the planner.

    Usage:
        @router.get("/messages/{message_id}/explain")
        def explain(message_id: str, service: NotificationServiceDep):
            return service.explain(tenant_id, message_id)
    """
    event_bus = get_event_bus()
    service = NotificationService(
        settings=get_settings(),
        queue=get_job_queue(),
        event_bus=event_bus,
        dedup_index=get_dedup_index(),
    )
    service.subscribe(event_bus)
    return service


@lru_cache
def get_job_worker() -> JobWorker:
    """Get the queue worker with every pipeline job handler registered."""
    settings = get_settings()
    worker = JobWorker(
        queue=get_job_queue(),
        config=QueueConfig.from_settings(settings.job_queue),
        worker_id=settings.job_queue.worker_id,
    )
    get_notification_service().register_handlers(worker)
    return worker
