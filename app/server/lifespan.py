from contextlib import asynccontextmanager
import sys
import threading
from typing import AsyncIterator, Optional, TYPE_CHECKING

from fastapi import FastAPI
from structlog.stdlib import BoundLogger

from infrastructure.logging.setup import configure_logging
from infrastructure.services import (
    get_event_bus,
    get_job_worker,
    get_notification_service,
    get_settings,
)
from jobs import scheduled_tasks

if TYPE_CHECKING:
    from infrastructure.configuration import Settings


def _is_test_environment() -> bool:
    """Detect if running in a test environment."""
    return "pytest" in sys.modules


def _get_logger(settings: "Settings") -> BoundLogger:
    return configure_logging(
        log_level=settings.LOG_LEVEL, is_production=settings.is_production
    )


def _list_configs(settings: "Settings", logger: BoundLogger) -> None:
    config_settings: dict[str, list[object]] = {"settings": []}

    for key, value in settings.model_dump().items():
        if isinstance(value, dict):
            config_settings[key] = list(value.keys())
        else:
            config_settings["settings"].append({key: value})

    logger.info("configuration_initialized", base_settings=config_settings["settings"])
    for key, value in config_settings.items():
        if key != "settings":
            logger.info("configuration_loaded", config_setting=key, keys=value)


def _start_background_jobs(
    settings: "Settings", logger: BoundLogger
) -> list[threading.Event]:
    if _is_test_environment() or not settings.server.RUN_BACKGROUND_JOBS:
        logger.info("background_jobs_skipped")
        return []

    service = get_notification_service()
    scheduled_tasks.init(service)
    stop_events = [
        scheduled_tasks.run_continuously(),
        scheduled_tasks.run_worker_loop(get_job_worker()),
    ]
    logger.info("background_jobs_started")
    return stop_events


def _stop_background_jobs(stop_events: Optional[list[threading.Event]]) -> None:
    for stop_event in stop_events or []:
        stop_event.set()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger = _get_logger(settings)

    app.state.settings = settings
    app.state.logger = logger

    logger.info("application_startup")
    _list_configs(settings, logger)

    service = get_notification_service()
    problems = service.registry.validate_all()
    if problems:
        logger.warning("channel_adapters_misconfigured", adapters=list(problems))
    app.state.notification_service = service

    app.state.background_stop_events = _start_background_jobs(settings, logger)

    yield

    logger.info("application_shutdown")

    _stop_background_jobs(app.state.background_stop_events)
    get_event_bus().shutdown(wait=False)
