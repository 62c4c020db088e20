"""Infrastructure settings __init__ - exports all infrastructure settings."""

from infrastructure.configuration.infrastructure.idempotency import DedupSettings
from infrastructure.configuration.infrastructure.redis import RedisSettings
from infrastructure.configuration.infrastructure.job_queue import JobQueueSettings
from infrastructure.configuration.infrastructure.server import ServerSettings

__all__ = [
    "DedupSettings",
    "JobQueueSettings",
    "RedisSettings",
    "ServerSettings",
]
