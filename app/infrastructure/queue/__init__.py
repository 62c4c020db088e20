"""Job queue infrastructure.

Provides the queue contract used by the notification pipeline (priority,
delayed jobs, attempts with backoff, at-least-once delivery), an in-memory
implementation and a polling worker.
"""

from infrastructure.queue.config import QueueConfig
from infrastructure.queue.models import (
    BackoffOptions,
    Job,
    JobOptions,
    JobState,
    PermanentJobError,
)
from infrastructure.queue.store import InMemoryJobQueue, JobQueue
from infrastructure.queue.worker import JobHandler, JobWorker

__all__ = [
    "BackoffOptions",
    "InMemoryJobQueue",
    "Job",
    "JobHandler",
    "JobOptions",
    "JobQueue",
    "JobState",
    "JobWorker",
    "PermanentJobError",
    "QueueConfig",
]
