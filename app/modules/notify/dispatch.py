"""Enqueueing of pipeline jobs."""

from datetime import datetime
from typing import Optional

from infrastructure.queue import BackoffOptions, JobOptions, JobQueue
from modules.notify.domain import (
    PRIORITY_MAP,
    DeliverNotificationPayload,
    JobType,
    utc_now,
)

DEFAULT_BACKOFF_DELAY_MS = 2000

# Provider outcomes are retried by the executor as new jobs; queue retries
# only cover a handler that raised, such as a failed DLQ write
DELIVER_JOB_ATTEMPTS = 3


def delay_until(when: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Milliseconds from now until when (0 if unset or in the past)."""
    if when is None:
        return 0
    remaining = (when - (now or utc_now())).total_seconds() * 1000
    return max(int(remaining), 0)


def enqueue_delivery(
    queue: JobQueue,
    payload: DeliverNotificationPayload,
    delay_ms: int = 0,
    attempts: int = DELIVER_JOB_ATTEMPTS,
    backoff_delay_ms: int = DEFAULT_BACKOFF_DELAY_MS,
) -> str:
    """Enqueue a deliver-notification job at the payload's priority."""
    options = JobOptions(
        priority=PRIORITY_MAP[payload.priority],
        attempts=attempts,
        backoff=BackoffOptions(type="exponential", delay_ms=backoff_delay_ms),
        delay_ms=max(delay_ms, 0),
        remove_on_complete=True,
    )
    return queue.add(
        JobType.DELIVER_NOTIFICATION.value, payload.model_dump(mode="json"), options
    )
