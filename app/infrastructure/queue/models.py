"""Job queue models.

A job is a typed payload plus the options the producer asked for:
priority, attempts, backoff and an initial delay. The queue is at-least-once;
handlers must tolerate seeing the same job twice.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional


class JobState(Enum):
    """Lifecycle of a job inside the queue."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class PermanentJobError(Exception):
    """Raised by a handler to fail a job without further attempts."""


@dataclass
class BackoffOptions:
    """Backoff policy applied between attempts of one job."""

    type: str = "exponential"
    delay_ms: int = 2000

    def __post_init__(self) -> None:
        if self.type not in ("exponential", "fixed"):
            raise ValueError("backoff type must be 'exponential' or 'fixed'")
        if self.delay_ms < 0:
            raise ValueError("backoff delay_ms must be non-negative")

    def delay_for(self, attempts_made: int) -> int:
        """Delay in milliseconds before the attempt following attempts_made."""
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * (2 ** max(attempts_made - 1, 0))


@dataclass
class JobOptions:
    """Producer options for a job.

    Fields:
        priority: Lower numbers run first
        attempts: Total attempts before the job is parked as failed
        backoff: Delay policy between attempts
        delay_ms: Initial delay before the first attempt
        remove_on_complete: Drop the job from the queue once it succeeds
    """

    priority: int = 10
    attempts: int = 1
    backoff: BackoffOptions = field(default_factory=BackoffOptions)
    delay_ms: int = 0
    remove_on_complete: bool = True

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be non-negative")


@dataclass
class Job:
    """A queued unit of work.

    Fields:
        job_type: Handler key (e.g. "deliver-notification")
        payload: JSON-serializable handler input
        options: JobOptions supplied by the producer
        id: Unique identifier (assigned by the queue)
        state: Current JobState
        attempts_made: Attempts that have finished (successfully or not)
        last_error: Error recorded by the last failed attempt
        run_at: Earliest time the job may run
    """

    job_type: str
    payload: Dict[str, Any]
    options: JobOptions = field(default_factory=JobOptions)

    id: Optional[str] = None
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    last_error: Optional[str] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        """Validate required fields."""
        if not self.job_type:
            raise ValueError("job_type is required")
        if not isinstance(self.payload, dict):
            raise ValueError("payload must be a dictionary")
        if self.options.delay_ms:
            self.run_at = self.created_at + timedelta(milliseconds=self.options.delay_ms)
