"""Job queue worker configuration."""

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from infrastructure.configuration.infrastructure.job_queue import JobQueueSettings


@dataclass
class QueueConfig:
    """Configuration for job queue workers.

    Fields:
        batch_size: Number of jobs fetched per batch
        claim_lease_seconds: How long a worker holds a claimed job
        poll_interval_seconds: Idle sleep between empty batches
        default_attempts: Attempts for jobs added without options
        backoff_delay_ms: Base exponential backoff for handler failures
    """

    batch_size: int = 10
    claim_lease_seconds: int = 300
    poll_interval_seconds: float = 1.0
    default_attempts: int = 3
    backoff_delay_ms: int = 2000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.claim_lease_seconds < 1:
            raise ValueError("claim_lease_seconds must be at least 1")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.default_attempts < 1:
            raise ValueError("default_attempts must be at least 1")
        if self.backoff_delay_ms < 0:
            raise ValueError("backoff_delay_ms must be non-negative")

    @classmethod
    def from_settings(cls, settings: "JobQueueSettings") -> "QueueConfig":
        """Build a QueueConfig from JobQueueSettings."""
        return cls(
            batch_size=settings.batch_size,
            claim_lease_seconds=settings.claim_lease_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            default_attempts=settings.default_attempts,
            backoff_delay_ms=settings.backoff_delay_ms,
        )
