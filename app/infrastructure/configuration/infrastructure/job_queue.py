"""Job queue infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class JobQueueSettings(InfrastructureSettings):
    """Job queue and worker configuration.

    The queue runs plan, deliver, callback and digest jobs. Handler
    exceptions are retried by the queue with exponential backoff; delivery
    retries driven by provider outcomes are enqueued explicitly by the
    delivery executor.

    Environment Variables:
        JOB_QUEUE_BATCH_SIZE: Jobs fetched per worker batch (default: 10)
        JOB_QUEUE_CLAIM_LEASE_SECONDS: Claim duration (default: 300s = 5min)
        JOB_QUEUE_POLL_INTERVAL_SECONDS: Worker idle sleep (default: 1s)
        JOB_QUEUE_WORKER_ID: Worker identifier used in claims and logs
        JOB_QUEUE_DEFAULT_ATTEMPTS: Attempts for jobs added without options
        JOB_QUEUE_BACKOFF_DELAY_MS: Base backoff for handler failures

    Example:
        ```python
        from infrastructure.services import get_settings

        settings = get_settings()

        batch_size = settings.job_queue.batch_size
        ```
    """

    batch_size: int = Field(default=10, alias="JOB_QUEUE_BATCH_SIZE")
    claim_lease_seconds: int = Field(default=300, alias="JOB_QUEUE_CLAIM_LEASE_SECONDS")
    poll_interval_seconds: float = Field(
        default=1.0, alias="JOB_QUEUE_POLL_INTERVAL_SECONDS"
    )
    worker_id: str = Field(default="notify-worker-1", alias="JOB_QUEUE_WORKER_ID")
    default_attempts: int = Field(default=3, alias="JOB_QUEUE_DEFAULT_ATTEMPTS")
    backoff_delay_ms: int = Field(default=2000, alias="JOB_QUEUE_BACKOFF_DELAY_MS")
