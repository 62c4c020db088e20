"""Job queue worker.

Pulls due jobs, claims them, and dispatches each to the handler
registered for its type. A handler signals success by returning, a retry
by raising, and a terminal failure by raising PermanentJobError.
"""

import threading
from typing import Any, Callable, Dict, Optional

import structlog
from infrastructure.logging import bind_job_context
from infrastructure.queue.config import QueueConfig
from infrastructure.queue.models import Job, PermanentJobError
from infrastructure.queue.store import JobQueue

logger = structlog.get_logger()

JobHandler = Callable[[Dict[str, Any]], Any]


class JobWorker:
    """Worker processing batches of queued jobs.

    Attributes:
        queue: JobQueue to pull from
        handlers: Mapping of job type to handler callable
        config: QueueConfig controlling batch size and claim lease
        worker_id: Identifier for this worker instance
    """

    def __init__(
        self,
        queue: JobQueue,
        handlers: Optional[Dict[str, JobHandler]] = None,
        config: Optional[QueueConfig] = None,
        worker_id: str = "notify-worker-1",
    ) -> None:
        self.queue = queue
        self.handlers: Dict[str, JobHandler] = dict(handlers or {})
        self.config = config or QueueConfig()
        self.worker_id = worker_id
        self.log = logger.bind(component="job_worker", worker_id=worker_id)

    def register(self, job_type: str, handler: JobHandler) -> None:
        """Register the handler for a job type, replacing any previous one."""
        self.handlers[job_type] = handler
        self.log.debug("job_handler_registered", job_type=job_type)

    def process_batch(self) -> dict:
        """Process a batch of due jobs.

        Returns:
            Dictionary with processing statistics:
                - processed: Jobs handed to a handler
                - succeeded: Jobs whose handler returned
                - retried: Jobs whose handler raised and were rescheduled or parked
                - failed: Jobs failed permanently (unknown type or PermanentJobError)
                - skipped: Jobs that could not be claimed
        """
        stats = {
            "processed": 0,
            "succeeded": 0,
            "retried": 0,
            "failed": 0,
            "skipped": 0,
        }

        jobs = self.queue.fetch_due(limit=self.config.batch_size)
        if not jobs:
            return stats

        self.log.debug("job_batch_start", job_count=len(jobs))

        for job in jobs:
            if not self.queue.claim(
                job.id,  # type: ignore[arg-type]
                self.worker_id,
                self.config.claim_lease_seconds,
            ):
                stats["skipped"] += 1
                continue

            outcome = self._process_job(job)
            stats["processed"] += 1
            stats[outcome] += 1

        self.log.info("job_batch_complete", **stats)
        return stats

    def _process_job(self, job: Job) -> str:
        job_id = job.id or ""
        handler = self.handlers.get(job.job_type)
        if handler is None:
            self.log.error("job_handler_missing", job_id=job_id, job_type=job.job_type)
            self.queue.fail(job_id, f"No handler for job type {job.job_type}", permanent=True)
            return "failed"

        with bind_job_context(job_id=job_id, job_type=job.job_type, worker_id=self.worker_id):
            try:
                handler(job.payload)
            except PermanentJobError as e:
                self.log.warning("job_permanent_failure", error=str(e))
                self.queue.fail(job_id, str(e), permanent=True)
                return "failed"
            except Exception as e:
                self.log.error(
                    "job_handler_exception",
                    error=str(e),
                    attempt=job.attempts_made + 1,
                    exc_info=True,
                )
                self.queue.fail(job_id, f"Handler exception: {str(e)}")
                return "retried"

        self.queue.complete(job_id)
        return "succeeded"

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Poll the queue until stop_event is set.

        Sleeps for the poll interval only when a batch found nothing to do.
        """
        self.log.info("job_worker_started")
        while not stop_event.is_set():
            try:
                stats = self.process_batch()
            except Exception as e:
                self.log.error("job_worker_batch_error", error=str(e), exc_info=True)
                stats = {"processed": 0}
            if not stats["processed"]:
                stop_event.wait(self.config.poll_interval_seconds)
        self.log.info("job_worker_stopped")
