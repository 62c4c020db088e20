"""Job queue storage.

This module provides the queue interface the notification pipeline
enqueues into, and a thread-safe in-memory implementation. Durable
backends implement the same Protocol.
"""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol

from infrastructure.logging import get_module_logger
from infrastructure.queue.models import Job, JobOptions, JobState

logger = get_module_logger()


class JobQueue(Protocol):
    """Queue interface with at-least-once, priority and backoff semantics.

    Methods:
        add: Enqueue a job and return its ID
        get: Look up a job by ID
        fetch_due: Return waiting jobs whose run time has passed
        claim: Attempt to claim a job for processing
        complete: Mark a job as succeeded
        fail: Record a failed attempt and reschedule or park the job
    """

    def add(
        self,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None,
    ) -> str:
        """Enqueue a job.

        Args:
            job_type: Handler key
            payload: JSON-serializable handler input
            options: Priority, attempts, backoff and delay

        Returns:
            Unique identifier for the job
        """
        ...

    def get(self, job_id: str) -> Optional[Job]:
        """Return the job with job_id, if still tracked."""
        ...

    def fetch_due(self, limit: int = 100) -> List[Job]:
        """Return unclaimed waiting jobs due now, lowest priority number first."""
        ...

    def claim(self, job_id: str, worker_id: str, lease_seconds: int) -> bool:
        """Attempt to claim a job; False if it is already claimed or gone."""
        ...

    def complete(self, job_id: str) -> None:
        """Mark a job as successfully processed."""
        ...

    def fail(self, job_id: str, error: str, permanent: bool = False) -> None:
        """Record a failed attempt.

        Reschedules with the job's backoff while attempts remain, otherwise
        (or when permanent) parks the job in the failed set.
        """
        ...


class InMemoryJobQueue:
    """In-memory implementation of JobQueue.

    Thread-safe queue supporting:
    - Priority ordering (lower number first, then run time, then FIFO)
    - Delayed jobs
    - Per-job attempts with exponential or fixed backoff
    - Claim leases so a crashed worker's job becomes visible again
    - A failed set for jobs that exhausted their attempts

    Suitable for single-process deployments and tests.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._claims: Dict[str, Dict[str, Any]] = {}
        self._completed: Dict[str, Job] = {}
        self._failed: Dict[str, Job] = {}
        self._sequence: Dict[str, int] = {}
        self._next_seq = 0
        self._lock = threading.Lock()

    def add(
        self,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None,
    ) -> str:
        """Enqueue a new job."""
        job = Job(job_type=job_type, payload=payload, options=options or JobOptions())
        with self._lock:
            job.id = str(uuid.uuid4())
            self._jobs[job.id] = job
            self._sequence[job.id] = self._next_seq
            self._next_seq += 1

        logger.debug(
            "job_added",
            job_id=job.id,
            job_type=job_type,
            priority=job.options.priority,
            delay_ms=job.options.delay_ms,
        )
        return job.id

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return (
                self._jobs.get(job_id)
                or self._completed.get(job_id)
                or self._failed.get(job_id)
            )

    def fetch_due(self, limit: int = 100) -> List[Job]:
        """Return due jobs ordered by priority, run time and insertion order."""
        with self._lock:
            now = datetime.now(timezone.utc)
            due = []

            for job_id, job in self._jobs.items():
                claim = self._claims.get(job_id)
                if claim is not None:
                    if claim["expires_at"] > now.timestamp():
                        continue
                    del self._claims[job_id]
                    job.state = JobState.WAITING
                    logger.debug(
                        "job_claim_expired",
                        job_id=job_id,
                        worker=claim["worker"],
                    )

                if job.run_at <= now:
                    due.append(job)

            due.sort(
                key=lambda j: (j.options.priority, j.run_at, self._sequence[j.id])
            )
            return due[:limit]

    def claim(self, job_id: str, worker_id: str, lease_seconds: int) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning("job_claim_failed_not_found", job_id=job_id)
                return False

            claim = self._claims.get(job_id)
            now = datetime.now(timezone.utc).timestamp()
            if claim is not None and claim["expires_at"] > now:
                logger.debug(
                    "job_claim_failed_already_claimed",
                    job_id=job_id,
                    current_worker=claim["worker"],
                )
                return False

            self._claims[job_id] = {
                "worker": worker_id,
                "expires_at": now + lease_seconds,
            }
            job.state = JobState.ACTIVE
            return True

    def complete(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.pop(job_id, None)
            self._claims.pop(job_id, None)
            self._sequence.pop(job_id, None)
            if job is None:
                return
            job.attempts_made += 1
            job.state = JobState.COMPLETED
            job.updated_at = datetime.now(timezone.utc)
            if not job.options.remove_on_complete:
                self._completed[job_id] = job

            logger.debug(
                "job_completed",
                job_id=job_id,
                job_type=job.job_type,
                attempts=job.attempts_made,
            )

    def fail(self, job_id: str, error: str, permanent: bool = False) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning("job_fail_not_found", job_id=job_id)
                return

            job.attempts_made += 1
            job.last_error = error
            job.updated_at = datetime.now(timezone.utc)
            self._claims.pop(job_id, None)

            if permanent or job.attempts_made >= job.options.attempts:
                job.state = JobState.FAILED
                self._failed[job_id] = job
                del self._jobs[job_id]
                self._sequence.pop(job_id, None)
                logger.warning(
                    "job_failed_permanently",
                    job_id=job_id,
                    job_type=job.job_type,
                    attempts=job.attempts_made,
                    error=error,
                )
                return

            delay_ms = job.options.backoff.delay_for(job.attempts_made)
            job.run_at = job.updated_at + timedelta(milliseconds=delay_ms)
            job.state = JobState.WAITING
            logger.info(
                "job_retry_scheduled",
                job_id=job_id,
                job_type=job.job_type,
                attempts=job.attempts_made,
                max_attempts=job.options.attempts,
                next_retry_in_ms=delay_ms,
            )

    def get_waiting(self, job_type: Optional[str] = None) -> List[Job]:
        """List jobs still in the queue (waiting or active), optionally by type."""
        with self._lock:
            return [
                job
                for job in self._jobs.values()
                if job_type is None or job.job_type == job_type
            ]

    def get_failed(self) -> List[Job]:
        """List jobs that exhausted their attempts (for monitoring)."""
        with self._lock:
            return list(self._failed.values())

    def get_stats(self) -> dict:
        """Get queue statistics."""
        with self._lock:
            return {
                "waiting_jobs": len(self._jobs) - len(self._claims),
                "active_jobs": len(self._claims),
                "completed_jobs": len(self._completed),
                "failed_jobs": len(self._failed),
            }
