import threading
import time

import schedule

from infrastructure.logging import get_module_logger
from infrastructure.queue import BackoffOptions, JobOptions, JobWorker
from modules.notify.domain import DigestFlushPayload, Frequency, JobType
from modules.notify.service import NotificationService

logger = get_module_logger()

DIGEST_SEND_TIME = "08:00"


def safe_run(job):
    def wrapper(*args, **kwargs):
        try:
            job(*args, **kwargs)
        except Exception as e:
            logger.error(
                "scheduled_job_failed",
                job=getattr(job, "__name__", str(job)),
                error=str(e),
                exc_info=True,
            )

    return wrapper


def init(service: NotificationService):
    logger.info("scheduled_tasks_initialized")

    schedule.every(5).minutes.do(safe_run(scheduler_heartbeat))
    schedule.every().hour.at(":00").do(
        safe_run(enqueue_digest_flush), service=service, frequency=Frequency.HOURLY_DIGEST
    )
    schedule.every().day.at(DIGEST_SEND_TIME).do(
        safe_run(enqueue_digest_flush), service=service, frequency=Frequency.DAILY_DIGEST
    )
    schedule.every().monday.at(DIGEST_SEND_TIME).do(
        safe_run(enqueue_digest_flush), service=service, frequency=Frequency.WEEKLY_DIGEST
    )
    schedule.every().day.at("03:00").do(safe_run(cleanup_digests), service=service)
    schedule.every(5).minutes.do(safe_run(sweep_stuck_deliveries), service=service)
    schedule.every(5).minutes.do(safe_run(channel_healthchecks), service=service)


def scheduler_heartbeat():
    logger.info("scheduler_heartbeat", at=time.ctime())


def enqueue_digest_flush(service: NotificationService, frequency: Frequency) -> str:
    job_id = service.queue.add(
        JobType.DIGEST_FLUSH.value,
        DigestFlushPayload(frequency=frequency).model_dump(mode="json"),
        JobOptions(attempts=3, backoff=BackoffOptions(type="exponential", delay_ms=5000)),
    )
    logger.info("digest_flush_enqueued", frequency=frequency.value, job_id=job_id)
    return job_id


def cleanup_digests(service: NotificationService):
    removed = service.cleanup_digests()
    logger.info("digest_cleanup_completed", removed=removed)


def sweep_stuck_deliveries(service: NotificationService):
    service.sweep_stuck_deliveries()


def channel_healthchecks(service: NotificationService):
    for adapter, healthy in service.registry.health_check().items():
        if not healthy:
            logger.error("channel_unhealthy", adapter=adapter)
        else:
            logger.info("channel_healthy", adapter=adapter)


def run_continuously(interval=1):
    """Continuously run, while executing pending jobs at each
    elapsed time interval.
    @return cease_continuous_run: threading. Event which can
    be set to cease continuous run. Please note that it is
    *intended behavior that run_continuously() does not run
    missed jobs*. For example, if you've registered a job that
    should run every minute and you set a continuous run
    interval of one hour then your job won't be run 60 times
    at each interval but only once.
    """
    cease_continuous_run = threading.Event()

    class ScheduleThread(threading.Thread):
        @classmethod
        def run(cls):
            while not cease_continuous_run.is_set():
                schedule.run_pending()
                time.sleep(interval)

    continuous_thread = ScheduleThread(daemon=True, name="notify-scheduler")
    continuous_thread.start()
    return cease_continuous_run


def run_worker_loop(worker: JobWorker) -> threading.Event:
    """Start the queue worker on a daemon thread.

    Returns:
        threading.Event which stops the worker once set.
    """
    stop_event = threading.Event()
    thread = threading.Thread(
        target=worker.run_until_stopped,
        args=(stop_event,),
        daemon=True,
        name="notify-job-worker",
    )
    thread.start()
    logger.info("job_worker_thread_started", worker_id=worker.worker_id)
    return stop_event
