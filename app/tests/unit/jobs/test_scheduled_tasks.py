from unittest.mock import MagicMock, call, patch

import pytest

from infrastructure.queue import InMemoryJobQueue
from jobs import scheduled_tasks
from modules.notify.domain import Frequency

pytestmark = pytest.mark.unit


@patch("jobs.scheduled_tasks.schedule")
def test_init(schedule_mock):
    """init schedules digest flushes, cleanup, sweeps and health checks."""
    service = MagicMock()

    scheduled_tasks.init(service)

    schedule_mock.every().day.at.assert_has_calls(
        calls=[call(scheduled_tasks.DIGEST_SEND_TIME), call("03:00")],
        any_order=True,
    )
    schedule_mock.every().monday.at.assert_called_once_with(scheduled_tasks.DIGEST_SEND_TIME)
    schedule_mock.every().hour.at.assert_called_once_with(":00")

    do_calls = [c for c in schedule_mock.mock_calls if ".do(" in str(c)]
    assert len(do_calls) == 7

    minutes_do_calls = [c for c in schedule_mock.mock_calls if ".minutes.do(" in str(c)]
    assert len(minutes_do_calls) == 3

    frequency_params = [c for c in schedule_mock.mock_calls if "frequency=" in str(c)]
    assert len(frequency_params) == 3


@patch("jobs.scheduled_tasks.logger")
def test_safe_run(mock_logger):
    """safe_run logs and swallows job exceptions."""

    def failing_job():
        raise RuntimeError("Test exception")

    scheduled_tasks.safe_run(failing_job)()

    mock_logger.error.assert_called_once_with(
        "scheduled_job_failed",
        job="failing_job",
        error="Test exception",
        exc_info=True,
    )


@patch("jobs.scheduled_tasks.logger")
@patch("jobs.scheduled_tasks.time")
def test_scheduler_heartbeat(mock_time, mock_logger):
    mock_time.ctime.return_value = "Tue Mar 10 14:30:00 2026"

    scheduled_tasks.scheduler_heartbeat()

    mock_logger.info.assert_called_once_with(
        "scheduler_heartbeat", at="Tue Mar 10 14:30:00 2026"
    )


def test_enqueue_digest_flush():
    service = MagicMock()
    service.queue = InMemoryJobQueue()

    job_id = scheduled_tasks.enqueue_digest_flush(service, Frequency.WEEKLY_DIGEST)

    job = service.queue.get(job_id)
    assert job.job_type == "digest-flush"
    assert job.payload == {"frequency": "weekly_digest"}
    assert job.options.attempts == 3


@patch("jobs.scheduled_tasks.logger")
def test_cleanup_digests(mock_logger):
    service = MagicMock()
    service.cleanup_digests.return_value = 12

    scheduled_tasks.cleanup_digests(service)

    mock_logger.info.assert_called_once_with("digest_cleanup_completed", removed=12)


def test_sweep_stuck_deliveries():
    service = MagicMock()

    scheduled_tasks.sweep_stuck_deliveries(service)

    service.sweep_stuck_deliveries.assert_called_once_with()


@patch("jobs.scheduled_tasks.logger")
def test_channel_healthchecks(mock_logger):
    service = MagicMock()
    service.registry.health_check.return_value = {"email:gc_notify": True, "chat:slack": False}

    scheduled_tasks.channel_healthchecks(service)

    mock_logger.info.assert_called_once_with("channel_healthy", adapter="email:gc_notify")
    mock_logger.error.assert_called_once_with("channel_unhealthy", adapter="chat:slack")


@patch("jobs.scheduled_tasks.schedule")
@patch("jobs.scheduled_tasks.threading")
@patch("jobs.scheduled_tasks.time")
def test_run_continuously(_time_mock, threading_mock, _schedule_mock):
    cease_continuous_run = MagicMock()
    cease_continuous_run.is_set.return_value = True
    threading_mock.Event.return_value = cease_continuous_run

    result = scheduled_tasks.run_continuously(interval=1)

    assert result == cease_continuous_run


@patch("jobs.scheduled_tasks.threading")
def test_run_worker_loop(threading_mock):
    worker = MagicMock(worker_id="notify-worker-1")

    stop_event = scheduled_tasks.run_worker_loop(worker)

    assert stop_event == threading_mock.Event.return_value
    threading_mock.Thread.assert_called_once_with(
        target=worker.run_until_stopped,
        args=(stop_event,),
        daemon=True,
        name="notify-job-worker",
    )
    threading_mock.Thread.return_value.start.assert_called_once_with()
