"""Tests for framecast.core.scheduler (RecurringJobScheduler)."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from framecast.core.errors import DeviceSyncError, GenerationError
from framecast.core.pipeline import Artifact
from framecast.core.scheduler import CHECK_JOB_ID, PURGE_JOB_ID, RecurringJobScheduler

ARTIFACT = Artifact(id="img-1", url="https://framecast.test/api/v1/gallery/image/img-1")


def _pipeline(**kwargs):
    pipeline = MagicMock()
    pipeline.run = AsyncMock(**({"return_value": ARTIFACT} | kwargs))
    return pipeline


def _scheduler(store, manual_time, pipeline=None, notifier=None, purge_tokens=None):
    return RecurringJobScheduler(
        store,
        pipeline or _pipeline(),
        notifier,
        clock=manual_time.clock(),
        purge_tokens=purge_tokens,
    )


# ── lifecycle ──────────────────────────────────────────────────────────────────


async def test_start_registers_poll_and_purge_jobs(store, manual_time):
    with patch("framecast.core.scheduler.AsyncIOScheduler") as mock_sched_cls:
        mock_sched = MagicMock()
        mock_sched.running = False
        mock_sched_cls.return_value = mock_sched
        scheduler = _scheduler(store, manual_time, purge_tokens=AsyncMock())
        await scheduler.start()

    mock_sched_cls.assert_called_once_with(timezone="UTC")
    ids = [c.kwargs["id"] for c in mock_sched.add_job.call_args_list]
    assert ids == [CHECK_JOB_ID, PURGE_JOB_ID]
    first = mock_sched.add_job.call_args_list[0]
    assert first.kwargs["max_instances"] == 1
    assert first.kwargs["coalesce"] is True
    assert first.kwargs["trigger"].interval.total_seconds() == 60
    assert mock_sched.add_job.call_args_list[1].kwargs["trigger"].interval.total_seconds() == 3600
    mock_sched.start.assert_called_once()


async def test_start_twice_only_warns(store, manual_time):
    with patch("framecast.core.scheduler.AsyncIOScheduler") as mock_sched_cls:
        mock_sched = MagicMock()
        mock_sched.running = True
        mock_sched_cls.return_value = mock_sched
        scheduler = _scheduler(store, manual_time)
        await scheduler.start()

    mock_sched.add_job.assert_not_called()
    mock_sched.start.assert_not_called()


def test_shutdown(store, manual_time):
    with patch("framecast.core.scheduler.AsyncIOScheduler") as mock_sched_cls:
        mock_sched = MagicMock()
        mock_sched.running = True
        mock_sched_cls.return_value = mock_sched
        scheduler = _scheduler(store, manual_time)
        scheduler.shutdown()

    mock_sched.shutdown.assert_called_once_with(wait=False)


# ── execution ──────────────────────────────────────────────────────────────────


async def test_one_time_job_runs_once_then_disables(store, manual_time):
    manual_time.now = datetime(2099, 1, 1, 10, 0, tzinfo=UTC)
    job = store.add_job(
        schedule_type="once",
        schedule_time=None,
        scheduled_at="2099-01-01T10:00",
        next_run_at=datetime(2099, 1, 1, 10, 0, tzinfo=UTC),
    )
    pipeline = _pipeline()
    scheduler = _scheduler(store, manual_time, pipeline)

    assert await scheduler.check_due_jobs() == 1

    assert job.next_run_at is None
    assert job.is_enabled is False
    assert job.run_count == 1
    assert job.last_run_at == manual_time.now
    assert job.last_error is None
    pipeline.run.assert_awaited_once_with(
        owner_id="user-1",
        prompt=job.prompt,
        size="1024x1024",
        style_preset=None,
        source="schedule",
    )
    # Nothing is due on the next pass
    assert await scheduler.check_due_jobs() == 0


async def test_daily_job_success_advances_next_run(store, manual_time):
    job = store.add_job(next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    scheduler = _scheduler(store, manual_time)

    await scheduler.check_due_jobs()

    assert job.next_run_at == datetime(2026, 3, 6, 9, 0, tzinfo=UTC)
    assert job.is_enabled is True
    assert job.run_count == 1


async def test_daily_job_failure_records_error_and_stays_enabled(store, manual_time):
    job = store.add_job(next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    pipeline = _pipeline(side_effect=GenerationError("Your request was rejected"))
    scheduler = _scheduler(store, manual_time, pipeline)

    await scheduler.check_due_jobs()

    assert job.last_error == "Your request was rejected"
    assert job.next_run_at == datetime(2026, 3, 6, 9, 0, tzinfo=UTC)
    assert job.is_enabled is True
    assert job.run_count == 0
    assert job.last_run_at == manual_time.now


async def test_one_time_job_failure_disables(store, manual_time):
    job = store.add_job(
        schedule_type="once",
        schedule_time=None,
        scheduled_at="2026-03-05T11:00",
        next_run_at=datetime(2026, 3, 5, 11, 0, tzinfo=UTC),
    )
    pipeline = _pipeline(side_effect=GenerationError("boom"))
    scheduler = _scheduler(store, manual_time, pipeline)

    assert await scheduler.execute_job(job) is False

    assert job.is_enabled is False
    assert job.next_run_at is None
    assert job.last_error == "boom"


async def test_exception_without_message_records_type_name(store, manual_time):
    job = store.add_job(next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    scheduler = _scheduler(store, manual_time, _pipeline(side_effect=TimeoutError()))
    await scheduler.execute_job(job)
    assert job.last_error == "TimeoutError"


async def test_failure_of_one_job_does_not_stop_others(store, manual_time):
    first = store.add_job(next_run_at=datetime(2026, 3, 5, 8, 0, tzinfo=UTC))
    second = store.add_job(next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    pipeline = _pipeline(side_effect=[GenerationError("first failed"), ARTIFACT])
    scheduler = _scheduler(store, manual_time, pipeline)

    assert await scheduler.check_due_jobs() == 2

    assert first.last_error == "first failed"
    assert second.run_count == 1
    assert second.last_error is None


async def test_store_error_during_recording_is_isolated(store, manual_time):
    first = store.add_job(next_run_at=datetime(2026, 3, 5, 8, 0, tzinfo=UTC))
    second = store.add_job(next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    original = store.record_job_success

    async def flaky_success(job_id, *args):
        if job_id == first.id:
            raise RuntimeError("database went away")
        await original(job_id, *args)

    store.record_job_success = flaky_success
    store.record_job_failure = AsyncMock()
    scheduler = _scheduler(store, manual_time)

    assert await scheduler.check_due_jobs() == 2
    store.record_job_failure.assert_not_called()
    assert first.last_error is None
    assert second.run_count == 1
    assert second.last_error is None


async def test_unrecorded_success_is_retried_without_regenerating(store, manual_time):
    job = store.add_job(next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    ran_at = manual_time.now
    original = store.record_job_success
    calls = 0

    async def flaky_success(*args):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("database went away")
        await original(*args)

    store.record_job_success = flaky_success
    pipeline = _pipeline()
    scheduler = _scheduler(store, manual_time, pipeline)

    assert await scheduler.check_due_jobs() == 1
    assert job.run_count == 0
    assert job.last_error is None

    manual_time.advance(60)
    assert await scheduler.check_due_jobs() == 1
    assert pipeline.run.await_count == 1
    assert job.run_count == 1
    assert job.last_run_at == ran_at
    assert job.next_run_at == datetime(2026, 3, 6, 9, 0, tzinfo=UTC)

    manual_time.advance(60)
    assert await scheduler.check_due_jobs() == 0


async def test_unrecorded_failure_does_not_regenerate_every_poll(store, manual_time):
    job = store.add_job(next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    store.record_job_failure = AsyncMock(side_effect=RuntimeError("database went away"))
    pipeline = _pipeline(side_effect=GenerationError("rejected"))
    scheduler = _scheduler(store, manual_time, pipeline)

    for _ in range(3):
        await scheduler.check_due_jobs()
        manual_time.advance(60)

    assert pipeline.run.await_count == 1
    assert store.record_job_failure.await_count == 3
    last = store.record_job_failure.await_args_list[-1].args
    assert last == (
        job.id,
        datetime(2026, 3, 5, 12, 0, tzinfo=UTC),
        "rejected",
        datetime(2026, 3, 6, 9, 0, tzinfo=UTC),
    )


async def test_pending_outcome_dropped_when_job_no_longer_due(store, manual_time):
    job = store.add_job(next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    store.record_job_success = AsyncMock(side_effect=RuntimeError("database went away"))
    scheduler = _scheduler(store, manual_time)

    await scheduler.check_due_jobs()
    assert job.id in scheduler._unrecorded

    job.is_enabled = False
    await scheduler.check_due_jobs()
    assert scheduler._unrecorded == {}


async def test_due_query_failure_returns_zero(store, manual_time):
    store.find_due_scheduled_jobs = AsyncMock(side_effect=RuntimeError("no db"))
    scheduler = _scheduler(store, manual_time)
    assert await scheduler.check_due_jobs() == 0


async def test_job_with_invalid_timezone_is_disabled_after_run(store, manual_time):
    job = store.add_job(timezone="Gone/Away", next_run_at=datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
    scheduler = _scheduler(store, manual_time)

    await scheduler.check_due_jobs()

    assert job.is_enabled is False
    assert job.next_run_at is None


# ── device sync ────────────────────────────────────────────────────────────────


async def test_auto_sync_pushes_to_devices(store, manual_time):
    job = store.add_job(auto_sync_device=True, next_run_at=datetime(2026, 3, 5, 9, tzinfo=UTC))
    store.sync_targets.add("user-1")
    notifier = MagicMock()
    notifier.notify = AsyncMock()
    scheduler = _scheduler(store, manual_time, notifier=notifier)

    await scheduler.check_due_jobs()

    notifier.notify.assert_awaited_once_with(ARTIFACT.url, job.prompt, "user-1")


async def test_auto_sync_skipped_without_target(store, manual_time):
    store.add_job(auto_sync_device=True, next_run_at=datetime(2026, 3, 5, 9, tzinfo=UTC))
    notifier = MagicMock()
    notifier.notify = AsyncMock()
    scheduler = _scheduler(store, manual_time, notifier=notifier)

    await scheduler.check_due_jobs()

    notifier.notify.assert_not_called()


async def test_sync_failure_does_not_fail_the_job(store, manual_time):
    job = store.add_job(auto_sync_device=True, next_run_at=datetime(2026, 3, 5, 9, tzinfo=UTC))
    store.sync_targets.add("user-1")
    notifier = MagicMock()
    notifier.notify = AsyncMock(side_effect=DeviceSyncError("webhook 500"))
    scheduler = _scheduler(store, manual_time, notifier=notifier)

    assert await scheduler.execute_job(job) is True
    assert job.run_count == 1
    assert job.last_error is None


# ── token purge ────────────────────────────────────────────────────────────────


async def test_purge_expired_tokens_calls_auth_layer(store, manual_time):
    purge = AsyncMock(return_value=3)
    scheduler = _scheduler(store, manual_time, purge_tokens=purge)
    await scheduler.purge_expired_tokens()
    purge.assert_awaited_once()


async def test_purge_failure_is_logged_only(store, manual_time):
    purge = AsyncMock(side_effect=RuntimeError("locked"))
    scheduler = _scheduler(store, manual_time, purge_tokens=purge)
    await scheduler.purge_expired_tokens()
    purge.assert_awaited_once()


async def test_purge_without_callback_is_noop(store, manual_time):
    scheduler = _scheduler(store, manual_time)
    await scheduler.purge_expired_tokens()


@pytest.mark.parametrize("poll", [30, 120])
def test_poll_interval_is_configurable(store, manual_time, poll):
    scheduler = RecurringJobScheduler(store, _pipeline(), poll_seconds=poll)
    assert scheduler.poll_seconds == poll
