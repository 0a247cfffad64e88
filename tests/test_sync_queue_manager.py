import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from judgesync.models.sync import JobType, SyncValidationError
from judgesync.models_sqlalchemy.sync_queue import SyncJob, SyncRunLog
from judgesync.services.sync_workers import JOB_DEFINITIONS, JobDefinition, SyncQueueManager


def _fail_cleanup_handler(monkeypatch, error="boom"):
    calls = []

    async def failing(ctx, options):
        calls.append(ctx.job_id)
        raise RuntimeError(error)

    monkeypatch.setitem(
        JOB_DEFINITIONS,
        JobType.CLEANUP,
        JobDefinition(JobType.CLEANUP, failing, uses_external_api=False),
    )
    return calls


def test_add_job_validates_and_normalizes_options(manager):
    job_id = manager.add_job("decision", {"batchSize": 3, "daysSinceLast": 1}, 100)

    job = manager.get_job(job_id)
    assert job["status"] == "pending"
    assert job["priority"] == 100
    assert job["retry_count"] == 0
    assert job["max_retries"] == 3
    assert job["options"]["batch_size"] == 3
    assert job["options"]["days_since_last"] == 1


def test_add_job_rejects_bad_input(manager):
    with pytest.raises(SyncValidationError):
        manager.add_job("weather", {})
    with pytest.raises(SyncValidationError):
        manager.add_job("judge", {"batchSize": 0})
    with pytest.raises(SyncValidationError):
        manager.add_job("judge", {"unknownOption": True})
    with pytest.raises(SyncValidationError):
        manager.add_job("judge", {}, priority="high")
    assert manager.get_stats().total == 0


def test_claim_prefers_higher_priority(manager):
    judge_id = manager.add_job("judge", {}, 50)
    decision_id = manager.add_job("decision", {}, 100)

    assert manager.claim_next_job().id == decision_id
    assert manager.claim_next_job().id == judge_id
    assert manager.claim_next_job() is None


def test_claim_is_fifo_within_priority(manager):
    ids = [manager.add_job("cleanup", {}, 10) for _ in range(3)]

    claimed = [manager.claim_next_job().id for _ in range(3)]
    assert claimed == ids


def test_claimed_job_is_not_claimed_again(manager, session_factory, clock):
    job_id = manager.add_job("cleanup", {})
    other = SyncQueueManager(session_factory, clock=clock)

    first = manager.claim_next_job()
    assert first.id == job_id
    assert first.attempt == 1
    assert other.claim_next_job() is None
    assert manager.get_job(job_id)["status"] == "running"


def test_delayed_job_waits_for_scheduled_time(manager, clock):
    manager.add_job("cleanup", {}, scheduled_for=clock.current + timedelta(minutes=30))
    assert manager.claim_next_job() is None

    clock.advance(minutes=31)
    assert manager.claim_next_job() is not None


def test_cancel_jobs_only_touches_pending(manager):
    running_id = manager.add_job("judge", {}, 10)
    manager.claim_next_job()
    judge_id = manager.add_job("judge", {})
    decision_id = manager.add_job("decision", {})

    assert manager.cancel_jobs("judge") == 1
    assert manager.get_job(judge_id)["status"] == "cancelled"
    assert manager.get_job(decision_id)["status"] == "pending"
    assert manager.get_job(running_id)["status"] == "running"

    assert manager.cancel_jobs() == 1
    assert manager.cancel_jobs() == 0
    assert manager.get_job(running_id)["status"] == "running"


def test_cleanup_removes_only_old_terminal_jobs(manager, clock):
    old_cancelled = manager.add_job("judge", {})
    manager.cancel_jobs()
    pending = manager.add_job("judge", {})
    running = manager.add_job("decision", {}, 100)
    manager.claim_next_job()

    clock.advance(days=8)
    recent_cancelled = manager.add_job("cleanup", {})
    manager.cancel_jobs("cleanup")

    assert manager.cleanup_old_jobs(7) == 1
    assert manager.get_job(old_cancelled) is None
    assert manager.get_job(recent_cancelled)["status"] == "cancelled"
    assert manager.get_job(pending)["status"] == "pending"
    assert manager.get_job(running)["status"] == "running"

    assert manager.cleanup_old_jobs(7) == 0
    with pytest.raises(SyncValidationError):
        manager.cleanup_old_jobs(-1)


@pytest.mark.asyncio
async def test_successful_job_completes_with_result_and_log(manager, session_factory):
    job_id = manager.add_job("cleanup", {"olderThanDays": 30})

    assert await manager.run_until_idle() == 1

    job = manager.get_job(job_id)
    assert job["status"] == "completed"
    assert job["completed_at"] is not None
    assert job["result"] == {"deleted_jobs": 0, "older_than_days": 30}
    with session_factory() as db:
        logs = db.query(SyncRunLog).filter(SyncRunLog.job_id == job_id).all()
    assert [log.status for log in logs] == ["completed"]
    assert logs[0].sync_type == "cleanup"
    assert logs[0].duration_ms is not None


@pytest.mark.asyncio
async def test_failing_job_retries_then_fails(manager, session_factory, monkeypatch):
    calls = _fail_cleanup_handler(monkeypatch)
    job_id = manager.add_job("cleanup", {}, max_retries=2)

    assert await manager.run_until_idle() == 3

    job = manager.get_job(job_id)
    assert job["status"] == "failed"
    assert job["retry_count"] == 2
    assert job["error_message"] == "boom"
    assert job["completed_at"] is not None
    assert len(calls) == 3
    with session_factory() as db:
        logs = (
            db.query(SyncRunLog)
            .filter(SyncRunLog.job_id == job_id)
            .order_by(SyncRunLog.attempt)
            .all()
        )
    assert [(log.attempt, log.status) for log in logs] == [(1, "failed"), (2, "failed"), (3, "failed")]


@pytest.mark.asyncio
async def test_retry_backoff_delays_next_attempt(session_factory, clock, monkeypatch):
    _fail_cleanup_handler(monkeypatch)
    manager = SyncQueueManager(session_factory, clock=clock, retry_backoff_seconds=60)
    job_id = manager.add_job("cleanup", {}, max_retries=1)

    assert await manager.run_until_idle() == 1
    job = manager.get_job(job_id)
    assert job["status"] == "pending"
    assert job["retry_count"] == 1
    assert job["started_at"] is None
    assert manager.claim_next_job() is None

    clock.advance(seconds=61)
    assert await manager.run_until_idle() == 1
    assert manager.get_job(job_id)["status"] == "failed"


@pytest.mark.asyncio
async def test_invalid_stored_options_fail_without_retry(manager, session_factory, clock):
    now = clock()
    with session_factory() as db:
        db.add(
            SyncJob(
                id="bad-options",
                type="judge",
                options={"bogus": 1},
                priority=0,
                status="pending",
                retry_count=0,
                max_retries=3,
                scheduled_for=now,
                created_at=now,
                updated_at=now,
            )
        )
        db.commit()

    assert await manager.run_until_idle() == 1

    job = manager.get_job("bad-options")
    assert job["status"] == "failed"
    assert job["retry_count"] == 0
    assert "bogus" in job["error_message"]


@pytest.mark.asyncio
async def test_job_timeout_counts_as_failed_attempt(session_factory, clock, monkeypatch):
    async def slow(ctx, options):
        await asyncio.sleep(5)

    monkeypatch.setitem(
        JOB_DEFINITIONS,
        JobType.CLEANUP,
        JobDefinition(JobType.CLEANUP, slow, uses_external_api=False),
    )
    manager = SyncQueueManager(session_factory, clock=clock, job_timeout_seconds=0.05)
    job_id = manager.add_job("cleanup", {}, max_retries=0)

    await manager.run_until_idle()

    job = manager.get_job(job_id)
    assert job["status"] == "failed"
    assert "time limit" in job["error_message"]


def test_requeue_stale_jobs(manager, clock):
    job_id = manager.add_job("judge", {})
    manager.claim_next_job()
    clock.advance(hours=2)

    assert manager.requeue_stale_jobs(older_than_seconds=3600) == 1
    job = manager.get_job(job_id)
    assert job["status"] == "pending"
    assert job["retry_count"] == 1
    assert manager.requeue_stale_jobs(older_than_seconds=3600) == 0


def test_stats_are_consistent(manager):
    manager.add_job("judge", {})
    manager.add_job("decision", {}, 100)
    manager.add_job("court", {})
    manager.claim_next_job()
    manager.cancel_jobs("court")

    stats = manager.get_stats()
    assert stats.pending == 1
    assert stats.running == 1
    assert stats.cancelled == 1
    assert stats.total == stats.pending + stats.running + stats.completed + stats.failed + stats.cancelled

    rows = {(r["type"], r["status"]): r for r in manager.queue_status()}
    assert rows[("judge", "pending")]["count"] == 1
    assert rows[("judge", "pending")]["next_scheduled"] is not None
    assert rows[("decision", "running")]["next_scheduled"] is None


@pytest.mark.asyncio
async def test_start_and_stop_processing_are_idempotent(manager):
    assert manager.start_processing() is True
    assert manager.start_processing() is False
    assert manager.is_processing

    assert manager.stop_processing() is True
    assert manager.stop_processing() is False
    await asyncio.wait_for(manager.wait_stopped(), timeout=2)
    assert not manager.is_processing


@pytest.mark.asyncio
async def test_processing_loop_drains_queue(manager):
    job_id = manager.add_job("cleanup", {})

    manager.start_processing()
    for _ in range(100):
        if manager.get_job(job_id)["status"] == "completed":
            break
        await asyncio.sleep(0.01)
    manager.stop_processing()
    await asyncio.wait_for(manager.wait_stopped(), timeout=2)

    assert manager.get_job(job_id)["status"] == "completed"


@pytest.mark.asyncio
async def test_processing_loop_backs_off_when_store_is_down(manager, monkeypatch):
    job_id = manager.add_job("cleanup", {})
    claim = manager.claim_next_job
    attempts = []

    def flaky_claim():
        attempts.append(1)
        if len(attempts) == 1:
            raise OperationalError("SELECT 1", {}, Exception("db down"))
        return claim()

    monkeypatch.setattr(manager, "claim_next_job", flaky_claim)

    manager.start_processing()
    for _ in range(100):
        if manager.get_job(job_id)["status"] == "completed":
            break
        await asyncio.sleep(0.01)

    assert manager.is_processing
    manager.stop_processing()
    await asyncio.wait_for(manager.wait_stopped(), timeout=2)

    assert len(attempts) >= 2
    assert manager.get_job(job_id)["status"] == "completed"
