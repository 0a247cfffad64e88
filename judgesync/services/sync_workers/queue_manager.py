"""Database-backed sync job queue.

SyncQueueManager keeps no job state in memory: every transition is a
conditional UPDATE keyed on the row's current status, so any number of
manager instances (in one process or several) can share the same tables.

Lifecycle::

    pending -> running -> completed
                       -> pending    (failed attempt, retries left)
                       -> failed     (retries exhausted / invalid job)
    pending -> cancelled

Every attempt, successful or not, appends exactly one ``sync_logs`` row.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from judgesync.config import settings
from judgesync.models.sync import (
    TERMINAL_STATUSES,
    JobStatus,
    QueueStats,
    SyncValidationError,
    dump_job_options,
    parse_job_type,
)
from judgesync.models_sqlalchemy.sync_queue import SyncJob
from judgesync.services.courtlistener_client import CourtListenerClient
from judgesync.services.sync_workers.context import SyncContext
from judgesync.services.sync_workers.registry import JobDefinition, get_job_definition
from judgesync.services.sync_workers.run_log import append_run_log, truncate_error
from judgesync.utils.logger import logger
from judgesync.utils.time_utils import as_utc, coerce_datetime, isoformat_or_none, now_utc

PENDING = JobStatus.PENDING.value
RUNNING = JobStatus.RUNNING.value
COMPLETED = JobStatus.COMPLETED.value
FAILED = JobStatus.FAILED.value
CANCELLED = JobStatus.CANCELLED.value

# How many times claim_next_job reselects after losing a claim race.
CLAIM_ATTEMPTS = 5


@dataclass
class ClaimedJob:
    """Snapshot of a job row taken right after it was claimed."""

    id: str
    type: str
    options: Optional[Dict[str, Any]]
    priority: int
    retry_count: int
    max_retries: int
    started_at: datetime

    @property
    def attempt(self) -> int:
        return self.retry_count + 1


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def job_to_dict(job: SyncJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "type": job.type,
        "status": job.status,
        "priority": job.priority,
        "options": job.options,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "scheduled_for": isoformat_or_none(job.scheduled_for),
        "created_at": isoformat_or_none(job.created_at),
        "started_at": isoformat_or_none(job.started_at),
        "completed_at": isoformat_or_none(job.completed_at),
        "result": job.result,
        "error_message": job.error_message,
    }


class SyncQueueManager:
    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        *,
        client_factory: Optional[Callable[[], CourtListenerClient]] = None,
        clock: Callable[[], datetime] = now_utc,
        default_priority: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
        store_backoff_seconds: Optional[float] = None,
        job_timeout_seconds: Optional[float] = None,
    ) -> None:
        if session_factory is None:
            from judgesync.models_sqlalchemy import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self._client_factory = client_factory or CourtListenerClient
        self._clock = clock

        def _pick(value, default):
            return default if value is None else value

        self.default_priority = _pick(default_priority, settings.SYNC_DEFAULT_PRIORITY)
        self.max_retries = _pick(max_retries, settings.SYNC_MAX_RETRIES)
        self.retry_backoff_seconds = _pick(retry_backoff_seconds, settings.SYNC_RETRY_BACKOFF_SECONDS)
        self.poll_interval_seconds = _pick(poll_interval_seconds, settings.SYNC_POLL_INTERVAL_SECONDS)
        self.store_backoff_seconds = _pick(store_backoff_seconds, settings.SYNC_STORE_BACKOFF_SECONDS)
        self.job_timeout_seconds = _pick(job_timeout_seconds, settings.SYNC_JOB_TIMEOUT_SECONDS)

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Enqueue / cancel / cleanup
    # ------------------------------------------------------------------

    def add_job(
        self,
        job_type: Any,
        options: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
        *,
        scheduled_for: Optional[datetime] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        """Validate and insert one pending job; returns its id."""
        definition = get_job_definition(job_type)
        parsed = definition.parse_options(options)

        if priority is None:
            priority = self.default_priority
        if not _is_int(priority):
            raise SyncValidationError("priority must be an integer")
        if max_retries is None:
            max_retries = self.max_retries
        if not _is_int(max_retries) or max_retries < 0:
            raise SyncValidationError("max_retries must be a non-negative integer")

        now = self._clock()
        job_id = str(uuid4())
        with self._session_factory() as db:
            db.add(
                SyncJob(
                    id=job_id,
                    type=definition.job_type.value,
                    options=dump_job_options(parsed),
                    priority=priority,
                    status=PENDING,
                    retry_count=0,
                    max_retries=max_retries,
                    scheduled_for=scheduled_for or now,
                    created_at=now,
                    updated_at=now,
                )
            )
            db.commit()

        logger.info(
            "Queued sync job id=%s type=%s priority=%s scheduled_for=%s",
            job_id,
            definition.job_type.value,
            priority,
            (scheduled_for or now).isoformat(),
        )
        return job_id

    def cancel_jobs(self, job_type: Any = None) -> int:
        """Cancel pending jobs (optionally of one type). Running jobs are untouched."""
        conditions = [SyncJob.status == PENDING]
        if job_type is not None:
            conditions.append(SyncJob.type == parse_job_type(job_type).value)

        now = self._clock()
        with self._session_factory() as db:
            result = db.execute(
                update(SyncJob)
                .where(*conditions)
                .values(status=CANCELLED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            cancelled = result.rowcount or 0
            db.commit()
        logger.info("Cancelled %s pending sync job(s) type=%s", cancelled, job_type or "any")
        return cancelled

    def cleanup_old_jobs(self, days: int = 7) -> int:
        """Delete terminal jobs finished (or created, if never finished) over ``days`` ago."""
        if not _is_int(days) or days < 0:
            raise SyncValidationError("days must be a non-negative integer")

        cutoff = self._clock() - timedelta(days=days)
        finished_at = func.coalesce(SyncJob.completed_at, SyncJob.created_at)
        with self._session_factory() as db:
            result = db.execute(
                SyncJob.__table__.delete().where(
                    SyncJob.status.in_(TERMINAL_STATUSES),
                    finished_at < cutoff,
                )
            )
            deleted = result.rowcount or 0
            db.commit()
        logger.info("Cleaned up %s sync job(s) older than %s day(s)", deleted, days)
        return deleted

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_stats(self) -> QueueStats:
        with self._session_factory() as db:
            rows = db.query(SyncJob.status, func.count(SyncJob.id)).group_by(SyncJob.status).all()
        counts = {status: count for status, count in rows}
        return QueueStats(
            pending=counts.get(PENDING, 0),
            running=counts.get(RUNNING, 0),
            completed=counts.get(COMPLETED, 0),
            failed=counts.get(FAILED, 0),
            cancelled=counts.get(CANCELLED, 0),
            total=sum(counts.values()),
        )

    def queue_status(self) -> List[Dict[str, Any]]:
        """Per type/status counts with the next scheduled time and mean retries."""
        next_scheduled = func.min(case((SyncJob.status == PENDING, SyncJob.scheduled_for), else_=None))
        with self._session_factory() as db:
            rows = (
                db.query(
                    SyncJob.type,
                    SyncJob.status,
                    func.count(SyncJob.id),
                    next_scheduled,
                    func.avg(SyncJob.retry_count),
                )
                .group_by(SyncJob.type, SyncJob.status)
                .order_by(SyncJob.type, SyncJob.status)
                .all()
            )
        return [
            {
                "type": job_type,
                "status": status,
                "count": count,
                "next_scheduled": isoformat_or_none(coerce_datetime(next_at)),
                "avg_retries": round(float(avg or 0), 2),
            }
            for job_type, status, count, next_at, avg in rows
        ]

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as db:
            job = db.get(SyncJob, job_id)
            return job_to_dict(job) if job is not None else None

    # ------------------------------------------------------------------
    # Claim and run
    # ------------------------------------------------------------------

    def claim_next_job(self) -> Optional[ClaimedJob]:
        """Atomically move the best eligible pending job to running."""
        with self._session_factory() as db:
            for _ in range(CLAIM_ATTEMPTS):
                now = self._clock()
                candidate = (
                    db.query(SyncJob.id)
                    .filter(SyncJob.status == PENDING, SyncJob.scheduled_for <= now)
                    .order_by(SyncJob.priority.desc(), SyncJob.created_at.asc(), SyncJob.id.asc())
                    .first()
                )
                if candidate is None:
                    return None

                job_id = candidate[0]
                result = db.execute(
                    update(SyncJob)
                    .where(SyncJob.id == job_id, SyncJob.status == PENDING)
                    .values(status=RUNNING, started_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                claimed = result.rowcount == 1
                db.commit()
                if not claimed:
                    logger.info("Sync job %s was claimed elsewhere; reselecting", job_id)
                    continue

                job = db.get(SyncJob, job_id)
                return ClaimedJob(
                    id=job.id,
                    type=job.type,
                    options=job.options,
                    priority=job.priority,
                    retry_count=job.retry_count,
                    max_retries=job.max_retries,
                    started_at=now,
                )
        return None

    async def process_next_job(self) -> Optional[ClaimedJob]:
        job = self.claim_next_job()
        if job is None:
            return None
        await self.run_job(job)
        return job

    async def run_until_idle(self, max_jobs: Optional[int] = None) -> int:
        """Process claimable jobs until none are left (or ``max_jobs`` ran)."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            job = await self.process_next_job()
            if job is None:
                break
            processed += 1
        return processed

    async def run_job(self, job: ClaimedJob) -> str:
        """Run a claimed job and settle it; returns the job's resulting status."""
        logger.info(
            "Running sync job id=%s type=%s attempt=%s/%s",
            job.id,
            job.type,
            job.attempt,
            job.max_retries + 1,
        )
        try:
            definition = get_job_definition(job.type)
            options = definition.parse_options(job.options)
        except SyncValidationError as exc:
            logger.error("Sync job %s rejected at claim time: %s", job.id, exc)
            return self._settle_failure(job, str(exc), retryable=False)

        try:
            result = await asyncio.wait_for(
                self._execute(definition, options, job),
                timeout=self.job_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"Job exceeded the {self.job_timeout_seconds:g}s time limit"
            logger.error("Sync job %s (%s) timed out", job.id, job.type)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.error("Sync job %s (%s) failed: %s", job.id, job.type, error, exc_info=True)
        else:
            return self._settle_success(job, result)
        return self._settle_failure(job, error, retryable=True)

    async def _execute(self, definition: JobDefinition, options: Any, job: ClaimedJob) -> Dict[str, Any]:
        db = self._session_factory()
        try:
            ctx = SyncContext(db=db, now=self._clock(), job_id=job.id, queue_manager=self)
            if definition.uses_external_api:
                async with self._client_factory() as client:
                    ctx.client = client
                    result = await definition.handler(ctx, options)
            else:
                result = await definition.handler(ctx, options)
            db.commit()
            return result or {}
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()

    def _settle_success(self, job: ClaimedJob, result: Dict[str, Any]) -> str:
        now = self._clock()
        with self._session_factory() as db:
            updated = db.execute(
                update(SyncJob)
                .where(SyncJob.id == job.id, SyncJob.status == RUNNING)
                .values(status=COMPLETED, completed_at=now, result=result, error_message=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                logger.warning("Sync job %s was no longer running when it completed", job.id)
            append_run_log(
                db,
                job_id=job.id,
                sync_type=job.type,
                status=COMPLETED,
                attempt=job.attempt,
                started_at=job.started_at,
                completed_at=now,
                result=result,
            )
            db.commit()
        logger.info("Sync job %s (%s) completed", job.id, job.type)
        return COMPLETED

    def _settle_failure(self, job: ClaimedJob, error: str, *, retryable: bool) -> str:
        now = self._clock()
        error = truncate_error(error)
        with self._session_factory() as db:
            row = db.get(SyncJob, job.id)
            if row is None or row.status != RUNNING:
                logger.warning("Sync job %s was no longer running when it failed", job.id)
                new_status = row.status if row is not None else FAILED
            else:
                if retryable and row.retry_count < row.max_retries:
                    delay = self.retry_backoff_seconds * (2 ** row.retry_count)
                    values = dict(
                        status=PENDING,
                        retry_count=row.retry_count + 1,
                        started_at=None,
                        error_message=error,
                        scheduled_for=now + timedelta(seconds=delay),
                        updated_at=now,
                    )
                    new_status = PENDING
                else:
                    values = dict(status=FAILED, completed_at=now, error_message=error, updated_at=now)
                    new_status = FAILED
                db.execute(
                    update(SyncJob)
                    .where(
                        SyncJob.id == job.id,
                        SyncJob.status == RUNNING,
                        SyncJob.retry_count == row.retry_count,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            append_run_log(
                db,
                job_id=job.id,
                sync_type=job.type,
                status=FAILED,
                attempt=job.attempt,
                started_at=job.started_at,
                completed_at=now,
                error_message=error,
            )
            db.commit()

        if new_status == PENDING:
            logger.warning("Sync job %s (%s) will retry: %s", job.id, job.type, error)
        else:
            logger.error("Sync job %s (%s) failed permanently: %s", job.id, job.type, error)
        return new_status

    def requeue_stale_jobs(self, older_than_seconds: Optional[float] = None) -> int:
        """Settle jobs left ``running`` by a dead worker as failed attempts."""
        if older_than_seconds is None:
            older_than_seconds = settings.SYNC_STALE_RUNNING_MINUTES * 60
        cutoff = self._clock() - timedelta(seconds=older_than_seconds)
        with self._session_factory() as db:
            stale = (
                db.query(SyncJob)
                .filter(
                    SyncJob.status == RUNNING,
                    or_(SyncJob.started_at.is_(None), SyncJob.started_at < cutoff),
                )
                .all()
            )
            snapshots = [
                ClaimedJob(
                    id=row.id,
                    type=row.type,
                    options=row.options,
                    priority=row.priority,
                    retry_count=row.retry_count,
                    max_retries=row.max_retries,
                    started_at=as_utc(row.started_at) or cutoff,
                )
                for row in stale
            ]
        for snapshot in snapshots:
            self._settle_failure(snapshot, "Abandoned while running (worker stopped)", retryable=True)
        if snapshots:
            logger.warning("Requeued %s stale running sync job(s)", len(snapshots))
        return len(snapshots)

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return (
            self._task is not None
            and not self._task.done()
            and self._stop_event is not None
            and not self._stop_event.is_set()
        )

    def start_processing(self) -> bool:
        """Start the worker loop on the running event loop. No-op if already started."""
        if self.is_processing:
            logger.info("Sync queue processing already running")
            return False
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run_loop(self._stop_event))
        logger.info("Sync queue processing started (poll every %ss)", self.poll_interval_seconds)
        return True

    def stop_processing(self) -> bool:
        """Ask the loop to stop after its current job. No-op if not running."""
        if not self.is_processing:
            return False
        self._stop_event.set()
        logger.info("Sync queue processing stop requested")
        return True

    async def wait_stopped(self) -> None:
        if self._task is not None:
            await self._task

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                job = await self.process_next_job()
            except SQLAlchemyError as exc:
                logger.error(
                    "Sync queue store unavailable, backing off %ss: %s",
                    self.store_backoff_seconds,
                    exc,
                    exc_info=True,
                )
                await self._idle(stop_event, self.store_backoff_seconds)
                continue
            except Exception as exc:
                logger.error("Sync queue loop error: %s", exc, exc_info=True)
                await self._idle(stop_event, self.poll_interval_seconds)
                continue
            if job is None:
                await self._idle(stop_event, self.poll_interval_seconds)
        logger.info("Sync queue processing stopped")

    @staticmethod
    async def _idle(stop_event: asyncio.Event, seconds: float) -> None:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

