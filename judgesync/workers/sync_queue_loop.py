"""Standalone sync queue worker.

Drains ``sync_queue`` every ``interval_seconds``: jobs left ``running`` by a
crashed worker are settled first, then every claimable job is processed.

Run it as a separate process::

    python -m judgesync.workers.sync_queue_loop

A heartbeat is kept in the BackgroundWorker table with
worker_name="sync_queue_loop" so the admin status endpoint can show when the
loop last ran and whether it appears stale.
"""

import asyncio
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from judgesync.config import settings
from judgesync.models_sqlalchemy import SessionLocal
from judgesync.models_sqlalchemy.sync_queue import BackgroundWorker
from judgesync.services.sync_workers import SyncQueueManager
from judgesync.utils.logger import logger
from judgesync.utils.time_utils import now_utc

WORKER_NAME = "sync_queue_loop"


def get_or_create_worker_row(db: Session, interval_seconds: Optional[int] = None) -> BackgroundWorker:
    worker = (
        db.query(BackgroundWorker)
        .filter(BackgroundWorker.worker_name == WORKER_NAME)
        .one_or_none()
    )
    if worker is None:
        worker = BackgroundWorker(worker_name=WORKER_NAME, runs_ok_in_row=0, runs_error_in_row=0)
        db.add(worker)
    if interval_seconds is not None:
        worker.interval_seconds = interval_seconds
    db.commit()
    db.refresh(worker)
    return worker


async def run_sync_queue_once(manager: SyncQueueManager, max_jobs: Optional[int] = None) -> int:
    """One drain pass; returns how many jobs were processed."""
    requeued = manager.requeue_stale_jobs()
    if requeued:
        logger.warning("Requeued %s stale sync job(s) before draining", requeued)
    processed = await manager.run_until_idle(max_jobs)
    logger.info("Sync queue pass finished processed=%s", processed)
    return processed


async def run_sync_queue_loop(
    interval_seconds: Optional[int] = None,
    *,
    manager: Optional[SyncQueueManager] = None,
    session_factory=SessionLocal,
    iterations: Optional[int] = None,
) -> None:
    """Run drain passes forever (or ``iterations`` times), recording a heartbeat."""
    if interval_seconds is None:
        interval_seconds = settings.SYNC_POLL_INTERVAL_SECONDS
    manager = manager or SyncQueueManager(session_factory)

    logger.info("=" * 60)
    logger.info("Sync queue loop started (interval=%s seconds)", interval_seconds)
    logger.info("=" * 60)

    db = session_factory()
    try:
        runs = 0
        while iterations is None or runs < iterations:
            runs += 1
            store_ok = _record_heartbeat(db, int(interval_seconds), "running")

            error: Optional[str] = None
            try:
                await run_sync_queue_once(manager)
            except SQLAlchemyError as exc:
                logger.error("Sync queue pass failed: %s", exc, exc_info=True)
                error = str(exc)
                store_ok = False

            if not _record_heartbeat(db, int(interval_seconds), "error" if error else "ok", error):
                store_ok = False

            if iterations is None or runs < iterations:
                if store_ok:
                    await asyncio.sleep(interval_seconds)
                else:
                    logger.warning(
                        "Sync queue store unavailable, backing off %ss",
                        manager.store_backoff_seconds,
                    )
                    await asyncio.sleep(manager.store_backoff_seconds)
    finally:
        db.close()


def _record_heartbeat(db: Session, interval_seconds: int, status: str, error: Optional[str] = None) -> bool:
    """Write the loop heartbeat; returns False when the store could not be reached."""
    try:
        worker_row = get_or_create_worker_row(db, interval_seconds)
        now = now_utc()
        worker_row.last_status = status
        if status == "running":
            worker_row.last_started_at = now
            worker_row.last_error_message = None
        elif status == "ok":
            worker_row.runs_ok_in_row = (worker_row.runs_ok_in_row or 0) + 1
            worker_row.runs_error_in_row = 0
            worker_row.last_finished_at = now
        else:
            worker_row.last_error_message = (error or "")[:2000]
            worker_row.runs_error_in_row = (worker_row.runs_error_in_row or 0) + 1
            worker_row.runs_ok_in_row = 0
            worker_row.last_finished_at = now
        db.commit()
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Sync queue heartbeat not recorded: %s", exc, exc_info=True)
        return False


if __name__ == "__main__":
    asyncio.run(run_sync_queue_loop())
