"""Cron and operator entrypoints that enqueue sync jobs.

Every trigger only writes ``sync_queue`` rows and returns immediately; the
work itself runs later in the queue loop.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

from judgesync.config import settings
from judgesync.models.sync import JobType, SyncValidationError, parse_job_type
from judgesync.services.sync_workers.queue_manager import SyncQueueManager
from judgesync.utils.logger import logger

# Standing daily plan: recent decisions outrank the judge profile refresh.
DAILY_DECISION_PRIORITY = 100
DAILY_JUDGE_PRIORITY = 50
# Operator-triggered jobs jump ahead of anything the cron enqueues.
MANUAL_DECISION_PRIORITY = 150
MANUAL_JUDGE_PRIORITY = 100
ADMIN_QUEUE_PRIORITY = 100

WEEKLY_COURT_PRIORITY = 200
WEEKLY_JUDGE_PRIORITY = 150
WEEKLY_DECISION_PRIORITY = 100
WEEKLY_CLEANUP_PRIORITY = 10

ADMIN_ACTIONS = ("queue_job", "cancel_jobs", "cleanup", "restart_queue")
WEEKLY_SYNC_TYPES = ("full", "court", "judge", "decision")


def _job_entry(job_id: str, job_type: JobType, priority: int, delay_minutes: int = 0) -> Dict[str, Any]:
    return {"id": job_id, "type": job_type.value, "priority": priority, "delay_minutes": delay_minutes}


def _enqueue(
    manager: SyncQueueManager,
    job_type: JobType,
    options: Dict[str, Any],
    priority: int,
    *,
    delay_minutes: int = 0,
) -> Dict[str, Any]:
    scheduled_for = None
    if delay_minutes:
        scheduled_for = manager.now() + timedelta(minutes=delay_minutes)
    job_id = manager.add_job(job_type, options, priority, scheduled_for=scheduled_for)
    return _job_entry(job_id, job_type, priority, delay_minutes)


def trigger_daily_sync(manager: SyncQueueManager) -> List[Dict[str, Any]]:
    """Standing daily jobs: a short-lookback decision sync and a stale-profile judge refresh."""
    jurisdiction = settings.SYNC_DEFAULT_JURISDICTION
    jobs = [
        _enqueue(
            manager,
            JobType.DECISION,
            {
                "batch_size": 5,
                "jurisdiction": jurisdiction,
                "days_since_last": 1,
                "max_decisions_per_judge": 20,
            },
            DAILY_DECISION_PRIORITY,
        ),
        _enqueue(
            manager,
            JobType.JUDGE,
            {"batch_size": 20, "jurisdiction": jurisdiction, "force_refresh": False},
            DAILY_JUDGE_PRIORITY,
        ),
    ]
    logger.info("Daily sync queued %s job(s)", len(jobs))
    return jobs


def trigger_manual_daily_sync(
    manager: SyncQueueManager,
    *,
    force: bool = False,
    batch_size: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Operator variant of the daily sync; ``force`` widens the lookback and caps."""
    jurisdiction = settings.SYNC_DEFAULT_JURISDICTION
    jobs = [
        _enqueue(
            manager,
            JobType.DECISION,
            {
                "batch_size": batch_size or 10,
                "jurisdiction": jurisdiction,
                "days_since_last": 7 if force else 1,
                "max_decisions_per_judge": 50 if force else 20,
            },
            MANUAL_DECISION_PRIORITY,
        )
    ]
    if force:
        jobs.append(
            _enqueue(
                manager,
                JobType.JUDGE,
                {"batch_size": 20, "jurisdiction": jurisdiction, "force_refresh": True},
                MANUAL_JUDGE_PRIORITY,
            )
        )
    logger.info("Manual daily sync queued %s job(s) force=%s", len(jobs), force)
    return jobs


def trigger_weekly_sync(manager: SyncQueueManager) -> List[Dict[str, Any]]:
    """Weekly maintenance: courts, then judges, decisions and queue cleanup, staggered."""
    jurisdiction = settings.SYNC_DEFAULT_JURISDICTION
    jobs = [
        _enqueue(
            manager,
            JobType.COURT,
            {"batch_size": 30, "jurisdiction": jurisdiction, "force_refresh": True},
            WEEKLY_COURT_PRIORITY,
        ),
        _enqueue(
            manager,
            JobType.JUDGE,
            {"batch_size": 15, "jurisdiction": jurisdiction, "force_refresh": True},
            WEEKLY_JUDGE_PRIORITY,
            delay_minutes=30,
        ),
        _enqueue(
            manager,
            JobType.DECISION,
            {
                "batch_size": 3,
                "jurisdiction": jurisdiction,
                "days_since_last": 7,
                "max_decisions_per_judge": 100,
            },
            WEEKLY_DECISION_PRIORITY,
            delay_minutes=60,
        ),
        _enqueue(
            manager,
            JobType.CLEANUP,
            {"older_than_days": 7},
            WEEKLY_CLEANUP_PRIORITY,
            delay_minutes=120,
        ),
    ]
    logger.info("Weekly sync queued %s job(s)", len(jobs))
    return jobs


def trigger_manual_weekly_sync(
    manager: SyncQueueManager,
    *,
    sync_type: str = "full",
    immediate: bool = False,
) -> List[Dict[str, Any]]:
    if sync_type not in WEEKLY_SYNC_TYPES:
        raise SyncValidationError(f"syncType must be one of: {', '.join(WEEKLY_SYNC_TYPES)}")

    jurisdiction = settings.SYNC_DEFAULT_JURISDICTION
    jobs: List[Dict[str, Any]] = []
    if sync_type in ("full", "court"):
        jobs.append(
            _enqueue(
                manager,
                JobType.COURT,
                {"batch_size": 30, "jurisdiction": jurisdiction, "force_refresh": True},
                WEEKLY_COURT_PRIORITY,
            )
        )
    if sync_type in ("full", "judge"):
        jobs.append(
            _enqueue(
                manager,
                JobType.JUDGE,
                {"batch_size": 15, "jurisdiction": jurisdiction, "force_refresh": True},
                WEEKLY_JUDGE_PRIORITY,
                delay_minutes=0 if immediate else 5,
            )
        )
    if sync_type in ("full", "decision"):
        jobs.append(
            _enqueue(
                manager,
                JobType.DECISION,
                {
                    "batch_size": 3,
                    "jurisdiction": jurisdiction,
                    "days_since_last": 14,
                    "max_decisions_per_judge": 100,
                },
                WEEKLY_DECISION_PRIORITY,
                delay_minutes=0 if immediate else 10,
            )
        )
    logger.info("Manual weekly sync queued %s job(s) type=%s immediate=%s", len(jobs), sync_type, immediate)
    return jobs


async def run_admin_action(
    manager: SyncQueueManager,
    action: str,
    *,
    job_type: Optional[str] = None,
    options: Optional[Dict[str, Any]] = None,
    priority: Optional[int] = None,
    days: Optional[int] = None,
) -> Dict[str, Any]:
    """Map one operator action onto the queue manager."""
    if action == "queue_job":
        parsed_type = parse_job_type(job_type or JobType.DECISION.value)
        job_priority = ADMIN_QUEUE_PRIORITY if priority is None else priority
        job_id = manager.add_job(parsed_type, options or {}, job_priority)
        return {
            "success": True,
            "message": f"Queued {parsed_type.value} sync job",
            "job_id": job_id,
            "type": parsed_type.value,
            "priority": job_priority,
        }

    if action == "cancel_jobs":
        cancelled = manager.cancel_jobs(job_type)
        return {"success": True, "message": f"Cancelled {cancelled} pending job(s)", "cancelled": cancelled}

    if action == "cleanup":
        deleted = manager.cleanup_old_jobs(7 if days is None else days)
        return {"success": True, "message": f"Deleted {deleted} old job(s)", "deleted": deleted}

    if action == "restart_queue":
        manager.stop_processing()
        requeued = manager.requeue_stale_jobs()
        if not settings.SYNC_PROCESS_IN_APP:
            logger.info("restart_queue: processing runs in the separate worker, loop not started here")
            return {
                "success": True,
                "message": "Stale jobs requeued; queue processing runs in the separate worker",
                "requeued_stale_jobs": requeued,
                "processing_started": False,
            }
        manager.start_processing()
        return {
            "success": True,
            "message": "Queue processing restarted",
            "requeued_stale_jobs": requeued,
            "processing_started": True,
        }

    raise SyncValidationError(f"Invalid action {action!r}; expected one of: {', '.join(ADMIN_ACTIONS)}")
