"""Sync job queue, job-type registry and the CourtListener sync routines.

The queue manager holds no job state, only the handle of its own
processing loop; the API process keeps one instance so that
``restart_queue`` can reach the loop it started.
"""
from typing import Optional

from judgesync.services.sync_workers.queue_manager import ClaimedJob, SyncQueueManager
from judgesync.services.sync_workers.registry import JOB_DEFINITIONS, JobDefinition, get_job_definition

_queue_manager: Optional[SyncQueueManager] = None


def get_queue_manager() -> SyncQueueManager:
    """FastAPI dependency returning the process-wide queue manager."""
    global _queue_manager
    if _queue_manager is None:
        _queue_manager = SyncQueueManager()
    return _queue_manager


__all__ = [
    "ClaimedJob",
    "JOB_DEFINITIONS",
    "JobDefinition",
    "SyncQueueManager",
    "get_job_definition",
    "get_queue_manager",
]
