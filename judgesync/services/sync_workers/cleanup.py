from __future__ import annotations

from typing import Any, Dict

from judgesync.models.sync import CleanupOptions
from judgesync.services.sync_workers.context import SyncContext


async def cleanup_jobs(ctx: SyncContext, options: CleanupOptions) -> Dict[str, Any]:
    """Queue retention run as a job (enqueued by the weekly trigger)."""
    if ctx.queue_manager is None:
        raise RuntimeError("Cleanup jobs need a queue manager")
    deleted = ctx.queue_manager.cleanup_old_jobs(options.older_than_days)
    return {"deleted_jobs": deleted, "older_than_days": options.older_than_days}
