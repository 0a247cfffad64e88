from __future__ import annotations

from typing import Any, Dict

from judgesync.models.sync import FullSyncOptions
from judgesync.services.sync_workers.context import SyncContext
from judgesync.services.sync_workers.court_sync import sync_courts
from judgesync.services.sync_workers.decision_sync import sync_decisions
from judgesync.services.sync_workers.judge_sync import sync_judges
from judgesync.utils.logger import logger


async def sync_full(ctx: SyncContext, options: FullSyncOptions) -> Dict[str, Any]:
    """Courts, then judges, then decisions, inside one job attempt."""
    result: Dict[str, Any] = {}
    result["court"] = await sync_courts(ctx, options.court)
    result["judge"] = await sync_judges(ctx, options.judge)
    result["decision"] = await sync_decisions(ctx, options.decision)
    logger.info("Full sync job=%s finished", ctx.job_id)
    return result

