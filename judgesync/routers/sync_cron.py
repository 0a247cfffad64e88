from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from judgesync.services.admin_auth import require_admin_caller, require_cron_secret
from judgesync.services.sync_triggers import (
    trigger_daily_sync,
    trigger_manual_daily_sync,
    trigger_manual_weekly_sync,
    trigger_weekly_sync,
)
from judgesync.services.sync_workers import SyncQueueManager, get_queue_manager

router = APIRouter(prefix="/api/cron", tags=["sync_cron"])


class ManualDailySyncRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    force: bool = False
    batch_size: Optional[int] = Field(None, ge=1, le=500)


class ManualWeeklySyncRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sync_type: str = "full"
    immediate: bool = False


def _queued_response(message: str, jobs: List[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    return {
        "success": True,
        "message": message,
        "jobs": jobs,
        "triggered_at": datetime.now(timezone.utc).isoformat(),
        **extra,
    }


@router.get("/daily-sync")
def cron_daily_sync(
    manager: SyncQueueManager = Depends(get_queue_manager),
    _: str = Depends(require_cron_secret),
) -> Dict[str, Any]:
    jobs = trigger_daily_sync(manager)
    return _queued_response("Daily sync jobs queued", jobs)


@router.post("/daily-sync")
def manual_daily_sync(
    payload: Optional[ManualDailySyncRequest] = Body(None),
    manager: SyncQueueManager = Depends(get_queue_manager),
    _: str = Depends(require_admin_caller),
) -> Dict[str, Any]:
    payload = payload or ManualDailySyncRequest()
    jobs = trigger_manual_daily_sync(manager, force=payload.force, batch_size=payload.batch_size)
    return _queued_response("Manual daily sync jobs queued", jobs, force=payload.force)


@router.get("/weekly-sync")
def cron_weekly_sync(
    manager: SyncQueueManager = Depends(get_queue_manager),
    _: str = Depends(require_cron_secret),
) -> Dict[str, Any]:
    jobs = trigger_weekly_sync(manager)
    return _queued_response("Weekly sync jobs queued", jobs)


@router.post("/weekly-sync")
def manual_weekly_sync(
    payload: Optional[ManualWeeklySyncRequest] = Body(None),
    manager: SyncQueueManager = Depends(get_queue_manager),
    _: str = Depends(require_admin_caller),
) -> Dict[str, Any]:
    payload = payload or ManualWeeklySyncRequest()
    jobs = trigger_manual_weekly_sync(manager, sync_type=payload.sync_type, immediate=payload.immediate)
    return _queued_response(
        "Manual weekly sync jobs queued",
        jobs,
        sync_type=payload.sync_type,
        immediate=payload.immediate,
    )
