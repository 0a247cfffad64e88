from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from judgesync.models_sqlalchemy import get_db
from judgesync.services.admin_auth import require_admin_caller
from judgesync.services.sync_status import SyncStatusService
from judgesync.services.sync_triggers import run_admin_action
from judgesync.services.sync_workers import SyncQueueManager, get_queue_manager
from judgesync.utils.logger import logger

router = APIRouter(prefix="/api/admin", tags=["sync_admin"])


class SyncAdminActionRequest(BaseModel):
    action: str
    type: Optional[str] = None
    options: Optional[Dict[str, Any]] = None
    priority: Optional[int] = None
    days: Optional[int] = Field(None, ge=0)


@router.get("/sync-status")
def get_sync_status(
    db: Session = Depends(get_db),
    manager: SyncQueueManager = Depends(get_queue_manager),
    _: str = Depends(require_admin_caller),
) -> Dict[str, Any]:
    """Health, queue, performance and freshness snapshot of the sync engine."""
    return SyncStatusService(db, queue_manager=manager).build_snapshot()


@router.post("/sync-status")
async def post_sync_action(
    payload: SyncAdminActionRequest,
    manager: SyncQueueManager = Depends(get_queue_manager),
    _: str = Depends(require_admin_caller),
) -> Dict[str, Any]:
    logger.info("Admin sync action=%s type=%s", payload.action, payload.type)
    return await run_admin_action(
        manager,
        payload.action,
        job_type=payload.type,
        options=payload.options,
        priority=payload.priority,
        days=payload.days,
    )
