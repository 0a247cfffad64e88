from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from judgesync.models_sqlalchemy.sync_queue import SyncRunLog
from judgesync.utils.time_utils import as_utc

MAX_ERROR_LENGTH = 2000


def truncate_error(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message if len(message) <= MAX_ERROR_LENGTH else message[: MAX_ERROR_LENGTH - 3] + "..."


def duration_ms(started_at: Optional[datetime], finished_at: datetime) -> Optional[int]:
    started_at = as_utc(started_at)
    if started_at is None:
        return None
    return max(0, int((as_utc(finished_at) - started_at).total_seconds() * 1000))


def append_run_log(
    db: Session,
    *,
    job_id: Optional[str],
    sync_type: str,
    status: str,
    attempt: int,
    started_at: datetime,
    completed_at: datetime,
    error_message: Optional[str] = None,
    result: Optional[Dict[str, Any]] = None,
) -> SyncRunLog:
    """Add one immutable attempt record; the caller commits."""
    entry = SyncRunLog(
        id=str(uuid4()),
        job_id=job_id,
        sync_type=sync_type,
        status=status,
        attempt=attempt,
        started_at=started_at,
        completed_at=completed_at,
        duration_ms=duration_ms(started_at, completed_at),
        error_message=truncate_error(error_message),
        result=result,
        created_at=completed_at,
    )
    db.add(entry)
    return entry
