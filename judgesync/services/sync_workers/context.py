from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy.orm import Session

from judgesync.services.courtlistener_client import CourtListenerClient

if TYPE_CHECKING:  # pragma: no cover
    from judgesync.services.sync_workers.queue_manager import SyncQueueManager


@dataclass
class SyncContext:
    """Everything a sync routine needs for one job attempt.

    ``db`` is a session owned by the queue manager: routines add and flush,
    the manager commits on success and rolls back on failure.
    """

    db: Session
    now: datetime
    job_id: Optional[str] = None
    client: Optional[CourtListenerClient] = None
    queue_manager: Optional["SyncQueueManager"] = None

    def require_client(self) -> CourtListenerClient:
        if self.client is None:
            raise RuntimeError("This sync routine needs a CourtListener client")
        return self.client
