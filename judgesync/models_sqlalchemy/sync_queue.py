from sqlalchemy import Column, String, DateTime, Integer, Text, Index
from sqlalchemy.sql import func

from judgesync.models_sqlalchemy import Base, JSONType


class SyncJob(Base):
    """One queued unit of synchronization work.

    Rows are inserted by SyncQueueManager.add_job and only ever mutated
    through conditional updates keyed on the current ``status`` so that two
    claimers can never run the same job.
    """

    __tablename__ = "sync_queue"

    id = Column(String(36), primary_key=True)
    # court, judge, decision, full, cleanup
    type = Column(String(32), nullable=False, index=True)
    options = Column(JSONType, nullable=True)
    priority = Column(Integer, nullable=False, server_default="0")

    # pending, running, completed, failed, cancelled
    status = Column(String(32), nullable=False, index=True, server_default="pending")
    retry_count = Column(Integer, nullable=False, server_default="0")
    max_retries = Column(Integer, nullable=False, server_default="3")

    # Earliest time the job may be claimed (delayed triggers, retry backoff).
    scheduled_for = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    result = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_sync_queue_claim", "status", "priority", "created_at"),
    )


class SyncRunLog(Base):
    """Append-only record of one job attempt, used for health reporting."""

    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True)
    # Back-reference only: the job row may be cleaned up while logs remain.
    job_id = Column(String(36), nullable=True, index=True)
    sync_type = Column(String(32), nullable=False, index=True)
    status = Column(String(32), nullable=False, index=True)  # completed, failed
    attempt = Column(Integer, nullable=False, server_default="1")

    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    result = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BackgroundWorker(Base):
    """Heartbeat row for long-running worker loops."""

    __tablename__ = "background_workers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    worker_name = Column(String(64), nullable=False, unique=True)
    interval_seconds = Column(Integer, nullable=True)

    last_started_at = Column(DateTime(timezone=True), nullable=True)
    last_finished_at = Column(DateTime(timezone=True), nullable=True)
    last_status = Column(String(32), nullable=True)  # ok, error
    last_error_message = Column(Text, nullable=True)

    runs_ok_in_row = Column(Integer, nullable=False, server_default="0")
    runs_error_in_row = Column(Integer, nullable=False, server_default="0")

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
