from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class SyncValidationError(ValueError):
    """Raised for a bad job type, malformed options or invalid queue arguments."""


class JobType(str, Enum):
    COURT = "court"
    JUDGE = "judge"
    DECISION = "decision"
    FULL = "full"
    CLEANUP = "cleanup"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value)


def parse_job_type(value: Any) -> JobType:
    if isinstance(value, JobType):
        return value
    try:
        return JobType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in JobType)
        raise SyncValidationError(f"Unknown job type {value!r}; expected one of: {allowed}")


class SyncOptions(BaseModel):
    """Base for per-type job options.

    Accepts both the camelCase keys used by cron/admin callers
    (``batchSize``) and snake_case keys; unknown keys are rejected.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class CourtSyncOptions(SyncOptions):
    batch_size: int = Field(20, ge=1, le=1000)
    jurisdiction: Optional[str] = None
    force_refresh: bool = False
    max_courts: int = Field(500, ge=1, le=5000)


class JudgeSyncOptions(SyncOptions):
    batch_size: int = Field(10, ge=1, le=500)
    jurisdiction: Optional[str] = None
    judge_ids: Optional[List[str]] = None
    force_refresh: bool = False
    # Profiles refreshed more recently than this are skipped unless force_refresh.
    stale_after_days: int = Field(7, ge=0)


class DecisionSyncOptions(SyncOptions):
    batch_size: int = Field(5, ge=1, le=500)
    jurisdiction: Optional[str] = None
    judge_ids: Optional[List[str]] = None
    days_since_last: Optional[int] = Field(None, ge=0)
    years_back: Optional[int] = Field(None, ge=0)
    max_decisions_per_judge: int = Field(150, ge=1, le=5000)
    include_dockets: bool = False


class FullSyncOptions(SyncOptions):
    court: CourtSyncOptions = Field(default_factory=CourtSyncOptions)
    judge: JudgeSyncOptions = Field(default_factory=JudgeSyncOptions)
    decision: DecisionSyncOptions = Field(default_factory=DecisionSyncOptions)


class CleanupOptions(SyncOptions):
    older_than_days: int = Field(7, ge=0)


OPTIONS_SCHEMAS: Dict[JobType, Type[SyncOptions]] = {
    JobType.COURT: CourtSyncOptions,
    JobType.JUDGE: JudgeSyncOptions,
    JobType.DECISION: DecisionSyncOptions,
    JobType.FULL: FullSyncOptions,
    JobType.CLEANUP: CleanupOptions,
}


def parse_job_options(job_type: JobType, options: Optional[Dict[str, Any]]) -> SyncOptions:
    """Validate a raw options payload against the schema for ``job_type``."""
    if options is None:
        options = {}
    if not isinstance(options, dict):
        raise SyncValidationError(f"Options for {job_type.value} jobs must be an object")
    schema = OPTIONS_SCHEMAS[job_type]
    try:
        return schema.model_validate(options)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'options'}: {err['msg']}" for err in exc.errors()
        )
        raise SyncValidationError(f"Invalid options for {job_type.value} job: {problems}")


def dump_job_options(options: SyncOptions) -> Dict[str, Any]:
    return options.model_dump(mode="json", exclude_none=True)


class QueueStats(BaseModel):
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0
