"""Job-type registry: each JobType maps to one handler and one options schema."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from judgesync.models.sync import (
    OPTIONS_SCHEMAS,
    JobType,
    SyncOptions,
    SyncValidationError,
    parse_job_options,
    parse_job_type,
)
from judgesync.services.sync_workers.context import SyncContext
from judgesync.services.sync_workers.court_sync import sync_courts
from judgesync.services.sync_workers.decision_sync import sync_decisions
from judgesync.services.sync_workers.cleanup import cleanup_jobs
from judgesync.services.sync_workers.full_sync import sync_full
from judgesync.services.sync_workers.judge_sync import sync_judges

JobHandler = Callable[[SyncContext, Any], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class JobDefinition:
    job_type: JobType
    handler: JobHandler
    uses_external_api: bool = True

    @property
    def options_model(self) -> Type[SyncOptions]:
        return OPTIONS_SCHEMAS[self.job_type]

    def parse_options(self, options: Optional[Dict[str, Any]]) -> SyncOptions:
        return parse_job_options(self.job_type, options)


JOB_DEFINITIONS: Dict[JobType, JobDefinition] = {
    JobType.COURT: JobDefinition(JobType.COURT, sync_courts),
    JobType.JUDGE: JobDefinition(JobType.JUDGE, sync_judges),
    JobType.DECISION: JobDefinition(JobType.DECISION, sync_decisions),
    JobType.FULL: JobDefinition(JobType.FULL, sync_full),
    JobType.CLEANUP: JobDefinition(JobType.CLEANUP, cleanup_jobs, uses_external_api=False),
}


def get_job_definition(job_type: Any) -> JobDefinition:
    parsed = parse_job_type(job_type)
    definition = JOB_DEFINITIONS.get(parsed)
    if definition is None:
        raise SyncValidationError(f"No handler registered for job type {parsed.value!r}")
    return definition
