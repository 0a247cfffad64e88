"""Point-in-time health/performance snapshot of the sync queue.

Pure helpers (``success_rate``, ``average_duration_ms``, ``percentile``,
``determine_overall_health``, ``calculate_uptime``) hold the formulas; the
service class only gathers rows and assembles the payload served by
``GET /api/admin/sync-status``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from judgesync.config import settings
from judgesync.models.sync import JobStatus, JobType
from judgesync.models_sqlalchemy.directory import Case, Judge
from judgesync.models_sqlalchemy.sync_queue import BackgroundWorker, SyncJob, SyncRunLog
from judgesync.services.sync_workers.queue_manager import SyncQueueManager
from judgesync.utils.logger import logger
from judgesync.utils.time_utils import as_utc, coerce_datetime, isoformat_or_none, now_utc

COMPLETED = JobStatus.COMPLETED.value
FAILED = JobStatus.FAILED.value


def _round_half_up(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def success_rate(completed_runs: int, total_runs: int) -> float:
    """completed / total * 100, one decimal; 0 when there were no runs."""
    if total_runs <= 0:
        return 0.0
    rate = Decimal(completed_runs) * 100 / Decimal(total_runs)
    return float(rate.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def average_duration_ms(durations: Iterable[Optional[int]]) -> int:
    values = [d for d in durations if d is not None]
    if not values:
        return 0
    return int(_round_half_up(sum(values) / len(values), 0))


def percentile(values: Sequence[Optional[int]], pct: float) -> Optional[int]:
    """Nearest-rank percentile; None for an empty sample."""
    ordered = sorted(v for v in values if v is not None)
    if not ordered:
        return None
    rank = max(1, math.ceil(pct / 100.0 * len(ordered)))
    return ordered[min(rank, len(ordered)) - 1]


@dataclass(frozen=True)
class HealthThresholds:
    critical_success_rate: float = 75.0
    critical_backlog: int = 100
    warning_success_rate: float = 90.0
    warning_backlog: int = 50
    caution_success_rate: float = 95.0
    caution_backlog: int = 20

    @classmethod
    def from_settings(cls) -> "HealthThresholds":
        return cls(
            critical_success_rate=settings.SYNC_HEALTH_CRITICAL_SUCCESS_RATE,
            critical_backlog=settings.SYNC_HEALTH_CRITICAL_BACKLOG,
            warning_success_rate=settings.SYNC_HEALTH_WARNING_SUCCESS_RATE,
            warning_backlog=settings.SYNC_HEALTH_WARNING_BACKLOG,
            caution_success_rate=settings.SYNC_HEALTH_CAUTION_SUCCESS_RATE,
            caution_backlog=settings.SYNC_HEALTH_CAUTION_BACKLOG,
        )


def determine_overall_health(
    rate: float,
    pending_backlog: int,
    thresholds: Optional[HealthThresholds] = None,
) -> str:
    t = thresholds or HealthThresholds()
    if rate < t.critical_success_rate or pending_backlog > t.critical_backlog:
        return "critical"
    if rate < t.warning_success_rate or pending_backlog > t.warning_backlog:
        return "warning"
    if rate < t.caution_success_rate or pending_backlog > t.caution_backlog:
        return "caution"
    return "healthy"


def calculate_uptime(statuses: Sequence[str]) -> float:
    """Share of completed runs in a recent sample, two decimals."""
    if not statuses:
        return 0.0
    completed = sum(1 for s in statuses if s == COMPLETED)
    rate = Decimal(completed) * 100 / Decimal(len(statuses))
    return float(rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def hours_since(value: Optional[datetime], reference: datetime) -> Optional[int]:
    value = as_utc(value)
    if value is None:
        return None
    return int(_round_half_up((reference - value).total_seconds() / 3600.0, 0))


def summarize_window(rows: Sequence[Any]) -> Dict[str, Any]:
    """Stats for run-log rows (objects with ``status`` and ``duration_ms``)."""
    total = len(rows)
    completed = sum(1 for r in rows if r.status == COMPLETED)
    failed = sum(1 for r in rows if r.status == FAILED)
    durations = [r.duration_ms for r in rows]
    return {
        "total_runs": total,
        "completed_runs": completed,
        "failed_runs": failed,
        "success_rate": success_rate(completed, total),
        "avg_duration_ms": average_duration_ms(durations),
        "p50_duration_ms": percentile(durations, 50),
        "p95_duration_ms": percentile(durations, 95),
    }


class SyncStatusService:
    def __init__(
        self,
        db: Session,
        *,
        queue_manager: Optional[SyncQueueManager] = None,
        clock: Callable[[], datetime] = now_utc,
        thresholds: Optional[HealthThresholds] = None,
    ) -> None:
        self.db = db
        self.queue_manager = queue_manager or SyncQueueManager()
        self._clock = clock
        self.thresholds = thresholds or HealthThresholds.from_settings()

    def build_snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        stats = self.queue_manager.get_stats()
        weekly_rows = self._run_logs_since(now - timedelta(days=7))
        daily_rows = [r for r in weekly_rows if as_utc(r.started_at) >= now - timedelta(hours=24)]
        daily = summarize_window(daily_rows)
        weekly = summarize_window(weekly_rows)

        recent = self._recent_logs(max(settings.SYNC_RECENT_LOG_LIMIT, settings.SYNC_UPTIME_SAMPLE_SIZE))
        uptime_sample = [r.status for r in recent[: settings.SYNC_UPTIME_SAMPLE_SIZE]]

        snapshot = {
            "timestamp": now.isoformat(),
            "health": {
                "status": determine_overall_health(daily["success_rate"], stats.pending, self.thresholds),
                "metrics": self._health_metrics(now, stats.pending, daily),
                "uptime": calculate_uptime(uptime_sample),
            },
            "queue": {
                "stats": stats.model_dump(),
                "status": self.queue_manager.queue_status(),
                "backlog": stats.pending + stats.running,
                "retrying": self._retrying_count(),
            },
            "performance": {"daily": daily, "weekly": weekly},
            "freshness": self._freshness(now),
            "recent_logs": [self._log_to_dict(r) for r in recent[: settings.SYNC_RECENT_LOG_LIMIT]],
            "sync_breakdown": self._sync_breakdown(now),
            "workers": self._workers(),
        }
        logger.info(
            "Built sync status snapshot health=%s pending=%s daily_success=%s",
            snapshot["health"]["status"],
            stats.pending,
            daily["success_rate"],
        )
        return snapshot

    # ------------------------------------------------------------------

    def _run_logs_since(self, since: datetime) -> List[SyncRunLog]:
        return self.db.query(SyncRunLog).filter(SyncRunLog.started_at >= since).all()

    def _recent_logs(self, limit: int) -> List[SyncRunLog]:
        return (
            self.db.query(SyncRunLog)
            .order_by(SyncRunLog.started_at.desc(), SyncRunLog.created_at.desc())
            .limit(limit)
            .all()
        )

    def _retrying_count(self) -> int:
        return (
            self.db.query(func.count(SyncJob.id))
            .filter(SyncJob.status == JobStatus.PENDING.value, SyncJob.retry_count > 0)
            .scalar()
            or 0
        )

    @staticmethod
    def _log_to_dict(row: SyncRunLog) -> Dict[str, Any]:
        return {
            "id": row.id,
            "job_id": row.job_id,
            "sync_type": row.sync_type,
            "status": row.status,
            "attempt": row.attempt,
            "started_at": isoformat_or_none(row.started_at),
            "duration_ms": row.duration_ms,
            "error_message": row.error_message,
        }

    def _health_metrics(self, now: datetime, pending: int, daily: Dict[str, Any]) -> List[Dict[str, Any]]:
        if pending > 100:
            pending_status = "warning"
        elif pending > 50:
            pending_status = "caution"
        else:
            pending_status = "good"

        if daily["total_runs"] == 0:
            rate_value, rate_status = None, "warning"
        else:
            rate_value = daily["success_rate"]
            if rate_value >= 90:
                rate_status = "good"
            elif rate_value >= 75:
                rate_status = "caution"
            else:
                rate_status = "warning"

        last_decision = (
            self.db.query(func.max(SyncRunLog.completed_at))
            .filter(SyncRunLog.sync_type == JobType.DECISION.value, SyncRunLog.status == COMPLETED)
            .scalar()
        )
        last_decision = as_utc(coerce_datetime(last_decision))
        if last_decision is None:
            age_seconds, decision_status = None, "warning"
        else:
            age_seconds = int((now - last_decision).total_seconds())
            if last_decision >= now - timedelta(hours=2):
                decision_status = "good"
            elif last_decision >= now - timedelta(hours=6):
                decision_status = "caution"
            else:
                decision_status = "warning"

        return [
            {"metric_name": "pending_jobs", "value": pending, "status": pending_status},
            {"metric_name": "success_rate_24h", "value": rate_value, "status": rate_status},
            {"metric_name": "last_decision_sync", "value": age_seconds, "status": decision_status},
        ]

    def _freshness(self, now: datetime) -> Dict[str, Any]:
        last_judge_sync = (
            self.db.query(func.max(Judge.last_synced_at))
            .filter(Judge.jurisdiction == settings.SYNC_DEFAULT_JURISDICTION)
            .scalar()
        )
        last_case = self.db.query(func.max(Case.created_at)).filter(Case.courtlistener_id.isnot(None)).scalar()
        last_judge_sync = as_utc(coerce_datetime(last_judge_sync))
        last_case = as_utc(coerce_datetime(last_case))
        return {
            "judges": {"last_sync": isoformat_or_none(last_judge_sync), "hours_since": hours_since(last_judge_sync, now)},
            "decisions": {"last_created": isoformat_or_none(last_case), "hours_since": hours_since(last_case, now)},
        }

    def _sync_breakdown(self, now: datetime) -> List[Dict[str, Any]]:
        """Per type/status run counts over the last 30 days."""
        rows = (
            self.db.query(
                SyncRunLog.sync_type,
                SyncRunLog.status,
                func.count(SyncRunLog.id),
                func.avg(SyncRunLog.duration_ms),
                func.max(SyncRunLog.started_at),
            )
            .filter(SyncRunLog.started_at >= now - timedelta(days=30))
            .group_by(SyncRunLog.sync_type, SyncRunLog.status)
            .order_by(SyncRunLog.sync_type, SyncRunLog.status)
            .all()
        )
        return [
            {
                "sync_type": sync_type,
                "status": status,
                "count": count,
                "avg_duration_ms": int(_round_half_up(float(avg), 0)) if avg is not None else None,
                "last_run": isoformat_or_none(coerce_datetime(last_run)),
            }
            for sync_type, status, count, avg, last_run in rows
        ]

    def _workers(self) -> List[Dict[str, Any]]:
        return [
            {
                "worker_name": w.worker_name,
                "interval_seconds": w.interval_seconds,
                "last_started_at": isoformat_or_none(w.last_started_at),
                "last_finished_at": isoformat_or_none(w.last_finished_at),
                "last_status": w.last_status,
                "last_error_message": w.last_error_message,
                "runs_ok_in_row": w.runs_ok_in_row,
                "runs_error_in_row": w.runs_error_in_row,
            }
            for w in self.db.query(BackgroundWorker).order_by(BackgroundWorker.worker_name).all()
        ]

