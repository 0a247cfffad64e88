"""Decision sync: recent opinions (and optionally dockets) per judge.

For each selected judge the routine pages through CourtListener opinions
authored by that judge since a lookback date, resolves each opinion's
cluster for the case caption, and records one ``cases`` row per cluster.
Rows already present (same CourtListener key or docket hash) are left as is.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from judgesync.models.sync import DecisionSyncOptions
from judgesync.models_sqlalchemy.directory import Case, Judge
from judgesync.services.courtlistener_client import CourtListenerClient
from judgesync.services.sync_normalization import (
    NormalizedCase,
    docket_to_case,
    normalize_jurisdiction,
    opinion_to_case,
    resource_id_from_url,
)
from judgesync.services.sync_workers.context import SyncContext
from judgesync.utils.logger import logger

DEFAULT_LOOKBACK_DAYS = 90
DOCKET_HISTORY_CAP = 300


def select_judges_for_decisions(db: Session, options: DecisionSyncOptions) -> List[Judge]:
    query = db.query(Judge).filter(Judge.courtlistener_id.isnot(None))
    jurisdiction = normalize_jurisdiction(options.jurisdiction)
    if jurisdiction:
        query = query.filter(Judge.jurisdiction == jurisdiction)
    if options.judge_ids:
        query = query.filter(Judge.id.in_(options.judge_ids))
    return (
        query.order_by(
            Judge.decisions_synced_at.is_(None).desc(),
            Judge.decisions_synced_at.asc(),
            Judge.name.asc(),
        )
        .limit(options.batch_size)
        .all()
    )


def lookback_start(db: Session, judge: Judge, options: DecisionSyncOptions, today: date) -> date:
    """First filing date to request for ``judge``.

    An explicit ``days_since_last`` wins; otherwise continue the day after the
    newest decision already stored, then ``years_back``, then a fixed window.
    """
    if options.days_since_last is not None:
        return today - timedelta(days=options.days_since_last)

    latest = db.query(func.max(Case.decision_date)).filter(Case.judge_id == judge.id).scalar()
    if latest is not None:
        return latest + timedelta(days=1)

    if options.years_back:
        return today - timedelta(days=365 * options.years_back)
    return today - timedelta(days=DEFAULT_LOOKBACK_DAYS)


async def resolve_opinion_cluster(
    client: CourtListenerClient,
    opinion: Dict[str, Any],
    cache: Dict[str, Optional[Dict[str, Any]]],
) -> Optional[Dict[str, Any]]:
    """Use the cluster embedded in the opinion, else fetch it by id."""
    embedded = opinion.get("cluster")
    if isinstance(embedded, dict) and embedded.get("case_name"):
        return embedded

    cluster_id = resource_id_from_url(opinion.get("cluster_id"))
    if cluster_id is None:
        cluster_id = resource_id_from_url(embedded.get("id") if isinstance(embedded, dict) else embedded)
    if cluster_id is None:
        return None

    if cluster_id not in cache:
        cache[cluster_id] = await client.get_cluster(cluster_id)
    return cache[cluster_id]


def _case_exists(db: Session, case: NormalizedCase, seen_ids: Set[str], seen_hashes: Set[str]) -> bool:
    # Rows added in this batch are not flushed yet, so check them in memory first.
    if case.courtlistener_id in seen_ids or (case.docket_hash and case.docket_hash in seen_hashes):
        return True
    query = db.query(Case.id).filter(Case.courtlistener_id == case.courtlistener_id)
    if query.first() is not None:
        return True
    if case.docket_hash:
        return db.query(Case.id).filter(Case.docket_hash == case.docket_hash).first() is not None
    return False


def _add_case(db: Session, judge: Judge, case: NormalizedCase, ctx: SyncContext) -> None:
    db.add(
        Case(
            id=str(uuid4()),
            judge_id=judge.id,
            case_name=case.case_name,
            case_number=case.case_number,
            case_type=case.case_type,
            status=case.status,
            outcome=case.outcome,
            jurisdiction=case.jurisdiction or judge.jurisdiction,
            filing_date=case.filing_date,
            decision_date=case.decision_date,
            summary=case.summary,
            source_url=case.source_url,
            courtlistener_id=case.courtlistener_id,
            docket_hash=case.docket_hash,
            created_at=ctx.now,
            updated_at=ctx.now,
        )
    )


async def sync_judge_decisions(
    ctx: SyncContext,
    judge: Judge,
    options: DecisionSyncOptions,
    cluster_cache: Dict[str, Optional[Dict[str, Any]]],
) -> Dict[str, int]:
    client = ctx.require_client()
    db = ctx.db
    today = ctx.now.date()
    start = lookback_start(db, judge, options, today)

    stats = {"opinions_fetched": 0, "dockets_fetched": 0, "cases_created": 0, "cases_skipped": 0}
    seen_ids: Set[str] = set()
    seen_hashes: Set[str] = set()

    opinions = await client.list_opinions_by_judge(
        judge.courtlistener_id,
        start_date=start.isoformat(),
        end_date=today.isoformat(),
        max_records=options.max_decisions_per_judge,
    )
    stats["opinions_fetched"] = len(opinions)
    for opinion in opinions:
        cluster = await resolve_opinion_cluster(client, opinion, cluster_cache)
        case = opinion_to_case(opinion, cluster, jurisdiction=judge.jurisdiction)
        if case is None or _case_exists(db, case, seen_ids, seen_hashes):
            stats["cases_skipped"] += 1
            continue
        _add_case(db, judge, case, ctx)
        seen_ids.add(case.courtlistener_id)
        if case.docket_hash:
            seen_hashes.add(case.docket_hash)
        stats["cases_created"] += 1

    if options.include_dockets:
        dockets = await client.list_dockets_by_judge(
            judge.courtlistener_id,
            start_date=start.isoformat(),
            end_date=today.isoformat(),
            max_records=min(options.max_decisions_per_judge, DOCKET_HISTORY_CAP),
        )
        stats["dockets_fetched"] = len(dockets)
        for docket in dockets:
            case = docket_to_case(docket, judge_id=judge.id, jurisdiction=judge.jurisdiction)
            if case is None or _case_exists(db, case, seen_ids, seen_hashes):
                stats["cases_skipped"] += 1
                continue
            _add_case(db, judge, case, ctx)
            seen_ids.add(case.courtlistener_id)
            if case.docket_hash:
                seen_hashes.add(case.docket_hash)
            stats["cases_created"] += 1

    db.flush()
    judge.total_cases = db.query(func.count(Case.id)).filter(Case.judge_id == judge.id).scalar() or 0
    judge.decisions_synced_at = ctx.now
    db.flush()
    return stats


async def sync_decisions(ctx: SyncContext, options: DecisionSyncOptions) -> Dict[str, Any]:
    judges = select_judges_for_decisions(ctx.db, options)
    totals = {"judges_processed": 0, "opinions_fetched": 0, "dockets_fetched": 0, "cases_created": 0, "cases_skipped": 0}
    cluster_cache: Dict[str, Optional[Dict[str, Any]]] = {}

    for judge in judges:
        stats = await sync_judge_decisions(ctx, judge, options, cluster_cache)
        totals["judges_processed"] += 1
        for key, value in stats.items():
            totals[key] += value
        logger.info(
            "Decision sync job=%s judge=%s opinions=%s created=%s",
            ctx.job_id,
            judge.id,
            stats["opinions_fetched"],
            stats["cases_created"],
        )

    logger.info("Decision sync job=%s finished: %s", ctx.job_id, totals)
    return totals
