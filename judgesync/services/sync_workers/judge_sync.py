"""Judge profile refresh from CourtListener ``/people/`` records."""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List

from sqlalchemy import or_
from sqlalchemy.orm import Session

from judgesync.config import settings
from judgesync.models.sync import JudgeSyncOptions
from judgesync.models_sqlalchemy.directory import Judge
from judgesync.services.sync_normalization import normalize_jurisdiction, person_to_judge
from judgesync.services.sync_workers.context import SyncContext
from judgesync.utils.logger import logger


def select_judges_for_refresh(db: Session, options: JudgeSyncOptions, ctx: SyncContext) -> List[Judge]:
    """Judges with a CourtListener id whose profile is stale, least recent first."""
    query = db.query(Judge).filter(Judge.courtlistener_id.isnot(None))
    jurisdiction = normalize_jurisdiction(options.jurisdiction)
    if jurisdiction:
        query = query.filter(Judge.jurisdiction == jurisdiction)
    if options.judge_ids:
        query = query.filter(Judge.id.in_(options.judge_ids))
    if not options.force_refresh:
        cutoff = ctx.now - timedelta(days=options.stale_after_days)
        query = query.filter(or_(Judge.last_synced_at.is_(None), Judge.last_synced_at < cutoff))
    return (
        query.order_by(Judge.last_synced_at.is_(None).desc(), Judge.last_synced_at.asc(), Judge.name.asc())
        .limit(options.batch_size)
        .all()
    )


async def sync_judges(ctx: SyncContext, options: JudgeSyncOptions) -> Dict[str, Any]:
    client = ctx.require_client()
    db = ctx.db
    judges = select_judges_for_refresh(db, options, ctx)

    updated = enhanced = not_found = 0
    for judge in judges:
        person = await client.get_person(judge.courtlistener_id)
        if person is None:
            logger.warning("Judge %s (courtlistener_id=%s) not found upstream", judge.id, judge.courtlistener_id)
            not_found += 1
            continue

        profile = person_to_judge(
            person,
            default_jurisdiction=judge.jurisdiction or settings.SYNC_DEFAULT_JURISDICTION,
        )
        if profile is None:
            not_found += 1
            continue

        judge.name = profile.name
        if profile.court_name:
            judge.court_name = profile.court_name
        judge.jurisdiction = profile.jurisdiction
        if judge.appointed_date is None and profile.appointed_date is not None:
            judge.appointed_date = profile.appointed_date
        if profile.education or profile.bio:
            judge.education = profile.education or judge.education
            judge.bio = profile.bio or judge.bio
            enhanced += 1
        judge.courtlistener_data = profile.raw
        judge.last_synced_at = ctx.now
        judge.updated_at = ctx.now
        updated += 1
        db.flush()

    logger.info(
        "Judge sync job=%s selected=%s updated=%s enhanced=%s not_found=%s",
        ctx.job_id,
        len(judges),
        updated,
        enhanced,
        not_found,
    )
    return {
        "judges_selected": len(judges),
        "judges_updated": updated,
        "profiles_enhanced": enhanced,
        "judges_not_found": not_found,
    }
