"""Court directory sync: pull the CourtListener court list into ``courts``."""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict
from uuid import uuid4

from judgesync.models.sync import CourtSyncOptions
from judgesync.models_sqlalchemy.directory import Court
from judgesync.services.sync_normalization import NormalizedCourt, court_to_court, normalize_jurisdiction
from judgesync.services.sync_workers.context import SyncContext
from judgesync.utils.logger import logger
from judgesync.utils.time_utils import as_utc

COURT_REFRESH_DAYS = 7


def _needs_update(existing: Court, court: NormalizedCourt, ctx: SyncContext) -> bool:
    if existing.name != court.name or existing.full_name != court.full_name:
        return True
    last = as_utc(existing.last_synced_at)
    return last is None or last < ctx.now - timedelta(days=COURT_REFRESH_DAYS)


def _apply(row: Court, court: NormalizedCourt, ctx: SyncContext) -> None:
    row.name = court.name
    row.full_name = court.full_name
    row.jurisdiction = court.jurisdiction
    row.court_type = court.court_type
    row.website = court.website
    row.in_use = court.in_use
    row.last_synced_at = ctx.now
    row.updated_at = ctx.now


async def sync_courts(ctx: SyncContext, options: CourtSyncOptions) -> Dict[str, Any]:
    client = ctx.require_client()
    db = ctx.db
    target = normalize_jurisdiction(options.jurisdiction)

    raw_courts = await client.list_courts(max_records=options.max_courts)
    courts = [c for c in (court_to_court(item) for item in raw_courts) if c is not None]
    if target:
        courts = [c for c in courts if c.jurisdiction == target]

    created = updated = unchanged = 0
    for start in range(0, len(courts), options.batch_size):
        batch = courts[start:start + options.batch_size]
        for court in batch:
            existing = db.query(Court).filter(Court.courtlistener_id == court.courtlistener_id).one_or_none()
            if existing is None:
                row = Court(id=str(uuid4()), courtlistener_id=court.courtlistener_id, created_at=ctx.now)
                _apply(row, court, ctx)
                db.add(row)
                created += 1
            elif options.force_refresh or _needs_update(existing, court, ctx):
                _apply(existing, court, ctx)
                updated += 1
            else:
                unchanged += 1
        db.flush()

    logger.info(
        "Court sync job=%s fetched=%s matched=%s created=%s updated=%s unchanged=%s",
        ctx.job_id,
        len(raw_courts),
        len(courts),
        created,
        updated,
        unchanged,
    )
    return {
        "courts_fetched": len(raw_courts),
        "courts_processed": len(courts),
        "courts_created": created,
        "courts_updated": updated,
        "courts_unchanged": unchanged,
    }
