"""Contract for the external model catalog syncer and its freshness state.

The syncer itself lives outside this service. What lives here is the
explicit ``SyncState``: a non-forced run inside the TTL window is reported
as skipped instead of silently doing nothing.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

import structlog
from sqlalchemy.orm import Session

from . import db as database
from .constants import SYNC_SKIPPED_MESSAGE, sync_ttl_seconds
from .models import CatalogSyncState
from .schemas import SyncOptions, SyncResult, SyncStateOut

logger = structlog.get_logger(__name__)

SYNC_STATE_ROW_ID = 1


class CatalogSyncer(Protocol):
    def sync_catalog(self, options: SyncOptions) -> SyncResult: ...


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class SyncState:
    last_run_at: datetime | None
    ttl: timedelta

    def is_fresh(self, now: datetime | None = None) -> bool:
        if self.last_run_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now - _as_utc(self.last_run_at) < self.ttl

    def should_run(self, options: SyncOptions, now: datetime | None = None) -> bool:
        return options.force or not self.is_fresh(now)


def _state_row(db: Session) -> CatalogSyncState:
    row = db.get(CatalogSyncState, SYNC_STATE_ROW_ID)
    if row is None:
        row = CatalogSyncState(id=SYNC_STATE_ROW_ID, last_run_at=None, ttl_seconds=sync_ttl_seconds())
        db.add(row)
    else:
        row.ttl_seconds = sync_ttl_seconds()
    return row


def load_sync_state(db: Session) -> SyncState:
    row = db.get(CatalogSyncState, SYNC_STATE_ROW_ID)
    last_run_at = _as_utc(row.last_run_at) if row and row.last_run_at else None
    return SyncState(last_run_at=last_run_at, ttl=timedelta(seconds=sync_ttl_seconds()))


def describe_sync_state(db: Session, now: datetime | None = None) -> SyncStateOut:
    state = load_sync_state(db)
    row = db.get(CatalogSyncState, SYNC_STATE_ROW_ID)
    last_result = SyncResult.model_validate(row.last_result) if row and row.last_result else None
    return SyncStateOut(
        last_run_at=state.last_run_at,
        ttl_seconds=int(state.ttl.total_seconds()),
        is_fresh=state.is_fresh(now),
        last_result=last_result,
    )


def run_catalog_sync(
    db: Session,
    syncer: CatalogSyncer,
    options: SyncOptions,
    now: datetime | None = None,
) -> SyncResult:
    state = load_sync_state(db)
    if not state.should_run(options, now):
        logger.info("catalog_sync_skipped", last_run_at=state.last_run_at.isoformat())
        return SyncResult(errors=[SYNC_SKIPPED_MESSAGE], skipped=True)

    started = time.monotonic()
    result = syncer.sync_catalog(options)
    if not result.duration_ms:
        result = result.model_copy(update={"duration_ms": int((time.monotonic() - started) * 1000)})

    row = _state_row(db)
    row.last_run_at = now or datetime.now(timezone.utc)
    row.last_result = result.model_dump()
    database.commit(db)

    logger.info(
        "catalog_sync_completed",
        models_added=result.models_added,
        models_updated=result.models_updated,
        models_deactivated=result.models_deactivated,
        models_total=result.models_total,
        error_count=len(result.errors),
    )
    return result
