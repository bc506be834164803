from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from entitlements.constants import SYNC_SKIPPED_MESSAGE
from entitlements.schemas import SyncOptions, SyncResult
from entitlements.sync import SyncState, describe_sync_state, run_catalog_sync

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeSyncer:
    def __init__(self) -> None:
        self.calls: list[SyncOptions] = []

    def sync_catalog(self, options: SyncOptions) -> SyncResult:
        self.calls.append(options)
        return SyncResult(models_added=2, models_updated=1, models_total=10, duration_ms=120)


def test_sync_state_freshness() -> None:
    state = SyncState(last_run_at=T0, ttl=timedelta(hours=24))
    assert state.is_fresh(T0 + timedelta(hours=23))
    assert not state.is_fresh(T0 + timedelta(hours=24))
    assert not state.should_run(SyncOptions(), T0 + timedelta(hours=1))
    assert state.should_run(SyncOptions(force=True), T0 + timedelta(hours=1))

    never = SyncState(last_run_at=None, ttl=timedelta(hours=24))
    assert not never.is_fresh(T0)
    assert never.should_run(SyncOptions(), T0)


def test_recent_sync_is_reported_as_skipped(session: Session) -> None:
    syncer = FakeSyncer()

    first = run_catalog_sync(session, syncer, SyncOptions(), now=T0)
    assert first.models_added == 2
    assert first.duration_ms == 120
    assert not first.skipped

    second = run_catalog_sync(session, syncer, SyncOptions(), now=T0 + timedelta(hours=2))
    assert second.skipped
    assert second.errors == [SYNC_SKIPPED_MESSAGE]
    assert len(syncer.calls) == 1

    forced = run_catalog_sync(
        session,
        syncer,
        SyncOptions(force=True, deactivate_missing=True),
        now=T0 + timedelta(hours=3),
    )
    assert not forced.skipped
    assert syncer.calls[-1].deactivate_missing is True

    later = run_catalog_sync(session, syncer, SyncOptions(), now=T0 + timedelta(days=2))
    assert not later.skipped
    assert len(syncer.calls) == 3


def test_sync_state_is_queryable(session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    state = describe_sync_state(session, now=T0)
    assert state.last_run_at is None
    assert state.is_fresh is False
    assert state.ttl_seconds == 86400
    assert state.last_result is None

    monkeypatch.setenv("SYNC_TTL_SECONDS", "60")
    run_catalog_sync(session, FakeSyncer(), SyncOptions(), now=T0)

    state = describe_sync_state(session, now=T0 + timedelta(seconds=30))
    assert state.ttl_seconds == 60
    assert state.is_fresh is True
    assert state.last_result.models_total == 10
    assert describe_sync_state(session, now=T0 + timedelta(seconds=61)).is_fresh is False
