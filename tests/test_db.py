from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from entitlements import db
from entitlements.errors import ConflictError, PersistenceError
from entitlements.models import Category, Plan


def test_integrity_error_becomes_conflict_and_rolls_back(session: Session) -> None:
    session.add(Category(name="Chat", description="", display_order=1))
    db.commit(session)

    session.add(Category(name="Chat", description="", display_order=2))
    with pytest.raises(ConflictError):
        db.commit(session)

    assert session.scalars(select(Category.display_order)).all() == [1]


def test_storage_failure_becomes_persistence_error(session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_flush(self: Session, objects=None) -> None:
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    session.add(Plan(id="team", name="Team"))
    monkeypatch.setattr(Session, "flush", failing_flush)
    with pytest.raises(PersistenceError):
        db.flush(session)
    monkeypatch.undo()

    assert session.get(Plan, "team") is None
