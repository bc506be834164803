"""Read-only views over the plan and character subsystems.

The entitlement core only references plan and character ids; it never
creates or edits them.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Character, Plan


class PlanRegistry(Protocol):
    def exists(self, plan_id: str) -> bool: ...


class CharacterRegistry(Protocol):
    def known(self, character_ids: Iterable[str]) -> dict[str, bool]:
        """Map each known id to its active flag; unknown ids are absent."""
        ...


class SqlPlanRegistry:
    def __init__(self, db: Session):
        self.db = db

    def exists(self, plan_id: str) -> bool:
        return self.db.get(Plan, plan_id) is not None


class SqlCharacterRegistry:
    def __init__(self, db: Session):
        self.db = db

    def known(self, character_ids: Iterable[str]) -> dict[str, bool]:
        ids = list(character_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(Character.id, Character.is_active).where(Character.id.in_(ids))
        ).all()
        return {row.id: row.is_active for row in rows}
