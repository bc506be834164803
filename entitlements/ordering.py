"""Display-order packing for categories and the features inside them.

Orders are kept strictly packed as 1..N so drag-reorder in the console is
deterministic.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import db as database
from .errors import NotFoundError, ValidationError
from .models import Category, DisplayFeature

logger = structlog.get_logger(__name__)


class Orderable(Protocol):
    id: int
    display_order: int


T = TypeVar("T", bound=Orderable)


def sort_key(item: Orderable) -> tuple[int, int]:
    return (item.display_order, item.id)


def pack_orders(siblings: Sequence[T], moved: T | None = None, position: int | None = None) -> list[T]:
    """Renumber ``siblings`` to 1..N, optionally placing ``moved`` at ``position``.

    ``siblings`` must not contain ``moved``. Unmoved items keep their
    relative order. ``position`` is clamped to the valid range.
    """
    packed = sorted(siblings, key=sort_key)
    if moved is not None:
        index = len(packed) if position is None else min(max(position, 1), len(packed) + 1) - 1
        packed.insert(index, moved)
    for index, item in enumerate(packed, start=1):
        item.display_order = index
    return packed


def _check_position(new_order: int, size: int) -> None:
    if not 1 <= new_order <= size:
        raise ValidationError.single(
            "display_order",
            "display_order",
            f"display_order must be between 1 and {size}.",
        )


def reorder_category(db: Session, category_id: int, new_order: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError(f"Category {category_id} not found.")

    siblings = list(db.scalars(select(Category).where(Category.id != category_id)).all())
    _check_position(new_order, len(siblings) + 1)

    pack_orders(siblings, moved=category, position=new_order)
    database.commit(db)
    logger.info("category_reordered", category_id=category_id, display_order=new_order)
    return category


def reorder_display_feature(db: Session, feature_id: int, new_order: int) -> DisplayFeature:
    feature = db.get(DisplayFeature, feature_id)
    if not feature:
        raise NotFoundError(f"Display feature {feature_id} not found.")

    siblings = list(
        db.scalars(
            select(DisplayFeature).where(
                DisplayFeature.category_id == feature.category_id,
                DisplayFeature.id != feature_id,
            )
        ).all()
    )
    _check_position(new_order, len(siblings) + 1)

    pack_orders(siblings, moved=feature, position=new_order)
    database.commit(db)
    logger.info(
        "display_feature_reordered",
        feature_id=feature_id,
        category_id=feature.category_id,
        display_order=new_order,
    )
    return feature
