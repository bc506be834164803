"""Feature catalog: categories, display features and system features."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import db as database
from .assignment import plans_referencing_display_features, stored_system_values
from .constants import (
    CATEGORY_DELETE_REJECT,
    FEATURE_KEY_REGEX,
    FEATURE_TYPE_LIST,
    category_delete_policy,
    normalize_feature_key,
    normalize_feature_type,
)
from .errors import ConflictError, FieldError, NotFoundError, ValidationError
from .models import Category, DisplayFeature, SystemFeature
from .ordering import pack_orders, reorder_category, reorder_display_feature
from .schemas import (
    CategoryCreate,
    CategoryUpdate,
    DisplayFeatureCreate,
    DisplayFeatureUpdate,
    SystemFeatureCreate,
    SystemFeatureOut,
    SystemFeatureUpdate,
)
from .values import default_for_type, feature_value_error, token_list_error

logger = structlog.get_logger(__name__)


def _clean_name(section: str, value: str, errors: list[FieldError]) -> str:
    name = value.strip()
    if not name:
        errors.append(FieldError(section, "name", "name is required"))
    return name


def _raise_if_any(message: str, errors: list[FieldError]) -> None:
    if errors:
        raise ValidationError(message, errors)


def _reference_conflict(message: str, references: dict[int, list[str]]) -> ConflictError:
    return ConflictError(
        message,
        [
            FieldError("plans", plan_id, f"plan references feature {feature_id}")
            for feature_id, plan_ids in sorted(references.items())
            for plan_id in plan_ids
        ],
    )


# Categories


def get_category(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError(f"Category {category_id} not found.")
    return category


def list_categories(db: Session) -> list[Category]:
    return list(db.scalars(select(Category).order_by(Category.display_order, Category.id)).all())


def _check_category_name_free(db: Session, name: str, errors: list[FieldError], exclude_id: int | None = None) -> None:
    query = select(Category.id).where(Category.name == name)
    if exclude_id is not None:
        query = query.where(Category.id != exclude_id)
    if name and db.scalar(query) is not None:
        errors.append(FieldError("category", "name", f"category '{name}' already exists"))


def create_category(db: Session, payload: CategoryCreate) -> Category:
    errors: list[FieldError] = []
    name = _clean_name("category", payload.name, errors)
    _check_category_name_free(db, name, errors)
    _raise_if_any("Invalid category.", errors)

    category = Category(name=name, description=payload.description.strip(), display_order=0)
    siblings = list(db.scalars(select(Category)).all())
    pack_orders(siblings, moved=category, position=payload.display_order)
    db.add(category)
    database.commit(db)

    logger.info("category_created", category_id=category.id, display_order=category.display_order)
    return category


def update_category(db: Session, category_id: int, payload: CategoryUpdate) -> Category:
    category = get_category(db, category_id)
    fields = payload.model_fields_set

    errors: list[FieldError] = []
    name = category.name
    if "name" in fields and payload.name is not None:
        name = _clean_name("category", payload.name, errors)
        _check_category_name_free(db, name, errors, exclude_id=category.id)
    _raise_if_any("Invalid category.", errors)

    category.name = name
    if "description" in fields and payload.description is not None:
        category.description = payload.description.strip()

    if "display_order" in fields and payload.display_order is not None:
        return reorder_category(db, category.id, payload.display_order)

    database.commit(db)
    logger.info("category_updated", category_id=category.id)
    return category


def delete_category(db: Session, category_id: int) -> None:
    category = get_category(db, category_id)
    feature_ids = [feature.id for feature in category.features]

    references = plans_referencing_display_features(db, feature_ids)
    if references:
        raise _reference_conflict(
            f"Category {category_id} has features assigned to plans.",
            references,
        )
    if feature_ids and category_delete_policy() == CATEGORY_DELETE_REJECT:
        raise ConflictError(
            f"Category {category_id} still contains {len(feature_ids)} feature(s).",
            [FieldError("display_features", str(feature_id), "feature belongs to category") for feature_id in feature_ids],
        )

    db.delete(category)
    siblings = list(db.scalars(select(Category).where(Category.id != category_id)).all())
    pack_orders(siblings)
    database.commit(db)
    logger.info("category_deleted", category_id=category_id, cascaded_features=len(feature_ids))


# Display features


def get_display_feature(db: Session, feature_id: int) -> DisplayFeature:
    feature = db.get(DisplayFeature, feature_id)
    if not feature:
        raise NotFoundError(f"Display feature {feature_id} not found.")
    return feature


def list_display_features(db: Session, category_id: int | None = None) -> list[DisplayFeature]:
    query = select(DisplayFeature)
    if category_id is not None:
        query = query.where(DisplayFeature.category_id == category_id)
    return list(db.scalars(query.order_by(DisplayFeature.display_order, DisplayFeature.id)).all())


def _features_in_category(db: Session, category_id: int, exclude_id: int | None = None) -> list[DisplayFeature]:
    query = select(DisplayFeature).where(DisplayFeature.category_id == category_id)
    if exclude_id is not None:
        query = query.where(DisplayFeature.id != exclude_id)
    return list(db.scalars(query).all())


def create_display_feature(db: Session, payload: DisplayFeatureCreate) -> DisplayFeature:
    category = get_category(db, payload.category_id)

    errors: list[FieldError] = []
    name = _clean_name("display_feature", payload.name, errors)
    _raise_if_any("Invalid display feature.", errors)

    feature = DisplayFeature(
        category_id=category.id,
        name=name,
        description=payload.description.strip(),
        display_order=0,
    )
    pack_orders(_features_in_category(db, category.id), moved=feature, position=payload.display_order)
    db.add(feature)
    database.commit(db)

    logger.info("display_feature_created", feature_id=feature.id, category_id=category.id)
    return feature


def update_display_feature(db: Session, feature_id: int, payload: DisplayFeatureUpdate) -> DisplayFeature:
    feature = get_display_feature(db, feature_id)
    fields = payload.model_fields_set

    errors: list[FieldError] = []
    name = feature.name
    if "name" in fields and payload.name is not None:
        name = _clean_name("display_feature", payload.name, errors)
    _raise_if_any("Invalid display feature.", errors)

    feature.name = name
    if "description" in fields and payload.description is not None:
        feature.description = payload.description.strip()

    if "category_id" in fields and payload.category_id is not None and payload.category_id != feature.category_id:
        target = get_category(db, payload.category_id)
        previous_category_id = feature.category_id
        pack_orders(_features_in_category(db, previous_category_id, exclude_id=feature.id))
        pack_orders(
            _features_in_category(db, target.id, exclude_id=feature.id),
            moved=feature,
            position=payload.display_order,
        )
        feature.category_id = target.id
        database.commit(db)
        logger.info(
            "display_feature_moved",
            feature_id=feature.id,
            from_category_id=previous_category_id,
            to_category_id=target.id,
        )
        return feature

    if "display_order" in fields and payload.display_order is not None:
        return reorder_display_feature(db, feature.id, payload.display_order)

    database.commit(db)
    logger.info("display_feature_updated", feature_id=feature.id)
    return feature


def delete_display_feature(db: Session, feature_id: int) -> None:
    feature = get_display_feature(db, feature_id)

    references = plans_referencing_display_features(db, [feature.id])
    if references:
        raise _reference_conflict(f"Display feature {feature_id} is assigned to plans.", references)

    category_id = feature.category_id
    db.delete(feature)
    pack_orders(_features_in_category(db, category_id, exclude_id=feature_id))
    database.commit(db)
    logger.info("display_feature_deleted", feature_id=feature_id, category_id=category_id)


# System features


def serialize_system_feature(feature: SystemFeature) -> SystemFeatureOut:
    return SystemFeatureOut(
        id=feature.id,
        key=feature.key,
        name=feature.name,
        description=feature.description,
        type=feature.feature_type,
        default_value=feature.default_value,
        allowed_values=feature.allowed_values,
    )


def get_system_feature(db: Session, feature_id: int) -> SystemFeature:
    feature = db.get(SystemFeature, feature_id)
    if not feature:
        raise NotFoundError(f"System feature {feature_id} not found.")
    return feature


def list_system_features(db: Session) -> list[SystemFeature]:
    return list(db.scalars(select(SystemFeature).order_by(SystemFeature.key, SystemFeature.id)).all())


def _check_allowed_values(feature_type: str | None, allowed_values: list[str] | None, errors: list[FieldError]) -> None:
    if allowed_values is None:
        return
    if feature_type != FEATURE_TYPE_LIST:
        errors.append(FieldError("system_feature", "allowed_values", "only list features accept allowed_values"))
        return
    reason = token_list_error(allowed_values)
    if reason:
        errors.append(FieldError("system_feature", "allowed_values", reason))


def _check_default(feature_type: str, value: Any, allowed_values: list[str] | None, errors: list[FieldError]) -> None:
    reason = feature_value_error(feature_type, value, allowed_values)
    if reason:
        errors.append(FieldError("system_feature", "default_value", f"default_value {reason}"))


def create_system_feature(db: Session, payload: SystemFeatureCreate) -> SystemFeature:
    errors: list[FieldError] = []

    key = normalize_feature_key(payload.key)
    if not FEATURE_KEY_REGEX.match(key):
        errors.append(FieldError("system_feature", "key", "key must be lower-case letters, digits and underscores"))
    elif db.scalar(select(SystemFeature.id).where(SystemFeature.key == key)) is not None:
        errors.append(FieldError("system_feature", "key", f"key '{key}' already exists"))

    name = _clean_name("system_feature", payload.name, errors)

    feature_type = normalize_feature_type(payload.type)
    if feature_type is None:
        errors.append(FieldError("system_feature", "type", "type must be one of boolean, limit, list"))

    _check_allowed_values(feature_type, payload.allowed_values, errors)

    default_value = payload.default_value
    if feature_type is not None:
        if default_value is None:
            default_value = default_for_type(feature_type)
        _check_default(feature_type, default_value, payload.allowed_values, errors)

    _raise_if_any("Invalid system feature.", errors)

    feature = SystemFeature(
        key=key,
        name=name,
        description=payload.description.strip(),
        feature_type=feature_type,
        default_value=default_value,
        allowed_values=payload.allowed_values,
    )
    db.add(feature)
    database.commit(db)

    logger.info("system_feature_created", feature_id=feature.id, key=key, type=feature_type)
    return feature


def update_system_feature(db: Session, feature_id: int, payload: SystemFeatureUpdate) -> SystemFeature:
    feature = get_system_feature(db, feature_id)
    fields = payload.model_fields_set
    errors: list[FieldError] = []

    if "key" in fields and payload.key is not None and normalize_feature_key(payload.key) != feature.key:
        errors.append(FieldError("system_feature", "key", "key is immutable"))
    if "type" in fields and payload.type is not None and normalize_feature_type(payload.type) != feature.feature_type:
        errors.append(FieldError("system_feature", "type", "type is immutable"))

    name = feature.name
    if "name" in fields and payload.name is not None:
        name = _clean_name("system_feature", payload.name, errors)

    allowed_values = feature.allowed_values
    if "allowed_values" in fields:
        _check_allowed_values(feature.feature_type, payload.allowed_values, errors)
        allowed_values = payload.allowed_values

    default_value = payload.default_value if "default_value" in fields else feature.default_value
    if "default_value" in fields or "allowed_values" in fields:
        _check_default(feature.feature_type, default_value, allowed_values, errors)

    _raise_if_any("Invalid system feature update.", errors)

    if "allowed_values" in fields and allowed_values is not None:
        conflicts: list[FieldError] = []
        for plan_id, value in stored_system_values(db, feature.id).items():
            reason = token_list_error(value, allowed_values)
            if reason:
                conflicts.append(FieldError("plans", plan_id, f"stored value {reason}"))
        if conflicts:
            raise ConflictError(
                f"Narrowing allowed_values of '{feature.key}' would invalidate plan values.",
                conflicts,
            )

    feature.name = name
    if "description" in fields and payload.description is not None:
        feature.description = payload.description.strip()
    feature.allowed_values = allowed_values
    feature.default_value = default_value
    database.commit(db)

    logger.info("system_feature_updated", feature_id=feature.id, key=feature.key)
    return feature


def delete_system_feature(db: Session, feature_id: int) -> None:
    feature = get_system_feature(db, feature_id)

    plan_ids = sorted(stored_system_values(db, feature.id))
    if plan_ids:
        raise _reference_conflict(
            f"System feature '{feature.key}' is assigned to plans.",
            {feature.id: plan_ids},
        )

    db.delete(feature)
    database.commit(db)
    logger.info("system_feature_deleted", feature_id=feature_id, key=feature.key)
