"""Plan feature assignment: validate a complete bundle, then replace it atomically."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import db as database
from .constants import CHARACTER_LIMIT_FIELDS, DEFAULT_RATE_LIMIT_PER_MINUTE
from .errors import FieldError, NotFoundError, ValidationError
from .models import (
    DisplayFeature,
    PlanCharacterLimit,
    PlanDisplayFeature,
    PlanFeatureAssignment,
    PlanSystemFeatureValue,
    SystemFeature,
    utc_now,
)
from .registries import CharacterRegistry, PlanRegistry
from .schemas import (
    CharacterLimitOut,
    CharacterRankingOut,
    DisplayFeatureOverrideOut,
    PlanFeatureBundle,
    PlanFeaturesOut,
)
from .values import (
    clean_custom_value,
    custom_value_error,
    feature_value_error,
    flag_error,
    limit_error,
    limit_from_column,
    limit_to_column,
    priority_error,
    rate_limit_error,
)

logger = structlog.get_logger(__name__)

DISPLAY_SECTION = "display_feature_ids"
OVERRIDE_SECTION = "display_feature_overrides"
SYSTEM_SECTION = "system_feature_values"
CHARACTER_SECTION = "character_limits"


@dataclass(frozen=True)
class SystemFeatureSpec:
    key: str
    feature_type: str
    allowed_values: list[str] | None


@dataclass(frozen=True)
class CatalogSnapshot:
    """The slice of the feature catalog a bundle refers to."""

    display_feature_ids: frozenset[int]
    system_features: dict[int, SystemFeatureSpec]

    @classmethod
    def load(cls, db: Session, display_ids: Iterable[int], system_ids: Iterable[int]) -> "CatalogSnapshot":
        display_ids = list(display_ids)
        system_ids = list(system_ids)
        found_display: set[int] = set()
        if display_ids:
            found_display = set(
                db.scalars(select(DisplayFeature.id).where(DisplayFeature.id.in_(display_ids))).all()
            )
        found_system: dict[int, SystemFeatureSpec] = {}
        if system_ids:
            for feature in db.scalars(select(SystemFeature).where(SystemFeature.id.in_(system_ids))):
                found_system[feature.id] = SystemFeatureSpec(
                    key=feature.key,
                    feature_type=feature.feature_type,
                    allowed_values=feature.allowed_values,
                )
        return cls(display_feature_ids=frozenset(found_display), system_features=found_system)


@dataclass(frozen=True)
class DisplaySelection:
    is_included: bool = True
    custom_value: str | None = None


@dataclass(frozen=True)
class CharacterLimit:
    message_limit: int | None
    token_limit: int | None
    priority: int
    is_accessible: bool = True
    rate_limit_per_minute: int = DEFAULT_RATE_LIMIT_PER_MINUTE


@dataclass(frozen=True)
class ValidatedBundle:
    display_feature_ids: tuple[int, ...]
    display_selections: dict[int, DisplaySelection]
    system_feature_values: dict[int, Any]
    character_limits: dict[str, CharacterLimit]


class PlanBundleBuilder:
    """Collects a complete bundle and validates it as a whole.

    Nothing is checked until :meth:`build`, which reports every problem at
    once in a deterministic order: display features, their overrides,
    system features, then characters, each by ascending id.
    """

    def __init__(self, catalog: CatalogSnapshot, characters: CharacterRegistry):
        self.catalog = catalog
        self.characters = characters
        self._display_ids: set[int] = set()
        self._display_overrides: dict[int, dict[str, Any]] = {}
        self._system_values: dict[int, Any] = {}
        self._character_limits: dict[str, dict[str, Any]] = {}

    @classmethod
    def from_bundle(
        cls,
        db: Session,
        bundle: PlanFeatureBundle,
        characters: CharacterRegistry,
    ) -> "PlanBundleBuilder":
        catalog = CatalogSnapshot.load(
            db,
            bundle.display_feature_ids,
            bundle.system_feature_values.keys(),
        )
        builder = cls(catalog, characters)
        builder.include_display_features(bundle.display_feature_ids)
        for feature_id, override in bundle.display_feature_overrides.items():
            builder.set_display_override(
                feature_id,
                is_included=override.is_included,
                custom_value=override.custom_value,
            )
        for feature_id, value in bundle.system_feature_values.items():
            builder.set_system_value(feature_id, value)
        for character_id, limit in bundle.character_limits.items():
            builder.set_character_limit(
                character_id,
                message_limit=limit.message_limit,
                token_limit=limit.token_limit,
                priority=limit.priority,
                is_accessible=limit.is_accessible,
                rate_limit_per_minute=limit.rate_limit_per_minute,
            )
        return builder

    def include_display_features(self, feature_ids: Iterable[int]) -> "PlanBundleBuilder":
        self._display_ids.update(feature_ids)
        return self

    def set_display_override(
        self,
        feature_id: int,
        is_included: Any = True,
        custom_value: Any = None,
    ) -> "PlanBundleBuilder":
        self._display_overrides[feature_id] = {"is_included": is_included, "custom_value": custom_value}
        return self

    def set_system_value(self, feature_id: int, value: Any) -> "PlanBundleBuilder":
        self._system_values[feature_id] = value
        return self

    def set_character_limit(
        self,
        character_id: str,
        message_limit: Any,
        token_limit: Any,
        priority: Any,
        is_accessible: Any = True,
        rate_limit_per_minute: Any = DEFAULT_RATE_LIMIT_PER_MINUTE,
    ) -> "PlanBundleBuilder":
        self._character_limits[character_id] = {
            "message_limit": message_limit,
            "token_limit": token_limit,
            "priority": priority,
            "is_accessible": is_accessible,
            "rate_limit_per_minute": rate_limit_per_minute,
        }
        return self

    def _display_errors(self) -> list[FieldError]:
        errors: list[FieldError] = []
        for feature_id in sorted(self._display_ids):
            if feature_id not in self.catalog.display_feature_ids:
                errors.append(FieldError(DISPLAY_SECTION, str(feature_id), "unknown display feature"))

        for feature_id in sorted(self._display_overrides):
            if feature_id not in self._display_ids:
                errors.append(
                    FieldError(OVERRIDE_SECTION, str(feature_id), "display feature is not selected for the plan")
                )
                continue
            override = self._display_overrides[feature_id]
            reason = flag_error(override["is_included"])
            if reason:
                errors.append(FieldError(OVERRIDE_SECTION, f"{feature_id}.is_included", reason))
            reason = custom_value_error(override["custom_value"])
            if reason:
                errors.append(FieldError(OVERRIDE_SECTION, f"{feature_id}.custom_value", reason))
        return errors

    def _system_errors(self) -> list[FieldError]:
        errors: list[FieldError] = []
        for feature_id in sorted(self._system_values):
            spec = self.catalog.system_features.get(feature_id)
            if spec is None:
                errors.append(FieldError(SYSTEM_SECTION, str(feature_id), "unknown system feature"))
                continue
            reason = feature_value_error(spec.feature_type, self._system_values[feature_id], spec.allowed_values)
            if reason:
                errors.append(FieldError(SYSTEM_SECTION, str(feature_id), f"{spec.key} {reason}"))
        return errors

    def _character_errors(self) -> list[FieldError]:
        errors: list[FieldError] = []
        known = self.characters.known(self._character_limits)
        for character_id in sorted(self._character_limits):
            if character_id not in known:
                errors.append(FieldError(CHARACTER_SECTION, character_id, "unknown character"))
            elif not known[character_id]:
                errors.append(FieldError(CHARACTER_SECTION, character_id, "character is inactive"))

            limit = self._character_limits[character_id]
            checks = [(attribute, limit_error) for attribute in CHARACTER_LIMIT_FIELDS]
            checks += [
                ("priority", priority_error),
                ("is_accessible", flag_error),
                ("rate_limit_per_minute", rate_limit_error),
            ]
            for attribute, check in checks:
                reason = check(limit[attribute])
                if reason:
                    errors.append(FieldError(CHARACTER_SECTION, f"{character_id}.{attribute}", reason))
        return errors

    def errors(self) -> list[FieldError]:
        return self._display_errors() + self._system_errors() + self._character_errors()

    def build(self) -> ValidatedBundle:
        errors = self.errors()
        if errors:
            raise ValidationError(f"Bundle rejected with {len(errors)} error(s).", errors)

        selections: dict[int, DisplaySelection] = {}
        for feature_id in sorted(self._display_ids):
            override = self._display_overrides.get(feature_id)
            if override is None:
                selections[feature_id] = DisplaySelection()
            else:
                selections[feature_id] = DisplaySelection(
                    is_included=override["is_included"],
                    custom_value=clean_custom_value(override["custom_value"]),
                )

        return ValidatedBundle(
            display_feature_ids=tuple(selections),
            display_selections=selections,
            system_feature_values=dict(sorted(self._system_values.items())),
            character_limits={
                character_id: CharacterLimit(
                    message_limit=limit_to_column(limit["message_limit"]),
                    token_limit=limit_to_column(limit["token_limit"]),
                    priority=limit["priority"],
                    is_accessible=limit["is_accessible"],
                    rate_limit_per_minute=limit["rate_limit_per_minute"],
                )
                for character_id, limit in sorted(self._character_limits.items())
            },
        )


def _require_plan(plans: PlanRegistry, plan_id: str) -> None:
    if not plans.exists(plan_id):
        raise NotFoundError(f"Plan {plan_id!r} not found.")


def _lock_assignment(db: Session, plan_id: str) -> PlanFeatureAssignment:
    # FOR UPDATE serializes concurrent saves of one plan; SQLite serializes writers anyway
    assignment = db.scalar(
        select(PlanFeatureAssignment)
        .where(PlanFeatureAssignment.plan_id == plan_id)
        .with_for_update()
    )
    if assignment:
        return assignment
    assignment = PlanFeatureAssignment(plan_id=plan_id, revision=0)
    db.add(assignment)
    return assignment


def serialize_assignment(plan_id: str, assignment: PlanFeatureAssignment | None) -> PlanFeaturesOut:
    if assignment is None:
        return PlanFeaturesOut(
            plan_id=plan_id,
            revision=0,
            updated_at=None,
            display_feature_ids=[],
            display_feature_overrides={},
            system_feature_values={},
            character_limits={},
        )
    links = sorted(assignment.display_features, key=lambda link: link.display_feature_id)
    return PlanFeaturesOut(
        plan_id=plan_id,
        revision=assignment.revision,
        updated_at=assignment.updated_at,
        display_feature_ids=[link.display_feature_id for link in links],
        display_feature_overrides={
            link.display_feature_id: DisplayFeatureOverrideOut(
                is_included=link.is_included,
                custom_value=link.custom_value,
            )
            for link in links
        },
        system_feature_values={
            row.system_feature_id: row.value
            for row in sorted(assignment.system_values, key=lambda row: row.system_feature_id)
        },
        character_limits={
            row.character_id: CharacterLimitOut(
                message_limit=limit_from_column(row.message_limit),
                token_limit=limit_from_column(row.token_limit),
                priority=row.priority,
                is_accessible=row.is_accessible,
                rate_limit_per_minute=row.rate_limit_per_minute,
            )
            for row in sorted(assignment.character_limits, key=lambda row: row.character_id)
        },
    )


def assign_plan_features(
    db: Session,
    plan_id: str,
    bundle: PlanFeatureBundle,
    plans: PlanRegistry,
    characters: CharacterRegistry,
) -> PlanFeaturesOut:
    _require_plan(plans, plan_id)

    try:
        validated = PlanBundleBuilder.from_bundle(db, bundle, characters).build()
    except ValidationError as exc:
        logger.info("plan_features_rejected", plan_id=plan_id, error_count=len(exc.errors))
        raise

    assignment = _lock_assignment(db, plan_id)

    # Old children must be deleted before new ones hit the unique constraints.
    assignment.display_features.clear()
    assignment.system_values.clear()
    assignment.character_limits.clear()
    database.flush(db)

    assignment.display_features.extend(
        PlanDisplayFeature(
            display_feature_id=feature_id,
            is_included=selection.is_included,
            custom_value=selection.custom_value,
        )
        for feature_id, selection in validated.display_selections.items()
    )
    assignment.system_values.extend(
        PlanSystemFeatureValue(system_feature_id=feature_id, value=value)
        for feature_id, value in validated.system_feature_values.items()
    )
    assignment.character_limits.extend(
        PlanCharacterLimit(
            character_id=character_id,
            message_limit=limit.message_limit,
            token_limit=limit.token_limit,
            priority=limit.priority,
            is_accessible=limit.is_accessible,
            rate_limit_per_minute=limit.rate_limit_per_minute,
        )
        for character_id, limit in validated.character_limits.items()
    )
    assignment.revision += 1
    assignment.updated_at = utc_now()
    database.commit(db)

    logger.info(
        "plan_features_assigned",
        plan_id=plan_id,
        revision=assignment.revision,
        display_features=len(validated.display_feature_ids),
        system_values=len(validated.system_feature_values),
        characters=len(validated.character_limits),
    )
    return serialize_assignment(plan_id, assignment)


def get_plan_features(db: Session, plan_id: str, plans: PlanRegistry) -> PlanFeaturesOut:
    _require_plan(plans, plan_id)
    return serialize_assignment(plan_id, db.get(PlanFeatureAssignment, plan_id))


def preview_character_ranking(db: Session, plan_id: str, plans: PlanRegistry) -> list[CharacterRankingOut]:
    """Accessible characters of a plan in queue order.

    A higher priority is served first; ties go to the lower character id.
    """
    _require_plan(plans, plan_id)
    rows = db.scalars(
        select(PlanCharacterLimit)
        .where(PlanCharacterLimit.plan_id == plan_id, PlanCharacterLimit.is_accessible.is_(True))
        .order_by(PlanCharacterLimit.priority.desc(), PlanCharacterLimit.character_id)
    ).all()
    return [
        CharacterRankingOut(
            rank=rank,
            character_id=row.character_id,
            priority=row.priority,
            message_limit=limit_from_column(row.message_limit),
            token_limit=limit_from_column(row.token_limit),
            rate_limit_per_minute=row.rate_limit_per_minute,
        )
        for rank, row in enumerate(rows, start=1)
    ]


def plans_referencing_display_features(db: Session, feature_ids: Iterable[int]) -> dict[int, list[str]]:
    feature_ids = list(feature_ids)
    if not feature_ids:
        return {}
    references: dict[int, list[str]] = {}
    rows = db.execute(
        select(PlanDisplayFeature.display_feature_id, PlanDisplayFeature.plan_id)
        .where(PlanDisplayFeature.display_feature_id.in_(feature_ids))
        .order_by(PlanDisplayFeature.display_feature_id, PlanDisplayFeature.plan_id)
    ).all()
    for feature_id, plan_id in rows:
        references.setdefault(feature_id, []).append(plan_id)
    return references


def stored_system_values(db: Session, feature_id: int) -> dict[str, Any]:
    """Plan id to stored value for one system feature."""
    rows = db.execute(
        select(PlanSystemFeatureValue.plan_id, PlanSystemFeatureValue.value)
        .where(PlanSystemFeatureValue.system_feature_id == feature_id)
        .order_by(PlanSystemFeatureValue.plan_id)
    ).all()
    return {plan_id: value for plan_id, value in rows}
