"""SQLAlchemy models for the feature entitlement domain."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .constants import CUSTOM_VALUE_MAX_LENGTH, DEFAULT_RATE_LIMIT_PER_MINUTE
from .db import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    features: Mapped[list["DisplayFeature"]] = relationship(
        back_populates="category",
        cascade="all, delete-orphan",
    )


class DisplayFeature(Base):
    __tablename__ = "display_features"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    category: Mapped[Category] = relationship(back_populates="features")


class SystemFeature(Base):
    __tablename__ = "system_features"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(120), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    feature_type: Mapped[str] = mapped_column(String(16), nullable=False)
    default_value: Mapped[Any] = mapped_column(JSON, nullable=False)
    allowed_values: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class Plan(Base):
    """Read-only mirror of the billing subsystem's plans."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class Character(Base):
    """Read-only mirror of the AI character registry."""

    __tablename__ = "characters"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PlanFeatureAssignment(Base):
    __tablename__ = "plan_feature_assignments"

    plan_id: Mapped[str] = mapped_column(ForeignKey("plans.id"), primary_key=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    display_features: Mapped[list["PlanDisplayFeature"]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="PlanDisplayFeature.display_feature_id",
    )
    system_values: Mapped[list["PlanSystemFeatureValue"]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="PlanSystemFeatureValue.system_feature_id",
    )
    character_limits: Mapped[list["PlanCharacterLimit"]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="PlanCharacterLimit.character_id",
    )


class PlanDisplayFeature(Base):
    __tablename__ = "plan_display_features"
    __table_args__ = (UniqueConstraint("plan_id", "display_feature_id", name="uq_plan_display_feature"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_id: Mapped[str] = mapped_column(ForeignKey("plan_feature_assignments.plan_id"), nullable=False, index=True)
    display_feature_id: Mapped[int] = mapped_column(ForeignKey("display_features.id"), nullable=False, index=True)
    # False shows the feature as explicitly not included on the plan card
    is_included: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    custom_value: Mapped[str | None] = mapped_column(String(CUSTOM_VALUE_MAX_LENGTH), nullable=True)

    assignment: Mapped[PlanFeatureAssignment] = relationship(back_populates="display_features")


class PlanSystemFeatureValue(Base):
    __tablename__ = "plan_system_feature_values"
    __table_args__ = (UniqueConstraint("plan_id", "system_feature_id", name="uq_plan_system_feature"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_id: Mapped[str] = mapped_column(ForeignKey("plan_feature_assignments.plan_id"), nullable=False, index=True)
    system_feature_id: Mapped[int] = mapped_column(ForeignKey("system_features.id"), nullable=False, index=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)

    assignment: Mapped[PlanFeatureAssignment] = relationship(back_populates="system_values")


class PlanCharacterLimit(Base):
    __tablename__ = "plan_character_limits"
    __table_args__ = (UniqueConstraint("plan_id", "character_id", name="uq_plan_character"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_id: Mapped[str] = mapped_column(ForeignKey("plan_feature_assignments.plan_id"), nullable=False, index=True)
    character_id: Mapped[str] = mapped_column(ForeignKey("characters.id"), nullable=False, index=True)
    # NULL means unlimited
    message_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    token_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    is_accessible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    rate_limit_per_minute: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_RATE_LIMIT_PER_MINUTE,
    )

    assignment: Mapped[PlanFeatureAssignment] = relationship(back_populates="character_limits")


class CatalogModel(Base):
    __tablename__ = "catalog_models"

    model_id: Mapped[str] = mapped_column(String(120), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pricing_input: Mapped[Decimal | None] = mapped_column(Numeric(15, 6), nullable=True)
    pricing_output: Mapped[Decimal | None] = mapped_column(Numeric(15, 6), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class CatalogSyncState(Base):
    __tablename__ = "catalog_sync_state"

    id: Mapped[int] = mapped_column(primary_key=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ttl_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    last_result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
