"""Pydantic schemas for API requests and responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_RATE_LIMIT_PER_MINUTE

LimitValue = int | Literal["unlimited"]


class CategoryCreate(BaseModel):
    name: str = Field(max_length=200)
    description: str = ""
    display_order: int | None = Field(default=None, ge=1)


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    display_order: int | None = Field(default=None, ge=1)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    display_order: int


class DisplayFeatureCreate(BaseModel):
    category_id: int
    name: str = Field(max_length=200)
    description: str = ""
    display_order: int | None = Field(default=None, ge=1)


class DisplayFeatureUpdate(BaseModel):
    category_id: int | None = None
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    display_order: int | None = Field(default=None, ge=1)


class DisplayFeatureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    name: str
    description: str
    display_order: int


class SystemFeatureCreate(BaseModel):
    key: str = Field(max_length=120)
    name: str = Field(max_length=200)
    type: str
    description: str = ""
    default_value: Any = None
    allowed_values: list[str] | None = None


class SystemFeatureUpdate(BaseModel):
    """Partial update; ``key`` and ``type`` are accepted only to be rejected when changed."""

    key: str | None = None
    type: str | None = None
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    default_value: Any = None
    allowed_values: list[str] | None = None


class SystemFeatureOut(BaseModel):
    id: int
    key: str
    name: str
    description: str
    type: str
    default_value: Any
    allowed_values: list[str] | None


class ReorderRequest(BaseModel):
    display_order: int


# Bundle values stay untyped here so the assignment engine reports every
# problem in one ordered list.


class DisplayFeatureOverrideIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_included: Any = True
    custom_value: Any = None


class CharacterLimitIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message_limit: Any
    token_limit: Any
    priority: Any
    is_accessible: Any = True
    rate_limit_per_minute: Any = DEFAULT_RATE_LIMIT_PER_MINUTE


class PlanFeatureBundle(BaseModel):
    model_config = ConfigDict(extra="forbid")

    display_feature_ids: list[int] = Field(default_factory=list)
    display_feature_overrides: dict[int, DisplayFeatureOverrideIn] = Field(default_factory=dict)
    system_feature_values: dict[int, Any] = Field(default_factory=dict)
    character_limits: dict[str, CharacterLimitIn] = Field(default_factory=dict)


class DisplayFeatureOverrideOut(BaseModel):
    is_included: bool
    custom_value: str | None


class CharacterLimitOut(BaseModel):
    message_limit: LimitValue
    token_limit: LimitValue
    priority: int
    is_accessible: bool
    rate_limit_per_minute: int


class PlanFeaturesOut(BaseModel):
    plan_id: str
    revision: int
    updated_at: datetime | None
    display_feature_ids: list[int]
    display_feature_overrides: dict[int, DisplayFeatureOverrideOut]
    system_feature_values: dict[int, Any]
    character_limits: dict[str, CharacterLimitOut]


class CharacterRankingOut(BaseModel):
    rank: int
    character_id: str
    priority: int
    message_limit: LimitValue
    token_limit: LimitValue
    rate_limit_per_minute: int


class ModelPricingUpdate(BaseModel):
    # JSON true would coerce to 1 under a numeric type
    pricing_input: Any
    pricing_output: Any


class CatalogModelOut(BaseModel):
    model_id: str
    name: str
    is_active: bool
    pricing_input: str | None
    pricing_output: str | None


class SyncOptions(BaseModel):
    force: bool = False
    update_pricing: bool = True
    deactivate_missing: bool = False


class SyncResult(BaseModel):
    models_added: int = 0
    models_updated: int = 0
    models_deactivated: int = 0
    models_total: int = 0
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False


class SyncStateOut(BaseModel):
    last_run_at: datetime | None
    ttl_seconds: int
    is_fresh: bool
    last_result: SyncResult | None
