"""FastAPI app for the plan entitlement admin console."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import assignment, catalog, pricing, sync
from .db import get_db, init_db
from .errors import ConflictError, EntitlementError, FieldError, NotFoundError, PersistenceError, ValidationError
from .log import configure_logging
from .models import Category, DisplayFeature
from .ordering import reorder_category, reorder_display_feature
from .registries import SqlCharacterRegistry, SqlPlanRegistry
from .schemas import (
    CatalogModelOut,
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    CharacterRankingOut,
    DisplayFeatureCreate,
    DisplayFeatureOut,
    DisplayFeatureUpdate,
    ModelPricingUpdate,
    PlanFeatureBundle,
    PlanFeaturesOut,
    ReorderRequest,
    SyncOptions,
    SyncResult,
    SyncStateOut,
    SystemFeatureCreate,
    SystemFeatureOut,
    SystemFeatureUpdate,
)
from .security import require_admin

ERROR_STATUS: dict[type[EntitlementError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_logs=os.getenv("LOG_JSON", "true").lower() == "true",
        sql_echo=os.getenv("LOG_SQL", "false").lower() == "true",
    )
    init_db()
    yield


app = FastAPI(
    title="Plan Entitlements Admin API",
    description="Feature catalog, plan feature bundles and model pricing for the admin console.",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.catalog_syncer = None


@app.exception_handler(EntitlementError)
async def handle_entitlement_error(_: Request, exc: EntitlementError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
        content=exc.to_dict(),
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ())]
        section = location[0] if location else "request"
        field = ".".join(location[1:]) or section
        errors.append(FieldError(section=section, field=field, reason=error.get("msg", "invalid")))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ValidationError("Malformed request.", errors).to_dict(),
    )


def get_plan_registry(db: Session = Depends(get_db)) -> SqlPlanRegistry:
    return SqlPlanRegistry(db)


def get_character_registry(db: Session = Depends(get_db)) -> SqlCharacterRegistry:
    return SqlCharacterRegistry(db)


def get_catalog_syncer(request: Request) -> sync.CatalogSyncer:
    syncer = request.app.state.catalog_syncer
    if syncer is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Catalog syncer not configured.",
        )
    return syncer


@app.get("/health")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


admin = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# Categories


@admin.get("/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)) -> list[Category]:
    return catalog.list_categories(db)


@admin.post("/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)) -> Category:
    return catalog.create_category(db, payload)


@admin.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)) -> Category:
    return catalog.get_category(db, category_id)


@admin.patch("/categories/{category_id}", response_model=CategoryOut)
def update_category(category_id: int, payload: CategoryUpdate, db: Session = Depends(get_db)) -> Category:
    return catalog.update_category(db, category_id, payload)


@admin.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: int, db: Session = Depends(get_db)) -> None:
    catalog.delete_category(db, category_id)


@admin.post("/categories/{category_id}/reorder", response_model=list[CategoryOut])
def reorder_category_route(
    category_id: int,
    payload: ReorderRequest,
    db: Session = Depends(get_db),
) -> list[Category]:
    reorder_category(db, category_id, payload.display_order)
    return catalog.list_categories(db)


# Display features


@admin.get("/display-features", response_model=list[DisplayFeatureOut])
def list_display_features(category_id: int | None = None, db: Session = Depends(get_db)) -> list[DisplayFeature]:
    return catalog.list_display_features(db, category_id)


@admin.post("/display-features", response_model=DisplayFeatureOut, status_code=status.HTTP_201_CREATED)
def create_display_feature(payload: DisplayFeatureCreate, db: Session = Depends(get_db)) -> DisplayFeature:
    return catalog.create_display_feature(db, payload)


@admin.get("/display-features/{feature_id}", response_model=DisplayFeatureOut)
def get_display_feature(feature_id: int, db: Session = Depends(get_db)) -> DisplayFeature:
    return catalog.get_display_feature(db, feature_id)


@admin.patch("/display-features/{feature_id}", response_model=DisplayFeatureOut)
def update_display_feature(
    feature_id: int,
    payload: DisplayFeatureUpdate,
    db: Session = Depends(get_db),
) -> DisplayFeature:
    return catalog.update_display_feature(db, feature_id, payload)


@admin.delete("/display-features/{feature_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_display_feature(feature_id: int, db: Session = Depends(get_db)) -> None:
    catalog.delete_display_feature(db, feature_id)


@admin.post("/display-features/{feature_id}/reorder", response_model=list[DisplayFeatureOut])
def reorder_display_feature_route(
    feature_id: int,
    payload: ReorderRequest,
    db: Session = Depends(get_db),
) -> list[DisplayFeature]:
    feature = reorder_display_feature(db, feature_id, payload.display_order)
    return catalog.list_display_features(db, feature.category_id)


# System features


@admin.get("/system-features", response_model=list[SystemFeatureOut])
def list_system_features(db: Session = Depends(get_db)) -> list[SystemFeatureOut]:
    return [catalog.serialize_system_feature(feature) for feature in catalog.list_system_features(db)]


@admin.post("/system-features", response_model=SystemFeatureOut, status_code=status.HTTP_201_CREATED)
def create_system_feature(payload: SystemFeatureCreate, db: Session = Depends(get_db)) -> SystemFeatureOut:
    return catalog.serialize_system_feature(catalog.create_system_feature(db, payload))


@admin.get("/system-features/{feature_id}", response_model=SystemFeatureOut)
def get_system_feature(feature_id: int, db: Session = Depends(get_db)) -> SystemFeatureOut:
    return catalog.serialize_system_feature(catalog.get_system_feature(db, feature_id))


@admin.patch("/system-features/{feature_id}", response_model=SystemFeatureOut)
def update_system_feature(
    feature_id: int,
    payload: SystemFeatureUpdate,
    db: Session = Depends(get_db),
) -> SystemFeatureOut:
    return catalog.serialize_system_feature(catalog.update_system_feature(db, feature_id, payload))


@admin.delete("/system-features/{feature_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_system_feature(feature_id: int, db: Session = Depends(get_db)) -> None:
    catalog.delete_system_feature(db, feature_id)


# Plan bundles


@admin.get("/plans/{plan_id}/features", response_model=PlanFeaturesOut)
def get_plan_features(
    plan_id: str,
    db: Session = Depends(get_db),
    plans: SqlPlanRegistry = Depends(get_plan_registry),
) -> PlanFeaturesOut:
    return assignment.get_plan_features(db, plan_id, plans)


@admin.put("/plans/{plan_id}/features", response_model=PlanFeaturesOut)
def assign_plan_features(
    plan_id: str,
    bundle: PlanFeatureBundle,
    db: Session = Depends(get_db),
    plans: SqlPlanRegistry = Depends(get_plan_registry),
    characters: SqlCharacterRegistry = Depends(get_character_registry),
) -> PlanFeaturesOut:
    return assignment.assign_plan_features(db, plan_id, bundle, plans, characters)


@admin.get("/plans/{plan_id}/features/characters", response_model=list[CharacterRankingOut])
def preview_character_ranking(
    plan_id: str,
    db: Session = Depends(get_db),
    plans: SqlPlanRegistry = Depends(get_plan_registry),
) -> list[CharacterRankingOut]:
    return assignment.preview_character_ranking(db, plan_id, plans)


# Model catalog


@admin.get("/models", response_model=list[CatalogModelOut])
def list_models(db: Session = Depends(get_db)) -> list[CatalogModelOut]:
    return [pricing.serialize_model(model) for model in pricing.list_models(db)]


@admin.patch("/models/{model_id}/pricing", response_model=CatalogModelOut)
def update_model_pricing(
    model_id: str,
    payload: ModelPricingUpdate,
    db: Session = Depends(get_db),
) -> CatalogModelOut:
    model = pricing.update_model_pricing(db, model_id, payload.pricing_input, payload.pricing_output)
    return pricing.serialize_model(model)


@admin.get("/models/sync/state", response_model=SyncStateOut)
def get_sync_state(db: Session = Depends(get_db)) -> SyncStateOut:
    return sync.describe_sync_state(db)


@admin.post("/models/sync", response_model=SyncResult)
def run_model_sync(
    options: SyncOptions,
    db: Session = Depends(get_db),
    syncer: sync.CatalogSyncer = Depends(get_catalog_syncer),
) -> SyncResult:
    return sync.run_catalog_sync(db, syncer, options)


app.include_router(admin)
