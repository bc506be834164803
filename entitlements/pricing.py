"""Per-unit input/output price updates on catalog model entries."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import db as database
from .constants import PRICE_MAX, PRICE_QUANTUM
from .errors import FieldError, NotFoundError, ValidationError
from .models import CatalogModel
from .schemas import CatalogModelOut

logger = structlog.get_logger(__name__)


def parse_price(field: str, value: Any, errors: list[FieldError]) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        errors.append(FieldError("pricing", field, "must be a decimal number"))
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        errors.append(FieldError("pricing", field, "must be a decimal number"))
        return None
    if not price.is_finite():
        errors.append(FieldError("pricing", field, "must be finite"))
        return None
    if price < 0:
        errors.append(FieldError("pricing", field, "must be non-negative"))
        return None
    if price > PRICE_MAX:
        errors.append(FieldError("pricing", field, f"must not exceed {PRICE_MAX}"))
        return None
    try:
        quantized = price.quantize(PRICE_QUANTUM)
    except InvalidOperation:
        errors.append(FieldError("pricing", field, "must be a decimal number"))
        return None
    if quantized != price:
        errors.append(FieldError("pricing", field, "must have at most six fractional digits"))
        return None
    return quantized


def format_price(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return f"{Decimal(value).quantize(PRICE_QUANTUM):f}"


def serialize_model(model: CatalogModel) -> CatalogModelOut:
    return CatalogModelOut(
        model_id=model.model_id,
        name=model.name,
        is_active=model.is_active,
        pricing_input=format_price(model.pricing_input),
        pricing_output=format_price(model.pricing_output),
    )


def list_models(db: Session) -> list[CatalogModel]:
    return list(db.scalars(select(CatalogModel).order_by(CatalogModel.model_id)).all())


def get_model(db: Session, model_id: str) -> CatalogModel:
    model = db.get(CatalogModel, model_id)
    if not model:
        raise NotFoundError(f"Model {model_id!r} not found.")
    return model


def update_model_pricing(db: Session, model_id: str, input_price: Any, output_price: Any) -> CatalogModel:
    """Validate both prices, then write them together in one commit."""
    errors: list[FieldError] = []
    pricing_input = parse_price("pricing_input", input_price, errors)
    pricing_output = parse_price("pricing_output", output_price, errors)
    if errors:
        logger.info("model_pricing_rejected", model_id=model_id, error_count=len(errors))
        raise ValidationError("Invalid model pricing.", errors)

    model = get_model(db, model_id)
    model.pricing_input = pricing_input
    model.pricing_output = pricing_output
    database.commit(db)

    logger.info(
        "model_pricing_updated",
        model_id=model_id,
        pricing_input=format_price(pricing_input),
        pricing_output=format_price(pricing_output),
    )
    return model
