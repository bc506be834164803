"""Feature types, sentinels and policy settings."""

from __future__ import annotations

import os
import re
from decimal import Decimal
from typing import Final

UNLIMITED: Final[str] = "unlimited"

FEATURE_TYPE_BOOLEAN: Final[str] = "boolean"
FEATURE_TYPE_LIMIT: Final[str] = "limit"
FEATURE_TYPE_LIST: Final[str] = "list"
FEATURE_TYPES: Final[tuple[str, ...]] = (
    FEATURE_TYPE_BOOLEAN,
    FEATURE_TYPE_LIMIT,
    FEATURE_TYPE_LIST,
)

FEATURE_KEY_REGEX = re.compile(r"^[a-z][a-z0-9_]*$")

PRIORITY_MIN: Final[int] = 1
PRIORITY_MAX: Final[int] = 100

RATE_LIMIT_MIN: Final[int] = 1
RATE_LIMIT_MAX: Final[int] = 100
DEFAULT_RATE_LIMIT_PER_MINUTE: Final[int] = 10

# Largest value a BIGINT column holds
LIMIT_MAX: Final[int] = 2**63 - 1

CHARACTER_LIMIT_FIELDS: Final[tuple[str, ...]] = ("message_limit", "token_limit")

CUSTOM_VALUE_MAX_LENGTH: Final[int] = 200

PRICE_QUANTUM: Final[Decimal] = Decimal("0.000001")
# 15 significant digits survive a round trip through a double-precision column
PRICE_MAX: Final[Decimal] = Decimal("999999999.999999")

SERVICE_NAME: Final[str] = "plan-entitlements"

CATEGORY_DELETE_REJECT: Final[str] = "reject"
CATEGORY_DELETE_CASCADE: Final[str] = "cascade"

DEFAULT_SYNC_TTL_SECONDS: Final[int] = 24 * 60 * 60
SYNC_SKIPPED_MESSAGE: Final[str] = "Sync skipped - recently synced"


def is_valid_feature_type(feature_type: str) -> bool:
    return feature_type in FEATURE_TYPES


def normalize_feature_type(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.strip().lower()
    if is_valid_feature_type(normalized):
        return normalized
    return None


def normalize_feature_key(value: str) -> str:
    return re.sub(r"\s+", "_", value.strip().lower())


def category_delete_policy() -> str:
    policy = os.getenv("CATEGORY_DELETE_POLICY", CATEGORY_DELETE_REJECT).strip().lower()
    if policy not in {CATEGORY_DELETE_REJECT, CATEGORY_DELETE_CASCADE}:
        raise RuntimeError(f"Unsupported CATEGORY_DELETE_POLICY: {policy!r}")
    return policy


def sync_ttl_seconds() -> int:
    return int(os.getenv("SYNC_TTL_SECONDS", str(DEFAULT_SYNC_TTL_SECONDS)))
