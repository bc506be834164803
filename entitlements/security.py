"""Admin token gate for the console routes."""

from __future__ import annotations

import hmac
import os

from fastapi import Header, HTTPException, status


def verify_admin_token(token: str | None, expected: str | None) -> bool:
    """Compare the presented token with the configured one.

    If no token is configured, the gate is open.
    """
    if not expected:
        return True
    if not token:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


def require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> None:
    if not verify_admin_token(x_admin_token, os.getenv("ADMIN_TOKEN", "").strip()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token.",
        )
