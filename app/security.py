# app/security.py
"""Security dependencies for API key validation, scopes and the acting user."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Set

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.api_key import ApiKey, ApiScope
from app.utils.apikey import find_valid_key
from app.utils.errors import error_response


@dataclass(frozen=True)
class Actor:
    """The authenticated caller an escrow action runs on behalf of."""

    user_id: int | None
    is_admin: bool = False
    label: str = "system"

    @classmethod
    def system(cls, label: str) -> "Actor":
        return cls(user_id=None, is_admin=False, label=label)

    @classmethod
    def from_api_key(cls, key: ApiKey) -> "Actor":
        is_admin = key.scope == ApiScope.admin
        role = "admin" if is_admin else "user"
        return cls(user_id=key.user_id, is_admin=is_admin, label=f"{role}:{key.user_id}")


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_api_key(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> ApiKey:
    """Validate API key tokens and return the corresponding row."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    key = find_valid_key(db, token)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
        )

    key.last_used_at = datetime.now(UTC)
    db.add(key)
    db.commit()
    return key


def require_scope(allowed: Set[ApiScope]) -> Callable:
    """Enforce that a key holds one of the allowed scopes (admin always passes)."""

    if not allowed:
        raise RuntimeError("require_scope needs a non-empty set of ApiScope")

    def _dep(key: ApiKey = Depends(require_api_key)) -> ApiKey:
        if key.scope == ApiScope.admin or key.scope in allowed:
            return key
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_SCOPE",
                f"Requires one of: {[scope.value for scope in allowed]}",
            ),
        )

    return _dep


def get_actor(key: ApiKey = Depends(require_api_key)) -> Actor:
    """Return the acting user for the presented API key."""

    return Actor.from_api_key(key)


def require_admin(key: ApiKey = Depends(require_scope({ApiScope.admin}))) -> Actor:
    return Actor.from_api_key(key)


__all__ = ["Actor", "require_api_key", "require_scope", "get_actor", "require_admin"]
