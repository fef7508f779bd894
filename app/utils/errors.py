"""Utility helpers for standardized error responses."""
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


def status_for_error_code(code: str | None) -> int:
    """Map a structured domain failure code onto an HTTP status."""

    if not code:
        return 400
    if code.endswith("_NOT_FOUND"):
        return 404
    if code == "FORBIDDEN":
        return 403
    if code == "DUPLICATE_PURCHASE":
        return 409
    return 400
