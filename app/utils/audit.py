"""Audit logging helper utilities."""
from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.models.audit import AuditLog
from app.utils.time import utcnow


SECRET_KEYS = {
    "hash",
    "paytr_token",
    "api_key",
    "secret_key",
    "merchant_key",
    "merchant_salt",
    "iyzico_api_key",
    "iyzico_secret_key",
    "paytr_merchant_key",
    "paytr_merchant_salt",
    "cvc",
}

SENSITIVE_KEYS = SECRET_KEYS | {
    "card_number",
    "cardNumber",
    "email",
    "phone",
    "provider_payment_id",
}


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    if key in SECRET_KEYS:
        return "***"

    if key in {"card_number", "cardNumber"}:
        stripped = str(value).replace(" ", "")
        if len(stripped) <= 4:
            return f"***{stripped}"
        return f"***{stripped[-4:]}"

    if key == "email":
        text = str(value)
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    if key == "phone":
        text = str(value)
        return f"***{text[-2:]}" if len(text) > 2 else "***"

    if key == "provider_payment_id":
        text = str(value)
        if len(text) <= 6:
            return "***"
        return f"***{text[-4:]}"

    return value


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with secrets and obvious PII fields masked."""

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            masked_value = _mask_value(key, value) if key in SENSITIVE_KEYS else value
            sanitized[key] = sanitize_payload_for_audit(masked_value)
        return sanitized

    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]

    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> None:
    """Persist an audit entry in the shared AuditLog table."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id if entity_id is not None else 0,
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )
