"""Admin configuration of payment gateways and commission."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas.payment_settings import AvailableGatewaysRead, PaymentSettingsUpdate
from app.security import Actor, require_admin
from app.services import payment_gateway
from app.services.settings_store import DbSettingsStore
from app.utils.audit import log_audit
from app.utils.errors import error_response

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/payment-gateways", response_model=AvailableGatewaysRead)
def get_payment_gateways(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
) -> AvailableGatewaysRead:
    """Active gateway, commission and per-provider configured/sandbox flags."""

    return payment_gateway.get_available_gateways(DbSettingsStore(db))


@router.put("/payment-settings", response_model=AvailableGatewaysRead)
def update_payment_settings(
    payload: PaymentSettingsUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
) -> AvailableGatewaysRead:
    store = DbSettingsStore(db)
    try:
        keys = payment_gateway.update_settings(store, payload, actor_id=actor.user_id)
    except payment_gateway.InvalidPaymentSettings as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("INVALID_PAYMENT_SETTINGS", str(exc)),
        ) from exc

    # Values are secrets; only the key names go to the audit log.
    log_audit(
        db,
        actor=actor.label,
        action="PAYMENT_SETTINGS_UPDATED",
        entity="SystemSetting",
        entity_id=None,
        data={"keys": keys},
    )
    db.commit()
    return payment_gateway.get_available_gateways(store)
