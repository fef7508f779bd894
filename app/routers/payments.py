"""Checkout, provider callbacks and escrow actions."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.config import get_settings
from app.db import get_db
from app.models.escrow import EscrowStatus, EscrowTransaction
from app.schemas.escrow import (
    EscrowActionResult,
    EscrowDisputeCreate,
    EscrowRead,
    EscrowRefundCreate,
    EscrowResolveCreate,
)
from app.schemas.payment import CheckoutCreate, CheckoutResult
from app.security import Actor, get_actor, require_admin
from app.services import escrow as escrow_service
from app.services.payment_gateway import PaymentGatewayNotConfigured
from app.utils.errors import error_response, status_for_error_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _not_configured(exc: PaymentGatewayNotConfigured) -> HTTPException:
    logger.error("Payment gateway not configured", extra={"error": str(exc)})
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=error_response("PAYMENT_GATEWAY_NOT_CONFIGURED", str(exc)),
    )


def _unwrap(result: EscrowActionResult) -> EscrowActionResult:
    if not result.success:
        raise HTTPException(
            status_code=status_for_error_code(result.error_code),
            detail=error_response(result.error_code or "ESCROW_ACTION_FAILED", result.message),
        )
    return result


@router.post("/checkout", response_model=CheckoutResult, status_code=status.HTTP_201_CREATED)
def checkout(
    payload: CheckoutCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> CheckoutResult:
    """Start a purchase: open a pending escrow and return the provider's next step."""

    if actor.user_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("FORBIDDEN", "Checkout requires a user-bound API key."),
        )

    try:
        result = escrow_service.create_project_payment(
            db,
            buyer_id=actor.user_id,
            project_id=payload.project_id,
            callback_url=str(payload.callback_url),
            buyer_ip=request.client.host if request.client else None,
            card_info=payload.card,
        )
    except PaymentGatewayNotConfigured as exc:
        raise _not_configured(exc) from exc

    if not result.success:
        details = {"escrow_id": result.escrow_id} if result.escrow_id else None
        raise HTTPException(
            status_code=status_for_error_code(result.error_code),
            detail=error_response(
                result.error_code or "PAYMENT_FAILED",
                result.error_message or "Payment could not be started.",
                details,
            ),
        )
    return result


async def _callback_params(request: Request) -> dict[str, Any]:
    params: dict[str, Any] = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await request.json()
        if isinstance(body, dict):
            params.update(body)
    elif content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


def _escrow_id_param(params: dict[str, Any]) -> int | None:
    raw = params.get("escrow_id")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _locate_escrow(db: Session, params: dict[str, Any], *references: str | None) -> EscrowTransaction | None:
    escrow_id = _escrow_id_param(params)
    if escrow_id is not None:
        return db.get(EscrowTransaction, escrow_id)
    for reference in references:
        if reference:
            escrow = escrow_service.find_escrow_by_reference(db, reference)
            if escrow is not None:
                return escrow
    return None


def _handle_paytr_callback(db: Session, params: dict[str, Any]) -> Response:
    merchant_oid = str(params["merchant_oid"])
    escrow = _locate_escrow(db, params, merchant_oid)
    if escrow is None:
        escrow_service.record_callback_event(
            db, provider="paytr", reference=merchant_oid, escrow_id=None, outcome="unknown_escrow", params=params
        )
        return PlainTextResponse("FAIL", status_code=status.HTTP_400_BAD_REQUEST)

    was_pending = escrow.status == EscrowStatus.PENDING
    result = escrow_service.complete_payment(db, escrow.id, merchant_oid, callback_params=params)

    if result.error_code in {"INVALID_HASH", "PAYMENT_REFERENCE_MISMATCH"}:
        outcome = "rejected"
    elif not was_pending:
        outcome = "duplicate"
    else:
        outcome = "accepted"
    escrow_service.record_callback_event(
        db, provider="paytr", reference=merchant_oid, escrow_id=escrow.id, outcome=outcome, params=params
    )
    if outcome == "rejected":
        return PlainTextResponse("FAIL", status_code=status.HTTP_400_BAD_REQUEST)
    # PayTR keeps retrying until it reads "OK", whatever the payment outcome.
    return PlainTextResponse("OK")


def _frontend_redirect(succeeded: bool, escrow_id: int | None) -> RedirectResponse:
    settings = get_settings()
    path = settings.PAYMENT_SUCCESS_PATH if succeeded else settings.PAYMENT_FAILURE_PATH
    url = httpx.URL(f"{settings.FRONTEND_URL}{path}")
    if escrow_id is not None:
        url = url.copy_add_param("escrow_id", str(escrow_id))
    return RedirectResponse(str(url), status_code=status.HTTP_302_FOUND)


def _handle_iyzico_callback(db: Session, params: dict[str, Any]) -> Response:
    payment_id = str(params["paymentId"])
    escrow = _locate_escrow(db, params, payment_id, params.get("conversationId"))
    if escrow is None:
        escrow_service.record_callback_event(
            db, provider="iyzico", reference=payment_id, escrow_id=None, outcome="unknown_escrow", params=params
        )
        return _frontend_redirect(False, None)

    was_pending = escrow.status == EscrowStatus.PENDING
    result = escrow_service.complete_payment(db, escrow.id, payment_id, callback_params=params)
    if result.error_code == "PAYMENT_REFERENCE_MISMATCH":
        outcome = "rejected"
    elif not was_pending:
        outcome = "duplicate"
    else:
        outcome = "accepted"
    escrow_service.record_callback_event(
        db, provider="iyzico", reference=payment_id, escrow_id=escrow.id, outcome=outcome, params=params
    )
    return _frontend_redirect(result.success, escrow.id)


def _dispatch_signed_callback(db: Session, params: dict[str, Any]) -> Response | None:
    if params.get("merchant_oid") and params.get("hash"):
        return _handle_paytr_callback(db, params)
    if params.get("paymentId"):
        return _handle_iyzico_callback(db, params)
    return None


def _browser_return(db: Session, params: dict[str, Any]) -> Response:
    """Send a shopper coming back from the provider page to the frontend without touching state."""

    escrow_id = _escrow_id_param(params)
    escrow = db.get(EscrowTransaction, escrow_id) if escrow_id is not None else None
    if escrow is None:
        return _frontend_redirect(False, escrow_id)
    if escrow.status == EscrowStatus.PENDING:
        # The server-to-server notification may still be on its way.
        succeeded = params.get("status") == "success"
    else:
        succeeded = escrow.status not in {EscrowStatus.FAILED, EscrowStatus.REFUNDED}
    return _frontend_redirect(succeeded, escrow.id)


@router.post("/callback", include_in_schema=False)
async def payment_callback(request: Request, db: Session = Depends(get_db)) -> Response:
    """Provider-called endpoint; authenticity is checked per provider, not by API key."""

    params = await _callback_params(request)
    try:
        response = await run_in_threadpool(_dispatch_signed_callback, db, params)
    except PaymentGatewayNotConfigured as exc:
        raise _not_configured(exc) from exc
    if response is not None:
        return response

    logger.warning("Unrecognised payment callback", extra={"keys": sorted(params)})
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=error_response("INVALID_CALLBACK", "Callback payload not recognised."),
    )


@router.get("/callback", include_in_schema=False)
async def payment_return(request: Request, db: Session = Depends(get_db)) -> Response:
    """Browser return from the provider page; provider parameters are verified like a POST."""

    params = dict(request.query_params)
    try:
        response = await run_in_threadpool(_dispatch_signed_callback, db, params)
    except PaymentGatewayNotConfigured as exc:
        raise _not_configured(exc) from exc
    if response is not None:
        return response
    return await run_in_threadpool(_browser_return, db, params)


@router.get("/escrow/{escrow_id}", response_model=EscrowRead)
def get_escrow(
    escrow_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> EscrowRead:
    result = _unwrap(escrow_service.get_escrow_for_actor(db, escrow_id, actor))
    return result.escrow


@router.post("/escrow/{escrow_id}/release", response_model=EscrowActionResult)
def release_escrow(
    escrow_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> EscrowActionResult:
    """Buyer confirms delivery (or an admin decides) and funds go to the seller."""

    return _unwrap(escrow_service.release_escrow(db, escrow_id, actor))


@router.post("/escrow/{escrow_id}/dispute", response_model=EscrowActionResult)
def open_dispute(
    escrow_id: int,
    payload: EscrowDisputeCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> EscrowActionResult:
    return _unwrap(escrow_service.open_dispute(db, escrow_id, actor, payload.reason))


@router.post("/escrow/{escrow_id}/refund", response_model=EscrowActionResult)
def refund_escrow(
    escrow_id: int,
    payload: EscrowRefundCreate | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
) -> EscrowActionResult:
    try:
        result = escrow_service.refund_payment(db, escrow_id, actor, reason=payload.reason if payload else None)
    except PaymentGatewayNotConfigured as exc:
        raise _not_configured(exc) from exc
    return _unwrap(result)


@router.post("/escrow/{escrow_id}/resolve", response_model=EscrowActionResult)
def resolve_dispute(
    escrow_id: int,
    payload: EscrowResolveCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
) -> EscrowActionResult:
    try:
        result = escrow_service.resolve_dispute(db, escrow_id, actor, payload.resolution, reason=payload.reason)
    except PaymentGatewayNotConfigured as exc:
        raise _not_configured(exc) from exc
    return _unwrap(result)


__all__ = ["router"]
