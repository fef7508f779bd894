"""Escrow orchestration for project purchases.

Every operation takes a session and returns a structured result; domain
failures come back with ``success=False`` and an ``error_code`` instead of
being raised. Misconfigured gateways are the exception: they raise
``PaymentGatewayNotConfigured`` before anything is written.
"""
import logging
from decimal import Decimal
from typing import Any, Mapping

import httpx
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.callback_event import PaymentCallbackEvent
from app.models.escrow import OPEN_ESCROW_STATUSES, EscrowStatus, EscrowTransaction
from app.models.payment import Payment, PaymentStatus
from app.models.project import Project
from app.models.user import User
from app.schemas.escrow import EscrowActionResult, EscrowRead
from app.schemas.payment import (
    BuyerInfo,
    CardInfo,
    CheckoutResult,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
)
from app.security import Actor
from app.services import payment_gateway
from app.services.payment_gateway import PaymentGateway
from app.services.settings_store import DbSettingsStore, SettingsStore
from app.utils.audit import log_audit, sanitize_payload_for_audit
from app.utils.money import split_commission, to_decimal
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

ENTITY = "EscrowTransaction"


def _checkout_failure(code: str, message: str, escrow_id: int | None = None) -> CheckoutResult:
    return CheckoutResult(success=False, error_code=code, error_message=message, escrow_id=escrow_id)


def _action_failure(code: str, message: str, escrow: EscrowTransaction | None = None) -> EscrowActionResult:
    return EscrowActionResult(
        success=False,
        message=message,
        error_code=code,
        escrow=EscrowRead.model_validate(escrow) if escrow is not None else None,
    )


def _action_success(
    message: str, escrow: EscrowTransaction, *, refund_id: str | None = None
) -> EscrowActionResult:
    return EscrowActionResult(
        success=True,
        message=message,
        escrow=EscrowRead.model_validate(escrow),
        refund_id=refund_id,
    )


def _transition(
    db: Session,
    escrow: EscrowTransaction,
    target: EscrowStatus,
    *,
    actor: str,
    action: str,
    data: dict[str, Any] | None = None,
    **fields: Any,
) -> EscrowTransaction:
    """Move ``escrow`` to ``target``, write the audit row and commit."""

    if not escrow.can_transition_to(target):
        raise ValueError(f"Illegal escrow transition {escrow.status.value} -> {target.value}")

    previous = escrow.status
    escrow.status = target
    for name, value in fields.items():
        setattr(escrow, name, value)
    db.add(escrow)
    log_audit(
        db,
        actor=actor,
        action=action,
        entity=ENTITY,
        entity_id=escrow.id,
        data={"from": previous.value, "to": target.value, **(data or {})},
    )
    db.commit()
    db.refresh(escrow)
    logger.info(
        "Escrow status changed",
        extra={"escrow_id": escrow.id, "from_status": previous.value, "to_status": target.value},
    )
    return escrow


def _resolve_gateway(
    db: Session,
    *,
    name: str | None,
    store: SettingsStore | None,
    gateway: PaymentGateway | None,
    transport: httpx.BaseTransport | None = None,
) -> PaymentGateway:
    if gateway is not None:
        return gateway
    return payment_gateway.create_gateway(store or DbSettingsStore(db), gateway=name, transport=transport)


def _buyer_info(buyer: User, buyer_ip: str | None) -> BuyerInfo:
    return BuyerInfo(
        name=buyer.first_name or "Customer",
        surname=buyer.last_name or "",
        email=buyer.email,
        phone=buyer.phone,
        address=buyer.address,
        city=buyer.city,
        ip=buyer_ip,
    )


def _open_escrow(db: Session, project_id: int, buyer_id: int) -> EscrowTransaction | None:
    stmt = (
        select(EscrowTransaction)
        .where(
            EscrowTransaction.project_id == project_id,
            EscrowTransaction.buyer_id == buyer_id,
            EscrowTransaction.status.in_(OPEN_ESCROW_STATUSES),
        )
        .limit(1)
    )
    return db.scalars(stmt).first()


def _supersede_checkout(db: Session, escrow: EscrowTransaction, buyer_id: int) -> None:
    """Fail a pending escrow whose checkout the buyer abandoned before any callback."""

    payment = escrow.payment
    if payment is not None and payment.status == PaymentStatus.INITIATED:
        payment.status = PaymentStatus.FAILED
        db.add(payment)
    _transition(
        db,
        escrow,
        EscrowStatus.FAILED,
        actor=f"user:{buyer_id}",
        action="ESCROW_CHECKOUT_SUPERSEDED",
        data={"payment_id": escrow.payment_id},
    )


def create_project_payment(
    db: Session,
    buyer_id: int,
    project_id: int,
    callback_url: str,
    *,
    buyer_ip: str | None = None,
    card_info: CardInfo | None = None,
    store: SettingsStore | None = None,
    gateway: PaymentGateway | None = None,
    transport: httpx.BaseTransport | None = None,
) -> CheckoutResult:
    """Open a pending escrow for a purchase and start the remote payment."""

    project = db.get(Project, project_id)
    if project is None or not project.is_active:
        return _checkout_failure("PROJECT_NOT_FOUND", "Project not found.")

    buyer = db.get(User, buyer_id)
    if buyer is None or not buyer.is_active:
        return _checkout_failure("BUYER_NOT_FOUND", "Buyer not found.")

    if project.owner_id == buyer.id:
        return _checkout_failure("SELF_PURCHASE", "Sellers cannot purchase their own project.")

    amount = to_decimal(project.price)
    if amount <= Decimal("0"):
        return _checkout_failure("INVALID_AMOUNT", "Project price must be positive.")

    open_escrow = _open_escrow(db, project.id, buyer.id)
    if open_escrow is not None and open_escrow.status != EscrowStatus.PENDING:
        return _checkout_failure("DUPLICATE_PURCHASE", "An open purchase already exists for this project.")

    store = store or DbSettingsStore(db)
    config = payment_gateway.get_config(store)
    adapter = _resolve_gateway(db, name=None, store=store, gateway=gateway, transport=transport)

    # Still pending means the buyer left the provider page; a new checkout replaces it.
    if open_escrow is not None:
        _supersede_checkout(db, open_escrow, buyer.id)
    commission, seller_amount = split_commission(amount, config.commission_rate)

    escrow = EscrowTransaction(
        project_id=project.id,
        buyer_id=buyer.id,
        seller_id=project.owner_id,
        amount=amount,
        currency=config.currency,
        commission_rate=config.commission_rate,
        commission_amount=commission,
        seller_amount=seller_amount,
        status=EscrowStatus.PENDING,
        gateway=adapter.name,
    )
    db.add(escrow)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Concurrent purchase rejected",
            extra={"project_id": project_id, "buyer_id": buyer_id},
        )
        return _checkout_failure("DUPLICATE_PURCHASE", "An open purchase already exists for this project.")

    log_audit(
        db,
        actor=f"user:{buyer.id}",
        action="ESCROW_CREATED",
        entity=ENTITY,
        entity_id=escrow.id,
        data={
            "status": escrow.status.value,
            "amount": str(amount),
            "commission_rate": str(config.commission_rate),
            "commission_amount": str(commission),
            "seller_amount": str(seller_amount),
            "gateway": adapter.name,
        },
    )
    db.commit()
    db.refresh(escrow)
    logger.info("Escrow created", extra={"escrow_id": escrow.id, "gateway": adapter.name})

    request = PaymentRequest(
        amount=amount,
        currency=config.currency,
        buyer_id=buyer.id,
        seller_id=project.owner_id,
        project_id=project.id,
        description=project.title,
        buyer_info=_buyer_info(buyer, buyer_ip),
        card_info=card_info,
        callback_url=str(httpx.URL(callback_url).copy_add_param("escrow_id", str(escrow.id))),
    )
    result = adapter.create_payment(request)

    if not result.success:
        _transition(
            db,
            escrow,
            EscrowStatus.FAILED,
            actor=f"psp:{adapter.name}",
            action="ESCROW_PAYMENT_INIT_FAILED",
            data={"error_code": result.error_code},
        )
        return CheckoutResult(**result.model_dump(), escrow_id=escrow.id)

    payment = Payment(
        gateway=adapter.name,
        provider_payment_id=result.payment_id,
        conversation_id=result.conversation_id,
        buyer_id=buyer.id,
        amount=amount,
        currency=config.currency,
        status=PaymentStatus.INITIATED,
    )
    db.add(payment)
    db.flush()
    escrow.payment_id = payment.id
    db.add(escrow)
    log_audit(
        db,
        actor=f"psp:{adapter.name}",
        action="PAYMENT_INITIATED",
        entity="Payment",
        entity_id=payment.id,
        data={"escrow_id": escrow.id, "provider_payment_id": result.payment_id},
    )
    db.commit()
    return CheckoutResult(**result.model_dump(), escrow_id=escrow.id)


def _reference_matches(payment: Payment | None, reference: str, params: Mapping[str, Any]) -> bool:
    if payment is None:
        return False
    if reference in (payment.provider_payment_id, payment.conversation_id):
        return True
    # iyzico may only assign the payment id during 3-D Secure; fall back to the conversation id.
    if payment.provider_payment_id is None:
        conversation_id = params.get("conversationId") or params.get("conversation_id")
        return conversation_id is not None and conversation_id == payment.conversation_id
    return False


def complete_payment(
    db: Session,
    escrow_id: int,
    provider_payment_id: str,
    *,
    callback_params: Mapping[str, Any] | None = None,
    store: SettingsStore | None = None,
    gateway: PaymentGateway | None = None,
    transport: httpx.BaseTransport | None = None,
) -> PaymentResult:
    """Apply a provider callback to a pending escrow.

    Replays are harmless: once an escrow has left ``pending`` the stored
    outcome is reported and nothing changes.
    """

    escrow = db.get(EscrowTransaction, escrow_id)
    if escrow is None:
        return PaymentResult.failure("ESCROW_NOT_FOUND", "Escrow not found.")

    params = dict(callback_params or {})
    adapter = _resolve_gateway(db, name=escrow.gateway, store=store, gateway=gateway, transport=transport)

    verified: PaymentResult | None = None
    if adapter.name == "paytr":
        if not params:
            return PaymentResult.failure(
                "CALLBACK_VERIFICATION_REQUIRED", "PayTR payments complete only through signed callbacks."
            )
        verified = adapter.verify_callback(params)
        if verified.error_code == "INVALID_HASH":
            logger.warning("Rejected unsigned payment callback", extra={"escrow_id": escrow.id})
            return verified
        if str(params.get("merchant_oid")) != provider_payment_id:
            return PaymentResult.failure(
                "PAYMENT_REFERENCE_MISMATCH", "Callback reference does not match the request."
            )

    if escrow.status != EscrowStatus.PENDING:
        logger.info(
            "Duplicate payment callback ignored",
            extra={"escrow_id": escrow.id, "status": escrow.status.value},
        )
        succeeded = escrow.status != EscrowStatus.FAILED
        return PaymentResult(
            success=succeeded,
            payment_id=provider_payment_id,
            status=escrow.status.value,
            message="Payment already processed.",
            error_code=None if succeeded else "PAYMENT_FAILED",
        )

    payment = escrow.payment
    if not _reference_matches(payment, provider_payment_id, params):
        logger.warning("Payment reference mismatch", extra={"escrow_id": escrow.id})
        return PaymentResult.failure(
            "PAYMENT_REFERENCE_MISMATCH", "Payment reference does not belong to this escrow."
        )

    result = verified if verified is not None else adapter.complete_payment(provider_payment_id)
    actor = f"psp:{adapter.name}"

    if result.success:
        payment.status = PaymentStatus.SUCCEEDED
        if payment.provider_payment_id is None:
            payment.provider_payment_id = result.payment_id or provider_payment_id
        db.add(payment)
        _transition(
            db,
            escrow,
            EscrowStatus.HELD,
            actor=actor,
            action="ESCROW_FUNDS_HELD",
            data={"provider_payment_id": provider_payment_id},
        )
    else:
        payment.status = PaymentStatus.FAILED
        db.add(payment)
        _transition(
            db,
            escrow,
            EscrowStatus.FAILED,
            actor=actor,
            action="ESCROW_PAYMENT_FAILED",
            data={"provider_payment_id": provider_payment_id, "error_code": result.error_code},
        )
    return result


def _load(db: Session, escrow_id: int) -> EscrowTransaction | None:
    return db.get(EscrowTransaction, escrow_id)


def release_escrow(db: Session, escrow_id: int, actor: Actor) -> EscrowActionResult:
    """Release held funds to the seller. Buyer or admin only."""

    escrow = _load(db, escrow_id)
    if escrow is None:
        return _action_failure("ESCROW_NOT_FOUND", "Escrow not found.")
    if not (actor.is_admin or actor.user_id == escrow.buyer_id):
        return _action_failure("FORBIDDEN", "Only the buyer or an administrator can release funds.")
    if escrow.status != EscrowStatus.HELD:
        return _action_failure("INVALID_STATE", f"Escrow in status '{escrow.status.value}' cannot be released.", escrow)

    # TODO: trigger the seller payout once the bank transfer integration exists.
    _transition(
        db,
        escrow,
        EscrowStatus.RELEASED,
        actor=actor.label,
        action="ESCROW_RELEASED",
        data={"seller_amount": str(escrow.seller_amount)},
        released_at=utcnow(),
        released_by=actor.user_id,
    )
    return _action_success("Funds released to the seller.", escrow)


def open_dispute(db: Session, escrow_id: int, actor: Actor, reason: str) -> EscrowActionResult:
    escrow = _load(db, escrow_id)
    if escrow is None:
        return _action_failure("ESCROW_NOT_FOUND", "Escrow not found.")
    if not (actor.is_admin or actor.user_id in (escrow.buyer_id, escrow.seller_id)):
        return _action_failure("FORBIDDEN", "Only a party to the purchase can open a dispute.")
    if escrow.status != EscrowStatus.HELD:
        return _action_failure("INVALID_STATE", f"Escrow in status '{escrow.status.value}' cannot be disputed.", escrow)

    _transition(
        db,
        escrow,
        EscrowStatus.DISPUTED,
        actor=actor.label,
        action="ESCROW_DISPUTED",
        data={"reason": reason},
        dispute_reason=reason,
        disputed_at=utcnow(),
        disputed_by=actor.user_id,
    )
    return _action_success("Dispute opened.", escrow)


def refund_payment(
    db: Session,
    escrow_id: int,
    actor: Actor,
    *,
    reason: str | None = None,
    store: SettingsStore | None = None,
    gateway: PaymentGateway | None = None,
    transport: httpx.BaseTransport | None = None,
) -> EscrowActionResult:
    """Refund the full purchase amount to the buyer.

    The escrow only becomes ``refunded`` after the provider confirms.
    """

    escrow = _load(db, escrow_id)
    if escrow is None:
        return _action_failure("ESCROW_NOT_FOUND", "Escrow not found.")
    if not actor.is_admin:
        return _action_failure("FORBIDDEN", "Only an administrator can refund a purchase.")
    if escrow.status not in (EscrowStatus.HELD, EscrowStatus.DISPUTED):
        return _action_failure("INVALID_STATE", f"Escrow in status '{escrow.status.value}' cannot be refunded.", escrow)

    payment = escrow.payment
    reference = payment.reference if payment is not None else None
    if not reference:
        return _action_failure("PAYMENT_REFERENCE_MISSING", "No provider payment is linked to this escrow.", escrow)

    adapter = _resolve_gateway(db, name=escrow.gateway, store=store, gateway=gateway, transport=transport)
    result = adapter.refund(RefundRequest(payment_id=reference, amount=escrow.amount, reason=reason))

    if not result.success:
        log_audit(
            db,
            actor=actor.label,
            action="ESCROW_REFUND_FAILED",
            entity=ENTITY,
            entity_id=escrow.id,
            data={"status": escrow.status.value, "error_code": result.error_code},
        )
        db.commit()
        logger.warning(
            "Escrow refund failed",
            extra={"escrow_id": escrow.id, "error_code": result.error_code},
        )
        return _action_failure(
            result.error_code or "REFUND_FAILED", result.error_message or "Refund failed.", escrow
        )

    payment.status = PaymentStatus.REFUNDED
    db.add(payment)
    _transition(
        db,
        escrow,
        EscrowStatus.REFUNDED,
        actor=actor.label,
        action="ESCROW_REFUNDED",
        data={"amount": str(escrow.amount), "reason": reason, "refund_id": result.refund_id},
        resolved_at=utcnow(),
    )
    return _action_success("Payment refunded to the buyer.", escrow, refund_id=result.refund_id)


def resolve_dispute(
    db: Session,
    escrow_id: int,
    actor: Actor,
    resolution: str,
    *,
    reason: str | None = None,
    store: SettingsStore | None = None,
    gateway: PaymentGateway | None = None,
    transport: httpx.BaseTransport | None = None,
) -> EscrowActionResult:
    """Close a dispute by releasing to the seller or refunding the buyer."""

    escrow = _load(db, escrow_id)
    if escrow is None:
        return _action_failure("ESCROW_NOT_FOUND", "Escrow not found.")
    if not actor.is_admin:
        return _action_failure("FORBIDDEN", "Only an administrator can resolve a dispute.")
    if escrow.status != EscrowStatus.DISPUTED:
        return _action_failure("INVALID_STATE", "Only disputed escrows can be resolved.", escrow)

    if resolution == "refund":
        return refund_payment(
            db, escrow_id, actor, reason=reason, store=store, gateway=gateway, transport=transport
        )
    if resolution != "release":
        return _action_failure("INVALID_RESOLUTION", f"Unknown resolution '{resolution}'.", escrow)

    now = utcnow()
    _transition(
        db,
        escrow,
        EscrowStatus.RELEASED,
        actor=actor.label,
        action="ESCROW_DISPUTE_RESOLVED",
        data={"resolution": resolution, "reason": reason},
        released_at=now,
        released_by=actor.user_id,
        resolved_at=now,
    )
    return _action_success("Dispute resolved in favour of the seller.", escrow)


def get_escrow_for_actor(db: Session, escrow_id: int, actor: Actor) -> EscrowActionResult:
    escrow = _load(db, escrow_id)
    if escrow is None:
        return _action_failure("ESCROW_NOT_FOUND", "Escrow not found.")
    if not (actor.is_admin or actor.user_id in (escrow.buyer_id, escrow.seller_id)):
        return _action_failure("FORBIDDEN", "Not a party to this purchase.")
    return _action_success("OK", escrow)


def find_escrow_by_reference(db: Session, reference: str) -> EscrowTransaction | None:
    """Find the escrow whose payment carries ``reference`` (provider id or conversation id)."""

    if not reference:
        return None
    stmt = (
        select(EscrowTransaction)
        .join(Payment, EscrowTransaction.payment_id == Payment.id)
        .where(or_(Payment.provider_payment_id == reference, Payment.conversation_id == reference))
        .order_by(EscrowTransaction.id.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


def record_callback_event(
    db: Session,
    *,
    provider: str,
    reference: str | None,
    escrow_id: int | None,
    outcome: str,
    params: Mapping[str, Any],
) -> PaymentCallbackEvent:
    """Journal an inbound provider callback with its signature and PII masked."""

    event = PaymentCallbackEvent(
        provider=provider,
        reference=reference,
        escrow_id=escrow_id,
        status=str(params.get("status")) if params.get("status") is not None else None,
        outcome=outcome,
        raw_json=sanitize_payload_for_audit(dict(params)),
        received_at=utcnow(),
    )
    db.add(event)
    db.commit()
    logger.info(
        "Payment callback recorded",
        extra={"provider": provider, "escrow_id": escrow_id, "outcome": outcome},
    )
    return event


__all__ = [
    "complete_payment",
    "record_callback_event",
    "create_project_payment",
    "find_escrow_by_reference",
    "get_escrow_for_actor",
    "open_dispute",
    "refund_payment",
    "release_escrow",
    "resolve_dispute",
]
