"""iyzico adapter: 3-D Secure checkout, completion and refunds."""
from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from typing import Any, Mapping

import httpx

from app.schemas.payment import PaymentRequest, PaymentResult, RefundRequest, RefundResult
from app.schemas.payment_settings import IyzicoConfig
from app.services import psp_http
from app.services.psp_http import ProviderCallError

logger = logging.getLogger(__name__)

_REFUND_REASONS = {"double_payment", "buyer_request", "fraud", "other"}


def _now_ms() -> int:
    return int(time.time() * 1000)


def pki_string(value: Any) -> str:
    """Render a payload the way iyzico hashes it: ``[key=value,key=[...],...]``."""

    if isinstance(value, Mapping):
        parts = [f"{key}={pki_string(item)}" for key, item in value.items() if item is not None]
        return "[" + ",".join(parts) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(pki_string(item) for item in value) + "]"
    return str(value)


class IyzicoGateway:
    """Talks to the iyzico REST API. Never raises; failures come back as results."""

    name = "iyzico"

    def __init__(
        self,
        config: IyzicoConfig,
        *,
        timeout: float = 12.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._transport = transport

    def _auth_headers(self, payload: Mapping[str, Any]) -> dict[str, str]:
        rnd = f"{_now_ms()}{secrets.token_hex(4)}"
        hash_input = self.config.api_key + rnd + self.config.secret_key + pki_string(payload)
        digest = base64.b64encode(hashlib.sha1(hash_input.encode("utf-8")).digest()).decode("ascii")
        return {
            "Authorization": f"IYZWS {self.config.api_key}:{digest}",
            "x-iyzi-rnd": rnd,
            "Accept": "application/json",
        }

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return psp_http.post(
            provider=self.name,
            base_url=self.config.base_url,
            path=path,
            timeout=self.timeout,
            transport=self._transport,
            json_body=payload,
            headers=self._auth_headers(payload),
        )

    def build_payment_payload(self, request: PaymentRequest, conversation_id: str) -> dict[str, Any]:
        buyer = request.buyer_info
        price = str(request.amount)
        city = buyer.city or "Istanbul"
        country = buyer.country or "Turkey"
        address = buyer.address or "Istanbul"
        contact_name = f"{buyer.name} {buyer.surname}".strip()
        reference = request.project_id or _now_ms()

        payload: dict[str, Any] = {
            "locale": "tr",
            "conversationId": conversation_id,
            "price": price,
            "paidPrice": price,
            "currency": request.currency,
            "installment": "1",
            "basketId": f"basket_{reference}",
            "paymentChannel": "WEB",
            "paymentGroup": "PRODUCT",
            "callbackUrl": request.callback_url,
            "buyer": {
                "id": f"buyer_{request.buyer_id}",
                "name": buyer.name,
                "surname": buyer.surname or "-",
                "email": buyer.email,
                "gsmNumber": buyer.phone or "+905000000000",
                # iyzico requires a national id; the marketplace does not collect one.
                "identityNumber": "11111111111",
                "registrationAddress": address,
                "city": city,
                "country": country,
                "ip": buyer.ip or "127.0.0.1",
            },
            "shippingAddress": {
                "contactName": contact_name,
                "city": city,
                "country": country,
                "address": address,
            },
            "billingAddress": {
                "contactName": contact_name,
                "city": city,
                "country": country,
                "address": address,
            },
            "basketItems": [
                {
                    "id": f"item_{reference}",
                    "name": request.description,
                    "category1": "Mimari Proje",
                    "itemType": "VIRTUAL",
                    "price": price,
                }
            ],
        }
        if request.card_info is not None:
            card = request.card_info
            payload["paymentCard"] = {
                "cardHolderName": card.card_holder_name,
                "cardNumber": card.card_number,
                "expireMonth": card.expire_month,
                "expireYear": card.expire_year,
                "cvc": card.cvc,
                "registerCard": "0",
            }
        return payload

    def create_payment(self, request: PaymentRequest) -> PaymentResult:
        conversation_id = f"MP_{_now_ms()}_{secrets.token_hex(3)}"
        payload = self.build_payment_payload(request, conversation_id)
        try:
            data = self._post("/payment/3dsecure/initialize", payload)
        except ProviderCallError as exc:
            logger.warning(
                "iyzico payment initialisation failed",
                extra={"conversation_id": conversation_id, "error_code": exc.code},
            )
            return PaymentResult.failure(exc.code, exc.message, conversation_id=conversation_id)

        if data.get("status") != "success":
            logger.info(
                "iyzico rejected payment initialisation",
                extra={"conversation_id": conversation_id, "error_code": data.get("errorCode")},
            )
            return PaymentResult.failure(
                str(data.get("errorCode") or "IYZICO_ERROR"),
                data.get("errorMessage") or "iyzico rejected the payment.",
                conversation_id=conversation_id,
                status=data.get("status"),
            )

        logger.info("iyzico payment initialised", extra={"conversation_id": conversation_id})
        return PaymentResult(
            success=True,
            payment_id=data.get("paymentId"),
            conversation_id=conversation_id,
            status=data.get("status"),
            three_ds_html_content=data.get("threeDSHtmlContent"),
        )

    def complete_payment(self, provider_payment_id: str) -> PaymentResult:
        payload = {
            "locale": "tr",
            "conversationId": f"complete_{_now_ms()}",
            "paymentId": provider_payment_id,
        }
        try:
            data = self._post("/payment/3dsecure/auth", payload)
        except ProviderCallError as exc:
            logger.warning("iyzico payment completion failed", extra={"error_code": exc.code})
            return PaymentResult.failure(exc.code, exc.message, payment_id=provider_payment_id)

        succeeded = data.get("status") == "success"
        return PaymentResult(
            success=succeeded,
            payment_id=str(data.get("paymentId") or provider_payment_id),
            conversation_id=data.get("conversationId"),
            status=data.get("status"),
            message="Payment completed." if succeeded else data.get("errorMessage"),
            error_code=None if succeeded else str(data.get("errorCode") or "IYZICO_ERROR"),
            error_message=None if succeeded else data.get("errorMessage"),
        )

    def verify_callback(self, params: Mapping[str, Any]) -> PaymentResult:
        """iyzico callbacks are unsigned; the outcome is confirmed with the 3-D Secure auth call."""

        payment_id = params.get("paymentId")
        if not payment_id:
            return PaymentResult.failure("INVALID_CALLBACK", "iyzico callback carries no paymentId.")
        return self.complete_payment(str(payment_id))

    def refund(self, request: RefundRequest) -> RefundResult:
        reason = request.reason if request.reason in _REFUND_REASONS else "other"
        payload = {
            "locale": "tr",
            "conversationId": f"refund_{_now_ms()}",
            "paymentTransactionId": request.payment_id,
            "price": str(request.amount),
            "reason": reason,
            "description": request.reason or "Refund request",
        }
        try:
            data = self._post("/payment/refund", payload)
        except ProviderCallError as exc:
            logger.warning("iyzico refund failed", extra={"error_code": exc.code})
            return RefundResult.failure(exc.code, exc.message)

        if data.get("status") != "success":
            return RefundResult.failure(
                str(data.get("errorCode") or "IYZICO_ERROR"),
                data.get("errorMessage") or "iyzico rejected the refund.",
            )
        return RefundResult(
            success=True,
            refund_id=str(data.get("paymentTransactionId") or request.payment_id),
            message="Refund completed.",
        )


__all__ = ["IyzicoGateway", "pki_string"]
