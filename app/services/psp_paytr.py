"""PayTR adapter: iFrame token checkout, signed callbacks and refunds."""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any, Mapping

import httpx

from app.schemas.payment import PaymentRequest, PaymentResult, RefundRequest, RefundResult
from app.schemas.payment_settings import PayTRConfig
from app.services import psp_http
from app.services.psp_http import ProviderCallError
from app.utils.money import to_minor_units

logger = logging.getLogger(__name__)

NO_INSTALLMENT = "1"
MAX_INSTALLMENT = "0"


class PayTRGateway:
    """Talks to the PayTR merchant API. Never raises; failures come back as results."""

    name = "paytr"

    def __init__(
        self,
        config: PayTRConfig,
        *,
        timeout: float = 12.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._transport = transport

    def _sign(self, message: str) -> str:
        digest = hmac.new(
            self.config.merchant_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    @staticmethod
    def _currency(currency: str) -> str:
        return "TL" if currency == "TRY" else currency

    def request_token(
        self,
        *,
        user_ip: str,
        merchant_oid: str,
        email: str,
        payment_amount: str,
        user_basket: str,
        currency: str,
        test_mode: str,
    ) -> str:
        """Sign a get-token request. Field order is fixed by PayTR."""

        message = "".join(
            [
                self.config.merchant_id,
                user_ip,
                merchant_oid,
                email,
                payment_amount,
                user_basket,
                NO_INSTALLMENT,
                MAX_INSTALLMENT,
                currency,
                test_mode,
                self.config.merchant_salt,
            ]
        )
        return self._sign(message)

    def callback_hash(self, merchant_oid: str, status: str, total_amount: str) -> str:
        return self._sign(merchant_oid + self.config.merchant_salt + status + total_amount)

    def _post(self, path: str, form: dict[str, str]) -> dict[str, Any]:
        return psp_http.post(
            provider=self.name,
            base_url=self.config.base_url,
            path=path,
            timeout=self.timeout,
            transport=self._transport,
            form=form,
        )

    def create_payment(self, request: PaymentRequest) -> PaymentResult:
        buyer = request.buyer_info
        # PayTR only accepts alphanumeric order ids.
        merchant_oid = f"MP{int(time.time() * 1000)}{secrets.token_hex(3)}"
        basket = json.dumps([[request.description, f"{request.amount:.2f}", 1]], separators=(",", ":"))
        user_basket = base64.b64encode(basket.encode("utf-8")).decode("ascii")
        payment_amount = str(to_minor_units(request.amount))
        currency = self._currency(request.currency)
        test_mode = "1" if self.config.test_mode else "0"
        user_ip = buyer.ip or "127.0.0.1"

        token = self.request_token(
            user_ip=user_ip,
            merchant_oid=merchant_oid,
            email=buyer.email,
            payment_amount=payment_amount,
            user_basket=user_basket,
            currency=currency,
            test_mode=test_mode,
        )
        callback = httpx.URL(request.callback_url)
        form = {
            "merchant_id": self.config.merchant_id,
            "user_ip": user_ip,
            "merchant_oid": merchant_oid,
            "email": buyer.email,
            "payment_amount": payment_amount,
            "paytr_token": token,
            "user_basket": user_basket,
            "debug_on": "0",
            "no_installment": NO_INSTALLMENT,
            "max_installment": MAX_INSTALLMENT,
            "user_name": f"{buyer.name} {buyer.surname}".strip(),
            "user_address": buyer.address or "Istanbul",
            "user_phone": buyer.phone or "05000000000",
            "merchant_ok_url": str(callback.copy_add_param("status", "success")),
            "merchant_fail_url": str(callback.copy_add_param("status", "fail")),
            "timeout_limit": "30",
            "currency": currency,
            "test_mode": test_mode,
            "lang": "tr",
        }

        try:
            data = self._post("/odeme/api/get-token", form)
        except ProviderCallError as exc:
            logger.warning(
                "PayTR token request failed",
                extra={"merchant_oid": merchant_oid, "error_code": exc.code},
            )
            return PaymentResult.failure(exc.code, exc.message, conversation_id=merchant_oid)

        if data.get("status") != "success" or not data.get("token"):
            logger.info("PayTR rejected token request", extra={"merchant_oid": merchant_oid})
            return PaymentResult.failure(
                "PAYTR_ERROR",
                data.get("reason") or "PayTR could not start the payment.",
                conversation_id=merchant_oid,
            )

        logger.info("PayTR payment initialised", extra={"merchant_oid": merchant_oid})
        return PaymentResult(
            success=True,
            payment_id=merchant_oid,
            conversation_id=merchant_oid,
            status="pending",
            redirect_url=f"{self.config.base_url.rstrip('/')}/odeme/guvenli/{data['token']}",
        )

    def verify_callback(self, params: Mapping[str, Any]) -> PaymentResult:
        """Check the callback signature, then report the payment outcome it carries."""

        merchant_oid = str(params.get("merchant_oid") or "")
        status = str(params.get("status") or "")
        total_amount = str(params.get("total_amount") or "")
        received = str(params.get("hash") or "")

        expected = self.callback_hash(merchant_oid, status, total_amount)
        if not received or not hmac.compare_digest(expected, received):
            logger.warning("PayTR callback signature mismatch", extra={"merchant_oid": merchant_oid})
            return PaymentResult.failure(
                "INVALID_HASH", "Callback verification failed.", payment_id=merchant_oid or None
            )

        succeeded = status == "success"
        return PaymentResult(
            success=succeeded,
            payment_id=merchant_oid,
            status=status,
            message="Payment succeeded." if succeeded else "Payment failed.",
            error_code=None if succeeded else str(params.get("failed_reason_code") or "PAYMENT_FAILED"),
            error_message=None if succeeded else params.get("failed_reason_msg"),
        )

    def complete_payment(self, provider_payment_id: str) -> PaymentResult:
        # PayTR has no server-side completion call; only the signed callback settles a payment.
        return PaymentResult.failure(
            "CALLBACK_VERIFICATION_REQUIRED",
            "PayTR payments complete only through signed callbacks.",
            payment_id=provider_payment_id,
        )

    def refund(self, request: RefundRequest) -> RefundResult:
        return_amount = str(to_minor_units(request.amount))
        token = self._sign(
            self.config.merchant_id + request.payment_id + return_amount + self.config.merchant_salt
        )
        form = {
            "merchant_id": self.config.merchant_id,
            "merchant_oid": request.payment_id,
            "return_amount": return_amount,
            "paytr_token": token,
        }
        try:
            data = self._post("/odeme/iade", form)
        except ProviderCallError as exc:
            logger.warning("PayTR refund failed", extra={"merchant_oid": request.payment_id, "error_code": exc.code})
            return RefundResult.failure(exc.code, exc.message)

        if data.get("status") != "success":
            return RefundResult.failure("PAYTR_ERROR", data.get("err_msg") or "PayTR rejected the refund.")
        return RefundResult(success=True, refund_id=request.payment_id, message="Refund completed.")


__all__ = ["PayTRGateway"]
