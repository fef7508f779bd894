import base64
import hashlib
import hmac
import json
from decimal import Decimal
from urllib.parse import parse_qs

import httpx

from app.schemas.payment import BuyerInfo, PaymentRequest, RefundRequest
from app.schemas.payment_settings import PayTRConfig
from app.services.psp_paytr import PayTRGateway

CONFIG = PayTRConfig(
    merchant_id="123456",
    merchant_key="merchant-key",
    merchant_salt="merchant-salt",
    base_url="https://www.paytr.com",
)


def _sign(message: str) -> str:
    digest = hmac.new(b"merchant-key", message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _request(amount: str = "1000.50") -> PaymentRequest:
    return PaymentRequest(
        amount=Decimal(amount),
        buyer_id=2,
        seller_id=1,
        project_id=7,
        description="Villa project",
        buyer_info=BuyerInfo(name="Mehmet", surname="Demir", email="buyer@example.com", ip="10.0.0.1"),
        callback_url="https://api.example.com/payments/callback?escrow_id=5",
    )


def _form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def test_create_payment_signs_token_in_fixed_field_order():
    captured: dict[str, dict[str, str]] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/odeme/api/get-token"
        captured["form"] = _form(request)
        return httpx.Response(200, json={"status": "success", "token": "tok123"})

    gateway = PayTRGateway(CONFIG, transport=httpx.MockTransport(handler))
    result = gateway.create_payment(_request())

    form = captured["form"]
    expected_token = _sign(
        "123456"
        + "10.0.0.1"
        + form["merchant_oid"]
        + "buyer@example.com"
        + "100050"
        + form["user_basket"]
        + "1"
        + "0"
        + "TL"
        + "0"
        + "merchant-salt"
    )
    assert form["paytr_token"] == expected_token
    assert form["payment_amount"] == "100050"
    assert form["currency"] == "TL"
    assert form["test_mode"] == "0"
    assert form["merchant_oid"].isalnum()
    assert json.loads(base64.b64decode(form["user_basket"])) == [["Villa project", "1000.50", 1]]
    assert form["merchant_ok_url"] == "https://api.example.com/payments/callback?escrow_id=5&status=success"

    assert result.success is True
    assert result.status == "pending"
    assert result.payment_id == form["merchant_oid"]
    assert result.redirect_url == "https://www.paytr.com/odeme/guvenli/tok123"


def test_create_payment_provider_rejection_is_returned_not_raised():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"status": "failed", "reason": "merchant_ok_url invalid"})
    )
    result = PayTRGateway(CONFIG, transport=transport).create_payment(_request())
    assert result.success is False
    assert result.error_code == "PAYTR_ERROR"
    assert result.error_message == "merchant_ok_url invalid"


def test_create_payment_timeout_becomes_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    result = PayTRGateway(CONFIG, timeout=0.5, transport=httpx.MockTransport(handler)).create_payment(_request())
    assert result.success is False
    assert result.error_code == "PAYTR_TIMEOUT"


def test_create_payment_non_json_body_becomes_failure():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    result = PayTRGateway(CONFIG, transport=transport).create_payment(_request())
    assert result.success is False
    assert result.error_code == "PAYTR_ERROR"


def _callback(status: str = "success", total_amount: str = "100050") -> dict[str, str]:
    return {
        "merchant_oid": "MP1700000000000abc123",
        "status": status,
        "total_amount": total_amount,
        "hash": _sign("MP1700000000000abc123" + "merchant-salt" + status + total_amount),
    }


def test_verify_callback_accepts_untouched_payload():
    result = PayTRGateway(CONFIG).verify_callback(_callback())
    assert result.success is True
    assert result.payment_id == "MP1700000000000abc123"


def test_verify_callback_reports_failed_payment_with_valid_signature():
    params = _callback(status="failed")
    params["failed_reason_msg"] = "Insufficient funds"
    result = PayTRGateway(CONFIG).verify_callback(params)
    assert result.success is False
    assert result.error_code != "INVALID_HASH"
    assert result.error_message == "Insufficient funds"


def test_verify_callback_rejects_tampered_amount_and_status():
    gateway = PayTRGateway(CONFIG)

    tampered_amount = _callback()
    tampered_amount["total_amount"] = "1"
    assert gateway.verify_callback(tampered_amount).error_code == "INVALID_HASH"

    tampered_status = _callback(status="failed")
    tampered_status["status"] = "success"
    assert gateway.verify_callback(tampered_status).error_code == "INVALID_HASH"

    missing_hash = _callback()
    del missing_hash["hash"]
    assert gateway.verify_callback(missing_hash).error_code == "INVALID_HASH"


def test_refund_sends_signed_minor_unit_amount():
    captured: dict[str, dict[str, str]] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/odeme/iade"
        captured["form"] = _form(request)
        return httpx.Response(200, json={"status": "success"})

    gateway = PayTRGateway(CONFIG, transport=httpx.MockTransport(handler))
    result = gateway.refund(RefundRequest(payment_id="MP1abc", amount=Decimal("1000.00")))

    form = captured["form"]
    assert form["return_amount"] == "100000"
    assert form["paytr_token"] == _sign("123456" + "MP1abc" + "100000" + "merchant-salt")
    assert result.success is True
    assert result.refund_id == "MP1abc"


def test_refund_rejection_carries_provider_message():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"status": "error", "err_msg": "already refunded"})
    )
    result = PayTRGateway(CONFIG, transport=transport).refund(
        RefundRequest(payment_id="MP1abc", amount=Decimal("10.00"))
    )
    assert result.success is False
    assert result.error_message == "already refunded"


def test_complete_payment_requires_signed_callback():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("PayTR completion must not call the provider")

    result = PayTRGateway(CONFIG, transport=httpx.MockTransport(handler)).complete_payment("MP1abc")
    assert result.success is False
    assert result.error_code == "CALLBACK_VERIFICATION_REQUIRED"
