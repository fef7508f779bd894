import base64
import hashlib
import hmac

import httpx
import pytest
from sqlalchemy import select

from app.models import EscrowStatus, EscrowTransaction, PaymentCallbackEvent
from app.models.api_key import ApiScope
from app.schemas.payment import PaymentResult
from app.services import payment_gateway
from app.services.psp_paytr import PayTRGateway
from app.services.settings_store import DbSettingsStore

CALLBACK_URL = "https://api.example.com/payments/callback"


@pytest.fixture
def shop(make_user, make_project, make_api_key, admin_headers):
    seller = make_user("seller")
    buyer = make_user("buyer")
    project = make_project(seller, price="1000.00")
    return {
        "seller": seller,
        "buyer": buyer,
        "project": project,
        "buyer_headers": make_api_key(buyer, ApiScope.user),
        "seller_headers": make_api_key(seller, ApiScope.user),
        "admin_headers": admin_headers,
    }


@pytest.fixture
def use_fake_gateway(monkeypatch, fake_gateway):
    monkeypatch.setattr(payment_gateway, "create_gateway", lambda *args, **kwargs: fake_gateway)
    return fake_gateway


@pytest.fixture
def paytr_sandbox(monkeypatch, db_session, admin_user):
    """Real PayTR adapter against an in-process provider that hands out tokens."""

    payment_gateway.update_settings(
        DbSettingsStore(db_session),
        {
            "gateway": "paytr",
            "paytr_merchant_id": "123456",
            "paytr_merchant_key": "merchant-key",
            "paytr_merchant_salt": "merchant-salt",
        },
        actor_id=admin_user.id,
    )
    db_session.commit()

    provider = httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "success", "token": "tok"}))

    class SandboxPayTR(PayTRGateway):
        def __init__(self, config, *, timeout=12.0, transport=None):
            super().__init__(config, timeout=timeout, transport=provider)

    monkeypatch.setattr(payment_gateway, "PayTRGateway", SandboxPayTR)


def _paytr_hash(merchant_oid: str, status: str, total_amount: str) -> str:
    message = merchant_oid + "merchant-salt" + status + total_amount
    digest = hmac.new(b"merchant-key", message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


async def _checkout(client, shop):
    return await client.post(
        "/payments/checkout",
        json={"project_id": shop["project"].id, "callback_url": CALLBACK_URL},
        headers=shop["buyer_headers"],
    )


@pytest.mark.anyio("asyncio")
async def test_checkout_returns_provider_next_step(client, shop, use_fake_gateway, db_session):
    response = await _checkout(client, shop)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["payment_id"] == "pay-1"
    assert body["three_ds_html_content"] == "<form></form>"

    escrow = db_session.get(EscrowTransaction, body["escrow_id"])
    assert escrow.status == EscrowStatus.PENDING
    assert escrow.buyer_id == shop["buyer"].id

    await client.post(f"/payments/callback?escrow_id={escrow.id}", data={"paymentId": "pay-1"})
    duplicate = await _checkout(client, shop)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "DUPLICATE_PURCHASE"


@pytest.mark.anyio("asyncio")
async def test_checkout_without_gateway_configuration(client, shop):
    response = await _checkout(client, shop)
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "PAYMENT_GATEWAY_NOT_CONFIGURED"


@pytest.mark.anyio("asyncio")
async def test_checkout_own_project_is_rejected(client, shop, use_fake_gateway):
    response = await client.post(
        "/payments/checkout",
        json={"project_id": shop["project"].id, "callback_url": CALLBACK_URL},
        headers=shop["seller_headers"],
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "SELF_PURCHASE"


@pytest.mark.anyio("asyncio")
async def test_checkout_requires_api_key(client, shop):
    response = await client.post(
        "/payments/checkout",
        json={"project_id": shop["project"].id, "callback_url": CALLBACK_URL},
    )
    assert response.status_code == 401


@pytest.mark.anyio("asyncio")
async def test_paytr_signed_callback_holds_funds(client, shop, paytr_sandbox, db_session):
    checkout = await _checkout(client, shop)
    assert checkout.status_code == 201
    body = checkout.json()
    assert body["redirect_url"] == "https://www.paytr.com/odeme/guvenli/tok"
    merchant_oid = body["payment_id"]

    form = {
        "merchant_oid": merchant_oid,
        "status": "success",
        "total_amount": "100000",
        "hash": _paytr_hash(merchant_oid, "success", "100000"),
    }
    response = await client.post("/payments/callback", data=form)
    assert response.status_code == 200
    assert response.text == "OK"

    db_session.expire_all()
    escrow = db_session.get(EscrowTransaction, body["escrow_id"])
    assert escrow.status == EscrowStatus.HELD

    replay = await client.post("/payments/callback", data=form)
    assert replay.text == "OK"

    outcomes = list(
        db_session.scalars(
            select(PaymentCallbackEvent.outcome)
            .where(PaymentCallbackEvent.escrow_id == escrow.id)
            .order_by(PaymentCallbackEvent.id)
        )
    )
    assert outcomes == ["accepted", "duplicate"]
    event = db_session.scalars(select(PaymentCallbackEvent).where(PaymentCallbackEvent.escrow_id == escrow.id)).first()
    assert event.raw_json["hash"] == "***"


@pytest.mark.anyio("asyncio")
async def test_paytr_tampered_callback_is_refused(client, shop, paytr_sandbox, db_session):
    checkout = await _checkout(client, shop)
    body = checkout.json()
    merchant_oid = body["payment_id"]

    form = {
        "merchant_oid": merchant_oid,
        "status": "success",
        "total_amount": "1",
        "hash": _paytr_hash(merchant_oid, "success", "100000"),
    }
    response = await client.post("/payments/callback", data=form)
    assert response.status_code == 400
    assert response.text == "FAIL"

    db_session.expire_all()
    assert db_session.get(EscrowTransaction, body["escrow_id"]).status == EscrowStatus.PENDING


@pytest.mark.anyio("asyncio")
async def test_paytr_callback_for_unknown_order(client, paytr_sandbox):
    form = {
        "merchant_oid": "MPdoesnotexist",
        "status": "success",
        "total_amount": "100",
        "hash": _paytr_hash("MPdoesnotexist", "success", "100"),
    }
    response = await client.post("/payments/callback", data=form)
    assert response.status_code == 400
    assert response.text == "FAIL"


@pytest.mark.anyio("asyncio")
async def test_iyzico_callback_redirects_to_frontend(client, shop, use_fake_gateway, db_session):
    checkout = await _checkout(client, shop)
    escrow_id = checkout.json()["escrow_id"]

    response = await client.post(
        f"/payments/callback?escrow_id={escrow_id}",
        data={"paymentId": "pay-1", "conversationId": "conv-1", "status": "success"},
    )
    assert response.status_code == 302
    assert response.headers["location"] == f"https://mimariproje.test/satin-al/basarili?escrow_id={escrow_id}"

    db_session.expire_all()
    assert db_session.get(EscrowTransaction, escrow_id).status == EscrowStatus.HELD


@pytest.mark.anyio("asyncio")
async def test_iyzico_failed_payment_redirects_to_failure_page(client, shop, use_fake_gateway, db_session):
    use_fake_gateway.complete_result = PaymentResult.failure("6", "3DS failed")
    checkout = await _checkout(client, shop)
    escrow_id = checkout.json()["escrow_id"]

    response = await client.post(
        f"/payments/callback?escrow_id={escrow_id}",
        data={"paymentId": "pay-1", "conversationId": "conv-1", "status": "failure"},
    )
    assert response.status_code == 302
    assert response.headers["location"].startswith("https://mimariproje.test/satin-al/hata")

    db_session.expire_all()
    assert db_session.get(EscrowTransaction, escrow_id).status == EscrowStatus.FAILED


@pytest.mark.anyio("asyncio")
async def test_browser_return_redirects_without_changing_state(client, shop, use_fake_gateway, db_session):
    checkout = await _checkout(client, shop)
    escrow_id = checkout.json()["escrow_id"]

    back = await client.get(f"/payments/callback?escrow_id={escrow_id}&status=success")
    assert back.status_code == 302
    assert back.headers["location"] == f"https://mimariproje.test/satin-al/basarili?escrow_id={escrow_id}"

    cancelled = await client.get(f"/payments/callback?escrow_id={escrow_id}&status=failed")
    assert cancelled.headers["location"].startswith("https://mimariproje.test/satin-al/hata")

    unknown = await client.get("/payments/callback?escrow_id=999999&status=success")
    assert unknown.headers["location"].startswith("https://mimariproje.test/satin-al/hata")

    db_session.expire_all()
    assert db_session.get(EscrowTransaction, escrow_id).status == EscrowStatus.PENDING
    assert use_fake_gateway.completed == []
    assert db_session.scalars(
        select(PaymentCallbackEvent).where(PaymentCallbackEvent.escrow_id == escrow_id)
    ).first() is None


@pytest.mark.anyio("asyncio")
async def test_iyzico_return_by_get_completes_payment(client, shop, use_fake_gateway, db_session):
    checkout = await _checkout(client, shop)
    escrow_id = checkout.json()["escrow_id"]

    response = await client.get(f"/payments/callback?escrow_id={escrow_id}&paymentId=pay-1&conversationId=conv-1")
    assert response.status_code == 302
    assert response.headers["location"] == f"https://mimariproje.test/satin-al/basarili?escrow_id={escrow_id}"
    assert use_fake_gateway.completed == ["pay-1"]

    db_session.expire_all()
    assert db_session.get(EscrowTransaction, escrow_id).status == EscrowStatus.HELD


@pytest.mark.anyio("asyncio")
async def test_paytr_tampered_get_callback_is_refused(client, shop, paytr_sandbox, db_session):
    body = (await _checkout(client, shop)).json()
    merchant_oid = body["payment_id"]
    params = {
        "merchant_oid": merchant_oid,
        "status": "success",
        "total_amount": "1",
        "hash": _paytr_hash(merchant_oid, "success", "100000"),
    }
    response = await client.get("/payments/callback", params=params)
    assert response.status_code == 400
    assert response.text == "FAIL"

    db_session.expire_all()
    assert db_session.get(EscrowTransaction, body["escrow_id"]).status == EscrowStatus.PENDING


@pytest.mark.anyio("asyncio")
async def test_routing_errors_use_error_envelope(client):
    wrong_method = await client.delete("/payments/callback")
    assert wrong_method.status_code == 405
    assert wrong_method.json()["error"]["code"] == "HTTP_ERROR"

    missing = await client.get("/payments/no-such-route")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "HTTP_ERROR"


@pytest.mark.anyio("asyncio")
async def test_abandoned_checkout_can_be_restarted(client, shop, use_fake_gateway, db_session):
    abandoned = (await _checkout(client, shop)).json()["escrow_id"]

    retry = await _checkout(client, shop)
    assert retry.status_code == 201
    assert retry.json()["escrow_id"] != abandoned

    db_session.expire_all()
    assert db_session.get(EscrowTransaction, abandoned).status == EscrowStatus.FAILED
    assert db_session.get(EscrowTransaction, retry.json()["escrow_id"]).status == EscrowStatus.PENDING


@pytest.mark.anyio("asyncio")
async def test_unrecognised_callback_is_rejected(client):
    response = await client.post("/payments/callback", json={"hello": "world"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_CALLBACK"


async def _held_escrow_id(client, shop) -> int:
    checkout = await _checkout(client, shop)
    escrow_id = checkout.json()["escrow_id"]
    await client.post(f"/payments/callback?escrow_id={escrow_id}", data={"paymentId": "pay-1"})
    return escrow_id


@pytest.mark.anyio("asyncio")
async def test_release_is_single_shot(client, shop, use_fake_gateway):
    escrow_id = await _held_escrow_id(client, shop)

    by_seller = await client.post(f"/payments/escrow/{escrow_id}/release", headers=shop["seller_headers"])
    assert by_seller.status_code == 403

    first = await client.post(f"/payments/escrow/{escrow_id}/release", headers=shop["buyer_headers"])
    assert first.status_code == 200
    assert first.json()["escrow"]["status"] == "released"

    second = await client.post(f"/payments/escrow/{escrow_id}/release", headers=shop["buyer_headers"])
    assert second.status_code == 400
    assert second.json()["error"]["code"] == "INVALID_STATE"


@pytest.mark.anyio("asyncio")
async def test_dispute_and_admin_refund(client, shop, use_fake_gateway):
    escrow_id = await _held_escrow_id(client, shop)

    dispute = await client.post(
        f"/payments/escrow/{escrow_id}/dispute",
        json={"reason": "Drawings were not delivered"},
        headers=shop["buyer_headers"],
    )
    assert dispute.status_code == 200
    assert dispute.json()["escrow"]["status"] == "disputed"

    not_admin = await client.post(f"/payments/escrow/{escrow_id}/refund", headers=shop["buyer_headers"])
    assert not_admin.status_code == 403

    refund = await client.post(
        f"/payments/escrow/{escrow_id}/resolve",
        json={"resolution": "refund", "reason": "buyer_request"},
        headers=shop["admin_headers"],
    )
    assert refund.status_code == 200
    assert refund.json()["escrow"]["status"] == "refunded"
    assert refund.json()["refund_id"] == "refund-1"
    assert use_fake_gateway.refunds[0].reason == "buyer_request"


@pytest.mark.anyio("asyncio")
async def test_escrow_read_is_limited_to_parties(client, shop, use_fake_gateway, make_user, make_api_key):
    checkout = await _checkout(client, shop)
    escrow_id = checkout.json()["escrow_id"]

    seller_view = await client.get(f"/payments/escrow/{escrow_id}", headers=shop["seller_headers"])
    assert seller_view.status_code == 200
    assert seller_view.json()["commission_amount"] == "100.00"

    stranger = make_api_key(make_user("stranger"), ApiScope.user)
    forbidden = await client.get(f"/payments/escrow/{escrow_id}", headers=stranger)
    assert forbidden.status_code == 403

    missing = await client.get("/payments/escrow/999999", headers=shop["admin_headers"])
    assert missing.status_code == 404
