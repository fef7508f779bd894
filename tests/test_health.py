import pytest


@pytest.mark.anyio("asyncio")
async def test_healthcheck(client):
    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] in {"ok", "degraded"}
    assert payload["env"] == "test"
    assert payload.get("db_status") in {"ok", "error"}
    assert payload.get("migrations_status") in {"up_to_date", "out_of_date", "unknown"}
    assert isinstance(payload.get("db_ok"), bool)
    assert isinstance(payload.get("migrations_ok"), bool)
    assert isinstance(payload["payment_gateway_configured"], bool)


@pytest.mark.anyio("asyncio")
async def test_health_reports_gateway_flags_without_credentials(client):
    response = await client.get("/health")
    payload = response.json()
    gateways = payload["payment_gateways"]
    assert gateways is None or set(gateways) == {"iyzico", "paytr"}
    if gateways is not None:
        assert all(isinstance(flag, bool) for flag in gateways.values())


@pytest.mark.anyio("asyncio")
async def test_health_degrades_on_db_failure(monkeypatch, client):
    class BrokenEngine:
        def connect(self):  # pragma: no cover - simple stub
            raise RuntimeError("DB down")

    monkeypatch.setattr("app.routers.health.get_engine", lambda: BrokenEngine())

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
    assert payload["migrations_status"] == "unknown"
    assert payload["db_ok"] is False
    assert payload["migrations_ok"] is False
    assert payload["payment_gateways"] is None
    assert payload["payment_gateway_configured"] is False
