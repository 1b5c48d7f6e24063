import httpx
import pytest
import pytest_asyncio

from api.dependencies import get_services
from application.dtos.payments import WebhookEvent
from infrastructure.composition import Services
from infrastructure.database import build_session_factory
from main import app


@pytest_asyncio.fixture
async def client(engine, gateway, notifier):
    services = Services(build_session_factory(engine), gateway=gateway, notifier=notifier)
    app.dependency_overrides[get_services] = lambda: services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_refund_flow_and_error_envelope(client, seed):
    order = await seed.order(10000)
    resp = await client.post(
        f"/api/v1/orders/{order.id}/refunds",
        json={"amount": 3000, "reason_code": "requested_by_customer"},
        headers={"X-Actor": "support@example.com"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 0
    assert body["data"]["payment_status"] == "partially_refunded"
    assert body["data"]["refundable_amount"] == 7000

    resp = await client.post(f"/api/v1/orders/{order.id}/refunds", json={"amount": 8000})
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == 20100
    assert body["error"]["type"] == "EXCEEDS_REFUNDABLE"
    assert body["error"]["request_id"] == resp.headers["X-Request-ID"]

    resp = await client.get(f"/api/v1/orders/{order.id}/refunds")
    summary = resp.json()["data"]["summary"]
    assert summary["refunded_amount"] == 3000
    assert len(resp.json()["data"]["refunds"]) == 1


@pytest.mark.asyncio
async def test_unknown_order_is_404(client):
    resp = await client.post("/api/v1/orders/nope/refunds", json={"amount": 100})
    assert resp.status_code == 404
    assert resp.json()["error"]["type"] == "ORDER_NOT_FOUND"


@pytest.mark.asyncio
async def test_click_sets_attribution_cookie_once(client, seed):
    affiliate = await seed.affiliate("ALICE")
    resp = await client.post("/api/v1/affiliates/clicks", json={"affiliate_code": "alice"})
    assert resp.status_code == 200
    assert resp.json()["data"]["affiliate_id"] == affiliate.id
    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith("affiliate_ref=")
    assert "HttpOnly" in set_cookie

    # existing valid cookie: first click wins, nothing re-issued
    resp = await client.post("/api/v1/affiliates/clicks", json={"affiliate_code": "ALICE"})
    assert resp.json()["data"]["cookie_issued"] is False

    resp = await client.get(f"/api/v1/affiliates/{affiliate.id}/stats")
    assert resp.json()["data"]["total_clicks"] == 2


@pytest.mark.asyncio
async def test_invalid_click_code_rejected(client):
    resp = await client.post("/api/v1/affiliates/clicks", json={"affiliate_code": "GHOST"})
    assert resp.status_code == 404
    assert resp.json()["code"] == 20200


@pytest.mark.asyncio
async def test_single_use_invite_over_http(client, seed):
    first = await seed.affiliate("ALICE")
    second = await seed.affiliate("BOB")
    resp = await client.post("/api/v1/invites", json={"max_uses": 1, "invite_code": "welcome1"})
    invite = resp.json()["data"]
    assert invite["invite_code"] == "WELCOME1"

    ok = await client.post(f"/api/v1/invites/{invite['id']}/redeem", json={"affiliate_id": first.id})
    assert ok.json()["data"]["success"] is True
    spent = await client.post(f"/api/v1/invites/{invite['id']}/redeem", json={"affiliate_id": second.id})
    assert spent.status_code == 200
    assert spent.json()["data"]["outcome"] == "exhausted"


@pytest.mark.asyncio
async def test_webhook_duplicate_acknowledged(client, gateway):
    event = WebhookEvent(id="evt_1", type="customer.created", provider="stub", data={})
    gateway.events.extend([event, event])
    headers = {"content-type": "application/json"}
    first = await client.post("/api/v1/webhooks/stripe", content=b"{}", headers=headers)
    again = await client.post("/api/v1/webhooks/stripe", content=b"{}", headers=headers)
    assert first.json()["data"] == {"duplicate": False}
    assert again.json()["data"] == {"duplicate": True}

    resp = await client.post("/api/v1/webhooks/stripe", content=b"x", headers={"content-type": "text/plain"})
    assert resp.status_code == 415


@pytest.mark.asyncio
async def test_validation_error_envelope(client):
    resp = await client.post("/api/v1/orders/refunds/r1/resolve", json={"outcome": "maybe"})
    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "ValidationError"
