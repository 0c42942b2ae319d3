"""
Tests for payment session creation (route + gateway clients).
"""
import json

import httpx
import pytest
from httpx import AsyncClient

from templegiving.gateway import (
    CashfreeGateway, GatewayError, DUPLICATE_ORDER_MSG, AUTH_FAILED_MSG,
)
from templegiving.model.donations import get_donation


def session_body(order_id="donation_1700000000000_abc123", **extra):
    body = {
        "order_id": order_id,
        "order_amount": 501,
        "order_currency": "INR",
        "customer_details": {
            "customer_id": "customer_919876543210",
            "customer_name": "Test Donor",
            "customer_email": "donor@example.com",
            "customer_phone": "+919876543210",
        },
    }
    body.update(extra)
    return body


def cashfree(handler) -> CashfreeGateway:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CashfreeGateway(http, app_id="app-id", secret_key="secret",
                           base_url="https://sandbox.cashfree.com")


class TestCreateSessionRoute:

    @pytest.mark.asyncio
    async def test_fresh_order_returns_session(self, client: AsyncClient):
        response = await client.post("/api/payment/create-session",
                                     json=session_body())
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["payment_session_id"]
        assert data["data"]["order_id"] == "donation_1700000000000_abc123"
        assert data["data"]["payment_url"].startswith("/mockpay/")

    @pytest.mark.asyncio
    async def test_reused_order_id_conflicts(self, client: AsyncClient):
        first = await client.post("/api/payment/create-session",
                                  json=session_body())
        assert first.status_code == 200
        second = await client.post("/api/payment/create-session",
                                   json=session_body())
        assert second.status_code == 409
        assert second.json() == {"success": False,
                                 "error": DUPLICATE_ORDER_MSG}

    @pytest.mark.asyncio
    async def test_validation_error_lists_fields(self, client: AsyncClient):
        response = await client.post(
            "/api/payment/create-session",
            json=session_body(order_id="bad id!", order_amount=0),
        )
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Validation error"
        fields = {d["field"] for d in data["details"]}
        assert "order_id" in fields
        assert "order_amount" in fields

    @pytest.mark.asyncio
    async def test_invalid_customer_email(self, client: AsyncClient):
        body = session_body()
        body["customer_details"]["customer_email"] = "nope"
        response = await client.post("/api/payment/create-session",
                                     json=body)
        assert response.status_code == 400
        fields = {d["field"] for d in response.json()["details"]}
        assert "customer_details.customer_email" in fields

    @pytest.mark.asyncio
    async def test_default_urls(self, client: AsyncClient, gateway):
        await client.post("/api/payment/create-session",
                          json=session_body(order_id="ord_urls"))
        meta = gateway.orders["ord_urls"]["order_meta"]
        assert meta["return_url"].endswith(
            "/donate/success?order_id=ord_urls"
        )
        assert meta["notify_url"].endswith("/api/webhook/cashfree")

    @pytest.mark.asyncio
    async def test_links_gateway_order_to_donation(
        self, client: AsyncClient, db_session, pending_donation
    ):
        response = await client.post(
            "/api/payment/create-session",
            json=session_body(order_id=pending_donation.id),
        )
        assert response.status_code == 200
        found = await get_donation(db_session, pending_donation.id,
                                   fresh=True)
        assert found.value.cashfree_order_id == \
            response.json()["data"]["cf_order_id"]


class TestCashfreeClient:

    @pytest.mark.asyncio
    async def test_create_order_sends_credentials(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "cf_order_id": 2149460581,
                "order_id": "ord_1",
                "payment_session_id": "session_abc",
                "order_status": "ACTIVE",
            })

        gw = cashfree(handler)
        out = await gw.create_order({"order_id": "ord_1",
                                     "order_amount": 10})
        assert seen["url"] == "https://sandbox.cashfree.com/pg/orders"
        assert seen["headers"]["x-client-id"] == "app-id"
        assert seen["headers"]["x-client-secret"] == "secret"
        assert seen["headers"]["x-api-version"] == "2023-08-01"
        assert seen["body"]["order_id"] == "ord_1"
        assert out["payment_session_id"] == "session_abc"
        assert out["cf_order_id"] == "2149460581"

    @pytest.mark.asyncio
    async def test_conflict_maps_to_duplicate_message(self):
        gw = cashfree(lambda r: httpx.Response(
            409, json={"message": "order with same id is already present"}
        ))
        with pytest.raises(GatewayError) as exc:
            await gw.create_order({"order_id": "ord_1", "order_amount": 10})
        assert exc.value.status == 409
        assert exc.value.message == DUPLICATE_ORDER_MSG

    @pytest.mark.asyncio
    async def test_bad_request_keeps_gateway_message(self):
        gw = cashfree(lambda r: httpx.Response(400, json={
            "message": "order_amount : must be greater than 0",
            "code": "order_amount_invalid",
        }))
        with pytest.raises(GatewayError) as exc:
            await gw.create_order({"order_id": "ord_1", "order_amount": 0})
        assert exc.value.status == 400
        assert exc.value.message == "order_amount : must be greater than 0"
        assert exc.value.details["code"] == "order_amount_invalid"

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        gw = cashfree(lambda r: httpx.Response(401, json={"message": "x"}))
        with pytest.raises(GatewayError) as exc:
            await gw.create_order({"order_id": "ord_1", "order_amount": 1})
        assert exc.value.status == 401
        assert exc.value.message == AUTH_FAILED_MSG

    @pytest.mark.asyncio
    async def test_other_status_without_message(self):
        gw = cashfree(lambda r: httpx.Response(422, json={}))
        with pytest.raises(GatewayError) as exc:
            await gw.create_order({"order_id": "ord_1", "order_amount": 1})
        assert exc.value.status == 422
        assert exc.value.message == \
            "HTTP 422: Failed to create payment session"

    @pytest.mark.asyncio
    async def test_transport_error_is_500(self):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        gw = cashfree(handler)
        with pytest.raises(GatewayError) as exc:
            await gw.create_order({"order_id": "ord_1", "order_amount": 1})
        assert exc.value.status == 500

    @pytest.mark.asyncio
    async def test_order_pay_posts_session(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"action": "link",
                                             "data": {"url": "https://x"}})

        gw = cashfree(handler)
        out = await gw.order_pay("session_abc", {"upi": {"channel": "link"}})
        assert seen["path"] == "/pg/orders/sessions"
        assert seen["body"]["payment_session_id"] == "session_abc"
        assert out["action"] == "link"
