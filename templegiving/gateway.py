from __future__ import annotations
import base64
import hashlib
import hmac
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, TypedDict

import httpx
from fastapi import HTTPException

from .helpers import now_ts, to_iso
from .infra.timings import timeit

log = logging.getLogger(__name__)

WEBHOOK_SUCCESS = "PAYMENT_SUCCESS_WEBHOOK"
WEBHOOK_FAILED = "PAYMENT_FAILED_WEBHOOK"
WEBHOOK_DROPPED = "PAYMENT_USER_DROPPED_WEBHOOK"

DUPLICATE_ORDER_MSG = "Order ID already exists. Please use a different order ID."
AUTH_FAILED_MSG = "Authentication failed. Please check your credentials."
ORDER_NOT_FOUND_MSG = "Order not found. Please check the order ID."


class GatewayError(Exception):
    """Non-2xx answer (or transport failure) from the payment gateway."""

    def __init__(self, status: int, message: str, details: Any = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.details = details


class CreateSessionResult(TypedDict):
    payment_session_id: str
    order_id: str
    cf_order_id: Optional[str]
    payment_url: Optional[str]


# ----------------------------
# Webhook signatures
# ----------------------------
def sign_webhook(secret: str, timestamp: str, payload: bytes) -> str:
    mac = hmac.new(secret.encode(), timestamp.encode() + payload,
                   hashlib.sha256)
    return base64.b64encode(mac.digest()).decode()


def check_webhook_signature(secret: str, payload: bytes,
                            headers: Dict[str, str]) -> bool:
    sig = headers.get("x-webhook-signature")
    ts = headers.get("x-webhook-timestamp", "")
    if not sig or not secret:
        return False
    mac = hmac.new(secret.encode(), ts.encode() + payload, hashlib.sha256)
    b64 = base64.b64encode(mac.digest()).decode()
    # some integrations forward the hex digest instead
    return (hmac.compare_digest(b64, sig)
            or hmac.compare_digest(mac.hexdigest(), sig.lower()))


def parse_webhook(secret: str, payload: bytes,
                  headers: Dict[str, str]) -> dict:
    if not check_webhook_signature(secret, payload, headers):
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        event = json.loads(payload.decode())
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return event


def event_ids(event: dict) -> Tuple[str, Optional[str]]:
    # (order_id, cf_payment_id)
    data = event.get("data") or {}
    order = data.get("order") or {}
    payment = data.get("payment") or {}
    cf_payment_id = payment.get("cf_payment_id")
    return (
        str(order.get("order_id") or ""),
        str(cf_payment_id) if cf_payment_id is not None else None,
    )


# ----------------------------
# Verify helpers
# ----------------------------
def pick_payment(payments: List[dict]) -> Optional[dict]:
    """The successful attempt if there is one, else the latest."""
    for p in payments:
        if p.get("payment_status") == "SUCCESS":
            return p
    return payments[0] if payments else None


def normalize_order(order: dict, payment: Optional[dict] = None) -> dict:
    payment = payment or {}
    method = payment.get("payment_group")
    if method is None and isinstance(payment.get("payment_method"), dict):
        method = next(iter(payment["payment_method"]), None)
    cf_payment_id = payment.get("cf_payment_id")
    return {
        "order_id": order.get("order_id"),
        "cf_order_id": order.get("cf_order_id"),
        "order_status": order.get("order_status"),
        "order_amount": order.get("order_amount"),
        "order_currency": order.get("order_currency"),
        "payment_status": payment.get("payment_status"),
        "payment_id": str(cf_payment_id) if cf_payment_id is not None else None,
        "payment_method": method,
        "payment_time": payment.get("payment_time"),
        "payment_utr": payment.get("bank_reference"),
        "customer_details": order.get("customer_details"),
        "created_at": order.get("created_at"),
    }


# gateway order status -> donation status
ORDER_STATUS_MAP = {
    "PAID": "completed",
    "EXPIRED": "failed",
    "TERMINATED": "failed",
    "CANCELLED": "failed",
}


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    name: str = "cashfree"

    @abstractmethod
    async def create_order(self, order: dict) -> CreateSessionResult: ...

    @abstractmethod
    async def order_pay(self, payment_session_id: str,
                        payment_method: dict) -> dict: ...

    @abstractmethod
    async def get_order(self, order_id: str) -> dict: ...

    @abstractmethod
    async def get_order_payments(self, order_id: str) -> List[dict]: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    async def verify(self, order_id: str) -> dict:
        order = await self.get_order(order_id)
        payment = None
        if order.get("order_status") == "PAID":
            payment = pick_payment(await self.get_order_payments(order_id))
        return normalize_order(order, payment)


# ----------------------------
# Cashfree PG
# ----------------------------
class CashfreeGateway(PaymentAdapter):
    name = "cashfree"

    def __init__(self, http: httpx.AsyncClient, *, app_id: str,
                 secret_key: str, base_url: str,
                 api_version: str = "2023-08-01",
                 webhook_secret: Optional[str] = None) -> None:
        self.http = http
        self.app_id = app_id
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.webhook_secret = webhook_secret or secret_key

    def _headers(self) -> Dict[str, str]:
        return {
            "content-type": "application/json",
            "accept": "application/json",
            "x-client-id": self.app_id,
            "x-client-secret": self.secret_key,
            "x-api-version": self.api_version,
        }

    async def _call(self, method: str, path: str, action: str,
                    body: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with timeit(f"gateway.{action}"):
                resp = await self.http.request(
                    method, url, json=body, headers=self._headers()
                )
        except httpx.HTTPError as e:
            log.error("cashfree %s %s transport error: %s", method, path, e)
            raise GatewayError(500, f"Failed to {action.replace('_', ' ')}")

        if resp.is_success:
            return resp.json()

        try:
            err = resp.json()
        except ValueError:
            err = {}
        message = err.get("message") if isinstance(err, dict) else None
        log.warning("cashfree %s %s -> %d: %s", method, path,
                    resp.status_code, message)
        raise GatewayError(resp.status_code, message or "", err)

    async def create_order(self, order: dict) -> CreateSessionResult:
        try:
            data = await self._call("POST", "/pg/orders",
                                    "create_payment_session", order)
        except GatewayError as e:
            raise _map_error(e, "Failed to create payment session",
                             duplicate=True)
        log.info("cashfree order created: %s (cf_order_id=%s)",
                 data.get("order_id"), data.get("cf_order_id"))
        cf_order_id = data.get("cf_order_id")
        return {
            "payment_session_id": data.get("payment_session_id"),
            "order_id": data.get("order_id") or order["order_id"],
            "cf_order_id": str(cf_order_id) if cf_order_id else None,
            "payment_url": data.get("payment_link"),
        }

    async def order_pay(self, payment_session_id: str,
                        payment_method: dict) -> dict:
        try:
            return await self._call(
                "POST", "/pg/orders/sessions", "process_payment",
                {"payment_session_id": payment_session_id,
                 "payment_method": payment_method},
            )
        except GatewayError as e:
            raise _map_error(e, "Failed to process payment")

    async def get_order(self, order_id: str) -> dict:
        try:
            return await self._call("GET", f"/pg/orders/{order_id}",
                                    "verify_payment")
        except GatewayError as e:
            raise _map_error(e, "Failed to verify payment", not_found=True)

    async def get_order_payments(self, order_id: str) -> List[dict]:
        try:
            data = await self._call("GET", f"/pg/orders/{order_id}/payments",
                                    "verify_payment")
        except GatewayError as e:
            raise _map_error(e, "Failed to verify payment", not_found=True)
        return data if isinstance(data, list) else []

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        return parse_webhook(self.webhook_secret, payload, headers)


def _map_error(e: GatewayError, fallback: str, duplicate: bool = False,
               not_found: bool = False) -> GatewayError:
    if e.status >= 500 and not e.message:
        return GatewayError(e.status, fallback, e.details)
    if duplicate and e.status == 409:
        return GatewayError(409, DUPLICATE_ORDER_MSG, e.details)
    if e.status == 401:
        return GatewayError(401, AUTH_FAILED_MSG, e.details)
    if not_found and e.status == 404:
        return GatewayError(404, ORDER_NOT_FOUND_MSG, e.details)
    return GatewayError(
        e.status, e.message or f"HTTP {e.status}: {fallback}", e.details
    )


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """In-process stand-in for the gateway, used when no app id is set.

    Orders live in memory; the hosted checkout is /mockpay/{psid} and the
    buttons there emit webhooks signed the same way the real gateway signs
    them.
    """

    name = "mockpay"

    def __init__(self, secret: str) -> None:
        self.secret = secret
        self.orders: Dict[str, dict] = {}
        self.sessions: Dict[str, str] = {}
        self.payments: Dict[str, List[dict]] = {}

    async def create_order(self, order: dict) -> CreateSessionResult:
        order_id = order["order_id"]
        if order_id in self.orders:
            raise GatewayError(409, DUPLICATE_ORDER_MSG)
        psid = f"mock_{uuid.uuid4().hex}"
        cf_order_id = str(int(now_ts() * 1000))
        self.orders[order_id] = {
            "cf_order_id": cf_order_id,
            "order_id": order_id,
            "order_amount": order["order_amount"],
            "order_currency": order.get("order_currency", "INR"),
            "order_status": "ACTIVE",
            "customer_details": order.get("customer_details"),
            "order_meta": order.get("order_meta") or {},
            "payment_session_id": psid,
            "created_at": to_iso(now_ts()),
        }
        self.sessions[psid] = order_id
        self.payments[order_id] = []
        log.info("mockpay order created: %s (psid=%s)", order_id, psid)
        return {
            "payment_session_id": psid,
            "order_id": order_id,
            "cf_order_id": cf_order_id,
            "payment_url": f"/mockpay/{psid}",
        }

    def session(self, psid: str) -> Optional[dict]:
        order_id = self.sessions.get(psid)
        return self.orders.get(order_id) if order_id else None

    async def order_pay(self, payment_session_id: str,
                        payment_method: dict) -> dict:
        if payment_session_id not in self.sessions:
            raise GatewayError(400, "payment_session_id is invalid")
        return {
            "payment_session_id": payment_session_id,
            "action": "link",
            "data": {"url": f"/mockpay/{payment_session_id}"},
        }

    async def get_order(self, order_id: str) -> dict:
        order = self.orders.get(order_id)
        if order is None:
            raise GatewayError(404, ORDER_NOT_FOUND_MSG)
        return dict(order)

    async def get_order_payments(self, order_id: str) -> List[dict]:
        if order_id not in self.orders:
            raise GatewayError(404, ORDER_NOT_FOUND_MSG)
        return list(self.payments.get(order_id, []))

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        return parse_webhook(self.secret, payload, headers)

    def build_webhook(self, psid: str,
                      kind: str) -> Tuple[bytes, Dict[str, str]]:
        """Record the attempt and return a signed webhook (body, headers).

        `kind` is one of succeeded | failed | dropped.
        """
        order = self.session(psid)
        if order is None:
            raise KeyError(psid)
        types = {
            "succeeded": (WEBHOOK_SUCCESS, "SUCCESS"),
            "failed": (WEBHOOK_FAILED, "FAILED"),
            "dropped": (WEBHOOK_DROPPED, "USER_DROPPED"),
        }
        event_type, payment_status = types[kind]
        payment = {
            "cf_payment_id": int(now_ts() * 1000),
            "payment_status": payment_status,
            "payment_amount": order["order_amount"],
            "payment_currency": order["order_currency"],
            "payment_group": "upi",
            "payment_time": to_iso(now_ts()),
            "bank_reference": uuid.uuid4().hex[:12],
        }
        self.payments[order["order_id"]].insert(0, payment)
        if kind == "succeeded":
            order["order_status"] = "PAID"

        event = {
            "type": event_type,
            "event_time": to_iso(now_ts()),
            "data": {
                "order": {
                    "order_id": order["order_id"],
                    "order_amount": order["order_amount"],
                    "order_currency": order["order_currency"],
                },
                "payment": payment,
                "customer_details": order["customer_details"],
            },
        }
        payload = json.dumps(event).encode()
        ts = str(int(time.time()))
        headers = {
            "content-type": "application/json",
            "x-webhook-timestamp": ts,
            "x-webhook-signature": sign_webhook(self.secret, ts, payload),
        }
        return payload, headers
