from __future__ import annotations
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

import httpx
import redis.asyncio as redis

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi import Form
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, RedirectResponse, ORJSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import HTTP_303_SEE_OTHER

from .config import (
    DATABASE_URL, SITE_NAME, BASE_URL, LOG_LEVEL,
    CASHFREE_APP_ID, CASHFREE_SECRET_KEY, CASHFREE_BASE_URL,
    CASHFREE_API_VERSION, CASHFREE_WEBHOOK_SECRET, CASHFREE_ENVIRONMENT,
    GATEWAY_BACKEND, MOCK_SECRET, MOCK_WEBHOOK_URL, HTTP_TIMEOUT_SECONDS,
    ADMIN_CACHE_BACKEND, ADMIN_CACHE_TTL_SECONDS, ADMIN_CACHE_MAX_ENTRIES,
    REDIS_URL, PENDING_TIMEOUT_SECONDS, CLEANUP_TOKEN,
)
from .infra.sql import Database
from .infra.timings import install_shutdown_flush, timeit

from .model.orm import Base, DONATION_STATUSES
from .model.users import find_or_create_user, count_users
from .model.donations import (
    donation_as_dict, create_donation, find_donation_for_order,
    set_gateway_order, transition_donation_status, cleanup_stale_pending,
    list_donations, list_recent_completed, donation_stats,
    donation_analytics,
)
from .model.admins import (
    admin_as_dict, create_admin, list_admins, is_user_admin,
)
from .model.email_settings import (
    setting_as_dict, list_settings, get_settings_config, update_setting,
    update_settings, reset_settings,
)
from .model.admincache import new_cache
from .gateway import (
    PaymentAdapter, CashfreeGateway, MockPay, GatewayError,
    event_ids, ORDER_STATUS_MAP,
    WEBHOOK_SUCCESS, WEBHOOK_FAILED, WEBHOOK_DROPPED,
)
from .mailer import send_receipt, send_email, config_problems
from .schemas import (
    CreateSessionRequest, ProcessPaymentRequest, DonationRequest,
    ReconcileRequest, UpdateStatusRequest, AdminCreate,
    EmailSettingUpdate, EmailSettingsUpdate, EmailTestRequest,
    validation_details,
)
from .helpers import (
    ct_equal, format_phone, generate_customer_id, is_valid_email,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

_HERE = os.path.dirname(__file__)
templates = Jinja2Templates(directory=os.path.join(_HERE, "templates"))

# ----------------------------
# Config & Constants
# ----------------------------
if DATABASE_URL is None:
    log.critical("NEED DATABASE_URL! e.g. postgresql://user:pw@host/db")
    sys.exit(1)

database = Database(DATABASE_URL)


async def get_db() -> AsyncSession:
    async with database.session() as session:
        yield session


app = FastAPI(
    title=SITE_NAME,
    default_response_class=ORJSONResponse,
)
app.mount("/static", StaticFiles(directory=os.path.join(_HERE, "static")),
          name="static")

# shutdown handler logging our detailed timings
install_shutdown_flush(app)


def get_http() -> httpx.AsyncClient:
    http = getattr(app.state, "http", None)
    if http is None:
        raise RuntimeError("HTTP client not initialized")
    return http


def get_gateway() -> PaymentAdapter:
    gw = getattr(app.state, "gateway", None)
    if gw is None:
        raise RuntimeError("Payment gateway not initialized")
    return gw


def get_admin_cache():
    cache = getattr(app.state, "admin_cache", None)
    if cache is None:
        raise RuntimeError("Admin cache not initialized")
    return cache


def get_session_factory():
    return database.sessionmaker


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    log.info("=" * 50)
    log.info("%s donations backend is starting up...", SITE_NAME)
    log.info("   - Payment gateway: %s (%s)", GATEWAY_BACKEND,
             CASHFREE_ENVIRONMENT if GATEWAY_BACKEND == "cashfree" else "dev")
    log.info("   - Admin cache:     %s", ADMIN_CACHE_BACKEND)
    log.info("=" * 50)


@app.on_event("startup")
async def _db_init():
    await database.create_all(Base.metadata)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=HTTP_TIMEOUT_SECONDS,
        limits=httpx.Limits(
            max_connections=64, max_keepalive_connections=32
        ),
    )


@app.on_event("startup")
async def _gateway_start():
    if GATEWAY_BACKEND == "cashfree":
        if not (CASHFREE_APP_ID and CASHFREE_SECRET_KEY):
            raise RuntimeError("GATEWAY_BACKEND=cashfree needs CASHFREE_APP_ID "
                               "and CASHFREE_SECRET_KEY")
        app.state.gateway = CashfreeGateway(
            app.state.http,
            app_id=CASHFREE_APP_ID,
            secret_key=CASHFREE_SECRET_KEY,
            base_url=CASHFREE_BASE_URL,
            api_version=CASHFREE_API_VERSION,
            webhook_secret=CASHFREE_WEBHOOK_SECRET,
        )
    else:
        app.state.gateway = MockPay(MOCK_SECRET)


@app.on_event("startup")
async def _admin_cache_start():
    r = None
    if ADMIN_CACHE_BACKEND == "redis":
        r = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            max_connections=int(os.getenv("REDIS_MAX_CONN", "64")),
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )
        app.state.redis = r
    app.state.admin_cache = new_cache(
        ADMIN_CACHE_BACKEND, r=r, ttl_seconds=ADMIN_CACHE_TTL_SECONDS,
        max_entries=ADMIN_CACHE_MAX_ENTRIES,
    )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    await database.dispose()


# ----------------------------
# Error responses: {success: false, error: ...}
# ----------------------------
@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return ORJSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Validation error",
            "details": validation_details(exc.errors()),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(GatewayError)
async def _gateway_error(request: Request, exc: GatewayError):
    content = {"success": False, "error": exc.message}
    if exc.status == 400 and exc.details:
        content["details"] = exc.details
    return ORJSONResponse(status_code=exc.status, content=content)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    log.exception("unhandled error on %s %s", request.method,
                  request.url.path)
    return ORJSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


# ----------------------------
# Helpers
# ----------------------------
async def require_admin(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_admin_cache),
) -> str:
    email = (request.headers.get("x-admin-email") or "").strip().lower()
    if not email:
        raise HTTPException(401, detail="Authentication required")
    async with timeit("admin.check"):
        ok = await is_user_admin(db, email, cache)
    if not ok:
        log.warning("admin access denied for %s on %s", email,
                    request.url.path)
        raise HTTPException(403, detail="Admin access required")
    return email


def _unwrap(result, status_code: int = 500):
    if not result.ok:
        raise HTTPException(status_code, detail=result.error)
    return result.value


def _parse_date(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(400, detail=f"{name} must be an ISO date")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ----------------------------
# Pages
# ----------------------------
@app.get("/", response_class=HTMLResponse)
async def landing_page(request: Request, db: AsyncSession = Depends(get_db)):
    recent = await list_recent_completed(db, limit=5)
    return templates.TemplateResponse(
        request,
        "landing.html",
        {
            "site_name": SITE_NAME,
            "recent": recent.value if recent.ok else [],
        },
    )


@app.get("/donate", response_class=HTMLResponse)
async def donate_page(request: Request, status: Optional[str] = None,
                      order_id: Optional[str] = None,
                      gw: PaymentAdapter = Depends(get_gateway)):
    return templates.TemplateResponse(
        request,
        "donate.html",
        {
            "site_name": SITE_NAME,
            "status": status,
            "order_id": order_id,
            "gateway": gw.name,
            "cashfree_mode": (
                "production" if CASHFREE_ENVIRONMENT == "production"
                else "sandbox"
            ),
        },
    )


@app.get("/donate/success", response_class=HTMLResponse)
async def donate_success_page(request: Request, order_id: str):
    return templates.TemplateResponse(
        request,
        "success.html",
        {"site_name": SITE_NAME, "order_id": order_id},
    )


# ----------------------------
# API: donations
# ----------------------------
@app.post("/api/donations")
async def api_create_donation(
    body: DonationRequest,
    db: AsyncSession = Depends(get_db),
    gw: PaymentAdapter = Depends(get_gateway),
):
    donor = body.model_dump(exclude_none=True)
    donor["mobile"] = format_phone(body.mobile)

    # two independent writes; a user without a donation is harmless
    async with timeit("db.find_or_create_user"):
        user = _unwrap(await find_or_create_user(db, donor))
    async with timeit("db.create_donation"):
        donation = _unwrap(await create_donation(db, {
            "amount": body.amount,
            "donation_type": body.donation_type,
            "is_anonymous": body.is_anonymous,
            "dedication_message": body.dedication_message,
            "preacher_name": body.preacher_name,
            "payment_gateway": gw.name,
        }, user_id=user.id))

    log.info("donation %s created (%.2f) for user %s",
             donation.id, donation.amount, user.id)
    return {
        "success": True,
        "data": {
            "donation_id": donation.id,
            "order_id": donation.id,
            "receipt_number": donation.receipt_number,
            "amount": donation.amount,
            "customer_details": {
                "customer_id": generate_customer_id(user.mobile),
                "customer_name": user.name,
                "customer_email": user.email,
                "customer_phone": user.mobile,
            },
        },
    }


@app.get("/api/donations/{donation_id}")
async def api_get_donation(donation_id: str,
                           db: AsyncSession = Depends(get_db)):
    donation = _unwrap(await find_donation_for_order(db, donation_id,
                                                   by_payment_id=True))
    if donation is None:
        raise HTTPException(404, detail="Donation not found")
    return {"success": True, "data": donation_as_dict(donation,
                                                      with_user=True)}


# ----------------------------
# API: payment session
# ----------------------------
@app.post("/api/payment/create-session")
async def create_payment_session(
    body: CreateSessionRequest,
    db: AsyncSession = Depends(get_db),
    gw: PaymentAdapter = Depends(get_gateway),
):
    order = body.to_gateway(BASE_URL)
    log.info("creating payment session for order %s (%.2f %s)",
             body.order_id, body.order_amount, body.order_currency)
    session = await gw.create_order(order)

    # remember the gateway order id when the order is one of our donations
    linked = await set_gateway_order(db, body.order_id,
                                     session["cf_order_id"], gw.name)
    if not linked.ok:
        log.warning("order %s: could not store gateway order id",
                    body.order_id)

    return {"success": True, "data": session}


@app.post("/api/payment/process")
async def process_payment(
    body: ProcessPaymentRequest,
    gw: PaymentAdapter = Depends(get_gateway),
):
    data = await gw.order_pay(body.payment_session_id, body.payment_method)
    return {"success": True, "data": data}


# ----------------------------
# Webhook endpoint
# ----------------------------
@app.post("/api/webhook/cashfree")
async def cashfree_webhook(
    request: Request,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    gw: PaymentAdapter = Depends(get_gateway),
    session_factory=Depends(get_session_factory),
):
    payload = await request.body()
    headers = dict(request.headers)

    event = gw.verify_webhook(payload, headers)
    kind = event.get("type", "")
    order_id, cf_payment_id = event_ids(event)
    if not order_id:
        raise HTTPException(400, detail="missing data.order.order_id")
    log.info("webhook %s for order %s (payment %s)", kind, order_id,
             cf_payment_id)

    async with timeit("db.find_donation"):
        found = await find_donation_for_order(db, order_id)
    if not found.ok:
        log.error("webhook %s: lookup of %s failed: %s", kind, order_id,
                  found.error)
        return {"success": True, "order_id": order_id, "persisted": False}
    donation = found.value
    if donation is None:
        log.warning("webhook %s: no donation for order %s", kind, order_id)
        return {"success": True, "order_id": order_id, "not_found": True}

    if kind == WEBHOOK_DROPPED:
        # donor may come back and retry; the sweep handles abandonment
        return {"success": True, "order_id": order_id,
                "payment_status": donation.payment_status}
    if kind == WEBHOOK_SUCCESS:
        target = "completed"
    elif kind == WEBHOOK_FAILED:
        target = "failed"
    else:
        log.info("webhook type %r ignored", kind)
        return {"success": True, "order_id": order_id, "ignored": True}

    async with timeit("db.transition"):
        moved = await transition_donation_status(
            db, donation.id, target,
            payment_id=cf_payment_id if target == "completed" else None,
            payment_gateway=gw.name,
        )
    if not moved.ok:
        log.error("webhook %s: could not persist %s for %s: %s", kind,
                  target, donation.id, moved.error)
        return {"success": True, "order_id": order_id, "persisted": False}

    t = moved.value
    if t.applied and target == "completed":
        background.add_task(send_receipt, session_factory, donation.id,
                            SITE_NAME)
    return {
        "success": True,
        "order_id": order_id,
        "payment_status": t.current,
        "idempotent": not t.applied,
    }


# ----------------------------
# API: verify / reconcile / cleanup
# ----------------------------
@app.get("/api/payment/verify")
async def verify_payment(
    orderId: Optional[str] = None,
    gw: PaymentAdapter = Depends(get_gateway),
):
    if not orderId:
        raise HTTPException(400, detail="Order ID is required")
    return await gw.verify(orderId)


@app.post("/api/payment/reconcile")
async def reconcile_payment(
    body: ReconcileRequest,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    gw: PaymentAdapter = Depends(get_gateway),
    session_factory=Depends(get_session_factory),
):
    found = _unwrap(await find_donation_for_order(db, body.orderId))
    if found is None:
        raise HTTPException(404, detail="Donation not found")

    status = await gw.verify(body.orderId)
    # unknown / still-active orders only get their verification stamp
    target = ORDER_STATUS_MAP.get(status.get("order_status") or "",
                                  "pending")
    async with timeit("db.transition"):
        moved = _unwrap(await transition_donation_status(
            db, found.id, target,
            payment_id=status["payment_id"] if target == "completed"
            else None,
            cashfree_order_id=status.get("cf_order_id"),
            payment_gateway=gw.name if target != "pending" else None,
            verified=True,
        ))
    if moved.applied and target == "completed":
        background.add_task(send_receipt, session_factory, found.id,
                            SITE_NAME)
    return {
        "success": True,
        "order_id": body.orderId,
        "order_status": status.get("order_status"),
        "payment_status": moved.current,
        "updated": moved.applied,
        "verification": status,
    }


@app.post("/api/payment/cleanup")
async def cleanup_pending(request: Request,
                          db: AsyncSession = Depends(get_db)):
    if CLEANUP_TOKEN:
        auth = request.headers.get("authorization") or ""
        if not ct_equal(auth, f"Bearer {CLEANUP_TOKEN}"):
            raise HTTPException(401, detail="Unauthorized")
    async with timeit("db.cleanup"):
        affected = _unwrap(
            await cleanup_stale_pending(db, PENDING_TIMEOUT_SECONDS)
        )
    return {"success": True, "affected": affected}


@app.post("/api/payment/update-status")
async def update_payment_status(
    body: UpdateStatusRequest,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    if body.status not in DONATION_STATUSES:
        raise HTTPException(400, detail=f"Invalid status: {body.status}")
    moved = _unwrap(await transition_donation_status(
        db, body.donationId, body.status, payment_id=body.paymentId,
    ))
    if not moved.found:
        raise HTTPException(404, detail="Donation not found")
    if not moved.applied:
        raise HTTPException(
            409,
            detail=f"Cannot change status from {moved.previous} "
                   f"to {body.status}",
        )
    log.info("donation %s set to %s by %s", body.donationId, body.status,
             admin)
    return {
        "success": True,
        "message": "Donation status updated successfully",
        "data": donation_as_dict(moved.donation),
    }


# ----------------------------
# API: admin
# ----------------------------
@app.get("/api/admin/check")
async def api_admin_check(
    email: str,
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_admin_cache),
):
    email = email.strip().lower()
    return {"email": email, "is_admin": await is_user_admin(db, email, cache)}


@app.get("/api/admin/stats")
async def api_admin_stats(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    start = _parse_date(startDate, "startDate")
    end = _parse_date(endDate, "endDate")
    stats = await donation_stats(db, start, end)
    users = await count_users(db)
    healthy = stats.ok and users.ok
    data = dict(stats.value) if stats.ok else {}
    data["totalUsers"] = users.value if users.ok else 0
    data["systemStatus"] = "healthy" if healthy else "error"
    return {"success": healthy, "data": data}


@app.get("/api/admin/analytics")
async def api_admin_analytics(
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    return {"success": True, "data": _unwrap(await donation_analytics(db))}


@app.get("/api/admin/recent-donations")
async def api_admin_recent_donations(
    limit: int = 10,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    limit = max(1, min(limit, 100))
    items = _unwrap(await list_recent_completed(db, limit=limit))
    return {"success": True, "data": items}


@app.get("/api/admin/donations")
async def api_admin_donations(
    limit: int = 200,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    rows = _unwrap(await list_donations(
        db, with_user=True, limit=max(1, min(limit, 1000)), status=status,
    ))
    return {
        "success": True,
        "data": [donation_as_dict(d, with_user=True) for d in rows],
    }


@app.get("/api/admin/admins")
async def api_admin_list_admins(
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    rows = _unwrap(await list_admins(db))
    return {"success": True, "data": [admin_as_dict(a) for a in rows]}


@app.post("/api/admin/admins")
async def api_admin_create_admin(
    body: AdminCreate,
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_admin_cache),
    admin: str = Depends(require_admin),
):
    created = await create_admin(db, body.model_dump())
    if not created.ok:
        status = 409 if "already exists" in created.error else 500
        raise HTTPException(status, detail=created.error)
    # a cached "not an admin" answer would hide the new row for the TTL
    await cache.invalidate(body.email)
    log.info("admin %s created by %s", body.email, admin)
    return {"success": True, "data": admin_as_dict(created.value)}


@app.get("/api/admin/email-settings")
async def api_admin_email_settings(
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    rows = _unwrap(await list_settings(db))
    return {"success": True, "data": [setting_as_dict(s) for s in rows]}


@app.post("/api/admin/email-settings")
async def api_admin_update_email_setting(
    body: EmailSettingUpdate,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    row = _unwrap(await update_setting(db, body.setting_key,
                                       body.setting_value, updated_by=admin))
    return {"success": True, "data": setting_as_dict(row)}


@app.put("/api/admin/email-settings")
async def api_admin_update_email_settings(
    body: EmailSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    rows = _unwrap(await update_settings(db, body.settings,
                                         updated_by=admin))
    return {"success": True, "data": [setting_as_dict(s) for s in rows]}


@app.delete("/api/admin/email-settings")
async def api_admin_reset_email_settings(
    action: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    if action != "reset":
        raise HTTPException(400, detail="Unsupported action")
    rows = _unwrap(await reset_settings(db, updated_by=admin))
    log.info("email settings reset to defaults by %s", admin)
    return {"success": True, "data": [setting_as_dict(s) for s in rows]}


async def _email_test(body: EmailTestRequest, db: AsyncSession,
                      admin: str) -> dict:
    config = _unwrap(await get_settings_config(db))
    problems = config_problems(config)
    sent = False
    if body.send:
        to = body.to or admin
        if not is_valid_email(to):
            raise HTTPException(400, detail="Invalid recipient email")
        sent = await send_email(
            config, to, f"Test email from {SITE_NAME}",
            "This is a test message. Your email settings work.",
        )
    return {
        "success": True,
        "valid": not problems,
        "problems": problems,
        "enabled": bool(config.get("email_enabled")),
        "test_mode": bool(config.get("email_test_mode")),
        "sent": sent,
    }


@app.post("/api/admin/email-settings/test")
async def api_admin_test_email_settings(
    body: EmailTestRequest,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    return await _email_test(body, db, admin)


@app.post("/api/test-email")
async def api_test_email(
    body: EmailTestRequest,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    return await _email_test(body, db, admin)


# ----------------------------
# MockPay UI (simple page with 3 buttons)
# ----------------------------
def _mockpay(gw: PaymentAdapter) -> MockPay:
    if not isinstance(gw, MockPay):
        raise HTTPException(404, detail="mock gateway not enabled")
    return gw


@app.get("/mockpay/{psid}", response_class=HTMLResponse)
async def mockpay_screen(
    request: Request, psid: str,
    gw: PaymentAdapter = Depends(get_gateway),
):
    order = _mockpay(gw).session(psid)
    if not order:
        raise HTTPException(404, detail="payment session not found")
    return templates.TemplateResponse(request, "mockpay.html", {
        "site_name": SITE_NAME,
        "psid": psid,
        "order_id": order["order_id"],
        "amount": f"{float(order['order_amount']):.2f}",
        "currency": order["order_currency"],
        "webhook_url": MOCK_WEBHOOK_URL,
    })


@app.post("/mockpay/{psid}/emit")
async def mockpay_emit(
    psid: str,
    t: str = Form(...),
    gw: PaymentAdapter = Depends(get_gateway),
    http: httpx.AsyncClient = Depends(get_http),
):
    if t not in {"succeeded", "failed", "dropped"}:
        raise HTTPException(400, detail="invalid kind")
    mock = _mockpay(gw)
    order = mock.session(psid)
    if not order:
        raise HTTPException(404, detail="payment session not found")

    payload, headers = mock.build_webhook(psid, t)
    order_id = order["order_id"]
    try:
        await http.post(MOCK_WEBHOOK_URL, content=payload, headers=headers)
    except httpx.HTTPError as e:
        # the donor can retry from the success page (reconcile)
        log.warning("mock webhook delivery to %s failed: %s",
                    MOCK_WEBHOOK_URL, e)

    if t == "succeeded":
        url = order["order_meta"].get("return_url") or (
            f"/donate/success?order_id={order_id}"
        )
    elif t == "failed":
        url = f"/donate?status=failed&order_id={order_id}"
    else:
        url = f"/donate?status=cancelled&order_id={order_id}"
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)
