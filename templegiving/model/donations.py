from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .orm import Donation, DONATION_STATUSES
from .result import Ok, Err, Result
from .users import user_as_dict
from ..helpers import generate_receipt_number, to_iso, utcnow

log = logging.getLogger(__name__)

# target status -> statuses it may be reached from
ALLOWED_FROM: Dict[str, Tuple[str, ...]] = {
    "completed": ("pending",),
    "failed": ("pending",),
    "refunded": ("completed",),
    "pending": (),
}


@dataclass
class Transition:
    applied: bool
    previous: Optional[str]
    current: Optional[str]
    donation: Optional[Donation]

    @property
    def found(self) -> bool:
        return self.donation is not None


def donation_as_dict(d: Donation, with_user: bool = False) -> Dict[str, Any]:
    out = {
        "id": d.id,
        "user_id": d.user_id,
        "amount": d.amount,
        "donation_type": d.donation_type,
        "payment_status": d.payment_status,
        "payment_id": d.payment_id,
        "cashfree_order_id": d.cashfree_order_id,
        "payment_gateway": d.payment_gateway,
        "receipt_number": d.receipt_number,
        "is_anonymous": d.is_anonymous,
        "dedication_message": d.dedication_message,
        "preacher_name": d.preacher_name,
        "created_at": to_iso(d.created_at),
        "updated_at": to_iso(d.updated_at),
        "last_verified_at": to_iso(d.last_verified_at),
    }
    if with_user:
        user = d.__dict__.get("user")
        out["users"] = user_as_dict(user) if user is not None else None
    return out


async def create_donation(
        db: AsyncSession, data: Dict[str, Any], user_id: Optional[str] = None
) -> Result[Donation]:
    donation = Donation(
        user_id=user_id,
        amount=float(data["amount"]),
        donation_type=data.get("donation_type") or "general",
        payment_status=data.get("payment_status") or "pending",
        payment_id=data.get("payment_id"),
        cashfree_order_id=data.get("cashfree_order_id"),
        payment_gateway=data.get("payment_gateway") or "cashfree",
        receipt_number=data.get("receipt_number") or generate_receipt_number(),
        is_anonymous=bool(data.get("is_anonymous", False)),
        dedication_message=data.get("dedication_message"),
        preacher_name=data.get("preacher_name"),
    )
    try:
        db.add(donation)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        log.error("create_donation integrity error: %s", e.orig)
        return Err("Failed to create donation", str(e.orig))
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("create_donation failed: %s", e)
        return Err("Failed to create donation")
    return Ok(donation)


async def get_donation(
        db: AsyncSession, donation_id: str, fresh: bool = False
) -> Result[Optional[Donation]]:
    stmt = (
        select(Donation)
        .options(selectinload(Donation.user))
        .where(Donation.id == donation_id)
    )
    if fresh:
        # bulk UPDATEs bypass the identity map
        stmt = stmt.execution_options(populate_existing=True)
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        log.error("get_donation failed: %s", e)
        return Err("Failed to fetch donation")
    return Ok(result.scalars().first())


async def find_donation_for_order(
        db: AsyncSession, key: str, by_payment_id: bool = False
) -> Result[Optional[Donation]]:
    """Look a donation up by id, then by gateway order id.

    With `by_payment_id` the gateway payment id is tried as well.
    """
    keys = [Donation.id == key, Donation.cashfree_order_id == key]
    if by_payment_id:
        keys.append(Donation.payment_id == key)
    try:
        result = await db.execute(
            select(Donation)
            .options(selectinload(Donation.user))
            .where(or_(*keys))
            .order_by(Donation.created_at.desc())
        )
    except SQLAlchemyError as e:
        log.error("find_donation_for_order failed: %s", e)
        return Err("Failed to fetch donation")
    rows = result.scalars().all()
    # an exact id match wins over the fallbacks
    for d in rows:
        if d.id == key:
            return Ok(d)
    return Ok(rows[0] if rows else None)


async def update_donation_payment(
        db: AsyncSession, donation_id: str, payment_status: str,
        payment_id: Optional[str] = None,
        cashfree_order_id: Optional[str] = None,
) -> Result[Optional[Donation]]:
    """Unconditional write of the payment fields.

    Status changes driven by the gateway go through
    transition_donation_status instead.
    """
    if payment_status not in DONATION_STATUSES:
        return Err(f"Invalid payment status: {payment_status}")
    values: Dict[str, Any] = {"payment_status": payment_status}
    if payment_id is not None:
        values["payment_id"] = payment_id
    if cashfree_order_id is not None:
        values["cashfree_order_id"] = cashfree_order_id
    try:
        await db.execute(
            update(Donation)
            .where(Donation.id == donation_id)
            .values(**values)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("update_donation_payment failed: %s", e)
        return Err("Failed to update donation payment")
    return await get_donation(db, donation_id, fresh=True)


async def transition_donation_status(
        db: AsyncSession, donation_id: str, new_status: str, *,
        payment_id: Optional[str] = None,
        cashfree_order_id: Optional[str] = None,
        payment_gateway: Optional[str] = None,
        verified: bool = False,
) -> Result[Transition]:
    """Move a donation to `new_status` only from an allowed current status.

    The WHERE clause carries the guard, so concurrent webhook, verify and
    cleanup writers cannot move a completed donation back to a lesser state.
    """
    if new_status not in ALLOWED_FROM:
        return Err(f"Invalid payment status: {new_status}")
    allowed = ALLOWED_FROM[new_status]

    values: Dict[str, Any] = {"payment_status": new_status}
    if payment_id:
        values["payment_id"] = payment_id
    if cashfree_order_id:
        values["cashfree_order_id"] = cashfree_order_id
    if payment_gateway:
        values["payment_gateway"] = payment_gateway
    if verified:
        values["last_verified_at"] = utcnow()

    try:
        current = await db.scalar(
            select(Donation.payment_status).where(Donation.id == donation_id)
        )
        if current is None:
            await db.commit()
            return Ok(Transition(False, None, None, None))

        applied = False
        if allowed:
            res = await db.execute(
                update(Donation)
                .where(Donation.id == donation_id)
                .where(Donation.payment_status.in_(allowed))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            applied = res.rowcount == 1
        elif verified:
            await db.execute(
                update(Donation)
                .where(Donation.id == donation_id)
                .values(last_verified_at=values["last_verified_at"])
                .execution_options(synchronize_session=False)
            )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("transition_donation_status(%s -> %s) failed: %s",
                  donation_id, new_status, e)
        return Err("Failed to update donation status")

    fetched = await get_donation(db, donation_id, fresh=True)
    if not fetched.ok:
        return fetched
    donation = fetched.value
    now = donation.payment_status if donation is not None else None
    if applied:
        log.info("donation %s: %s -> %s", donation_id, current, now)
    else:
        log.info("donation %s: %s -> %s skipped (current=%s)",
                 donation_id, current, new_status, now)
    return Ok(Transition(applied, current, now, donation))


async def cleanup_stale_pending(
        db: AsyncSession, older_than_seconds: int,
        now: Optional[datetime] = None,
) -> Result[int]:
    cutoff = (now or utcnow()) - timedelta(seconds=older_than_seconds)
    try:
        res = await db.execute(
            update(Donation)
            .where(Donation.payment_status == "pending")
            .where(Donation.updated_at < cutoff)
            .values(payment_status="failed")
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("cleanup_stale_pending failed: %s", e)
        return Err("Cleanup failed")
    n = int(res.rowcount or 0)
    log.info("cleanup: %d stale pending donation(s) marked failed", n)
    return Ok(n)


async def list_donations(
        db: AsyncSession, with_user: bool = True, limit: Optional[int] = None,
        status: Optional[str] = None,
) -> Result[List[Donation]]:
    stmt = select(Donation).order_by(Donation.created_at.desc())
    if with_user:
        stmt = stmt.options(selectinload(Donation.user))
    if status:
        stmt = stmt.where(Donation.payment_status == status)
    if limit:
        stmt = stmt.limit(limit)
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        log.error("list_donations failed: %s", e)
        return Err("Failed to fetch donations")
    return Ok(list(result.scalars().all()))


async def list_recent_completed(
        db: AsyncSession, limit: int = 10
) -> Result[List[Dict[str, Any]]]:
    found = await list_donations(db, with_user=True, limit=limit,
                                 status="completed")
    if not found.ok:
        return found
    items = []
    for d in found.value:
        if d.is_anonymous:
            donor = "Anonymous"
        else:
            donor = d.user.name if d.user is not None else "Unknown"
        items.append({
            "id": d.id,
            "amount": d.amount,
            "donor_name": donor,
            "donation_type": d.donation_type or "General Donation",
            "created_at": to_iso(d.created_at),
            "is_anonymous": d.is_anonymous,
        })
    return Ok(items)


async def donation_stats(
        db: AsyncSession,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
) -> Result[Dict[str, Any]]:
    stmt = (
        select(
            Donation.payment_status,
            func.count(Donation.id),
            func.coalesce(func.sum(Donation.amount), 0),
        )
        .group_by(Donation.payment_status)
    )
    if start is not None:
        stmt = stmt.where(Donation.created_at >= start)
    if end is not None:
        stmt = stmt.where(Donation.created_at <= end)
    try:
        rows = (await db.execute(stmt)).all()
    except SQLAlchemyError as e:
        log.error("donation_stats failed: %s", e)
        return Err("Failed to fetch donation stats")

    counts = {s: 0 for s in DONATION_STATUSES}
    amounts = {s: 0.0 for s in DONATION_STATUSES}
    for status, n, total in rows:
        counts[status] = int(n)
        amounts[status] = float(total or 0)
    return Ok({
        "totalDonations": counts["completed"],
        "totalAmount": amounts["completed"],
        "completedDonations": counts["completed"],
        "pendingDonations": counts["pending"],
        "failedDonations": counts["failed"],
        "refundedDonations": counts["refunded"],
    })


def _month_key(dt: datetime) -> Tuple[int, int]:
    return dt.year, dt.month


def _last_months(now: datetime, n: int) -> List[Tuple[int, int]]:
    y, m = now.year, now.month
    out = []
    for _ in range(n):
        out.append((y, m))
        m -= 1
        if m == 0:
            y, m = y - 1, 12
    return list(reversed(out))


async def donation_analytics(
        db: AsyncSession, now: Optional[datetime] = None, months: int = 6,
) -> Result[Dict[str, Any]]:
    now = now or utcnow()
    since = now - timedelta(days=months * 31)
    try:
        rows = (await db.execute(
            select(Donation)
            .options(selectinload(Donation.user))
            .where(Donation.payment_status == "completed")
        )).scalars().all()
    except SQLAlchemyError as e:
        log.error("donation_analytics failed: %s", e)
        return Err("Failed to fetch analytics")

    monthly: Dict[Tuple[int, int], Dict[str, float]] = {}
    categories: Dict[str, Dict[str, float]] = {}
    donors: Dict[str, Dict[str, float]] = {}
    for d in rows:
        created = d.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=now.tzinfo)
        if created >= since:
            bucket = monthly.setdefault(_month_key(created),
                                        {"amount": 0.0, "count": 0})
            bucket["amount"] += d.amount
            bucket["count"] += 1

        cat = categories.setdefault(d.donation_type or "Other",
                                    {"amount": 0.0, "count": 0})
        cat["amount"] += d.amount
        cat["count"] += 1

        if not d.is_anonymous:
            name = d.user.name if d.user is not None else "Unknown"
            donor = donors.setdefault(name, {"amount": 0.0, "count": 0})
            donor["amount"] += d.amount
            donor["count"] += 1

    trends = []
    for y, m in _last_months(now, months):
        bucket = monthly.get((y, m), {"amount": 0.0, "count": 0})
        trends.append({
            "month": datetime(y, m, 1).strftime("%b"),
            "year": y,
            "amount": bucket["amount"],
            "donations": bucket["count"],
        })

    top = sorted(
        ({"name": k, "amount": v["amount"], "count": v["count"]}
         for k, v in donors.items()),
        key=lambda r: r["amount"], reverse=True,
    )[:5]

    return Ok({
        "monthlyTrends": trends,
        "categoryBreakdown": [
            {"name": k, "value": v["count"], "amount": v["amount"]}
            for k, v in categories.items()
        ],
        "topDonors": top,
    })


async def set_gateway_order(
        db: AsyncSession, donation_id: str, cashfree_order_id: Optional[str],
        payment_gateway: Optional[str] = None,
) -> Result[bool]:
    """Remember the gateway's order id once a session was created."""
    values: Dict[str, Any] = {"cashfree_order_id": cashfree_order_id}
    if payment_gateway:
        values["payment_gateway"] = payment_gateway
    try:
        res = await db.execute(
            update(Donation)
            .where(Donation.id == donation_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("set_gateway_order failed: %s", e)
        return Err("Failed to update donation")
    return Ok(res.rowcount == 1)
