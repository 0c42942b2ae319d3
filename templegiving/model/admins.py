from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .orm import Admin
from .result import Ok, Err, Result
from ..helpers import to_iso

log = logging.getLogger(__name__)


def admin_as_dict(a: Admin) -> Dict[str, Any]:
    return {
        "id": a.id,
        "email": a.email,
        "name": a.name,
        "mobile": a.mobile,
        "role": a.role,
        "is_active": a.is_active,
        "created_at": to_iso(a.created_at),
    }


async def create_admin(
        db: AsyncSession, data: Dict[str, Any]
) -> Result[Admin]:
    admin = Admin(
        email=(data.get("email") or "").strip().lower(),
        name=data.get("name") or "",
        mobile=data.get("mobile") or "",
        role=data.get("role") or "admin",
        is_active=bool(data.get("is_active", True)),
    )
    try:
        db.add(admin)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        log.warning("create_admin: duplicate email %s", admin.email)
        return Err("Admin with this email already exists", str(e.orig))
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("create_admin failed: %s", e)
        return Err("Failed to create admin")
    return Ok(admin)


async def list_admins(db: AsyncSession) -> Result[List[Admin]]:
    try:
        result = await db.execute(
            select(Admin).order_by(Admin.created_at.desc())
        )
    except SQLAlchemyError as e:
        log.error("list_admins failed: %s", e)
        return Err("Failed to fetch admins")
    return Ok(list(result.scalars().all()))


async def get_active_admin(
        db: AsyncSession, email: str
) -> Result[Optional[Admin]]:
    try:
        result = await db.execute(
            select(Admin)
            .where(Admin.email == email.strip().lower())
            .where(Admin.is_active.is_(True))
        )
    except SQLAlchemyError as e:
        log.error("get_active_admin failed: %s", e)
        return Err("Failed to check admin status")
    return Ok(result.scalars().first())


async def is_user_admin(db: AsyncSession, email: Optional[str], cache) -> bool:
    """True iff an active admin row exists for `email`.

    Answers are cached (positive and negative) in `cache` for its TTL.
    A lookup failure is reported as not-admin and is not cached.
    """
    if not email:
        return False
    cached = await cache.get(email)
    if cached is not None:
        return cached
    found = await get_active_admin(db, email)
    if not found.ok:
        return False
    is_admin = found.value is not None
    await cache.set(email, is_admin)
    return is_admin
