from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .orm import User
from .result import Ok, Err, Result
from ..helpers import to_iso

log = logging.getLogger(__name__)

DUPLICATE_EMAIL = "User with this email already exists"

USER_FIELDS = (
    "email", "name", "mobile", "address", "city", "state", "pin_code",
    "country", "pan_no",
)


def user_as_dict(u: User) -> Dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "mobile": u.mobile,
        "address": u.address,
        "city": u.city,
        "state": u.state,
        "pin_code": u.pin_code,
        "country": u.country,
        "pan_no": u.pan_no,
        "created_at": to_iso(u.created_at),
        "updated_at": to_iso(u.updated_at),
    }


def _pick(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: data[k] for k in USER_FIELDS if data.get(k) is not None}


async def create_user(db: AsyncSession, data: Dict[str, Any]) -> Result[User]:
    fields = _pick(data)
    fields["email"] = (fields.get("email") or "").strip().lower()
    user = User(**fields)
    try:
        db.add(user)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        log.warning("create_user: duplicate email %s", fields["email"])
        return Err(DUPLICATE_EMAIL, str(e.orig))
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("create_user failed: %s", e)
        return Err("Failed to create user")
    return Ok(user)


async def get_user_by_email(
        db: AsyncSession, email: str
) -> Result[Optional[User]]:
    try:
        result = await db.execute(
            select(User).where(User.email == email.strip().lower())
        )
    except SQLAlchemyError as e:
        log.error("get_user_by_email failed: %s", e)
        return Err("Failed to fetch user")
    # no match is not an error
    return Ok(result.scalars().first())


async def get_user_by_id(
        db: AsyncSession, user_id: str
) -> Result[Optional[User]]:
    try:
        user = await db.get(User, user_id)
    except SQLAlchemyError as e:
        log.error("get_user_by_id failed: %s", e)
        return Err("Failed to fetch user")
    return Ok(user)


async def update_user(
        db: AsyncSession, user_id: str, data: Dict[str, Any]
) -> Result[Optional[User]]:
    try:
        user = await db.get(User, user_id)
        if user is None:
            return Ok(None)
        for k, v in _pick(data).items():
            if k == "email":
                continue
            setattr(user, k, v)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("update_user failed: %s", e)
        return Err("Failed to update user")
    return Ok(user)


async def find_or_create_user(
        db: AsyncSession, data: Dict[str, Any]
) -> Result[User]:
    """Users are created lazily on first donation, keyed by email."""
    found = await get_user_by_email(db, data.get("email") or "")
    if not found.ok:
        return found
    if found.value is not None:
        return Ok(found.value)
    created = await create_user(db, data)
    if created.ok or created.error != DUPLICATE_EMAIL:
        return created
    # a concurrent first donation from the same donor inserted it first
    found = await get_user_by_email(db, data.get("email") or "")
    if found.ok and found.value is not None:
        log.info("find_or_create_user: reusing concurrently created %s",
                 found.value.email)
        return Ok(found.value)
    return created


async def count_users(db: AsyncSession) -> Result[int]:
    try:
        n = await db.scalar(select(func.count()).select_from(User))
    except SQLAlchemyError as e:
        log.error("count_users failed: %s", e)
        return Err("Failed to count users")
    return Ok(int(n or 0))
