from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .orm import EmailSetting
from .result import Ok, Err, Result
from ..helpers import to_iso

log = logging.getLogger(__name__)

# key -> (default value, type, description)
DEFAULTS: Dict[str, tuple] = {
    "smtp_host": ("smtp.gmail.com", "string", "SMTP server hostname"),
    "smtp_port": ("587", "number", "SMTP server port"),
    "smtp_secure": ("false", "boolean", "Use implicit TLS (port 465)"),
    "smtp_user": ("", "string", "SMTP username"),
    "smtp_pass": ("", "string", "SMTP password or app password"),
    "email_from_name": ("Yamraj Dham Trust", "string", "Sender display name"),
    "email_from_address": ("noreply@yamrajdham.com", "string",
                           "Sender email address"),
    "email_reply_to": ("support@yamrajdham.com", "string",
                       "Reply-to address"),
    "email_enabled": ("true", "boolean", "Send receipt emails"),
    "email_test_mode": ("false", "boolean",
                        "Log receipt emails instead of sending them"),
}

SECRET_KEYS = ("smtp_pass",)
MASK = "********"


def coerce(value: Optional[str], setting_type: str) -> Any:
    if setting_type == "boolean":
        return str(value).strip().lower() in ("true", "1", "yes", "on")
    if setting_type == "number":
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0
    return value if value is not None else ""


def setting_as_dict(s: EmailSetting, mask_secrets: bool = True
                    ) -> Dict[str, Any]:
    value = s.setting_value
    if mask_secrets and s.setting_key in SECRET_KEYS and value:
        value = MASK
    return {
        "id": s.id,
        "setting_key": s.setting_key,
        "setting_value": value,
        "setting_type": s.setting_type,
        "description": s.description,
        "is_active": s.is_active,
        "updated_at": to_iso(s.updated_at),
        "updated_by": s.updated_by,
    }


async def list_settings(db: AsyncSession) -> Result[List[EmailSetting]]:
    try:
        result = await db.execute(
            select(EmailSetting).order_by(EmailSetting.setting_key)
        )
    except SQLAlchemyError as e:
        log.error("list_settings failed: %s", e)
        return Err("Failed to fetch email settings")
    return Ok(list(result.scalars().all()))


async def get_settings_config(db: AsyncSession) -> Result[Dict[str, Any]]:
    """Typed settings map; defaults fill keys with no active row."""
    found = await list_settings(db)
    if not found.ok:
        return found
    config = {k: coerce(v, t) for k, (v, t, _) in DEFAULTS.items()}
    for s in found.value:
        if s.is_active:
            config[s.setting_key] = coerce(s.setting_value, s.setting_type)
    return Ok(config)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


async def _upsert(db: AsyncSession, key: str, value: Any,
                  updated_by: Optional[str]) -> EmailSetting:
    row = (await db.execute(
        select(EmailSetting).where(EmailSetting.setting_key == key)
    )).scalars().first()
    masked = key in SECRET_KEYS and value == MASK
    if row is not None and masked:
        # the listed value came back unchanged; keep the stored secret
        return row
    default = DEFAULTS.get(key)
    if row is None:
        row = EmailSetting(
            setting_key=key,
            setting_type=default[1] if default else "string",
            description=default[2] if default else None,
        )
        db.add(row)
    row.setting_value = "" if masked else _stringify(value)
    row.is_active = True
    row.updated_by = updated_by
    return row


async def update_setting(
        db: AsyncSession, key: str, value: Any,
        updated_by: Optional[str] = None,
) -> Result[EmailSetting]:
    try:
        row = await _upsert(db, key, value, updated_by)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("update_setting(%s) failed: %s", key, e)
        return Err("Failed to update email setting")
    log.info("email setting %s updated by %s", key, updated_by)
    return Ok(row)


async def update_settings(
        db: AsyncSession, values: Dict[str, Any],
        updated_by: Optional[str] = None,
) -> Result[List[EmailSetting]]:
    rows = []
    try:
        for key, value in values.items():
            rows.append(await _upsert(db, key, value, updated_by))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("update_settings failed: %s", e)
        return Err("Failed to update email settings")
    log.info("%d email setting(s) updated by %s", len(rows), updated_by)
    return Ok(rows)


async def reset_settings(
        db: AsyncSession, updated_by: Optional[str] = None
) -> Result[List[EmailSetting]]:
    return await update_settings(
        db, {k: v for k, (v, _, _) in DEFAULTS.items()}, updated_by
    )
