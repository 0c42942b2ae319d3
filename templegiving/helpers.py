import time
import re
import secrets
import uuid
from datetime import datetime, timezone
import hmac
from typing import Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime | float | None) -> Optional[str]:
    if dt is None:
        return None
    if isinstance(dt, (int, float)):
        return datetime.fromtimestamp(dt, tz=timezone.utc).isoformat()
    if dt.tzinfo is None:
        # sqlite hands back naive datetimes
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def is_valid_phone(phone: Optional[str]) -> bool:
    if not phone:
        return False
    cleaned = re.sub(r"[^\d+]", "", phone)
    return re.match(r"^(\+91|91)?[6-9]\d{9}$", cleaned) is not None


def format_phone(phone: str) -> str:
    """Normalise an Indian mobile number to +91XXXXXXXXXX where possible."""
    cleaned = re.sub(r"[^\d+]", "", phone or "")
    if cleaned.startswith("+91"):
        return cleaned
    if cleaned.startswith("91") and len(cleaned) == 12:
        return "+" + cleaned
    if len(cleaned) == 10:
        return "+91" + cleaned
    if len(cleaned) > 10:
        return "+91" + cleaned[-10:]
    return cleaned


def generate_customer_id(mobile: str) -> str:
    # gateway customer ids are alphanumeric plus _ and -
    digits = re.sub(r"\D", "", mobile or "")
    return f"customer_{digits}"


def generate_receipt_number() -> str:
    return f"RCP-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())
