from __future__ import annotations
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .helpers import is_valid_email, is_valid_phone


# ---------- Payment session ----------

class CustomerDetails(BaseModel):
    customer_id: str = Field(min_length=1, max_length=50)
    customer_name: Optional[str] = None
    customer_email: str
    customer_phone: str = Field(min_length=1)

    @field_validator("customer_email")
    @classmethod
    def _valid_email(cls, v: str) -> str:
        if not is_valid_email(v):
            raise ValueError("Invalid email address")
        return v.strip()


class OrderMeta(BaseModel):
    return_url: Optional[str] = None
    notify_url: Optional[str] = None
    payment_methods: Optional[str] = None


class CreateSessionRequest(BaseModel):
    order_id: str = Field(min_length=1, max_length=50,
                          pattern=r"^[A-Za-z0-9_-]+$")
    order_amount: float = Field(gt=0)
    order_currency: str = "INR"
    customer_details: CustomerDetails
    order_meta: Optional[OrderMeta] = None
    order_note: Optional[str] = None

    def to_gateway(self, base_url: str) -> Dict[str, Any]:
        meta = self.order_meta or OrderMeta()
        out: Dict[str, Any] = {
            "order_id": self.order_id,
            "order_amount": self.order_amount,
            "order_currency": self.order_currency,
            "customer_details": self.customer_details.model_dump(
                exclude_none=True
            ),
            "order_meta": {
                "return_url": meta.return_url or (
                    f"{base_url}/donate/success?order_id={self.order_id}"
                ),
                "notify_url": meta.notify_url or (
                    f"{base_url}/api/webhook/cashfree"
                ),
            },
        }
        if meta.payment_methods:
            out["order_meta"]["payment_methods"] = meta.payment_methods
        if self.order_note:
            out["order_note"] = self.order_note
        return out


class ProcessPaymentRequest(BaseModel):
    payment_session_id: str = Field(min_length=1)
    payment_method: Dict[str, Any]


# ---------- Donations ----------

class DonationRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str
    mobile: str = Field(min_length=1)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    country: Optional[str] = "India"
    pan_no: Optional[str] = None

    amount: float = Field(gt=0)
    donation_type: Optional[str] = "general"
    is_anonymous: bool = False
    dedication_message: Optional[str] = None
    preacher_name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _valid_email(cls, v: str) -> str:
        if not is_valid_email(v):
            raise ValueError("Invalid email address")
        return v.strip().lower()

    @field_validator("mobile")
    @classmethod
    def _valid_mobile(cls, v: str) -> str:
        if not is_valid_phone(v):
            raise ValueError("Invalid mobile number")
        return v.strip()


class ReconcileRequest(BaseModel):
    orderId: str = Field(min_length=1)


class UpdateStatusRequest(BaseModel):
    donationId: str = Field(min_length=1)
    status: str
    paymentId: Optional[str] = None


# ---------- Admin ----------

class AdminCreate(BaseModel):
    email: str
    name: str = ""
    mobile: str = ""
    role: str = "admin"
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def _valid_email(cls, v: str) -> str:
        if not is_valid_email(v):
            raise ValueError("Invalid email address")
        return v.strip().lower()


class EmailSettingUpdate(BaseModel):
    setting_key: str = Field(min_length=1)
    setting_value: Any = None


class EmailSettingsUpdate(BaseModel):
    settings: Dict[str, Any]


class EmailTestRequest(BaseModel):
    to: Optional[str] = None
    send: bool = False


def validation_details(errors: List[dict]) -> List[Dict[str, str]]:
    """Flatten pydantic errors into [{field, message}]."""
    out = []
    for e in errors:
        loc = [str(p) for p in e.get("loc", ()) if p not in ("body", "query")]
        out.append({"field": ".".join(loc), "message": e.get("msg", "")})
    return out
