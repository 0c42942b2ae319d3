from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Column,
    String,
    Text,
    Boolean,
    DateTime,
    Numeric,
    ForeignKey,
    Index,
)

from ..helpers import new_id, utcnow


Base = declarative_base()

DONATION_STATUSES = ("pending", "completed", "failed", "refunded")


# ----------------------------
# ORM models
# ----------------------------
class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    mobile = Column(String, nullable=False, default="")
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    pin_code = Column(String, nullable=True)
    country = Column(String, nullable=False, default="India")
    pan_no = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False,
                        default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False,
                        default=utcnow, onupdate=utcnow)

    donations = relationship("Donation", back_populates="user")


class Donation(Base):
    __tablename__ = "user_donations"
    # the id doubles as the gateway order id
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    donation_type = Column(String, nullable=True)

    # pending | completed | failed | refunded
    payment_status = Column(String, nullable=False, default="pending")
    payment_id = Column(String, nullable=True)
    cashfree_order_id = Column(String, nullable=True)
    payment_gateway = Column(String, nullable=False, default="cashfree")
    receipt_number = Column(String, nullable=True, unique=True)

    is_anonymous = Column(Boolean, nullable=False, default=False)
    dedication_message = Column(Text, nullable=True)
    preacher_name = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False,
                        default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False,
                        default=utcnow, onupdate=utcnow)
    last_verified_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="donations")

    __table_args__ = (
        Index("idx_user_donations_status_updated",
              "payment_status", "updated_at"),
        Index("idx_user_donations_cashfree_order_id", "cashfree_order_id"),
    )


class Admin(Base):
    __tablename__ = "admin"
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False, default="")
    mobile = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="admin")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False,
                        default=utcnow)


class EmailSetting(Base):
    __tablename__ = "email_settings"
    id = Column(String(36), primary_key=True, default=new_id)
    setting_key = Column(String, nullable=False, unique=True)
    setting_value = Column(Text, nullable=True)
    # string | boolean | number
    setting_type = Column(String, nullable=False, default="string")
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False,
                        default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False,
                        default=utcnow, onupdate=utcnow)
    updated_by = Column(String, nullable=True)
