import random
import string
import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    JSON,
    func,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .db import Base


def _json_type():
    """JSON type compatible with Postgres and SQLite."""
    return JSON().with_variant(JSONB, "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


def _sku() -> str:
    return "TYR-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=9))


ROLES = ("user", "admin")
PAYMENT_MODES = ("COD", "UPI")
PAYMENT_STATUSES = ("PENDING", "PAID")
ORDER_STATUSES = ("Pending", "Confirmed", "Shipped", "Delivered", "Cancelled")
OTP_PURPOSES = ("LOGIN", "SIGNUP")


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(32), unique=True, nullable=True, index=True)
    # Null for accounts created through OTP or Firebase phone login
    password_hash = Column(String(255), nullable=True)
    role = Column(String(16), nullable=False, default="user")
    is_active = Column(Boolean, nullable=False, default=True)
    phone_otp_hash = Column(String(255), nullable=True)
    phone_otp_expires_at = Column(DateTime(timezone=True), nullable=True)
    phone_otp_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    orders = relationship("Order", back_populates="user")


class Otp(Base):
    __tablename__ = "otps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, index=True)
    otp_hash = Column(String(255), nullable=False)
    purpose = Column(String(16), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Tyre(Base):
    __tablename__ = "tyres"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_tyres_stock_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    sku = Column(String(64), unique=True, nullable=False, default=_sku)
    brand = Column(String(128), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    size = Column(String(64), nullable=False)
    # compact_size(size); kept in sync by the routes that write tyres
    size_key = Column(String(64), nullable=False, index=True)
    price = Column(Float, nullable=False)
    warranty_months = Column(Integer, nullable=False, default=36)
    images = Column(_json_type(), nullable=False, default=list)
    stock = Column(Integer, nullable=False, default=0)
    type = Column(String(64), nullable=False, default="Tubeless")
    load_index = Column(String(16), nullable=True)
    rating = Column(String(16), nullable=True)
    features = Column(_json_type(), nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Car(Base):
    __tablename__ = "cars"

    id = Column(String(36), primary_key=True, default=_uuid)
    make = Column(String(128), nullable=False, index=True)
    model = Column(String(128), nullable=False, index=True)
    years = Column(_json_type(), nullable=False, default=list)
    type = Column(String(64), nullable=True)
    fuel_type = Column(String(64), nullable=True)
    transmission = Column(String(64), nullable=True)
    tyre_size = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Fitment(Base):
    __tablename__ = "fitments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    car_make = Column(String(128), nullable=False, index=True)
    car_model = Column(String(128), nullable=False, index=True)
    year = Column(Integer, nullable=True, index=True)
    tyre_size = Column(String(64), nullable=False)
    tyre_brand = Column(String(128), nullable=True)
    price = Column(Float, nullable=False, default=0)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    # [{"tyre": {"id", "brand", "title", "size", "price", "images"}, "quantity", "price"}]
    items = Column(_json_type(), nullable=False, default=list)
    total_amount = Column(Float, nullable=False)
    # {"fullName", "phone", "address", "city", "state", "pincode"}
    shipping_address = Column(_json_type(), nullable=False)
    payment_mode = Column(String(8), nullable=False)
    payment_status = Column(String(16), nullable=False, default="PENDING")
    status = Column(String(16), nullable=False, default="Pending", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="orders")


class FitmentCache(Base):
    """Tyre sizes returned by Wheel-Size for one make/model/year/modification."""

    __tablename__ = "fitment_cache"
    __table_args__ = (
        UniqueConstraint("make", "model", "year", "modification", name="uq_fitment_cache_vehicle"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    make = Column(String(128), nullable=False)
    model = Column(String(128), nullable=False)
    year = Column(Integer, nullable=False)
    modification = Column(String(255), nullable=False)
    sizes = Column(_json_type(), nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AiFitmentCache(Base):
    """
    Validated AI fitment answers keyed by "make|model|year" (lower-case).

    value = {"sizes": [{"size", "verified", "verifiedBy"}], "source": "ai+validation", "modelUsed": "..."}
    """

    __tablename__ = "ai_fitment_cache"

    key = Column(String(255), primary_key=True)
    result = Column(_json_type(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
