from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
)


Base = declarative_base()

# reservation lifecycle
PENDING = "pending"
CONFIRMED = "confirmed"
EXPIRED = "expired"
FAILED = "failed"
RESERVATION_STATUSES = (PENDING, CONFIRMED, EXPIRED, FAILED)

ORDER_PAID = "paid"


# ----------------------------
# ORM models
# ----------------------------
class Reservation(Base):
    __tablename__ = "reservations"
    tx_ref = Column(String, primary_key=True)
    email = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)

    # [{sku, name, quantity, units, unit_price, selected_dates}]
    lines = Column(JSON, nullable=False)
    subtotal = Column(Integer, nullable=False)
    discount_code = Column(String, nullable=True)
    # {code, label, type, amount, value_applied}
    discount = Column(JSON, nullable=True)
    amount = Column(Integer, nullable=False)  # whole currency units
    currency = Column(String, nullable=False, default="NGN")

    # pending | confirmed | expired | failed
    status = Column(String, nullable=False, default=PENDING, index=True)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False, index=True)
    confirmed_at = Column(Float, nullable=True)


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    # at most one order per tx_ref, ever
    tx_ref = Column(String, nullable=False, unique=True)
    email = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)

    lines = Column(JSON, nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    discount_code = Column(String, nullable=True, index=True)
    discount = Column(JSON, nullable=True)

    status = Column(String, nullable=False, default=ORDER_PAID)
    gateway = Column(String, nullable=False, default="flutterwave")
    # verification evidence from the gateway lookup
    gateway_tx_id = Column(String, nullable=False)
    gateway_amount = Column(String, nullable=False)
    gateway_currency = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class DiscountCode(Base):
    __tablename__ = "discount_codes"
    code = Column(String, primary_key=True)  # upper case
    label = Column(String, nullable=False)
    # percentage | flat
    type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(Float, nullable=True)
    valid_to = Column(Float, nullable=True)
    max_uses = Column(Integer, nullable=True)
    max_uses_per_email = Column(Integer, nullable=True)
    min_cart_total = Column(Integer, nullable=True)
    applicable_skus = Column(JSON, nullable=True)
    allowed_emails = Column(JSON, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    notes = Column(String, nullable=True)
