from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
)
from reservation_billing.database import Base

PENDING = "pending"
ACTIVE = "active"
PAID = "paid"
FAILED = "failed"


def utcnow() -> datetime:
    # Naive UTC, SQLite does not keep tzinfo
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String)
    last_name = Column(String)
    email = Column(String, unique=True, index=True, nullable=False)
    phone_number = Column(String)
    address = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, unique=True, index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    plan = Column(String)                          # weekly | biweekly | business
    billing_frequency = Column(String, default="monthly")  # monthly | annual
    amount = Column(Numeric(10, 2))
    status = Column(String, default=PENDING)       # pending | active | paid | failed
    subscription_id = Column(String, nullable=True)
    next_charge_date = Column(Date, nullable=True)
    last_payment_date = Column(Date, nullable=True)
    reservation_with = Column(String)
    number_of_people = Column(Integer, nullable=True)
    preferred_day = Column(String)
    preferred_time = Column(String)
    start_date_option = Column(String)
    additional_info = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, ForeignKey("orders.order_id"), index=True)
    transaction_id = Column(String, index=True, nullable=True)
    subscription_id = Column(String, nullable=True)
    charge_number = Column(Integer, nullable=True)  # 1 = first charge
    status = Column(String)
    amount = Column(Numeric(10, 2), nullable=True)
    currency = Column(String)
    is_recurring = Column(Boolean, default=False)
    webhook_data = Column(JSON)                     # notification as received
    created_at = Column(DateTime, default=utcnow)
