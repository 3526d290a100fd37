"""
Persistence helpers for customers, orders and the payment ledger.

Every helper commits its own change and returns a :class:`Result` rather
than raising, so callers decide explicitly what a failed write means for
their response.
"""
import logging
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reservation_billing.models import Customer, Order, Payment, utcnow

logger = logging.getLogger(__name__)

# Driver-level conversion errors (e.g. SQLite integer overflow) are not wrapped by SQLAlchemy
PERSISTENCE_ERRORS = (SQLAlchemyError, OverflowError, ValueError)

T = TypeVar("T")


class OrderNotFound(LookupError):
    pass


@dataclass
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: Exception) -> "Result[T]":
        return cls(error=error)


def _failed(db: Session, action: str, exc: Exception) -> Result:
    db.rollback()
    logger.error("Database error while %s: %s", action, exc)
    return Result.failure(exc)


def get_order(db: Session, order_id: str) -> Result[Order]:
    try:
        return Result(db.query(Order).filter_by(order_id=order_id).first())
    except PERSISTENCE_ERRORS as exc:
        return _failed(db, f"fetching order {order_id}", exc)


def create_order(db: Session, order_id: str, **fields: Any) -> Result[Order]:
    try:
        order = Order(order_id=order_id, **fields)
        db.add(order)
        db.commit()
        db.refresh(order)
        return Result(order)
    except PERSISTENCE_ERRORS as exc:
        return _failed(db, f"creating order {order_id}", exc)


def update_order(db: Session, order_id: str, **fields: Any) -> Result[Order]:
    try:
        order = db.query(Order).filter_by(order_id=order_id).first()
        if order is None:
            return Result.failure(OrderNotFound(order_id))
        for name, value in fields.items():
            setattr(order, name, value)
        order.updated_at = utcnow()
        db.commit()
        db.refresh(order)
        return Result(order)
    except PERSISTENCE_ERRORS as exc:
        return _failed(db, f"updating order {order_id}", exc)


def record_payment(db: Session, **fields: Any) -> Result[Payment]:
    try:
        payment = Payment(**fields)
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return Result(payment)
    except PERSISTENCE_ERRORS as exc:
        return _failed(db, f"recording payment for order {fields.get('order_id')}", exc)


def upsert_customer(db: Session, email: str, **fields: Any) -> Result[Customer]:
    """Create the customer, or refresh their contact details when the email is known."""
    try:
        customer = db.query(Customer).filter_by(email=email).first()
        if customer is None:
            customer = Customer(email=email, **fields)
            db.add(customer)
        else:
            for name, value in fields.items():
                setattr(customer, name, value)
            customer.updated_at = utcnow()
        db.commit()
        db.refresh(customer)
        return Result(customer)
    except PERSISTENCE_ERRORS as exc:
        return _failed(db, f"saving customer {email}", exc)


def last_charge_number(db: Session, order_id: str) -> Result[int]:
    try:
        return Result(
            db.query(func.max(Payment.charge_number)).filter(Payment.order_id == order_id).scalar()
        )
    except PERSISTENCE_ERRORS as exc:
        return _failed(db, f"reading charges of order {order_id}", exc)
