"""
Order and subscription lifecycle.

Orders start ``pending`` and move to ``active`` (subscription charged),
``paid`` (one-time charge) or ``failed``. Two signals drive the move: a
verified Allpay notification, handled by :func:`apply_notification`, and
the browser landing on the success page, handled by
:func:`verify_redirect`. Allpay does not notify the first subscription
charge, so the redirect is the only signal for initial activation.
"""
import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from reservation_billing import repository
from reservation_billing.models import ACTIVE, FAILED, PAID, PENDING, Order, utcnow
from reservation_billing.notifications import WebhookFields

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {"success", "approved", "completed"}
FAILURE_STATUSES = {"failed", "rejected", "cancelled", "canceled"}

MONTHS_PER_PERIOD = {"monthly": 1, "annual": 12}

LATE_GRACE_DAYS = 7


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def next_charge_date(from_date: date, billing_frequency: Optional[str]) -> date:
    return add_months(from_date, MONTHS_PER_PERIOD.get(billing_frequency or "monthly", 1))


def resolve_order_status(fields: WebhookFields) -> Optional[str]:
    """Status the order should take for this notification, ``None`` to leave it alone."""
    if fields.status_code == 1 or fields.status in SUCCESS_STATUSES:
        return ACTIVE if fields.is_recurring else PAID
    if fields.status_code == 0 or fields.status in FAILURE_STATUSES:
        return FAILED
    return None


@dataclass
class TransitionOutcome:
    order_id: Optional[str]
    order_status: Optional[str] = None
    payment_id: Optional[int] = None
    errors: List[Exception] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return not self.errors


def apply_notification(
    db: Session,
    fields: WebhookFields,
    raw_params: Dict[str, Any],
    today: Optional[date] = None,
) -> TransitionOutcome:
    today = today or utcnow().date()
    outcome = TransitionOutcome(order_id=fields.order_id)

    payment = repository.record_payment(
        db,
        order_id=fields.order_id,
        transaction_id=fields.transaction_id,
        subscription_id=fields.subscription_id,
        charge_number=fields.charge_number,
        status=fields.status,
        amount=fields.amount,
        currency=fields.currency,
        is_recurring=fields.is_recurring,
        webhook_data=raw_params,
    )
    if payment.ok:
        outcome.payment_id = payment.value.id
    else:
        outcome.errors.append(payment.error)

    target = resolve_order_status(fields)
    outcome.order_status = target
    if target is None:
        logger.info("Notification for order %s left status unchanged (%s)",
                    fields.order_id, fields.status)
        return outcome

    updates: Dict[str, Any] = {}
    if target == ACTIVE:
        found = repository.get_order(db, fields.order_id)
        if not found.ok:
            outcome.errors.append(found.error)
            return outcome
        frequency = found.value.billing_frequency if found.value else None
        updates["last_payment_date"] = today
        updates["next_charge_date"] = next_charge_date(today, frequency)
        if fields.is_first_charge:
            updates["subscription_id"] = fields.subscription_id

    if not fields.is_recurring or fields.is_first_charge:
        updates["status"] = target

    if updates:
        updated = repository.update_order(db, fields.order_id, **updates)
        if not updated.ok:
            outcome.errors.append(updated.error)

    if fields.is_recurring:
        logger.info("Payment %s for order %s (recurring charge #%s)",
                    fields.status, fields.order_id, fields.charge_number or 1)
    else:
        logger.info("Payment %s for order %s", fields.status, fields.order_id)
    return outcome


class RedirectRejected(Exception):
    status_code = 400


class OrderTooOld(RedirectRejected):
    pass


class PaymentNotConfirmed(RedirectRejected):
    status_code = 409


# Decides whether a success redirect counts as proof of payment
PaymentConfirmation = Callable[[Order], bool]


def trust_success_redirect(order: Order) -> bool:
    # Allpay only sends the browser to success_url after a successful charge.
    # TODO: replace with a provider status lookup once Allpay exposes one.
    return True


def require_provider_confirmation(order: Order) -> bool:
    return False


@dataclass
class RedirectOutcome:
    order_id: str
    status: str
    already_processed: bool = False

    @property
    def message(self) -> Optional[str]:
        if self.already_processed:
            return f"Order is already {self.status}"
        return None


def verify_redirect(
    db: Session,
    order_id: str,
    confirm: PaymentConfirmation = trust_success_redirect,
    max_age: timedelta = timedelta(hours=24),
    now: Optional[datetime] = None,
) -> RedirectOutcome:
    """Activate a pending order after the browser returned from a successful payment.

    Raises :class:`repository.OrderNotFound` for unknown orders and
    :class:`RedirectRejected` subclasses when the order may not be activated
    this way. Orders that already left ``pending`` are reported as they are.
    """
    now = now or utcnow()

    found = repository.get_order(db, order_id)
    if not found.ok:
        raise found.error
    order = found.value
    if order is None:
        raise repository.OrderNotFound(order_id)

    if order.status and order.status != PENDING:
        return RedirectOutcome(order_id, order.status, already_processed=True)

    if order.created_at is None or now - order.created_at > max_age:
        logger.warning("Refusing redirect activation of stale order %s", order_id)
        raise OrderTooOld("Order is too old to activate via redirect")

    if not confirm(order):
        logger.warning("Redirect activation of order %s not confirmed", order_id)
        raise PaymentNotConfirmed("Payment could not be confirmed with the provider")

    updated = repository.update_order(db, order_id, status=ACTIVE)
    if not updated.ok:
        raise updated.error
    logger.info("Order %s activated from success redirect", order_id)
    return RedirectOutcome(order_id, ACTIVE)


def payment_health(
    next_charge: Optional[date],
    is_active: bool,
    today: Optional[date] = None,
) -> Tuple[str, Optional[int]]:
    """Classify a subscription as healthy, late, overdue or missing.

    Returns the label together with the number of days the next charge is
    overdue (``None`` when it is not).
    """
    if not is_active or next_charge is None:
        return "missing", None

    today = today or utcnow().date()
    days_overdue = (today - next_charge).days
    if days_overdue <= 0:
        return "healthy", None
    if days_overdue > LATE_GRACE_DAYS:
        return "overdue", days_overdue
    return "late", days_overdue
