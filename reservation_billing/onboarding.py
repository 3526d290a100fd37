import logging
import random
import string
import time
from typing import Optional, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from reservation_billing import repository
from reservation_billing.models import PENDING

logger = logging.getLogger(__name__)

# plan -> (monthly, annual)
PLAN_PRICING = {
    "weekly": (39, 390),
    "biweekly": (25, 250),
    "business": (0, 0),
}

GROUP_RESERVATIONS = {"kids", "whole-family", "friend"}
COUPLE_RESERVATIONS = {"spouse", "boyfriend-girlfriend"}

REQUIRED_FIELDS = (
    "firstName", "lastName", "phoneNumber", "email", "address", "reservationWith",
    "preferredDay", "preferredTime", "startDateOption", "pricingPlan",
)


class OnboardingForm(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phoneNumber: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    reservationWith: Optional[str] = None
    numberOfPeople: Optional[Union[int, str]] = None
    preferredDay: Optional[str] = None
    preferredTime: Optional[str] = None
    startDateOption: Optional[str] = None
    pricingPlan: Optional[str] = None
    billingFrequency: Optional[str] = None
    additionalInfo: Optional[str] = None
    orderId: Optional[str] = None


class OnboardingError(ValueError):
    pass


def generate_order_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"ORDER-{int(time.time() * 1000)}-{suffix}"


def plan_amount(plan: str, billing_frequency: str) -> int:
    monthly, annual = PLAN_PRICING.get(plan, PLAN_PRICING["business"])
    return annual if billing_frequency == "annual" else monthly


def party_size(form: OnboardingForm) -> Optional[int]:
    if form.reservationWith in COUPLE_RESERVATIONS:
        return 2
    if not form.numberOfPeople:
        return None
    try:
        return int(str(form.numberOfPeople).strip())
    except ValueError:
        raise OnboardingError("Number of people must be a whole number")


def validate(form: OnboardingForm) -> None:
    if any(not getattr(form, name) for name in REQUIRED_FIELDS):
        raise OnboardingError("All required fields must be filled")
    if form.reservationWith in GROUP_RESERVATIONS and not form.numberOfPeople:
        raise OnboardingError("Number of people is required for this reservation type")


def submit(db: Session, form: OnboardingForm) -> Optional[str]:
    """Save the intake form against its customer and order.

    The order may already exist when checkout ran first; it is then only
    completed with the reservation details. Returns the order id, or
    ``None`` when the submission could not be stored.
    """
    validate(form)
    billing_frequency = form.billingFrequency or "monthly"
    reservation = dict(
        reservation_with=form.reservationWith,
        number_of_people=party_size(form),
        preferred_day=form.preferredDay,
        preferred_time=form.preferredTime,
        start_date_option=form.startDateOption,
        additional_info=form.additionalInfo or None,
    )

    customer = repository.upsert_customer(
        db,
        form.email,
        first_name=form.firstName,
        last_name=form.lastName,
        phone_number=form.phoneNumber,
        address=form.address,
    )
    if not customer.ok:
        return None

    order_id = form.orderId or generate_order_id()
    existing = repository.get_order(db, order_id)
    if not existing.ok:
        return None

    if existing.value is not None:
        saved = repository.update_order(db, order_id, customer_id=customer.value.id, **reservation)
    else:
        saved = repository.create_order(
            db,
            order_id,
            customer_id=customer.value.id,
            plan=form.pricingPlan,
            billing_frequency=billing_frequency,
            amount=plan_amount(form.pricingPlan, billing_frequency),
            status=PENDING,
            **reservation,
        )
    if not saved.ok:
        return None

    logger.info("Onboarding saved for customer %s, order %s", customer.value.id, order_id)
    return order_id
