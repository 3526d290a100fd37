import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from reservation_billing import billing, onboarding, repository
from reservation_billing.allpay import PaymentRequest, create_payment
from reservation_billing.config import Settings, get_settings
from reservation_billing.database import get_db
from reservation_billing.errors import ConfigurationError, InvalidPayloadError, ProviderError
from reservation_billing.models import ACTIVE, PENDING
from reservation_billing.notifications import (
    extract_fields, is_json, parse_form_notification, parse_json_notification,
)
from reservation_billing.signature import generate_signature, verify_signature, without_sign

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def error(message: str, status_code: int, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def public_base_url(request: Request, settings: Settings) -> str:
    return settings.base_url or str(request.base_url).rstrip("/")


def get_payment_confirmation(settings: Settings = Depends(get_settings)) -> billing.PaymentConfirmation:
    if settings.trust_success_redirect:
        return billing.trust_success_redirect
    return billing.require_provider_confirmation


class CreatePaymentBody(BaseModel):
    orderId: Optional[str] = None
    plan: Optional[str] = None
    billingFrequency: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    amount: Optional[float] = None


class VerifyPaymentBody(BaseModel):
    orderId: Optional[str] = None


@router.post("/allpay/create-payment")
def create_payment_api(
    body: CreatePaymentBody,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if not (body.orderId and body.plan and body.amount and body.email):
        return error("Missing required payment fields", 400)

    billing_frequency = body.billingFrequency or "monthly"
    existing = repository.get_order(db, body.orderId)
    if existing.ok and existing.value is None:
        repository.create_order(
            db,
            body.orderId,
            plan=body.plan,
            billing_frequency=billing_frequency,
            amount=body.amount,
            status=PENDING,
        )

    payment_request = PaymentRequest(
        order_id=body.orderId,
        plan=body.plan,
        amount=body.amount,
        email=body.email,
        billing_frequency=billing_frequency,
        first_name=body.firstName or "",
        last_name=body.lastName or "",
        phone_number=body.phoneNumber,
    )
    try:
        payment_url = create_payment(payment_request, settings, public_base_url(request, settings))
    except ConfigurationError:
        return error("Payment service is not configured", 500)
    except ProviderError as exc:
        return error(str(exc), 502, details=exc.body)

    return {"success": True, "paymentUrl": payment_url, "orderId": body.orderId}


@router.get("/allpay/webhook")
def webhook_reachable():
    return {
        "message": "Webhook endpoint is accessible",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/allpay/webhook")
async def allpay_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if not settings.allpay_api_key:
        logger.error("ALLPAY_API_KEY not set")
        return error("Webhook not configured", 500)

    try:
        if is_json(request.headers.get("content-type")):
            notification = parse_json_notification(await request.body())
        else:
            form = await request.form()
            notification = parse_form_notification(form.multi_items())
    except InvalidPayloadError as exc:
        logger.error("Unreadable Allpay notification: %s", exc)
        return error("Invalid payload", 400)

    signed = notification.signed_params()
    received = notification.received_sign
    if not verify_signature(signed, received, settings.allpay_api_key):
        logger.error(
            "Invalid signature in webhook. Received: %s Calculated: %s Params: %s",
            received,
            generate_signature(signed, settings.allpay_api_key),
            without_sign(signed),
        )
        return error("Invalid signature", 401)

    fields = extract_fields(notification.params)
    outcome = await run_in_threadpool(billing.apply_notification, db, fields, signed)

    # Allpay is acked once the signature checks out, whatever happened locally
    if not outcome.completed:
        for exc in outcome.errors:
            logger.error("Webhook for order %s not fully applied: %r", fields.order_id, exc)
    return {"status": "ok"}


@router.post("/payment/verify")
def verify_payment(
    body: VerifyPaymentBody,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    confirm: billing.PaymentConfirmation = Depends(get_payment_confirmation),
):
    if not body.orderId:
        return error("Order ID is required", 400)

    try:
        outcome = billing.verify_redirect(
            db,
            body.orderId,
            confirm=confirm,
            max_age=timedelta(hours=settings.redirect_max_age_hours),
        )
    except repository.OrderNotFound:
        return error("Order not found", 404)
    except billing.RedirectRejected as exc:
        return error(str(exc), exc.status_code)

    response = {"success": True, "orderId": outcome.order_id, "status": outcome.status}
    if outcome.message:
        response["message"] = outcome.message
    return response


@router.post("/onboarding")
def submit_onboarding(form: onboarding.OnboardingForm, db: Session = Depends(get_db)):
    try:
        order_id = onboarding.submit(db, form)
    except onboarding.OnboardingError as exc:
        return error(str(exc), 400)

    if order_id is None:
        logger.error("Onboarding for %s was not saved", form.email)
    return {"message": "Form submitted successfully", "orderId": order_id}


@router.get("/orders/{order_id}/health")
def order_payment_health(order_id: str, db: Session = Depends(get_db)):
    found = repository.get_order(db, order_id)
    if not found.ok:
        return error("Internal server error", 500)
    order = found.value
    if order is None:
        return error("Order not found", 404)

    charges = repository.last_charge_number(db, order_id)
    status, days_overdue = billing.payment_health(order.next_charge_date, order.status == ACTIVE)
    return {
        "orderId": order.order_id,
        "subscriptionId": order.subscription_id,
        "status": status,
        "nextChargeDate": order.next_charge_date.isoformat() if order.next_charge_date else None,
        "lastPaymentDate": order.last_payment_date.isoformat() if order.last_payment_date else None,
        "daysOverdue": days_overdue,
        "lastChargeNumber": charges.value if charges.ok else None,
    }
