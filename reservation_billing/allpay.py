import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from reservation_billing.config import Settings
from reservation_billing.errors import ConfigurationError, ProviderError
from reservation_billing.signature import format_price, generate_signature

logger = logging.getLogger(__name__)

PLAN_LABELS = {
    "weekly": "Weekly Plan",
    "biweekly": "Biweekly Plan",
    "business": "Business Plan",
}

# start_type 1 = charge immediately, end_type 1 = until cancelled
SUBSCRIPTION_TERMS = {"start_type": "1", "end_type": "1"}

PAYMENT_URL_FIELDS = ("url", "payment_url", "link")


@dataclass
class PaymentRequest:
    order_id: str
    plan: str
    amount: float
    email: str
    billing_frequency: str = "monthly"
    first_name: str = ""
    last_name: str = ""
    phone_number: Optional[str] = None


def plan_label(plan: str) -> str:
    return PLAN_LABELS.get(plan, PLAN_LABELS["business"])


def build_payment_params(request: PaymentRequest, settings: Settings, base_url: str) -> Dict[str, Any]:
    """Parameter set in the exact shape Allpay signs (every leaf a string)."""
    base_url = base_url.rstrip("/")
    return {
        "login": settings.allpay_login,
        "order_id": request.order_id,
        "items": [
            {
                "name": plan_label(request.plan),
                "qty": "1",
                "price": format_price(request.amount),
                "vat": "0",
            }
        ],
        "subscription": dict(SUBSCRIPTION_TERMS),
        "currency": settings.currency,
        "lang": settings.lang,
        "notifications_url": f"{base_url}/api/allpay/webhook",
        "success_url": f"{base_url}/payment/success?order_id={request.order_id}",
        "backlink_url": base_url,
        "client_name": f"{request.first_name or ''} {request.last_name or ''}".strip(),
        "client_email": request.email,
        "client_phone": request.phone_number or "",
    }


def build_request_body(params: Dict[str, Any], sign: str) -> Dict[str, Any]:
    # The API wants numbers on the wire, the signature was computed over strings
    body = dict(params)
    body["items"] = [
        {
            "name": item["name"],
            "qty": int(item["qty"]),
            "price": float(item["price"]),
            "vat": int(item["vat"]),
        }
        for item in params["items"]
    ]
    body["subscription"] = {
        name: int(value) for name, value in params["subscription"].items()
    }
    body["sign"] = sign
    return body


def extract_payment_url(response_text: str) -> Optional[str]:
    try:
        payload = json.loads(response_text)
    except ValueError:
        # Not JSON, Allpay may answer with the bare URL
        return response_text.strip() or None

    if isinstance(payload, dict):
        for field in PAYMENT_URL_FIELDS:
            value = payload.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return None


def create_payment(request: PaymentRequest, settings: Settings, base_url: str) -> str:
    """Open a hosted subscription payment page and return its URL."""
    if not settings.has_credentials:
        logger.error("ALLPAY_API_LOGIN or ALLPAY_API_KEY not set")
        raise ConfigurationError("Payment service is not configured")

    params = build_payment_params(request, settings, base_url)
    sign = generate_signature(params, settings.allpay_api_key)
    body = build_request_body(params, sign)

    logger.info("Creating Allpay subscription request for order %s", request.order_id)
    try:
        response = requests.post(
            settings.allpay_api_url,
            json=body,
            timeout=settings.request_timeout,
        )
    except requests.RequestException as exc:
        logger.error("Allpay request failed for order %s: %s", request.order_id, exc)
        raise ProviderError("Failed to reach payment provider", 502, str(exc)) from exc

    response_text = response.text
    logger.debug("Allpay response for order %s: %s", request.order_id, response_text)

    if not response.ok:
        logger.error("Allpay API error (%s): %s", response.status_code, response_text)
        raise ProviderError("Failed to create payment", response.status_code, response_text)

    payment_url = extract_payment_url(response_text)
    if not payment_url:
        logger.error("No payment URL in Allpay response: %s", response_text)
        raise ProviderError("Invalid response from payment provider", 502, response_text)

    logger.info("Payment URL created for order %s", request.order_id)
    return payment_url
