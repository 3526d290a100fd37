"""
Parsing of Allpay payment notifications.

Allpay posts notifications either as JSON or as a form-encoded body. Both
are normalised here into a :class:`Notification` before anything else
looks at them. The ``items`` field needs care: inside JSON payloads it may
arrive as a JSON-encoded string, and the provider signs that string rather
than the structure it decodes to, so the original text is kept next to the
parsed list.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from reservation_billing.errors import InvalidPayloadError

logger = logging.getLogger(__name__)

ARRAY_FIELD_RE = re.compile(r"^(.+?)\[(\d+)\]\[(.+?)\]$")

# Ordered aliases per logical field, first non-empty value wins
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "order_id": ("order_id",),
    "status": ("status", "payment_status"),
    "transaction_id": ("transaction_id", "payment_id", "receipt"),
    "subscription_id": ("subscription_id",),
    "charge_number": ("charge_number", "inst"),
    "amount": ("amount",),
    "currency": ("currency",),
}

DEFAULT_CURRENCY = "ILS"

# 0 = unpaid: the ledger keeps "pending", the order moves to failed on the code
STATUS_BY_CODE = {1: "success", 0: "pending"}

# Range of the INTEGER columns the numbers end up in
INT_MIN, INT_MAX = -(2 ** 31), 2 ** 31 - 1


@dataclass
class Notification:
    params: Dict[str, Any]
    raw_items: Optional[str] = None

    @property
    def received_sign(self) -> Optional[str]:
        sign = self.params.get("sign")
        return sign if isinstance(sign, str) else None

    def signed_params(self) -> Dict[str, Any]:
        """The parameter set as the provider signed it."""
        signed = dict(self.params)
        if self.raw_items is not None:
            signed["items"] = self.raw_items
        return signed


@dataclass
class JsonNotification(Notification):
    content_type: str = field(default="json", init=False)


@dataclass
class FormNotification(Notification):
    content_type: str = field(default="form", init=False)


@dataclass
class WebhookFields:
    order_id: Optional[str]
    status: str
    status_code: Optional[int] = None
    transaction_id: Optional[str] = None
    subscription_id: Optional[str] = None
    charge_number: Optional[int] = None
    amount: Optional[float] = None
    currency: str = DEFAULT_CURRENCY

    @property
    def is_recurring(self) -> bool:
        return bool(self.subscription_id)

    @property
    def is_first_charge(self) -> bool:
        return self.charge_number is None or self.charge_number == 1


def is_json(content_type: Optional[str]) -> bool:
    return "application/json" in (content_type or "").lower()


def parse_json_notification(body: bytes) -> JsonNotification:
    try:
        params = json.loads(body or b"{}")
    except ValueError as exc:
        raise InvalidPayloadError("Notification body is not valid JSON") from exc
    if not isinstance(params, dict):
        raise InvalidPayloadError("Notification body must be a JSON object")

    raw_items = None
    items = params.get("items")
    if isinstance(items, str):
        raw_items = items
        try:
            parsed = json.loads(items)
        except ValueError:
            logger.warning("items field is not valid JSON, keeping it as text")
        else:
            params["items"] = parsed
    return JsonNotification(params=params, raw_items=raw_items)


def parse_form_notification(pairs) -> FormNotification:
    """Build a notification from decoded form pairs (urlencoded or multipart)."""
    return FormNotification(params=collect_form_fields(pairs))


def collect_form_fields(pairs) -> Dict[str, Any]:
    """Fold ``name[index][prop]`` keys into a list of maps under ``name``."""
    params: Dict[str, Any] = {}
    arrays: Dict[str, Dict[int, Dict[str, str]]] = {}

    for key, value in pairs:
        if not isinstance(value, str):
            logger.debug("Skipping non-text form field %s", key)
            continue
        if "[" in key and "]" in key:
            match = ARRAY_FIELD_RE.match(key)
            if not match:
                logger.debug("Skipping unsupported form field %s", key)
                continue
            name, index, prop = match.group(1), int(match.group(2)), match.group(3)
            arrays.setdefault(name, {}).setdefault(index, {})[prop] = value
        else:
            params[key] = value

    for name, rows in arrays.items():
        params[name] = [rows[index] for index in sorted(rows)]
    return params


def lookup(params: Dict[str, Any], name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        value = params.get(alias)
        if value is None:
            continue
        if isinstance(value, str) and value.strip() == "":
            continue
        return value
    return None


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = value if isinstance(value, int) else int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return None
    return number if INT_MIN <= number <= INT_MAX else None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _to_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def extract_fields(params: Dict[str, Any]) -> WebhookFields:
    raw_status = params.get("status")
    status_code = _to_int(raw_status)
    if status_code in STATUS_BY_CODE:
        status = STATUS_BY_CODE[status_code]
    else:
        status = str(lookup(params, "status") or "pending").lower()

    currency = lookup(params, "currency")
    return WebhookFields(
        order_id=_to_str(lookup(params, "order_id")),
        status=status,
        status_code=status_code,
        transaction_id=_to_str(lookup(params, "transaction_id")),
        subscription_id=_to_str(lookup(params, "subscription_id")),
        charge_number=_to_int(lookup(params, "charge_number")),
        amount=_to_float(lookup(params, "amount")),
        currency=str(currency) if currency else DEFAULT_CURRENCY,
    )
