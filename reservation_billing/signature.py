"""
Allpay request signing.

The provider signs a parameter set by concatenating its non-empty string
values in alphabetical key order, joined with ``:``, followed by ``:`` and
the API key, and hashing the result with SHA-256. The same function signs
outgoing payment requests and checks incoming notifications.
"""
import hashlib
import hmac
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping


def _is_blank(value: str) -> bool:
    return value.strip() == ""


def _scalar_to_string(value: Any):
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return js_number(value)
    return str(value)


def js_number(value: float) -> str:
    """Format a float the way JavaScript's ``Number.prototype.toString`` does.

    The provider signs numbers in that form: ``39.0`` is ``"39"``, ``1e-07``
    is ``"1e-7"`` and ``1e16`` is ``"10000000000000000"``.
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    # repr gives the shortest digits that round-trip, as JavaScript does
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    n = exponent + k

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        power = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        text = f"{mantissa}e{'+' if power >= 0 else '-'}{abs(power)}"
    return sign + text


def _mapping_chunks(mapping: Mapping[str, Any]) -> List[str]:
    # Only string members of nested structures take part in the signature
    chunks = []
    for name in sorted(mapping):
        value = mapping[name]
        if isinstance(value, str) and not _is_blank(value):
            chunks.append(value)
    return chunks


def signature_chunks(params: Mapping[str, Any]) -> List[str]:
    chunks: List[str] = []
    for key in sorted(params):
        if key == "sign":
            continue
        value = params[key]
        if isinstance(value, (list, tuple)):
            for item in value:
                if isinstance(item, Mapping):
                    chunks.extend(_mapping_chunks(item))
        elif isinstance(value, Mapping):
            chunks.extend(_mapping_chunks(value))
        else:
            text = _scalar_to_string(value)
            if text is not None and not _is_blank(text):
                chunks.append(text)
    return chunks


def generate_signature(params: Mapping[str, Any], api_key: str) -> str:
    signature_string = ":".join(signature_chunks(params)) + ":" + api_key
    return hashlib.sha256(signature_string.encode("utf-8")).hexdigest()


def verify_signature(params: Mapping[str, Any], received: Any, api_key: str) -> bool:
    if not isinstance(received, str) or not received:
        return False
    calculated = generate_signature(params, api_key)
    return hmac.compare_digest(calculated.encode("utf-8"), received.encode("utf-8"))


def format_price(amount) -> str:
    """Price as a string rounded to exactly two decimals, e.g. ``39`` -> ``"39.00"``."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return format(value, "f")


def without_sign(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if key != "sign"}
