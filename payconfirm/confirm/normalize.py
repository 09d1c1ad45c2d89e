"""
Gateway Shape Normalization
---------------------------
The gateway and the order service do not agree on field names (PascalCase from
the M-Pesa callback, camelCase from the storefront backend, snake_case from the
order service). Every field-name variant is resolved here so the prober only
ever deals with a code, a description and a coarse order status.
"""
import re
from typing import Any, Optional

from payconfirm.confirm.models import PENDING, SUCCESS, FAILED

RESULT_CODE_KEYS = ("ResultCode", "resultCode", "result_code", "status")
RESULT_DESC_KEYS = ("ResultDesc", "resultDesc", "result_desc", "message")
ORDER_STATUS_KEYS = ("status", "paymentStatus", "payment_status")

ORDER_SUCCESS = frozenset({"paid", "completed"})
ORDER_FAILED = frozenset({"failed", "cancelled"})

CHECKOUT_ID_KEYS = ("CheckoutRequestID", "checkoutRequestID", "checkoutRequestId", "checkout_request_id")


def _first_present(payload: dict, keys) -> Optional[str]:
    for k in keys:
        v = payload.get(k)
        if v is None:
            continue
        s = str(v).strip()
        if s:
            return s
    return None


def extract_result_code(payload: Any) -> Optional[str]:
    """Result code as a string ("0", "1032", ...) or None when the gateway has no answer yet."""
    if not isinstance(payload, dict):
        return None
    return _first_present(payload, RESULT_CODE_KEYS)


def extract_result_desc(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    return _first_present(payload, RESULT_DESC_KEYS)


def extract_order_status(payload: Any) -> str:
    """Lower-cased order/payment status; empty string when none is present."""
    if not isinstance(payload, dict):
        return ""
    s = _first_present(payload, ORDER_STATUS_KEYS)
    if s is None:
        payment = payload.get("payment")
        if isinstance(payment, dict):
            s = _first_present(payment, ("status",))
    return (s or "").lower()


def map_order_status(status: str) -> str:
    s = (status or "").strip().lower()
    if s in ORDER_SUCCESS:
        return SUCCESS
    if s in ORDER_FAILED:
        return FAILED
    return PENDING


def extract_checkout_request_id(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    return _first_present(payload, CHECKOUT_ID_KEYS)


def normalize_order_ref(order_ref) -> Optional[str]:
    """
    Storefront sale ids always carry the SAL prefix:
      "sal000123" -> "SAL000123"
      "42"        -> "SAL000042"
      "X9"        -> "SALX9"
    """
    if order_ref is None:
        return None
    s = str(order_ref).upper().strip()
    if not s:
        return None
    if s.startswith("SAL"):
        return s
    if s.isdigit():
        return "SAL" + s.zfill(6)
    return "SAL" + s


def normalize_msisdn(phone) -> str:
    """Kenyan MSISDN form expected by the gateway: 0712345678 / +254712345678 -> 254712345678."""
    cleaned = re.sub(r"\D", "", str(phone or ""))
    if cleaned.startswith("0"):
        cleaned = "254" + cleaned[1:]
    return cleaned
