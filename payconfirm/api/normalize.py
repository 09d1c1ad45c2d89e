def _as_ref(v):
    """Refs arrive as strings or numbers (backend order ids); blank means absent."""
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def normalize_open_payload(payload: dict) -> dict:
    """
    Accepts the field names used by the different storefront screens and
    converts them into the canonical OpenConfirmationRequest shape:

    {"transactionRef": "...", "orderRef": "...", "amount": 0, "phone": "..."}
    """
    if payload is None:
        payload = {}

    transaction_ref = (
        payload.get("transactionRef")
        or payload.get("checkoutRequestId")
        or payload.get("checkoutRequestID")
        or payload.get("CheckoutRequestID")
        or None
    )
    order_ref = (
        payload.get("orderRef")
        or payload.get("saleId")
        or payload.get("sale_id")
        or payload.get("orderId")
        or None
    )
    amount = payload.get("amount")
    if amount is None:
        amount = payload.get("totalAmount") or 0
    phone = payload.get("phone") or payload.get("phoneNumber") or payload.get("payerPhone") or ""

    return {
        "transactionRef": _as_ref(transaction_ref),
        "orderRef": _as_ref(order_ref),
        "amount": amount,
        "phone": str(phone),
    }
