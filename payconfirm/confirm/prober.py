"""
Status Prober
-------------
One probe = one status-check round trip. The primary query goes to the
gateway's transaction-status endpoint; if that query cannot complete and an
order reference is known, the order service is asked instead.

probe() never raises. Any failure to verify becomes a PENDING result carrying
a diagnostic message: an unreachable gateway is not a declined payment.
"""
from __future__ import annotations

from typing import Optional

from payconfirm.confirm.models import (
    ProbeResult,
    PENDING,
    SUCCESS,
    FAILED,
    SOURCE_PRIMARY,
    SOURCE_FALLBACK,
    SOURCE_NONE,
    MSG_SUCCESS,
    MSG_STILL_PROCESSING,
    MSG_VERIFYING,
    MSG_UNABLE_TO_VERIFY,
)
from payconfirm.confirm.normalize import (
    extract_result_code,
    extract_result_desc,
    extract_order_status,
    map_order_status,
)
from payconfirm.gateway.client import GatewayClient
from payconfirm.observability.logging import log

# Order-service vocabulary -> message shown while/after the fallback answers
_ORDER_MESSAGES = {
    SUCCESS: MSG_SUCCESS,
    FAILED: "Payment was not completed for this order",
    PENDING: MSG_STILL_PROCESSING,
}


def interpret_transaction_status(payload) -> ProbeResult:
    code = extract_result_code(payload)
    if code == "0":
        return ProbeResult(status=SUCCESS, message=MSG_SUCCESS, raw=payload, source=SOURCE_PRIMARY)
    if code:
        desc = extract_result_desc(payload)
        return ProbeResult(
            status=FAILED,
            message=desc or f"Payment failed with code: {code}",
            raw=payload,
            source=SOURCE_PRIMARY,
        )
    return ProbeResult(status=PENDING, message=MSG_STILL_PROCESSING, raw=payload, source=SOURCE_PRIMARY)


def interpret_order_status(payload) -> ProbeResult:
    status = map_order_status(extract_order_status(payload))
    return ProbeResult(status=status, message=_ORDER_MESSAGES[status], raw=payload, source=SOURCE_FALLBACK)


def _error_message(err: Exception) -> Optional[str]:
    body = getattr(err, "body", None)
    if isinstance(body, dict):
        msg = body.get("message") or body.get("errorMessage")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return None


class StatusProber:
    def __init__(self, client: GatewayClient):
        self.client = client

    async def probe(self, transaction_ref: str, order_ref: Optional[str] = None) -> ProbeResult:
        try:
            payload = await self.client.query_transaction_status(transaction_ref)
            return interpret_transaction_status(payload)
        except Exception as e:
            primary_err = e
            log(
                event="probe_primary_failed",
                transactionRef=transaction_ref,
                errorType=type(e).__name__,
                error=str(e)[:300],
            )

        if not order_ref:
            # Surface what the gateway said, if anything; keep polling either way.
            return ProbeResult(
                status=PENDING,
                message=_error_message(primary_err) or MSG_VERIFYING,
                raw=getattr(primary_err, "body", None),
                source=SOURCE_NONE,
            )

        try:
            payload = await self.client.query_order_status(order_ref)
            result = interpret_order_status(payload)
            log(
                event="probe_fallback_answered",
                transactionRef=transaction_ref,
                orderRef=order_ref,
                status=result.status,
            )
            return result
        except Exception as e:
            log(
                event="probe_fallback_failed",
                transactionRef=transaction_ref,
                orderRef=order_ref,
                errorType=type(e).__name__,
                error=str(e)[:300],
            )
        return ProbeResult(status=PENDING, message=MSG_UNABLE_TO_VERIFY, raw=None, source=SOURCE_NONE)
