from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from payconfirm.settings import settings
from payconfirm.confirm.normalize import (
    extract_checkout_request_id,
    normalize_msisdn,
    normalize_order_ref,
)
from payconfirm.confirm.errors import PaymentInitiationError
from payconfirm.observability.logging import log


class GatewayError(Exception):
    """Transport or protocol failure talking to the gateway / order service."""

    def __init__(self, message: str, *, status_code: int = 0, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _headers() -> dict:
    h = {"Content-Type": "application/json"}
    if settings.GATEWAY_API_KEY:
        h["x-api-key"] = settings.GATEWAY_API_KEY
    return h


def _json_object(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if not (200 <= resp.status_code < 300):
        raise GatewayError(f"non_2xx:{resp.status_code}", status_code=resp.status_code, body=body)
    if not isinstance(body, dict):
        raise GatewayError("response body is not a JSON object", status_code=resp.status_code, body=body)
    return body


class GatewayClient:
    """Raw I/O against the payment gateway and the order service.

    Every method either returns the decoded JSON object or raises GatewayError;
    interpreting result codes is the prober's job.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        order_service_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.GATEWAY_BASE_URL).rstrip("/")
        # The order service usually lives behind the same backend
        self.order_service_url = (order_service_url or settings.ORDER_SERVICE_URL or self.base_url).rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SEC,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self._client.request(method, url, headers=_headers(), **kwargs)
        except httpx.HTTPError as e:
            raise GatewayError(f"{type(e).__name__}:{str(e)[:200]}") from e
        return _json_object(resp)

    async def query_transaction_status(self, transaction_ref: str) -> Dict[str, Any]:
        """POST {base}/api/payments/queryStatus"""
        return await self._request(
            "POST",
            f"{self.base_url}/api/payments/queryStatus",
            json={"checkoutRequestID": transaction_ref},
        )

    async def query_order_status(self, order_ref: str) -> Dict[str, Any]:
        """GET {orders}/customer/orders/{orderRef}/status"""
        # order_ref comes from the client; keep it a single path segment
        segment = quote(str(order_ref), safe="")
        return await self._request("GET", f"{self.order_service_url}/customer/orders/{segment}/status")

    async def initiate_stk_push(self, phone: str, amount: float, order_ref: str) -> str:
        """
        Trigger the push-to-phone PIN prompt and return the gateway transaction
        reference (CheckoutRequestID) used for confirmation polling.
        """
        sale_id = normalize_order_ref(order_ref)
        msisdn = normalize_msisdn(phone)
        payload = {
            "phone": msisdn,
            "amount": amount,
            "sale_id": sale_id,
            "account_reference": sale_id,
        }
        try:
            data = await self._request("POST", f"{self.base_url}/api/stk", json=payload)
        except GatewayError as e:
            body = e.body if isinstance(e.body, dict) else {}
            msg = body.get("errorMessage") or body.get("message") or str(e)
            log(event="stk_push_failed", orderRef=sale_id, phone=msisdn, error=str(msg)[:300])
            raise PaymentInitiationError(str(msg)) from e

        accepted = bool(data.get("success")) or str(data.get("ResponseCode", "")).strip() == "0"
        if not accepted:
            msg = data.get("errorMessage") or "STK push failed"
            log(event="stk_push_rejected", orderRef=sale_id, phone=msisdn, raw=data)
            raise PaymentInitiationError(str(msg))

        transaction_ref = extract_checkout_request_id(data)
        if not transaction_ref and isinstance(data.get("data"), dict):
            transaction_ref = extract_checkout_request_id(data["data"])
        if not transaction_ref:
            log(event="stk_push_missing_reference", orderRef=sale_id, raw=data)
            raise PaymentInitiationError("Payment initiated but no transaction reference was returned")

        log(event="stk_push_accepted", orderRef=sale_id, phone=msisdn, transactionRef=transaction_ref)
        return transaction_ref
