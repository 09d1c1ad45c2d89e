"""
Host Notifier
-------------
Forwards terminal confirmation outcomes to the host application's webhook:

    POST HOST_CALLBACK_URL
    {"event": "payment.confirmed|payment.failed|payment.cancelled",
     "sessionId": "...", "view": {...}}

Delivery is best-effort and one-shot: the state machine already guarantees a
single outcome per session, and a host that is down must not affect the
confirmation itself. Returns (success, status_code, error) like the rest of
the delivery code.
"""
from __future__ import annotations

import time
from typing import Optional, Tuple

import httpx

from payconfirm.settings import settings
from payconfirm.confirm.models import ConfirmationView
from payconfirm.confirm.state_machine import ConfirmationCallbacks
from payconfirm.observability.logging import log

EVENT_CONFIRMED = "payment.confirmed"
EVENT_FAILED = "payment.failed"
EVENT_CANCELLED = "payment.cancelled"


def build_outcome_payload(event: str, view: ConfirmationView) -> dict:
    return {"event": event, "sessionId": view.sessionId, "view": view.to_dict()}


class HostNotifier:
    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url if url is not None else settings.HOST_CALLBACK_URL
        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.HOST_CALLBACK_TIMEOUT_SEC,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def notify(self, event: str, view: ConfirmationView) -> Tuple[bool, int, Optional[str]]:
        if not self.url:
            log(event="host_notify_skipped_no_url", sessionId=view.sessionId, outcome=event)
            return False, 0, "HOST_CALLBACK_URL is not set"

        payload = build_outcome_payload(event, view)
        start = time.monotonic()
        try:
            resp = await self._client.post(
                self.url,
                json=payload,
                headers={"Idempotency-Key": f"{view.sessionId}:{event}"},
            )
        except httpx.HTTPError as e:
            log(
                event="host_notify_exception",
                sessionId=view.sessionId,
                outcome=event,
                errorType=type(e).__name__,
                error=str(e)[:300],
            )
            return False, 0, str(e)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if 200 <= resp.status_code < 300:
            log(event="host_notify_success", sessionId=view.sessionId, outcome=event,
                statusCode=resp.status_code, elapsedMs=elapsed_ms)
            return True, resp.status_code, None

        log(event="host_notify_failed", sessionId=view.sessionId, outcome=event,
            statusCode=resp.status_code, elapsedMs=elapsed_ms, responseText=(resp.text or "")[:500])
        return False, resp.status_code, f"non_2xx:{resp.status_code}"

    def as_callbacks(self) -> ConfirmationCallbacks:
        async def on_success(view: ConfirmationView):
            await self.notify(EVENT_CONFIRMED, view)

        async def on_failure(view: ConfirmationView):
            await self.notify(EVENT_FAILED, view)

        async def on_cancel(view: ConfirmationView):
            await self.notify(EVENT_CANCELLED, view)

        return ConfirmationCallbacks(on_success=on_success, on_failure=on_failure, on_cancel=on_cancel)
