"""
Confirmation Controller
-----------------------
Inbound surface of the confirmation core: open / retry / cancel / close.

Owns one (session, state machine, polling engine) triple per open confirmation
and a transactionRef index so that a reference is never polled by two engines
at once. All methods must be called from the event loop that runs the engines.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

from payconfirm.settings import settings
from payconfirm.confirm.errors import SessionNotFound
from payconfirm.confirm.models import (
    ConfirmationSession,
    ConfirmationView,
    PENDING,
    PROCESSING,
    FAILED,
)
from payconfirm.confirm.normalize import normalize_msisdn, normalize_order_ref
from payconfirm.confirm.prober import StatusProber
from payconfirm.confirm.state_machine import ConfirmationCallbacks, ConfirmationStateMachine
from payconfirm.confirm.engine import PollingEngine
from payconfirm.observability.logging import log
from payconfirm.utils.time import ms_to_sec, now_ms

# Sessions in these states still own their transactionRef
_REF_HOLDING_STATES = (PENDING, PROCESSING, FAILED)


@dataclass
class _Entry:
    session: ConfirmationSession
    machine: ConfirmationStateMachine
    engine: PollingEngine
    restart: Optional[asyncio.TimerHandle] = None


class ConfirmationController:
    def __init__(
        self,
        prober: StatusProber,
        *,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
        success_delay_ms: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        session_ttl_ms: Optional[int] = None,
        callbacks: Optional[ConfirmationCallbacks] = None,
    ):
        self.prober = prober
        self.max_attempts = int(max_attempts if max_attempts is not None else settings.CONFIRM_MAX_ATTEMPTS)
        self.interval_ms = int(interval_ms if interval_ms is not None else settings.CONFIRM_INTERVAL_MS)
        self.success_delay_ms = int(success_delay_ms if success_delay_ms is not None else settings.SUCCESS_DISPLAY_DELAY_MS)
        self.retry_delay_ms = int(retry_delay_ms if retry_delay_ms is not None else settings.RETRY_DELAY_MS)
        self.session_ttl_ms = int(session_ttl_ms if session_ttl_ms is not None else settings.SESSION_IDLE_TTL_SEC * 1000)
        self.default_callbacks = callbacks
        self._entries: Dict[str, _Entry] = {}
        self._by_ref: Dict[str, str] = {}

    # ----- lookup -----
    def _entry(self, session_id: str) -> _Entry:
        entry = self._entries.get(session_id)
        if entry is None:
            raise SessionNotFound(session_id)
        return entry

    def get(self, session_id: str) -> ConfirmationSession:
        return self._entry(session_id).session

    def view(self, session_id: str) -> ConfirmationView:
        return self._entry(session_id).machine.view()

    def add_listener(self, session_id: str, fn) -> None:
        """fn(session, prev_state, new_state) after every transition of that session."""
        self._entry(session_id).machine.add_listener(fn)

    def is_polling(self, session_id: str) -> bool:
        return self._entry(session_id).engine.running

    @property
    def active_count(self) -> int:
        return len(self._entries)

    # ----- inbound operations -----
    def open_confirmation(
        self,
        transaction_ref: Optional[str],
        order_ref: Optional[str] = None,
        amount: float = 0.0,
        phone: str = "",
        callbacks: Optional[ConfirmationCallbacks] = None,
    ) -> ConfirmationSession:
        transaction_ref = (str(transaction_ref).strip() or None) if transaction_ref is not None else None
        self.evict_idle()

        if transaction_ref:
            existing_id = self._by_ref.get(transaction_ref)
            if existing_id is not None:
                existing = self._entries[existing_id]
                if existing.session.state in _REF_HOLDING_STATES:
                    log(event="confirmation_reused", sessionId=existing_id, transactionRef=transaction_ref)
                    return existing.session
                self.close(existing_id)

        session = ConfirmationSession(
            transactionRef=transaction_ref,
            orderRef=normalize_order_ref(order_ref),
            amount=float(amount or 0.0),
            payerPhone=normalize_msisdn(phone),
            maxAttempts=self.max_attempts,
            intervalMs=self.interval_ms,
        )
        machine = ConfirmationStateMachine(
            session,
            callbacks or self.default_callbacks,
            success_delay_ms=self.success_delay_ms,
        )
        engine = PollingEngine(machine, self.prober)
        self._entries[session.sessionId] = _Entry(session=session, machine=machine, engine=engine)
        if transaction_ref:
            self._by_ref[transaction_ref] = session.sessionId

        log(
            event="confirmation_opened",
            sessionId=session.sessionId,
            transactionRef=transaction_ref,
            orderRef=session.orderRef,
            amount=session.amount,
            phone=session.payerPhone,
        )
        # Without a reference this fails the session on the spot; no timer is armed.
        engine.start()
        return session

    def retry(self, session_id: str) -> ConfirmationSession:
        entry = self._entry(session_id)
        entry.machine.request_retry()
        entry.engine.reset_budget()
        self._cancel_restart(entry)
        loop = asyncio.get_running_loop()
        entry.restart = loop.call_later(ms_to_sec(self.retry_delay_ms), self._restart, session_id)
        log(event="confirmation_retry_scheduled", sessionId=session_id, delayMs=self.retry_delay_ms)
        return entry.session

    def _restart(self, session_id: str) -> None:
        entry = self._entries.get(session_id)
        if entry is None:
            return
        entry.restart = None
        if entry.session.state == PENDING:
            entry.engine.start()

    def cancel(self, session_id: str) -> ConfirmationSession:
        entry = self._entry(session_id)
        self._cancel_restart(entry)
        entry.engine.stop()
        entry.machine.cancel()
        return entry.session

    def close(self, session_id: str) -> ConfirmationView:
        """Tear down: the UI went away. Non-terminal sessions count as cancelled.

        Returns the final view, since the session is no longer retrievable afterwards.
        """
        entry = self._entry(session_id)
        self._cancel_restart(entry)
        entry.engine.stop()
        if entry.machine.can_cancel:
            entry.machine.cancel()
        else:
            entry.machine.settle()

        self._entries.pop(session_id, None)
        ref = entry.session.transactionRef
        if ref and self._by_ref.get(ref) == session_id:
            self._by_ref.pop(ref, None)
        log(event="confirmation_closed", sessionId=session_id, state=entry.session.state)
        return entry.machine.view()

    def evict_idle(self) -> int:
        """Close settled sessions (success / failed / cancelled) idle for longer than the TTL.

        A browser that never sends close would otherwise keep them registered forever.
        """
        cutoff = now_ms() - self.session_ttl_ms
        stale = [
            sid for sid, e in self._entries.items()
            if e.session.is_terminal and e.session.updatedAtMs <= cutoff
        ]
        for session_id in stale:
            entry = self._entries[session_id]
            self.close(session_id)
            entry.machine.flush()
            log(event="confirmation_evicted", sessionId=session_id, state=entry.session.state)
        return len(stale)

    def shutdown(self) -> None:
        for session_id in list(self._entries.keys()):
            entry = self._entries[session_id]
            self.close(session_id)
            entry.machine.flush()

    @staticmethod
    def _cancel_restart(entry: _Entry) -> None:
        if entry.restart is not None:
            entry.restart.cancel()
            entry.restart = None
