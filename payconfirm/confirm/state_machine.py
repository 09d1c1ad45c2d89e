"""
Confirmation State Machine
--------------------------
Authoritative state of one confirmation session:

    pending ──begin──> processing ──probe success──> success
       │                  │  ^ probe pending (stays)
       │                  │──probe failed / budget exhausted──> failed ──retry──> pending
       └──────cancel──────┴──cancel──> cancelled

success and cancelled are final. failed is final until an explicit retry.

Outcome callbacks are latched: at most one of success/failure/cancel is ever
delivered for a session. A failure is delivered when the failed session is
settled (closed without retrying); a retried failure is never reported.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from payconfirm.confirm.errors import InvalidTransition
from payconfirm.confirm.models import (
    ConfirmationSession,
    ConfirmationView,
    ProbeResult,
    PENDING,
    PROCESSING,
    SUCCESS,
    FAILED,
    CANCELLED,
    FAILURE_PRECONDITION,
    FAILURE_GATEWAY,
    FAILURE_TIMEOUT,
    MSG_AWAITING_PIN,
    MSG_NO_TRANSACTION,
    MSG_TIMEOUT,
    MSG_RETRYING,
    MSG_CANCELLED,
    STEP_TITLES,
)
from payconfirm.observability import metrics
from payconfirm.observability.logging import log, mask_phone
from payconfirm.utils.time import now_ms, ms_to_sec

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"
OUTCOME_CANCEL = "cancel"

# Progress bar shape while processing: starts at 10%, never shows 100% before success
PROGRESS_START = 10
PROGRESS_CAP = 95

Listener = Callable[[ConfirmationSession, str, str], Any]

# Strong references to fire-and-forget tasks until they finish
_background: set = set()


def spawn(coro) -> Optional[asyncio.Task]:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        return None
    task = loop.create_task(coro)
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


async def drain(timeout: float = 2.0) -> None:
    """Give in-flight outcome deliveries a bounded chance to finish (shutdown path)."""
    tasks = [t for t in _background if not t.done()]
    if tasks:
        await asyncio.wait(tasks, timeout=timeout)


@dataclass
class ConfirmationCallbacks:
    """Host contracts. Each receives the ConfirmationView; plain or async callables."""
    on_success: Optional[Callable[[ConfirmationView], Any]] = None
    on_failure: Optional[Callable[[ConfirmationView], Any]] = None
    on_cancel: Optional[Callable[[ConfirmationView], Any]] = None


def compute_progress(session: ConfirmationSession) -> int:
    if session.state == SUCCESS:
        return 100
    if session.state == PROCESSING:
        step = (100.0 / max(1, session.maxAttempts)) * 0.8
        return int(min(PROGRESS_CAP, PROGRESS_START + session.attemptCount * step))
    return 0


def compute_steps(state: str) -> List[dict]:
    steps = [{"id": i + 1, "title": t, "completed": False, "active": False} for i, t in enumerate(STEP_TITLES)]
    if state == PENDING:
        steps[0].update(completed=True, active=True)
    elif state == PROCESSING:
        steps[0].update(completed=True)
        steps[1].update(active=True)
        steps[2].update(active=True)
    elif state == SUCCESS:
        for s in steps:
            s["completed"] = True
        steps[3]["active"] = True
    # failed / cancelled: nothing completed, nothing active
    return steps


class ConfirmationStateMachine:
    def __init__(
        self,
        session: ConfirmationSession,
        callbacks: Optional[ConfirmationCallbacks] = None,
        *,
        success_delay_ms: int = 1500,
    ):
        self.session = session
        self.callbacks = callbacks or ConfirmationCallbacks()
        self.success_delay_ms = success_delay_ms
        self.delivered: Optional[str] = None
        self._success_handle: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Listener] = []

    # ----- observation -----
    def add_listener(self, fn: Listener) -> None:
        self._listeners.append(fn)

    @property
    def can_retry(self) -> bool:
        return self.session.state == FAILED and self.session.failureKind != FAILURE_PRECONDITION

    @property
    def can_cancel(self) -> bool:
        return self.session.state in (PENDING, PROCESSING)

    def view(self) -> ConfirmationView:
        s = self.session
        remaining = max(0, s.maxAttempts - s.attemptCount)
        return ConfirmationView(
            sessionId=s.sessionId,
            state=s.state,
            message=s.message,
            attemptCount=s.attemptCount,
            maxAttempts=s.maxAttempts,
            remainingAttempts=remaining,
            remainingSeconds=int(remaining * ms_to_sec(s.intervalMs)) if s.state in (PENDING, PROCESSING) else 0,
            progress=compute_progress(s),
            steps=compute_steps(s.state),
            canRetry=self.can_retry,
            canCancel=self.can_cancel,
            failureKind=s.failureKind,
            transactionRef=s.transactionRef,
            orderRef=s.orderRef,
            amount=s.amount,
            payerPhone=mask_phone(s.payerPhone) if s.payerPhone else "",
        )

    # ----- transitions -----
    def _transition(self, new_state: str, message: str, *, failure_kind: Optional[str] = None) -> None:
        s = self.session
        prev = s.state
        s.state = new_state
        s.message = message
        s.updatedAtMs = now_ms()
        if new_state == FAILED:
            s.failureKind = failure_kind
        elif new_state in (PENDING, PROCESSING, SUCCESS):
            s.failureKind = None

        log(
            event="confirmation_transition",
            sessionId=s.sessionId,
            transactionRef=s.transactionRef,
            fromState=prev,
            toState=new_state,
            attempt=s.attemptCount,
            failureKind=s.failureKind,
            message=message,
        )
        if new_state != prev and new_state in (SUCCESS, FAILED, CANCELLED):
            spawn(metrics.record_terminal(new_state))

        for fn in list(self._listeners):
            try:
                fn(s, prev, new_state)
            except Exception as e:
                log(event="confirmation_listener_error", sessionId=s.sessionId, error=str(e)[:300])

    def begin(self) -> bool:
        """pending -> processing. A session without a transaction reference fails immediately."""
        s = self.session
        if s.state != PENDING:
            return False
        if not s.transactionRef:
            self._transition(FAILED, MSG_NO_TRANSACTION, failure_kind=FAILURE_PRECONDITION)
            return False
        self._transition(PROCESSING, MSG_AWAITING_PIN)
        return True

    def apply_probe(self, result: ProbeResult) -> bool:
        """Apply one probe outcome. Returns True when the session reached a terminal state."""
        if self.session.state != PROCESSING:
            return self.session.is_terminal
        if result.status == SUCCESS:
            self._transition(SUCCESS, result.message)
            self._schedule_success()
            return True
        if result.status == FAILED:
            self._transition(FAILED, result.message, failure_kind=FAILURE_GATEWAY)
            return True
        self._transition(PROCESSING, result.message)
        return False

    def time_out(self) -> None:
        if self.session.state == PROCESSING:
            self._transition(FAILED, MSG_TIMEOUT, failure_kind=FAILURE_TIMEOUT)

    def request_retry(self) -> None:
        """failed -> pending. The caller restarts polling once the retry delay elapses."""
        if not self.can_retry:
            raise InvalidTransition(self.session.sessionId, self.session.state, "retry")
        self._transition(PENDING, MSG_RETRYING)

    def cancel(self) -> bool:
        if not self.can_cancel:
            return False
        self._transition(CANCELLED, MSG_CANCELLED)
        self._deliver(OUTCOME_CANCEL)
        return True

    def settle(self) -> None:
        """Report a failure the user walked away from."""
        if self.session.state == FAILED:
            self._deliver(OUTCOME_FAILURE)

    def flush(self) -> None:
        """Deliver a success still waiting out its display delay (shutdown path)."""
        if self._success_handle is not None:
            self._success_handle.cancel()
            self._success_handle = None
            self._deliver(OUTCOME_SUCCESS)

    # ----- outcome delivery -----
    def _schedule_success(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver(OUTCOME_SUCCESS)
            return
        self._success_handle = loop.call_later(ms_to_sec(self.success_delay_ms), self._deliver_scheduled_success)

    def _deliver_scheduled_success(self) -> None:
        self._success_handle = None
        self._deliver(OUTCOME_SUCCESS)

    def _deliver(self, outcome: str) -> None:
        if self.delivered is not None:
            return
        self.delivered = outcome
        fn = {
            OUTCOME_SUCCESS: self.callbacks.on_success,
            OUTCOME_FAILURE: self.callbacks.on_failure,
            OUTCOME_CANCEL: self.callbacks.on_cancel,
        }[outcome]
        log(event="confirmation_outcome", sessionId=self.session.sessionId, outcome=outcome, hasCallback=fn is not None)
        if fn is None:
            return
        view = self.view()
        try:
            res = fn(view)
            if inspect.isawaitable(res):
                spawn(self._await_callback(outcome, res))
        except Exception as e:
            log(event="confirmation_callback_error", sessionId=self.session.sessionId, outcome=outcome, error=str(e)[:300])

    async def _await_callback(self, outcome: str, awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            log(event="confirmation_callback_error", sessionId=self.session.sessionId, outcome=outcome, error=str(e)[:300])
