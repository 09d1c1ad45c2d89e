import asyncio
import pytest
from unittest.mock import MagicMock

from payconfirm.confirm.controller import ConfirmationController
from payconfirm.confirm.errors import InvalidTransition, SessionNotFound
from payconfirm.confirm.models import (
    ProbeResult, SOURCE_PRIMARY,
    PENDING, PROCESSING, SUCCESS, FAILED, CANCELLED,
    FAILURE_PRECONDITION, MSG_NO_TRANSACTION, MSG_CANCELLED,
)
from payconfirm.confirm.state_machine import ConfirmationCallbacks


@pytest.fixture
def callbacks():
    return ConfirmationCallbacks(on_success=MagicMock(), on_failure=MagicMock(), on_cancel=MagicMock())


def make_controller(prober, callbacks=None, **kw):
    opts = dict(max_attempts=30, interval_ms=1, success_delay_ms=0, retry_delay_ms=5)
    opts.update(kw)
    return ConfirmationController(prober, callbacks=callbacks, **opts)


class GatedProber:
    """Answers pending until `gate_at`, then blocks on `gate` and answers `final`."""

    def __init__(self, gate_at: int, final: str = SUCCESS):
        self.gate_at = gate_at
        self.final = final
        self.gate = asyncio.Event()
        self.reached = asyncio.Event()
        self.calls = 0

    async def probe(self, transaction_ref, order_ref=None):
        self.calls += 1
        if self.calls < self.gate_at:
            return ProbeResult(status=PENDING, message="Payment is still being processed", source=SOURCE_PRIMARY)
        self.reached.set()
        await self.gate.wait()
        return ProbeResult(status=self.final, message="Payment completed successfully", source=SOURCE_PRIMARY)


@pytest.mark.asyncio
async def test_happy_path_success_after_five_pendings(fake_prober, wait_until, callbacks):
    prober = fake_prober([PENDING] * 5 + [SUCCESS])
    controller = make_controller(prober, callbacks, success_delay_ms=40)

    session = controller.open_confirmation("ws_1", order_ref="42", amount=1500, phone="0712345678")
    assert session.state == PROCESSING
    assert session.orderRef == "SAL000042"
    assert session.payerPhone == "254712345678"

    transitions = []
    controller.add_listener(session.sessionId, lambda s, prev, new: transitions.append((prev, new)))

    await wait_until(lambda: session.state == SUCCESS)
    # the success screen is shown before the host hears about it
    callbacks.on_success.assert_not_called()
    await wait_until(lambda: callbacks.on_success.called)
    await asyncio.sleep(0.02)

    assert transitions == [(PROCESSING, PROCESSING)] * 5 + [(PROCESSING, SUCCESS)]
    assert session.attemptCount == 6
    assert len(prober.calls) == 6
    callbacks.on_success.assert_called_once()
    callbacks.on_failure.assert_not_called()
    callbacks.on_cancel.assert_not_called()
    view = callbacks.on_success.call_args.args[0]
    assert view.state == SUCCESS and view.progress == 100
    assert controller.is_polling(session.sessionId) is False


@pytest.mark.asyncio
async def test_missing_reference_fails_without_probing(fake_prober, callbacks):
    prober = fake_prober()
    controller = make_controller(prober, callbacks)

    session = controller.open_confirmation(None, order_ref="SAL000001")
    await asyncio.sleep(0.02)

    assert session.state == FAILED
    assert session.failureKind == FAILURE_PRECONDITION
    assert session.message == MSG_NO_TRANSACTION
    assert prober.calls == []
    assert controller.is_polling(session.sessionId) is False
    assert controller.view(session.sessionId).canRetry is False
    with pytest.raises(InvalidTransition):
        controller.retry(session.sessionId)


@pytest.mark.asyncio
async def test_blank_reference_counts_as_missing(fake_prober):
    controller = make_controller(fake_prober())

    session = controller.open_confirmation("   ")

    assert session.transactionRef is None
    assert session.failureKind == FAILURE_PRECONDITION


@pytest.mark.asyncio
async def test_cancel_mid_probe_discards_late_success(wait_until, callbacks):
    prober = GatedProber(gate_at=3)
    controller = make_controller(prober, callbacks)

    session = controller.open_confirmation("ws_CO_9")
    await wait_until(prober.reached.is_set)
    assert session.attemptCount == 3

    controller.cancel(session.sessionId)
    prober.gate.set()
    await asyncio.sleep(0.02)

    assert session.state == CANCELLED
    assert session.message == MSG_CANCELLED
    assert session.attemptCount == 3
    assert prober.calls == 3
    callbacks.on_cancel.assert_called_once()
    callbacks.on_success.assert_not_called()
    # cancelling again is a no-op
    controller.cancel(session.sessionId)
    callbacks.on_cancel.assert_called_once()


@pytest.mark.asyncio
async def test_retry_restarts_with_fresh_budget(fake_prober, wait_until, callbacks):
    prober = fake_prober([PENDING, FAILED], default=SUCCESS)
    controller = make_controller(prober, callbacks, retry_delay_ms=20)

    session = controller.open_confirmation("ws_CO_2")
    await wait_until(lambda: session.state == FAILED)
    assert session.attemptCount == 2

    controller.retry(session.sessionId)
    assert session.state == PENDING
    assert session.attemptCount == 0
    assert controller.is_polling(session.sessionId) is False

    await wait_until(lambda: session.state == SUCCESS)
    await wait_until(lambda: callbacks.on_success.called)

    assert session.attemptCount == 1
    callbacks.on_failure.assert_not_called()


@pytest.mark.asyncio
async def test_retry_refused_unless_failed(fake_prober):
    controller = make_controller(fake_prober(), interval_ms=60_000)
    session = controller.open_confirmation("ws_CO_3")

    with pytest.raises(InvalidTransition) as exc:
        controller.retry(session.sessionId)
    assert exc.value.state == PROCESSING
    controller.close(session.sessionId)


@pytest.mark.asyncio
async def test_cancel_during_retry_delay_prevents_restart(fake_prober, wait_until):
    prober = fake_prober([FAILED], default=SUCCESS)
    controller = make_controller(prober, retry_delay_ms=30)

    session = controller.open_confirmation("ws_CO_4")
    await wait_until(lambda: session.state == FAILED)
    controller.retry(session.sessionId)
    controller.cancel(session.sessionId)
    await asyncio.sleep(0.06)

    assert session.state == CANCELLED
    assert len(prober.calls) == 1


@pytest.mark.asyncio
async def test_same_reference_reuses_live_session(fake_prober):
    controller = make_controller(fake_prober(), interval_ms=60_000)

    first = controller.open_confirmation("ws_CO_5")
    again = controller.open_confirmation("ws_CO_5")

    assert again is first
    assert controller.active_count == 1
    controller.close(first.sessionId)


@pytest.mark.asyncio
async def test_reference_reopened_after_cancel_gets_new_session(fake_prober):
    controller = make_controller(fake_prober(), interval_ms=60_000)

    first = controller.open_confirmation("ws_CO_6")
    controller.cancel(first.sessionId)
    second = controller.open_confirmation("ws_CO_6")

    assert second.sessionId != first.sessionId
    assert second.state == PROCESSING
    assert controller.active_count == 1
    with pytest.raises(SessionNotFound):
        controller.get(first.sessionId)
    controller.close(second.sessionId)


@pytest.mark.asyncio
async def test_close_reports_unretried_failure_once(fake_prober, wait_until, callbacks):
    controller = make_controller(fake_prober([FAILED]), callbacks)

    session = controller.open_confirmation("ws_CO_7")
    await wait_until(lambda: session.state == FAILED)
    callbacks.on_failure.assert_not_called()

    view = controller.close(session.sessionId)

    assert view.state == FAILED
    callbacks.on_failure.assert_called_once()
    with pytest.raises(SessionNotFound):
        controller.close(session.sessionId)


@pytest.mark.asyncio
async def test_close_while_processing_counts_as_cancel(fake_prober, callbacks):
    prober = fake_prober()
    controller = make_controller(prober, callbacks, interval_ms=60_000)

    session = controller.open_confirmation("ws_CO_8")
    view = controller.close(session.sessionId)
    await asyncio.sleep(0.01)

    assert view.state == CANCELLED
    callbacks.on_cancel.assert_called_once()
    assert controller.active_count == 0
    assert prober.calls == []


@pytest.mark.asyncio
async def test_shutdown_flushes_success_still_on_screen(fake_prober, wait_until, callbacks):
    controller = make_controller(fake_prober([SUCCESS]), callbacks, success_delay_ms=60_000)

    session = controller.open_confirmation("ws_CO_10")
    await wait_until(lambda: session.state == SUCCESS)
    callbacks.on_success.assert_not_called()

    controller.shutdown()

    callbacks.on_success.assert_called_once()
    assert controller.active_count == 0


@pytest.mark.asyncio
async def test_sessions_poll_independently(fake_prober, wait_until):
    prober = fake_prober([SUCCESS, FAILED])
    controller = make_controller(prober, interval_ms=5)

    a = controller.open_confirmation("ws_A")
    await wait_until(lambda: a.state == SUCCESS)
    b = controller.open_confirmation("ws_B")
    await wait_until(lambda: b.state == FAILED)

    assert a.state == SUCCESS
    assert controller.active_count == 2


@pytest.mark.asyncio
async def test_unknown_session_raises_not_found(fake_prober):
    controller = make_controller(fake_prober())
    with pytest.raises(SessionNotFound):
        controller.view("nope")
    with pytest.raises(SessionNotFound):
        controller.cancel("nope")


@pytest.mark.asyncio
async def test_idle_settled_sessions_are_evicted_on_next_open(fake_prober, wait_until, callbacks):
    prober = fake_prober([FAILED, SUCCESS])
    controller = make_controller(prober, callbacks, session_ttl_ms=0)

    failed = controller.open_confirmation("ws_EV_1")
    await wait_until(lambda: failed.state == FAILED)
    done = controller.open_confirmation("ws_EV_2")
    # ws_EV_1 went idle; opening ws_EV_2 closed it and reported the failure
    callbacks.on_failure.assert_called_once()
    with pytest.raises(SessionNotFound):
        controller.get(failed.sessionId)

    await wait_until(lambda: done.state == SUCCESS)
    controller.open_confirmation(None)

    with pytest.raises(SessionNotFound):
        controller.get(done.sessionId)
    callbacks.on_success.assert_called_once()
    assert controller.active_count == 1


@pytest.mark.asyncio
async def test_eviction_spares_live_and_recent_sessions(fake_prober):
    controller = make_controller(fake_prober(), interval_ms=60_000, session_ttl_ms=60_000)

    failed = controller.open_confirmation(None)
    live = controller.open_confirmation("ws_EV_4")

    assert controller.evict_idle() == 0
    assert controller.get(failed.sessionId) is failed

    failed.updatedAtMs -= 120_000
    live.updatedAtMs -= 120_000
    assert controller.evict_idle() == 1
    with pytest.raises(SessionNotFound):
        controller.get(failed.sessionId)
    assert controller.get(live.sessionId).state == PROCESSING
    controller.close(live.sessionId)
