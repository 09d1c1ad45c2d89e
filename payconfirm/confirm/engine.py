"""
Polling Engine
--------------
Drives the StatusProber on a fixed cadence for one session.

The timer is a single asyncio task; it exists only while the session is
PROCESSING. Tick k is due at start + k * interval. The probe is awaited inside
the tick, so two probes for the same session never overlap; when a slow probe
overruns a tick boundary the next tick runs as soon as it returns and the
cadence re-anchors from there.

Every run carries a generation number. stop() bumps it, so a probe result that
lands after a stop (cancel, close, shutdown) is dropped before it can touch
the state machine.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from payconfirm.confirm.models import PROCESSING
from payconfirm.confirm.prober import StatusProber
from payconfirm.confirm.state_machine import ConfirmationStateMachine, spawn
from payconfirm.observability import metrics
from payconfirm.observability.logging import log
from payconfirm.utils.time import ms_to_sec


class PollingEngine:
    def __init__(self, machine: ConfirmationStateMachine, prober: StatusProber):
        self.machine = machine
        self.session = machine.session
        self.prober = prober
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Enter PROCESSING and arm the timer. No-op unless the session is PENDING."""
        if self.running:
            return False
        if not self.machine.begin():
            return False
        self._generation += 1
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))
        return True

    def stop(self) -> None:
        """Disarm the timer. Idempotent; safe from any state, including mid-probe."""
        self._generation += 1
        task, self._task = self._task, None
        if task is None or task.done():
            return
        # A transition callback can end up here from inside the tick itself
        if task is asyncio.current_task():
            return
        task.cancel()
        log(event="polling_stopped", sessionId=self.session.sessionId, attempt=self.session.attemptCount)

    def reset_budget(self) -> None:
        self.session.attemptCount = 0

    def _live(self, generation: int) -> bool:
        return generation == self._generation and self.session.state == PROCESSING

    async def _run(self, generation: int) -> None:
        s = self.session
        loop = asyncio.get_running_loop()
        interval = ms_to_sec(s.intervalMs)
        next_due = loop.time()

        log(
            event="polling_started",
            sessionId=s.sessionId,
            transactionRef=s.transactionRef,
            maxAttempts=s.maxAttempts,
            intervalMs=s.intervalMs,
        )

        while True:
            next_due += interval
            now = loop.time()
            if next_due > now:
                await asyncio.sleep(next_due - now)
            else:
                next_due = now

            if not self._live(generation):
                return

            if s.attemptCount >= s.maxAttempts:
                self.stop()
                self.machine.time_out()
                return

            s.attemptCount += 1
            attempt = s.attemptCount
            t0 = loop.time()
            result = await self.prober.probe(s.transactionRef, s.orderRef)
            latency_ms = int((loop.time() - t0) * 1000)

            if not self._live(generation):
                log(
                    event="probe_result_discarded",
                    sessionId=s.sessionId,
                    attempt=attempt,
                    status=result.status,
                    state=s.state,
                )
                return

            log(
                event="probe_completed",
                sessionId=s.sessionId,
                attempt=attempt,
                status=result.status,
                source=result.source,
                latencyMs=latency_ms,
            )
            spawn(metrics.record_probe(result.status, result.source, latency_ms))

            if self.machine.apply_probe(result):
                self.stop()
                return
