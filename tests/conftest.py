import asyncio
from typing import List, Optional

import pytest

from payconfirm.confirm.models import ProbeResult, PENDING, SUCCESS, FAILED, SOURCE_PRIMARY
from payconfirm.settings import settings


@pytest.fixture(autouse=True)
def no_metrics_backend():
    # Unit tests never talk to Redis
    prev = settings.METRICS_ENABLED
    settings.METRICS_ENABLED = False
    yield
    settings.METRICS_ENABLED = prev


class FakeProber:
    """Scripted StatusProber: returns `script` in order, then `default` forever.

    When `hold` is set, each probe waits on it, which keeps a probe in flight.
    """

    def __init__(self, script: Optional[List[str]] = None, default: str = PENDING):
        self.script = list(script or [])
        self.default = default
        self.calls: List[tuple] = []
        self.hold: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def probe(self, transaction_ref, order_ref=None) -> ProbeResult:
        self.calls.append((transaction_ref, order_ref))
        self.started.set()
        if self.hold is not None:
            await self.hold.wait()
        status = self.script.pop(0) if self.script else self.default
        message = {
            PENDING: "Payment is still being processed",
            SUCCESS: "Payment completed successfully",
            FAILED: "Request cancelled by user",
        }[status]
        return ProbeResult(status=status, message=message, raw={"status": status}, source=SOURCE_PRIMARY)


@pytest.fixture
def fake_prober():
    return FakeProber


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 2.0, step: float = 0.001):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(step)
    return _wait
