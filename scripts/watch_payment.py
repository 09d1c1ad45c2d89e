"""
Watch one payment confirmation from the terminal (ops / support tool).

    python -m scripts.watch_payment ws_CO_123 --order SAL000042

Prints the progress view after every transition and exits with 0 on success,
1 on failure and 2 on cancel (Ctrl-C).
"""
import argparse
import asyncio
import json

from payconfirm.confirm.controller import ConfirmationController
from payconfirm.confirm.models import SUCCESS, CANCELLED
from payconfirm.confirm.prober import StatusProber
from payconfirm.gateway.client import GatewayClient
from payconfirm.settings import settings

EXIT_CODES = {SUCCESS: 0, CANCELLED: 2}


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Poll a mobile-money transaction until it settles.")
    p.add_argument("transaction_ref")
    p.add_argument("--order", dest="order_ref", default=None)
    p.add_argument("--interval-ms", type=int, default=settings.CONFIRM_INTERVAL_MS)
    p.add_argument("--max-attempts", type=int, default=settings.CONFIRM_MAX_ATTEMPTS)
    return p.parse_args(argv)


async def watch(args, gateway: GatewayClient) -> int:
    done = asyncio.Event()
    controller = ConfirmationController(
        StatusProber(gateway),
        max_attempts=args.max_attempts,
        interval_ms=args.interval_ms,
        success_delay_ms=0,
    )
    session = controller.open_confirmation(args.transaction_ref, order_ref=args.order_ref)

    def show():
        print(json.dumps(controller.view(session.sessionId).to_dict(), ensure_ascii=False))

    def on_transition(s, prev, new):
        show()
        if s.is_terminal:
            done.set()

    controller.add_listener(session.sessionId, on_transition)
    show()
    if session.is_terminal:
        done.set()
    try:
        await done.wait()
    except asyncio.CancelledError:
        controller.cancel(session.sessionId)
        raise
    finally:
        state = session.state
        controller.close(session.sessionId)
    return EXIT_CODES.get(state, 1)


async def amain(argv=None) -> int:
    args = parse_args(argv)
    gateway = GatewayClient()
    try:
        return await watch(args, gateway)
    finally:
        await gateway.aclose()


def main(argv=None) -> int:
    try:
        return asyncio.run(amain(argv))
    except KeyboardInterrupt:
        return EXIT_CODES[CANCELLED]


if __name__ == "__main__":
    raise SystemExit(main())
