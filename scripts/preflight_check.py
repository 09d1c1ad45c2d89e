#!/usr/bin/env python3
"""Deploy gate: the app imports, routes are wired and the gateway config is sane."""
import sys
import os

print("Running preflight import check...")
try:
    # Set dummy env vars to avoid surprises during config load
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
    os.environ.setdefault("GATEWAY_BASE_URL", "http://localhost:3000")

    from payconfirm.main import app
    print("Import payconfirm.main: OK")

    import payconfirm.confirm.controller
    print("Import payconfirm.confirm.controller: OK")

    from payconfirm.gateway.client import GatewayClient
    print("Import payconfirm.gateway.client: OK")

    from payconfirm.settings import settings
    if not settings.GATEWAY_BASE_URL.startswith(("http://", "https://")):
        raise RuntimeError(f"GATEWAY_BASE_URL is not an http(s) URL: {settings.GATEWAY_BASE_URL!r}")
    if settings.CONFIRM_MAX_ATTEMPTS <= 0 or settings.CONFIRM_INTERVAL_MS <= 0:
        raise RuntimeError("CONFIRM_MAX_ATTEMPTS and CONFIRM_INTERVAL_MS must be positive")
    if settings.API_KEY and settings.API_KEY == settings.GATEWAY_API_KEY:
        print("WARNING: API_KEY and GATEWAY_API_KEY are identical; use separate credentials")

    paths = {getattr(r, "path", None) for r in app.routes}
    for required in ("/api/confirmations", "/api/checkout/stk", "/health"):
        if required not in paths:
            raise RuntimeError(f"route not registered: {required}")
    print(f"Routes: OK; gateway={settings.GATEWAY_BASE_URL} "
          f"budget={settings.CONFIRM_MAX_ATTEMPTS}x{settings.CONFIRM_INTERVAL_MS}ms")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
