from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from payconfirm.api.routes import router
from payconfirm.api.admin_routes import router as admin_router
from payconfirm.callback.notifier import HostNotifier
from payconfirm.confirm.controller import ConfirmationController
from payconfirm.confirm.errors import InvalidTransition, PaymentInitiationError, SessionNotFound
from payconfirm.confirm.prober import StatusProber
from payconfirm.confirm.state_machine import drain
from payconfirm.gateway.client import GatewayClient
from payconfirm.observability.logging import log
from payconfirm.settings import settings
from payconfirm.store.redis_conn import close_redis


@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = GatewayClient()
    notifier = HostNotifier()
    app.state.gateway = gateway
    app.state.notifier = notifier
    app.state.controller = ConfirmationController(StatusProber(gateway), callbacks=notifier.as_callbacks())
    log(
        event="boot",
        gateway=settings.GATEWAY_BASE_URL,
        orderService=settings.ORDER_SERVICE_URL or settings.GATEWAY_BASE_URL,
        maxAttempts=settings.CONFIRM_MAX_ATTEMPTS,
        intervalMs=settings.CONFIRM_INTERVAL_MS,
        hostCallback=bool(settings.HOST_CALLBACK_URL),
    )
    try:
        yield
    finally:
        # Stop every timer before the clients they probe through go away
        app.state.controller.shutdown()
        await drain()
        await gateway.aclose()
        await notifier.aclose()
        await close_redis()


app = FastAPI(title="Payment Confirmation API", lifespan=lifespan)

origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {
        "status": "ok",
        "message": "Payment confirmation API is running. POST /api/confirmations to start verifying a payment."
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.exception_handler(SessionNotFound)
async def session_not_found_handler(request: Request, exc: SessionNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(status_code=409, content={"detail": str(exc), "state": exc.state})


@app.exception_handler(ValidationError)
async def payload_validation_handler(request: Request, exc: ValidationError):
    # Bodies validated by hand after alias normalization land here instead of a 500
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": errors})


@app.exception_handler(PaymentInitiationError)
async def payment_initiation_handler(request: Request, exc: PaymentInitiationError):
    return JSONResponse(status_code=502, content={"detail": f"Payment initiation failed: {exc}"})
