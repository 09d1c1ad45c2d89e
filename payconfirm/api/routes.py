from typing import Any

from fastapi import APIRouter, Body, Depends, Request

from payconfirm.api.auth import require_api_key
from payconfirm.api.normalize import normalize_open_payload
from payconfirm.api.schemas import (
    ConfirmationViewResponse,
    OpenConfirmationRequest,
    StkCheckoutRequest,
)
from payconfirm.confirm.controller import ConfirmationController
from payconfirm.gateway.client import GatewayClient

router = APIRouter(prefix="/api", dependencies=[Depends(require_api_key)])


def get_controller(request: Request) -> ConfirmationController:
    return request.app.state.controller


def get_gateway(request: Request) -> GatewayClient:
    return request.app.state.gateway


def _view(controller: ConfirmationController, session_id: str) -> ConfirmationViewResponse:
    return ConfirmationViewResponse.model_validate(controller.view(session_id).to_dict())


# Handlers are async so that engines are armed on the serving event loop.

@router.post("/confirmations", response_model=ConfirmationViewResponse)
async def open_confirmation(
    payload: Any = Body(None),
    controller: ConfirmationController = Depends(get_controller),
):
    if not isinstance(payload, dict):
        payload = {}
    req = OpenConfirmationRequest.model_validate(normalize_open_payload(payload))
    session = controller.open_confirmation(
        req.transactionRef,
        order_ref=req.orderRef,
        amount=req.amount,
        phone=req.phone,
    )
    return _view(controller, session.sessionId)


@router.get("/confirmations/{session_id}", response_model=ConfirmationViewResponse)
async def get_confirmation(session_id: str, controller: ConfirmationController = Depends(get_controller)):
    return _view(controller, session_id)


@router.post("/confirmations/{session_id}/retry", response_model=ConfirmationViewResponse)
async def retry_confirmation(session_id: str, controller: ConfirmationController = Depends(get_controller)):
    controller.retry(session_id)
    return _view(controller, session_id)


@router.post("/confirmations/{session_id}/cancel", response_model=ConfirmationViewResponse)
async def cancel_confirmation(session_id: str, controller: ConfirmationController = Depends(get_controller)):
    controller.cancel(session_id)
    return _view(controller, session_id)


@router.delete("/confirmations/{session_id}", response_model=ConfirmationViewResponse)
async def close_confirmation(session_id: str, controller: ConfirmationController = Depends(get_controller)):
    # The session is unregistered by close; render the state it was closed in.
    view = controller.close(session_id)
    return ConfirmationViewResponse.model_validate(view.to_dict())


@router.post("/checkout/stk", response_model=ConfirmationViewResponse)
async def checkout_stk(
    req: StkCheckoutRequest,
    controller: ConfirmationController = Depends(get_controller),
    gateway: GatewayClient = Depends(get_gateway),
):
    """Trigger the PIN prompt on the payer's phone, then start confirming it."""
    transaction_ref = await gateway.initiate_stk_push(req.phone, req.amount, req.orderRef)
    session = controller.open_confirmation(
        transaction_ref,
        order_ref=req.orderRef,
        amount=req.amount,
        phone=req.phone,
    )
    return _view(controller, session.sessionId)
