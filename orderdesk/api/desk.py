# orderdesk/api/desk.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path, Query, Request, status
from fastapi.responses import JSONResponse

from orderdesk.application.orchestrator import INTERNAL_ERROR, Orchestrator
from orderdesk.domain.enums import OrderKind, VenueOrderStatus
from orderdesk.domain.models import OperationResult

from .schemas import OperationResultOut, OrderCreate, OwnerRequest, QuoteRequest, WatcherCreate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["desk"])

_STATUS_BY_KIND = {
    "ValidationError": status.HTTP_400_BAD_REQUEST,
    "NotFoundError": status.HTTP_404_NOT_FOUND,
    "ConflictError": status.HTTP_409_CONFLICT,
    "SigningError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "ExternalServiceError": status.HTTP_502_BAD_GATEWAY,
    "ConfigurationError": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "DecryptionError": status.HTTP_500_INTERNAL_SERVER_ERROR,
    INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def _respond(result: OperationResult, *, ok_status: int = status.HTTP_200_OK) -> JSONResponse:
    if result.success:
        return JSONResponse(result.to_dict(), status_code=ok_status)
    code = _STATUS_BY_KIND.get(result.error_kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
    if result.error_kind == "ExternalServiceError" and result.retriable:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(result.to_dict(), status_code=code)


# ---------- Wallets ----------

@router.post("/wallets/{owner_id}", response_model=OperationResultOut, status_code=status.HTTP_201_CREATED)
async def create_wallet(
    owner_id: str = Path(..., min_length=1, max_length=128),
    desk: Orchestrator = Depends(get_orchestrator),
):
    # The private key is in this response and nowhere else.
    return _respond(await desk.create_wallet(owner_id), ok_status=status.HTTP_201_CREATED)


@router.get("/wallets/{owner_id}/export", response_model=OperationResultOut)
async def export_wallet(
    owner_id: str = Path(..., min_length=1, max_length=128),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.export_wallet(owner_id))


@router.get("/wallets/{owner_id}/balance", response_model=OperationResultOut)
async def get_balance(
    owner_id: str = Path(..., min_length=1, max_length=128),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.get_balance(owner_id))


# ---------- Orders ----------

@router.post("/orders", response_model=OperationResultOut, status_code=status.HTTP_201_CREATED)
async def propose_order(payload: OrderCreate, desk: Orchestrator = Depends(get_orchestrator)):
    result = await desk.propose_order(payload.owner_id, payload.to_intent_payload())
    return _respond(result, ok_status=status.HTTP_201_CREATED)


@router.post("/orders/{order_token}/confirm", response_model=OperationResultOut)
async def confirm_order(
    payload: OwnerRequest,
    order_token: str = Path(..., min_length=1),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.confirm_order(payload.owner_id, order_token))


@router.post("/orders/{order_token}/execute", response_model=OperationResultOut)
async def execute_order(
    payload: OwnerRequest,
    order_token: str = Path(..., min_length=1),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.execute_order(payload.owner_id, order_token))


@router.delete("/orders/{order_token}", response_model=OperationResultOut)
async def cancel_order(
    order_token: str = Path(..., min_length=1),
    owner_id: str = Query(..., min_length=1, max_length=128),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.cancel_order(owner_id, order_token))


@router.get("/owners/{owner_id}/venue-orders", response_model=OperationResultOut)
async def list_venue_orders(
    owner_id: str = Path(..., min_length=1, max_length=128),
    kind: OrderKind = Query(OrderKind.TRIGGER),
    order_status: VenueOrderStatus = Query(VenueOrderStatus.ACTIVE, alias="status"),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.list_venue_orders(owner_id, kind, order_status))


@router.delete("/owners/{owner_id}/venue-orders/{kind}/{order_id}", response_model=OperationResultOut)
async def cancel_venue_order(
    owner_id: str = Path(..., min_length=1, max_length=128),
    kind: OrderKind = Path(...),
    order_id: str = Path(..., min_length=1),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.cancel_venue_order(owner_id, kind, order_id))


# ---------- Market data ----------

@router.get("/prices/{asset}", response_model=OperationResultOut)
async def get_price(
    asset: str = Path(..., min_length=1, max_length=64),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.get_price(asset))


@router.post("/quotes", response_model=OperationResultOut)
async def quote_swap(payload: QuoteRequest, desk: Orchestrator = Depends(get_orchestrator)):
    return _respond(
        await desk.quote_swap(payload.owner_id, payload.input, payload.output, payload.amount)
    )


@router.post("/swaps", response_model=OperationResultOut)
async def execute_swap(payload: QuoteRequest, desk: Orchestrator = Depends(get_orchestrator)):
    return _respond(
        await desk.execute_swap(payload.owner_id, payload.input, payload.output, payload.amount)
    )


@router.get("/tokens/trending", response_model=OperationResultOut)
async def list_trending_tokens(
    limit: int = Query(5, ge=1, le=50),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.list_trending_tokens(limit))


# ---------- Watchers ----------

@router.post("/watchers", response_model=OperationResultOut, status_code=status.HTTP_201_CREATED)
async def register_watcher(payload: WatcherCreate, desk: Orchestrator = Depends(get_orchestrator)):
    result = await desk.register_watcher(payload.owner_id, payload.to_intent_payload())
    return _respond(result, ok_status=status.HTTP_201_CREATED)


@router.delete("/watchers/{watcher_id}", response_model=OperationResultOut)
async def cancel_watcher(
    watcher_id: str = Path(..., min_length=1),
    owner_id: str = Query(..., min_length=1, max_length=128),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.cancel_watcher(owner_id, watcher_id))


@router.get("/owners/{owner_id}/watchers", response_model=OperationResultOut)
async def list_watchers(
    owner_id: str = Path(..., min_length=1, max_length=128),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.list_watchers(owner_id))


@router.delete("/owners/{owner_id}/watchers", response_model=OperationResultOut)
async def cancel_all_watchers(
    owner_id: str = Path(..., min_length=1, max_length=128),
    desk: Orchestrator = Depends(get_orchestrator),
):
    return _respond(await desk.cancel_all_watchers(owner_id))
