"""
Typed views of trading-venue responses.

Every payload coming back from the venue is validated here before the rest of
the desk reads it. Required fields missing from a response raise
``ResponseParseError`` instead of surfacing later as ``None``.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ExternalServiceError, ResponseParseError


class _VenueModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SwapInfo(_VenueModel):
    amm_key: Optional[str] = Field(default=None, alias="ammKey")
    label: Optional[str] = None
    input_mint: Optional[str] = Field(default=None, alias="inputMint")
    output_mint: Optional[str] = Field(default=None, alias="outputMint")
    in_amount: Optional[int] = Field(default=None, alias="inAmount")
    out_amount: Optional[int] = Field(default=None, alias="outAmount")
    fee_amount: Optional[int] = Field(default=None, alias="feeAmount")
    fee_mint: Optional[str] = Field(default=None, alias="feeMint")


class RouteStep(_VenueModel):
    swap_info: SwapInfo = Field(alias="swapInfo")
    percent: Optional[float] = 100


class QuoteResponse(_VenueModel):
    request_id: str = Field(alias="requestId")
    route_plan: List[RouteStep] = Field(alias="routePlan")
    transaction: Optional[str] = None
    in_amount: Optional[int] = Field(default=None, alias="inAmount")
    out_amount: Optional[int] = Field(default=None, alias="outAmount")
    swap_type: Optional[str] = Field(default=None, alias="swapType")
    slippage_bps: Optional[int] = Field(default=None, alias="slippageBps")
    price_impact_pct: Optional[float] = Field(default=None, alias="priceImpactPct")
    gasless: bool = False
    error_message: Optional[str] = Field(default=None, alias="errorMessage")


class TriggerOrderCreated(_VenueModel):
    request_id: str = Field(alias="requestId")
    transaction: str
    order: Optional[str] = None


class RecurringOrderCreated(_VenueModel):
    request_id: str = Field(alias="requestId")
    transaction: str
    order: Optional[str] = None


class ExecutionResult(_VenueModel):
    signature: str
    status: str
    order: Optional[str] = None
    code: Optional[int] = None
    error: Optional[str] = None


class CancelTransaction(_VenueModel):
    transaction: str
    request_id: Optional[str] = Field(default=None, alias="requestId")


class VenueOrder(_VenueModel):
    order: str = Field(validation_alias=AliasChoices("order", "orderKey"))
    params: Mapping[str, Any] = Field(default_factory=dict)
    status: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class SolBalance(_VenueModel):
    ui_amount: float = Field(default=0, alias="uiAmount")
    is_frozen: bool = Field(default=False, alias="isFrozen")


M = TypeVar("M", bound=_VenueModel)

# Keys under which the venue reports a provider-side failure.
_ERROR_KEYS = ("error", "cause")


def provider_error(payload: Any) -> Optional[str]:
    """Return the provider's error text when a payload reports one."""
    if not isinstance(payload, Mapping):
        return None
    for key in _ERROR_KEYS:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def parse_response(model: Type[M], payload: Any, *, operation: str) -> M:
    """
    Validate ``payload`` against ``model``.

    A payload carrying an ``error``/``cause`` is a provider failure
    (``ExternalServiceError``); anything else that does not fit the model is a
    ``ResponseParseError``.
    """
    err = provider_error(payload)
    if err is not None:
        code = payload.get("code") if isinstance(payload, Mapping) else None
        raise ExternalServiceError(f"{operation}: {err}", code=code)
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        fields = ",".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
        raise ResponseParseError(
            f"{operation}: malformed venue response (fields={fields or '-'})"
        ) from exc


def parse_order_list(payload: Any, *, operation: str) -> List[VenueOrder]:
    """Accept both a bare list and the ``{"orders": [...]}``/``{"all": [...]}`` envelopes."""
    err = provider_error(payload)
    if err is not None:
        raise ExternalServiceError(f"{operation}: {err}")
    if isinstance(payload, Mapping):
        items = payload.get("orders", payload.get("all", []))
    else:
        items = payload
    if not isinstance(items, list):
        raise ResponseParseError(f"{operation}: expected a list of orders")
    return [parse_response(VenueOrder, item, operation=operation) for item in items]


__all__ = [
    "QuoteResponse",
    "RouteStep",
    "SwapInfo",
    "TriggerOrderCreated",
    "RecurringOrderCreated",
    "ExecutionResult",
    "CancelTransaction",
    "VenueOrder",
    "SolBalance",
    "parse_response",
    "parse_order_list",
    "provider_error",
]
