from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

Kind = Literal["trigger", "recurring"]
Condition = Literal["above", "below"]


class OwnerRequest(BaseModel):
    owner_id: str = Field(min_length=1, max_length=128)


class OrderCreate(OwnerRequest):
    kind: Kind
    input: str = Field(min_length=1, max_length=64)
    output: str = Field(min_length=1, max_length=64)

    # trigger
    amount: Optional[Decimal] = None
    target_price: Optional[Decimal] = None

    # recurring
    total_amount: Optional[Decimal] = None
    number_of_orders: Optional[int] = None
    interval_days: Optional[Decimal] = None

    def to_intent_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"owner_id"}, exclude_none=True)


class WatcherCreate(OwnerRequest):
    asset: str = Field(min_length=1, max_length=64)
    condition: Condition
    threshold: Decimal = Field(gt=Decimal("0"))

    def to_intent_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"owner_id"})


class QuoteRequest(OwnerRequest):
    input: str = Field(min_length=1, max_length=64)
    output: str = Field(min_length=1, max_length=64)
    amount: Decimal = Field(gt=Decimal("0"))


class OperationResultOut(BaseModel):
    success: bool
    data: Any = None
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    retriable: bool = False
