from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Union

from .enums import OrderKind, OrderStatus, WatchCondition
from .exceptions import DeskError, ValidationError


# ---------- helpers (pure, domain-level) ----------

def _parse_decimal(name: str, value: Any) -> Decimal:
    if value is None or value == "":
        raise ValidationError(f"Missing decimal field: {name}")
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid decimal for '{name}': {value!r}") from exc
    if not parsed.is_finite():
        raise ValidationError(f"Invalid decimal for '{name}': {value!r}")
    return parsed


def _parse_positive_decimal(name: str, value: Any) -> Decimal:
    parsed = _parse_decimal(name, value)
    if parsed <= 0:
        raise ValidationError(f"'{name}' must be > 0, got {value!r}")
    return parsed


def _parse_int(name: str, value: Any) -> int:
    if value is None or value == "":
        raise ValidationError(f"Missing integer field: {name}")
    try:
        return int(value)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid integer for '{name}': {value!r}") from exc


def _parse_asset(name: str, value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"Missing asset field: {name}")
    return text


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a UI amount into integer base units, truncating dust."""
    return int((amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


SECONDS_PER_DAY = 86400


# ---------- Intents (delivered by the intent classifier) ----------

@dataclass(frozen=True)
class TriggerParams:
    amount: Decimal
    target_price: Decimal

    def notional(self, input_price_usd: Decimal) -> Decimal:
        return self.amount * input_price_usd


@dataclass(frozen=True)
class RecurringParams:
    total_amount: Decimal
    number_of_orders: int
    interval_seconds: int

    def notional(self, input_price_usd: Decimal) -> Decimal:
        return self.total_amount * input_price_usd

    def per_order_notional(self, input_price_usd: Decimal) -> Decimal:
        return self.notional(input_price_usd) / Decimal(self.number_of_orders)


OrderParams = Union[TriggerParams, RecurringParams]


@dataclass(frozen=True)
class OrderIntent:
    """
    Validated order request.

    Trigger payload::

        {"kind": "trigger", "input": "SOL", "output": "USDC",
         "amount": "1", "target_price": "50"}

    Recurring payload::

        {"kind": "recurring", "input": "USDC", "output": "SOL",
         "total_amount": "1000", "number_of_orders": 10, "interval_days": "1"}
    """
    kind: OrderKind
    input_asset: str
    output_asset: str
    params: OrderParams

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "OrderIntent":
        raw_kind = str(data.get("kind", "")).strip().lower()
        try:
            kind = OrderKind(raw_kind)
        except ValueError as exc:
            raise ValidationError(f"Unknown order kind: {raw_kind!r}") from exc

        input_asset = _parse_asset("input", data.get("input"))
        output_asset = _parse_asset("output", data.get("output"))
        if input_asset == output_asset:
            raise ValidationError("input and output assets must differ.")

        params: OrderParams
        if kind == OrderKind.TRIGGER:
            params = TriggerParams(
                amount=_parse_positive_decimal("amount", data.get("amount")),
                target_price=_parse_positive_decimal("target_price", data.get("target_price")),
            )
        else:
            interval_days = _parse_positive_decimal("interval_days", data.get("interval_days"))
            params = RecurringParams(
                total_amount=_parse_positive_decimal("total_amount", data.get("total_amount")),
                number_of_orders=_parse_int("number_of_orders", data.get("number_of_orders")),
                interval_seconds=int(interval_days * SECONDS_PER_DAY),
            )
            if params.number_of_orders <= 0:
                raise ValidationError("number_of_orders must be > 0.")
        return cls(kind=kind, input_asset=input_asset, output_asset=output_asset, params=params)


@dataclass(frozen=True)
class NotificationIntent:
    """``{"asset": "SOL", "condition": "above", "threshold": "100"}``"""
    asset: str
    condition: WatchCondition
    threshold: Decimal

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "NotificationIntent":
        asset = _parse_asset("asset", data.get("asset"))
        raw_condition = str(data.get("condition", "")).strip().lower()
        try:
            condition = WatchCondition(raw_condition)
        except ValueError as exc:
            raise ValidationError(f"Condition must be 'above' or 'below', got {raw_condition!r}") from exc
        threshold = _parse_positive_decimal("threshold", data.get("threshold"))
        return cls(asset=asset, condition=condition, threshold=threshold)


# ---------- Custody ----------

@dataclass(frozen=True)
class EncryptedKeyRecord:
    """Stored key material for one owner. Never mutated after creation."""
    owner_id: str
    public_key: str
    ciphertext: str
    nonce: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class WalletCreation:
    public_key: str
    private_key_once: str
    record: EncryptedKeyRecord


# ---------- Order lifecycle state ----------

@dataclass
class PendingOrder:
    """
    In-flight order proposal owned by the OrderLedger.

    Note: timestamps are UTC.
    """
    order_token: str
    owner_id: str
    kind: OrderKind
    input_asset: str
    output_asset: str
    params: OrderParams
    input_decimals: int
    output_decimals: int
    expires_at: datetime

    status: OrderStatus = OrderStatus.PROPOSED
    in_flight: bool = False
    external_request_id: Optional[str] = None
    external_order_id: Optional[str] = None
    unsigned_transaction: Optional[str] = None  # base64, as returned by the venue
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def extend(self, ttl: timedelta) -> None:
        self.expires_at = _utcnow() + ttl

    def mark(self, status: OrderStatus, *, error: Optional[str] = None) -> None:
        if self.status.is_terminal:
            raise ValueError(f"Order {self.order_token} already terminal ({self.status})")
        self.status = status
        if error is not None:
            self.last_error = error
        self.touch()

    def summary(self) -> Dict[str, Any]:
        return {
            "order_token": self.order_token,
            "kind": self.kind.value,
            "status": self.status.value,
            "input_asset": self.input_asset,
            "output_asset": self.output_asset,
            "params": {k: str(v) for k, v in asdict(self.params).items()},
            "external_request_id": self.external_request_id,
            "external_order_id": self.external_order_id,
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class ExecutionReceipt:
    signature: str
    status: str
    order_id: Optional[str] = None


# ---------- Watchers ----------

@dataclass(frozen=True)
class ActiveWatcher:
    watcher_id: str
    owner_id: str
    asset_id: str
    condition: WatchCondition
    threshold: Decimal
    created_at: datetime = field(default_factory=_utcnow)

    def summary(self) -> Dict[str, Any]:
        return {
            "watcher_id": self.watcher_id,
            "asset_id": self.asset_id,
            "condition": self.condition.value,
            "threshold": str(self.threshold),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class WatcherHandle:
    watcher_id: str
    owner_id: str


# ---------- Market data ----------

@dataclass(frozen=True)
class TokenInfo:
    id: str
    symbol: str
    name: str
    decimals: int
    price: Optional[Decimal]


# ---------- Uniform result ----------

@dataclass(frozen=True)
class OperationResult:
    success: bool
    data: Any = None
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    retriable: bool = False

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: DeskError) -> "OperationResult":
        return cls(
            success=False,
            error_kind=exc.kind,
            error_detail=exc.message,
            retriable=exc.retriable,
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {
            "success": False,
            "error_kind": self.error_kind,
            "error_detail": self.error_detail,
            "retriable": self.retriable,
        }
