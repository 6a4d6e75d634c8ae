from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
import secrets
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar

from ..core.logging_utils import format_log_context, mask
from ..domain.enums import OrderKind, OrderStatus
from ..domain.exceptions import (
    ORDER_ALREADY_IN_FLIGHT,
    ConflictError,
    DeskError,
    ExternalServiceError,
    ExternalTimeoutError,
    NotFoundError,
    ValidationError,
)
from ..domain.models import (
    ExecutionReceipt,
    OrderParams,
    PendingOrder,
    RecurringParams,
    TriggerParams,
    to_base_units,
)
from ..domain.venue import (
    CancelTransaction,
    ExecutionResult,
    RecurringOrderCreated,
    TriggerOrderCreated,
)
from ..infrastructure.metrics import DeskMetrics

log = logging.getLogger(__name__)

T = TypeVar("T")

# base64 unsigned transaction in, base64 signed transaction out
SignFn = Callable[[str], Awaitable[str]]


# --------- Ports (to be implemented by Infra) ---------


class VenuePort(Protocol):
    """Subset of infrastructure/jupiter/client.JupiterClient the ledger needs."""

    async def create_trigger_order(self, payload: Dict[str, Any]) -> TriggerOrderCreated: ...

    async def create_recurring_order(self, payload: Dict[str, Any]) -> RecurringOrderCreated: ...

    async def submit_signed_transaction(
        self,
        kind: OrderKind | None,
        signed_transaction: str,
        request_id: str,
    ) -> ExecutionResult: ...

    async def cancel_order(self, kind: OrderKind, owner: str, order_id: str) -> CancelTransaction: ...


@dataclass(frozen=True)
class LedgerLimits:
    trigger_min_notional_usd: Decimal = Decimal("5")
    recurring_min_total_usd: Decimal = Decimal("100")
    recurring_min_per_order_usd: Decimal = Decimal("50")
    recurring_min_orders: int = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ctx(order: PendingOrder) -> str:
    return format_log_context(
        {"owner": order.owner_id, "token": order.order_token, "kind": order.kind.value}
    )


class OrderLedger:
    """
    Keyed state machine for order proposals.

    ``proposed -> awaiting_execution -> executed`` with ``failed`` and
    ``cancelled`` as the other terminal states. Transitions for one token are
    serialized by a per-token lock that is only held while local state is read
    or mutated; venue calls happen outside the lock behind an ``in_flight``
    flag that is rolled back if the call does not succeed. A second confirm or
    execute on a token that is in flight is rejected with
    ``ConflictError("OrderAlreadyInFlight")`` before the venue is contacted.

    Entries are destroyed on reaching a terminal state or when their TTL
    passes (lazily on access, and by the background sweeper).
    """

    def __init__(
        self,
        *,
        venue: VenuePort,
        ttl_seconds: float = 600,
        sweep_interval: float = 30.0,
        external_timeout: float = 15.0,
        limits: LedgerLimits | None = None,
        metrics: DeskMetrics | None = None,
        max_tombstones: int = 1024,
    ) -> None:
        self._venue = venue
        self._ttl = timedelta(seconds=ttl_seconds)
        self._sweep_interval = max(0.05, sweep_interval)
        self._timeout = external_timeout
        self._limits = limits or LedgerLimits()
        self._metrics = metrics
        self._max_tombstones = max(0, max_tombstones)

        self._orders: Dict[str, PendingOrder] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        # token -> reason it left the ledger; diagnostics only
        self._tombstones: "OrderedDict[str, str]" = OrderedDict()
        self._background: set[asyncio.Task[None]] = set()

        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_sweeper(), name="orderdesk.ledger_sweeper")

    async def stop(self) -> None:
        if self._task is not None:
            self._stop_event.set()
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self.wait_background()

    async def wait_background(self) -> None:
        """Wait for best-effort venue cancellations spawned by ``cancel``."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _run_sweeper(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep_expired()
            except Exception:  # pragma: no cover - guarded logging
                log.exception("Order ledger sweep failure")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._sweep_interval)
            except asyncio.TimeoutError:
                continue

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Reclaim expired entries that are not mid-transition. Returns the count."""
        now = now or _utcnow()
        evicted = 0
        for token, order in list(self._orders.items()):
            lock = self._locks.get(token)
            if order.in_flight or (lock is not None and lock.locked()):
                continue
            if order.is_expired(now):
                self._retire(token, "expired")
                evicted += 1
        if evicted:
            log.info("Order ledger sweep | evicted=%d remaining=%d", evicted, len(self._orders))
            self._inc("expired", evicted)
        return evicted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _inc(self, event: str, count: int = 1) -> None:
        if self._metrics:
            for _ in range(count):
                self._metrics.inc_order_event(event)
            self._metrics.set_pending_orders(len(self._orders))

    def _lock_for(self, token: str) -> asyncio.Lock:
        lock = self._locks.get(token)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[token] = lock
        return lock

    def _retire(self, token: str, reason: str) -> None:
        self._orders.pop(token, None)
        self._locks.pop(token, None)
        if self._max_tombstones:
            self._tombstones[token] = reason
            self._tombstones.move_to_end(token)
            while len(self._tombstones) > self._max_tombstones:
                self._tombstones.popitem(last=False)
        if self._metrics:
            self._metrics.set_pending_orders(len(self._orders))

    def _get_live(self, token: str, owner_id: str | None = None) -> PendingOrder:
        order = self._orders.get(token)
        if order is not None and order.is_expired() and not order.in_flight:
            self._retire(token, "expired")
            self._inc("expired")
            order = None
        if order is None:
            self._locks.pop(token, None)
        if order is None or (owner_id is not None and order.owner_id != owner_id):
            log.debug(
                "Order lookup miss | token=%s reason=%s",
                token,
                self._tombstones.get(token, "unknown" if order is None else "owner_mismatch"),
            )
            raise NotFoundError("Order not found. It may have expired or already been executed.")
        return order

    def _new_token(self) -> str:
        while True:
            token = secrets.token_urlsafe(12)
            if token not in self._orders and token not in self._tombstones:
                return token

    async def _bounded(self, coro: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ExternalTimeoutError(f"{operation}: venue timed out") from exc

    def _release(self, token: str) -> Optional[PendingOrder]:
        order = self._orders.get(token)
        if order is not None:
            order.in_flight = False
            order.touch()
        return order

    def _validate(self, kind: OrderKind, params: OrderParams, input_price_usd: Decimal) -> None:
        limits = self._limits
        if input_price_usd is None or input_price_usd <= 0:
            raise ValidationError("Could not determine a USD price for the input asset.")

        if kind == OrderKind.TRIGGER:
            if not isinstance(params, TriggerParams):
                raise ValidationError("Trigger orders need amount and target_price.")
            notional = params.notional(input_price_usd)
            if notional < limits.trigger_min_notional_usd:
                raise ValidationError(
                    f"Minimum order size is {limits.trigger_min_notional_usd} USD "
                    f"(got {notional:.2f} USD)."
                )
            return

        if not isinstance(params, RecurringParams):
            raise ValidationError("Recurring orders need total_amount, number_of_orders and interval.")
        if params.number_of_orders < limits.recurring_min_orders:
            raise ValidationError(f"Minimum number of orders is {limits.recurring_min_orders}.")
        if params.interval_seconds <= 0:
            raise ValidationError("Recurring interval must be positive.")
        total = params.notional(input_price_usd)
        if total < limits.recurring_min_total_usd:
            raise ValidationError(
                f"Minimum total amount is {limits.recurring_min_total_usd} USD (got {total:.2f} USD)."
            )
        per_order = params.per_order_notional(input_price_usd)
        if per_order < limits.recurring_min_per_order_usd:
            raise ValidationError(
                f"Minimum amount per order is {limits.recurring_min_per_order_usd} USD. "
                f"With {params.number_of_orders} orders you need at least "
                f"{limits.recurring_min_per_order_usd * params.number_of_orders} USD total."
            )

    @staticmethod
    def _create_payload(order: PendingOrder, owner_address: str) -> Dict[str, Any]:
        params = order.params
        if isinstance(params, TriggerParams):
            return {
                "inputMint": order.input_asset,
                "outputMint": order.output_asset,
                "maker": owner_address,
                "payer": owner_address,
                "params": {
                    "makingAmount": str(to_base_units(params.amount, order.input_decimals)),
                    "takingAmount": str(
                        to_base_units(params.amount * params.target_price, order.output_decimals)
                    ),
                },
                "computeUnitPrice": "auto",
            }
        return {
            "user": owner_address,
            "inputMint": order.input_asset,
            "outputMint": order.output_asset,
            "params": {
                "time": {
                    "inAmount": to_base_units(params.total_amount, order.input_decimals),
                    "numberOfOrders": params.number_of_orders,
                    "interval": params.interval_seconds,
                    "minPrice": None,
                    "maxPrice": None,
                    "startAt": None,
                }
            },
        }

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def propose(
        self,
        owner_id: str,
        kind: OrderKind,
        input_asset: str,
        output_asset: str,
        params: OrderParams,
        *,
        input_price_usd: Decimal,
        input_decimals: int,
        output_decimals: int,
    ) -> str:
        """Validate minimums and store a ``proposed`` entry. Returns the order token."""
        try:
            self._validate(kind, params, input_price_usd)
        except ValidationError:
            self._inc("rejected_validation")
            raise

        token = self._new_token()
        order = PendingOrder(
            order_token=token,
            owner_id=owner_id,
            kind=kind,
            input_asset=input_asset,
            output_asset=output_asset,
            params=params,
            input_decimals=input_decimals,
            output_decimals=output_decimals,
            expires_at=_utcnow() + self._ttl,
        )
        async with self._lock_for(token):
            self._orders[token] = order
        log.info("Order proposed | %s", _ctx(order))
        self._inc("proposed")
        return token

    async def confirm(
        self,
        token: str,
        owner_address: str,
        *,
        owner_id: str | None = None,
    ) -> PendingOrder:
        """
        Mint the order at the venue.

        Success stores the unsigned transaction and moves to
        ``awaiting_execution``. A provider rejection moves to ``failed``; a
        timeout or other retriable failure leaves the order ``proposed``.
        """
        async with self._lock_for(token):
            order = self._get_live(token, owner_id)
            if order.in_flight:
                self._inc("conflict")
                raise ConflictError(ORDER_ALREADY_IN_FLIGHT)
            if order.status != OrderStatus.PROPOSED:
                raise ConflictError(f"Order is {order.status.value}; only proposed orders can be confirmed.")
            order.in_flight = True
            payload = self._create_payload(order, owner_address)

        log.info("Confirming order | maker=%s | %s", mask(owner_address), _ctx(order))
        created: TriggerOrderCreated | RecurringOrderCreated
        try:
            if order.kind == OrderKind.TRIGGER:
                created = await self._bounded(self._venue.create_trigger_order(payload), "confirm")
            else:
                created = await self._bounded(self._venue.create_recurring_order(payload), "confirm")
        except ExternalServiceError as exc:
            async with self._lock_for(token):
                live = self._release(token)
                if live is not None and not exc.retriable:
                    live.mark(OrderStatus.FAILED, error=exc.message)
                    self._retire(token, "failed")
            if exc.retriable:
                log.warning("Confirm failed (retriable) | err=%s | %s", exc, _ctx(order))
                self._inc("confirm_rolled_back")
            else:
                log.warning("Confirm rejected by venue | err=%s | %s", exc, _ctx(order))
                self._inc("confirm_failed")
            raise
        except BaseException:
            self._release(token)
            raise

        async with self._lock_for(token):
            live = self._release(token)
            if live is None:
                # Entry vanished while the venue call was pending.
                log.warning("Order disappeared during confirm | %s", _ctx(order))
                raise NotFoundError("Order not found. It may have expired or already been executed.")
            live.unsigned_transaction = created.transaction
            live.external_request_id = created.request_id
            live.external_order_id = created.order
            live.mark(OrderStatus.AWAITING_EXECUTION)
            live.extend(self._ttl)
            snapshot = replace(live)

        log.info(
            "Order confirmed | request_id=%s order_id=%s | %s",
            mask(created.request_id, 12),
            mask(snapshot.external_order_id, 12),
            _ctx(snapshot),
        )
        self._inc("confirmed")
        return snapshot

    async def execute(
        self,
        token: str,
        signed_tx: bytes,
        *,
        owner_id: str | None = None,
    ) -> ExecutionReceipt:
        """
        Submit a signed transaction for an ``awaiting_execution`` order.

        Looking the order up and marking it in flight is atomic; concurrent
        callers get ``ConflictError("OrderAlreadyInFlight")`` without any venue
        call. On failure the order stays ``awaiting_execution``.
        """
        async with self._lock_for(token):
            order = self._get_live(token, owner_id)
            if order.in_flight:
                self._inc("conflict")
                raise ConflictError(ORDER_ALREADY_IN_FLIGHT)
            if order.status != OrderStatus.AWAITING_EXECUTION or not order.external_request_id:
                raise ConflictError(f"Order is {order.status.value}; confirm it before executing.")
            order.in_flight = True
            kind = order.kind
            request_id = order.external_request_id

        signed_b64 = base64.b64encode(signed_tx).decode("ascii")
        try:
            result = await self._bounded(
                self._venue.submit_signed_transaction(kind, signed_b64, request_id), "execute"
            )
            if result.status.lower() != "success":
                raise ExternalServiceError(
                    f"execute: venue reported status {result.status}", retriable=True
                )
        except DeskError as exc:
            async with self._lock_for(token):
                live = self._release(token)
                if live is not None:
                    live.last_error = exc.message
            log.warning("Execution failed; order stays awaiting | err=%s | %s", exc, _ctx(order))
            self._inc("execute_failed")
            raise
        except BaseException:
            self._release(token)
            raise

        async with self._lock_for(token):
            live = self._release(token)
            if live is not None:
                live.mark(OrderStatus.EXECUTED)
                self._retire(token, "executed")
            else:
                log.warning("Order disappeared during execute | %s", _ctx(order))

        receipt = ExecutionReceipt(
            signature=result.signature,
            status=result.status,
            order_id=result.order or order.external_order_id or request_id,
        )
        log.info(
            "Order executed | signature=%s status=%s | %s",
            mask(receipt.signature, 12),
            receipt.status,
            _ctx(order),
        )
        self._inc("executed")
        return receipt

    async def cancel(
        self,
        token: str,
        *,
        owner_id: str | None = None,
        owner_address: str | None = None,
        signer: SignFn | None = None,
    ) -> PendingOrder:
        """
        Remove a ``proposed`` or ``awaiting_execution`` order.

        Removal is immediate. If the order had been minted at the venue, a
        best-effort background task asks the venue to cancel it (signing the
        returned transaction with ``signer``); its outcome is only logged.
        """
        async with self._lock_for(token):
            order = self._get_live(token, owner_id)
            if order.in_flight:
                self._inc("conflict")
                raise ConflictError(ORDER_ALREADY_IN_FLIGHT)
            previous = order.status
            order.mark(OrderStatus.CANCELLED)
            self._retire(token, "cancelled")
            snapshot = replace(order)

        log.info("Order cancelled | previous=%s | %s", previous.value, _ctx(snapshot))
        self._inc("cancelled")

        if (
            previous == OrderStatus.AWAITING_EXECUTION
            and snapshot.external_order_id
            and owner_address
        ):
            task = asyncio.create_task(
                self._cancel_at_venue(snapshot, owner_address, signer),
                name=f"orderdesk.venue_cancel.{token}",
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return snapshot

    async def _cancel_at_venue(
        self,
        order: PendingOrder,
        owner_address: str,
        signer: SignFn | None,
    ) -> None:
        order_id = order.external_order_id or ""
        try:
            cancel = await self._bounded(
                self._venue.cancel_order(order.kind, owner_address, order_id), "cancel_order"
            )
            if signer is None:
                log.info("Venue cancel needs a signature but no signer given | %s", _ctx(order))
                self._inc("venue_cancel_unsigned")
                return
            signed = await signer(cancel.transaction)
            result = await self._bounded(
                self._venue.submit_signed_transaction(
                    order.kind, signed, cancel.request_id or order_id
                ),
                "cancel_execute",
            )
            log.info(
                "Venue cancel submitted | signature=%s status=%s | %s",
                mask(result.signature, 12),
                result.status,
                _ctx(order),
            )
            self._inc("venue_cancel_ok")
        except DeskError as exc:
            log.warning("Venue cancel failed (best effort) | err=%s | %s", exc, _ctx(order))
            self._inc("venue_cancel_failed")
        except Exception:
            log.exception("Venue cancel crashed (best effort) | %s", _ctx(order))
            self._inc("venue_cancel_failed")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, token: str, *, owner_id: str | None = None) -> PendingOrder:
        async with self._lock_for(token):
            return replace(self._get_live(token, owner_id))

    def list_for_owner(self, owner_id: str) -> List[PendingOrder]:
        now = _utcnow()
        return [
            replace(o)
            for o in self._orders.values()
            if o.owner_id == owner_id and (o.in_flight or not o.is_expired(now))
        ]

    def __len__(self) -> int:
        return len(self._orders)


__all__ = ["OrderLedger", "LedgerLimits", "VenuePort", "SignFn"]
