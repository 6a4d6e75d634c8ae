from __future__ import annotations

import base64
import logging
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Protocol

from ..core.logging_utils import ensure_log_context, format_log_context, mask
from ..domain.enums import OrderKind, OrderStatus, VenueOrderStatus
from ..domain.exceptions import (
    ConflictError,
    DeskError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from ..domain.models import (
    ActiveWatcher,
    NotificationIntent,
    OperationResult,
    OrderIntent,
    TokenInfo,
    to_base_units,
)
from ..domain.venue import QuoteResponse, SolBalance, VenueOrder
from ..infrastructure.jupiter.prices import PriceSource
from ..infrastructure.messenger import Messenger
from .order_ledger import OrderLedger, SignFn, VenuePort
from .transaction_signer import TransactionSigner
from .wallet_vault import WalletVault
from .watcher_registry import WatcherRegistry

log = logging.getLogger(__name__)

INTERNAL_ERROR = "InternalError"


class TradingVenue(VenuePort, Protocol):
    """Venue calls the orchestrator makes directly, on top of the ledger's."""

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        taker: str | None = None,
    ) -> QuoteResponse: ...

    async def get_sol_balance(self, owner: str) -> SolBalance: ...

    async def list_orders(
        self,
        kind: OrderKind,
        owner: str,
        status: VenueOrderStatus = VenueOrderStatus.ACTIVE,
    ) -> List[VenueOrder]: ...


def _ui_amount(raw: Optional[int], decimals: int) -> Optional[str]:
    if raw is None:
        return None
    return str(Decimal(raw) / (Decimal(10) ** decimals))


def _quote_summary(
    quote: QuoteResponse, source: TokenInfo, target: TokenInfo, raw: int, preview: bool
) -> Dict[str, Any]:
    return {
        "request_id": quote.request_id,
        "input": source.symbol,
        "output": target.symbol,
        "in_amount": _ui_amount(quote.in_amount or raw, source.decimals),
        "out_amount": _ui_amount(quote.out_amount, target.decimals),
        "price_impact_pct": quote.price_impact_pct,
        "route": [step.swap_info.label for step in quote.route_plan],
        "transaction": quote.transaction,
        "preview": preview,
    }


class Orchestrator:
    """
    Entry point for the messaging front-end.

    Each public operation composes vault, signer, ledger and watchers for one
    owner and returns an ``OperationResult``: domain errors become
    ``{success: false, error_kind, error_detail, retriable}`` and anything
    unexpected is logged and reported as ``InternalError``.
    """

    def __init__(
        self,
        *,
        vault: WalletVault,
        signer: TransactionSigner,
        ledger: OrderLedger,
        watchers: WatcherRegistry,
        venue: TradingVenue,
        prices: PriceSource,
        messenger: Messenger,
    ) -> None:
        self._vault = vault
        self._signer = signer
        self._ledger = ledger
        self._watchers = watchers
        self._venue = venue
        self._prices = prices
        self._messenger = messenger
        log.info("Orchestrator initialized")

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _guard(self, operation: str, work: Awaitable[Any], **context: Any) -> OperationResult:
        ctx = format_log_context(ensure_log_context(None, **context))
        try:
            data = await work
        except DeskError as exc:
            log.info(
                "Operation failed | op=%s kind=%s retriable=%s err=%s | %s",
                operation,
                exc.kind,
                exc.retriable,
                exc,
                ctx,
            )
            return OperationResult.fail(exc)
        except Exception:
            log.exception("Operation crashed | op=%s | %s", operation, ctx)
            return OperationResult(
                success=False,
                error_kind=INTERNAL_ERROR,
                error_detail="Unexpected internal error",
                retriable=False,
            )
        log.debug("Operation ok | op=%s | %s", operation, ctx)
        return OperationResult.ok(data)

    async def _resolve_token(self, query: str) -> TokenInfo:
        token = await self._prices.get_token(query)
        if token is None:
            raise ValidationError(f"Unknown token: {query}")
        return token

    async def _owner_address(self, owner_id: str) -> Optional[str]:
        try:
            return await self._vault.get_public_key(owner_id)
        except NotFoundError:
            return None

    def _signer_for(self, owner_id: str) -> SignFn:
        async def _sign(unsigned_b64: str) -> str:
            keypair = await self._vault.load_signing_key_for(owner_id)
            return self._signer.sign_base64(unsigned_b64, keypair)

        return _sign

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    async def create_wallet(self, owner_id: str) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            created = await self._vault.create_wallet(owner_id)
            return {"public_key": created.public_key, "private_key": created.private_key_once}

        return await self._guard("create_wallet", _work(), owner=owner_id)

    async def export_wallet(self, owner_id: str) -> OperationResult:
        return await self._guard("export_wallet", self._vault.export_wallet(owner_id), owner=owner_id)

    async def get_balance(self, owner_id: str) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            address = await self._vault.get_public_key(owner_id)
            balance = await self._venue.get_sol_balance(address)
            return {
                "public_key": address,
                "sol": str(balance.ui_amount),
                "is_frozen": balance.is_frozen,
            }

        return await self._guard("get_balance", _work(), owner=owner_id)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def propose_order(
        self,
        owner_id: str,
        intent: OrderIntent | Mapping[str, Any],
    ) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            parsed = intent if isinstance(intent, OrderIntent) else OrderIntent.from_payload(intent)
            source = await self._resolve_token(parsed.input_asset)
            target = await self._resolve_token(parsed.output_asset)
            if source.id == target.id:
                raise ValidationError("input and output assets must differ.")
            if source.price is None:
                raise ExternalServiceError(
                    f"No USD price available for {source.symbol}", retriable=True
                )

            token = await self._ledger.propose(
                owner_id,
                parsed.kind,
                source.id,
                target.id,
                parsed.params,
                input_price_usd=source.price,
                input_decimals=source.decimals,
                output_decimals=target.decimals,
            )
            order = await self._ledger.get(token, owner_id=owner_id)
            data = order.summary()
            data["input_symbol"] = source.symbol
            data["output_symbol"] = target.symbol
            data["notional_usd"] = str(order.params.notional(source.price).quantize(Decimal("0.01")))
            return data

        return await self._guard("propose_order", _work(), owner=owner_id)

    async def confirm_order(self, owner_id: str, order_token: str) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            address = await self._vault.get_public_key(owner_id)
            order = await self._ledger.confirm(order_token, address, owner_id=owner_id)
            return order.summary()

        return await self._guard("confirm_order", _work(), owner=owner_id, token=order_token)

    async def execute_order(self, owner_id: str, order_token: str) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            order = await self._ledger.get(order_token, owner_id=owner_id)
            if order.status != OrderStatus.AWAITING_EXECUTION or not order.unsigned_transaction:
                raise ConflictError(
                    f"Order is {order.status.value}; confirm it before executing."
                )
            keypair = await self._vault.load_signing_key_for(owner_id)
            signed_b64 = self._signer.sign_base64(order.unsigned_transaction, keypair)
            receipt = await self._ledger.execute(
                order_token, base64.b64decode(signed_b64), owner_id=owner_id
            )
            return {
                "order_token": order_token,
                "status": OrderStatus.EXECUTED.value,
                "signature": receipt.signature,
                "venue_status": receipt.status,
                "order_id": receipt.order_id,
            }

        return await self._guard("execute_order", _work(), owner=owner_id, token=order_token)

    async def cancel_order(self, owner_id: str, order_token: str) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            order = await self._ledger.cancel(
                order_token,
                owner_id=owner_id,
                owner_address=await self._owner_address(owner_id),
                signer=self._signer_for(owner_id),
            )
            return order.summary()

        return await self._guard("cancel_order", _work(), owner=owner_id, token=order_token)

    async def list_venue_orders(
        self,
        owner_id: str,
        kind: OrderKind,
        status: VenueOrderStatus = VenueOrderStatus.ACTIVE,
    ) -> OperationResult:
        async def _work() -> List[Dict[str, Any]]:
            address = await self._vault.get_public_key(owner_id)
            orders = await self._venue.list_orders(kind, address, status)
            return [
                {
                    "order_id": o.order,
                    "kind": kind.value,
                    "status": o.status,
                    "created_at": o.created_at,
                    "params": dict(o.params),
                }
                for o in orders
            ]

        return await self._guard("list_venue_orders", _work(), owner=owner_id, kind=kind.value)

    async def cancel_venue_order(
        self,
        owner_id: str,
        kind: OrderKind,
        order_id: str,
    ) -> OperationResult:
        """Cancel an order already live at the venue: request, sign, submit."""

        async def _work() -> Dict[str, Any]:
            address = await self._vault.get_public_key(owner_id)
            keypair = await self._vault.load_signing_key_for(owner_id)
            cancel = await self._venue.cancel_order(kind, address, order_id)
            signed = self._signer.sign_base64(cancel.transaction, keypair)
            result = await self._venue.submit_signed_transaction(
                kind, signed, cancel.request_id or order_id
            )
            log.info(
                "Venue order cancelled | order_id=%s signature=%s status=%s",
                mask(order_id, 12),
                mask(result.signature, 12),
                result.status,
            )
            return {"order_id": order_id, "signature": result.signature, "status": result.status}

        return await self._guard("cancel_venue_order", _work(), owner=owner_id, kind=kind.value)

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def get_price(self, asset: str) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            token = await self._resolve_token(asset)
            return {
                "asset_id": token.id,
                "symbol": token.symbol,
                "price": str(token.price) if token.price is not None else None,
            }

        return await self._guard("get_price", _work(), asset=asset)

    async def quote_swap(
        self,
        owner_id: str,
        input_asset: str,
        output_asset: str,
        amount: Decimal | str,
    ) -> OperationResult:
        """
        Quote a swap. The quote is requested with the owner's address first;
        if that fails, or comes back without a transaction (usually an
        insufficient balance), it is retried exactly once as a walletless
        preview.
        """

        async def _work() -> Dict[str, Any]:
            source, target, raw = await self._swap_request(input_asset, output_asset, amount)
            quote, preview = await self._quote_with_fallback(owner_id, source, target, raw)
            return _quote_summary(quote, source, target, raw, preview)

        return await self._guard("quote_swap", _work(), owner=owner_id)

    async def execute_swap(
        self,
        owner_id: str,
        input_asset: str,
        output_asset: str,
        amount: Decimal | str,
    ) -> OperationResult:
        """Quote with the owner's wallet, sign the returned transaction and submit it."""

        async def _work() -> Dict[str, Any]:
            source, target, raw = await self._swap_request(input_asset, output_asset, amount)
            address = await self._vault.get_public_key(owner_id)
            quote = await self._venue.get_quote(source.id, target.id, raw, taker=address)
            if not quote.transaction:
                raise ExternalServiceError(
                    f"Swap not executable: {quote.error_message or 'no transaction returned'}"
                )
            keypair = await self._vault.load_signing_key_for(owner_id)
            signed = self._signer.sign_base64(quote.transaction, keypair)
            result = await self._venue.submit_signed_transaction(None, signed, quote.request_id)
            if result.status.lower() != "success":
                raise ExternalServiceError(
                    f"execute_swap: venue reported status {result.status}", retriable=True
                )
            log.info(
                "Swap executed | signature=%s | %s",
                mask(result.signature, 12),
                format_log_context({"owner": owner_id, "request_id": quote.request_id}),
            )
            data = _quote_summary(quote, source, target, raw, False)
            data.pop("transaction")
            data.update(signature=result.signature, status=result.status)
            return data

        return await self._guard("execute_swap", _work(), owner=owner_id)

    async def _swap_request(
        self, input_asset: str, output_asset: str, amount: Decimal | str
    ) -> tuple[TokenInfo, TokenInfo, int]:
        source = await self._resolve_token(input_asset)
        target = await self._resolve_token(output_asset)
        try:
            ui_amount = Decimal(str(amount))
        except ArithmeticError as exc:
            raise ValidationError(f"Invalid amount: {amount!r}") from exc
        if not ui_amount.is_finite() or ui_amount <= 0:
            raise ValidationError(f"Invalid amount: {amount!r}")
        return source, target, to_base_units(ui_amount, source.decimals)

    async def _quote_with_fallback(
        self, owner_id: str, source: TokenInfo, target: TokenInfo, raw: int
    ) -> tuple[QuoteResponse, bool]:
        taker = await self._owner_address(owner_id)
        if taker is None:
            return await self._venue.get_quote(source.id, target.id, raw, taker=None), True

        ctx = format_log_context({"owner": owner_id})
        try:
            quote = await self._venue.get_quote(source.id, target.id, raw, taker=taker)
        except ExternalServiceError as exc:
            log.warning("Quote with wallet failed; retrying as preview | err=%s | %s", exc, ctx)
        else:
            if quote.transaction:
                return quote, False
            log.info(
                "Quote with wallet has no transaction; retrying as preview | reason=%s | %s",
                quote.error_message,
                ctx,
            )
        return await self._venue.get_quote(source.id, target.id, raw, taker=None), True

    async def list_trending_tokens(self, limit: int = 5) -> OperationResult:
        async def _work() -> List[Dict[str, Any]]:
            if limit <= 0:
                raise ValidationError("limit must be positive.")
            tokens = await self._prices.top_trending(limit)
            return [
                {
                    "asset_id": t.id,
                    "symbol": t.symbol,
                    "name": t.name,
                    "price": str(t.price) if t.price is not None else None,
                }
                for t in tokens
            ]

        return await self._guard("list_trending_tokens", _work(), limit=limit)

    # ------------------------------------------------------------------
    # Watchers
    # ------------------------------------------------------------------

    def _notify_owner(self, symbol: str):
        async def _on_match(watcher: ActiveWatcher, price: Decimal) -> None:
            text = (
                f"Price alert: {symbol} is now {price} USD "
                f"({watcher.condition.value} {watcher.threshold})."
            )
            await self._messenger.send_message(watcher.owner_id, text)

        return _on_match

    async def register_watcher(
        self,
        owner_id: str,
        intent: NotificationIntent | Mapping[str, Any],
    ) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            parsed = (
                intent
                if isinstance(intent, NotificationIntent)
                else NotificationIntent.from_payload(intent)
            )
            token = await self._resolve_token(parsed.asset)
            if token.price is None:
                raise ExternalServiceError(f"No USD price available for {token.symbol}", retriable=True)

            data: Dict[str, Any] = {
                "asset_id": token.id,
                "symbol": token.symbol,
                "condition": parsed.condition.value,
                "threshold": str(parsed.threshold),
                "current_price": str(token.price),
            }
            if parsed.condition.is_met(token.price, parsed.threshold):
                data.update(already_met=True, watcher_id=None)
                return data

            handle = await self._watchers.register(
                owner_id,
                token.id,
                parsed.condition,
                parsed.threshold,
                self._prices.get_price,
                self._notify_owner(token.symbol),
            )
            data.update(already_met=False, watcher_id=handle.watcher_id)
            return data

        return await self._guard("register_watcher", _work(), owner=owner_id)

    async def cancel_watcher(self, owner_id: str, watcher_id: str) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            if not await self._watchers.cancel(watcher_id, owner_id=owner_id):
                raise NotFoundError("Watcher not found. It may have already fired.")
            return {"watcher_id": watcher_id, "cancelled": True}

        return await self._guard("cancel_watcher", _work(), owner=owner_id, watcher=watcher_id)

    async def cancel_all_watchers(self, owner_id: str) -> OperationResult:
        async def _work() -> Dict[str, Any]:
            return {"cancelled": await self._watchers.cancel_owner(owner_id)}

        return await self._guard("cancel_all_watchers", _work(), owner=owner_id)

    async def list_watchers(self, owner_id: str) -> OperationResult:
        async def _work() -> List[Dict[str, Any]]:
            return [w.summary() for w in self._watchers.list_for_owner(owner_id)]

        return await self._guard("list_watchers", _work(), owner=owner_id)


__all__ = ["Orchestrator", "TradingVenue", "INTERNAL_ERROR"]
