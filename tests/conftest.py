from __future__ import annotations

import asyncio
import base64
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest
from solders.hash import Hash
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from orderdesk.application.orchestrator import Orchestrator
from orderdesk.application.order_ledger import OrderLedger
from orderdesk.application.transaction_signer import TransactionSigner
from orderdesk.application.wallet_vault import WalletVault
from orderdesk.application.watcher_registry import WatcherRegistry
from orderdesk.domain.enums import OrderKind, VenueOrderStatus
from orderdesk.domain.exceptions import ExternalServiceError
from orderdesk.domain.models import TokenInfo
from orderdesk.domain.venue import (
    CancelTransaction,
    ExecutionResult,
    QuoteResponse,
    RecurringOrderCreated,
    SolBalance,
    TriggerOrderCreated,
    VenueOrder,
    parse_response,
)
from orderdesk.infrastructure.metrics import DeskMetrics
from orderdesk.infrastructure.wallet_store import InMemoryWalletStore

TEST_SECRET = "unit-test-wallet-secret"

MINT_A = "MintA1111111111111111111111111111111111111"
MINT_B = "MintB2222222222222222222222222222222222222"


def unsigned_tx_b64(signer: Pubkey | str) -> str:
    """A v0 transfer whose fee payer (and only signer) is ``signer``."""
    payer = signer if isinstance(signer, Pubkey) else Pubkey.from_string(signer)
    ix = transfer(TransferParams(from_pubkey=payer, to_pubkey=Pubkey.new_unique(), lamports=1_000))
    message = MessageV0.try_compile(payer, [ix], [], Hash.default())
    tx = VersionedTransaction.populate(message, [Signature.default()])
    return base64.b64encode(bytes(tx)).decode("ascii")


class VenueStub:
    """In-memory stand-in for the Jupiter client."""

    def __init__(self) -> None:
        self.create_response: Dict[str, Any] = {
            "requestId": "r1",
            "transaction": "bytes1",
            "order": "o1",
        }
        self.create_exc: Exception | None = None
        self.create_gate: asyncio.Event | None = None

        self.execute_response: Dict[str, Any] = {"signature": "sig1", "status": "Success"}
        self.execute_exc: Exception | None = None
        self.execute_gate: asyncio.Event | None = None

        self.cancel_response: Dict[str, Any] = {"transaction": "", "requestId": "cr1"}
        self.cancel_exc: Exception | None = None

        self.quote_response: Dict[str, Any] = {
            "requestId": "q1",
            "inAmount": "1000000000",
            "outAmount": "20000000",
            "priceImpactPct": "0.01",
            "routePlan": [{"swapInfo": {"label": "Pool"}, "percent": 100}],
        }
        self.fail_quote_with_taker = False
        self.quote_exc: Exception | None = None

        self.orders: List[Dict[str, Any]] = []
        self.sol_balance = {"uiAmount": 1.5, "isFrozen": False}

        self.created: List[Tuple[str, Dict[str, Any]]] = []
        self.submitted: List[Tuple[Optional[OrderKind], str, str]] = []
        self.cancelled: List[Tuple[OrderKind, str, str]] = []
        self.quotes: List[Optional[str]] = []

    async def _create(self, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.created.append((kind, payload))
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_exc is not None:
            raise self.create_exc
        return self.create_response

    async def create_trigger_order(self, payload: Dict[str, Any]) -> TriggerOrderCreated:
        data = await self._create("trigger", payload)
        return parse_response(TriggerOrderCreated, data, operation="create_trigger_order")

    async def create_recurring_order(self, payload: Dict[str, Any]) -> RecurringOrderCreated:
        data = await self._create("recurring", payload)
        return parse_response(RecurringOrderCreated, data, operation="create_recurring_order")

    async def submit_signed_transaction(
        self, kind: Optional[OrderKind], signed_transaction: str, request_id: str
    ) -> ExecutionResult:
        self.submitted.append((kind, signed_transaction, request_id))
        if self.execute_gate is not None:
            await self.execute_gate.wait()
        if self.execute_exc is not None:
            raise self.execute_exc
        return parse_response(ExecutionResult, self.execute_response, operation="execute")

    async def cancel_order(self, kind: OrderKind, owner: str, order_id: str) -> CancelTransaction:
        self.cancelled.append((kind, owner, order_id))
        if self.cancel_exc is not None:
            raise self.cancel_exc
        return parse_response(CancelTransaction, self.cancel_response, operation="cancel_order")

    async def get_quote(
        self, input_mint: str, output_mint: str, amount: int, taker: str | None = None
    ) -> QuoteResponse:
        self.quotes.append(taker)
        if taker is not None and self.fail_quote_with_taker:
            raise ExternalServiceError("get_quote: Insufficient balance", code=400)
        if self.quote_exc is not None:
            raise self.quote_exc
        return parse_response(QuoteResponse, self.quote_response, operation="get_quote")

    async def get_sol_balance(self, owner: str) -> SolBalance:
        return parse_response(SolBalance, self.sol_balance, operation="get_balance")

    async def list_orders(
        self, kind: OrderKind, owner: str, status: VenueOrderStatus = VenueOrderStatus.ACTIVE
    ) -> List[VenueOrder]:
        return [parse_response(VenueOrder, o, operation="list_orders") for o in self.orders]


class PriceSourceStub:
    def __init__(self) -> None:
        self.tokens: Dict[str, TokenInfo] = {}
        self.prices: Dict[str, Optional[Decimal]] = {}
        self.price_exc: Exception | None = None
        self.price_calls = 0
        self.trending: List[TokenInfo] = []

    def add(self, symbol: str, mint: str, decimals: int, price: Decimal | None) -> None:
        self.tokens[symbol.upper()] = TokenInfo(
            id=mint, symbol=symbol, name=symbol, decimals=decimals, price=None
        )
        self.prices[mint] = price

    async def get_token(self, query: str) -> Optional[TokenInfo]:
        token = self.tokens.get(query.upper())
        if token is None:
            token = next((t for t in self.tokens.values() if t.id == query), None)
        if token is None:
            return None
        return TokenInfo(
            id=token.id,
            symbol=token.symbol,
            name=token.name,
            decimals=token.decimals,
            price=self.prices.get(token.id),
        )

    async def get_price(self, asset_id: str) -> Optional[Decimal]:
        self.price_calls += 1
        if self.price_exc is not None:
            raise self.price_exc
        return self.prices.get(asset_id)

    async def top_trending(self, limit: int = 5) -> List[TokenInfo]:
        return self.trending[:limit]


class MessengerStub:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.delivered = asyncio.Event()

    async def send_message(self, owner_id: str, text: str) -> None:
        self.sent.append((owner_id, text))
        self.delivered.set()


@pytest.fixture
def metrics() -> DeskMetrics:
    return DeskMetrics()


@pytest.fixture
def venue() -> VenueStub:
    return VenueStub()


@pytest.fixture
def prices() -> PriceSourceStub:
    stub = PriceSourceStub()
    stub.add("A", MINT_A, 9, Decimal("20"))
    stub.add("B", MINT_B, 6, Decimal("1"))
    return stub


@pytest.fixture
def messenger() -> MessengerStub:
    return MessengerStub()


@pytest.fixture
def wallet_store() -> InMemoryWalletStore:
    return InMemoryWalletStore()


@pytest.fixture
def vault(wallet_store: InMemoryWalletStore) -> WalletVault:
    return WalletVault(secret=TEST_SECRET, store=wallet_store)


@pytest.fixture
async def ledger(venue: VenueStub, metrics: DeskMetrics):
    ledger = OrderLedger(venue=venue, ttl_seconds=600, external_timeout=1.0, metrics=metrics)
    yield ledger
    await ledger.stop()


@pytest.fixture
async def watchers(metrics: DeskMetrics):
    registry = WatcherRegistry(
        poll_interval=0.01, fetch_timeout=1.0, max_watchers_per_owner=3, metrics=metrics
    )
    yield registry
    await registry.shutdown()


@pytest.fixture
def desk(
    vault: WalletVault,
    ledger: OrderLedger,
    watchers: WatcherRegistry,
    venue: VenueStub,
    prices: PriceSourceStub,
    messenger: MessengerStub,
    metrics: DeskMetrics,
) -> Orchestrator:
    return Orchestrator(
        vault=vault,
        signer=TransactionSigner(),
        ledger=ledger,
        watchers=watchers,
        venue=venue,
        prices=prices,
        messenger=messenger,
    )


@pytest.fixture
def build_unsigned_tx():
    return unsigned_tx_b64
