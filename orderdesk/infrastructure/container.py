from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from redis.asyncio import Redis

from ..application.orchestrator import Orchestrator, TradingVenue
from ..application.order_ledger import LedgerLimits, OrderLedger
from ..application.transaction_signer import TransactionSigner
from ..application.wallet_vault import WalletVault
from ..application.watcher_registry import WatcherRegistry
from ..config import Settings
from .jupiter import JupiterClient, JupiterPriceSource, PriceSource
from .messenger import LogMessenger, Messenger, WebhookMessenger
from .metrics import DeskMetrics
from .wallet_store import InMemoryWalletStore, RedisWalletStore, WalletStore

log = logging.getLogger(__name__)


@dataclass
class Desk:
    """Everything the HTTP app holds on to between startup and shutdown."""

    orchestrator: Orchestrator
    ledger: OrderLedger
    watchers: WatcherRegistry
    metrics: DeskMetrics
    closers: List[Callable[[], Awaitable[None]]] = field(default_factory=list)
    redis: Optional[Redis] = None

    async def start(self) -> None:
        if self.redis is not None:
            await ping_redis(self.redis)
        await self.ledger.start()

    async def stop(self) -> None:
        await self.watchers.shutdown()
        await self.ledger.stop()
        for close in self.closers:
            try:
                await close()
            except Exception as exc:
                log.warning("Close failed | err=%s", exc)


async def ping_redis(redis: Redis, *, retries: int = 10, delay: float = 1.0) -> None:
    """Verify Redis connectivity with retry logic for AOF loading scenarios."""
    for attempt in range(1, retries + 1):
        try:
            pong = await redis.ping()
            log.info("Redis ping OK (attempt %d/%d): %s", attempt, retries, pong)
            return
        except Exception as exc:  # pragma: no cover - connection issues are environment-specific
            msg = str(exc)
            if "LOADING" in msg or "loading the dataset" in msg:
                log.info("Redis loading AOF... waiting (%d/%d)", attempt, retries)
            else:
                log.warning("Redis ping failed (%d/%d): %s", attempt, retries, msg)
        await asyncio.sleep(delay)
    raise RuntimeError("Redis not ready after retries")


def build_desk(
    settings: Settings,
    *,
    venue: Optional[TradingVenue] = None,
    prices: Optional[PriceSource] = None,
    store: Optional[WalletStore] = None,
    messenger: Optional[Messenger] = None,
    metrics: Optional[DeskMetrics] = None,
) -> Desk:
    """Wire the desk from settings; any collaborator can be passed in instead."""
    metrics = metrics or DeskMetrics()
    closers: List[Callable[[], Awaitable[None]]] = []
    redis: Optional[Redis] = None

    if venue is None or prices is None:
        client = JupiterClient(
            base_url=settings.JUP_BASE_URL,
            api_key=settings.JUP_API_KEY,
            timeout=settings.EXTERNAL_TIMEOUT_SECONDS,
            metrics=metrics,
        )
        venue = venue or client
        prices = prices or JupiterPriceSource(client)

    if store is None:
        if settings.WALLET_STORE == "redis":
            redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
            store = RedisWalletStore(redis)
            closers.append(redis.aclose)
            log.info("Wallet store: redis | url=%s", settings.REDIS_URL)
        else:
            store = InMemoryWalletStore()
            log.warning("Wallet store: memory (records are lost on restart)")

    if messenger is None:
        if settings.NOTIFY_WEBHOOK_URL:
            messenger = WebhookMessenger(
                settings.NOTIFY_WEBHOOK_URL, timeout=settings.EXTERNAL_TIMEOUT_SECONDS
            )
        else:
            messenger = LogMessenger()

    if not settings.WALLET_SECRET:
        log.warning("WALLET_SECRET is not set; wallet operations will fail")

    ledger = OrderLedger(
        venue=venue,
        ttl_seconds=settings.ORDER_TTL_SECONDS,
        sweep_interval=settings.ORDER_SWEEP_INTERVAL_SECONDS,
        external_timeout=settings.EXTERNAL_TIMEOUT_SECONDS,
        limits=LedgerLimits(
            trigger_min_notional_usd=settings.TRIGGER_MIN_NOTIONAL_USD,
            recurring_min_total_usd=settings.RECURRING_MIN_TOTAL_USD,
            recurring_min_per_order_usd=settings.RECURRING_MIN_PER_ORDER_USD,
            recurring_min_orders=settings.RECURRING_MIN_ORDERS,
        ),
        metrics=metrics,
    )
    watchers = WatcherRegistry(
        poll_interval=settings.WATCH_POLL_INTERVAL_SECONDS,
        fetch_timeout=settings.EXTERNAL_TIMEOUT_SECONDS,
        max_watchers_per_owner=settings.MAX_WATCHERS_PER_OWNER,
        metrics=metrics,
    )
    orchestrator = Orchestrator(
        vault=WalletVault(secret=settings.WALLET_SECRET, store=store),
        signer=TransactionSigner(),
        ledger=ledger,
        watchers=watchers,
        venue=venue,
        prices=prices,
        messenger=messenger,
    )
    return Desk(
        orchestrator=orchestrator,
        ledger=ledger,
        watchers=watchers,
        metrics=metrics,
        closers=closers,
        redis=redis,
    )


__all__ = ["Desk", "build_desk", "ping_redis"]
