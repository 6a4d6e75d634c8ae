from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import List, Optional, Tuple

import pytest

from orderdesk.application.watcher_registry import WatcherRegistry
from orderdesk.domain.enums import WatchCondition
from orderdesk.domain.exceptions import ConflictError, ExternalServiceError
from orderdesk.domain.models import ActiveWatcher


class PriceFeed:
    def __init__(self, *prices: Optional[Decimal]) -> None:
        self.prices: List[Optional[Decimal]] = list(prices)
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.exc: Exception | None = None

    async def __call__(self, asset_id: str) -> Optional[Decimal]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.exc is not None:
            raise self.exc
        if len(self.prices) > 1:
            return self.prices.pop(0)
        return self.prices[0] if self.prices else None


class Matches:
    def __init__(self) -> None:
        self.calls: List[Tuple[ActiveWatcher, Decimal]] = []
        self.fired = asyncio.Event()

    async def __call__(self, watcher: ActiveWatcher, price: Decimal) -> None:
        self.calls.append((watcher, price))
        self.fired.set()


async def _register(registry: WatcherRegistry, feed: PriceFeed, matches: Matches, **kwargs):
    return await registry.register(
        kwargs.pop("owner_id", "u1"),
        "MintA",
        kwargs.pop("condition", WatchCondition.ABOVE),
        kwargs.pop("threshold", Decimal("100")),
        feed,
        matches,
        **kwargs,
    )


async def test_poll_task_fires_once_when_condition_met(watchers: WatcherRegistry) -> None:
    feed = PriceFeed(Decimal("90"), Decimal("95"), Decimal("100"))
    matches = Matches()

    handle = await _register(watchers, feed, matches)
    await asyncio.wait_for(matches.fired.wait(), timeout=2)
    await asyncio.sleep(0.05)

    assert len(matches.calls) == 1
    watcher, price = matches.calls[0]
    assert watcher.watcher_id == handle.watcher_id
    assert price == Decimal("100")
    assert watchers.get(handle.watcher_id) is None
    assert await watchers.cancel(handle) is False


async def test_concurrent_qualifying_ticks_fire_exactly_once(watchers: WatcherRegistry) -> None:
    feed = PriceFeed(Decimal("101"))
    feed.gate = asyncio.Event()
    matches = Matches()
    handle = await _register(watchers, feed, matches, start=False)

    first = asyncio.create_task(watchers.run_once(handle))
    second = asyncio.create_task(watchers.run_once(handle))
    await asyncio.sleep(0)
    feed.gate.set()
    results = await asyncio.gather(first, second)

    assert sorted(results) == [False, True]
    assert len(matches.calls) == 1


async def test_below_condition(watchers: WatcherRegistry) -> None:
    matches = Matches()
    handle = await _register(
        watchers,
        PriceFeed(Decimal("80")),
        matches,
        condition=WatchCondition.BELOW,
        threshold=Decimal("80"),
        start=False,
    )
    assert await watchers.run_once(handle) is True
    assert matches.calls[0][1] == Decimal("80")


async def test_missing_prices_and_errors_skip_the_tick(watchers: WatcherRegistry, metrics) -> None:
    feed = PriceFeed(None)
    matches = Matches()
    handle = await _register(watchers, feed, matches, start=False)

    assert await watchers.run_once(handle) is False
    feed.exc = ExternalServiceError("search_tokens: HTTP 500", retriable=True)
    assert await watchers.run_once(handle) is False
    feed.exc = RuntimeError("boom")
    assert await watchers.run_once(handle) is False

    assert matches.calls == []
    assert watchers.get(handle.watcher_id) is not None
    assert metrics.sample("desk_watcher_events_total", {"event": "tick_error"}) == 2


async def test_slow_fetch_times_out(metrics) -> None:
    registry = WatcherRegistry(poll_interval=1, fetch_timeout=0.05, metrics=metrics)
    feed = PriceFeed(Decimal("200"))
    feed.gate = asyncio.Event()
    handle = await _register(registry, feed, Matches(), start=False)

    assert await registry.run_once(handle) is False
    assert metrics.sample("desk_watcher_events_total", {"event": "tick_timeout"}) == 1
    await registry.shutdown()


async def test_cancel_stops_polling_and_is_idempotent(watchers: WatcherRegistry) -> None:
    feed = PriceFeed(Decimal("1"))
    matches = Matches()
    handle = await _register(watchers, feed, matches)
    await asyncio.sleep(0.05)

    assert await watchers.cancel(handle) is True
    calls_after_cancel = feed.calls
    await asyncio.sleep(0.05)

    assert feed.calls == calls_after_cancel
    assert await watchers.cancel(handle) is False
    assert len(watchers) == 0


async def test_cancel_checks_owner(watchers: WatcherRegistry) -> None:
    handle = await _register(watchers, PriceFeed(Decimal("1")), Matches(), start=False)
    assert await watchers.cancel(handle.watcher_id, owner_id="someone-else") is False
    assert await watchers.cancel(handle.watcher_id, owner_id="u1") is True


async def test_per_owner_limit(watchers: WatcherRegistry) -> None:
    for _ in range(3):
        await _register(watchers, PriceFeed(Decimal("1")), Matches(), start=False)

    with pytest.raises(ConflictError) as info:
        await _register(watchers, PriceFeed(Decimal("1")), Matches(), start=False)
    assert info.value.message == "WatcherLimitReached"

    await _register(watchers, PriceFeed(Decimal("1")), Matches(), owner_id="u2", start=False)


async def test_failing_callback_still_deregisters(watchers: WatcherRegistry, metrics) -> None:
    async def explode(watcher: ActiveWatcher, price: Decimal) -> None:
        raise RuntimeError("messenger down")

    handle = await watchers.register(
        "u1", "MintA", WatchCondition.ABOVE, Decimal("1"), PriceFeed(Decimal("2")), explode, start=False
    )

    assert await watchers.run_once(handle) is True
    assert watchers.get(handle.watcher_id) is None
    assert metrics.sample("desk_watcher_events_total", {"event": "callback_failed"}) == 1


async def test_cancel_owner_and_listing(watchers: WatcherRegistry) -> None:
    await _register(watchers, PriceFeed(Decimal("1")), Matches())
    await _register(watchers, PriceFeed(Decimal("1")), Matches())
    other = await _register(watchers, PriceFeed(Decimal("1")), Matches(), owner_id="u2")

    assert len(watchers.list_for_owner("u1")) == 2
    assert await watchers.cancel_owner("u1") == 2
    assert watchers.list_for_owner("u1") == []
    assert [w.watcher_id for w in watchers.list_for_owner("u2")] == [other.watcher_id]

    await watchers.shutdown()
    assert len(watchers) == 0
