from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional

from ..core.logging_utils import format_log_context
from ..domain.enums import WatchCondition
from ..domain.exceptions import WATCHER_LIMIT_REACHED, ConflictError, DeskError
from ..domain.models import ActiveWatcher, WatcherHandle
from ..infrastructure.metrics import DeskMetrics

log = logging.getLogger(__name__)

PriceFetcher = Callable[[str], Awaitable[Optional[Decimal]]]
MatchCallback = Callable[[ActiveWatcher, Decimal], Awaitable[None]]


@dataclass
class _Entry:
    watcher: ActiveWatcher
    price_fetcher: PriceFetcher
    on_match: MatchCallback
    task: Optional[asyncio.Task[None]] = None


def _ctx(watcher: ActiveWatcher) -> str:
    return format_log_context(
        {"owner": watcher.owner_id, "watcher": watcher.watcher_id, "asset": watcher.asset_id}
    )


class WatcherRegistry:
    """
    One polling task per price watcher.

    A watcher leaves the registry exactly once: either it is claimed on its
    first qualifying tick (the claim is a synchronous check-and-pop made
    immediately before ``on_match`` runs) or it is cancelled. Whichever happens
    first wins; the other becomes a no-op.
    """

    def __init__(
        self,
        *,
        poll_interval: float = 2.0,
        fetch_timeout: float = 15.0,
        max_watchers_per_owner: int = 10,
        metrics: DeskMetrics | None = None,
    ) -> None:
        self._poll_interval = max(0.01, poll_interval)
        self._fetch_timeout = fetch_timeout
        self._max_per_owner = max_watchers_per_owner
        self._metrics = metrics

        self._entries: Dict[str, _Entry] = {}
        # poll tasks still running, including ones past their claim
        self._tasks: set[asyncio.Task[None]] = set()

    def _inc(self, event: str) -> None:
        if self._metrics:
            self._metrics.inc_watcher_event(event)
            self._metrics.set_active_watchers(len(self._entries))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self,
        owner_id: str,
        asset_id: str,
        condition: WatchCondition,
        threshold: Decimal,
        price_fetcher: PriceFetcher,
        on_match: MatchCallback,
        *,
        start: bool = True,
    ) -> WatcherHandle:
        """Start watching ``asset_id``. ``start=False`` registers without a poll task."""
        owned = sum(1 for e in self._entries.values() if e.watcher.owner_id == owner_id)
        if self._max_per_owner and owned >= self._max_per_owner:
            self._inc("rejected_limit")
            raise ConflictError(WATCHER_LIMIT_REACHED, code=self._max_per_owner)

        watcher = ActiveWatcher(
            watcher_id=uuid.uuid4().hex[:12],
            owner_id=owner_id,
            asset_id=asset_id,
            condition=condition,
            threshold=threshold,
        )
        entry = _Entry(watcher=watcher, price_fetcher=price_fetcher, on_match=on_match)
        self._entries[watcher.watcher_id] = entry
        if start:
            entry.task = asyncio.create_task(
                self._poll(entry), name=f"orderdesk.watcher.{watcher.watcher_id}"
            )
            self._tasks.add(entry.task)
            entry.task.add_done_callback(self._tasks.discard)

        log.info(
            "Watcher registered | condition=%s threshold=%s | %s",
            condition.value,
            threshold,
            _ctx(watcher),
        )
        self._inc("registered")
        return WatcherHandle(watcher_id=watcher.watcher_id, owner_id=owner_id)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _poll(self, entry: _Entry) -> None:
        wid = entry.watcher.watcher_id
        while self._entries.get(wid) is entry:
            if await self._tick(entry):
                return
            await asyncio.sleep(self._poll_interval)

    async def _tick(self, entry: _Entry) -> bool:
        watcher = entry.watcher
        if self._entries.get(watcher.watcher_id) is not entry:
            return False

        try:
            price = await asyncio.wait_for(
                entry.price_fetcher(watcher.asset_id), timeout=self._fetch_timeout
            )
        except asyncio.TimeoutError:
            log.warning("Price fetch timed out; skipping tick | %s", _ctx(watcher))
            self._inc("tick_timeout")
            return False
        except DeskError as exc:
            log.warning("Price fetch failed; skipping tick | err=%s | %s", exc, _ctx(watcher))
            self._inc("tick_error")
            return False
        except Exception:
            log.exception("Price fetch crashed; skipping tick | %s", _ctx(watcher))
            self._inc("tick_error")
            return False

        if price is None or not watcher.condition.is_met(price, watcher.threshold):
            return False

        # Claim: no await between the check and the removal.
        if self._entries.get(watcher.watcher_id) is not entry:
            return False
        del self._entries[watcher.watcher_id]

        current = asyncio.current_task()
        if entry.task is not None and entry.task is not current:
            entry.task.cancel()

        log.info("Watcher matched | price=%s | %s", price, _ctx(watcher))
        self._inc("matched")
        try:
            await entry.on_match(watcher, price)
        except Exception:
            log.exception("Watcher callback failed | %s", _ctx(watcher))
            self._inc("callback_failed")
        return True

    async def run_once(self, handle: WatcherHandle | str) -> bool:
        """Single fetch-and-evaluate tick. True when this tick claimed the watcher."""
        wid = handle.watcher_id if isinstance(handle, WatcherHandle) else handle
        entry = self._entries.get(wid)
        if entry is None:
            return False
        return await self._tick(entry)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, handle: WatcherHandle | str, *, owner_id: str | None = None) -> bool:
        """
        Remove a watcher. Idempotent: False when it is unknown, already matched,
        or owned by someone other than ``owner_id``. No tick of this watcher
        runs once this returns.
        """
        wid = handle.watcher_id if isinstance(handle, WatcherHandle) else handle
        entry = self._entries.get(wid)
        if entry is None or (owner_id is not None and entry.watcher.owner_id != owner_id):
            return False
        del self._entries[wid]

        task = entry.task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        log.info("Watcher cancelled | %s", _ctx(entry.watcher))
        self._inc("cancelled")
        return True

    async def cancel_owner(self, owner_id: str) -> int:
        ids = [wid for wid, e in self._entries.items() if e.watcher.owner_id == owner_id]
        cancelled = 0
        for wid in ids:
            if await self.cancel(wid):
                cancelled += 1
        return cancelled

    async def shutdown(self) -> None:
        for wid in list(self._entries):
            await self.cancel(wid)
        # Tasks already past their claim are mid-callback.
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        log.info("Watcher registry shut down")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, watcher_id: str) -> Optional[ActiveWatcher]:
        entry = self._entries.get(watcher_id)
        return entry.watcher if entry else None

    def list_for_owner(self, owner_id: str) -> List[ActiveWatcher]:
        return [e.watcher for e in self._entries.values() if e.watcher.owner_id == owner_id]

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["WatcherRegistry", "PriceFetcher", "MatchCallback"]
