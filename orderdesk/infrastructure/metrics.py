from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)


class DeskMetrics:
    """Prometheus metrics facade for the desk.

    Each instance registers into its own ``CollectorRegistry`` unless one is
    passed in, so several desks (or tests) can coexist in one process.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._order_events = Counter(
            "desk_order_events_total",
            "Order ledger transitions and rejections",
            labelnames=("event",),
            registry=self.registry,
        )
        self._watcher_events = Counter(
            "desk_watcher_events_total",
            "Watcher registry outcomes",
            labelnames=("event",),
            registry=self.registry,
        )
        self._venue_errors = Counter(
            "desk_venue_errors_total",
            "Normalized venue/price-source errors",
            labelnames=("kind",),
            registry=self.registry,
        )
        self._venue_latency = Histogram(
            "desk_venue_request_seconds",
            "Venue HTTP call latency",
            labelnames=("operation",),
            registry=self.registry,
        )
        self._active_watchers = Gauge(
            "desk_active_watchers",
            "Watchers currently polling",
            registry=self.registry,
        )
        self._pending_orders = Gauge(
            "desk_pending_orders",
            "Orders held by the ledger",
            registry=self.registry,
        )

    def inc_order_event(self, event: str) -> None:
        self._order_events.labels(event=event).inc()
        logger.debug("desk_order_events_total[%s] += 1", event)

    def inc_watcher_event(self, event: str) -> None:
        self._watcher_events.labels(event=event).inc()
        logger.debug("desk_watcher_events_total[%s] += 1", event)

    def inc_venue_error(self, kind: str) -> None:
        self._venue_errors.labels(kind=kind).inc()
        logger.debug("desk_venue_errors_total[%s] += 1", kind)

    def observe_venue_latency(self, operation: str, seconds: float) -> None:
        self._venue_latency.labels(operation=operation).observe(seconds)

    def set_active_watchers(self, count: int) -> None:
        self._active_watchers.set(count)

    def set_pending_orders(self, count: int) -> None:
        self._pending_orders.set(count)

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Read back a sample value (0.0 when never observed)."""
        value = self.registry.get_sample_value(name, labels or {})
        return float(value or 0.0)


__all__ = ["DeskMetrics"]
