from __future__ import annotations

from decimal import Decimal
from enum import Enum


class OrderKind(str, Enum):
    TRIGGER = "trigger"
    RECURRING = "recurring"

    def __str__(self) -> str:
        return self.value


class OrderStatus(str, Enum):
    PROPOSED = "proposed"
    AWAITING_EXECUTION = "awaiting_execution"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self not in (OrderStatus.PROPOSED, OrderStatus.AWAITING_EXECUTION)


class WatchCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"

    def __str__(self) -> str:
        return self.value

    def is_met(self, price: Decimal, threshold: Decimal) -> bool:
        """``above`` matches at or over the threshold, ``below`` at or under it."""
        if self == WatchCondition.ABOVE:
            return price >= threshold
        if self == WatchCondition.BELOW:
            return price <= threshold
        raise ValueError(f"Unsupported watch condition: {self}")


class VenueOrderStatus(str, Enum):
    """Filter used when listing orders held by the venue."""

    ACTIVE = "active"
    HISTORY = "history"

    def __str__(self) -> str:
        return self.value
