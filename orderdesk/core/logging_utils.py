from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping

_CONTEXT_FIELDS = ("owner", "token", "kind", "watcher", "asset")
_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=_FORMAT,
    )


def format_log_context(context: Mapping[str, Any] | None) -> str:
    """Return a stable log-friendly string for the common order/watcher context."""
    parts: list[str] = []
    for field in _CONTEXT_FIELDS:
        value = context.get(field, "") if context else ""
        if value in (None, ""):
            value = "-"
        parts.append(f"{field}={value}")
    return " ".join(parts)


def ensure_log_context(context: Mapping[str, Any] | None, **updates: Any) -> MutableMapping[str, Any]:
    """Copy the provided context and merge additional fields for downstream logs."""
    merged: MutableMapping[str, Any] = dict(context or {})
    for key, value in updates.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def mask(value: str | None, keep: int = 6) -> str:
    """Shorten an identifier (public key, request id) for log lines."""
    if not value:
        return "-"
    return value if len(value) <= keep else f"{value[:keep]}..."


__all__ = ["setup_logging", "format_log_context", "ensure_log_context", "mask"]
