from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional, Protocol

from ...domain.models import TokenInfo
from .client import JupiterClient
from .tokens import resolve_token_mint

log = logging.getLogger(__name__)


class PriceSource(Protocol):
    async def get_token(self, query: str) -> Optional[TokenInfo]: ...

    async def get_price(self, asset_id: str) -> Optional[Decimal]: ...

    async def top_trending(self, limit: int = 5) -> List[TokenInfo]: ...

def _to_decimal_or_none(value: object) -> Decimal | None:
    try:
        if value in (None, ""):
            return None
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return parsed if parsed.is_finite() and parsed > 0 else None


def _token_from_payload(token: Mapping[str, Any]) -> Optional[TokenInfo]:
    mint = token.get("id")
    if not mint:
        return None
    try:
        decimals = int(token.get("decimals", 0))
    except (TypeError, ValueError):
        return None
    return TokenInfo(
        id=str(mint),
        symbol=str(token.get("symbol") or mint[:4]),
        name=str(token.get("name") or token.get("symbol") or mint),
        decimals=decimals,
        price=_to_decimal_or_none(token.get("usdPrice")),
    )


class JupiterPriceSource:
    """Token lookup and USD price via the tokens v2 search endpoint."""

    def __init__(self, client: JupiterClient) -> None:
        self._client = client

    async def get_token(self, query: str) -> Optional[TokenInfo]:
        """Return the most relevant token for ``query`` (symbol, name or mint), or None."""
        search = resolve_token_mint(query)
        results = await self._client.search_tokens(search)
        for raw in results:
            info = _token_from_payload(raw)
            if info is not None:
                return info
        log.info("Token not found | query=%s", query)
        return None

    async def get_price(self, asset_id: str) -> Optional[Decimal]:
        info = await self.get_token(asset_id)
        return info.price if info else None

    async def top_trending(self, limit: int = 5) -> List[TokenInfo]:
        results = await self._client.trending_tokens(limit=limit)
        tokens = [t for t in (_token_from_payload(raw) for raw in results) if t is not None]
        return tokens[:limit]


__all__ = ["PriceSource", "JupiterPriceSource"]
