"""Well-known token aliases. Anything unknown is passed through as a mint address."""

from __future__ import annotations

from typing import Dict, Final

SOL_MINT: Final[str] = "So11111111111111111111111111111111111111112"
USDC_MINT: Final[str] = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

TOKEN_MINTS: Final[Dict[str, str]] = {
    "SOL": SOL_MINT,
    "WSOL": SOL_MINT,
    "USDC": USDC_MINT,
    "USDT": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
    "JUP": "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN",
    "BONK": "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263",
}


def resolve_token_mint(query: str) -> str:
    text = (query or "").strip()
    return TOKEN_MINTS.get(text.upper(), text)


__all__ = ["SOL_MINT", "USDC_MINT", "TOKEN_MINTS", "resolve_token_mint"]
