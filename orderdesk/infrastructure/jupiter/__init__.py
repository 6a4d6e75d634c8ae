from .client import JupiterClient
from .prices import JupiterPriceSource, PriceSource
from .tokens import SOL_MINT, USDC_MINT, resolve_token_mint

__all__ = [
    "JupiterClient",
    "JupiterPriceSource",
    "PriceSource",
    "SOL_MINT",
    "USDC_MINT",
    "resolve_token_mint",
]
