"""
Stablecoins & USD Pricing — Offline Token Valuation
====================================================

Values position tokens in USD without any network price lookup:

  1. Known stablecoins are worth exactly $1.00.
  2. The volatile side of a stable pair is priced from the pool itself:
       token1 stable → token0 = current_price          (token1 per token0)
       token0 stable → token1 = 1 / current_price
  3. Otherwise a small static reference table (WETH, WBTC).
  4. Otherwise $0 and the quote is flagged USD-incomplete.

Symbols are matched after ``rpc_helpers.normalize_symbol`` (USDbC → USDC,
USD₮0 → USDT).
"""

from dataclasses import dataclass
from typing import Dict, Optional

# ── Known Stablecoin Symbols ────────────────────────────────────────────

STABLECOIN_SYMBOLS: frozenset = frozenset({
    "USDC", "USDT", "DAI", "BUSD", "FRAX",
})

# ── Static Reference Prices (USD) ───────────────────────────────────────
# Used only when neither side of the pair is a stablecoin.

STATIC_USD_PRICES: Dict[str, float] = {
    "WETH": 3300.0,
    "ETH": 3300.0,
    "WBTC": 43000.0,
    "BTC": 43000.0,
}


def is_stablecoin(symbol: str) -> bool:
    """
    Check if a token symbol is a known stablecoin.

    Examples:
        >>> is_stablecoin("usdc")
        True
        >>> is_stablecoin("WETH")
        False
    """
    return symbol.strip().upper() in STABLECOIN_SYMBOLS


def stablecoin_side(symbol0: str, symbol1: str) -> int:
    """
    Identify which side of the pair is the stablecoin.

    Returns:
        0  — token0 is the stablecoin
        1  — token1 is the stablecoin
        -1 — neither or both are stablecoins
    """
    s0 = is_stablecoin(symbol0)
    s1 = is_stablecoin(symbol1)
    if s0 and not s1:
        return 0
    elif s1 and not s0:
        return 1
    return -1


def static_usd_price(symbol: str) -> Optional[float]:
    """$1 for stablecoins, table value for majors, None otherwise."""
    upper = symbol.strip().upper()
    if upper in STABLECOIN_SYMBOLS:
        return 1.0
    return STATIC_USD_PRICES.get(upper)


@dataclass(frozen=True)
class UsdQuote:
    """Per-token USD prices; ``complete`` is False if either fell back to 0."""

    price0: float
    price1: float
    complete: bool


def quote_usd(symbol0: str, symbol1: str, current_price: Optional[float]) -> UsdQuote:
    """
    USD price of each token of a pair.

    Args:
        symbol0, symbol1: Token symbols.
        current_price: Pool price (token1 per token0), or None if unknown.
    """
    price0 = static_usd_price(symbol0)
    price1 = static_usd_price(symbol1)

    if current_price:
        side = stablecoin_side(symbol0, symbol1)
        if side == 1:
            price0 = current_price
        elif side == 0:
            price1 = 1.0 / current_price

    complete = price0 is not None and price1 is not None
    return UsdQuote(
        price0=price0 if price0 is not None else 0.0,
        price1=price1 if price1 is not None else 0.0,
        complete=complete,
    )
